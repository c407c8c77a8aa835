from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
)

from dentlink.db.base import Base
from dentlink.models.common import MYSQL_ARGS, Money, enum_col


class EntryType(str, enum.Enum):
    CREDIT_DEPOSIT = "credit_deposit"
    TREATMENT_PAYMENT = "treatment_payment"
    PAYOUT = "payout"
    ADJUSTMENT_BONUS = "adjustment_bonus"
    ADJUSTMENT_DEDUCTION = "adjustment_deduction"
    REFUND = "refund"
    COMMISSION_PAYMENT = "commission_payment"


class PaymentMethod(str, enum.Enum):
    WALLET = "wallet"
    BKASH = "bkash"
    BANK = "bank"
    CASH = "cash"


class LedgerEntry(Base):
    """
    Append-only money movements. Never updated, never deleted;
    corrections are new adjustment/refund rows.

    amount is always >= 0, the direction comes from entry_type.
    id is the ordering sequence: every balance folds rows by id.

    subject_id  -> whose movement it is (patient for deposits/payments/refunds,
                   doctor for commission/payout/adjustments)
    doctor_id   -> doctor the movement counts against (NULL for deposits)
    commission_payment with case_id    = commission accrued by a settlement
    commission_payment without case_id = doctor remitting cash commission
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("entry_number", name="uq_ledger_entries_number"),
        UniqueConstraint("subject_id",
                         "idempotency_key",
                         name="uq_ledger_entries_subject_idem"),
        Index("ix_ledger_subject_seq", "subject_id", "id"),
        Index("ix_ledger_doctor_seq", "doctor_id", "id"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_number = Column(String(32), nullable=False)  # TR-YYYYMMDD-000001

    subject_id = Column(Integer,
                        ForeignKey("users.id"),
                        nullable=False,
                        index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    case_id = Column(Integer,
                     ForeignKey("cases.id"),
                     nullable=True,
                     index=True)

    entry_type = Column(enum_col(EntryType, "ledger_entry_type"),
                        nullable=False)
    amount = Column(Money, nullable=False)
    payment_method = Column(enum_col(PaymentMethod, "ledger_payment_method"),
                            nullable=False)

    reference_id = Column(String(80), nullable=True)  # gateway ref
    idempotency_key = Column(String(80), nullable=True)
    notes = Column(Text, nullable=True)

    date = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
