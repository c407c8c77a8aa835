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
    UniqueConstraint,
)

from dentlink.db.base import Base
from dentlink.models.common import MYSQL_ARGS, Money, enum_col
from dentlink.models.ledger import PaymentMethod


class CaptureStatus(str, enum.Enum):
    PENDING = "pending"  # gateway confirmed, ledger not written yet
    SETTLED = "settled"
    REFUNDED = "refunded"  # case went away before settling -> compensated
    HALTED = "halted"  # ledger inconsistency, needs a human


class PaymentCapture(Base):
    """
    Confirmed external gateway capture, stored before the ledger write so a
    crash between the two can be driven to completion later.
    """
    __tablename__ = "payment_captures"
    __table_args__ = (
        UniqueConstraint("reference_id", name="uq_payment_captures_ref"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)

    case_id = Column(Integer,
                     ForeignKey("cases.id"),
                     nullable=False,
                     index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    reference_id = Column(String(80), nullable=False)
    amount = Column(Money, nullable=False)
    payment_method = Column(enum_col(PaymentMethod, "capture_payment_method"),
                            nullable=False)

    status = Column(enum_col(CaptureStatus, "capture_status"),
                    nullable=False,
                    default=CaptureStatus.PENDING,
                    index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    settled_at = Column(DateTime, nullable=True)
