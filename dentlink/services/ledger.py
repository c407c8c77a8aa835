# FILE: dentlink/services/ledger.py
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from dentlink.core.errors import LedgerInconsistency, ValidationError
from dentlink.models.ledger import EntryType, LedgerEntry, PaymentMethod
from dentlink.services.money import ZERO, money
from dentlink.services.numbering import next_doc_number

logger = logging.getLogger(__name__)


def append_entry(
    db: Session,
    *,
    subject_id: int,
    entry_type: EntryType,
    amount,
    payment_method: PaymentMethod,
    doctor_id: Optional[int] = None,
    case_id: Optional[int] = None,
    reference_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[int] = None,
) -> LedgerEntry:
    """
    The only way rows get into ledger_entries.
    Does NOT commit; the caller's transaction decides.
    """
    amt = money(amount)
    if amt <= 0:
        raise ValidationError("Ledger amount must be > 0")

    entry = LedgerEntry(
        entry_number=next_doc_number(db, "LEDGER"),
        subject_id=subject_id,
        doctor_id=doctor_id,
        case_id=case_id,
        entry_type=entry_type,
        amount=amt,
        payment_method=payment_method,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
        notes=notes,
        created_by=created_by,
    )
    db.add(entry)
    db.flush()
    logger.info("ledger %s %s %s subject=%s doctor=%s case=%s",
                entry.entry_number, entry_type.value, amt, subject_id,
                doctor_id, case_id)
    return entry


def entries_for_subject(db: Session, subject_id: int) -> List[LedgerEntry]:
    return (db.query(LedgerEntry).filter(
        LedgerEntry.subject_id == subject_id).order_by(
            LedgerEntry.id.asc()).all())


def entries_for_doctor(db: Session, doctor_id: int) -> List[LedgerEntry]:
    """
    Everything that counts against a doctor, read in ONE statement so the
    fold below works on a single point-in-time view.
    """
    return (db.query(LedgerEntry).filter(
        or_(LedgerEntry.doctor_id == doctor_id,
            LedgerEntry.subject_id == doctor_id)).order_by(
                LedgerEntry.id.asc()).all())


def entries_for_case(db: Session, case_id: int) -> List[LedgerEntry]:
    return (db.query(LedgerEntry).filter(
        LedgerEntry.case_id == case_id).order_by(LedgerEntry.id.asc()).all())


# ---------- Wallet fold ----------
@dataclass
class WalletTotals:
    total_deposit: Decimal = ZERO
    total_spent: Decimal = ZERO
    total_refund: Decimal = ZERO

    @property
    def available_balance(self) -> Decimal:
        return money(self.total_deposit + self.total_refund - self.total_spent)


def fold_wallet(entries: Iterable[LedgerEntry]) -> WalletTotals:
    t = WalletTotals()
    for e in entries:
        amt = money(e.amount)
        if e.entry_type == EntryType.CREDIT_DEPOSIT:
            t.total_deposit = money(t.total_deposit + amt)
        elif e.entry_type == EntryType.TREATMENT_PAYMENT and e.payment_method == PaymentMethod.WALLET:
            t.total_spent = money(t.total_spent + amt)
        elif e.entry_type == EntryType.REFUND and e.payment_method == PaymentMethod.WALLET:
            t.total_refund = money(t.total_refund + amt)
    return t


def wallet_totals(db: Session, patient_id: int) -> WalletTotals:
    totals = fold_wallet(entries_for_subject(db, patient_id))
    if totals.available_balance < 0:
        raise LedgerInconsistency(
            f"Wallet balance of patient {patient_id} is negative",
            extra={
                "patient_id": patient_id,
                "balance": str(totals.available_balance)
            })
    return totals


# ---------- Doctor snapshot fold ----------
@dataclass
class DoctorSnapshot:
    doctor_id: int
    grossRevenue: Decimal = ZERO
    commission: Decimal = ZERO
    commissionFromCash: Decimal = ZERO
    commissionPaidByDoctor: Decimal = ZERO
    adjustments: Decimal = ZERO
    netIncome: Decimal = ZERO
    totalPaid: Decimal = ZERO
    pendingBalance: Decimal = ZERO
    commissionDue: Decimal = ZERO

    def as_dict(self) -> dict:
        return asdict(self)


def fold_doctor(doctor_id: int,
                entries: Iterable[LedgerEntry]) -> DoctorSnapshot:
    """
    One pass over the doctor's entries (already in sequence order).

      grossRevenue   = non-cash treatment payments - non-cash refunds
      commission     = commission accrued by settlements (rows with case_id)
      fromCash       = part of that accrued on cash payments
      paidByDoctor   = commission remitted by the doctor (rows without case_id)
      netIncome      = gross - (commission - fromCash) + bonus - deduction
      pendingBalance = netIncome - payouts   (negative => LedgerInconsistency)
      commissionDue  = fromCash - paidByDoctor
    """
    s = DoctorSnapshot(doctor_id=doctor_id)
    gross = ZERO
    refunds = ZERO
    bonus = ZERO
    deduction = ZERO

    for e in entries:
        amt = money(e.amount)
        et = e.entry_type
        cash = e.payment_method == PaymentMethod.CASH

        if et == EntryType.TREATMENT_PAYMENT and e.doctor_id == doctor_id:
            if not cash:
                gross += amt
        elif et == EntryType.REFUND and e.doctor_id == doctor_id:
            if not cash:
                refunds += amt
        elif et == EntryType.COMMISSION_PAYMENT and e.subject_id == doctor_id:
            if e.case_id is not None:
                s.commission += amt
                if cash:
                    s.commissionFromCash += amt
            else:
                s.commissionPaidByDoctor += amt
        elif et == EntryType.PAYOUT and e.subject_id == doctor_id:
            s.totalPaid += amt
        elif et == EntryType.ADJUSTMENT_BONUS and e.subject_id == doctor_id:
            bonus += amt
        elif et == EntryType.ADJUSTMENT_DEDUCTION and e.subject_id == doctor_id:
            deduction += amt

    s.grossRevenue = money(gross - refunds)
    s.commission = money(s.commission)
    s.commissionFromCash = money(s.commissionFromCash)
    s.commissionPaidByDoctor = money(s.commissionPaidByDoctor)
    s.adjustments = money(bonus - deduction)
    s.totalPaid = money(s.totalPaid)
    s.netIncome = money(s.grossRevenue -
                        (s.commission - s.commissionFromCash) + s.adjustments)
    s.pendingBalance = money(s.netIncome - s.totalPaid)
    s.commissionDue = money(s.commissionFromCash - s.commissionPaidByDoctor)
    return s


def doctor_snapshot(db: Session, doctor_id: int) -> DoctorSnapshot:
    snap = fold_doctor(doctor_id, entries_for_doctor(db, doctor_id))
    if snap.pendingBalance < 0:
        raise LedgerInconsistency(
            f"Pending balance of doctor {doctor_id} is negative",
            extra={
                k: str(v)
                for k, v in snap.as_dict().items()
            })
    return snap
