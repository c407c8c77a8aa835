# FILE: dentlink/services/wallet.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dentlink.core.errors import (
    InsufficientFunds,
    NotFound,
    ValidationError,
)
from dentlink.core.retry import as_conflict, is_duplicate
from dentlink.models.ledger import EntryType, LedgerEntry, PaymentMethod
from dentlink.models.user import User, UserRole
from dentlink.services.ledger import append_entry, wallet_totals
from dentlink.services.money import money

logger = logging.getLogger(__name__)

DEPOSIT_METHODS = (PaymentMethod.BKASH, PaymentMethod.BANK, PaymentMethod.CASH)


def _lock_patient(db: Session, patient_id: int) -> User:
    # row lock = per-patient mutual exclusion on the database side
    patient = (db.query(User).filter(
        User.id == patient_id).with_for_update().first())
    if not patient or patient.role != UserRole.PATIENT:
        raise NotFound("Patient not found")
    return patient


def get_balance(db: Session, patient_id: int) -> Decimal:
    return wallet_totals(db, patient_id).available_balance


def deposit(
    db: Session,
    *,
    patient_id: int,
    amount,
    method: PaymentMethod,
    idempotency_key: Optional[str] = None,
    reference_id: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[int] = None,
) -> Decimal:
    """
    Add credit to a patient's wallet and return the new balance.
    A repeated idempotency_key appends nothing and returns the current balance.
    """
    amt = money(amount)
    if amt <= 0:
        raise ValidationError("Amount must be > 0")
    try:
        method = PaymentMethod(method)
    except ValueError:
        raise ValidationError(f"Unknown payment method '{method}'")
    if method not in DEPOSIT_METHODS:
        raise ValidationError(f"Cannot deposit with method '{method.value}'")

    _lock_patient(db, patient_id)

    if idempotency_key:
        dup = (db.query(LedgerEntry.id).filter(
            LedgerEntry.subject_id == patient_id,
            LedgerEntry.idempotency_key == idempotency_key,
        ).first())
        if dup:
            logger.info("deposit replay patient=%s key=%s", patient_id,
                        idempotency_key)
            return get_balance(db, patient_id)

    try:
        append_entry(
            db,
            subject_id=patient_id,
            entry_type=EntryType.CREDIT_DEPOSIT,
            amount=amt,
            payment_method=method,
            reference_id=reference_id,
            idempotency_key=idempotency_key,
            notes=notes or f"Wallet top-up via {method.value}",
            created_by=created_by,
        )
    except IntegrityError as e:
        # two requests raced with the same key; the retry will see the winner
        if is_duplicate(e):
            raise as_conflict(e)
        raise

    return get_balance(db, patient_id)


def spend(
    db: Session,
    *,
    patient_id: int,
    amount,
    case_id: int,
    doctor_id: Optional[int] = None,
    notes: Optional[str] = None,
    created_by: Optional[int] = None,
) -> LedgerEntry:
    """
    Pay from the wallet. Check-then-append, so the caller must hold
    patient_lock(patient_id) for the whole transaction.
    Nothing is appended when the balance is short.
    """
    amt = money(amount)
    if amt <= 0:
        raise ValidationError("Amount must be > 0")

    _lock_patient(db, patient_id)

    balance = get_balance(db, patient_id)
    if amt > balance:
        raise InsufficientFunds(
            "Insufficient wallet balance.",
            extra={
                "balance": str(balance),
                "requested": str(amt)
            })

    return append_entry(
        db,
        subject_id=patient_id,
        doctor_id=doctor_id,
        case_id=case_id,
        entry_type=EntryType.TREATMENT_PAYMENT,
        amount=amt,
        payment_method=PaymentMethod.WALLET,
        notes=notes or f"Paid for case {case_id} from wallet",
        created_by=created_by,
    )


def wallet_summary(db: Session, patient_id: int, *, limit: int = 20) -> dict:
    patient = db.get(User, patient_id)
    if not patient or patient.role != UserRole.PATIENT:
        raise NotFound("Patient not found")

    totals = wallet_totals(db, patient_id)

    recent = (db.query(LedgerEntry).filter(
        LedgerEntry.subject_id == patient_id,
        LedgerEntry.entry_type.in_([
            EntryType.CREDIT_DEPOSIT,
            EntryType.TREATMENT_PAYMENT,
            EntryType.REFUND,
        ])).order_by(desc(LedgerEntry.id)).limit(limit).all())

    return {
        "patient_id": patient_id,
        "total_deposit": totals.total_deposit,
        "total_spent": totals.total_spent,
        "total_refund": totals.total_refund,
        "available_balance": totals.available_balance,
        "recent_entries": recent,
    }
