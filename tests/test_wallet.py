from decimal import Decimal

import pytest

from dentlink.core.errors import (
    InsufficientFunds,
    NotFound,
    ValidationError,
)
from dentlink.models.ledger import LedgerEntry
from dentlink.services import wallet


def _count(session_factory):
    with session_factory() as db:
        return db.query(LedgerEntry).count()


def test_deposit_returns_new_balance(session_factory, users):
    with session_factory() as db:
        with db.begin():
            bal = wallet.deposit(db, patient_id=users.patient, amount="1500", method="bkash")
        assert bal == Decimal("1500.00")
        with db.begin():
            bal = wallet.deposit(db, patient_id=users.patient, amount=250.5, method="cash")
        assert bal == Decimal("1750.50")


@pytest.mark.parametrize("amount, method", [(0, "bkash"), (-10, "bank"), (100, "wallet"), (100, "paypal")])
def test_deposit_validation(session_factory, users, amount, method):
    with session_factory() as db:
        with pytest.raises(ValidationError):
            with db.begin():
                wallet.deposit(db, patient_id=users.patient, amount=amount, method=method)
        assert _count(session_factory) == 0


def test_deposit_is_for_patients_only(session_factory, users):
    with session_factory() as db:
        with pytest.raises(NotFound):
            with db.begin():
                wallet.deposit(db, patient_id=users.doctor_a, amount=100, method="bkash")


def test_idempotent_deposit(session_factory, users):
    with session_factory() as db:
        with db.begin():
            wallet.deposit(db, patient_id=users.patient, amount=1000, method="bkash",
                           idempotency_key="topup-1")
        with db.begin():
            bal = wallet.deposit(db, patient_id=users.patient, amount=1000, method="bkash",
                                 idempotency_key="topup-1")
        assert bal == Decimal("1000.00")
        assert _count(session_factory) == 1


def test_spend_above_balance_appends_nothing(session_factory, users):
    with session_factory() as db:
        with db.begin():
            wallet.deposit(db, patient_id=users.patient, amount=300, method="bkash")
        before = _count(session_factory)
        with pytest.raises(InsufficientFunds) as exc:
            with db.begin():
                wallet.spend(db, patient_id=users.patient, amount="300.01", case_id=None)
        assert exc.value.extra == {"balance": "300.00", "requested": "300.01"}
        assert _count(session_factory) == before
        assert wallet.get_balance(db, users.patient) == Decimal("300.00")


def test_spend_exact_balance(session_factory, users):
    with session_factory() as db:
        with db.begin():
            wallet.deposit(db, patient_id=users.patient, amount=300, method="bkash")
            entry = wallet.spend(db, patient_id=users.patient, amount=300, case_id=None,
                                 doctor_id=users.doctor_a)
        assert entry.payment_method.value == "wallet"
        assert wallet.get_balance(db, users.patient) == Decimal("0.00")


def test_wallet_summary(session_factory, users):
    with session_factory() as db:
        with db.begin():
            wallet.deposit(db, patient_id=users.patient, amount=1000, method="bkash")
            wallet.deposit(db, patient_id=users.patient, amount=500, method="bank")
            wallet.spend(db, patient_id=users.patient, amount=400, case_id=None)
        s = wallet.wallet_summary(db, users.patient)
        assert s["total_deposit"] == Decimal("1500.00")
        assert s["total_spent"] == Decimal("400.00")
        assert s["total_refund"] == Decimal("0.00")
        assert s["available_balance"] == Decimal("1100.00")
        # newest first
        assert [e.amount for e in s["recent_entries"]] == [Decimal("400.00"), Decimal("500.00"), Decimal("1000.00")]
