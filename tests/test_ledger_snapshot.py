from decimal import Decimal

import pytest

from dentlink.core.errors import LedgerInconsistency, ValidationError
from dentlink.models.ledger import EntryType, LedgerEntry, PaymentMethod
from dentlink.services.ledger import (
    append_entry,
    doctor_snapshot,
    fold_doctor,
    fold_wallet,
    wallet_totals,
)

DOC = 7
PAT = 3


def _e(entry_type, amount, method=PaymentMethod.BKASH, *, subject=DOC, doctor=DOC, case=None):
    return LedgerEntry(subject_id=subject,
                       doctor_id=doctor,
                       case_id=case,
                       entry_type=entry_type,
                       amount=Decimal(str(amount)),
                       payment_method=method)


def test_doctor_fold_mixes_cash_and_non_cash():
    entries = [
        # non-cash case: patient pays 4500, 10% commission accrued
        _e(EntryType.TREATMENT_PAYMENT, 4500, subject=PAT, case=1),
        _e(EntryType.COMMISSION_PAYMENT, 450, case=1),
        # cash case: doctor holds the money, owes 100
        _e(EntryType.TREATMENT_PAYMENT, 1000, PaymentMethod.CASH, subject=PAT, case=2),
        _e(EntryType.COMMISSION_PAYMENT, 100, PaymentMethod.CASH, case=2),
        # doctor remits part of the cash commission
        _e(EntryType.COMMISSION_PAYMENT, 40, PaymentMethod.BKASH),
        _e(EntryType.PAYOUT, 1000, PaymentMethod.BANK),
        _e(EntryType.ADJUSTMENT_BONUS, 50),
        _e(EntryType.ADJUSTMENT_DEDUCTION, 20),
        # another doctor's payment must not count
        _e(EntryType.TREATMENT_PAYMENT, 999, subject=PAT, doctor=8, case=3),
    ]
    s = fold_doctor(DOC, entries)

    assert s.grossRevenue == Decimal("4500.00")
    assert s.commission == Decimal("550.00")
    assert s.commissionFromCash == Decimal("100.00")
    assert s.commissionPaidByDoctor == Decimal("40.00")
    assert s.adjustments == Decimal("30.00")
    assert s.netIncome == Decimal("4080.00")
    assert s.totalPaid == Decimal("1000.00")
    assert s.pendingBalance == Decimal("3080.00")
    assert s.commissionDue == Decimal("60.00")


def test_non_cash_refund_reduces_gross():
    entries = [
        _e(EntryType.TREATMENT_PAYMENT, 2000, PaymentMethod.WALLET, subject=PAT, case=1),
        _e(EntryType.COMMISSION_PAYMENT, 200, PaymentMethod.WALLET, case=1),
        _e(EntryType.REFUND, 2000, PaymentMethod.WALLET, subject=PAT, case=1),
        _e(EntryType.ADJUSTMENT_BONUS, 200, case=1),
    ]
    s = fold_doctor(DOC, entries)
    assert s.grossRevenue == Decimal("0.00")
    assert s.netIncome == Decimal("0.00")
    assert s.pendingBalance == Decimal("0.00")


def test_wallet_fold_only_counts_wallet_money():
    entries = [
        _e(EntryType.CREDIT_DEPOSIT, 1000, subject=PAT, doctor=None),
        _e(EntryType.TREATMENT_PAYMENT, 300, PaymentMethod.WALLET, subject=PAT, case=1),
        _e(EntryType.REFUND, 100, PaymentMethod.WALLET, subject=PAT, case=1),
        # gateway money never touches the wallet
        _e(EntryType.TREATMENT_PAYMENT, 700, PaymentMethod.BKASH, subject=PAT, case=2),
        _e(EntryType.REFUND, 50, PaymentMethod.BKASH, subject=PAT, case=2),
    ]
    t = fold_wallet(entries)
    assert t.total_deposit == Decimal("1000.00")
    assert t.total_spent == Decimal("300.00")
    assert t.total_refund == Decimal("100.00")
    assert t.available_balance == Decimal("800.00")


def test_append_rejects_non_positive_amounts(session_factory, users):
    with session_factory() as db:
        with pytest.raises(ValidationError):
            append_entry(db,
                         subject_id=users.patient,
                         entry_type=EntryType.CREDIT_DEPOSIT,
                         amount=0,
                         payment_method=PaymentMethod.BKASH)
        db.rollback()


def test_entries_are_numbered_in_sequence(session_factory, users):
    with session_factory() as db:
        with db.begin():
            a = append_entry(db, subject_id=users.patient, entry_type=EntryType.CREDIT_DEPOSIT,
                             amount=10, payment_method=PaymentMethod.BKASH)
            b = append_entry(db, subject_id=users.patient, entry_type=EntryType.CREDIT_DEPOSIT,
                             amount=20, payment_method=PaymentMethod.BANK)
        assert a.id < b.id
        assert a.entry_number.startswith("TR-")
        assert int(b.entry_number[-6:]) == int(a.entry_number[-6:]) + 1
        assert wallet_totals(db, users.patient).available_balance == Decimal("30.00")


def test_negative_pending_balance_is_an_inconsistency(session_factory, users):
    with session_factory() as db:
        with db.begin():
            append_entry(db,
                         subject_id=users.doctor_a,
                         doctor_id=users.doctor_a,
                         entry_type=EntryType.PAYOUT,
                         amount=500,
                         payment_method=PaymentMethod.BANK)
        with pytest.raises(LedgerInconsistency) as exc:
            doctor_snapshot(db, users.doctor_a)
        assert exc.value.extra["pendingBalance"] == "-500.00"
