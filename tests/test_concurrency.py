import threading
from decimal import Decimal

import pytest

from dentlink.core.errors import Conflict, InsufficientFunds, InvalidState
from dentlink.core.locks import KeyedLocks
from dentlink.core.retry import run_with_conflict_retry
from dentlink.models.case import CaseStatus
from dentlink.models.ledger import EntryType, LedgerEntry
from dentlink.models.proposal import ProposalStatus


def _race(*targets):
    """Start every target at the same moment; collect result or exception per target."""
    barrier = threading.Barrier(len(targets))
    results = [None] * len(targets)

    def runner(i, fn):
        barrier.wait()
        try:
            results[i] = fn()
        except Exception as e:  # collected for the assertions
            results[i] = e

    threads = [threading.Thread(target=runner, args=(i, fn)) for i, fn in enumerate(targets)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def test_simultaneous_selection_single_winner(flow, users, coordinator):
    case_id = flow.assigned_case([users.doctor_a, users.doctor_b])
    pa = flow.propose(case_id, users.doctor_a, 5000)
    pb = flow.propose(case_id, users.doctor_b, 4500)

    results = _race(
        lambda: coordinator.choose_proposal(case_id, pa, flow.patient()),
        lambda: coordinator.choose_proposal(case_id, pb, flow.patient()),
    )
    wins = [r for r in results if isinstance(r, tuple)]
    losses = [r for r in results if isinstance(r, (InvalidState, Conflict))]
    assert len(wins) == 1
    assert len(losses) == 1

    c = flow.case(case_id)
    assert c.status == CaseStatus.IN_PROGRESS
    accepted = [pid for pid, st in c.proposals.items() if st == ProposalStatus.ACCEPTED]
    assert accepted == [c.chosen_proposal_id]
    assert sorted(c.proposals.values()) == sorted([ProposalStatus.ACCEPTED, ProposalStatus.REJECTED])


def test_concurrent_wallet_spends_never_overdraw(flow, users, coordinator, session_factory):
    case_1 = flow.assigned_case([users.doctor_a], title="Upper incisor")
    case_2 = flow.assigned_case([users.doctor_b], title="Wisdom tooth")
    p1 = flow.propose(case_1, users.doctor_a, 4500)
    p2 = flow.propose(case_2, users.doctor_b, 4500)
    flow.deposit(5000)

    results = _race(
        lambda: coordinator.choose_proposal(case_1, p1, flow.patient(), payment="wallet"),
        lambda: coordinator.choose_proposal(case_2, p2, flow.patient(), payment="wallet"),
    )
    assert len([r for r in results if isinstance(r, tuple)]) == 1
    assert len([r for r in results if isinstance(r, InsufficientFunds)]) == 1

    with session_factory() as db:
        spent = (db.query(LedgerEntry).filter(
            LedgerEntry.subject_id == users.patient,
            LedgerEntry.entry_type == EntryType.TREATMENT_PAYMENT).count())
        assert spent == 1


def test_concurrent_payouts_respect_pending_balance(flow, users, coordinator):
    case_id = flow.assigned_case([users.doctor_a])
    pa = flow.propose(case_id, users.doctor_a, 1000)
    flow.deposit(1000)
    coordinator.choose_proposal(case_id, pa, flow.patient(), payment="wallet")

    results = _race(
        lambda: coordinator.record_payout(users.doctor_a, 600, "bank", flow.admin),
        lambda: coordinator.record_payout(users.doctor_a, 600, "bank", flow.admin),
    )
    assert len([r for r in results if isinstance(r, InsufficientFunds)]) == 1
    assert coordinator.doctor_snapshot(users.doctor_a).pendingBalance == Decimal("300.00")


def test_conflicts_are_retried_then_surfaced():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise Conflict("lost a race")
        return "done"

    assert run_with_conflict_retry(flaky, attempts=3, backoff=0) == "done"
    assert len(calls) == 3

    def always():
        raise Conflict("still losing")

    with pytest.raises(Conflict):
        run_with_conflict_retry(always, attempts=2, backoff=0)


def test_keyed_locks_are_dropped_once_released():
    locks = KeyedLocks()
    for case_id in range(200):
        with locks.hold(("case", case_id)):
            assert len(locks) == 1
    assert len(locks) == 0

    with locks.hold(("case", 1), ("patient", 7)):
        with locks.hold(("case", 1)):
            assert len(locks) == 2
        assert len(locks) == 2
    assert len(locks) == 0


def test_keyed_lock_survives_while_another_thread_waits():
    locks = KeyedLocks()
    entered = threading.Event()
    release = threading.Event()
    order = []

    def first():
        with locks.hold("k"):
            entered.set()
            release.wait(timeout=10)
            order.append("first")

    def second():
        entered.wait(timeout=10)
        with locks.hold("k"):
            order.append("second")

    t1 = threading.Thread(target=first)
    t2 = threading.Thread(target=second)
    t1.start()
    t2.start()
    entered.wait(timeout=10)
    release.set()
    t1.join(timeout=10)
    t2.join(timeout=10)

    assert order == ["first", "second"]
    assert len(locks) == 0
