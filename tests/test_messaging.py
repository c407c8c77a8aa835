import pytest

from dentlink.core.errors import Forbidden, InvalidState
from dentlink.models.chat_channel import ChatChannel
from dentlink.services.messaging import ensure_channel_allowed


def test_channel_signal_sent_once_after_acceptance(flow, users, coordinator, messaging):
    case_id = flow.assigned_case([users.doctor_a])
    pa = flow.propose(case_id, users.doctor_a, 3000)
    assert messaging.calls == []

    coordinator.choose_proposal(case_id, pa, flow.patient())
    assert messaging.calls == [(case_id, users.patient, users.doctor_a)]

    assert coordinator.dispatch_channel_grants() == 0
    assert len(messaging.calls) == 1


def test_no_signal_when_selection_fails(flow, users, coordinator, messaging, session_factory):
    case_id = flow.assigned_case([users.doctor_a])
    pa = flow.propose(case_id, users.doctor_a, 3000)
    flow.deposit(100)
    with pytest.raises(Exception):
        coordinator.choose_proposal(case_id, pa, flow.patient(), payment="wallet")
    assert messaging.calls == []
    with session_factory() as db:
        assert db.query(ChatChannel).count() == 0


def test_gateway_outage_is_redelivered(flow, users, coordinator, messaging):
    case_id = flow.assigned_case([users.doctor_a])
    pa = flow.propose(case_id, users.doctor_a, 3000)

    messaging.fail = True
    coordinator.choose_proposal(case_id, pa, flow.patient())
    assert messaging.calls == []
    # selection itself went through
    assert flow.case(case_id).chosen_proposal_id == pa

    messaging.fail = False
    assert coordinator.dispatch_channel_grants() == 1
    assert messaging.calls == [(case_id, users.patient, users.doctor_a)]


def test_channel_permission(flow, users, coordinator, session_factory):
    case_id = flow.assigned_case([users.doctor_a, users.doctor_b])
    pa = flow.propose(case_id, users.doctor_a, 3000)

    with session_factory() as db:
        with pytest.raises(InvalidState):
            ensure_channel_allowed(db, case_id, users.patient)

    coordinator.choose_proposal(case_id, pa, flow.patient())
    with session_factory() as db:
        assert ensure_channel_allowed(db, case_id, users.patient).doctor_id == users.doctor_a
        assert ensure_channel_allowed(db, case_id, users.doctor_a).patient_id == users.patient
        with pytest.raises(Forbidden):
            ensure_channel_allowed(db, case_id, users.doctor_b)
