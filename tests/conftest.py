import os

# must be set before dentlink.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SETTLEMENT_RETRY_INTERVAL_SECONDS"] = "0"
os.environ["DEFAULT_COMMISSION_TYPE"] = "percentage"
os.environ["DEFAULT_COMMISSION_RATE"] = "10"
os.environ["MESSAGING_ENABLED"] = "true"

from types import SimpleNamespace

import pytest

from dentlink.core.rbac import Actor, Role
from dentlink.db.init_db import create_schema
from dentlink.db.session import make_engine, make_session_factory
from dentlink.models.user import User, UserRole
from dentlink.schemas.case import CaseCreate
from dentlink.schemas.proposal import ProposalCreate
from dentlink.services import proposal_engine as engine
from dentlink.services import wallet
from dentlink.services.settings_service import get_or_create_platform_settings
from dentlink.services.settlement import SettlementCoordinator


class RecordingMessaging:

    def __init__(self):
        self.calls = []
        self.fail = False

    def notify_channel_opened(self, case_id, patient_id, doctor_id):
        if self.fail:
            raise ConnectionError("chat service down")
        self.calls.append((case_id, patient_id, doctor_id))


@pytest.fixture
def db_engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'dentlink.db'}")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def users(session_factory):
    with session_factory() as db:
        with db.begin():
            rows = {
                "patient": User(name="Rahim Uddin", email="rahim@example.com", role=UserRole.PATIENT),
                "patient2": User(name="Nusrat Jahan", email="nusrat@example.com", role=UserRole.PATIENT),
                "doctor_a": User(name="Dr. Karim", email="karim@example.com", role=UserRole.DOCTOR,
                                 rating="4.80", experience_years=12),
                "doctor_b": User(name="Dr. Sultana", email="sultana@example.com", role=UserRole.DOCTOR,
                                 rating="4.50", experience_years=8),
                "doctor_c": User(name="Dr. Hasan", email="hasan@example.com", role=UserRole.DOCTOR,
                                 rating="4.90", experience_years=3),
                "admin": User(name="Admin", email="admin@example.com", role=UserRole.ADMIN),
            }
            db.add_all(rows.values())
            db.flush()
            get_or_create_platform_settings(db)
            return SimpleNamespace(**{k: v.id for k, v in rows.items()})


@pytest.fixture
def messaging():
    return RecordingMessaging()


@pytest.fixture
def coordinator(session_factory, messaging):
    return SettlementCoordinator(session_factory, messaging=messaging)


class Flow:
    """Shortcuts for driving a case to a given point."""

    def __init__(self, sf, coordinator, users):
        self.sf = sf
        self.coordinator = coordinator
        self.users = users
        self.admin = Actor(users.admin, Role.ADMIN)

    def patient(self, user_id=None):
        return Actor(user_id or self.users.patient, Role.PATIENT)

    def doctor(self, user_id):
        return Actor(user_id, Role.DOCTOR)

    def tx(self, fn):
        with self.sf() as db:
            with db.begin():
                return fn(db)

    def new_case(self, patient_id=None, *, draft=False, title="Molar pain"):
        actor = self.patient(patient_id)
        payload = CaseCreate(title=title,
                             description="Lower left molar hurts",
                             treatment_needed="root canal",
                             affected_teeth=["36"],
                             save_as_draft=draft)
        return self.tx(lambda db: engine.submit_case(db, actor, payload).id)

    def assigned_case(self, doctor_ids, patient_id=None, title="Molar pain"):
        case_id = self.new_case(patient_id, title=title)
        self.coordinator.case_command(
            case_id, "assign",
            lambda db: engine.assign_doctors(db, self.admin, case_id, doctor_ids))
        return case_id

    def open_case(self, patient_id=None):
        case_id = self.new_case(patient_id)
        self.coordinator.case_command(
            case_id, "publish",
            lambda db: engine.publish_case(db, self.admin, case_id))
        return case_id

    def propose(self, case_id, doctor_id, cost, details="Root canal + crown"):
        payload = ProposalCreate(cost=cost, details=details, duration="2 weeks")
        return self.coordinator.case_command(
            case_id, "propose",
            lambda db: engine.submit_proposal(db, self.doctor(doctor_id), case_id, payload).id)

    def deposit(self, amount, patient_id=None, method="bkash"):
        pid = patient_id or self.users.patient
        return self.tx(lambda db: wallet.deposit(db, patient_id=pid, amount=amount, method=method))

    def case(self, case_id):
        with self.sf() as db:
            c = engine.get_case(db, case_id)
            return SimpleNamespace(
                status=c.status,
                payment_status=c.payment_status,
                chosen_proposal_id=c.chosen_proposal_id,
                assigned_doctor_ids=c.assigned_doctor_ids,
                assignment_time=c.assignment_time,
                proposal_deadline=c.proposal_deadline,
                case_number=c.case_number,
                proposals={p.id: p.status for p in c.proposals},
            )


@pytest.fixture
def flow(session_factory, coordinator, users):
    return Flow(session_factory, coordinator, users)
