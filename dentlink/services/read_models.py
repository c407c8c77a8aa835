# FILE: dentlink/services/read_models.py
from __future__ import annotations

from sqlalchemy.orm import Session

from dentlink.core.errors import Forbidden, InvalidState, NotFound
from dentlink.core.rbac import Actor
from dentlink.models.ledger import EntryType, LedgerEntry
from dentlink.models.user import User
from dentlink.schemas.invoice import InvoicePartyOut, InvoiceReadModel
from dentlink.services.commission import compute_settlement
from dentlink.services.money import money
from dentlink.services.proposal_engine import get_case, get_proposal
from dentlink.services.settings_service import commission_config_for_doctor
from dentlink.utils.timezone import now_local


def _party(u: User) -> InvoicePartyOut:
    return InvoicePartyOut(id=u.id, name=u.name, email=u.email)


def invoice_read_model(db: Session, case_id: int,
                       actor: Actor) -> InvoiceReadModel:
    """
    Data for the case invoice / receipt.
    Paid cases report the amounts actually booked in the ledger; unpaid
    ones the split the current commission config would produce.
    """
    case = get_case(db, case_id)
    if not case.chosen_proposal_id:
        raise InvalidState("No proposal has been chosen for this case.")
    p = get_proposal(db, case.chosen_proposal_id)

    if not (actor.is_admin or int(actor.user_id) in (case.patient_id,
                                                     p.doctor_id)):
        raise Forbidden("You cannot view this invoice.")

    patient = db.get(User, case.patient_id)
    doctor = db.get(User, p.doctor_id)
    if not patient or not doctor:
        raise NotFound("Case participants not found")

    cfg = commission_config_for_doctor(db, doctor)
    split = compute_settlement(p.cost, cfg)

    entries = (db.query(LedgerEntry).filter(
        LedgerEntry.case_id == case.id).order_by(LedgerEntry.id.asc()).all())
    payment = next(
        (e for e in entries if e.entry_type == EntryType.TREATMENT_PAYMENT),
        None)
    accrual = next((e for e in entries
                    if e.entry_type == EntryType.COMMISSION_PAYMENT
                    and e.subject_id == p.doctor_id), None)

    cost = money(payment.amount) if payment else split.cost
    if payment:
        commission = money(accrual.amount) if accrual else money(0)
    else:
        commission = split.commission_amount

    return InvoiceReadModel(
        case_id=case.id,
        case_number=case.case_number,
        title=case.title,
        treatment_needed=case.treatment_needed,
        case_status=case.status.value,
        payment_status=case.payment_status.value,
        proposal_id=p.id,
        proposal_number=p.proposal_number,
        details=p.details,
        duration=p.duration,
        accepted_at=p.accepted_at,
        patient=_party(patient),
        doctor=_party(doctor),
        cost=cost,
        commission_type=cfg.type,
        commission_rate=cfg.rate,
        commission_amount=commission,
        doctor_net_income=money(cost - commission),
        payment_method=payment.payment_method.value if payment else None,
        payment_reference=payment.reference_id if payment else None,
        paid_at=payment.date if payment else None,
        issued_at=now_local(),
    )
