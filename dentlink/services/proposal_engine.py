# FILE: dentlink/services/proposal_engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from dentlink.core.config import settings
from dentlink.core.errors import (
    Forbidden,
    InvalidState,
    NotFound,
    ValidationError,
)
from dentlink.core.rbac import (
    Actor,
    Role,
    require_admin,
    require_role,
    require_self_or_admin,
)
from dentlink.models.case import (
    SELECTABLE_STATUSES,
    CaseAssignment,
    CaseStatus,
    CaseUrgency,
    DentalCase,
    PaymentStatus,
)
from dentlink.models.proposal import Proposal, ProposalStatus
from dentlink.models.user import User, UserRole
from dentlink.services.activity import log_activity
from dentlink.services.commission import compute_settlement
from dentlink.services.messaging import grant_channel
from dentlink.services.money import money
from dentlink.services.numbering import next_doc_number
from dentlink.services.settings_service import commission_config_for_doctor
from dentlink.utils.timezone import now_db

logger = logging.getLogger(__name__)

ASSIGNABLE_STATUSES = (
    CaseStatus.PENDING_REVIEW,
    CaseStatus.OPEN,
    CaseStatus.ASSIGNED,
)

# after acceptance a cancellation is a refund (settlement coordinator)
CANCELLABLE_STATUSES = (
    CaseStatus.DRAFT,
    CaseStatus.PENDING_REVIEW,
    CaseStatus.OPEN,
    CaseStatus.ASSIGNED,
)


# ---------------- loaders ----------------
def get_case(db: Session,
             case_id: int,
             *,
             for_update: bool = False) -> DentalCase:
    q = db.query(DentalCase).filter(DentalCase.id == case_id)
    if for_update:
        q = q.with_for_update()
    case = q.first()
    if not case:
        raise NotFound("Case not found")
    return case


def get_proposal(db: Session,
                 proposal_id: int,
                 *,
                 for_update: bool = False) -> Proposal:
    q = db.query(Proposal).filter(Proposal.id == proposal_id)
    if for_update:
        q = q.with_for_update()
    p = q.first()
    if not p:
        raise NotFound("Proposal not found")
    return p


def _doctor(db: Session, doctor_id: int) -> Optional[User]:
    u = db.get(User, doctor_id)
    if not u or u.role != UserRole.DOCTOR or not u.is_active:
        return None
    return u


def settlement_split(db: Session, p: Proposal):
    """Commission split of a proposal under its doctor's current config."""
    doctor = db.get(User, p.doctor_id)
    return compute_settlement(p.cost, commission_config_for_doctor(db, doctor))


def _require_proposal_owner_or_admin(actor: Actor, p: Proposal) -> None:
    if actor.is_admin:
        return
    if actor.is_doctor and int(p.doctor_id) == int(actor.user_id):
        return
    raise Forbidden("You can only act on your own proposals.")


def can_view_case(actor: Actor, case: DentalCase) -> bool:
    if actor.is_admin:
        return True
    if actor.is_patient:
        return int(case.patient_id) == int(actor.user_id)
    if actor.is_doctor:
        return (case.status == CaseStatus.OPEN
                or int(actor.user_id) in case.assigned_doctor_ids)
    return False


def ensure_can_view(actor: Actor, case: DentalCase) -> None:
    if not can_view_case(actor, case):
        raise Forbidden("You cannot view this case.")


def list_cases(db: Session,
               actor: Actor,
               *,
               status: Optional[CaseStatus] = None,
               limit: int = 100) -> List[DentalCase]:
    q = db.query(DentalCase)
    if actor.is_patient:
        q = q.filter(DentalCase.patient_id == actor.user_id)
    elif actor.is_doctor:
        assigned = select(CaseAssignment.case_id).where(
            CaseAssignment.doctor_id == actor.user_id)
        q = q.filter(
            or_(DentalCase.id.in_(assigned),
                DentalCase.status == CaseStatus.OPEN))
    elif not actor.is_admin:
        return []
    if status is not None:
        q = q.filter(DentalCase.status == status)
    return q.order_by(DentalCase.id.desc()).limit(limit).all()


def list_proposals(db: Session, actor: Actor,
                   case_id: int) -> List[Proposal]:
    case = get_case(db, case_id)
    ensure_can_view(actor, case)
    rows = list(case.proposals)
    if actor.is_doctor:
        # doctors never see competing prices
        rows = [p for p in rows if int(p.doctor_id) == int(actor.user_id)]
    return rows


# ---------------- case lifecycle ----------------
def submit_case(db: Session, actor: Actor, payload) -> DentalCase:
    require_role(actor, [Role.PATIENT],
                 message="Only patients can submit cases")
    patient = db.get(User, actor.user_id)
    if not patient or patient.role != UserRole.PATIENT:
        raise NotFound("Patient not found")

    title = (payload.title or "").strip()
    if not title:
        raise ValidationError("Title is required")

    status = CaseStatus.DRAFT if payload.save_as_draft else CaseStatus.PENDING_REVIEW
    case = DentalCase(
        case_number=next_doc_number(db, "CASE"),
        patient_id=patient.id,
        title=title,
        description=payload.description or "",
        treatment_needed=payload.treatment_needed,
        affected_teeth=payload.affected_teeth or [],
        urgency=CaseUrgency(payload.urgency),
        status=status,
        payment_status=PaymentStatus.UNPAID,
        images=payload.images or [],
    )
    db.add(case)
    db.flush()

    log_activity(db,
                 "CASE_DRAFTED" if payload.save_as_draft else "CASE_SUBMITTED",
                 user_id=actor.user_id,
                 details={
                     "case_id": case.id,
                     "case_number": case.case_number
                 })
    return case


def submit_draft(db: Session, actor: Actor, case_id: int) -> DentalCase:
    case = get_case(db, case_id, for_update=True)
    require_self_or_admin(actor, case.patient_id)
    if case.status != CaseStatus.DRAFT:
        raise InvalidState("Only DRAFT cases can be submitted.")
    case.status = CaseStatus.PENDING_REVIEW
    db.flush()
    log_activity(db,
                 "CASE_SUBMITTED",
                 user_id=actor.user_id,
                 details={"case_id": case.id})
    return case


def publish_case(db: Session, actor: Actor, case_id: int) -> DentalCase:
    """Admin review done: every doctor can now see and propose on the case."""
    require_admin(actor)
    case = get_case(db, case_id, for_update=True)
    if case.status != CaseStatus.PENDING_REVIEW:
        raise InvalidState("Only cases pending review can be published.")
    case.status = CaseStatus.OPEN
    db.flush()
    log_activity(db,
                 "CASE_PUBLISHED",
                 user_id=actor.user_id,
                 details={"case_id": case.id})
    return case


def assign_doctors(db: Session, actor: Actor, case_id: int,
                   doctor_ids) -> DentalCase:
    require_admin(actor)
    ids = sorted({int(x) for x in (doctor_ids or [])})
    if not ids:
        raise ValidationError("At least one doctor must be assigned.")

    case = get_case(db, case_id, for_update=True)
    if case.status not in ASSIGNABLE_STATUSES:
        raise InvalidState(
            f"Cannot assign doctors to a case in status '{case.status.value}'.")

    for d in ids:
        if not _doctor(db, d):
            raise ValidationError(f"User {d} is not an active doctor.")

    live = {
        p.doctor_id
        for p in case.proposals if p.status == ProposalStatus.PENDING
    }
    removed = set(case.assigned_doctor_ids) - set(ids)
    blocked = sorted(removed & live)
    if blocked:
        raise InvalidState(
            "Doctors with a pending proposal cannot be unassigned.",
            extra={"doctor_ids": blocked})

    for a in list(case.assignments):
        if a.doctor_id in removed:
            case.assignments.remove(a)
    existing = {a.doctor_id for a in case.assignments}
    for d in ids:
        if d not in existing:
            case.assignments.append(CaseAssignment(doctor_id=d))

    now = now_db()
    case.assignment_time = now
    case.proposal_deadline = now + timedelta(
        hours=settings.PROPOSAL_DEADLINE_HOURS)
    case.status = CaseStatus.ASSIGNED
    db.flush()

    log_activity(db,
                 "CASE_ASSIGNED",
                 user_id=actor.user_id,
                 details={
                     "case_id": case.id,
                     "doctor_ids": ids,
                     "removed": sorted(removed),
                 })
    return case


def cancel_case(db: Session,
                actor: Actor,
                case_id: int,
                reason: Optional[str] = None) -> DentalCase:
    case = get_case(db, case_id, for_update=True)
    require_self_or_admin(actor, case.patient_id)
    if case.status not in CANCELLABLE_STATUSES:
        raise InvalidState(
            "Case can only be cancelled before a proposal is accepted; "
            "accepted cases are refunded instead.")

    cancelled = []
    for p in case.proposals:
        if p.status == ProposalStatus.PENDING:
            p.status = ProposalStatus.CANCELLED
            cancelled.append(p.id)
    case.status = CaseStatus.CANCELLED
    db.flush()

    log_activity(db,
                 "CASE_CANCELLED",
                 user_id=actor.user_id,
                 details={
                     "case_id": case.id,
                     "reason": reason,
                     "cancelled_proposals": cancelled
                 })
    return case


# ---------------- proposals ----------------
def submit_proposal(db: Session, actor: Actor, case_id: int,
                    payload) -> Proposal:
    require_role(actor, [Role.DOCTOR],
                 message="Only doctors can submit proposals")
    doctor = _doctor(db, actor.user_id)
    if not doctor:
        raise NotFound("Doctor not found")

    case = get_case(db, case_id, for_update=True)
    if case.status not in SELECTABLE_STATUSES:
        raise InvalidState("Case is not accepting proposals.")

    assigned = set(case.assigned_doctor_ids)
    if case.status == CaseStatus.ASSIGNED and doctor.id not in assigned:
        raise Forbidden("You are not assigned to this case.")

    if any(p.doctor_id == doctor.id and p.status == ProposalStatus.PENDING
           for p in case.proposals):
        raise InvalidState(
            "You already have a pending proposal on this case; edit it instead.")

    cost = money(payload.cost)
    if cost <= 0:
        raise ValidationError("Cost must be > 0")

    first = len(case.proposals) == 0

    if doctor.id not in assigned:
        case.assignments.append(CaseAssignment(doctor_id=doctor.id))

    p = Proposal(
        proposal_number=next_doc_number(db, "PROPOSAL"),
        doctor_id=doctor.id,
        doctor_name=doctor.name,
        cost=cost,
        details=payload.details or "",
        notes=payload.notes,
        duration=payload.duration,
        status=ProposalStatus.PENDING,
    )
    case.proposals.append(p)

    if first and case.status != CaseStatus.ASSIGNED:
        case.status = CaseStatus.ASSIGNED
        if case.assignment_time is None:
            now = now_db()
            case.assignment_time = now
            case.proposal_deadline = now + timedelta(
                hours=settings.PROPOSAL_DEADLINE_HOURS)
    db.flush()

    log_activity(db,
                 "PROPOSAL_SUBMITTED",
                 user_id=actor.user_id,
                 details={
                     "case_id": case.id,
                     "proposal_id": p.id,
                     "cost": str(cost)
                 })
    return p


def edit_proposal(db: Session, actor: Actor, proposal_id: int,
                  payload) -> Proposal:
    p = get_proposal(db, proposal_id, for_update=True)
    _require_proposal_owner_or_admin(actor, p)
    if p.status != ProposalStatus.PENDING:
        raise InvalidState("Only pending proposals can be edited.")

    changes = {}
    if payload.cost is not None:
        new_cost = money(payload.cost)
        if new_cost <= 0:
            raise ValidationError("Cost must be > 0")
        if new_cost != money(p.cost):
            p.previous_cost = p.cost
            p.cost = new_cost
            changes["cost"] = str(new_cost)
    if payload.details is not None and payload.details != p.details:
        p.details = payload.details
        changes["details"] = True
    if payload.notes is not None and payload.notes != p.notes:
        p.notes = payload.notes
        changes["notes"] = True
    if payload.duration is not None and payload.duration != p.duration:
        p.duration = payload.duration
        changes["duration"] = payload.duration

    if not changes:
        return p

    db.flush()
    log_activity(db,
                 "PROPOSAL_UPDATED",
                 user_id=actor.user_id,
                 details={
                     "proposal_id": p.id,
                     "changes": changes
                 })
    return p


def withdraw_proposal(db: Session, actor: Actor,
                      proposal_id: int) -> Proposal:
    p = get_proposal(db, proposal_id, for_update=True)
    if not (actor.is_doctor and int(p.doctor_id) == int(actor.user_id)):
        raise Forbidden("Only the proposing doctor can withdraw a proposal.")
    if p.status != ProposalStatus.PENDING:
        raise InvalidState("Only pending proposals can be withdrawn.")
    p.status = ProposalStatus.CANCELLED
    db.flush()
    log_activity(db,
                 "PROPOSAL_WITHDRAWN",
                 user_id=actor.user_id,
                 details={
                     "proposal_id": p.id,
                     "case_id": p.case_id
                 })
    return p


def delete_proposal(db: Session, actor: Actor, proposal_id: int) -> int:
    p = get_proposal(db, proposal_id, for_update=True)
    _require_proposal_owner_or_admin(actor, p)
    if p.status != ProposalStatus.PENDING:
        raise InvalidState(
            f"Cannot delete a proposal in status '{p.status.value}'.")
    pid, case_id = p.id, p.case_id
    db.delete(p)
    db.flush()
    log_activity(db,
                 "PROPOSAL_DELETED",
                 user_id=actor.user_id,
                 details={
                     "proposal_id": pid,
                     "case_id": case_id
                 })
    return pid


def select_proposal(db: Session, actor: Actor, case_id: int,
                    proposal_id: int) -> Tuple[DentalCase, Proposal]:
    """
    Patient accepts one proposal. In the caller's transaction:
      chosen -> accepted, every other pending sibling -> rejected,
      case -> in_progress (completed if already paid), chat channel granted.
    Any failure leaves everything as it was (caller rolls back).
    """
    case = get_case(db, case_id, for_update=True)
    require_self_or_admin(actor,
                          case.patient_id,
                          message="Only the case owner can choose a proposal.")
    if case.status not in SELECTABLE_STATUSES:
        raise InvalidState(
            f"Cannot choose a proposal on a case in status '{case.status.value}'.")

    p = (db.query(Proposal).filter(
        Proposal.id == proposal_id,
        Proposal.case_id == case.id).with_for_update().first())
    if not p:
        raise NotFound("Proposal not found for this case")
    if p.status != ProposalStatus.PENDING:
        raise InvalidState(
            f"Proposal is '{p.status.value}', only pending proposals can be chosen.")

    # a split that cannot be computed now would block every later payment
    settlement_split(db, p)

    rejected = []
    for sib in case.proposals:
        if sib.id != p.id and sib.status == ProposalStatus.PENDING:
            sib.status = ProposalStatus.REJECTED
            rejected.append(sib.id)

    p.status = ProposalStatus.ACCEPTED
    p.accepted_at = now_db()

    case.chosen_proposal_id = p.id
    if case.payment_status == PaymentStatus.PAID:
        case.status = CaseStatus.COMPLETED
    else:
        case.status = CaseStatus.IN_PROGRESS
    db.flush()

    grant_channel(db, case, p)

    log_activity(db,
                 "PROPOSAL_ACCEPTED",
                 user_id=actor.user_id,
                 details={
                     "case_id": case.id,
                     "proposal_id": p.id,
                     "doctor_id": p.doctor_id,
                     "rejected": rejected
                 })
    return case, p


def start_treatment(db: Session, actor: Actor, proposal_id: int) -> Proposal:
    p = get_proposal(db, proposal_id, for_update=True)
    _require_proposal_owner_or_admin(actor, p)
    if p.status != ProposalStatus.ACCEPTED:
        raise InvalidState("Only accepted proposals can be started.")
    p.status = ProposalStatus.IN_PROGRESS
    db.flush()
    log_activity(db,
                 "TREATMENT_STARTED",
                 user_id=actor.user_id,
                 details={
                     "proposal_id": p.id,
                     "case_id": p.case_id
                 })
    return p


def complete_treatment(db: Session, actor: Actor,
                       proposal_id: int) -> Proposal:
    p = get_proposal(db, proposal_id, for_update=True)
    _require_proposal_owner_or_admin(actor, p)
    if p.status != ProposalStatus.IN_PROGRESS:
        raise InvalidState("Only treatments in progress can be completed.")

    case = get_case(db, p.case_id, for_update=True)
    p.status = ProposalStatus.COMPLETED
    # an unpaid case stays in_progress until the payment settles
    if case.payment_status == PaymentStatus.PAID:
        case.status = CaseStatus.COMPLETED
    db.flush()

    log_activity(db,
                 "TREATMENT_COMPLETED",
                 user_id=actor.user_id,
                 details={
                     "proposal_id": p.id,
                     "case_id": case.id,
                     "case_status": case.status.value
                 })
    return p


# ---------------- comparison ----------------
@dataclass
class RankedProposal:
    rank: int
    proposal: Proposal
    doctor_rating: Optional[Decimal]
    doctor_experience_years: Optional[int]
    is_best_price: bool = False
    is_best_rating: bool = False
    is_best_experience: bool = False


def _rank_key(p: Proposal):
    doc = p.doctor
    rating = Decimal(str(doc.rating)) if doc and doc.rating is not None else Decimal("0")
    exp = int(doc.experience_years or 0) if doc else 0
    return (money(p.cost), -rating, -exp, p.created_at, p.id)


def compare_proposals(db: Session, actor: Actor,
                      case_id: int) -> List[RankedProposal]:
    """
    Pending proposals of a case, cheapest first; then higher rated doctor,
    then more experienced, then whoever proposed first. Read only.
    """
    case = get_case(db, case_id)
    require_self_or_admin(actor, case.patient_id)

    pending = [p for p in case.proposals if p.status == ProposalStatus.PENDING]
    pending.sort(key=_rank_key)
    if not pending:
        return []

    best_price = min(money(p.cost) for p in pending)
    ratings = [p.doctor.rating for p in pending
               if p.doctor and p.doctor.rating is not None]
    exps = [p.doctor.experience_years for p in pending
            if p.doctor and p.doctor.experience_years is not None]
    best_rating = max(ratings) if ratings else None
    best_exp = max(exps) if exps else None

    out = []
    for i, p in enumerate(pending, start=1):
        rating = p.doctor.rating if p.doctor else None
        exp = p.doctor.experience_years if p.doctor else None
        out.append(
            RankedProposal(
                rank=i,
                proposal=p,
                doctor_rating=rating,
                doctor_experience_years=exp,
                is_best_price=money(p.cost) == best_price,
                is_best_rating=best_rating is not None and rating == best_rating,
                is_best_experience=best_exp is not None and exp == best_exp,
            ))
    return out
