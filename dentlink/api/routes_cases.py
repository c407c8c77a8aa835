# FILE: dentlink/api/routes_cases.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dentlink.api.deps import current_actor, get_coordinator, get_db
from dentlink.api.response import ok, ok_list
from dentlink.api.tx import in_transaction
from dentlink.core.rbac import Actor
from dentlink.models.case import CaseStatus
from dentlink.schemas.case import (
    AssignDoctorsIn,
    CaptureIn,
    CaptureOut,
    CaseCancelIn,
    CaseCreate,
    CaseOut,
    ChannelOut,
    PayCaseIn,
    RefundIn,
    SelectProposalIn,
)
from dentlink.schemas.proposal import (
    ComparisonOut,
    ComparisonRowOut,
    ProposalCreate,
    ProposalOut,
)
from dentlink.services import proposal_engine as engine
from dentlink.services.messaging import ensure_channel_allowed
from dentlink.services.payment_gateway import GatewayCapture
from dentlink.services.read_models import invoice_read_model
from dentlink.services.settlement import SettlementCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cases", tags=["cases"])


def _case_out(db: Session, case_id: int) -> dict:
    # fresh read on the request session; coordinator objects are detached
    case = engine.get_case(db, case_id)
    return CaseOut.model_validate(case).model_dump()


@router.get("")
def list_cases(
        status: Optional[CaseStatus] = Query(None),
        limit: int = Query(100, ge=1, le=500),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    rows = engine.list_cases(db, actor, status=status, limit=limit)
    return ok_list([CaseOut.model_validate(x).model_dump() for x in rows],
                   limit=limit)


@router.post("")
def create_case(
        payload: CaseCreate,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    case = in_transaction(db,
                          lambda: engine.submit_case(db, actor, payload),
                          label="submit_case")
    return ok(_case_out(db, case.id), status_code=201)


@router.get("/{case_id}")
def get_case(
        case_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    case = engine.get_case(db, case_id)
    engine.ensure_can_view(actor, case)
    return ok(CaseOut.model_validate(case).model_dump())


@router.post("/{case_id}/submit")
def submit_draft(
        case_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    coordinator.case_command(
        case_id, "submit_draft",
        lambda s: engine.submit_draft(s, actor, case_id))
    return ok(_case_out(db, case_id))


@router.post("/{case_id}/publish")
def publish_case(
        case_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    coordinator.case_command(
        case_id, "publish_case",
        lambda s: engine.publish_case(s, actor, case_id))
    return ok(_case_out(db, case_id))


@router.post("/{case_id}/assign")
def assign_doctors(
        case_id: int,
        payload: AssignDoctorsIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    coordinator.case_command(
        case_id, "assign_doctors",
        lambda s: engine.assign_doctors(s, actor, case_id, payload.doctor_ids))
    return ok(_case_out(db, case_id))


@router.post("/{case_id}/cancel")
def cancel_case(
        case_id: int,
        payload: CaseCancelIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    coordinator.case_command(
        case_id, "cancel_case",
        lambda s: engine.cancel_case(s, actor, case_id, payload.reason))
    return ok(_case_out(db, case_id))


# =========================
# PROPOSALS ON A CASE
# =========================
@router.get("/{case_id}/proposals")
def list_proposals(
        case_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    rows = engine.list_proposals(db, actor, case_id)
    return ok_list([ProposalOut.model_validate(x).model_dump() for x in rows])


@router.post("/{case_id}/proposals")
def submit_proposal(
        case_id: int,
        payload: ProposalCreate,
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    p = coordinator.case_command(
        case_id, "submit_proposal",
        lambda s: engine.submit_proposal(s, actor, case_id, payload))
    return ok(ProposalOut.model_validate(p).model_dump(), status_code=201)


@router.get("/{case_id}/comparison")
def compare_proposals(
        case_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    ranked = engine.compare_proposals(db, actor, case_id)
    out = ComparisonOut(
        case_id=case_id,
        rows=[ComparisonRowOut.model_validate(r) for r in ranked],
    )
    return ok(out.model_dump())


@router.post("/{case_id}/select")
def select_proposal(
        case_id: int,
        payload: SelectProposalIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    _, p = coordinator.choose_proposal(case_id,
                                       payload.proposal_id,
                                       actor,
                                       payment=payload.payment_method)
    return ok({
        "case": _case_out(db, case_id),
        "proposal": ProposalOut.model_validate(p).model_dump(),
    })


# =========================
# MONEY
# =========================
@router.post("/{case_id}/pay")
def pay_for_case(
        case_id: int,
        payload: PayCaseIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    coordinator.pay_for_case(case_id, actor, payload.method)
    return ok(_case_out(db, case_id))


@router.post("/{case_id}/capture")
def record_capture(
        case_id: int,
        payload: CaptureIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    cap = coordinator.record_external_capture(
        case_id, actor,
        GatewayCapture(
            success=payload.success,
            reference_id=payload.reference_id,
            amount=payload.amount,
            method=payload.method,
        ))
    return ok({
        "capture": CaptureOut.model_validate(cap).model_dump(),
        "case": _case_out(db, case_id),
    })


@router.post("/{case_id}/refund")
def refund_case(
        case_id: int,
        payload: RefundIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    coordinator.refund_case(case_id, actor, payload.reason)
    return ok(_case_out(db, case_id))


@router.get("/{case_id}/invoice")
def case_invoice(
        case_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    return ok(invoice_read_model(db, case_id, actor).model_dump())


@router.get("/{case_id}/channel")
def case_channel(
        case_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    ch = ensure_channel_allowed(db, case_id, actor.user_id)
    return ok(ChannelOut.model_validate(ch).model_dump())
