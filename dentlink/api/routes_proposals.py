# FILE: dentlink/api/routes_proposals.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from dentlink.api.deps import current_actor, get_coordinator
from dentlink.api.response import ok
from dentlink.core.rbac import Actor
from dentlink.schemas.proposal import ProposalOut, ProposalUpdate
from dentlink.services import proposal_engine as engine
from dentlink.services.settlement import SettlementCoordinator

router = APIRouter(prefix="/proposals", tags=["proposals"])


@router.patch("/{proposal_id}")
def edit_proposal(
        proposal_id: int,
        payload: ProposalUpdate,
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    p = coordinator.proposal_command(
        proposal_id, "edit_proposal",
        lambda s: engine.edit_proposal(s, actor, proposal_id, payload))
    return ok(ProposalOut.model_validate(p).model_dump())


@router.delete("/{proposal_id}")
def delete_proposal(
        proposal_id: int,
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    pid = coordinator.proposal_command(
        proposal_id, "delete_proposal",
        lambda s: engine.delete_proposal(s, actor, proposal_id))
    return ok({"id": pid, "deleted": True})


@router.post("/{proposal_id}/withdraw")
def withdraw_proposal(
        proposal_id: int,
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    p = coordinator.proposal_command(
        proposal_id, "withdraw_proposal",
        lambda s: engine.withdraw_proposal(s, actor, proposal_id))
    return ok(ProposalOut.model_validate(p).model_dump())


@router.post("/{proposal_id}/start")
def start_treatment(
        proposal_id: int,
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    p = coordinator.proposal_command(
        proposal_id, "start_treatment",
        lambda s: engine.start_treatment(s, actor, proposal_id))
    return ok(ProposalOut.model_validate(p).model_dump())


@router.post("/{proposal_id}/complete")
def complete_treatment(
        proposal_id: int,
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    p = coordinator.proposal_command(
        proposal_id, "complete_treatment",
        lambda s: engine.complete_treatment(s, actor, proposal_id))
    return ok(ProposalOut.model_validate(p).model_dump())
