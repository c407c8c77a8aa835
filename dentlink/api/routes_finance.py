# FILE: dentlink/api/routes_finance.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from dentlink.api.deps import current_actor, get_coordinator
from dentlink.api.response import ok
from dentlink.core.rbac import Actor
from dentlink.schemas.finance import (
    AdjustmentIn,
    CommissionRemittanceIn,
    DoctorSnapshotOut,
    PayoutIn,
)
from dentlink.services.ledger import DoctorSnapshot
from dentlink.services.settlement import SettlementCoordinator

router = APIRouter(prefix="/finance", tags=["finance"])


def _snap(s: DoctorSnapshot) -> dict:
    return DoctorSnapshotOut(**s.as_dict()).model_dump()


@router.get("/doctors/{doctor_id}/snapshot")
def doctor_snapshot(
        doctor_id: int,
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    return ok(_snap(coordinator.doctor_snapshot(doctor_id, actor)))


@router.post("/doctors/{doctor_id}/payouts")
def record_payout(
        doctor_id: int,
        payload: PayoutIn,
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    snap = coordinator.record_payout(doctor_id,
                                     payload.amount,
                                     payload.method,
                                     actor,
                                     reference_id=payload.reference_id,
                                     notes=payload.notes)
    return ok(_snap(snap), status_code=201)


@router.post("/doctors/{doctor_id}/commission-payments")
def record_commission_payment(
        doctor_id: int,
        payload: CommissionRemittanceIn,
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    snap = coordinator.record_commission_remittance(
        doctor_id,
        payload.amount,
        payload.method,
        actor,
        reference_id=payload.reference_id,
        notes=payload.notes)
    return ok(_snap(snap), status_code=201)


@router.post("/doctors/{doctor_id}/adjustments")
def record_adjustment(
        doctor_id: int,
        payload: AdjustmentIn,
        actor: Actor = Depends(current_actor),
        coordinator: SettlementCoordinator = Depends(get_coordinator),
):
    snap = coordinator.record_adjustment(doctor_id, payload.kind,
                                         payload.amount, payload.notes, actor)
    return ok(_snap(snap), status_code=201)
