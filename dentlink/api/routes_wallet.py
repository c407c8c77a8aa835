# FILE: dentlink/api/routes_wallet.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dentlink.api.deps import current_actor, get_db
from dentlink.api.response import ok
from dentlink.api.tx import in_transaction
from dentlink.core.errors import ValidationError
from dentlink.core.locks import patient_lock
from dentlink.core.rbac import Actor, require_role, require_self_or_admin, Role
from dentlink.schemas.wallet import (
    LedgerEntryOut,
    WalletBalanceOut,
    WalletDepositIn,
    WalletSummaryOut,
)
from dentlink.services import wallet

router = APIRouter(prefix="/wallet", tags=["wallet"])


def _target_patient(actor: Actor, patient_id: Optional[int]) -> int:
    if actor.is_patient:
        require_self_or_admin(actor, patient_id or actor.user_id)
        return actor.user_id
    require_role(actor, [Role.ADMIN], message="Only patients and admins use wallets")
    if not patient_id:
        raise ValidationError("patient_id is required")
    return int(patient_id)


@router.post("/deposit")
def deposit(
        payload: WalletDepositIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    patient_id = _target_patient(actor, payload.patient_id)
    with patient_lock(patient_id):
        balance = in_transaction(
            db,
            lambda: wallet.deposit(
                db,
                patient_id=patient_id,
                amount=payload.amount,
                method=payload.method,
                idempotency_key=payload.idempotency_key,
                reference_id=payload.reference_id,
                notes=payload.notes,
                created_by=actor.user_id,
            ),
            label="wallet_deposit")
    out = WalletBalanceOut(patient_id=patient_id, available_balance=balance)
    return ok(out.model_dump(), status_code=201)


@router.get("/summary")
def summary(
        patient_id: Optional[int] = Query(None),
        limit: int = Query(20, ge=1, le=200),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    pid = _target_patient(actor, patient_id)
    data = wallet.wallet_summary(db, pid, limit=limit)
    data["recent_entries"] = [
        LedgerEntryOut.model_validate(e) for e in data["recent_entries"]
    ]
    return ok(WalletSummaryOut(**data).model_dump())
