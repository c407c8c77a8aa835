# FILE: dentlink/api/routes_settings.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dentlink.api.deps import current_actor, get_db
from dentlink.api.response import ok
from dentlink.api.tx import in_transaction
from dentlink.core.rbac import Actor, require_admin
from dentlink.schemas.settings import PlatformSettingsOut, PlatformSettingsUpdate
from dentlink.services.settings_service import (
    get_or_create_platform_settings,
    update_platform_settings,
)

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("")
def read_settings(
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    row = in_transaction(db,
                         lambda: get_or_create_platform_settings(db),
                         label="read_settings")
    return ok(PlatformSettingsOut.model_validate(row).model_dump())


@router.put("")
def write_settings(
        payload: PlatformSettingsUpdate,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    require_admin(actor)
    row = in_transaction(
        db,
        lambda: update_platform_settings(db, payload, actor.user_id),
        label="update_settings")
    return ok(PlatformSettingsOut.model_validate(row).model_dump())
