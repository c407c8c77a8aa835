from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from dentlink.core.config import settings
from dentlink.models.platform_settings import PlatformSettings
from dentlink.models.user import User
from dentlink.services.activity import log_activity
from dentlink.services.commission import CommissionConfig, validate_config
from dentlink.services.money import money

SETTINGS_ROW_ID = 1


def get_or_create_platform_settings(db: Session) -> PlatformSettings:
    row = db.get(PlatformSettings, SETTINGS_ROW_ID)
    if row:
        return row

    cfg = CommissionConfig.of(settings.DEFAULT_COMMISSION_TYPE,
                              settings.DEFAULT_COMMISSION_RATE)
    validate_config(cfg)

    row = PlatformSettings(
        id=SETTINGS_ROW_ID,
        commission_type=cfg.type,
        commission_rate=cfg.rate,
        monthly_fee=0,
        premium_visibility_fee=0,
    )
    db.add(row)
    db.flush()
    return row


def update_platform_settings(db: Session, payload,
                             user_id: Optional[int]) -> PlatformSettings:
    row = get_or_create_platform_settings(db)
    before = {
        "commission_type": row.commission_type,
        "commission_rate": str(row.commission_rate),
    }

    new_type = payload.commission_type if payload.commission_type is not None else row.commission_type
    new_rate = payload.commission_rate if payload.commission_rate is not None else row.commission_rate
    cfg = CommissionConfig.of(new_type, new_rate)
    validate_config(cfg)

    row.commission_type = cfg.type
    row.commission_rate = cfg.rate
    if payload.monthly_fee is not None:
        row.monthly_fee = money(payload.monthly_fee)
    if payload.premium_visibility_fee is not None:
        row.premium_visibility_fee = money(payload.premium_visibility_fee)
    row.updated_by_id = user_id
    db.flush()

    log_activity(db,
                 "SETTINGS_UPDATED",
                 user_id=user_id,
                 details={
                     "previous": before,
                     "new": {
                         "commission_type": row.commission_type,
                         "commission_rate": str(row.commission_rate),
                     },
                 })
    return row


def commission_config_for_doctor(db: Session,
                                 doctor: User) -> CommissionConfig:
    """
    Doctor override per field, platform default for whatever the doctor left NULL.
    """
    ps = get_or_create_platform_settings(db)
    ctype = doctor.commission_type or ps.commission_type
    rate = doctor.commission_rate if doctor.commission_rate is not None else ps.commission_rate
    return CommissionConfig.of(ctype, rate)
