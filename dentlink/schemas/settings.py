from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Literal

from pydantic import BaseModel, Field, ConfigDict


class PlatformSettingsUpdate(BaseModel):
    commission_type: Optional[Literal["fixed", "percentage"]] = None
    commission_rate: Optional[Decimal] = None
    monthly_fee: Optional[Decimal] = Field(None, ge=0)
    premium_visibility_fee: Optional[Decimal] = Field(None, ge=0)


class PlatformSettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    commission_type: str
    commission_rate: Decimal
    monthly_fee: Decimal
    premium_visibility_fee: Decimal
    updated_at: Optional[datetime] = None
    updated_by_id: Optional[int] = None
