from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, Field, ConfigDict

from dentlink.models.proposal import ProposalStatus


class ProposalCreate(BaseModel):
    cost: Decimal = Field(..., gt=0)
    details: str = Field(..., min_length=1)
    notes: Optional[str] = None
    duration: Optional[str] = Field(None, max_length=64)


class ProposalUpdate(BaseModel):
    cost: Optional[Decimal] = Field(None, gt=0)
    details: Optional[str] = None
    notes: Optional[str] = None
    duration: Optional[str] = Field(None, max_length=64)


class ProposalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    proposal_number: str
    case_id: int
    doctor_id: int
    doctor_name: str
    cost: Decimal
    previous_cost: Optional[Decimal] = None
    details: str
    notes: Optional[str] = None
    duration: Optional[str] = None
    status: ProposalStatus
    version: int
    created_at: datetime
    updated_at: datetime
    accepted_at: Optional[datetime] = None


class ComparisonRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    proposal: ProposalOut
    doctor_rating: Optional[Decimal] = None
    doctor_experience_years: Optional[int] = None
    is_best_price: bool = False
    is_best_rating: bool = False
    is_best_experience: bool = False


class ComparisonOut(BaseModel):
    case_id: int
    rows: List[ComparisonRowOut] = []
