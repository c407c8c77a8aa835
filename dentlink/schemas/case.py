from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Literal

from pydantic import BaseModel, Field, ConfigDict

from dentlink.models.case import CaseStatus, CaseUrgency, PaymentStatus
from dentlink.models.ledger import PaymentMethod
from dentlink.models.payment_capture import CaptureStatus


class CaseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    treatment_needed: Optional[str] = None
    affected_teeth: Optional[List[str]] = None
    urgency: CaseUrgency = CaseUrgency.NORMAL
    images: Optional[List[str]] = None
    save_as_draft: bool = False


class AssignDoctorsIn(BaseModel):
    doctor_ids: List[int] = Field(..., min_length=1)


class CaseCancelIn(BaseModel):
    reason: Optional[str] = None


class CaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    case_number: str
    patient_id: int
    title: str
    description: str
    treatment_needed: Optional[str] = None
    affected_teeth: Optional[List[str]] = None
    urgency: CaseUrgency
    status: CaseStatus
    payment_status: PaymentStatus
    chosen_proposal_id: Optional[int] = None
    images: Optional[List[str]] = None
    assigned_doctor_ids: List[int] = []
    assignment_time: Optional[datetime] = None
    proposal_deadline: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime


class SelectProposalIn(BaseModel):
    proposal_id: int
    # pay in the same transaction; gateway payments go through /capture
    payment_method: Optional[Literal["wallet", "cash"]] = None


class PayCaseIn(BaseModel):
    method: Literal["wallet", "cash"] = "wallet"


class CaptureIn(BaseModel):
    success: bool
    reference_id: str = Field(..., min_length=1, max_length=80)
    amount: Decimal = Field(..., gt=0)
    method: Literal["bkash", "bank"]


class RefundIn(BaseModel):
    reason: Optional[str] = None


class ChannelOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    case_id: int
    patient_id: int
    doctor_id: int
    granted_at: datetime
    dispatched_at: Optional[datetime] = None


class CaptureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    case_id: int
    patient_id: int
    reference_id: str
    amount: Decimal
    payment_method: PaymentMethod
    status: CaptureStatus
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime
    settled_at: Optional[datetime] = None
