from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class InvoicePartyOut(BaseModel):
    id: int
    name: str
    email: str


class InvoiceReadModel(BaseModel):
    """Everything a PDF/print renderer needs for one case; no rendering here."""
    case_id: int
    case_number: str
    title: str
    treatment_needed: Optional[str] = None
    case_status: str
    payment_status: str

    proposal_id: int
    proposal_number: str
    details: str
    duration: Optional[str] = None
    accepted_at: Optional[datetime] = None

    patient: InvoicePartyOut
    doctor: InvoicePartyOut

    cost: Decimal
    commission_type: str
    commission_rate: Decimal
    commission_amount: Decimal
    doctor_net_income: Decimal
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    issued_at: datetime
