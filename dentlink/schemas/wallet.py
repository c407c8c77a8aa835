from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Literal

from pydantic import BaseModel, Field, ConfigDict

from dentlink.models.ledger import EntryType, PaymentMethod


class WalletDepositIn(BaseModel):
    # admins top up on behalf of a patient; patients omit it
    patient_id: Optional[int] = None
    amount: Decimal = Field(..., gt=0)
    method: Literal["bkash", "bank", "cash"] = "bkash"
    idempotency_key: Optional[str] = Field(None, max_length=80)
    reference_id: Optional[str] = Field(None, max_length=80)
    notes: Optional[str] = None


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entry_number: str
    subject_id: int
    doctor_id: Optional[int] = None
    case_id: Optional[int] = None
    entry_type: EntryType
    amount: Decimal
    payment_method: PaymentMethod
    reference_id: Optional[str] = None
    notes: Optional[str] = None
    date: datetime
    created_by: Optional[int] = None


class WalletBalanceOut(BaseModel):
    patient_id: int
    available_balance: Decimal


class WalletSummaryOut(BaseModel):
    patient_id: int
    total_deposit: Decimal
    total_spent: Decimal
    total_refund: Decimal
    available_balance: Decimal
    recent_entries: List[LedgerEntryOut] = []
