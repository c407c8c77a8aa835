from __future__ import annotations

from decimal import Decimal
from typing import Optional, Literal

from pydantic import BaseModel, Field


class PayoutIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: Literal["bkash", "bank", "cash"] = "bank"
    reference_id: Optional[str] = Field(None, max_length=80)
    notes: Optional[str] = None


class CommissionRemittanceIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: Literal["bkash", "bank", "cash"] = "bkash"
    reference_id: Optional[str] = Field(None, max_length=80)
    notes: Optional[str] = None


class AdjustmentIn(BaseModel):
    kind: Literal["bonus", "deduction"]
    amount: Decimal = Field(..., gt=0)
    notes: Optional[str] = None


class DoctorSnapshotOut(BaseModel):
    doctor_id: int
    grossRevenue: Decimal
    commission: Decimal
    commissionFromCash: Decimal
    commissionPaidByDoctor: Decimal
    adjustments: Decimal
    netIncome: Decimal
    totalPaid: Decimal
    pendingBalance: Decimal
    commissionDue: Decimal
