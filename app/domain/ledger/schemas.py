"""Ledger domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...models import PayoutAccountStatus, PayoutStatus

SETTLEMENT_STATUSES = {
    PayoutStatus.APPROVED.value,
    PayoutStatus.PROCESSING.value,
    PayoutStatus.COMPLETED.value,
    PayoutStatus.REJECTED.value,
    PayoutStatus.FAILED.value,
}


class WasherBalance(BaseModel):
    """Projection of a washer's earnings grouped by status"""

    available_balance: float
    processing_balance: float
    total_paid_out: float
    total_earnings: float


class PayoutRequestCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    notes: Optional[str] = Field(None, max_length=1000)


class PayoutSettle(BaseModel):
    status: str
    reference_id: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in SETTLEMENT_STATUSES:
            raise ValueError(f"status must be one of {', '.join(sorted(SETTLEMENT_STATUSES))}")
        return v


class PayoutRequestResponse(BaseModel):
    id: int
    washer_id: int
    requested_amount: float
    withdrawal_fee: float
    net_amount: float
    currency: str
    status: str
    notes: Optional[str] = None
    reference_id: Optional[str] = None
    requested_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PayoutAccountUpdate(BaseModel):
    status: str
    account_id: Optional[str] = Field(None, max_length=255)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        allowed = [s.value for s in PayoutAccountStatus]
        if v not in allowed:
            raise ValueError(f"status must be one of {', '.join(allowed)}")
        return v
