from datetime import datetime
from typing import Optional
from pydantic import Field, field_validator
from libris.core.models import FineType, FineStatus
from libris.schemas.common import LibrisModel


class WaiveRequest(LibrisModel):
    reason: Optional[str] = Field(None, max_length=500)


class FinePolicyUpdate(LibrisModel):
    late_fee_per_day: float = Field(..., ge=0)
    damage_fee_rate: float = Field(..., ge=0, le=1)
    lost_book_fee_rate: Optional[float] = Field(None, ge=0, le=1)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        if value is not None and not value.isalpha():
            raise ValueError("Currency must be a 3 letter code")
        return value.upper() if value else value


class Fine(LibrisModel):
    id: int
    loan_id: int
    user_id: int
    type: FineType
    amount: float
    currency: str
    description: Optional[str] = None
    status: FineStatus
    paid_at: Optional[datetime] = None
    paid_by: Optional[int] = None
    waived_at: Optional[datetime] = None
    waived_by: Optional[int] = None
    waived_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class FinePolicy(LibrisModel):
    id: int
    late_fee_per_day: float
    damage_fee_rate: float
    lost_book_fee_rate: float
    currency: str
    is_active: bool
    created_at: Optional[datetime] = None
