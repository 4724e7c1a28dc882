from datetime import datetime
from typing import Optional
from pydantic import Field
from libris.configs import MAX_EXTENSION_DAYS
from libris.core.models import ExtensionStatus
from libris.schemas.common import LibrisModel


class ExtensionRequest(LibrisModel):
    extension_days: int = Field(..., ge=1, le=MAX_EXTENSION_DAYS)
    reason: Optional[str] = Field(None, max_length=500)


class ReviewRequest(LibrisModel):
    review_notes: Optional[str] = Field(None, max_length=500)


class LoanExtension(LibrisModel):
    id: int
    loan_id: int
    user_id: int
    requested_by: int
    current_due_date: datetime
    new_due_date: datetime
    extension_days: int
    reason: Optional[str] = None
    status: ExtensionStatus
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    is_expired: bool
    created_at: Optional[datetime] = None
