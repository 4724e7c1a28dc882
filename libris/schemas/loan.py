#!/usr/bin/env python
"""
    Loan Schemas for Libris,
    request bodies for the loan workflow and the shapes it returns.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from datetime import datetime
from typing import List, Optional
from pydantic import Field, field_validator
from libris.core.models import (
    LoanStatus, CreatedByRole, ItemCondition
)
from libris.schemas.common import LibrisModel

NOTES_MAX_LENGTH = 500


def unique_books(items):
    """Each book may appear once per request."""
    seen = set()
    for item in items:
        if item.book_id in seen:
            raise ValueError(f"Book {item.book_id} is listed more than once")
        seen.add(item.book_id)
    return items


class LoanItemRequest(LibrisModel):
    book_id: int = Field(..., gt=0)
    qty: int = Field(..., ge=1)


class SelfLoanRequest(LibrisModel):
    due_date: datetime
    items: List[LoanItemRequest] = Field(..., min_length=1)

    @field_validator("items")
    @classmethod
    def check_unique_books(cls, items):
        return unique_books(items)


class LoanCreateRequest(SelfLoanRequest):
    reader_user_id: int = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)


class ApproveRequest(LibrisModel):
    notes: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)


class RejectRequest(LibrisModel):
    reason: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)


class ReturnItemRequest(LibrisModel):
    book_id: int = Field(..., gt=0)
    qty: int = Field(..., ge=1)
    condition: ItemCondition = ItemCondition.GOOD
    damage_level: int = Field(0, ge=0, le=100)
    other_fee: float = Field(0, ge=0)
    notes: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)


class ReturnRequest(LibrisModel):
    returned_items: List[ReturnItemRequest] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)

    @field_validator("returned_items")
    @classmethod
    def check_unique_books(cls, items):
        return unique_books(items)


class LoanItem(LibrisModel):
    book_id: int
    qty: int
    returned_qty: int
    condition: ItemCondition
    damage_level: int
    return_notes: Optional[str] = None


class Loan(LibrisModel):
    id: int
    code: str
    reader_user_id: int
    librarian_id: Optional[int] = None
    created_by_role: CreatedByRole
    loan_date: datetime
    due_date: datetime
    status: LoanStatus
    notes: Optional[str] = None
    return_date: Optional[datetime] = None
    returned_by: Optional[int] = None
    items: List[LoanItem]
    total_items: int
    is_overdue: bool
    overdue_days: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReturnItem(LibrisModel):
    book_id: int
    qty: int
    condition: ItemCondition
    damage_percent: int
    late_days: int
    late_fee: float
    damage_fee: float
    other_fee: float
    total_fee: float


class Return(LibrisModel):
    id: int
    loan_id: int
    librarian_id: int
    return_date: datetime
    notes: Optional[str] = None
    items: List[ReturnItem]
    total_amount: float
