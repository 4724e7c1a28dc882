#!/usr/bin/env python

"""
    API routes for Libris,
    covering loans, extensions, returns, fines, the fine policy
    and in-app notifications.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import math
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from libris.configs import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from libris.core.auth import get_principal, requires_roles, require_staff, require_admin
from libris.core.db import get_db
from libris.core.events import EventDispatcher
from libris.core.extensions import ExtensionDesk
from libris.core.fines import FineEngine, FineDesk
from libris.core.loans import LoanLedger
from libris.core.models import (
    User, Role, LoanStatus, ExtensionStatus, FineStatus
)
from libris.core.notifications import NotificationSink
from libris.core.policy import PolicyStore
from libris.schemas.common import dump
from libris.schemas import loan as loan_schemas
from libris.schemas import extension as extension_schemas
from libris.schemas import fine as fine_schemas
from libris.schemas.notification import Notification

router = APIRouter()

require_reader = requires_roles(Role.USER)


class Pagination:
    """Shared `page`/`limit` query parameters."""

    def __init__(self,
                 page: int = Query(1, ge=1),
                 limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT)):
        self.page = page
        self.limit = limit

    @property
    def offset(self):
        return (self.page - 1) * self.limit

    def meta(self, total):
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "totalPages": math.ceil(total / self.limit) if total else 0,
        }


def ok(data=None, message=None, meta=None, status_code=status.HTTP_200_OK):
    content = {"success": True, "data": data}
    if meta is not None:
        content["meta"] = meta
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def committed(db, data, **kwargs):
    """Renders the response, then hands the events the workflow just
    committed to the notification sink."""
    response = ok(data, **kwargs)
    EventDispatcher.dispatch_quietly(db)
    return response


# Loans

@router.post("/loans/self", status_code=status.HTTP_201_CREATED)
async def request_loan(payload: loan_schemas.SelfLoanRequest,
                       principal: User = Depends(require_reader),
                       db: Session = Depends(get_db)):
    loan = LoanLedger.create_self_service(db, principal, payload.due_date, payload.items)
    return ok(dump(loan_schemas.Loan, loan), message="Loan request created",
              status_code=status.HTTP_201_CREATED)


@router.post("/loans", status_code=status.HTTP_201_CREATED)
async def create_loan(payload: loan_schemas.LoanCreateRequest,
                      principal: User = Depends(require_staff),
                      db: Session = Depends(get_db)):
    loan = LoanLedger.create_for_reader(
        db, principal, payload.reader_user_id, payload.due_date, payload.items,
        notes=payload.notes)
    return ok(dump(loan_schemas.Loan, loan), message="Loan created",
              status_code=status.HTTP_201_CREATED)


@router.get("/loans")
async def list_loans(status_: Optional[LoanStatus] = Query(None, alias="status"),
                     reader_user_id: Optional[int] = Query(None, alias="readerUserId"),
                     overdue_only: bool = Query(False, alias="overdueOnly"),
                     date_from: Optional[datetime] = Query(None, alias="from"),
                     date_to: Optional[datetime] = Query(None, alias="to"),
                     page: Pagination = Depends(),
                     principal: User = Depends(get_principal),
                     db: Session = Depends(get_db)):
    if principal.role == Role.USER:
        reader_user_id = principal.id
    loans, total = LoanLedger.list(
        db, status=status_, reader_user_id=reader_user_id, overdue_only=overdue_only,
        date_from=date_from, date_to=date_to, offset=page.offset, limit=page.limit)
    return ok(dump(loan_schemas.Loan, loans), meta=page.meta(total))


# Static /loans/... paths must be declared before /loans/{loan_id}

@router.get("/loans/extensions")
async def list_extensions(status_: Optional[ExtensionStatus] = Query(None, alias="status"),
                          page: Pagination = Depends(),
                          principal: User = Depends(get_principal),
                          db: Session = Depends(get_db)):
    user_id = principal.id if principal.role == Role.USER else None
    extensions, total = ExtensionDesk.list(
        db, status=status_, user_id=user_id, offset=page.offset, limit=page.limit)
    return ok(dump(extension_schemas.LoanExtension, extensions), meta=page.meta(total))


@router.put("/loans/extensions/{extension_id}/approve")
async def approve_extension(extension_id: int,
                            payload: Optional[extension_schemas.ReviewRequest] = None,
                            principal: User = Depends(require_staff),
                            db: Session = Depends(get_db)):
    extension = ExtensionDesk.approve(
        db, extension_id, principal, review_notes=payload.review_notes if payload else None)
    return committed(db, dump(extension_schemas.LoanExtension, extension),
                     message="Extension approved")


@router.put("/loans/extensions/{extension_id}/reject")
async def reject_extension(extension_id: int,
                           payload: Optional[extension_schemas.ReviewRequest] = None,
                           principal: User = Depends(require_staff),
                           db: Session = Depends(get_db)):
    extension = ExtensionDesk.reject(
        db, extension_id, principal, review_notes=payload.review_notes if payload else None)
    return committed(db, dump(extension_schemas.LoanExtension, extension),
                     message="Extension rejected")


@router.get("/loans/fines")
async def list_fines(status_: Optional[FineStatus] = Query(None, alias="status"),
                     user_id: Optional[int] = Query(None, alias="userId"),
                     loan_id: Optional[int] = Query(None, alias="loanId"),
                     page: Pagination = Depends(),
                     principal: User = Depends(get_principal),
                     db: Session = Depends(get_db)):
    fines, total = FineDesk.list(
        db, principal, status=status_, user_id=user_id, loan_id=loan_id,
        offset=page.offset, limit=page.limit)
    return ok(dump(fine_schemas.Fine, fines), meta=page.meta(total))


@router.put("/loans/fines/{fine_id}/pay")
async def pay_fine(fine_id: int,
                   principal: User = Depends(require_staff),
                   db: Session = Depends(get_db)):
    fine = FineDesk.pay(db, fine_id, principal)
    return committed(db, dump(fine_schemas.Fine, fine), message="Fine paid")


@router.put("/loans/fines/{fine_id}/waive")
async def waive_fine(fine_id: int,
                     payload: Optional[fine_schemas.WaiveRequest] = None,
                     principal: User = Depends(require_staff),
                     db: Session = Depends(get_db)):
    fine = FineDesk.waive(db, fine_id, principal, reason=payload.reason if payload else None)
    return committed(db, dump(fine_schemas.Fine, fine), message="Fine waived")


@router.get("/loans/{loan_id}")
async def get_loan(loan_id: int,
                   principal: User = Depends(get_principal),
                   db: Session = Depends(get_db)):
    loan = LoanLedger.get_for(db, loan_id, principal)
    return ok(dump(loan_schemas.Loan, loan))


@router.put("/loans/{loan_id}/approve")
async def approve_loan(loan_id: int,
                       payload: Optional[loan_schemas.ApproveRequest] = None,
                       principal: User = Depends(require_staff),
                       db: Session = Depends(get_db)):
    loan = LoanLedger.approve(db, loan_id, principal, notes=payload.notes if payload else None)
    return committed(db, dump(loan_schemas.Loan, loan), message="Loan approved")


@router.put("/loans/{loan_id}/reject")
async def reject_loan(loan_id: int,
                      payload: Optional[loan_schemas.RejectRequest] = None,
                      principal: User = Depends(require_staff),
                      db: Session = Depends(get_db)):
    loan = LoanLedger.reject(db, loan_id, principal, reason=payload.reason if payload else None)
    return committed(db, dump(loan_schemas.Loan, loan), message="Loan rejected")


@router.put("/loans/{loan_id}/return")
async def return_loan(loan_id: int,
                      payload: loan_schemas.ReturnRequest,
                      principal: User = Depends(require_staff),
                      db: Session = Depends(get_db)):
    loan, record, fines = LoanLedger.return_items(
        db, loan_id, principal, payload.returned_items, notes=payload.notes)
    data = dump(loan_schemas.Loan, loan)
    data["returnRecord"] = dump(loan_schemas.Return, record)
    data["fines"] = dump(fine_schemas.Fine, fines)
    return committed(db, data, message="Books returned successfully")


@router.post("/loans/{loan_id}/extend", status_code=status.HTTP_201_CREATED)
async def extend_loan(loan_id: int,
                      payload: extension_schemas.ExtensionRequest,
                      principal: User = Depends(get_principal),
                      db: Session = Depends(get_db)):
    extension = ExtensionDesk.request(
        db, loan_id, principal, payload.extension_days, reason=payload.reason)
    return ok(dump(extension_schemas.LoanExtension, extension),
              message="Extension request submitted",
              status_code=status.HTTP_201_CREATED)


# Returns and overdue loans

@router.get("/returns")
async def list_returns(loan_id: Optional[int] = Query(None, alias="loanId"),
                       librarian_id: Optional[int] = Query(None, alias="librarianId"),
                       date_from: Optional[datetime] = Query(None, alias="from"),
                       date_to: Optional[datetime] = Query(None, alias="to"),
                       page: Pagination = Depends(),
                       principal: User = Depends(require_staff),
                       db: Session = Depends(get_db)):
    records, total = FineEngine.list_returns(
        db, loan_id=loan_id, librarian_id=librarian_id,
        date_from=date_from, date_to=date_to, offset=page.offset, limit=page.limit)
    return ok(dump(loan_schemas.Return, records), meta=page.meta(total))


@router.get("/returns/{return_id}")
async def get_return(return_id: int,
                     principal: User = Depends(get_principal),
                     db: Session = Depends(get_db)):
    record = FineEngine.get_return(db, return_id, principal)
    return ok(dump(loan_schemas.Return, record))


@router.get("/overdues")
async def list_overdues(page: Pagination = Depends(),
                        principal: User = Depends(require_staff),
                        db: Session = Depends(get_db)):
    loans, total = LoanLedger.list_overdue(db, offset=page.offset, limit=page.limit)
    return ok(dump(loan_schemas.Loan, loans), meta=page.meta(total))


# The signed-in reader

@router.get("/users/me/loans")
async def my_loans(status_: Optional[LoanStatus] = Query(None, alias="status"),
                   page: Pagination = Depends(),
                   principal: User = Depends(require_reader),
                   db: Session = Depends(get_db)):
    loans, total = LoanLedger.list_for_reader(
        db, principal.id, status=status_, offset=page.offset, limit=page.limit)
    return ok(dump(loan_schemas.Loan, loans), meta=page.meta(total))


@router.get("/users/me/returns")
async def my_returns(page: Pagination = Depends(),
                     principal: User = Depends(require_reader),
                     db: Session = Depends(get_db)):
    records, total = FineEngine.list_returns(
        db, reader_user_id=principal.id, offset=page.offset, limit=page.limit)
    return ok(dump(loan_schemas.Return, records), meta=page.meta(total))


# Fine policy

@router.get("/fine-policy")
async def get_fine_policy(principal: User = Depends(get_principal),
                          db: Session = Depends(get_db)):
    policy = PolicyStore.get_current(db)
    db.commit()
    return ok(dump(fine_schemas.FinePolicy, policy))


@router.put("/fine-policy")
async def update_fine_policy(payload: fine_schemas.FinePolicyUpdate,
                             principal: User = Depends(require_admin),
                             db: Session = Depends(get_db)):
    policy = PolicyStore.set_active(
        db, payload.late_fee_per_day, payload.damage_fee_rate,
        lost_book_fee_rate=payload.lost_book_fee_rate, currency=payload.currency)
    return ok(dump(fine_schemas.FinePolicy, policy), message="Fine policy updated")


# Notifications

@router.get("/notifications")
async def list_notifications(unread_only: bool = Query(False, alias="unreadOnly"),
                             page: Pagination = Depends(),
                             principal: User = Depends(get_principal),
                             db: Session = Depends(get_db)):
    notifications, total = NotificationSink.list_for_user(
        db, principal.id, unread_only=unread_only, offset=page.offset, limit=page.limit)
    return ok(dump(Notification, notifications), meta=page.meta(total))


@router.put("/notifications/{notification_id}/read")
async def read_notification(notification_id: int,
                            principal: User = Depends(get_principal),
                            db: Session = Depends(get_db)):
    notification = NotificationSink.mark_read(db, principal.id, notification_id)
    return ok(dump(Notification, notification))
