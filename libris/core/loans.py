#!/usr/bin/env python

"""
    Loan ledger for Libris.

    Owns the loan state machine:

        PENDING -> BORROWED -> PARTIAL_RETURN -> RETURNED
        PENDING -> CANCELLED
        BORROWED -> RETURNED

    Stock only moves when books leave the library (librarian-created
    loans and approvals) or come back (returns). Every transition runs
    as one transaction together with the stock rows it touches and the
    events it emits.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from datetime import timedelta
from sqlalchemy import and_
from libris.configs import DUE_SOON_DAYS
from libris.core.db import atomic
from libris.core.events import emit
from libris.core.exceptions import (
    InvalidRequestError,
    InvalidStatusError,
    StockUnavailableError,
    PermissionDeniedError,
)
from libris.core.models import (
    Book, BookStatus, Loan, LoanItem, LoanStatus, CreatedByRole,
    User, Role, EventType, ACTIVE_LOAN_STATUSES
)
from libris.core.utils import utcnow, as_utc, days_late, generate_loan_code

logger = logging.getLogger(__name__)


class LoanLedger:

    @classmethod
    def _check_due_date(cls, due_date, now):
        due_date = as_utc(due_date)
        if due_date is None or due_date <= now:
            raise InvalidRequestError("Due date must be in the future")
        return due_date

    @classmethod
    def _check_books(cls, db, items):
        """Verifies every requested book exists, is lendable and has
        enough copies. Nothing is reserved."""
        books = Book.find_by_ids(db, [item.book_id for item in items])
        for item in items:
            book = books.get(item.book_id)
            if book is None:
                raise Book.not_found_error(f"Book {item.book_id} not found")
            if book.status != BookStatus.ACTIVE:
                raise InvalidRequestError(f"Book {book.title} is not available for loan")
            if book.quantity_available < item.qty:
                raise StockUnavailableError(
                    f"Insufficient stock for book {book.title}. "
                    f"Available: {book.quantity_available}, Requested: {item.qty}")
        return books

    @classmethod
    def _take_stock(cls, db, items):
        # Lock rows in id order so concurrent loans cannot deadlock
        for book_id, qty in sorted((i.book_id, i.qty) for i in items):
            book = Book.lock(db, book_id)
            if book.status != BookStatus.ACTIVE:
                raise InvalidRequestError(f"Book {book.title} is not available for loan")
            Book.adjust_availability(db, book_id, -qty)

    @classmethod
    def _new_loan(cls, reader_user_id, due_date, items, **kwargs):
        loan = Loan(
            code=generate_loan_code(),
            reader_user_id=reader_user_id,
            due_date=due_date,
            **kwargs)
        loan.items = [LoanItem(book_id=i.book_id, qty=i.qty) for i in items]
        return loan

    @classmethod
    def create_self_service(cls, db, reader, due_date, items, now=None):
        """A reader asks for books. The loan waits for a librarian and no
        stock is reserved until then."""
        now = as_utc(now) or utcnow()
        due_date = cls._check_due_date(due_date, now)
        with atomic(db):
            cls._check_books(db, items)
            loan = cls._new_loan(
                reader.id, due_date, items,
                loan_date=now,
                status=LoanStatus.PENDING,
                created_by_role=CreatedByRole.USER)
            db.add(loan)
        logger.info(f"Loan {loan.code} requested by user {reader.id}")
        return loan

    @classmethod
    def create_for_reader(cls, db, librarian, reader_user_id, due_date, items,
                          notes=None, now=None):
        """Walk-in loan: the books leave the desk right away."""
        now = as_utc(now) or utcnow()
        due_date = cls._check_due_date(due_date, now)
        reader = User.get_or_raise(db, reader_user_id)
        if not reader.is_active:
            raise InvalidRequestError(f"User {reader.id} is not active")
        with atomic(db):
            cls._check_books(db, items)
            cls._take_stock(db, items)
            loan = cls._new_loan(
                reader.id, due_date, items,
                loan_date=now,
                notes=notes,
                librarian_id=librarian.id,
                status=LoanStatus.BORROWED,
                created_by_role=CreatedByRole.LIBRARIAN)
            db.add(loan)
        logger.info(f"Loan {loan.code} issued to user {reader.id} by {librarian.id}")
        return loan

    @classmethod
    def approve(cls, db, loan_id, actor, notes=None, now=None):
        now = as_utc(now) or utcnow()
        with atomic(db):
            loan = Loan.get_or_raise(db, loan_id)
            if loan.status != LoanStatus.PENDING:
                raise InvalidStatusError(
                    f"Loan {loan.code} cannot be approved from status {loan.status.value}")
            cls._take_stock(db, loan.items)
            loan.status = LoanStatus.BORROWED
            loan.loan_date = now
            loan.librarian_id = actor.id
            if notes:
                loan.notes = notes
            emit(db, EventType.LOAN_APPROVED, loan.reader_user_id,
                 loan_id=loan.id, loan_code=loan.code)
        logger.info(f"Loan {loan.code} approved by {actor.id}")
        return loan

    @classmethod
    def reject(cls, db, loan_id, actor, reason=None):
        with atomic(db):
            loan = Loan.get_or_raise(db, loan_id)
            if loan.status != LoanStatus.PENDING:
                raise InvalidStatusError(
                    f"Loan {loan.code} cannot be rejected from status {loan.status.value}")
            loan.status = LoanStatus.CANCELLED
            loan.librarian_id = actor.id
            if reason:
                loan.notes = reason
            emit(db, EventType.LOAN_REJECTED, loan.reader_user_id,
                 loan_id=loan.id, loan_code=loan.code,
                 reason=reason or "No reason given")
        logger.info(f"Loan {loan.code} rejected by {actor.id}")
        return loan

    @classmethod
    def return_items(cls, db, loan_id, librarian, returned_items, notes=None, now=None):
        from libris.core.fines import FineEngine
        return FineEngine.process_return(
            db, loan_id, librarian, returned_items, notes=notes, now=now)

    @classmethod
    def get_for(cls, db, loan_id, principal):
        """Readers only see their own loans."""
        loan = Loan.get_or_raise(db, loan_id)
        if principal.role == Role.USER and loan.reader_user_id != principal.id:
            raise PermissionDeniedError("You can only view your own loans")
        return loan

    @classmethod
    def list(cls, db, status=None, reader_user_id=None, overdue_only=False,
             date_from=None, date_to=None, offset=None, limit=None):
        """Returns a page of loans, newest first, and the total count.

        OVERDUE is never stored, so filtering on it selects active loans
        past their due date.
        """
        query = db.query(Loan)
        if status == LoanStatus.OVERDUE:
            overdue_only = True
        elif status is not None:
            query = query.filter(Loan.status == status)
        if overdue_only:
            query = query.filter(Loan.is_overdue)
        if reader_user_id is not None:
            query = query.filter(Loan.reader_user_id == reader_user_id)
        if date_from is not None:
            query = query.filter(Loan.loan_date >= as_utc(date_from))
        if date_to is not None:
            query = query.filter(Loan.loan_date <= as_utc(date_to))
        total = query.count()
        loans = (query.order_by(Loan.created_at.desc(), Loan.id.desc())
                 .offset(offset).limit(limit).all())
        return loans, total

    @classmethod
    def list_for_reader(cls, db, reader_user_id, status=None, offset=None, limit=None):
        return cls.list(db, status=status, reader_user_id=reader_user_id,
                        offset=offset, limit=limit)

    @classmethod
    def list_overdue(cls, db, offset=None, limit=None):
        query = db.query(Loan).filter(Loan.is_overdue)
        total = query.count()
        loans = query.order_by(Loan.due_date, Loan.id).offset(offset).limit(limit).all()
        return loans, total

    @classmethod
    def _active(cls, db, *criteria):
        return (db.query(Loan)
                .filter(Loan.status.in_(ACTIVE_LOAN_STATUSES), *criteria)
                .order_by(Loan.id)
                .all())

    @classmethod
    def notify_overdue(cls, db, now=None):
        """Emits LOAN_OVERDUE once for each loan that has gone past due.

        The stored status is left alone; `overdue_notified_at` marks the
        loans already reported, and approving an extension clears it.
        """
        now = as_utc(now) or utcnow()
        with atomic(db):
            loans = cls._active(db, Loan.due_date < now, Loan.overdue_notified_at.is_(None))
            for loan in loans:
                emit(db, EventType.LOAN_OVERDUE, loan.reader_user_id,
                     loan_id=loan.id, loan_code=loan.code,
                     overdue_days=days_late(loan.due_date, now))
                loan.overdue_notified_at = now
        if loans:
            logger.info(f"Flagged {len(loans)} overdue loan(s)")
        return len(loans)

    @classmethod
    def notify_due_soon(cls, db, now=None, days=DUE_SOON_DAYS):
        now = as_utc(now) or utcnow()
        with atomic(db):
            loans = cls._active(db, and_(Loan.due_date >= now,
                                         Loan.due_date <= now + timedelta(days=days)))
            for loan in loans:
                emit(db, EventType.LOAN_DUE_SOON, loan.reader_user_id,
                     loan_id=loan.id, loan_code=loan.code,
                     due_date=as_utc(loan.due_date).strftime('%Y-%m-%d'))
        logger.info(f"Sent {len(loans)} due-soon reminder(s)")
        return len(loans)
