#!/usr/bin/env python

"""
    Returns and fines for Libris.

    FineEngine processes a (partial) return of a loan: stock goes back
    on the shelf, every returned line is priced against the active fine
    policy into an immutable Return record, and LATE_RETURN, DAMAGE and
    LOSS fines are issued. FineDesk settles fines afterwards.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from libris.core.db import atomic
from libris.core.events import emit
from libris.core.exceptions import (
    ValidationError,
    ConflictError,
    InvalidStatusError,
    PermissionDeniedError,
)
from libris.core.models import (
    Book, Loan, LoanStatus, Return, ReturnItem, Fine, FineType, FineStatus,
    ItemCondition, EventType, Role, ACTIVE_LOAN_STATUSES
)
from libris.core.policy import PolicyStore
from libris.core.utils import utcnow, as_utc, days_late

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
UNITS = Decimal('1')


def money(value):
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def whole(value):
    """Fine amounts are charged in whole currency units."""
    return Decimal(value).quantize(UNITS, rounding=ROUND_HALF_UP)


class FineEngine:

    @classmethod
    def _validate(cls, loan, returned_items):
        if loan.status not in ACTIVE_LOAN_STATUSES:
            raise InvalidStatusError(
                f"Loan {loan.code} cannot be returned from status {loan.status.value}")
        for item in returned_items:
            loan_item = loan.item_for(item.book_id)
            if loan_item is None:
                raise ValidationError(
                    f"Book {item.book_id} is not part of loan {loan.code}",
                    details=[{"field": "bookId", "value": item.book_id}])
            if item.qty > loan_item.outstanding:
                raise ConflictError(
                    f"Cannot return {item.qty} copies of book {item.book_id}: "
                    f"{loan_item.outstanding} outstanding on loan {loan.code}")

    @classmethod
    def price_item(cls, policy, book, item, late_days):
        """Fees for one returned line.

        Late fees run per copy and day; the damage fee is a share of the
        unit price scaled by how badly each copy is damaged.
        """
        late_fee = Decimal(late_days) * policy.late_fee_per_day * item.qty
        damage_fee = Decimal(0)
        if item.condition == ItemCondition.DAMAGED:
            damage_fee = (Decimal(item.damage_level) / 100 * policy.damage_fee_rate
                          * Decimal(book.price or 0) * item.qty)
        other_fee = Decimal(str(item.other_fee or 0))
        return ReturnItem(
            book_id=book.id,
            qty=item.qty,
            condition=item.condition,
            damage_percent=item.damage_level,
            late_days=late_days,
            late_fee=money(late_fee),
            damage_fee=money(damage_fee),
            other_fee=money(other_fee),
            total_fee=money(late_fee) + money(damage_fee) + money(other_fee),
        )

    @classmethod
    def _condition_fine(cls, loan, policy, book, item):
        if item.condition == ItemCondition.DAMAGED and item.damage_level > 0:
            fine_type = FineType.DAMAGE
        elif item.condition == ItemCondition.LOST:
            fine_type = FineType.LOSS
        else:
            return None
        if not book.price or book.price <= 0:
            logger.warning(f"Book {book.title} has no valid price, no {fine_type.value} fine issued")
            return None
        if fine_type == FineType.DAMAGE:
            amount = whole(book.price * policy.damage_fee_rate * item.damage_level / 100)
            description = f"Book damage fine: {item.damage_level}% damage - {book.title}"
        else:
            amount = whole(book.price * policy.lost_book_fee_rate)
            description = f"Lost book fine: {book.title}"
        return Fine(loan_id=loan.id, user_id=loan.reader_user_id, type=fine_type,
                    amount=amount, currency=policy.currency, description=description)

    @classmethod
    def process_return(cls, db, loan_id, librarian, returned_items, notes=None, now=None):
        """Returns (loan, return record, fines issued)."""
        now = as_utc(now) or utcnow()
        policy = PolicyStore.get_current(db)
        with atomic(db):
            loan = Loan.get_or_raise(db, loan_id)
            cls._validate(loan, returned_items)

            late_days = days_late(loan.due_date, now)
            record = Return(loan_id=loan.id, librarian_id=librarian.id,
                            return_date=now, notes=notes)
            fines = []
            for item in sorted(returned_items, key=lambda i: i.book_id):
                book = Book.adjust_availability(db, item.book_id, item.qty)
                record.items.append(cls.price_item(policy, book, item, late_days))

                loan_item = loan.item_for(item.book_id)
                loan_item.returned_qty += item.qty
                loan_item.condition = item.condition
                loan_item.damage_level = item.damage_level
                loan_item.return_notes = item.notes

                if fine := cls._condition_fine(loan, policy, book, item):
                    fines.append(fine)
            db.add(record)

            if loan.is_fully_returned:
                loan.status = LoanStatus.RETURNED
                loan.return_date = now
                loan.returned_by = librarian.id
            else:
                loan.status = LoanStatus.PARTIAL_RETURN

            if late_days > 0:
                fines.insert(0, Fine(
                    loan_id=loan.id, user_id=loan.reader_user_id,
                    type=FineType.LATE_RETURN,
                    amount=whole(late_days * policy.late_fee_per_day),
                    currency=policy.currency,
                    description=f"Late return fine for {late_days} days"))

            db.add_all(fines)
            db.flush()
            for fine in fines:
                emit(db, EventType.FINE_ISSUED, fine.user_id,
                     fine_id=fine.id, loan_id=loan.id, loan_code=loan.code,
                     fine_type=fine.type.value, amount=str(fine.amount),
                     currency=fine.currency)
        logger.info(f"Loan {loan.code} return processed: {loan.status.value}, "
                    f"{len(fines)} fine(s) issued")
        return loan, record, fines

    @classmethod
    def get_return(cls, db, return_id, principal):
        record = Return.get_or_raise(db, return_id)
        if principal.role == Role.USER and record.loan.reader_user_id != principal.id:
            raise PermissionDeniedError("You can only view your own returns")
        return record

    @classmethod
    def list_returns(cls, db, loan_id=None, librarian_id=None, reader_user_id=None,
                     date_from=None, date_to=None, offset=None, limit=None):
        query = db.query(Return)
        if loan_id is not None:
            query = query.filter(Return.loan_id == loan_id)
        if librarian_id is not None:
            query = query.filter(Return.librarian_id == librarian_id)
        if reader_user_id is not None:
            query = query.join(Loan, Loan.id == Return.loan_id) \
                .filter(Loan.reader_user_id == reader_user_id)
        if date_from is not None:
            query = query.filter(Return.return_date >= as_utc(date_from))
        if date_to is not None:
            query = query.filter(Return.return_date <= as_utc(date_to))
        total = query.count()
        records = (query.order_by(Return.return_date.desc(), Return.id.desc())
                   .offset(offset).limit(limit).all())
        return records, total


class FineDesk:

    @classmethod
    def _settle(cls, db, fine_id, action):
        fine = Fine.get_or_raise(db, fine_id)
        if fine.status != FineStatus.PENDING:
            raise InvalidStatusError(
                f"Fine {fine.id} cannot be {action}: it is already {fine.status.value}")
        return fine

    @classmethod
    def pay(cls, db, fine_id, actor):
        with atomic(db):
            fine = cls._settle(db, fine_id, "paid")
            fine.status = FineStatus.PAID
            fine.paid_at = utcnow()
            fine.paid_by = actor.id
            emit(db, EventType.FINE_PAID, fine.user_id,
                 fine_id=fine.id, loan_id=fine.loan_id,
                 amount=str(fine.amount), currency=fine.currency)
        logger.info(f"Fine {fine.id} paid, recorded by {actor.id}")
        return fine

    @classmethod
    def waive(cls, db, fine_id, actor, reason=None):
        with atomic(db):
            fine = cls._settle(db, fine_id, "waived")
            fine.status = FineStatus.WAIVED
            fine.waived_at = utcnow()
            fine.waived_by = actor.id
            fine.waived_reason = reason
            emit(db, EventType.FINE_WAIVED, fine.user_id,
                 fine_id=fine.id, loan_id=fine.loan_id,
                 amount=str(fine.amount), currency=fine.currency,
                 reason=reason or "No reason given")
        logger.info(f"Fine {fine.id} waived by {actor.id}")
        return fine

    @classmethod
    def list(cls, db, principal, status=None, user_id=None, loan_id=None,
             offset=None, limit=None):
        """Readers only ever see their own fines."""
        query = db.query(Fine)
        if principal.role == Role.USER:
            user_id = principal.id
        if user_id is not None:
            query = query.filter(Fine.user_id == user_id)
        if status is not None:
            query = query.filter(Fine.status == status)
        if loan_id is not None:
            query = query.filter(Fine.loan_id == loan_id)
        total = query.count()
        fines = (query.order_by(Fine.created_at.desc(), Fine.id.desc())
                 .offset(offset).limit(limit).all())
        return fines, total
