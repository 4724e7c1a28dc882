#!/usr/bin/env python

"""
    Models for Libris,
    including users, books, loans, extensions, returns, fines,
    the fine policy, notifications and the notification outbox.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import enum
import logging
from datetime import timedelta
from sqlalchemy import (
    Column, String, Boolean, Integer, Numeric, Text, JSON, DateTime,
    ForeignKey, CheckConstraint, Index, Enum as SQLAlchemyEnum,
    and_, event, text
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import relationship, validates
from sqlalchemy.types import TypeDecorator
from libris.configs import EXTENSION_EXPIRY_DAYS
from libris.core.db import Base
from libris.core.utils import utcnow, as_utc, days_late
from libris.core.exceptions import (
    UserNotFoundError,
    BookNotFoundError,
    LoanNotFoundError,
    ExtensionNotFoundError,
    FineNotFoundError,
    ReturnNotFoundError,
    NotificationNotFoundError,
    InsufficientStockError,
    InvalidRequestError,
    ImmutableRecordError,
)

logger = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator):
    """Stores UTC and always hands back timezone-aware datetimes."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


class Role(str, enum.Enum):
    USER = "USER"
    LIBRARIAN = "LIBRARIAN"
    ADMIN = "ADMIN"

STAFF_ROLES = (Role.LIBRARIAN, Role.ADMIN)

class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

class BookStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    LOST = "LOST"
    DAMAGED = "DAMAGED"

class LoanStatus(str, enum.Enum):
    PENDING = "PENDING"
    BORROWED = "BORROWED"
    PARTIAL_RETURN = "PARTIAL_RETURN"
    RETURNED = "RETURNED"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"

# Loans whose books are out of the library
ACTIVE_LOAN_STATUSES = (LoanStatus.BORROWED, LoanStatus.PARTIAL_RETURN)

class CreatedByRole(str, enum.Enum):
    USER = "USER"
    LIBRARIAN = "LIBRARIAN"

class ItemCondition(str, enum.Enum):
    GOOD = "GOOD"
    DAMAGED = "DAMAGED"
    LOST = "LOST"

class ExtensionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class FineType(str, enum.Enum):
    LATE_RETURN = "LATE_RETURN"
    DAMAGE = "DAMAGE"
    LOSS = "LOSS"

class FineStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    WAIVED = "WAIVED"

class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

ITEM_CONDITION = SQLAlchemyEnum(ItemCondition, name='item_condition')

class EventType(str, enum.Enum):
    LOAN_APPROVED = "LOAN_APPROVED"
    LOAN_REJECTED = "LOAN_REJECTED"
    LOAN_OVERDUE = "LOAN_OVERDUE"
    LOAN_DUE_SOON = "LOAN_DUE_SOON"
    FINE_ISSUED = "FINE_ISSUED"
    FINE_PAID = "FINE_PAID"
    FINE_WAIVED = "FINE_WAIVED"
    EXTENSION_APPROVED = "EXTENSION_APPROVED"
    EXTENSION_REJECTED = "EXTENSION_REJECTED"


class User(Base):
    __tablename__ = 'users'
    not_found_error = UserNotFoundError

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(100), nullable=False)
    role = Column(SQLAlchemyEnum(Role, name='user_role'), default=Role.USER, nullable=False)
    status = Column(SQLAlchemyEnum(UserStatus, name='user_status'), default=UserStatus.ACTIVE, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_active(self):
        return self.status == UserStatus.ACTIVE

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES


class Book(Base):
    __tablename__ = 'books'
    not_found_error = BookNotFoundError

    id = Column(Integer, primary_key=True)
    isbn = Column(String(20), unique=True)
    title = Column(String(200), nullable=False)
    authors = Column(JSON, default=list)
    quantity_total = Column(Integer, nullable=False, default=0)
    quantity_available = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(14, 2), nullable=False, default=100000)
    status = Column(SQLAlchemyEnum(BookStatus, name='book_status'), default=BookStatus.ACTIVE, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint('quantity_total >= 0', name='ck_books_quantity_total'),
        CheckConstraint(
            'quantity_available >= 0 AND quantity_available <= quantity_total',
            name='ck_books_quantity_available'),
        CheckConstraint('price >= 0', name='ck_books_price'),
    )

    @validates('quantity_total', 'quantity_available')
    def _validate_quantity(self, key, value):
        if value is None or value < 0:
            raise InvalidRequestError(f"{key} cannot be negative")
        if key == 'quantity_available' and self.quantity_total is not None:
            value = min(value, self.quantity_total)
        elif key == 'quantity_total' and (self.quantity_available or 0) > value:
            self.quantity_available = value
        return value

    @property
    def is_available(self):
        """True when at least one copy can be lent out."""
        return self.status == BookStatus.ACTIVE and self.quantity_available > 0

    @classmethod
    def find_by_ids(cls, db, ids):
        """Returns a dict of the books found, keyed by id."""
        if not ids:
            return {}
        return {b.id: b for b in db.query(cls).filter(cls.id.in_(set(ids))).all()}

    @classmethod
    def lock(cls, db, book_id):
        """Loads the book row FOR UPDATE so stock changes serialize."""
        db.flush()
        book = (db.query(cls)
                .filter(cls.id == book_id)
                .with_for_update()
                .populate_existing()
                .one_or_none())
        if book is None:
            raise BookNotFoundError(f"Book {book_id} not found")
        return book

    @classmethod
    def adjust_availability(cls, db, book_id, delta):
        """Applies `delta` to the available copies of a book.

        A decrement never takes availability below zero and an increment
        never lifts it above `quantity_total`.
        """
        book = cls.lock(db, book_id)
        available = book.quantity_available + delta
        if available < 0:
            raise InsufficientStockError(
                f"Insufficient stock for book {book.title}. "
                f"Available: {book.quantity_available}, Requested: {-delta}")
        book.quantity_available = min(available, book.quantity_total)
        logger.info(f"Book {book.id} availability {delta:+d} -> {book.quantity_available}")
        return book


class Loan(Base):
    __tablename__ = 'loans'
    not_found_error = LoanNotFoundError

    id = Column(Integer, primary_key=True)
    code = Column(String(32), unique=True, nullable=False)
    reader_user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    librarian_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    created_by_role = Column(SQLAlchemyEnum(CreatedByRole, name='loan_origin'), nullable=False)
    loan_date = Column(UTCDateTime, default=utcnow, nullable=False)
    due_date = Column(UTCDateTime, nullable=False, index=True)
    status = Column(SQLAlchemyEnum(LoanStatus, name='loan_status'), default=LoanStatus.PENDING, nullable=False, index=True)
    notes = Column(Text)
    return_date = Column(UTCDateTime)
    returned_by = Column(Integer, ForeignKey('users.id'))
    overdue_notified_at = Column(UTCDateTime)
    version = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    items = relationship(
        'LoanItem', back_populates='loan', order_by='LoanItem.position',
        collection_class=ordering_list('position'),
        cascade='all, delete-orphan', lazy='selectin')
    reader = relationship('User', foreign_keys=[reader_user_id])

    __mapper_args__ = {'version_id_col': version}

    @property
    def total_items(self):
        return sum(item.qty for item in self.items)

    @property
    def total_returned(self):
        return sum(item.returned_qty for item in self.items)

    @property
    def is_fully_returned(self):
        return all(item.returned_qty >= item.qty for item in self.items)

    @hybrid_property
    def is_overdue(self):
        """Derived at read time; the stored status is never rewritten."""
        return self.status in ACTIVE_LOAN_STATUSES and as_utc(self.due_date) < utcnow()

    @is_overdue.expression
    def is_overdue(cls):
        return and_(cls.status.in_(ACTIVE_LOAN_STATUSES), cls.due_date < utcnow())

    @property
    def overdue_days(self):
        return days_late(self.due_date) if self.is_overdue else 0

    def item_for(self, book_id):
        for item in self.items:
            if item.book_id == book_id:
                return item
        return None


class LoanItem(Base):
    __tablename__ = 'loan_items'

    id = Column(Integer, primary_key=True)
    loan_id = Column(Integer, ForeignKey('loans.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    book_id = Column(Integer, ForeignKey('books.id'), nullable=False, index=True)
    qty = Column(Integer, nullable=False)
    returned_qty = Column(Integer, nullable=False, default=0)
    condition = Column(ITEM_CONDITION, default=ItemCondition.GOOD, nullable=False)
    damage_level = Column(Integer, nullable=False, default=0)
    return_notes = Column(Text)

    loan = relationship('Loan', back_populates='items')
    book = relationship('Book', lazy='joined')

    __table_args__ = (
        CheckConstraint('qty >= 1', name='ck_loan_items_qty'),
        CheckConstraint('returned_qty >= 0 AND returned_qty <= qty', name='ck_loan_items_returned_qty'),
        CheckConstraint('damage_level >= 0 AND damage_level <= 100', name='ck_loan_items_damage_level'),
    )

    @property
    def outstanding(self):
        return self.qty - (self.returned_qty or 0)


class LoanExtension(Base):
    __tablename__ = 'loan_extensions'
    not_found_error = ExtensionNotFoundError

    id = Column(Integer, primary_key=True)
    loan_id = Column(Integer, ForeignKey('loans.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    requested_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    current_due_date = Column(UTCDateTime, nullable=False)
    new_due_date = Column(UTCDateTime, nullable=False)
    extension_days = Column(Integer, nullable=False)
    reason = Column(String(500))
    status = Column(SQLAlchemyEnum(ExtensionStatus, name='extension_status'), default=ExtensionStatus.PENDING, nullable=False, index=True)
    reviewed_by = Column(Integer, ForeignKey('users.id'))
    reviewed_at = Column(UTCDateTime)
    review_notes = Column(Text)
    version = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    loan = relationship('Loan')

    __mapper_args__ = {'version_id_col': version}
    __table_args__ = (
        CheckConstraint('extension_days >= 1 AND extension_days <= 30', name='ck_loan_extensions_days'),
        # At most one pending request per loan
        Index('uq_loan_extensions_pending', 'loan_id', unique=True,
              sqlite_where=text("status = 'PENDING'"),
              postgresql_where=text("status = 'PENDING'")),
    )

    @property
    def is_expired(self):
        """A request left pending for more than a week is stale."""
        if self.status != ExtensionStatus.PENDING or self.created_at is None:
            return False
        return utcnow() > as_utc(self.created_at) + timedelta(days=EXTENSION_EXPIRY_DAYS)


class Return(Base):
    __tablename__ = 'returns'
    not_found_error = ReturnNotFoundError

    id = Column(Integer, primary_key=True)
    loan_id = Column(Integer, ForeignKey('loans.id'), nullable=False, index=True)
    librarian_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    return_date = Column(UTCDateTime, default=utcnow, nullable=False, index=True)
    notes = Column(Text)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    created_at = Column(UTCDateTime, default=utcnow)

    items = relationship(
        'ReturnItem', back_populates='return_record',
        cascade='all, delete-orphan', lazy='selectin')
    loan = relationship('Loan')

    def recompute_total(self):
        self.total_amount = sum((item.total_fee for item in self.items), 0)
        return self.total_amount


class ReturnItem(Base):
    __tablename__ = 'return_items'

    id = Column(Integer, primary_key=True)
    return_id = Column(Integer, ForeignKey('returns.id', ondelete='CASCADE'), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey('books.id'), nullable=False)
    qty = Column(Integer, nullable=False)
    condition = Column(ITEM_CONDITION, nullable=False)
    damage_percent = Column(Integer, nullable=False, default=0)
    late_days = Column(Integer, nullable=False, default=0)
    late_fee = Column(Numeric(14, 2), nullable=False, default=0)
    damage_fee = Column(Numeric(14, 2), nullable=False, default=0)
    other_fee = Column(Numeric(14, 2), nullable=False, default=0)
    total_fee = Column(Numeric(14, 2), nullable=False, default=0)

    return_record = relationship('Return', back_populates='items')

    __table_args__ = (
        CheckConstraint('qty >= 1', name='ck_return_items_qty'),
        CheckConstraint('damage_percent >= 0 AND damage_percent <= 100', name='ck_return_items_damage'),
    )


@event.listens_for(Return, 'before_insert')
def _total_return_amount(mapper, connection, target):
    target.recompute_total()

@event.listens_for(Return, 'before_update')
def _freeze_return(mapper, connection, target):
    raise ImmutableRecordError(f"Return {target.id} cannot be modified")


class Fine(Base):
    __tablename__ = 'fines'
    not_found_error = FineNotFoundError

    id = Column(Integer, primary_key=True)
    loan_id = Column(Integer, ForeignKey('loans.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    type = Column(SQLAlchemyEnum(FineType, name='fine_type'), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False, default='VND')
    description = Column(Text)
    status = Column(SQLAlchemyEnum(FineStatus, name='fine_status'), default=FineStatus.PENDING, nullable=False, index=True)
    paid_at = Column(UTCDateTime)
    paid_by = Column(Integer, ForeignKey('users.id'))
    waived_at = Column(UTCDateTime)
    waived_by = Column(Integer, ForeignKey('users.id'))
    waived_reason = Column(Text)
    version = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    loan = relationship('Loan')

    __mapper_args__ = {'version_id_col': version}
    __table_args__ = (
        CheckConstraint('amount >= 0', name='ck_fines_amount'),
    )


class FinePolicy(Base):
    __tablename__ = 'fine_policies'

    id = Column(Integer, primary_key=True)
    late_fee_per_day = Column(Numeric(14, 2), nullable=False)
    damage_fee_rate = Column(Numeric(5, 4), nullable=False)
    lost_book_fee_rate = Column(Numeric(5, 4), nullable=False, default=1)
    currency = Column(String(3), nullable=False, default='VND')
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint('late_fee_per_day >= 0', name='ck_fine_policies_late_fee'),
        CheckConstraint('damage_fee_rate >= 0 AND damage_fee_rate <= 1', name='ck_fine_policies_damage_rate'),
        CheckConstraint('lost_book_fee_rate >= 0 AND lost_book_fee_rate <= 1', name='ck_fine_policies_lost_rate'),
        # Exactly one policy may be active
        Index('uq_fine_policies_active', 'is_active', unique=True,
              sqlite_where=text('is_active = 1'),
              postgresql_where=text('is_active')),
    )


class Notification(Base):
    __tablename__ = 'notifications'
    not_found_error = NotificationNotFoundError

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, default=dict)
    priority = Column(SQLAlchemyEnum(NotificationPriority, name='notification_priority'), default=NotificationPriority.MEDIUM, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(UTCDateTime, default=utcnow)


class OutboxEvent(Base):
    __tablename__ = 'outbox_events'

    id = Column(Integer, primary_key=True)
    type = Column(String(50), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    payload = Column(JSON, default=dict)
    created_at = Column(UTCDateTime, default=utcnow, index=True)
    dispatched_at = Column(UTCDateTime, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
