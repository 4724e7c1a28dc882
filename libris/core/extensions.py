import logging
from datetime import timedelta
from sqlalchemy.exc import IntegrityError
from libris.core.db import atomic
from libris.core.events import emit
from libris.core.exceptions import (
    InvalidStatusError,
    DuplicateRequestError,
    PermissionDeniedError,
    DatabaseError,
)
from libris.core.models import (
    Loan, LoanExtension, ExtensionStatus, EventType, Role,
    ACTIVE_LOAN_STATUSES
)
from libris.core.utils import utcnow, as_utc

logger = logging.getLogger(__name__)


class ExtensionDesk:
    """Due date extension requests and their review."""

    @classmethod
    def request(cls, db, loan_id, actor, extension_days, reason=None):
        loan = Loan.get_or_raise(db, loan_id)
        if actor.role == Role.USER and loan.reader_user_id != actor.id:
            raise PermissionDeniedError("You can only extend your own loans")
        if loan.status not in ACTIVE_LOAN_STATUSES:
            raise InvalidStatusError(
                f"Loan {loan.code} cannot be extended from status {loan.status.value}")
        if cls.pending_for(db, loan.id) is not None:
            raise DuplicateRequestError(
                f"Loan {loan.code} already has a pending extension request")
        extension = LoanExtension(
            loan_id=loan.id,
            user_id=loan.reader_user_id,
            requested_by=actor.id,
            current_due_date=loan.due_date,
            new_due_date=as_utc(loan.due_date) + timedelta(days=extension_days),
            extension_days=extension_days,
            reason=reason,
        )
        try:
            with atomic(db):
                db.add(extension)
        except DatabaseError as e:
            # Lost the race against another request for the same loan
            if isinstance(e.__cause__, IntegrityError):
                raise DuplicateRequestError(
                    f"Loan {loan.code} already has a pending extension request") from e
            raise
        logger.info(f"Extension of {extension_days} day(s) requested for loan {loan.code}")
        return extension

    @classmethod
    def pending_for(cls, db, loan_id):
        return (db.query(LoanExtension)
                .filter(LoanExtension.loan_id == loan_id,
                        LoanExtension.status == ExtensionStatus.PENDING)
                .one_or_none())

    @classmethod
    def _review(cls, db, extension_id, actor, status, review_notes):
        extension = LoanExtension.get_or_raise(db, extension_id)
        if extension.status != ExtensionStatus.PENDING:
            raise InvalidStatusError(
                f"Extension {extension.id} was already {extension.status.value.lower()}")
        extension.status = status
        extension.reviewed_by = actor.id
        extension.reviewed_at = utcnow()
        extension.review_notes = review_notes
        return extension

    @classmethod
    def approve(cls, db, extension_id, actor, review_notes=None):
        with atomic(db):
            extension = cls._review(
                db, extension_id, actor, ExtensionStatus.APPROVED, review_notes)
            loan = extension.loan
            if loan.status not in ACTIVE_LOAN_STATUSES:
                raise InvalidStatusError(
                    f"Loan {loan.code} is {loan.status.value.lower()} and can no longer be extended")
            loan.due_date = extension.new_due_date
            loan.overdue_notified_at = None
            emit(db, EventType.EXTENSION_APPROVED, extension.user_id,
                 loan_id=loan.id, loan_code=loan.code,
                 extension_id=extension.id,
                 new_due_date=as_utc(extension.new_due_date).strftime('%Y-%m-%d'))
        logger.info(f"Extension {extension.id} approved by {actor.id}")
        return extension

    @classmethod
    def reject(cls, db, extension_id, actor, review_notes=None):
        with atomic(db):
            extension = cls._review(
                db, extension_id, actor, ExtensionStatus.REJECTED, review_notes)
            emit(db, EventType.EXTENSION_REJECTED, extension.user_id,
                 loan_id=extension.loan_id, loan_code=extension.loan.code,
                 extension_id=extension.id)
        logger.info(f"Extension {extension.id} rejected by {actor.id}")
        return extension

    @classmethod
    def list(cls, db, status=None, user_id=None, offset=None, limit=None):
        query = db.query(LoanExtension)
        if status is not None:
            query = query.filter(LoanExtension.status == status)
        if user_id is not None:
            query = query.filter(LoanExtension.user_id == user_id)
        total = query.count()
        extensions = (query.order_by(LoanExtension.created_at.desc(), LoanExtension.id.desc())
                      .offset(offset).limit(limit).all())
        return extensions, total
