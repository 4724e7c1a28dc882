import pytest
from datetime import timedelta
from unittest.mock import patch
from libris.core.exceptions import (
    DuplicateRequestError, InvalidStatusError, PermissionDeniedError, ExtensionNotFoundError
)
from libris.core.extensions import ExtensionDesk
from libris.core.loans import LoanLedger
from libris.core.models import (
    ExtensionStatus, LoanExtension, Loan, OutboxEvent, Role
)
from libris.core.utils import utcnow
from helpers import loan_items, return_items, in_days


@pytest.fixture
def loan(db_session, reader, librarian, make_book):
    book = make_book()
    return LoanLedger.create_for_reader(db_session, librarian, reader.id, in_days(10),
                                        loan_items((book.id, 1)))


def test_request_extension(db_session, reader, loan):
    due = loan.due_date
    extension = ExtensionDesk.request(db_session, loan.id, reader, 7, reason="Exams")
    assert extension.status == ExtensionStatus.PENDING
    assert extension.current_due_date == due
    assert extension.new_due_date == due + timedelta(days=7)
    assert extension.user_id == reader.id
    assert extension.is_expired is False


def test_second_pending_request_is_a_duplicate(db_session, reader, loan):
    ExtensionDesk.request(db_session, loan.id, reader, 7)
    with pytest.raises(DuplicateRequestError):
        ExtensionDesk.request(db_session, loan.id, reader, 3)
    assert db_session.query(LoanExtension).count() == 1


def test_duplicate_is_caught_by_the_index(db_session, reader, loan):
    ExtensionDesk.request(db_session, loan.id, reader, 7)
    with patch.object(ExtensionDesk, 'pending_for', return_value=None):
        with pytest.raises(DuplicateRequestError):
            ExtensionDesk.request(db_session, loan.id, reader, 3)
    assert db_session.query(LoanExtension).count() == 1


def test_only_own_active_loans(db_session, make_user, reader, librarian, loan, make_book):
    stranger = make_user(Role.USER)
    with pytest.raises(PermissionDeniedError):
        ExtensionDesk.request(db_session, loan.id, stranger, 7)
    pending = LoanLedger.create_self_service(
        db_session, reader, in_days(5), loan_items((make_book().id, 1)))
    with pytest.raises(InvalidStatusError):
        ExtensionDesk.request(db_session, pending.id, reader, 7)
    # Staff may file a request on a reader's behalf
    assert ExtensionDesk.request(db_session, loan.id, librarian, 7).requested_by == librarian.id


def test_approve_moves_due_date(db_session, reader, librarian, loan):
    extension = ExtensionDesk.request(db_session, loan.id, reader, 7)
    loan.overdue_notified_at = utcnow()
    db_session.commit()
    extension = ExtensionDesk.approve(db_session, extension.id, librarian, review_notes="Fine")
    assert extension.status == ExtensionStatus.APPROVED
    assert extension.reviewed_by == librarian.id
    assert extension.reviewed_at is not None
    refreshed = Loan.get(db_session, loan.id)
    assert refreshed.due_date == extension.new_due_date
    assert refreshed.overdue_notified_at is None
    assert db_session.query(OutboxEvent).one().type == "EXTENSION_APPROVED"
    with pytest.raises(InvalidStatusError):
        ExtensionDesk.approve(db_session, extension.id, librarian)
    # A new request is possible once the previous one was decided
    assert ExtensionDesk.request(db_session, loan.id, reader, 3).extension_days == 3


def test_returned_loan_cannot_be_extended_later(db_session, reader, librarian, loan):
    extension = ExtensionDesk.request(db_session, loan.id, reader, 7)
    due = loan.due_date
    book_id = loan.items[0].book_id
    LoanLedger.return_items(db_session, loan.id, librarian, return_items((book_id, 1)))
    db_session.query(OutboxEvent).delete()
    db_session.commit()
    with pytest.raises(InvalidStatusError):
        ExtensionDesk.approve(db_session, extension.id, librarian)
    assert Loan.get(db_session, loan.id).due_date == due
    assert LoanExtension.get(db_session, extension.id).status == ExtensionStatus.PENDING
    assert db_session.query(OutboxEvent).count() == 0


def test_reject_leaves_loan_alone(db_session, reader, librarian, loan):
    due = loan.due_date
    extension = ExtensionDesk.request(db_session, loan.id, reader, 7)
    extension = ExtensionDesk.reject(db_session, extension.id, librarian)
    assert extension.status == ExtensionStatus.REJECTED
    assert Loan.get(db_session, loan.id).due_date == due
    assert db_session.query(OutboxEvent).one().type == "EXTENSION_REJECTED"
    with pytest.raises(InvalidStatusError):
        ExtensionDesk.reject(db_session, extension.id, librarian)


def test_unknown_extension(db_session, librarian):
    with pytest.raises(ExtensionNotFoundError):
        ExtensionDesk.approve(db_session, 404, librarian)


def test_stale_request_is_expired(db_session, reader, loan):
    extension = ExtensionDesk.request(db_session, loan.id, reader, 7)
    extension.created_at = utcnow() - timedelta(days=8)
    db_session.commit()
    assert extension.is_expired is True
    extensions, total = ExtensionDesk.list(db_session, status=ExtensionStatus.PENDING)
    assert total == 1
