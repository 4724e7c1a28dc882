import pytest
from datetime import timedelta
from libris.core.exceptions import (
    BookNotFoundError,
    ConflictError,
    InsufficientStockError,
    InvalidRequestError,
    InvalidStatusError,
    PermissionDeniedError,
    UserNotFoundError,
)
from libris.core.loans import LoanLedger
from libris.core.models import (
    Book, Loan, LoanStatus, CreatedByRole, BookStatus, OutboxEvent, UserStatus, Role
)
from libris.core.utils import utcnow
from helpers import loan_items, in_days


def test_self_service_loan_reserves_nothing(db_session, reader, make_book):
    book = make_book(total=5)
    loan = LoanLedger.create_self_service(db_session, reader, in_days(7), loan_items((book.id, 2)))
    assert loan.status == LoanStatus.PENDING
    assert loan.created_by_role == CreatedByRole.USER
    assert loan.code.startswith("LOAN-")
    assert loan.total_items == 2
    assert Book.get(db_session, book.id).quantity_available == 5


def test_self_service_requires_future_due_date(db_session, reader, make_book):
    book = make_book()
    with pytest.raises(InvalidRequestError):
        LoanLedger.create_self_service(db_session, reader, utcnow() - timedelta(hours=1),
                                       loan_items((book.id, 1)))
    assert db_session.query(Loan).count() == 0


def test_self_service_out_of_stock_creates_nothing(db_session, reader, make_book):
    book = make_book(total=2, available=0)
    with pytest.raises(InsufficientStockError):
        LoanLedger.create_self_service(db_session, reader, in_days(7), loan_items((book.id, 1)))
    assert db_session.query(Loan).count() == 0


def test_self_service_rejects_unknown_or_inactive_books(db_session, reader, make_book):
    inactive = make_book(status=BookStatus.INACTIVE)
    with pytest.raises(BookNotFoundError):
        LoanLedger.create_self_service(db_session, reader, in_days(7), loan_items((999, 1)))
    with pytest.raises(InvalidRequestError):
        LoanLedger.create_self_service(db_session, reader, in_days(7), loan_items((inactive.id, 1)))
    assert db_session.query(Loan).count() == 0


def test_librarian_loan_takes_stock_immediately(db_session, reader, librarian, make_book):
    first, second = make_book(total=5), make_book(total=3)
    loan = LoanLedger.create_for_reader(
        db_session, librarian, reader.id, in_days(14),
        loan_items((first.id, 2), (second.id, 1)), notes="walk-in")
    assert loan.status == LoanStatus.BORROWED
    assert loan.created_by_role == CreatedByRole.LIBRARIAN
    assert loan.librarian_id == librarian.id
    assert [item.book_id for item in loan.items] == [first.id, second.id]
    assert Book.get(db_session, first.id).quantity_available == 3
    assert Book.get(db_session, second.id).quantity_available == 2


def test_librarian_loan_rolls_back_all_stock(db_session, reader, librarian, make_book):
    plenty, scarce = make_book(total=5), make_book(total=1)
    with pytest.raises(InsufficientStockError):
        LoanLedger.create_for_reader(
            db_session, librarian, reader.id, in_days(14),
            loan_items((plenty.id, 2), (scarce.id, 2)))
    assert Book.get(db_session, plenty.id).quantity_available == 5
    assert Book.get(db_session, scarce.id).quantity_available == 1
    assert db_session.query(Loan).count() == 0


def test_librarian_loan_checks_reader(db_session, librarian, make_user, make_book):
    book = make_book()
    with pytest.raises(UserNotFoundError):
        LoanLedger.create_for_reader(db_session, librarian, 999, in_days(7), loan_items((book.id, 1)))
    inactive = make_user(Role.USER, status=UserStatus.INACTIVE)
    with pytest.raises(InvalidRequestError):
        LoanLedger.create_for_reader(db_session, librarian, inactive.id, in_days(7),
                                     loan_items((book.id, 1)))


def test_approve_takes_stock_and_emits_event(db_session, reader, librarian, make_book):
    book = make_book(total=5)
    loan = LoanLedger.create_self_service(db_session, reader, in_days(7), loan_items((book.id, 2)))
    loan = LoanLedger.approve(db_session, loan.id, librarian, notes="ok")
    assert loan.status == LoanStatus.BORROWED
    assert loan.librarian_id == librarian.id
    assert Book.get(db_session, book.id).quantity_available == 3
    event = db_session.query(OutboxEvent).one()
    assert event.type == "LOAN_APPROVED"
    assert event.user_id == reader.id
    assert event.payload["loan_code"] == loan.code


def test_approve_twice_conflicts_without_double_decrement(db_session, reader, librarian, make_book):
    book = make_book(total=5)
    loan = LoanLedger.create_self_service(db_session, reader, in_days(7), loan_items((book.id, 2)))
    LoanLedger.approve(db_session, loan.id, librarian)
    with pytest.raises(ConflictError):
        LoanLedger.approve(db_session, loan.id, librarian)
    assert Book.get(db_session, book.id).quantity_available == 3


def test_approve_rechecks_stock(db_session, reader, librarian, make_book):
    plenty, scarce = make_book(total=5), make_book(total=2)
    loan = LoanLedger.create_self_service(
        db_session, reader, in_days(7), loan_items((plenty.id, 2), (scarce.id, 2)))
    # Someone else took the copies in the meantime
    Book.adjust_availability(db_session, scarce.id, -1)
    db_session.commit()
    with pytest.raises(InsufficientStockError):
        LoanLedger.approve(db_session, loan.id, librarian)
    assert Book.get(db_session, plenty.id).quantity_available == 5
    assert Loan.get(db_session, loan.id).status == LoanStatus.PENDING
    assert db_session.query(OutboxEvent).count() == 0


def test_reject(db_session, reader, librarian, make_book):
    book = make_book(total=5)
    loan = LoanLedger.create_self_service(db_session, reader, in_days(7), loan_items((book.id, 1)))
    loan = LoanLedger.reject(db_session, loan.id, librarian, reason="Reserved for a course")
    assert loan.status == LoanStatus.CANCELLED
    assert Book.get(db_session, book.id).quantity_available == 5
    event = db_session.query(OutboxEvent).one()
    assert event.type == "LOAN_REJECTED"
    assert event.payload["reason"] == "Reserved for a course"
    with pytest.raises(InvalidStatusError):
        LoanLedger.reject(db_session, loan.id, librarian)
    with pytest.raises(InvalidStatusError):
        LoanLedger.approve(db_session, loan.id, librarian)


def test_readers_only_see_their_loans(db_session, make_user, librarian, make_book):
    book = make_book()
    owner, other = make_user(Role.USER), make_user(Role.USER)
    loan = LoanLedger.create_self_service(db_session, owner, in_days(7), loan_items((book.id, 1)))
    assert LoanLedger.get_for(db_session, loan.id, owner).id == loan.id
    assert LoanLedger.get_for(db_session, loan.id, librarian).id == loan.id
    with pytest.raises(PermissionDeniedError):
        LoanLedger.get_for(db_session, loan.id, other)


def test_overdue_is_derived(db_session, reader, librarian, make_book):
    book = make_book()
    loan = LoanLedger.create_for_reader(db_session, librarian, reader.id, in_days(7),
                                        loan_items((book.id, 1)))
    loan.due_date = utcnow() - timedelta(days=2, hours=1)
    db_session.commit()
    assert loan.is_overdue
    assert loan.overdue_days == 3
    assert loan.status == LoanStatus.BORROWED

    loans, total = LoanLedger.list(db_session, status=LoanStatus.OVERDUE)
    assert total == 1 and loans[0].id == loan.id
    loans, total = LoanLedger.list_overdue(db_session)
    assert total == 1


def test_list_filters_and_pagination(db_session, make_user, librarian, make_book):
    book = make_book(total=10)
    first, second = make_user(Role.USER), make_user(Role.USER)
    for _ in range(3):
        LoanLedger.create_self_service(db_session, first, in_days(7), loan_items((book.id, 1)))
    LoanLedger.create_for_reader(db_session, librarian, second.id, in_days(7), loan_items((book.id, 1)))

    loans, total = LoanLedger.list(db_session, offset=0, limit=2)
    assert total == 4 and len(loans) == 2
    loans, total = LoanLedger.list_for_reader(db_session, first.id)
    assert total == 3
    loans, total = LoanLedger.list(db_session, status=LoanStatus.BORROWED)
    assert [loan.reader_user_id for loan in loans] == [second.id]
