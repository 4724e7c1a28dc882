import pytest
from libris.core.exceptions import (
    BookNotFoundError, InsufficientStockError, InvalidRequestError
)
from libris.core.models import Book


def test_adjust_availability(db_session, make_book):
    book = make_book(total=5, available=5)
    Book.adjust_availability(db_session, book.id, -2)
    db_session.commit()
    assert Book.get(db_session, book.id).quantity_available == 3


def test_decrement_never_goes_negative(db_session, make_book):
    book = make_book(total=2, available=1)
    with pytest.raises(InsufficientStockError) as excinfo:
        Book.adjust_availability(db_session, book.id, -2)
    assert "Available: 1, Requested: 2" in str(excinfo.value)
    db_session.rollback()
    assert Book.get(db_session, book.id).quantity_available == 1


def test_increment_is_clamped_to_total(db_session, make_book):
    book = make_book(total=3, available=2)
    Book.adjust_availability(db_session, book.id, 5)
    db_session.commit()
    assert Book.get(db_session, book.id).quantity_available == 3


def test_missing_book(db_session):
    with pytest.raises(BookNotFoundError):
        Book.adjust_availability(db_session, 999, 1)


def test_quantity_validation(make_book):
    book = make_book(total=4, available=4)
    with pytest.raises(InvalidRequestError):
        book.quantity_available = -1
    book.quantity_total = 2
    assert book.quantity_available == 2


def test_find_by_ids(db_session, make_book):
    first, second = make_book(), make_book()
    found = Book.find_by_ids(db_session, [first.id, second.id, 999])
    assert set(found) == {first.id, second.id}
    assert Book.find_by_ids(db_session, []) == {}
