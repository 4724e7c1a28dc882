import os

os.environ["TESTING"] = "true"

import pytest
from fastapi.testclient import TestClient
from libris.app import app
from libris.core.db import Base, engine, SessionLocal, get_db
from libris.core.models import User, Book, Role, UserStatus, BookStatus


@pytest.fixture
def db_session():
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture
def client(db_session):
    app.dependency_overrides[get_db] = lambda: db_session
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make_user(role=Role.USER, status=UserStatus.ACTIVE):
        counter["n"] += 1
        user = User(email=f"{role.value.lower()}{counter['n']}@example.edu",
                    full_name=f"{role.value.title()} {counter['n']}",
                    role=role, status=status)
        db_session.add(user)
        db_session.commit()
        return user
    return _make_user


@pytest.fixture
def make_book(db_session):
    counter = {"n": 0}

    def _make_book(total=5, available=None, price=100000, status=BookStatus.ACTIVE):
        counter["n"] += 1
        book = Book(isbn=f"978000000{counter['n']:04d}", title=f"Book {counter['n']}",
                    authors=["A. Author"], quantity_total=total,
                    quantity_available=total if available is None else available,
                    price=price, status=status)
        db_session.add(book)
        db_session.commit()
        return book
    return _make_book


@pytest.fixture
def reader(make_user):
    return make_user(Role.USER)


@pytest.fixture
def librarian(make_user):
    return make_user(Role.LIBRARIAN)


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN)
