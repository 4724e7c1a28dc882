"""
Seed README

Creates a handful of users and books in an empty Libris database, makes
sure a fine policy is active and prints a bearer token for each user so
the API can be exercised right away.

    python scripts/seed.py --books 10
"""

import argparse
import sys
from dotenv import load_dotenv

load_dotenv()

from libris.core.auth import create_session_token
from libris.core.db import SessionLocal, init as db_init
from libris.core.models import User, Book, Role
from libris.core.policy import PolicyStore

USERS = [
    ("admin@libris.local", "Libris Admin", Role.ADMIN),
    ("librarian@libris.local", "Front Desk", Role.LIBRARIAN),
    ("reader@libris.local", "Sample Reader", Role.USER),
]


def seed_users(db):
    users = []
    for email, full_name, role in USERS:
        user = db.query(User).filter(User.email == email).one_or_none()
        if user is None:
            user = User(email=email, full_name=full_name, role=role)
            db.add(user)
        users.append(user)
    return users


def seed_books(db, count, copies):
    for i in range(1, count + 1):
        isbn = f"978000000{i:04d}"
        if db.query(Book).filter(Book.isbn == isbn).one_or_none():
            continue
        db.add(Book(isbn=isbn, title=f"Sample Book {i}", authors=["Unknown"],
                    quantity_total=copies, quantity_available=copies,
                    price=100000))


def main():
    parser = argparse.ArgumentParser(description="Seed a Libris database with sample data")
    parser.add_argument("--books", type=int, default=5)
    parser.add_argument("--copies", type=int, default=5)
    args = parser.parse_args()

    db_init()
    db = SessionLocal()
    try:
        PolicyStore.ensure_default(db)
        users = seed_users(db)
        seed_books(db, args.books, args.copies)
        db.commit()
        for user in users:
            print(f"{user.role.value:<10} {user.email:<28} {create_session_token(user)}")
    except Exception as e:
        db.rollback()
        print(f"Database error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
