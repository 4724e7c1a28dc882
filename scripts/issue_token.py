import argparse
import sys
from dotenv import load_dotenv

load_dotenv()

from libris.core.auth import create_session_token
from libris.core.db import SessionLocal
from libris.core.models import User


def main():
    parser = argparse.ArgumentParser(description="Mint a bearer token for an existing user")
    parser.add_argument("--email", required=True)
    args = parser.parse_args()

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == args.email).one_or_none()
        if user is None:
            print(f"No user with email {args.email}", file=sys.stderr)
            sys.exit(1)
        print(create_session_token(user))
    finally:
        db.close()


if __name__ == "__main__":
    main()
