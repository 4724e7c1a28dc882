from datetime import timedelta
from libris.core.auth import create_session_token
from libris.core.utils import utcnow
from libris.schemas.loan import LoanItemRequest, ReturnItemRequest


def auth_headers(user):
    return {"Authorization": f"Bearer {create_session_token(user)}"}


def loan_items(*pairs):
    return [LoanItemRequest(book_id=book_id, qty=qty) for book_id, qty in pairs]


def return_items(*pairs, **kwargs):
    return [ReturnItemRequest(book_id=book_id, qty=qty, **kwargs) for book_id, qty in pairs]


def in_days(days):
    return utcnow() + timedelta(days=days)
