import math
import secrets
import time
from datetime import datetime, timezone


SECONDS_PER_DAY = 24 * 60 * 60

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def days_late(due_date: datetime, now: datetime = None) -> int:
    """Whole days (rounded up) elapsed since `due_date`, never negative."""
    now = as_utc(now) if now else utcnow()
    elapsed = (now - as_utc(due_date)).total_seconds()
    return max(0, math.ceil(elapsed / SECONDS_PER_DAY))

def generate_loan_code() -> str:
    timestamp = str(int(time.time() * 1000))[-6:]
    return f"LOAN-{timestamp}-{secrets.token_hex(2).upper()}"
