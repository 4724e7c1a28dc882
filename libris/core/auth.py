import logging
from typing import Optional
from fastapi import Cookie, Depends, Request
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from sqlalchemy.orm import Session
from libris.configs import SEED, TOKEN_TTL
from libris.core.db import get_db
from libris.core.exceptions import AuthError, PermissionDeniedError
from libris.core.models import User, Role

logger = logging.getLogger(__name__)

SERIALIZER = None  # Will be initialized lazily


def _get_serializer():
    """Get or initialize the SERIALIZER lazily."""
    global SERIALIZER
    if SERIALIZER is None:
        if not SEED:
            raise AuthError("Token signing is not configured")
        SERIALIZER = URLSafeTimedSerializer(SEED, salt="libris-session")
    return SERIALIZER


def create_session_token(user: User) -> str:
    """Returns a signed token carrying the user's id and role."""
    return _get_serializer().dumps({"uid": user.id, "role": Role(user.role).value})


def verify_session_token(token: str) -> Optional[dict]:
    """Returns the token payload, or None when it is forged or expired."""
    if not token:
        return None
    try:
        data = _get_serializer().loads(token, max_age=TOKEN_TTL)
    except SignatureExpired:
        logger.info("Rejected expired session token")
        return None
    except BadSignature:
        return None
    if not isinstance(data, dict) or "uid" not in data:
        return None
    return data


def _bearer(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return None


def get_principal(request: Request,
                  session: Optional[str] = Cookie(None),
                  db: Session = Depends(get_db)) -> User:
    """Resolves the Bearer header (or the session cookie) to an active user."""
    token = _bearer(request) or session
    if not token:
        raise AuthError("Authentication required")
    data = verify_session_token(token)
    if data is None:
        raise AuthError("Invalid or expired token")
    user = User.get(db, data["uid"])
    if user is None or not user.is_active:
        raise AuthError("Account is missing or inactive")
    return user


def requires_roles(*roles):
    """Dependency factory gating a route to the given roles."""
    allowed = {Role(r) for r in roles}

    def checker(principal: User = Depends(get_principal)) -> User:
        if principal.role not in allowed:
            raise PermissionDeniedError(
                f"This action requires one of: {', '.join(sorted(r.value for r in allowed))}")
        return principal
    return checker


require_staff = requires_roles(Role.LIBRARIAN, Role.ADMIN)
require_admin = requires_roles(Role.ADMIN)
