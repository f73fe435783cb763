import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Optional

import jwt
from quart import g, request

from .config import settings
from .errors import Forbidden, Unauthorized

_logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Caller:
    id: int
    role: str = "customer"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def decode_token(token: str) -> Caller:
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        _logger.info("Rejected bearer token | err=%s", e)
        raise Unauthorized("Invalid or expired token")

    # account service tokens carry userId; older ones only id / sub
    raw_id = claims.get("userId", claims.get("id", claims.get("sub")))
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        raise Unauthorized("Invalid or expired token")
    return Caller(id=user_id, role=claims.get("role") or "customer", email=claims.get("email"))


def issue_token(user_id: int, role: str = "customer", email: Optional[str] = None, ttl_seconds: int = 3600) -> str:
    """Sign a token the way the account service does (used by tools and tests)."""
    now = datetime.now(timezone.utc)
    claims = {
        "userId": user_id,
        "role": role,
        "email": email,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def current_caller() -> Caller:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        raise Unauthorized("Access token is required")
    return decode_token(header[len("Bearer "):].strip())


def login_required(view):
    @wraps(view)
    async def wrapper(*args, **kwargs):
        g.caller = current_caller()
        return await view(*args, **kwargs)

    return wrapper


def admin_required(view):
    @wraps(view)
    async def wrapper(*args, **kwargs):
        caller = current_caller()
        if not caller.is_admin:
            raise Forbidden()
        g.caller = caller
        return await view(*args, **kwargs)

    return wrapper
