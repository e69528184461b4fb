"""Session token service.

Tokens are stateless HS256 JWTs minted by flask-jwt-extended, carrying the
user id as `sub` and the issue time as `iat`. Nothing is persisted; a token
is revoked only when it expires or when the user changes their password
after it was issued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import jwt
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException

logger = logging.getLogger(__name__)


class InvalidToken(Exception):
    """Token is missing, malformed, tampered with or expired."""


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    issued_at: datetime


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by MongoDB) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def issue(user_id: Any) -> str:
    return create_access_token(identity=str(user_id))


def verify(token: Optional[str]) -> TokenClaims:
    if not token:
        raise InvalidToken("No token provided")
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise InvalidToken("Your token has expired! Please log in again.")
    except (jwt.InvalidTokenError, JWTExtendedException) as e:
        logger.debug("Rejected session token: %s", e)
        raise InvalidToken("Invalid token. Please log in again!")

    if 'iat' not in payload:
        raise InvalidToken("Invalid token. Please log in again!")
    return TokenClaims(
        user_id=str(payload['sub']),
        issued_at=datetime.fromtimestamp(int(payload['iat']), tz=timezone.utc),
    )


def is_stale(issued_at: datetime, password_changed_at: Optional[datetime]) -> bool:
    """True when the password changed after the token was issued (second granularity)."""
    if password_changed_at is None:
        return False
    changed = int(as_utc(password_changed_at).timestamp())
    issued = int(as_utc(issued_at).timestamp())
    return issued < changed
