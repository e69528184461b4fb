"""Authentication chain and role guard for routes and views.

`protect` is the hard variant: any failure raises `Unauthenticated`.
`is_logged_in` runs the same chain as a soft check and leaves the request
anonymous on failure. Both attach the user document to `g.current_user`.
`restrict_to` must be applied after `protect`.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional

from bson import ObjectId
from flask import current_app, g, request
from pymongo.errors import PyMongoError

from backend.tourbook import db
from backend.tourbook.errors import Forbidden, Unauthenticated
from backend.tourbook.repositories import users_repo
from backend.tourbook.schemas import Role, parse_role
from backend.tourbook.services.auth import tokens

logger = logging.getLogger(__name__)


def extract_token() -> Optional[str]:
    """Bearer header first, then the session cookie unless it holds the logout sentinel."""
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        token = header[len('Bearer '):].strip()
        if token:
            return token

    cookie = request.cookies.get(current_app.config['JWT_COOKIE_NAME'])
    if cookie and cookie != current_app.config['JWT_LOGOUT_SENTINEL']:
        return cookie
    return None


def authenticate(token: Optional[str]) -> Dict[str, Any]:
    """Resolve `token` to an active, fresh user or raise `Unauthenticated`."""
    if not token:
        raise Unauthenticated("You are not logged in! Please log in to get access.")

    try:
        claims = tokens.verify(token)
    except tokens.InvalidToken as e:
        raise Unauthenticated(str(e))

    user = users_repo.find_one({'_id': ObjectId(claims.user_id)}) if ObjectId.is_valid(claims.user_id) else None
    if not user:
        raise Unauthenticated("The user belonging to this token does no longer exist.")

    if tokens.is_stale(claims.issued_at, user.get('passwordChangedAt')):
        raise Unauthenticated("User recently changed password! Please log in again.")

    return user


def protect(func: Callable[..., Any]) -> Callable[..., Any]:
    """Require an authenticated user for the wrapped route."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        g.current_user = authenticate(extract_token())
        return func(*args, **kwargs)

    return wrapper


def is_logged_in() -> None:
    """Soft authentication: attach the user when the cookie is valid, else stay anonymous."""
    g.current_user = None
    token = request.cookies.get(current_app.config['JWT_COOKIE_NAME'])
    if not token or token == current_app.config['JWT_LOGOUT_SENTINEL']:
        return
    try:
        g.current_user = authenticate(token)
    except Unauthenticated:
        g.current_user = None
    except (PyMongoError, db.DatabaseError) as e:
        logger.warning("User lookup failed, continuing anonymously: %s", e)
        g.current_user = None


def current_user() -> Optional[Dict[str, Any]]:
    return g.get('current_user')


def check_role(user: Optional[Dict[str, Any]], allowed: Iterable[Role]) -> bool:
    if not user:
        return False
    role = parse_role(user.get('role'))
    return role is not None and role in set(allowed)


def restrict_to(*allowed: Role) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Allow the wrapped route only for users whose role is in `allowed`."""
    allowed_set = frozenset(allowed)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            user = current_user()
            if not check_role(user, allowed_set):
                logger.warning(
                    "Role access denied",
                    extra={
                        "user_id": str(user.get('_id')) if user else None,
                        "role": user.get('role') if user else None,
                        "endpoint": func.__name__,
                    },
                )
                raise Forbidden("You do not have permission to perform this action")
            return func(*args, **kwargs)

        return wrapper

    return decorator
