"""Password reset flow: token generation, storage, email and consumption.

Only a sha256 hash of the reset token is stored on the user document; the
raw token travels in the emailed link. Requesting again overwrites the
stored hash, so only the latest token is usable, and a successful reset
clears it.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Any, Callable, Dict, Tuple

from flask import current_app

from backend.tourbook.errors import DeliveryError, InvalidOrExpiredToken, NotFound
from backend.tourbook.repositories import users_repo
from backend.tourbook.schemas import utcnow
from backend.tourbook.services.auth import tokens
from backend.tourbook.services.auth.auth_service import rotate_password
from backend.tourbook.services.email import Email

logger = logging.getLogger(__name__)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def generate_reset_token() -> str:
    return secrets.token_hex(32)


def request_reset(email: str, reset_url_for: Callable[[str], str]) -> None:
    """Issue a reset token for `email` and mail the link built by `reset_url_for`."""
    user = users_repo.find_by_email(email)
    if not user:
        raise NotFound("There is no user with that email address.")

    token = generate_reset_token()
    minutes = current_app.config.get('PASSWORD_RESET_EXPIRES_MINUTES', 10)
    users_repo.update_one(
        {'_id': user['_id']},
        {'$set': {
            'passwordResetToken': _hash_token(token),
            'passwordResetExpires': utcnow() + timedelta(minutes=minutes),
        }},
    )

    try:
        Email(user, reset_url_for(token)).send_password_reset()
    except DeliveryError:
        users_repo.update_one(
            {'_id': user['_id']},
            {'$unset': {'passwordResetToken': '', 'passwordResetExpires': ''}},
        )
        raise

    logger.info("Password reset token sent to user %s", user['_id'])


def consume_reset(token: str, password: Any, password_confirm: Any) -> Tuple[Dict[str, Any], str]:
    """Set a new password for the holder of a valid reset token.

    Returns the updated user and a fresh session token.
    """
    user = users_repo.find_by_reset_token(_hash_token(token or ''), utcnow())
    if not user:
        raise InvalidOrExpiredToken()

    updated = rotate_password(user['_id'], password, password_confirm, clear_reset=True)
    logger.info("Password reset completed for user %s", user['_id'])
    return updated, tokens.issue(user['_id'])
