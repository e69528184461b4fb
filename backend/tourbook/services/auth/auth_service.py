"""Signup, login and password rotation."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from backend.tourbook.errors import DeliveryError, Unauthenticated, ValidationError, conflict_from_duplicate_key
from backend.tourbook.repositories import VERSION_KEY, users_repo
from backend.tourbook.schemas import Role, USER_SCHEMA, utcnow
from backend.tourbook.services.auth import tokens
from backend.tourbook.services.auth.passwords import check_password, hash_password
from backend.tourbook.services.email import Email

logger = logging.getLogger(__name__)

SIGNUP_FIELDS = ('name', 'email', 'password', 'passwordConfirm')


def signup(payload: Dict[str, Any], welcome_url: str) -> Tuple[Dict[str, Any], str]:
    """Create a regular user and return `(user, token)`.

    Only name, email and the password pair are read from `payload`; the role
    is always `user`.
    """
    data = {key: payload.get(key) for key in SIGNUP_FIELDS}
    cleaned = USER_SCHEMA.validate(data)
    cleaned['role'] = Role.USER.value
    cleaned['password'] = hash_password(cleaned['password'])

    try:
        user_id = users_repo.insert_one(cleaned)
    except DuplicateKeyError as e:
        raise conflict_from_duplicate_key(e)

    user = users_repo.find_by_id(user_id)
    try:
        Email(user, welcome_url).send_welcome()
    except DeliveryError:
        logger.warning("Welcome email not delivered for user %s", user_id)

    return user, tokens.issue(user_id)


def login(email: Optional[str], password: Optional[str]) -> Tuple[Dict[str, Any], str]:
    if not email or not password:
        raise ValidationError("Please provide email and password!")

    user = users_repo.find_by_email(email)
    if not user or not check_password(password, user.get('password')):
        raise Unauthenticated("Incorrect email or password")

    return user, tokens.issue(user['_id'])


def validate_new_password(password: Any, password_confirm: Any) -> str:
    """Run the schema rules for a new password pair and return the plaintext."""
    cleaned = USER_SCHEMA.validate(
        {'password': password, 'passwordConfirm': password_confirm},
        existing={},
    )
    return cleaned['password']


def rotate_password(user_id: Any, password: Any, password_confirm: Any, *, clear_reset: bool = False) -> Dict[str, Any]:
    """Store a new password hash and mark the change time.

    `passwordChangedAt` is set one second in the past so a token issued right
    after the change is never considered stale.
    """
    plain = validate_new_password(password, password_confirm)
    update: Dict[str, Any] = {
        '$set': {
            'password': hash_password(plain),
            'passwordChangedAt': utcnow() - timedelta(seconds=1),
        },
        '$inc': {VERSION_KEY: 1},
    }
    if clear_reset:
        update['$unset'] = {'passwordResetToken': '', 'passwordResetExpires': ''}

    users_repo.update_one({'_id': user_id}, update)
    return users_repo.find_by_id(user_id)


def update_password(user: Dict[str, Any], current: Optional[str], password: Any, password_confirm: Any) -> Tuple[Dict[str, Any], str]:
    stored = users_repo.find_by_id(user['_id'])
    if not stored or not check_password(current or '', stored.get('password')):
        raise Unauthenticated("Your current password is wrong.")

    updated = rotate_password(stored['_id'], password, password_confirm)
    logger.info("Password updated for user %s", stored['_id'])
    return updated, tokens.issue(stored['_id'])
