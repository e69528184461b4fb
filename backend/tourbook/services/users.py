"""Self-service profile operations for the logged-in user."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from pymongo.errors import DuplicateKeyError
from werkzeug.datastructures import FileStorage

from backend.tourbook.errors import NotFound, ValidationError, conflict_from_duplicate_key
from backend.tourbook.repositories import users_repo
from backend.tourbook.services.images import discard_images, resize_user_photo

logger = logging.getLogger(__name__)

SELF_EDITABLE_FIELDS = ('name', 'email')


def update_me(user: Dict[str, Any], payload: Mapping[str, Any], photo: Optional[FileStorage] = None) -> Dict[str, Any]:
    if 'password' in payload or 'passwordConfirm' in payload:
        raise ValidationError("This route is not for password updates. Please use /updateMyPassword.")

    data = {key: payload[key] for key in SELF_EDITABLE_FIELDS if key in payload}
    cleaned = users_repo.schema.validate(data, existing=user)
    stored = None
    if photo is not None and photo.filename:
        cleaned['photo'] = stored = resize_user_photo(photo, user['_id'])

    try:
        updated = users_repo.update_fields(user['_id'], cleaned)
    except DuplicateKeyError as e:
        discard_images('users', [stored])
        raise conflict_from_duplicate_key(e)
    if not updated:
        discard_images('users', [stored])
        raise NotFound("The user belonging to this token does no longer exist.")
    return users_repo.public(updated)


def delete_me(user: Dict[str, Any]) -> None:
    users_repo.update_one({'_id': user['_id']}, {'$set': {'active': False}})
    logger.info("User %s deactivated their account", user['_id'])
