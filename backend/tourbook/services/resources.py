"""Per-entity handler instances and their lifecycle hooks."""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Any, Dict, Optional

from bson import ObjectId

from backend.tourbook.errors import Forbidden, NotFound
from backend.tourbook.repositories import (
    Populate,
    bookings_repo,
    reviews_repo,
    tours_repo,
    users_repo,
)
from backend.tourbook.schemas import Role, round_rating
from backend.tourbook.services.handler_factory import ResourceHandlers

logger = logging.getLogger(__name__)

DEFAULT_RATINGS_AVERAGE = 4.5

# Never writable through the generic user handlers
PASSWORD_FIELDS = (
    'password',
    'passwordConfirm',
    'passwordChangedAt',
    'passwordResetToken',
    'passwordResetExpires',
)


def derive_slug(name: str) -> str:
    """Lower-case ASCII slug: 'The Forest Hiker' -> 'the-forest-hiker'."""
    text = unicodedata.normalize('NFKD', name).encode('ascii', 'ignore').decode('ascii')
    text = re.sub(r'[^a-zA-Z0-9]+', '-', text).strip('-')
    return text.lower()


def tour_before_write(data: Dict[str, Any], existing: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    data.pop('slug', None)
    name = data.get('name')
    if isinstance(name, str) and name.strip():
        data['slug'] = derive_slug(name)
    return data


def recompute_tour_ratings(tour_id: ObjectId) -> Dict[str, Any]:
    """Write the review count and one-decimal average back onto the tour."""
    stats = reviews_repo.rating_stats(tour_id)
    if stats:
        values = {
            'ratingsQuantity': stats['nRating'],
            'ratingsAverage': round_rating(stats['avgRating']),
        }
    else:
        values = {'ratingsQuantity': 0, 'ratingsAverage': DEFAULT_RATINGS_AVERAGE}

    # Secret tours still carry ratings
    tours_repo.update_one({'_id': tour_id}, {'$set': values}, unscoped=True)
    logger.debug("Recomputed ratings for tour %s: %s", tour_id, values)
    return values


def review_before_write(data: Dict[str, Any], existing: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if existing is not None:
        # A review stays attached to its tour and author
        data.pop('tour', None)
        data.pop('user', None)
    return data


def review_after_write(doc: Dict[str, Any], action: str) -> None:
    tour_id = doc.get('tour')
    if isinstance(tour_id, ObjectId):
        recompute_tour_ratings(tour_id)


def user_before_write(data: Dict[str, Any], existing: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    for key in PASSWORD_FIELDS:
        data.pop(key, None)
    return data


def ensure_review_author(review_id: Any, user: Dict[str, Any]) -> Dict[str, Any]:
    """Return the review when `user` wrote it or is an admin, else raise `Forbidden`."""
    review = reviews_repo.find_by_id(review_id)
    if not review:
        raise NotFound()
    if user.get('role') != Role.ADMIN.value and review.get('user') != user.get('_id'):
        raise Forbidden("You can only change or delete your own reviews")
    return review


guides_populate = Populate('guides', users_repo, exclude=('passwordChangedAt',))
review_author_populate = Populate('user', users_repo, fields=('name', 'photo'))
tour_reviews_populate = Populate(
    'reviews',
    reviews_repo,
    foreign_field='tour',
    virtual=True,
    populate=(review_author_populate,),
)
booking_user_populate = Populate('user', users_repo)
booking_tour_populate = Populate('tour', tours_repo, fields=('name',))

tour_handlers = ResourceHandlers(
    tours_repo,
    before_write=tour_before_write,
    read_populate=(guides_populate, tour_reviews_populate),
    list_populate=(guides_populate,),
)
review_handlers = ResourceHandlers(
    reviews_repo,
    before_write=review_before_write,
    after_write=review_after_write,
    read_populate=(review_author_populate,),
    list_populate=(review_author_populate,),
)
user_handlers = ResourceHandlers(users_repo, before_write=user_before_write)
booking_handlers = ResourceHandlers(
    bookings_repo,
    read_populate=(booking_user_populate, booking_tour_populate),
    list_populate=(booking_user_populate, booking_tour_populate),
)
