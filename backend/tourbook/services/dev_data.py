"""Load and clear the development data set (tours, users and reviews).

The JSON files carry string ids so documents can reference each other;
they are converted to ObjectIds here. User passwords are stored in plain
text in the files and hashed on import.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional

from bson import ObjectId

from backend.tourbook.repositories import VERSION_KEY, reviews_repo, tours_repo, users_repo
from backend.tourbook.schemas import utcnow
from backend.tourbook.services.auth.passwords import hash_password
from backend.tourbook.services.resources import derive_slug, recompute_tour_ratings

logger = logging.getLogger(__name__)

DATA_FILES = ('tours.json', 'users.json', 'reviews.json')


def load_json(path: str) -> List[Dict[str, Any]]:
    with open(path, 'r', encoding='utf-8') as fh:
        return json.load(fh)


def _oid(value: Any) -> ObjectId:
    return value if isinstance(value, ObjectId) else ObjectId(str(value))


def prepare_tour(raw: Dict[str, Any]) -> Dict[str, Any]:
    tour = dict(raw)
    if '_id' in tour:
        tour['_id'] = _oid(tour['_id'])
    tour['slug'] = derive_slug(tour['name'])
    tour['guides'] = [_oid(g) for g in tour.get('guides', [])]
    tour.setdefault('ratingsAverage', 4.5)
    tour.setdefault('ratingsQuantity', 0)
    tour.setdefault('images', [])
    tour.setdefault('secretTour', False)
    tour.setdefault('createdAt', utcnow())
    tour['startDates'] = [tours_repo.schema.fields['startDates'].item.cast(d) for d in tour.get('startDates', [])]
    tour[VERSION_KEY] = 0
    return tour


def prepare_user(raw: Dict[str, Any], rounds: Optional[int] = None) -> Dict[str, Any]:
    user = dict(raw)
    if '_id' in user:
        user['_id'] = _oid(user['_id'])
    user.pop('passwordConfirm', None)
    user['email'] = user['email'].strip().lower()
    user['password'] = hash_password(user['password'], rounds=rounds)
    user.setdefault('role', 'user')
    user.setdefault('photo', 'default.jpg')
    user.setdefault('active', True)
    user[VERSION_KEY] = 0
    return user


def prepare_review(raw: Dict[str, Any]) -> Dict[str, Any]:
    review = dict(raw)
    if '_id' in review:
        review['_id'] = _oid(review['_id'])
    review['tour'] = _oid(review['tour'])
    review['user'] = _oid(review['user'])
    review.setdefault('createdAt', utcnow())
    review[VERSION_KEY] = 0
    return review


def import_data(data_dir: str, rounds: Optional[int] = None) -> Dict[str, int]:
    """Insert the three data files from `data_dir` and recompute tour ratings.

    Must run inside an application context.
    """
    tours = [prepare_tour(t) for t in load_json(os.path.join(data_dir, 'tours.json'))]
    users = [prepare_user(u, rounds) for u in load_json(os.path.join(data_dir, 'users.json'))]
    reviews = [prepare_review(r) for r in load_json(os.path.join(data_dir, 'reviews.json'))]

    if tours:
        tours_repo.collection.insert_many(tours)
    if users:
        users_repo.collection.insert_many(users)
    if reviews:
        reviews_repo.collection.insert_many(reviews)

    for tour in tours:
        recompute_tour_ratings(tour['_id'])

    counts = {'tours': len(tours), 'users': len(users), 'reviews': len(reviews)}
    logger.info("Imported development data: %s", counts)
    return counts


def delete_data() -> Dict[str, int]:
    counts = {
        'tours': tours_repo.delete_many(),
        'users': users_repo.delete_many(),
        'reviews': reviews_repo.delete_many(),
    }
    logger.info("Deleted development data: %s", counts)
    return counts
