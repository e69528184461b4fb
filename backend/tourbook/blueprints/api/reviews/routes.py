"""Reviews blueprint.

Registered twice: at `/api/v1/reviews` and nested under
`/api/v1/tours/<tour_id>/reviews`, where `tour_id` scopes listing and
creation to one tour.
"""
import logging

from flask import Blueprint, g, request

from backend.tourbook.errors import NotFound
from backend.tourbook.middleware.auth import protect, restrict_to
from backend.tourbook.repositories import to_object_id, tours_repo
from backend.tourbook.schemas import Role
from backend.tourbook.serializers import request_payload, success
from backend.tourbook.services.resources import ensure_review_author, review_handlers

logger = logging.getLogger(__name__)

reviews_bp = Blueprint('reviews', __name__)


@reviews_bp.route('/', methods=['GET'])
@protect
def list_reviews(tour_id=None):
    pre_filter = {'tour': to_object_id(tour_id, 'tourId')} if tour_id else None
    result = review_handlers.get_all(request.args, pre_filter=pre_filter)
    return success({'data': result['data']}, results=result['results'])


@reviews_bp.route('/', methods=['POST'])
@protect
@restrict_to(Role.USER)
def create_review(tour_id=None):
    payload = request_payload()
    if tour_id:
        payload['tour'] = tour_id
    payload['user'] = g.current_user['_id']

    if payload.get('tour') and not tours_repo.find_by_id(payload['tour'], unscoped=True):
        raise NotFound("No tour found with that ID")

    return success({'data': review_handlers.create_one(payload)}, status=201)


@reviews_bp.route('/<review_id>', methods=['GET'])
@protect
def get_review(review_id, tour_id=None):
    return success({'data': review_handlers.get_one(review_id)})


@reviews_bp.route('/<review_id>', methods=['PATCH'])
@protect
@restrict_to(Role.USER, Role.ADMIN)
def update_review(review_id, tour_id=None):
    ensure_review_author(review_id, g.current_user)
    return success({'data': review_handlers.update_one(review_id, request_payload())})


@reviews_bp.route('/<review_id>', methods=['DELETE'])
@protect
@restrict_to(Role.USER, Role.ADMIN)
def delete_review(review_id, tour_id=None):
    ensure_review_author(review_id, g.current_user)
    review_handlers.delete_one(review_id)
    return success(status=204)
