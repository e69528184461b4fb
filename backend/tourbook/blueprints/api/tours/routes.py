"""Tours blueprint: tour CRUD, aliases, analytics and geospatial lookups.

Nested review routes (`/<tour_id>/reviews`) are served by the reviews
blueprint registered a second time under this prefix.
"""
import logging

from flask import Blueprint, request

from backend.tourbook.middleware.auth import protect, restrict_to
from backend.tourbook.schemas import Role
from backend.tourbook.serializers import request_payload, success
from backend.tourbook.services.images import discard_images, resize_tour_images
from backend.tourbook.services.resources import tour_handlers
from backend.tourbook.services.tours import analytics

logger = logging.getLogger(__name__)

tours_bp = Blueprint('tours', __name__)


@tours_bp.route('/top-5-cheap', methods=['GET'])
def top_five_cheap():
    args = {**request.args.to_dict(), **analytics.TOP_CHEAP_ALIAS}
    result = tour_handlers.get_all(args)
    return success({'data': result['data']}, results=result['results'])


@tours_bp.route('/tour-stats', methods=['GET'])
def tour_stats():
    return success({'stats': analytics.tour_stats()})


@tours_bp.route('/monthly-plan/<year>', methods=['GET'])
@protect
@restrict_to(Role.ADMIN, Role.LEAD_GUIDE, Role.GUIDE)
def monthly_plan(year):
    plan = analytics.monthly_plan(year)
    return success({'plan': plan}, results=len(plan))


@tours_bp.route('/tours-within/<distance>/center/<latlng>/unit/<unit>', methods=['GET'])
def tours_within(distance, latlng, unit):
    tours = analytics.tours_within(distance, latlng, unit)
    return success({'data': tours}, results=len(tours))


@tours_bp.route('/distances/<latlng>/unit/<unit>', methods=['GET'])
def distances(latlng, unit):
    return success({'data': analytics.distances(latlng, unit)})


@tours_bp.route('/', methods=['GET'])
def list_tours():
    result = tour_handlers.get_all(request.args)
    return success({'data': result['data']}, results=result['results'])


@tours_bp.route('/', methods=['POST'])
@protect
@restrict_to(Role.ADMIN, Role.LEAD_GUIDE)
def create_tour():
    return success({'data': tour_handlers.create_one(request_payload())}, status=201)


@tours_bp.route('/<tour_id>', methods=['GET'])
def get_tour(tour_id):
    return success({'data': tour_handlers.get_one(tour_id)})


@tours_bp.route('/<tour_id>', methods=['PATCH'])
@protect
@restrict_to(Role.ADMIN, Role.LEAD_GUIDE)
def update_tour(tour_id):
    payload = request_payload()
    stored = resize_tour_images(
        tour_id,
        request.files.get('imageCover'),
        request.files.getlist('images'),
    )
    payload.update(stored)
    try:
        updated = tour_handlers.update_one(tour_id, payload)
    except Exception:
        # Unknown tour or rejected payload: keep no orphan files
        discard_images('tours', [stored.get('imageCover'), *stored.get('images', [])])
        raise
    return success({'data': updated})


@tours_bp.route('/<tour_id>', methods=['DELETE'])
@protect
@restrict_to(Role.ADMIN, Role.LEAD_GUIDE)
def delete_tour(tour_id):
    tour_handlers.delete_one(tour_id)
    return success(status=204)
