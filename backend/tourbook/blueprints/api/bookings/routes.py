"""Bookings blueprint: checkout sessions and booking management."""
import logging

from flask import Blueprint, g, request

from backend.tourbook.middleware.auth import protect, restrict_to
from backend.tourbook.schemas import Role
from backend.tourbook.serializers import request_payload, success
from backend.tourbook.services.bookings import create_checkout_session
from backend.tourbook.services.resources import booking_handlers

logger = logging.getLogger(__name__)

bookings_bp = Blueprint('bookings', __name__)

MANAGERS = (Role.ADMIN, Role.LEAD_GUIDE)


@bookings_bp.route('/checkout-session/<tour_id>', methods=['GET'])
@protect
def get_checkout_session(tour_id):
    session = create_checkout_session(tour_id, g.current_user, request.host_url)
    return success(session=session)


@bookings_bp.route('/', methods=['GET'])
@protect
@restrict_to(*MANAGERS)
def list_bookings():
    result = booking_handlers.get_all(request.args)
    return success({'data': result['data']}, results=result['results'])


@bookings_bp.route('/', methods=['POST'])
@protect
@restrict_to(*MANAGERS)
def create_booking():
    return success({'data': booking_handlers.create_one(request_payload())}, status=201)


@bookings_bp.route('/<booking_id>', methods=['GET'])
@protect
@restrict_to(*MANAGERS)
def get_booking(booking_id):
    return success({'data': booking_handlers.get_one(booking_id)})


@bookings_bp.route('/<booking_id>', methods=['PATCH'])
@protect
@restrict_to(*MANAGERS)
def update_booking(booking_id):
    return success({'data': booking_handlers.update_one(booking_id, request_payload())})


@bookings_bp.route('/<booking_id>', methods=['DELETE'])
@protect
@restrict_to(*MANAGERS)
def delete_booking(booking_id):
    booking_handlers.delete_one(booking_id)
    return success(status=204)
