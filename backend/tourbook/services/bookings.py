"""Stripe checkout sessions and the payment webhook.

A booking is created only from a signed `checkout.session.completed`
event. The Stripe session id is stored on the booking under a unique index,
so a redelivered event does not create a second booking.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import stripe
from flask import current_app
from pymongo.errors import DuplicateKeyError

from backend.tourbook.errors import NotFound, UpstreamError, ValidationError
from backend.tourbook.repositories import bookings_repo, to_object_id, tours_repo, users_repo
from backend.tourbook.schemas import BOOKING_SCHEMA

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300
CHECKOUT_COMPLETED = 'checkout.session.completed'


class WebhookSignatureError(Exception):
    """The webhook body could not be authenticated or parsed."""


def create_checkout_session(tour_id: Any, user: Dict[str, Any], host_url: str) -> Dict[str, Any]:
    tour = tours_repo.find_by_id(tour_id)
    if not tour:
        raise NotFound("No tour found with that ID")

    base = host_url.rstrip('/')
    cfg = current_app.config
    try:
        session = stripe.checkout.Session.create(
            api_key=cfg['STRIPE_SECRET_KEY'],
            mode='payment',
            payment_method_types=['card'],
            success_url=f"{base}/my-tours?alert=booking",
            cancel_url=f"{base}/tour/{tour.get('slug')}",
            customer_email=user['email'],
            client_reference_id=str(tour['_id']),
            line_items=[{
                'quantity': 1,
                'price_data': {
                    'currency': cfg.get('STRIPE_CURRENCY', 'usd'),
                    'unit_amount': int(round(tour['price'] * 100)),
                    'product_data': {
                        'name': f"{tour['name']} Tour",
                        'description': tour.get('summary') or '',
                        'images': [f"{base}/img/tours/{tour.get('imageCover')}"],
                    },
                },
            }],
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout session failed for tour {tour['_id']}: {e}")
        raise UpstreamError("Could not create a payment session. Please try again later.")

    logger.info("Checkout session %s created for user %s", session.id, user.get('_id'))
    return {'id': session.id, 'url': session.url}


def verify_event(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """Authenticate the raw webhook body and return the decoded event."""
    try:
        stripe.WebhookSignature.verify_header(
            payload,
            signature,
            current_app.config.get('STRIPE_WEBHOOK_SECRET'),
            tolerance=SIGNATURE_TOLERANCE_SECONDS,
        )
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e))

    try:
        return json.loads(payload)
    except ValueError as e:
        raise WebhookSignatureError(f"Invalid payload: {e}")


def session_price(session: Dict[str, Any]) -> Optional[float]:
    line_items = session.get('line_items')
    if isinstance(line_items, dict):
        line_items = line_items.get('data')
    if line_items:
        amount = ((line_items[0] or {}).get('price_data') or {}).get('unit_amount')
        if amount is not None:
            return amount / 100
    if session.get('amount_total') is not None:
        return session['amount_total'] / 100
    return None


def create_booking_from_session(session: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Record the booking for a completed checkout session, once."""
    session_id = session.get('id')
    if session_id and bookings_repo.find_by_session(session_id):
        logger.info("Checkout session %s already booked", session_id)
        return None

    email = session.get('customer_email') or (session.get('customer_details') or {}).get('email')
    user = users_repo.find_by_email(email)
    if not user:
        logger.warning("Checkout session %s: no user with email %s", session_id, email)
        return None

    try:
        tour_id = to_object_id(session.get('client_reference_id'), 'client_reference_id')
    except ValidationError:
        logger.warning("Checkout session %s has an invalid tour reference", session_id)
        return None
    if not tours_repo.find_by_id(tour_id, unscoped=True):
        logger.warning("Checkout session %s references unknown tour %s", session_id, tour_id)
        return None

    price = session_price(session)
    if price is None:
        logger.warning("Checkout session %s carries no amount", session_id)
        return None

    booking = BOOKING_SCHEMA.validate({
        'tour': tour_id,
        'user': user['_id'],
        'price': price,
        'stripeSessionId': session_id,
    })
    try:
        booking_id = bookings_repo.insert_one(booking)
    except DuplicateKeyError:
        # Concurrent redelivery won the race
        logger.info("Checkout session %s already booked", session_id)
        return None

    logger.info("Booking %s created from checkout session %s", booking_id, session_id)
    return bookings_repo.find_by_id(booking_id)


def handle_webhook(payload: bytes, signature: Optional[str]) -> None:
    event = verify_event(payload, signature)
    if event.get('type') == CHECKOUT_COMPLETED:
        session = (event.get('data') or {}).get('object') or {}
        create_booking_from_session(session)
    else:
        logger.debug("Ignoring webhook event %s", event.get('type'))
