"""Payment provider webhook.

The body must be read raw: the signature covers the exact bytes sent.
"""
import logging

from flask import Blueprint, jsonify, request

from backend.tourbook.errors import ValidationError
from backend.tourbook.services.bookings import WebhookSignatureError, handle_webhook

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__)


@webhooks_bp.route('/webhook-checkout', methods=['POST'])
def webhook_checkout():
    try:
        handle_webhook(request.get_data(), request.headers.get('Stripe-Signature'))
    except WebhookSignatureError as e:
        logger.warning(f"Rejected webhook: {e}")
        raise ValidationError(f"Webhook error: {e}") from e
    return jsonify({"received": True}), 200
