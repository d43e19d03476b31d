"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events. No bearer credential: the signature is
the only authenticity check. Raw body is required for verification.
"""

import logging

from flask import Blueprint, jsonify, request

from membership.extensions import processor
from membership.services.webhook_service import handle_event, verify_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET (BadSignature -> 400)
    3. Dispatch; unknown types and unmappable customers are still acknowledged
    4. A failing handler answers 400 so Stripe retries the delivery
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    event = verify_event(processor, payload, sig_header)

    try:
        outcome = handle_event(processor, event)
    except Exception as e:
        logger.error(f"Webhook processing failed for {event.get('id')}: {e}")
        return jsonify({"error": str(e)}), 400

    logger.info(f"Webhook {event.get('id')} acknowledged ({outcome})")
    return jsonify({"received": True}), 200
