"""Billing blueprint — /api/*

Member-initiated billing actions. All routes require a bearer credential.

Routes:
- POST /api/create-checkout        — start a new subscription, returns {url}
- POST /api/create-billing-portal  — Stripe Billing Portal, returns {url}
- POST /api/update-subscription    — change the monthly amount, returns {}
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from membership.decorators import member_required
from membership.extensions import limiter, processor
from membership.services import billing_service

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__, url_prefix="/api")


# ──────────────────────────────────────────────
# POST /api/create-checkout
# ──────────────────────────────────────────────

@billing_bp.route("/create-checkout", methods=["POST"])
@limiter.limit("10 per minute")
@member_required
def create_checkout():
    """Create a Checkout Session for {amount_dollars}.

    No subscription row is written here; the webhook does that once the
    member completes checkout.
    """
    body = request.get_json(silent=True) or {}
    url = billing_service.start_checkout(
        processor, current_user, body.get("amount_dollars")
    )
    return jsonify({"url": url})


# ──────────────────────────────────────────────
# POST /api/create-billing-portal
# ──────────────────────────────────────────────

@billing_bp.route("/create-billing-portal", methods=["POST"])
@member_required
def create_billing_portal():
    """Open the Billing Portal, optionally scoped by {flow_type}."""
    body = request.get_json(silent=True) or {}
    url = billing_service.open_portal(processor, current_user, body.get("flow_type"))
    return jsonify({"url": url})


# ──────────────────────────────────────────────
# POST /api/update-subscription
# ──────────────────────────────────────────────

@billing_bp.route("/update-subscription", methods=["POST"])
@member_required
def update_subscription():
    """Change the contribution to {amount_dollars} from the next billing cycle."""
    body = request.get_json(silent=True) or {}
    billing_service.change_amount(processor, current_user, body.get("amount_dollars"))
    return jsonify({})
