"""Billing service — the member-initiated side of billing.

Responsible for:
- Validating contribution amounts (whole dollars within [MIN_AMOUNT, MAX_AMOUNT])
- Resolving a member to a Stripe customer (created lazily)
- Resolving an amount to a cached monthly Stripe price (created lazily)
- Starting checkout, opening the billing portal, changing the amount

None of these write Subscription rows. Local subscription state changes
only when the matching webhook arrives (see webhook_service).
"""

import logging

from flask import current_app

from membership.errors import ConflictError, NotFoundError, ValidationError
from membership.extensions import db
from membership.models.billing import StripeCustomer, StripePrice, Subscription

logger = logging.getLogger(__name__)

PORTAL_FLOWS = ("payment_method_update", "subscription_cancel")


def validate_amount(amount_dollars, min_amount=None, max_amount=None):
    """Return the amount in cents, or raise ValidationError.

    Accepts ints and integral floats (JSON 42.0). Bools, strings, and
    fractional amounts are rejected.
    """
    if min_amount is None:
        min_amount = current_app.config["MIN_AMOUNT"]
    if max_amount is None:
        max_amount = current_app.config["MAX_AMOUNT"]

    range_msg = f"Amount must be between ${min_amount} and ${max_amount}"

    if isinstance(amount_dollars, bool) or not isinstance(amount_dollars, (int, float)):
        raise ValidationError(range_msg)
    if isinstance(amount_dollars, float):
        if not amount_dollars.is_integer():
            raise ValidationError("Amount must be a whole dollar amount")
        amount_dollars = int(amount_dollars)
    if amount_dollars < min_amount or amount_dollars > max_amount:
        raise ValidationError(range_msg)

    return amount_dollars * 100


# ──────────────────────────────────────────────
# Customer / Price resolution
# ──────────────────────────────────────────────

def resolve_customer(processor, member):
    """Get the member's Stripe customer ID, creating the customer if needed.

    Lookup-then-insert is not transactional: two concurrent first checkouts
    for the same member can each create a Stripe customer. The unique
    constraint on member_id then rejects the second mapping row.
    """
    mapping = StripeCustomer.query.filter_by(member_id=member.id).first()
    if mapping:
        return mapping.stripe_customer_id

    stripe_customer_id = processor.create_customer(member.email, member.id)
    db.session.add(StripeCustomer(
        member_id=member.id,
        stripe_customer_id=stripe_customer_id,
    ))
    db.session.commit()
    logger.info(f"Created Stripe customer {stripe_customer_id} for member {member.id}")
    return stripe_customer_id


def resolve_price(processor, amount_cents):
    """Get the cached monthly price for this amount, creating it if needed."""
    cached = StripePrice.query.filter_by(amount_cents=amount_cents).first()
    if cached:
        return cached.stripe_price_id

    price_id = processor.create_monthly_price(amount_cents)
    db.session.add(StripePrice(amount_cents=amount_cents, stripe_price_id=price_id))
    db.session.commit()
    logger.info(f"Cached new Stripe price {price_id} for {amount_cents} cents")
    return price_id


# ──────────────────────────────────────────────
# Checkout, Portal, Amount change
# ──────────────────────────────────────────────

def start_checkout(processor, member, amount_dollars):
    """Start a new subscription for the member. Returns the Checkout URL.

    One open subscription per member is enforced here, not by the store.
    """
    amount_cents = validate_amount(amount_dollars)

    existing = Subscription.query.filter(
        Subscription.member_id == member.id,
        Subscription.status.in_(Subscription.OPEN_STATUSES),
    ).first()
    if existing:
        raise ConflictError(
            "You already have an active subscription. "
            "Use the Change Amount page to modify your contribution."
        )

    customer_id = resolve_customer(processor, member)
    price_id = resolve_price(processor, amount_cents)

    app_base_url = current_app.config["APP_BASE_URL"]
    url = processor.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        member_id=member.id,
        success_url=f"{app_base_url}/portal?success=true",
        cancel_url=f"{app_base_url}/portal/contribution?canceled=true",
    )
    logger.info(f"Checkout started for member {member.id} at {amount_cents} cents")
    return url


def open_portal(processor, member, flow=None):
    """Open a Billing Portal session, optionally scoped to one flow.

    A cancel flow with no local subscription opens the unscoped portal.
    """
    if flow is not None and flow not in PORTAL_FLOWS:
        raise ValidationError(f"Unknown portal flow: {flow}")

    mapping = StripeCustomer.query.filter_by(member_id=member.id).first()
    if not mapping:
        raise NotFoundError("No billing account found")

    flow_data = None
    if flow == "payment_method_update":
        flow_data = {"type": "payment_method_update"}
    elif flow == "subscription_cancel":
        sub = Subscription.query.filter_by(member_id=member.id).first()
        if sub and sub.stripe_subscription_id:
            flow_data = {
                "type": "subscription_cancel",
                "subscription_cancel": {"subscription": sub.stripe_subscription_id},
            }
        else:
            logger.info(f"No subscription to scope cancel flow for member {member.id}")

    return processor.create_portal_session(
        customer_id=mapping.stripe_customer_id,
        return_url=f"{current_app.config['APP_BASE_URL']}/portal/settings",
        flow_data=flow_data,
    )


def change_amount(processor, member, amount_dollars):
    """Re-price the member's subscription from the next billing cycle.

    Validation happens before any Stripe call. The local Subscription row
    is left alone; customer.subscription.updated brings it up to date.
    """
    amount_cents = validate_amount(amount_dollars)

    sub = Subscription.query.filter_by(member_id=member.id).first()
    if not sub or not sub.stripe_subscription_id:
        raise NotFoundError("No subscription found")

    price_id = resolve_price(processor, amount_cents)

    stripe_sub = processor.retrieve_subscription(sub.stripe_subscription_id)
    items = (stripe_sub.get("items") or {}).get("data") or []
    if not items:
        raise NotFoundError("Subscription has no line items")

    processor.swap_subscription_price(
        sub.stripe_subscription_id, items[0]["id"], price_id
    )
    logger.info(
        f"Subscription {sub.stripe_subscription_id} re-priced to {amount_cents} cents "
        f"for member {member.id}"
    )
