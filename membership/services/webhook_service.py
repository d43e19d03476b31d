"""Webhook service — reconciles Stripe events into local billing rows.

Responsible for:
- Verifying webhook signatures (the only authenticity check)
- Dispatching by event type; unknown types are acknowledged, never rejected
- Upserting Subscription rows keyed by member_id (last write wins)
- Upserting Invoice rows keyed by stripe_invoice_id (strictly idempotent)
- Mapping Stripe customers to members, backfilling the mapping from
  customer metadata when the local row is missing
- Logging every acknowledged event in stripe_events

Subscription status per member moves only on inbound events:

    event                              row absent          row present
    customer.subscription.created      insert (payload)    overwrite (payload)
    customer.subscription.updated      insert (payload)    overwrite (payload)
    customer.subscription.deleted      no-op               status = canceled
    invoice.payment_failed             no-op               status = past_due

Deliveries are applied in arrival order. There is no event sequence
check, so an older event delivered last wins.
"""

import logging
from datetime import datetime, timezone

import stripe

from membership.errors import BadSignature
from membership.extensions import db
from membership.models.billing import Invoice, StripeCustomer, Subscription
from membership.models.member import Member
from membership.models.stripe_event import StripeEvent
from membership.services.store import upsert

logger = logging.getLogger(__name__)

SUBSCRIPTION_UPSERT_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
)

# Update-only transitions: the status an event forces on an existing row.
STATUS_TRANSITIONS = {
    "customer.subscription.deleted": "canceled",
    "invoice.payment_failed": "past_due",
}


def _from_epoch(ts):
    if ts:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    return None


def extract_period_end(sub_data):
    """Extract current_period_end from a Stripe subscription object.

    In newer Stripe API versions, current_period_end has moved from the
    subscription top level to items.data[0].current_period_end.
    This helper checks both locations.

    Returns a timezone-aware datetime or None.
    """
    ts = sub_data.get("current_period_end")

    if not ts:
        items = sub_data.get("items")
        if items and items.get("data"):
            ts = items["data"][0].get("current_period_end")

    return _from_epoch(ts)


def _customer_id(obj):
    customer = obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer


# ──────────────────────────────────────────────
# Verification & Dispatch
# ──────────────────────────────────────────────

def verify_event(processor, payload, sig_header):
    """Return the verified event, or raise BadSignature."""
    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        raise BadSignature("Missing signature")
    try:
        return processor.construct_event(payload, sig_header)
    except Exception as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise BadSignature("Invalid signature")


def handle_event(processor, event):
    """Process a verified Stripe event.

    Returns the outcome string ("processed", "ignored", "dropped",
    "already_processed"). Handler exceptions are rolled back and re-raised
    so the endpoint answers non-2xx and Stripe retries.
    """
    event_id = event.get("id")
    event_type = event["type"]
    obj = event["data"]["object"]

    if event_id and StripeEvent.query.filter_by(stripe_event_id=event_id).first():
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return "already_processed"

    logger.info(f"Processing webhook event {event_id} ({event_type})")

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled event type: {event_type}")
        outcome = "ignored"
    else:
        try:
            outcome = handler(processor, obj, event)
        except Exception as e:
            logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
            db.session.rollback()
            raise

    if event_id:
        upsert(
            StripeEvent,
            {
                "stripe_event_id": event_id,
                "event_type": event_type,
                "outcome": outcome,
                "stripe_customer_id": _customer_id(obj) if isinstance(obj, dict) else None,
            },
            conflict_key="stripe_event_id",
        )
    db.session.commit()
    return outcome


# ──────────────────────────────────────────────
# Member resolution
# ──────────────────────────────────────────────

def member_id_for_customer(processor, stripe_customer_id):
    """Map a Stripe customer ID to a member ID, or None.

    Falls back to the member_id tag written into the customer's metadata
    at creation time, and backfills the mapping row when it finds one.
    A customer Stripe says does not exist yields None; any other Stripe
    error propagates so the delivery is retried.
    """
    if not stripe_customer_id:
        return None

    mapping = StripeCustomer.query.filter_by(
        stripe_customer_id=stripe_customer_id
    ).first()
    if mapping:
        return mapping.member_id

    try:
        customer = processor.retrieve_customer(stripe_customer_id)
    except stripe.InvalidRequestError as e:
        logger.error(f"Stripe customer {stripe_customer_id} not retrievable: {e}")
        return None

    if not customer or customer.get("deleted"):
        return None

    member_id = (customer.get("metadata") or {}).get("member_id")
    if not member_id:
        return None

    if db.session.get(Member, member_id) is None:
        logger.error(
            f"Stripe customer {stripe_customer_id} tagged with unknown member {member_id}"
        )
        return None

    existing = StripeCustomer.query.filter_by(member_id=member_id).first()
    if existing:
        # One mapping per member; keep the one already recorded.
        logger.warning(
            f"Member {member_id} already mapped to {existing.stripe_customer_id}, "
            f"not backfilling {stripe_customer_id}"
        )
        return member_id

    upsert(
        StripeCustomer,
        {"member_id": member_id, "stripe_customer_id": stripe_customer_id},
        conflict_key="stripe_customer_id",
    )
    logger.info(f"Backfilled customer mapping {stripe_customer_id} -> member {member_id}")
    return member_id


def _resolve_or_drop(processor, obj, event_type):
    member_id = member_id_for_customer(processor, _customer_id(obj))
    if not member_id:
        logger.error(
            f"{event_type}: could not find member for customer {_customer_id(obj)}, "
            f"dropping event"
        )
    return member_id


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_logged_only(processor, obj, event):
    """checkout.session.completed / customer.updated.

    The subscription row is written by customer.subscription.created,
    which Stripe sends alongside checkout completion.
    """
    logger.info(f"{event['type']}: {obj.get('id')}")
    return "processed"


def _handle_subscription_upsert(processor, sub_data, event):
    """customer.subscription.created / .updated — overwrite the member's row."""
    member_id = _resolve_or_drop(processor, sub_data, event["type"])
    if not member_id:
        return "dropped"

    items = (sub_data.get("items") or {}).get("data") or []
    price = (items[0].get("price") or {}) if items else {}

    # Stripe signals a pending cancellation with cancel_at_period_end or
    # with a future cancel_at timestamp. Treat either as cancelling.
    is_cancelling = bool(
        sub_data.get("cancel_at_period_end")
        or sub_data.get("cancel_at") is not None
    )

    upsert(
        Subscription,
        {
            "member_id": member_id,
            "stripe_subscription_id": sub_data.get("id"),
            "status": sub_data.get("status") or "incomplete",
            "current_amount_cents": price.get("unit_amount") or 0,
            "currency": sub_data.get("currency") or "usd",
            "current_period_end": extract_period_end(sub_data),
            "cancel_at_period_end": is_cancelling,
            "updated_at": datetime.now(timezone.utc),
        },
        conflict_key="member_id",
    )
    logger.info(
        f"Subscription {sub_data.get('id')} upserted for member {member_id} "
        f"({sub_data.get('status')})"
    )
    return "processed"


def _transition_status(member_id, event_type):
    """Apply an update-only status transition. Returns True if a row changed."""
    status = STATUS_TRANSITIONS[event_type]
    updated = Subscription.query.filter_by(member_id=member_id).update(
        {"status": status, "updated_at": datetime.now(timezone.utc)},
        synchronize_session=False,
    )
    if not updated:
        logger.info(f"{event_type}: member {member_id} has no subscription row, nothing to update")
        return False
    logger.info(f"{event_type}: member {member_id} subscription -> {status}")
    return True


def _handle_subscription_deleted(processor, sub_data, event):
    """customer.subscription.deleted — status only; amount and period untouched."""
    member_id = _resolve_or_drop(processor, sub_data, event["type"])
    if not member_id:
        return "dropped"
    _transition_status(member_id, event["type"])
    return "processed"


def _handle_invoice_paid(processor, invoice, event):
    """invoice.paid — upsert the invoice row as paid."""
    member_id = _resolve_or_drop(processor, invoice, event["type"])
    if not member_id:
        return "dropped"

    upsert(
        Invoice,
        {
            "member_id": member_id,
            "stripe_invoice_id": invoice["id"],
            "amount_paid_cents": invoice.get("amount_paid") or 0,
            "status": "paid",
            "hosted_invoice_url": invoice.get("hosted_invoice_url"),
            "invoice_pdf": invoice.get("invoice_pdf"),
            "created_at": _invoice_created_at(invoice, event),
        },
        conflict_key="stripe_invoice_id",
    )
    logger.info(f"Invoice {invoice['id']} recorded as paid for member {member_id}")
    return "processed"


def _handle_payment_failed(processor, invoice, event):
    """invoice.payment_failed — past_due + a zero-amount failed invoice row.

    Shares the conflict key with invoice.paid, so a later successful retry
    of the same invoice overwrites this row in place.
    """
    member_id = _resolve_or_drop(processor, invoice, event["type"])
    if not member_id:
        return "dropped"

    _transition_status(member_id, event["type"])

    upsert(
        Invoice,
        {
            "member_id": member_id,
            "stripe_invoice_id": invoice["id"],
            "amount_paid_cents": 0,
            "status": "failed",
            "hosted_invoice_url": invoice.get("hosted_invoice_url"),
            "created_at": _invoice_created_at(invoice, event),
        },
        conflict_key="stripe_invoice_id",
    )
    logger.warning(f"Invoice {invoice['id']} payment failed for member {member_id}")
    return "processed"


def _invoice_created_at(invoice, event):
    return (
        _from_epoch(invoice.get("created"))
        or _from_epoch(event.get("created"))
        or datetime.now(timezone.utc)
    )


HANDLERS = {
    "checkout.session.completed": _handle_logged_only,
    "customer.subscription.created": _handle_subscription_upsert,
    "customer.subscription.updated": _handle_subscription_upsert,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "invoice.paid": _handle_invoice_paid,
    "invoice.payment_failed": _handle_payment_failed,
    "customer.updated": _handle_logged_only,
}
