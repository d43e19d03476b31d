"""Stripe event log.

One row per acknowledged webhook delivery, keyed by Stripe event ID.
An exact redelivery of a logged event is acknowledged without running its
handler again. Deliveries whose handler raised are never logged, so
Stripe's retry gets a fresh attempt.

outcome records what the reconciler did with the event:
    processed — a handler ran and wrote (or deliberately skipped) rows
    ignored   — event type has no handler
    dropped   — the Stripe customer could not be mapped to a member;
                these rows are the work queue for manual repair
"""

import uuid

from membership.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    OUTCOMES = ["processed", "ignored", "dropped"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(db.String(255), nullable=False)
    outcome = db.Column(db.String(20), nullable=False, default="processed")
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} {self.event_type} ({self.outcome})>"
