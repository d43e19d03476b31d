"""Billing models.

- StripeCustomer: links a member to a Stripe customer ID (at most one each way).
- StripePrice: append-only cache of monthly prices, one per whole-dollar amount.
- Subscription: one row per member, kept in sync by the webhook reconciler.
  Upserts use member_id as the conflict key, so the row always holds the
  last event received.
- Invoice: one row per Stripe invoice ID (the conflict key), so redelivered
  invoice events overwrite in place.
"""

import uuid

from membership.extensions import db


class StripeCustomer(db.Model):
    __tablename__ = "stripe_customers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    member_id = db.Column(
        db.String(36),
        db.ForeignKey("members.id"),
        unique=True,
        nullable=False,
    )
    stripe_customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    member = db.relationship("Member", back_populates="stripe_customer")

    def __repr__(self):
        return f"<StripeCustomer stripe={self.stripe_customer_id}>"


class StripePrice(db.Model):
    __tablename__ = "stripe_prices"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    amount_cents = db.Column(db.Integer, unique=True, nullable=False)
    stripe_price_id = db.Column(db.String(255), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripePrice {self.amount_cents} -> {self.stripe_price_id}>"


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    # Statuses that block a new checkout
    OPEN_STATUSES = ("active", "trialing", "past_due")
    # Statuses that count as a contributing member
    ACTIVE_STATUSES = ("active", "trialing")

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    member_id = db.Column(
        db.String(36),
        db.ForeignKey("members.id"),
        unique=True,
        nullable=False,
    )
    stripe_subscription_id = db.Column(db.String(255), index=True)
    status = db.Column(
        db.String(50), nullable=False
    )  # passed through from Stripe verbatim
    current_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(10), nullable=False, default="usd")
    current_period_end = db.Column(
        db.DateTime(timezone=True), nullable=True
    )
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    member = db.relationship("Member", back_populates="subscription")

    def to_dict(self):
        return {
            "stripe_subscription_id": self.stripe_subscription_id,
            "status": self.status,
            "current_amount_cents": self.current_amount_cents,
            "currency": self.currency,
            "current_period_end": (
                self.current_period_end.isoformat() if self.current_period_end else None
            ),
            "cancel_at_period_end": self.cancel_at_period_end,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Subscription {self.member_id} ({self.status})>"


class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    member_id = db.Column(
        db.String(36), db.ForeignKey("members.id"), nullable=False, index=True
    )
    stripe_invoice_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(50), nullable=False)  # paid | failed | open | ...
    hosted_invoice_url = db.Column(db.Text, nullable=True)
    invoice_pdf = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False
    )  # Stripe's invoice timestamp, not ingestion time

    # --- Relationships ---
    member = db.relationship("Member", back_populates="invoices")

    def to_dict(self):
        return {
            "stripe_invoice_id": self.stripe_invoice_id,
            "amount_paid_cents": self.amount_paid_cents,
            "status": self.status,
            "hosted_invoice_url": self.hosted_invoice_url,
            "invoice_pdf": self.invoice_pdf,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Invoice {self.stripe_invoice_id} ({self.status})>"
