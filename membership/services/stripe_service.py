"""Stripe service — every Stripe API call the portal makes.

Responsible for:
- Creating customers and monthly recurring prices
- Creating Checkout Sessions (subscription mode) and Billing Portal Sessions
- Retrieving, re-pricing, and cancelling subscriptions
- Verifying webhook signatures

The API key and retry budget are passed per request; no module-level
stripe settings are touched.

Objects read by the services (events, customers, subscriptions, products)
are returned as plain dicts via to_dict(). StripeObject stopped being a
dict subclass in stripe 15.
"""

import logging

import stripe

logger = logging.getLogger(__name__)


def as_dict(obj):
    """Recursive plain-dict copy of a Stripe object. Dicts pass through."""
    if obj is None or isinstance(obj, dict):
        return obj
    return obj.to_dict()


class StripeProcessor:
    """Stripe client configured once per app and passed into services."""

    def __init__(self, app=None):
        self.api_key = None
        self.webhook_secret = None
        self.product_id = None
        self.currency = "usd"
        self.max_network_retries = 2
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.api_key = app.config.get("STRIPE_SECRET_KEY")
        self.webhook_secret = app.config.get("STRIPE_WEBHOOK_SECRET")
        self.product_id = app.config.get("STRIPE_PRODUCT_ID")
        self.currency = app.config.get("STRIPE_CURRENCY", "usd")
        self.max_network_retries = app.config.get("STRIPE_MAX_NETWORK_RETRIES", 2)
        app.extensions["processor"] = self

    def _options(self):
        return {
            "api_key": self.api_key,
            "max_network_retries": self.max_network_retries,
        }

    # ──────────────────────────────────────────────
    # Customers & Prices
    # ──────────────────────────────────────────────

    def create_customer(self, email, member_id):
        """Create a Stripe customer tagged with the member id.

        The metadata tag is what the webhook reconciler falls back to when
        a customer has no local mapping row.
        """
        customer = stripe.Customer.create(
            **self._options(),
            email=email,
            metadata={"member_id": str(member_id)},
        )
        return customer.id

    def retrieve_customer(self, customer_id):
        return as_dict(stripe.Customer.retrieve(customer_id, **self._options()))

    def create_monthly_price(self, amount_cents):
        """Create a monthly recurring price for the contribution product."""
        price = stripe.Price.create(
            **self._options(),
            unit_amount=amount_cents,
            currency=self.currency,
            recurring={"interval": "month"},
            product=self.product_id,
            metadata={"amount_dollars": str(amount_cents // 100)},
        )
        return price.id

    def retrieve_product(self):
        return as_dict(stripe.Product.retrieve(self.product_id, **self._options()))

    # ──────────────────────────────────────────────
    # Checkout & Portal Sessions
    # ──────────────────────────────────────────────

    def create_checkout_session(self, customer_id, price_id, member_id,
                                success_url, cancel_url):
        """Create a subscription-mode Checkout Session. Returns its URL."""
        session = stripe.checkout.Session.create(
            **self._options(),
            mode="subscription",
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"member_id": str(member_id)},
        )
        return session.url

    def create_portal_session(self, customer_id, return_url, flow_data=None):
        """Create a Billing Portal Session. Returns its URL."""
        params = {
            "customer": customer_id,
            "return_url": return_url,
        }
        if flow_data:
            params["flow_data"] = flow_data
        session = stripe.billing_portal.Session.create(**self._options(), **params)
        return session.url

    # ──────────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────────

    def retrieve_subscription(self, subscription_id):
        return as_dict(stripe.Subscription.retrieve(subscription_id, **self._options()))

    def swap_subscription_price(self, subscription_id, item_id, price_id):
        """Point the subscription's single line item at a new price.

        No proration: the new amount is billed from the next cycle.
        """
        return stripe.Subscription.modify(
            subscription_id,
            **self._options(),
            items=[{"id": item_id, "price": price_id}],
            proration_behavior="none",
        )

    def cancel_subscription(self, subscription_id):
        return stripe.Subscription.cancel(subscription_id, **self._options())

    # ──────────────────────────────────────────────
    # Webhooks
    # ──────────────────────────────────────────────

    def construct_event(self, payload, sig_header):
        """Verify the webhook signature and construct the event.

        Raises stripe.SignatureVerificationError on an invalid
        signature, ValueError on an unparseable payload.
        """
        event = stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        return as_dict(event)
