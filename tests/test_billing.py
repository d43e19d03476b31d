"""Tests for the billing blueprint — checkout, portal, amount changes.

Stripe is mocked at the module the processor calls through, so every test
can assert on exactly which Stripe calls were (or were not) made.
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import stripe

from membership.extensions import db
from membership.models.billing import StripeCustomer, StripePrice, Subscription

MEMBER_ID = "00000000-0000-0000-0000-00000000b001"
MEMBER_HEADERS = {"Authorization": "Bearer member-token"}


def mock_stripe_objects(mock_stripe):
    mock_stripe.Customer.create.return_value = MagicMock(id="cus_new")
    mock_stripe.Price.create.return_value = MagicMock(id="price_4200")
    mock_stripe.checkout.Session.create.return_value = MagicMock(
        url="https://checkout.stripe.com/c/pay/cs_test_123"
    )
    mock_stripe.billing_portal.Session.create.return_value = MagicMock(
        url="https://billing.stripe.com/p/session/test_123"
    )


def add_mapping(app, stripe_customer_id="cus_existing"):
    with app.app_context():
        db.session.add(StripeCustomer(
            member_id=MEMBER_ID,
            stripe_customer_id=stripe_customer_id,
        ))
        db.session.commit()


def add_subscription(app, status="active", stripe_subscription_id="sub_001"):
    with app.app_context():
        db.session.add(Subscription(
            member_id=MEMBER_ID,
            stripe_subscription_id=stripe_subscription_id,
            status=status,
            current_amount_cents=5000,
            currency="usd",
            current_period_end=datetime(2026, 12, 1),
        ))
        db.session.commit()


class TestCreateCheckout:

    def test_requires_credential(self, client, seed_data):
        resp = client.post("/api/create-checkout", json={"amount_dollars": 42})
        assert resp.status_code == 401

    def test_rejects_unknown_token(self, client, seed_data):
        resp = client.post(
            "/api/create-checkout",
            json={"amount_dollars": 42},
            headers={"Authorization": "Bearer forged"},
        )
        assert resp.status_code == 401

    @patch("membership.services.stripe_service.stripe")
    def test_first_checkout_creates_customer_and_price(self, mock_stripe, client, seed_data, app):
        """Scenario A: a new member contributes $42."""
        mock_stripe_objects(mock_stripe)

        resp = client.post(
            "/api/create-checkout",
            json={"amount_dollars": 42},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.get_json()["url"] == "https://checkout.stripe.com/c/pay/cs_test_123"

        # Customer tagged with the member id for webhook backfill
        customer_kwargs = mock_stripe.Customer.create.call_args.kwargs
        assert customer_kwargs["email"] == "member@club.test"
        assert customer_kwargs["metadata"] == {"member_id": MEMBER_ID}

        price_kwargs = mock_stripe.Price.create.call_args.kwargs
        assert price_kwargs["unit_amount"] == 4200
        assert price_kwargs["recurring"] == {"interval": "month"}
        assert price_kwargs["product"] == "prod_test_contribution"

        session_kwargs = mock_stripe.checkout.Session.create.call_args.kwargs
        assert session_kwargs["mode"] == "subscription"
        assert session_kwargs["customer"] == "cus_new"
        assert session_kwargs["line_items"] == [{"price": "price_4200", "quantity": 1}]
        assert session_kwargs["success_url"].endswith("/portal?success=true")
        assert session_kwargs["cancel_url"].endswith("/portal/contribution?canceled=true")

        with app.app_context():
            mapping = StripeCustomer.query.filter_by(member_id=MEMBER_ID).first()
            assert mapping.stripe_customer_id == "cus_new"
            price = StripePrice.query.filter_by(amount_cents=4200).first()
            assert price.stripe_price_id == "price_4200"
            # Nothing written until the webhook arrives
            assert Subscription.query.count() == 0

    @patch("membership.services.stripe_service.stripe")
    def test_reuses_mapping_and_cached_price(self, mock_stripe, client, seed_data, app):
        mock_stripe_objects(mock_stripe)
        add_mapping(app)
        with app.app_context():
            db.session.add(StripePrice(amount_cents=4200, stripe_price_id="price_cached"))
            db.session.commit()

        resp = client.post(
            "/api/create-checkout",
            json={"amount_dollars": 42},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 200
        mock_stripe.Customer.create.assert_not_called()
        mock_stripe.Price.create.assert_not_called()

        session_kwargs = mock_stripe.checkout.Session.create.call_args.kwargs
        assert session_kwargs["customer"] == "cus_existing"
        assert session_kwargs["line_items"][0]["price"] == "price_cached"

    @pytest.mark.parametrize("status", ["active", "trialing", "past_due"])
    @patch("membership.services.stripe_service.stripe")
    def test_open_subscription_conflicts(self, mock_stripe, status, client, seed_data, app):
        add_mapping(app)
        add_subscription(app, status=status)

        resp = client.post(
            "/api/create-checkout",
            json={"amount_dollars": 42},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 400
        assert "already have an active subscription" in resp.get_json()["error"]
        mock_stripe.checkout.Session.create.assert_not_called()

    @pytest.mark.parametrize("status", ["canceled", "incomplete"])
    @patch("membership.services.stripe_service.stripe")
    def test_closed_subscription_allows_checkout(self, mock_stripe, status, client, seed_data, app):
        mock_stripe_objects(mock_stripe)
        add_mapping(app)
        add_subscription(app, status=status)

        resp = client.post(
            "/api/create-checkout",
            json={"amount_dollars": 60},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 200

    @pytest.mark.parametrize("amount, message", [
        (29, "Amount must be between $30 and $250"),
        (251, "Amount must be between $30 and $250"),
        (42.5, "Amount must be a whole dollar amount"),
        ("42", "Amount must be between $30 and $250"),
        (True, "Amount must be between $30 and $250"),
        (None, "Amount must be between $30 and $250"),
    ])
    @patch("membership.services.stripe_service.stripe")
    def test_invalid_amount_rejected_before_stripe(
            self, mock_stripe, amount, message, client, seed_data, app):
        resp = client.post(
            "/api/create-checkout",
            json={"amount_dollars": amount},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == message

        mock_stripe.Customer.create.assert_not_called()
        mock_stripe.Price.create.assert_not_called()
        with app.app_context():
            assert StripeCustomer.query.count() == 0

    @pytest.mark.parametrize("amount", [30, 250])
    @patch("membership.services.stripe_service.stripe")
    def test_bounds_are_inclusive(self, mock_stripe, amount, client, seed_data):
        mock_stripe_objects(mock_stripe)
        resp = client.post(
            "/api/create-checkout",
            json={"amount_dollars": amount},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 200
        assert mock_stripe.Price.create.call_args.kwargs["unit_amount"] == amount * 100

    @patch("membership.services.stripe_service.stripe")
    def test_missing_body_rejected(self, mock_stripe, client, seed_data):
        resp = client.post("/api/create-checkout", headers=MEMBER_HEADERS)
        assert resp.status_code == 400
        mock_stripe.checkout.Session.create.assert_not_called()


class TestBillingPortal:

    @patch("membership.services.stripe_service.stripe")
    def test_no_billing_account(self, mock_stripe, client, seed_data):
        resp = client.post("/api/create-billing-portal", json={}, headers=MEMBER_HEADERS)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "No billing account found"
        mock_stripe.billing_portal.Session.create.assert_not_called()

    @patch("membership.services.stripe_service.stripe")
    def test_unscoped_portal(self, mock_stripe, client, seed_data, app):
        mock_stripe_objects(mock_stripe)
        add_mapping(app)

        resp = client.post("/api/create-billing-portal", json={}, headers=MEMBER_HEADERS)
        assert resp.status_code == 200
        assert resp.get_json()["url"] == "https://billing.stripe.com/p/session/test_123"

        kwargs = mock_stripe.billing_portal.Session.create.call_args.kwargs
        assert kwargs["customer"] == "cus_existing"
        assert kwargs["return_url"].endswith("/portal/settings")
        assert "flow_data" not in kwargs

    @patch("membership.services.stripe_service.stripe")
    def test_payment_method_flow(self, mock_stripe, client, seed_data, app):
        mock_stripe_objects(mock_stripe)
        add_mapping(app)

        resp = client.post(
            "/api/create-billing-portal",
            json={"flow_type": "payment_method_update"},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 200
        kwargs = mock_stripe.billing_portal.Session.create.call_args.kwargs
        assert kwargs["flow_data"] == {"type": "payment_method_update"}

    @patch("membership.services.stripe_service.stripe")
    def test_cancel_flow_scoped_to_subscription(self, mock_stripe, client, seed_data, app):
        mock_stripe_objects(mock_stripe)
        add_mapping(app)
        add_subscription(app)

        resp = client.post(
            "/api/create-billing-portal",
            json={"flow_type": "subscription_cancel"},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 200
        kwargs = mock_stripe.billing_portal.Session.create.call_args.kwargs
        assert kwargs["flow_data"] == {
            "type": "subscription_cancel",
            "subscription_cancel": {"subscription": "sub_001"},
        }

    @patch("membership.services.stripe_service.stripe")
    def test_cancel_flow_without_subscription_opens_unscoped(
            self, mock_stripe, client, seed_data, app):
        mock_stripe_objects(mock_stripe)
        add_mapping(app)

        resp = client.post(
            "/api/create-billing-portal",
            json={"flow_type": "subscription_cancel"},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 200
        kwargs = mock_stripe.billing_portal.Session.create.call_args.kwargs
        assert "flow_data" not in kwargs

    @patch("membership.services.stripe_service.stripe")
    def test_unknown_flow_rejected(self, mock_stripe, client, seed_data, app):
        add_mapping(app)
        resp = client.post(
            "/api/create-billing-portal",
            json={"flow_type": "subscription_update"},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 400
        mock_stripe.billing_portal.Session.create.assert_not_called()


class TestUpdateSubscription:

    @patch("membership.services.stripe_service.stripe")
    def test_swaps_price_without_proration(self, mock_stripe, client, seed_data, app):
        mock_stripe_objects(mock_stripe)
        mock_stripe.Price.create.return_value = MagicMock(id="price_7500")
        mock_stripe.Subscription.retrieve.return_value = {
            "id": "sub_001",
            "items": {"data": [{"id": "si_001", "price": {"id": "price_old"}}]},
        }
        add_mapping(app)
        add_subscription(app)

        resp = client.post(
            "/api/update-subscription",
            json={"amount_dollars": 75},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.get_json() == {}

        args, kwargs = mock_stripe.Subscription.modify.call_args
        assert args == ("sub_001",)
        assert kwargs["items"] == [{"id": "si_001", "price": "price_7500"}]
        assert kwargs["proration_behavior"] == "none"

        with app.app_context():
            # Local row waits for customer.subscription.updated
            sub = Subscription.query.filter_by(member_id=MEMBER_ID).first()
            assert sub.current_amount_cents == 5000
            assert StripePrice.query.filter_by(amount_cents=7500).first() is not None

    @patch("membership.services.stripe_service.stripe")
    def test_no_subscription(self, mock_stripe, client, seed_data, app):
        add_mapping(app)
        resp = client.post(
            "/api/update-subscription",
            json={"amount_dollars": 75},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "No subscription found"
        mock_stripe.Subscription.modify.assert_not_called()

    @pytest.mark.parametrize("amount, message", [
        (10, "Amount must be between $30 and $250"),
        (29, "Amount must be between $30 and $250"),
        (251, "Amount must be between $30 and $250"),
        (42.5, "Amount must be a whole dollar amount"),
        ("42", "Amount must be between $30 and $250"),
        (True, "Amount must be between $30 and $250"),
    ])
    @patch("membership.services.stripe_service.stripe")
    def test_invalid_amount_makes_no_stripe_call(
            self, mock_stripe, amount, message, client, seed_data, app):
        add_mapping(app)
        add_subscription(app)

        resp = client.post(
            "/api/update-subscription",
            json={"amount_dollars": amount},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == message
        mock_stripe.Price.create.assert_not_called()
        mock_stripe.Subscription.retrieve.assert_not_called()
        mock_stripe.Subscription.modify.assert_not_called()

    @patch("membership.services.stripe_service.stripe")
    def test_subscription_without_items(self, mock_stripe, client, seed_data, app):
        mock_stripe_objects(mock_stripe)
        mock_stripe.Subscription.retrieve.return_value = {"id": "sub_001", "items": {"data": []}}
        add_mapping(app)
        add_subscription(app)

        resp = client.post(
            "/api/update-subscription",
            json={"amount_dollars": 75},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 400
        mock_stripe.Subscription.modify.assert_not_called()

    @patch("membership.services.stripe_service.stripe.Subscription.modify")
    @patch("membership.services.stripe_service.stripe.Subscription.retrieve")
    @patch("membership.services.stripe_service.stripe.Price.create")
    def test_reads_items_from_sdk_subscription(
            self, mock_price, mock_retrieve, mock_modify, client, seed_data, app):
        """Line items are read off the object the SDK returns, not a plain dict."""
        mock_price.return_value = stripe.Price.construct_from(
            {"id": "price_9000", "object": "price"}, "sk_test_fake"
        )
        mock_retrieve.return_value = stripe.Subscription.construct_from(
            {
                "id": "sub_001",
                "object": "subscription",
                "status": "active",
                "items": {
                    "object": "list",
                    "data": [{
                        "id": "si_real",
                        "object": "subscription_item",
                        "price": {"id": "price_old", "object": "price", "unit_amount": 5000},
                    }],
                },
            },
            "sk_test_fake",
        )
        add_mapping(app)
        add_subscription(app)

        resp = client.post(
            "/api/update-subscription",
            json={"amount_dollars": 90},
            headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 200

        args, kwargs = mock_modify.call_args
        assert args == ("sub_001",)
        assert kwargs["items"] == [{"id": "si_real", "price": "price_9000"}]
        assert kwargs["api_key"] == "sk_test_fake"
