import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from membership.config import config_by_name
from membership.errors import PortalError
from membership.extensions import db, migrate, login_manager, limiter, identity, processor

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)
    identity.init_app(app)
    processor.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from membership import models  # noqa: F401

    # --- Register blueprints ---
    from membership.blueprints.portal import portal_bp
    from membership.blueprints.billing import billing_bp
    from membership.blueprints.admin import admin_bp
    from membership.blueprints.webhooks import webhooks_bp

    app.register_blueprint(portal_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhooks_bp)

    # --- Error handlers ---
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_error_handlers(app):
    """Render every error as {"error": message}."""

    @app.errorhandler(PortalError)
    def portal_error(e):
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def unexpected_error(e):
        # Stripe, identity-provider, and database failures land here.
        logger.error(f"Unhandled error: {e}", exc_info=True)
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-admin")
    @click.option("--user-id", required=True, help="Supabase auth user id")
    @click.option("--email", required=True, help="Admin email")
    def seed_admin(user_id, email):
        """Create an admin member row, or promote an existing member.

        The auth user must already exist in Supabase (create it in the
        dashboard or via an invite), since its id is the primary key.

        Usage:
            flask seed-admin --user-id 3f0c... --email admin@example.com
        """
        from membership.models.member import Member

        member = db.session.get(Member, user_id)
        if member:
            member.role = "admin"
            member.is_active = True
            click.echo(f"Promoted existing member to admin: {member.email}")
        else:
            member = Member(
                id=user_id,
                email=email.lower(),
                role="admin",
                setup_completed=True,
            )
            db.session.add(member)
            click.echo(f"Created admin member: {email}")
        db.session.commit()

    @app.cli.command("verify-stripe-product")
    def verify_stripe_product():
        """Verify STRIPE_PRODUCT_ID exists and is usable (same mode as key)."""
        import stripe as _stripe

        api_key = app.config.get("STRIPE_SECRET_KEY")
        product_id = app.config.get("STRIPE_PRODUCT_ID")

        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        if not product_id:
            click.echo("ERROR: STRIPE_PRODUCT_ID is not set.")
            return

        key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
        click.echo(f"Stripe key mode: {key_mode}")

        try:
            product = processor.retrieve_product()
        except _stripe.InvalidRequestError as e:
            click.echo(f"  {product_id}: ERROR: {e}")
            return

        livemode = product.get("livemode")
        click.echo(f"  {product_id}: name={product.get('name')}, active={product.get('active')}, livemode={livemode}")
        if livemode is True and key_mode != "Live":
            click.echo("    WARNING: This product is Live but your key is Test.")
        elif livemode is False and key_mode == "Live":
            click.echo("    WARNING: This product is Test but your key is Live.")

    @app.cli.command("list-prices")
    def list_prices():
        """Print the cached monthly prices, smallest first."""
        from membership.models.billing import StripePrice

        prices = StripePrice.query.order_by(StripePrice.amount_cents).all()
        if not prices:
            click.echo("No prices cached yet.")
            return
        for price in prices:
            click.echo(f"  ${price.amount_cents // 100:>4}/mo  {price.stripe_price_id}")
