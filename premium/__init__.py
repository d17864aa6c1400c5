import os
import logging

import click
from flask import Flask, jsonify

from premium.config import config_by_name
from premium.extensions import db, migrate, login_manager, csrf, limiter


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
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from premium import models  # noqa: F401

    # --- Register blueprints ---
    from premium.blueprints.auth import auth_bp
    from premium.blueprints.premium import premium_bp
    from premium.blueprints.admin import admin_bp
    from premium.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(premium_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhooks_bp)

    # Exempt webhooks from CSRF: raw body needed for Stripe signature verification
    csrf.exempt(webhooks_bp)
    # Exempt the operator JSON API: session + is_admin guarded, no forms
    csrf.exempt(admin_bp)

    # --- Error handlers ---
    from premium.services.errors import EntitlementError

    @app.errorhandler(EntitlementError)
    def entitlement_error(e):
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON-only service: nothing to load, nothing to frame
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; "
            "base-uri 'none'; "
            "form-action 'self' https://checkout.stripe.com; "
            "frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-admin")
    @click.option("--email", default="admin@premium.local", help="Admin email")
    @click.option("--password", default="admin123", help="Admin password")
    def seed_admin(email, password):
        """Create the operator account used for reconciliation.

        An existing non-admin user with that email is promoted instead.

        Usage:
            flask seed-admin
            flask seed-admin --email admin@example.com --password s3cret
        """
        from premium.models.user import User

        email = email.lower().strip()
        user = User.query.filter_by(email=email).first()
        if user is not None and user.is_admin:
            click.echo(f"Admin user already exists: {email}")
            return

        if user is not None:
            user.is_admin = True
            message = f"Promoted existing user to admin: {email}"
        else:
            user = User(email=email, full_name="Admin", is_admin=True)
            user.set_password(password)
            db.session.add(user)
            message = f"Created admin user: {email}"
        db.session.commit()
        click.echo(message)

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Check that the monthly and yearly plan prices exist for this key.

        A price from the other mode (Live vs Test) is flagged, since checkout
        would fail with it.
        """
        import stripe

        from premium.services.errors import ProviderUnavailableError
        from premium.services.snapshot_service import field, plan_prices_from_config
        from premium.services.stripe_service import configure_stripe

        try:
            api_key = configure_stripe()
        except ProviderUnavailableError:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        live_key = api_key.startswith("sk_live_")
        click.echo(f"Stripe key mode: {'Live' if live_key else 'Test'}")

        prices = plan_prices_from_config(app.config)
        for plan, price_id in (("monthly", prices.monthly), ("yearly", prices.yearly)):
            if not price_id:
                click.echo(f"  {plan}: (not set)")
                continue
            try:
                price = stripe.Price.retrieve(price_id, expand=["product"])
            except stripe.InvalidRequestError as e:
                click.echo(f"  {plan}: {price_id}\n    ERROR: {e}")
                continue

            livemode = field(price, "livemode")
            interval = field(field(price, "recurring"), "interval") or "one_time"
            product_active = field(field(price, "product"), "active")
            click.echo(f"  {plan}: {price_id}")
            click.echo(f"    livemode={livemode}, interval={interval}, product_active={product_active}")
            if livemode is not None and livemode != live_key:
                click.echo("    WARNING: price mode does not match the key mode.")

    @app.cli.command("reconcile")
    @click.option("--limit", default=None, help="Number of most recently updated entitlements to check.")
    def reconcile(limit):
        """Print the local-vs-Stripe reconciliation summary.

        Read-only. Fix individual records through the admin API.

        Usage:
            flask reconcile
            flask reconcile --limit 20
        """
        from premium.services.reconciliation_service import build_report

        report = build_report(limit)
        summary = report["summary"]

        click.echo("=" * 60)
        if not report["providerAvailable"]:
            click.echo("Stripe is not configured: local data only.")
        click.echo(
            f"  Total: {summary['total']}  In sync: {summary['inSync']}  "
            f"Mismatched: {summary['mismatched']}"
        )
        click.echo("=" * 60)

        for record in report["records"]:
            if record["inSync"]:
                continue
            who = record["userEmail"] or record["userExternalId"] or "(no identity)"
            click.echo(f"{record['id']}  {who}")
            for reason in record["mismatchReasons"]:
                click.echo(f"    - {reason}")
