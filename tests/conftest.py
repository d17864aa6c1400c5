"""Shared test fixtures for the premium entitlements test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: an admin, a premium member, a free member and their entitlements
- admin_client / member_client / free_client: logged-in test clients
- make_subscription: builds Stripe-shaped subscription dicts
"""

from datetime import datetime, timezone

import pytest
from werkzeug.security import generate_password_hash

from premium import create_app
from premium.extensions import db as _db
from premium.models.entitlement import (
    SubscriptionEntitlement,
    SubscriptionPlan,
    SubscriptionStatus,
)
from premium.models.user import User

# 2030-01-01 / 2030-02-01 UTC, far enough out that access never lapses mid-run
PERIOD_START = 1893456000
PERIOD_END = 1896134400


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed the database with users and entitlements.

    Returns plain IDs so tests can use them even when objects
    are detached from the session (cross-context access).
    """
    with app.app_context():
        # --- Admin (operator) ---
        admin = User(
            email="admin@premium.local",
            password_hash=generate_password_hash("admin123"),
            full_name="Admin User",
            is_admin=True,
        )
        # --- Premium member ---
        member = User(
            email="member@example.com",
            password_hash=generate_password_hash("member123"),
            full_name="Paying Member",
        )
        # --- Free member (no entitlement row) ---
        free_user = User(
            email="free@example.com",
            password_hash=generate_password_hash("free123"),
            full_name="Free Member",
        )
        _db.session.add_all([admin, member, free_user])
        _db.session.flush()

        entitlement = SubscriptionEntitlement(
            user_external_id=member.id,
            user_email=member.email,
            plan=SubscriptionPlan.PREMIUM_MONTHLY,
            status=SubscriptionStatus.ACTIVE,
            stripe_customer_id="cus_member",
            stripe_subscription_id="sub_member",
            stripe_price_id="price_monthly_test",
            stripe_product_id="prod_premium",
            latest_invoice_id="in_member",
            cancel_at_period_end=False,
            current_period_start=datetime.fromtimestamp(PERIOD_START, tz=timezone.utc),
            current_period_end=datetime.fromtimestamp(PERIOD_END, tz=timezone.utc),
            metadata_={"source": "seed"},
        )
        _db.session.add(entitlement)
        _db.session.commit()

        return {
            "admin_id": admin.id,
            "admin_email": admin.email,
            "member_id": member.id,
            "member_email": member.email,
            "free_user_id": free_user.id,
            "free_user_email": free_user.email,
            "entitlement_id": entitlement.id,
        }


@pytest.fixture
def make_subscription():
    """Factory for Stripe subscription payloads.

    Defaults mirror the seeded member's entitlement, so an unmodified
    subscription is in sync with it.
    """

    def _make(**overrides):
        price_id = overrides.pop("price_id", "price_monthly_test")
        period_start = overrides.pop("period_start", PERIOD_START)
        period_end = overrides.pop("period_end", PERIOD_END)
        subscription = {
            "id": "sub_member",
            "object": "subscription",
            "customer": "cus_member",
            "status": "active",
            "cancel_at_period_end": False,
            "latest_invoice": "in_member",
            "trial_end": None,
            "metadata": {},
            "items": {
                "data": [{
                    "price": {"id": price_id, "product": "prod_premium"},
                    "current_period_start": period_start,
                    "current_period_end": period_end,
                }]
            },
        }
        subscription.update(overrides)
        return subscription

    return _make


def login(client, email, password):
    """Log in through the JSON auth endpoint."""
    return client.post(
        "/auth/login",
        json={"email": email, "password": password},
    )


@pytest.fixture
def admin_client(client, seed_data):
    """Test client logged in as the operator."""
    resp = login(client, "admin@premium.local", "admin123")
    assert resp.status_code == 200
    return client


@pytest.fixture
def member_client(client, seed_data):
    """Test client logged in as the premium member."""
    resp = login(client, "member@example.com", "member123")
    assert resp.status_code == 200
    return client


@pytest.fixture
def free_client(client, seed_data):
    """Test client logged in as the member without an entitlement."""
    resp = login(client, "free@example.com", "free123")
    assert resp.status_code == 200
    return client
