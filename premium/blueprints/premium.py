"""Premium blueprint: /premium/*

End-user entitlement API:
- GET  /premium/entitlement -> current plan + hasPremiumAccess
- POST /premium/checkout -> create Checkout Session, returns {url}
- GET  /premium/checkout/status -> polled after checkout returns
"""

import logging

import stripe
from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from premium.extensions import db, limiter
from premium.services import stripe_service
from premium.services.entitlement_service import (
    describe_entitlement,
    get_entitlement_for_identity,
    has_premium_access,
)
from premium.services.errors import ProviderUnavailableError
from premium.services.snapshot_service import field

logger = logging.getLogger(__name__)

premium_bp = Blueprint("premium", __name__, url_prefix="/premium")


def _current_entitlement():
    return get_entitlement_for_identity(
        user_external_id=current_user.id,
        user_email=current_user.email,
    )


# ──────────────────────────────────────────────
# GET /premium/entitlement
# ──────────────────────────────────────────────

@premium_bp.route("/entitlement")
@login_required
def entitlement():
    return jsonify(describe_entitlement(_current_entitlement()))


# ──────────────────────────────────────────────
# POST /premium/checkout
# ──────────────────────────────────────────────

@premium_bp.route("/checkout", methods=["POST"])
@login_required
@limiter.limit("10 per minute")
def checkout():
    """Start a premium subscription checkout.

    Body (optional): {"interval": "monthly" | "yearly"}. Monthly by default.
    ProviderUnavailableError (503) is rendered by the app-level handler.
    """
    body = request.get_json(silent=True) or {}
    interval = "yearly" if body.get("interval") == "yearly" else "monthly"

    try:
        session, _ = stripe_service.create_checkout_session(current_user, interval)
    except stripe.StripeError as e:
        db.session.rollback()
        logger.error(f"Checkout session creation failed for user {current_user.id}: {e}", exc_info=True)
        return jsonify({"error": "Could not start checkout"}), 502

    db.session.commit()
    return jsonify({"url": field(session, "url")})


# ──────────────────────────────────────────────
# GET /premium/checkout/status?session_id=...
# ──────────────────────────────────────────────

@premium_bp.route("/checkout/status")
@login_required
def checkout_status():
    """JSON endpoint polled by the success page.

    If the webhook hasn't arrived yet, the session_id from the success URL
    is used to fetch the subscription from Stripe and sync it directly.
    """
    current = _current_entitlement()
    active = has_premium_access(current)

    session_id = request.args.get("session_id", "").strip()
    if not active and session_id:
        try:
            synced = stripe_service.sync_checkout_for_user(session_id, current_user)
            if synced is not None:
                db.session.commit()
                active = has_premium_access(synced)
                logger.info(f"Synced entitlement from Stripe session {session_id} for user {current_user.id}")
        except (stripe.StripeError, ProviderUnavailableError) as e:
            db.session.rollback()
            logger.warning(f"Failed to sync from Stripe session: {e}")

    return jsonify({"hasPremiumAccess": active})
