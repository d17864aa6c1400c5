"""Admin blueprint: /admin/billing/reconciliation

Operator-only JSON API for comparing local entitlements against Stripe
and correcting them. CSRF-exempt (JSON API, session + is_admin guarded).

Routes:
- GET  /admin/billing/reconciliation?limit=N -> local vs Stripe report
- POST /admin/billing/reconciliation -> run a sync / reset action
"""

import logging

import stripe
from flask import Blueprint, jsonify, request
from flask_login import current_user

from premium.decorators import admin_required
from premium.extensions import db
from premium.services import reconciliation_service

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.route("/billing/reconciliation", methods=["GET"])
@admin_required
def reconciliation_report():
    report = reconciliation_service.build_report(request.args.get("limit"))
    return jsonify(report)


@admin_bp.route("/billing/reconciliation", methods=["POST"])
@admin_required
def reconciliation_action():
    """Run one action. EntitlementError subclasses (400/404/503) are
    rendered by the app-level handler; Stripe failures become a 500."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "Invalid request body"}), 400

    try:
        result = reconciliation_service.run_action(
            body.get("entitlementId"),
            body.get("action"),
            actor_user_id=current_user.id,
        )
    except stripe.StripeError as e:
        db.session.rollback()
        logger.error(f"Reconciliation sync failed: {e}", exc_info=True)
        return jsonify({"error": "Failed to sync entitlement from Stripe"}), 500

    db.session.commit()
    return jsonify({
        "action": result.action,
        "updatedRecord": result.updated_record,
        "note": result.note,
    })
