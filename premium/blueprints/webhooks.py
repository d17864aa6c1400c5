"""Webhooks blueprint: /stripe/webhooks

The event-driven sync entry point. Only signature-verified events reach
stripe_service; a 500 answer makes Stripe redeliver later.
"""

import logging

import stripe
from flask import Blueprint, jsonify, request

from premium.services import stripe_service

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Verify, dedupe and apply one Stripe event.

    An unset STRIPE_WEBHOOK_SECRET raises ProviderUnavailableError, rendered
    as a 503 by the app-level handler.
    """
    signature = request.headers.get("Stripe-Signature")
    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    try:
        event = stripe_service.verify_webhook_signature(request.get_data(), signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": "Invalid signature"}), 400

    ok, outcome = stripe_service.handle_webhook_event(event)
    if not ok:
        logger.error(f"Webhook {event['id']} ({event['type']}) failed: {outcome}")
        return jsonify({"error": outcome}), 500

    logger.info(f"Webhook {event['id']} ({event['type']}): {outcome}")
    return jsonify({"status": outcome})
