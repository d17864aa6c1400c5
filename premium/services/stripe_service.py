"""Stripe service: all Stripe API calls and webhook handling.

Responsible for:
- Configuring the Stripe SDK from app config (provider availability)
- The subscription lookup chain shared by manual sync and the
  reconciliation report (subscription id -> customer id -> email)
- Creating Stripe Checkout Sessions for the premium plans
- Verifying incoming webhooks and dispatching to event-specific handlers
- Idempotency via stripe_events table
"""

import logging
from collections import namedtuple

import stripe
from flask import current_app

from premium.extensions import db
from premium.models.stripe_event import StripeEvent
from premium.services.entitlement_service import (
    get_entitlement_for_identity,
    sync_from_subscription,
    upsert_from_checkout_session,
)
from premium.services.errors import ProviderUnavailableError
from premium.services.identity_service import IdentityHints
from premium.services.snapshot_service import (
    detect_plan,
    field,
    from_unix,
    plan_prices_from_config,
    stripe_id,
)

logger = logging.getLogger(__name__)

# Expanded on direct retrieves so the snapshot sees the price's product
# and the invoice id without extra calls.
SUBSCRIPTION_EXPAND = ["items.data.price", "latest_invoice"]


# ──────────────────────────────────────────────
# Client configuration
# ──────────────────────────────────────────────

def configure_stripe(app_config=None):
    """Point the Stripe SDK at the configured secret key.

    Returns the key. Raises ProviderUnavailableError when no key is set.
    """
    config = app_config if app_config is not None else current_app.config
    secret_key = (config.get("STRIPE_SECRET_KEY") or "").strip()
    if not secret_key:
        raise ProviderUnavailableError()

    stripe.api_key = secret_key
    stripe.max_network_retries = config.get("STRIPE_MAX_NETWORK_RETRIES", 2)
    return secret_key


def stripe_available(app_config=None):
    try:
        configure_stripe(app_config)
    except ProviderUnavailableError:
        return False
    return True


# ──────────────────────────────────────────────
# Subscription lookup chain
# ──────────────────────────────────────────────

class ProviderKeys(namedtuple("ProviderKeys", ["subscription_id", "customer_id", "email"])):
    """Plain lookup keys, safe to hand to worker threads (no ORM state)."""

    __slots__ = ()

    @classmethod
    def from_entitlement(cls, entitlement):
        return cls(
            subscription_id=entitlement.stripe_subscription_id,
            customer_id=entitlement.stripe_customer_id,
            email=entitlement.user_email,
        )


def retrieve_subscription(subscription_id):
    """Fetch one subscription by id. None if Stripe doesn't know it."""
    try:
        return stripe.Subscription.retrieve(subscription_id, expand=SUBSCRIPTION_EXPAND)
    except stripe.InvalidRequestError as e:
        logger.info(f"Stripe subscription {subscription_id} not retrievable: {e}")
        return None


def latest_subscription_for_customer(customer_id):
    """Most recent subscription (any status) for a customer, or None."""
    try:
        result = stripe.Subscription.list(customer=customer_id, status="all", limit=1)
    except stripe.InvalidRequestError as e:
        logger.info(f"Cannot list subscriptions for customer {customer_id}: {e}")
        return None
    data = field(result, "data") or []
    return data[0] if data else None


def find_customer_by_email(email):
    result = stripe.Customer.list(email=email, limit=1)
    data = field(result, "data") or []
    return data[0] if data else None


def find_subscription(keys):
    """Find the live Stripe subscription behind a local entitlement.

    Tries, in order: the stored subscription id, the stored customer's most
    recent subscription, then the most recent subscription of the customer
    matching the stored email. Returns the Stripe subscription or None.

    A "no such object" answer counts as a miss. Any other Stripe error
    propagates; callers decide whether that fails the request.
    """
    if keys.subscription_id:
        subscription = retrieve_subscription(keys.subscription_id)
        if subscription is not None:
            return subscription

    if keys.customer_id:
        subscription = latest_subscription_for_customer(keys.customer_id)
        if subscription is not None:
            return subscription

    if keys.email:
        customer_id = stripe_id(find_customer_by_email(keys.email))
        if customer_id:
            subscription = latest_subscription_for_customer(customer_id)
            if subscription is not None:
                return subscription

    return None


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def create_checkout_session(user, interval="monthly"):
    """Create a Stripe Checkout Session for a premium plan.

    The user's id and email ride along as metadata on both the session and
    the subscription it creates, so later webhooks can be matched back to
    the user. The pending checkout is recorded locally right away.

    Returns (session, entitlement). Raises ProviderUnavailableError when
    Stripe or the plan's price isn't configured, stripe.StripeError on API
    failures.
    """
    configure_stripe()
    config = current_app.config
    prices = plan_prices_from_config(config)
    price_id = prices.yearly if interval == "yearly" else prices.monthly
    if not price_id:
        raise ProviderUnavailableError(f"No Stripe price configured for the {interval} plan")

    app_base_url = config["APP_BASE_URL"].rstrip("/")
    metadata = {"userExternalId": user.id, "userEmail": user.email}
    params = {
        "mode": "subscription",
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": config.get("STRIPE_SUCCESS_URL") or (
            f"{app_base_url}/premium/success?session_id={{CHECKOUT_SESSION_ID}}"
        ),
        "cancel_url": config.get("STRIPE_CANCEL_URL") or f"{app_base_url}/premium/cancel",
        "allow_promotion_codes": True,
        "billing_address_collection": "auto",
        "client_reference_id": user.id,
        "metadata": metadata,
        "subscription_data": {"metadata": metadata},
    }

    existing = get_entitlement_for_identity(user_external_id=user.id, user_email=user.email)
    if existing and existing.stripe_customer_id:
        params["customer"] = existing.stripe_customer_id
    else:
        params["customer_email"] = user.email

    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.InvalidRequestError as e:
        # Stored customer may be from Test mode or another account
        if "No such customer" in str(e) and "customer" in params:
            logger.warning(f"Stale Stripe customer for user {user.id}, retrying with email")
            params.pop("customer")
            params["customer_email"] = user.email
            session = stripe.checkout.Session.create(**params)
        else:
            raise

    entitlement = upsert_from_checkout_session(
        session,
        user_external_id=user.id,
        user_email=user.email,
        plan=detect_plan(price_id, prices),
    )
    return session, entitlement


def sync_from_checkout_session(session, event_id=None, event_created=None):
    """Resolve the subscription a checkout session created, then sync it.

    Returns the entitlement, or None when the session has no subscription
    (yet).
    """
    subscription_id = stripe_id(field(session, "subscription"))
    if not subscription_id:
        logger.info(f"Checkout session {stripe_id(field(session, 'id'))} has no subscription yet")
        return None

    subscription = stripe.Subscription.retrieve(subscription_id, expand=SUBSCRIPTION_EXPAND)
    metadata = field(session, "metadata")
    hints = IdentityHints(
        user_external_id=field(metadata, "userExternalId") or field(session, "client_reference_id"),
        user_email=field(metadata, "userEmail") or field(field(session, "customer_details"), "email"),
    )
    return sync_from_subscription(
        subscription,
        hints=hints,
        checkout_session_id=stripe_id(field(session, "id")),
        event_id=event_id,
        event_created=event_created,
    )


def sync_checkout_for_user(session_id, user):
    """Checkout-status fallback: sync from the session if it is the user's.

    Works even when the webhook hasn't arrived yet. Returns the entitlement
    or None when the session belongs to someone else or has no subscription.
    """
    configure_stripe()
    session = stripe.checkout.Session.retrieve(session_id)
    owner = field(field(session, "metadata"), "userExternalId") or field(session, "client_reference_id")
    if owner != user.id:
        logger.warning(f"Checkout session {session_id} does not belong to user {user.id}")
        return None
    return sync_from_checkout_session(session, event_id=f"checkout_status:{session_id}")


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Return the verified event.

    Raises ProviderUnavailableError when no signing secret is configured,
    ValueError on an unparseable payload and
    stripe.SignatureVerificationError on a bad signature.
    """
    webhook_secret = (current_app.config.get("STRIPE_WEBHOOK_SECRET") or "").strip()
    if not webhook_secret:
        raise ProviderUnavailableError("Stripe webhook secret is not configured")
    return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)


def handle_webhook_event(event):
    """Apply a verified event once.

    The delivery is recorded in stripe_events in the same commit as the
    entitlement change, so a failed handler leaves no record and Stripe's
    redelivery gets a fresh attempt. Unrouted event types are recorded
    and otherwise ignored.

    Returns (ok, outcome).
    """
    event_id = event["id"]
    event_type = event["type"]

    if StripeEvent.query.filter_by(stripe_event_id=event_id).first() is not None:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    handler = WEBHOOK_HANDLERS.get(event_type)
    try:
        if handler is not None:
            handler(event)
        db.session.add(StripeEvent(stripe_event_id=event_id, event_type=event_type))
        db.session.commit()
    except Exception as e:
        logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
        db.session.rollback()
        return False, str(e)

    return True, "processed" if handler is not None else "ignored"


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _event_object(event):
    return event["data"]["object"]


def _event_created(event):
    return from_unix(field(event, "created"))


def _handle_checkout_completed(event):
    """Handle checkout.session.completed.

    The session only references the subscription, so fetch it first.
    """
    session = _event_object(event)
    if not stripe_id(field(session, "subscription")):
        logger.info(f"checkout.session.completed {event['id']} without subscription, ignoring")
        return

    configure_stripe()
    sync_from_checkout_session(
        session,
        event_id=event["id"],
        event_created=_event_created(event),
    )


def _handle_subscription_changed(event):
    """Handle customer.subscription.*: the payload is the subscription."""
    subscription = _event_object(event)
    metadata = field(subscription, "metadata")
    sync_from_subscription(
        subscription,
        hints=IdentityHints(
            user_external_id=field(metadata, "userExternalId"),
            user_email=field(metadata, "userEmail"),
        ),
        event_id=event["id"],
        event_created=_event_created(event),
    )


def _invoice_subscription_id(invoice):
    """Newer API versions nest the subscription under parent.subscription_details."""
    details = field(field(invoice, "parent"), "subscription_details")
    return stripe_id(field(details, "subscription")) or stripe_id(field(invoice, "subscription"))


def _handle_invoice(event):
    """Handle invoice.paid / invoice.payment_failed.

    Re-reads the subscription so the entitlement reflects the status Stripe
    moved it to after the payment attempt.
    """
    invoice = _event_object(event)
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info(f"{event['type']} {event['id']} not tied to a subscription, ignoring")
        return

    configure_stripe()
    subscription = stripe.Subscription.retrieve(subscription_id, expand=SUBSCRIPTION_EXPAND)
    sync_from_subscription(
        subscription,
        hints=IdentityHints(user_email=field(invoice, "customer_email")),
        event_id=event["id"],
        event_created=_event_created(event),
    )


WEBHOOK_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "customer.subscription.created": _handle_subscription_changed,
    "customer.subscription.updated": _handle_subscription_changed,
    "customer.subscription.deleted": _handle_subscription_changed,
    "customer.subscription.paused": _handle_subscription_changed,
    "customer.subscription.resumed": _handle_subscription_changed,
    "invoice.paid": _handle_invoice,
    "invoice.payment_failed": _handle_invoice,
}
