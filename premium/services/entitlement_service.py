"""Entitlement service: the write path for local entitlements.

Responsible for:
- Upserting an entitlement from a Stripe snapshot (webhooks, manual sync)
- Recording a checkout session against the buying user
- Deriving premium access from plan / status / period end
- The read accessor used by the premium API
- Audit logging of every entitlement write

Functions here flush; the caller owns the commit.
"""

import logging
from datetime import timedelta

from flask import current_app

from premium.extensions import db
from premium.models.audit import AuditEvent
from premium.models.entitlement import (
    SubscriptionEntitlement,
    SubscriptionPlan,
    SubscriptionStatus,
)
from premium.services.errors import IdentityRequiredError
from premium.services.identity_service import (
    IdentityHints,
    normalize_email,
    normalize_id,
    resolve_entitlement,
)
from premium.services.snapshot_service import (
    as_utc,
    create_snapshot,
    field,
    isoformat,
    plan_prices_from_config,
    stripe_id,
    utcnow,
)

logger = logging.getLogger(__name__)

PREMIUM_ACCESS_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
})

# Period end is honoured for a few minutes past its timestamp so a renewal
# webhook arriving slightly late doesn't flap access.
ACCESS_GRACE = timedelta(minutes=5)


# ──────────────────────────────────────────────
# Metadata & audit
# ──────────────────────────────────────────────

def merge_metadata(existing, additions):
    """Shallow union of the stored metadata bag and `additions`.

    Keys written by other callers survive. Returns a new dict so the JSON
    column sees the change.
    """
    merged = dict(existing) if isinstance(existing, dict) else {}
    merged.update(additions)
    return merged


def log_entitlement_audit(entitlement, action, actor_user_id=None, metadata=None):
    """Log an entitlement audit event. Actor is None for webhook writes."""
    event = AuditEvent(
        entitlement_id=entitlement.id,
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()


# ──────────────────────────────────────────────
# Sync engine
# ──────────────────────────────────────────────

def sync_from_snapshot(snapshot, hints=None, checkout_session_id=None,
                       event_id=None, event_created=None):
    """Create or update the local entitlement from a Stripe snapshot.

    Stripe-sourced fields always replace local values. The identity fields
    only fill in from non-empty hints; otherwise the stored ones are kept.
    Safe to repeat with the same snapshot: a second call converges to the
    same field values and only moves synced_at and the metadata timestamps.

    Known limitation: last write wins. lastProviderEventId is recorded but
    never compared, so an older event delivered after a newer one regresses
    the row. event_created is stored as lastProviderEventCreatedAt to give
    an ordering guard something to compare against.

    Returns the SubscriptionEntitlement.
    """
    if not snapshot.stripe_subscription_id:
        raise ValueError("Cannot sync an entitlement from a subscription without an id")

    hints = (hints or IdentityHints()).merged_with(
        stripe_customer_id=snapshot.stripe_customer_id,
        stripe_subscription_id=snapshot.stripe_subscription_id,
    )
    checkout_session_id = normalize_id(checkout_session_id)
    now = utcnow()

    existing = resolve_entitlement(hints, for_update=True)

    previous_checkout = existing.checkout_session_id if existing else None
    additions = {
        "lastProviderEventId": event_id,
        "lastProviderSyncAt": now.isoformat(),
        "lastCheckoutSessionId": checkout_session_id or previous_checkout,
    }
    if event_created is not None:
        additions["lastProviderEventCreatedAt"] = isoformat(event_created)
    metadata = merge_metadata(existing.metadata_ if existing else None, additions)

    values = {
        "user_external_id": hints.user_external_id or (existing.user_external_id if existing else None),
        "user_email": hints.user_email or (existing.user_email if existing else None),
        "stripe_customer_id": snapshot.stripe_customer_id,
        "stripe_subscription_id": snapshot.stripe_subscription_id,
        "stripe_price_id": snapshot.stripe_price_id,
        "stripe_product_id": snapshot.stripe_product_id,
        "latest_invoice_id": snapshot.latest_invoice_id,
        "plan": snapshot.plan,
        "status": snapshot.status,
        "cancel_at_period_end": snapshot.cancel_at_period_end,
        "current_period_start": snapshot.current_period_start,
        "current_period_end": snapshot.current_period_end,
        "trial_ends_at": snapshot.trial_ends_at,
        "checkout_session_id": checkout_session_id or previous_checkout,
        "synced_at": now,
        "mismatch_reason": None,
        "metadata_": metadata,
    }

    if existing:
        for key, value in values.items():
            setattr(existing, key, value)
        entitlement = existing
    else:
        entitlement = SubscriptionEntitlement(**values)
        db.session.add(entitlement)

    db.session.flush()

    log_entitlement_audit(entitlement, "entitlement.synced", metadata={
        "stripe_subscription_id": snapshot.stripe_subscription_id,
        "plan": snapshot.plan.value,
        "status": snapshot.status.value,
        "event_id": event_id,
        "created": existing is None,
    })
    logger.info(
        f"Synced entitlement {entitlement.id} from {snapshot.stripe_subscription_id} "
        f"({snapshot.plan.value}/{snapshot.status.value}, event={event_id})"
    )
    return entitlement


def sync_from_subscription(subscription, hints=None, checkout_session_id=None,
                           event_id=None, event_created=None):
    """Map a Stripe subscription object with the configured prices, then sync."""
    snapshot = create_snapshot(subscription, plan_prices_from_config(current_app.config))
    return sync_from_snapshot(
        snapshot,
        hints=hints,
        checkout_session_id=checkout_session_id,
        event_id=event_id,
        event_created=event_created,
    )


def upsert_from_checkout_session(session, user_external_id, user_email, plan):
    """Record a Stripe Checkout Session against the buying user.

    A complete session means ACTIVE, anything else INCOMPLETE. A user who
    already has premium access keeps their plan and status while a new,
    unfinished checkout is pending. Stripe ids only fill in when the session
    carries them.

    Raises IdentityRequiredError before touching the store when the user
    external id is blank.
    """
    external_id = normalize_id(user_external_id)
    if not external_id:
        raise IdentityRequiredError("Cannot record a checkout without a user external id")

    email = normalize_email(user_email)
    customer_id = stripe_id(field(session, "customer"))
    subscription_id = stripe_id(field(session, "subscription"))
    session_id = stripe_id(field(session, "id"))
    session_status = field(session, "status")
    now = utcnow()

    existing = resolve_entitlement(
        IdentityHints(
            user_external_id=external_id,
            user_email=email,
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_id,
        ),
        for_update=True,
    )

    metadata = merge_metadata(existing.metadata_ if existing else None, {
        "checkoutMode": field(session, "mode"),
        "checkoutStatus": session_status,
        "checkoutPaymentStatus": field(session, "payment_status"),
        "lastCheckoutCreatedAt": now.isoformat(),
        "lastCheckoutSessionId": session_id,
    })

    values = {
        "user_external_id": external_id,
        "user_email": email or (existing.user_email if existing else None),
        "checkout_session_id": session_id,
        "synced_at": now,
        "mismatch_reason": None,
        "metadata_": metadata,
    }
    complete = session_status == "complete"
    if complete or not has_premium_access(existing):
        values["plan"] = plan
        values["status"] = SubscriptionStatus.ACTIVE if complete else SubscriptionStatus.INCOMPLETE
    if customer_id:
        values["stripe_customer_id"] = customer_id
    if subscription_id:
        values["stripe_subscription_id"] = subscription_id

    if existing:
        for key, value in values.items():
            setattr(existing, key, value)
        entitlement = existing
    else:
        entitlement = SubscriptionEntitlement(**values)
        db.session.add(entitlement)

    db.session.flush()

    log_entitlement_audit(entitlement, "entitlement.checkout_recorded", metadata={
        "user_external_id": external_id,
        "checkout_session_id": session_id,
        "checkout_status": session_status,
        "plan": entitlement.plan.value,
    })
    return entitlement


# ──────────────────────────────────────────────
# Read side
# ──────────────────────────────────────────────

def has_premium_access(entitlement, now=None):
    """True only for a non-FREE plan in an access status whose period
    (if any) hasn't ended more than ACCESS_GRACE ago."""
    if entitlement is None:
        return False
    if entitlement.plan == SubscriptionPlan.FREE:
        return False
    if entitlement.status not in PREMIUM_ACCESS_STATUSES:
        return False
    if entitlement.current_period_end is not None:
        now = as_utc(now) if now else utcnow()
        return as_utc(entitlement.current_period_end) + ACCESS_GRACE >= now
    return True


def get_entitlement_for_identity(user_external_id=None, user_email=None):
    """Read accessor: resolve by external user id, then email."""
    return resolve_entitlement(
        IdentityHints(user_external_id=user_external_id, user_email=user_email)
    )


def describe_entitlement(entitlement):
    """JSON view for the premium API, with a FREE/NONE default when missing."""
    if entitlement is None:
        view = {
            "plan": SubscriptionPlan.FREE.value,
            "status": SubscriptionStatus.NONE.value,
            "stripeCustomerId": None,
            "stripeSubscriptionId": None,
            "cancelAtPeriodEnd": False,
            "currentPeriodStart": None,
            "currentPeriodEnd": None,
            "trialEndsAt": None,
            "syncedAt": None,
            "mismatchReason": None,
        }
    else:
        view = {
            "plan": entitlement.plan.value,
            "status": entitlement.status.value,
            "stripeCustomerId": entitlement.stripe_customer_id,
            "stripeSubscriptionId": entitlement.stripe_subscription_id,
            "cancelAtPeriodEnd": bool(entitlement.cancel_at_period_end),
            "currentPeriodStart": isoformat(entitlement.current_period_start),
            "currentPeriodEnd": isoformat(entitlement.current_period_end),
            "trialEndsAt": isoformat(entitlement.trial_ends_at),
            "syncedAt": isoformat(entitlement.synced_at),
            "mismatchReason": entitlement.mismatch_reason,
        }
    return {
        "entitlement": view,
        "hasPremiumAccess": has_premium_access(entitlement),
    }
