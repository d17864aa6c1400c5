"""Reconciliation service: operator tooling over local entitlements.

Two halves:
- run_action(): the manual sync / reset actions behind the admin POST
- build_report(): the paged local-vs-Stripe comparison behind the admin GET

Actions flush; the blueprint commits.
"""

import logging
import re
import time
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor

import stripe
from flask import current_app

from premium.extensions import db
from premium.models.entitlement import (
    SubscriptionEntitlement,
    SubscriptionPlan,
    SubscriptionStatus,
)
from premium.services import stripe_service
from premium.services.entitlement_service import (
    log_entitlement_audit,
    merge_metadata,
    sync_from_subscription,
)
from premium.services.errors import (
    EntitlementNotFoundError,
    MissingEntitlementIdError,
    UnsupportedActionError,
)
from premium.services.identity_service import (
    IdentityHints,
    get_entitlement,
    normalize_id,
    resolve_entitlement,
)
from premium.services.mismatch_service import compute_mismatch_reasons
from premium.services.snapshot_service import (
    create_snapshot,
    isoformat,
    plan_prices_from_config,
    utcnow,
)

logger = logging.getLogger(__name__)

SYNC_ACTION = "sync_from_provider"
RESET_ACTION = "reset_to_free"
SUPPORTED_ACTIONS = (SYNC_ACTION, RESET_ACTION)

NO_SUBSCRIPTION_REASON = "manual sync requested but no provider subscription was found"
NO_SUBSCRIPTION_NOTE = "no provider subscription found"
LINKED_ELSEWHERE_REASON = "provider subscription is linked to entitlement"
LINKED_ELSEWHERE_NOTE = "provider subscription belongs to another entitlement; nothing synced"
SYNCED_NOTE = "synced local entitlement from provider"
RESET_NOTE = "entitlement reset to free"

DEFAULT_LIMIT = 60
MAX_LIMIT = 250

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

ActionResult = namedtuple("ActionResult", ["action", "updated_record", "note"])


# ──────────────────────────────────────────────
# Presentation
# ──────────────────────────────────────────────

def _local_view(entitlement):
    return {
        "plan": entitlement.plan.value,
        "status": entitlement.status.value,
        "stripeCustomerId": entitlement.stripe_customer_id,
        "stripeSubscriptionId": entitlement.stripe_subscription_id,
        "stripePriceId": entitlement.stripe_price_id,
        "stripeProductId": entitlement.stripe_product_id,
        "cancelAtPeriodEnd": bool(entitlement.cancel_at_period_end),
        "currentPeriodStart": isoformat(entitlement.current_period_start),
        "currentPeriodEnd": isoformat(entitlement.current_period_end),
        "trialEndsAt": isoformat(entitlement.trial_ends_at),
        "latestInvoiceId": entitlement.latest_invoice_id,
        "checkoutSessionId": entitlement.checkout_session_id,
        "syncedAt": isoformat(entitlement.synced_at),
        "mismatchReason": entitlement.mismatch_reason,
        "updatedAt": isoformat(entitlement.updated_at),
        "createdAt": isoformat(entitlement.created_at),
    }


def _provider_view(snapshot):
    if snapshot is None:
        return None
    return {
        "plan": snapshot.plan.value,
        "status": snapshot.status.value,
        "stripeCustomerId": snapshot.stripe_customer_id,
        "stripeSubscriptionId": snapshot.stripe_subscription_id,
        "stripePriceId": snapshot.stripe_price_id,
        "stripeProductId": snapshot.stripe_product_id,
        "cancelAtPeriodEnd": snapshot.cancel_at_period_end,
        "currentPeriodStart": isoformat(snapshot.current_period_start),
        "currentPeriodEnd": isoformat(snapshot.current_period_end),
        "trialEndsAt": isoformat(snapshot.trial_ends_at),
        "latestInvoiceId": snapshot.latest_invoice_id,
    }


def present_record(entitlement, snapshot=None):
    """Side-by-side view of a local row and its Stripe snapshot (or None)."""
    reasons = compute_mismatch_reasons(entitlement, snapshot)
    return {
        "id": entitlement.id,
        "userExternalId": entitlement.user_external_id,
        "userEmail": entitlement.user_email,
        "local": _local_view(entitlement),
        "provider": _provider_view(snapshot),
        "mismatchReasons": reasons,
        "inSync": not reasons,
    }


# ──────────────────────────────────────────────
# Actions
# ──────────────────────────────────────────────

def run_action(entitlement_id, action, actor_user_id=None):
    """Run one reconciliation action against one entitlement.

    Validation order: id present, action supported, row exists. Nothing is
    read from the database until the first two pass.

    Returns ActionResult. Raises an EntitlementError subclass on bad input,
    ProviderUnavailableError when a sync is asked for without Stripe keys,
    stripe.StripeError when Stripe fails mid-sync.
    """
    entitlement_id = normalize_id(entitlement_id)
    if not entitlement_id:
        raise MissingEntitlementIdError()

    action = action.strip() if isinstance(action, str) else action
    if action not in SUPPORTED_ACTIONS:
        raise UnsupportedActionError()

    entitlement = get_entitlement(entitlement_id)
    if entitlement is None:
        raise EntitlementNotFoundError()

    if action == RESET_ACTION:
        return _reset_to_free(entitlement, actor_user_id)
    return _sync_from_provider(entitlement, actor_user_id)


def _sync_from_provider(entitlement, actor_user_id):
    stripe_service.configure_stripe()
    subscription = stripe_service.find_subscription(
        stripe_service.ProviderKeys.from_entitlement(entitlement)
    )

    if subscription is None:
        entitlement.mismatch_reason = NO_SUBSCRIPTION_REASON
        entitlement.synced_at = utcnow()
        db.session.flush()
        log_entitlement_audit(
            entitlement, f"reconciliation.{SYNC_ACTION}",
            actor_user_id=actor_user_id,
            metadata={"found": False},
        )
        logger.info(f"Manual sync of {entitlement.id} found no Stripe subscription")
        return ActionResult(SYNC_ACTION, present_record(entitlement), NO_SUBSCRIPTION_NOTE)

    snapshot = create_snapshot(subscription, plan_prices_from_config(current_app.config))
    hints = IdentityHints(
        user_external_id=entitlement.user_external_id,
        user_email=entitlement.user_email,
        stripe_customer_id=snapshot.stripe_customer_id,
        stripe_subscription_id=snapshot.stripe_subscription_id,
    )
    owner = resolve_entitlement(hints)
    if owner is not None and owner.id != entitlement.id:
        return _refuse_linked_elsewhere(entitlement, owner, snapshot, actor_user_id)

    event_id = f"manual:{actor_user_id or 'unknown'}:{int(time.time() * 1000)}"
    synced = sync_from_subscription(subscription, hints=hints, event_id=event_id)
    log_entitlement_audit(
        synced, f"reconciliation.{SYNC_ACTION}",
        actor_user_id=actor_user_id,
        metadata={"found": True, "event_id": event_id},
    )
    return ActionResult(SYNC_ACTION, present_record(synced, snapshot), SYNCED_NOTE)


def _refuse_linked_elsewhere(entitlement, owner, snapshot, actor_user_id):
    """The Stripe subscription resolves to another row: flag this one, write neither."""
    entitlement.mismatch_reason = f"{LINKED_ELSEWHERE_REASON} {owner.id}"
    entitlement.synced_at = utcnow()
    db.session.flush()
    log_entitlement_audit(
        entitlement, f"reconciliation.{SYNC_ACTION}",
        actor_user_id=actor_user_id,
        metadata={
            "found": True,
            "stripe_subscription_id": snapshot.stripe_subscription_id,
            "linked_entitlement_id": owner.id,
        },
    )
    logger.warning(
        f"Manual sync of {entitlement.id} found {snapshot.stripe_subscription_id}, "
        f"which resolves to entitlement {owner.id}; no identity written"
    )
    return ActionResult(SYNC_ACTION, present_record(entitlement, snapshot), LINKED_ELSEWHERE_NOTE)


def _reset_to_free(entitlement, actor_user_id):
    """Local-only override. The Stripe subscription is left untouched."""
    now = utcnow()
    entitlement.plan = SubscriptionPlan.FREE
    entitlement.status = SubscriptionStatus.NONE
    entitlement.stripe_subscription_id = None
    entitlement.stripe_price_id = None
    entitlement.stripe_product_id = None
    entitlement.latest_invoice_id = None
    entitlement.cancel_at_period_end = False
    entitlement.current_period_start = None
    entitlement.current_period_end = None
    entitlement.trial_ends_at = None
    entitlement.synced_at = now
    entitlement.mismatch_reason = None
    entitlement.metadata_ = merge_metadata(entitlement.metadata_, {
        "lastManualResetBy": actor_user_id,
        "lastManualResetAt": now.isoformat(),
    })
    db.session.flush()

    log_entitlement_audit(
        entitlement, f"reconciliation.{RESET_ACTION}",
        actor_user_id=actor_user_id,
    )
    logger.info(f"Entitlement {entitlement.id} reset to free by {actor_user_id}")
    return ActionResult(RESET_ACTION, present_record(entitlement), RESET_NOTE)


# ──────────────────────────────────────────────
# Report
# ──────────────────────────────────────────────

def clamp_limit(raw, default=None, maximum=None):
    """Parse a page size, reading the leading integer ("12abc" -> 12, "2.5" -> 2).

    No leading integer -> default; otherwise bounded to 1..maximum.
    """
    default = default or DEFAULT_LIMIT
    maximum = maximum or MAX_LIMIT
    if raw is None or isinstance(raw, bool):
        return default
    match = _LEADING_INT.match(str(raw))
    if match is None:
        return default
    return min(max(int(match.group(1)), 1), maximum)


def _lookup(keys, prices):
    """Worker body: plain keys and prices in, a snapshot or None out.

    Any failure is logged and reported as "no provider data" for this
    record only, so one bad subscription never takes down the page.
    """
    try:
        subscription = stripe_service.find_subscription(keys)
        if subscription is None:
            return None
        return create_snapshot(subscription, prices)
    except stripe.StripeError as e:
        logger.warning(f"Stripe lookup failed for {keys}: {e}")
        return None
    except Exception as e:
        logger.error(f"Unexpected error reading Stripe data for {keys}: {e}", exc_info=True)
        return None


def _fetch_snapshots(keys_by_id, prices, max_workers):
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            entitlement_id: executor.submit(_lookup, keys, prices)
            for entitlement_id, keys in keys_by_id.items()
        }
        return {entitlement_id: future.result() for entitlement_id, future in futures.items()}


def build_report(limit=None):
    """Compare the most recently updated entitlements against Stripe.

    Without Stripe keys the report still renders from local data, with
    providerAvailable false and every provider section null.
    """
    config = current_app.config
    limit = clamp_limit(
        limit,
        default=config.get("RECONCILIATION_DEFAULT_LIMIT"),
        maximum=config.get("RECONCILIATION_MAX_LIMIT"),
    )

    entitlements = (
        SubscriptionEntitlement.query
        .order_by(SubscriptionEntitlement.updated_at.desc())
        .limit(limit)
        .all()
    )

    provider_available = stripe_service.stripe_available()
    snapshots = {}
    if provider_available and entitlements:
        keys_by_id = {
            e.id: stripe_service.ProviderKeys.from_entitlement(e)
            for e in entitlements
        }
        snapshots = _fetch_snapshots(
            keys_by_id,
            plan_prices_from_config(config),
            config.get("RECONCILIATION_MAX_WORKERS", 8),
        )

    records = [present_record(e, snapshots.get(e.id)) for e in entitlements]

    mismatched = sum(1 for record in records if not record["inSync"])
    return {
        "providerAvailable": provider_available,
        "generatedAt": utcnow().isoformat(),
        "summary": {
            "total": len(records),
            "inSync": len(records) - mismatched,
            "mismatched": mismatched,
        },
        "records": records,
    }
