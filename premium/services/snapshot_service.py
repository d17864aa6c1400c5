"""Snapshot service: Stripe subscription object -> EntitlementSnapshot.

Pure mapping, no I/O. Accepts plain dicts (webhook payloads, tests) and
stripe.StripeObject instances alike, and never raises on a syntactically
valid subscription: anything unexpected degrades to None / CUSTOM / NONE.
"""

import math
from collections import namedtuple
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from premium.models.entitlement import SubscriptionPlan, SubscriptionStatus

PlanPrices = namedtuple("PlanPrices", ["monthly", "yearly"])

# Stripe's free-text subscription status -> local enum. Anything not listed
# falls back to NONE.
STATUS_MAP = {
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE_EXPIRED,
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
    "paused": SubscriptionStatus.PAUSED,
}


@dataclass(frozen=True)
class EntitlementSnapshot:
    """Normalized view of one Stripe subscription. Never persisted as-is."""

    stripe_subscription_id: str
    stripe_customer_id: Optional[str]
    stripe_price_id: Optional[str]
    stripe_product_id: Optional[str]
    latest_invoice_id: Optional[str]
    plan: SubscriptionPlan
    status: SubscriptionStatus
    cancel_at_period_end: bool
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    trial_ends_at: Optional[datetime]


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────

def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Return a tz-aware UTC datetime. SQLite hands back naive values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value):
    value = as_utc(value)
    return value.isoformat() if value else None


def from_unix(value):
    """Unix seconds -> UTC datetime; None for anything non-positive or non-finite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def field(obj, key):
    """Read `key` from a dict or StripeObject, None when absent."""
    if obj is None:
        return None
    try:
        return obj.get(key)
    except AttributeError:
        return getattr(obj, key, None)


def stripe_id(value):
    """Accept a bare id or an expanded object with an `id` field."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if value is None:
        return None
    candidate = field(value, "id")
    if isinstance(candidate, str):
        candidate = candidate.strip()
        return candidate or None
    return None


def _first_item(subscription):
    items = field(subscription, "items")
    data = field(items, "data")
    if isinstance(data, (list, tuple)) and data:
        return data[0]
    return None


# ──────────────────────────────────────────────
# Plan & status mapping
# ──────────────────────────────────────────────

def map_subscription_status(stripe_status):
    """Map Stripe's status string to SubscriptionStatus, NONE when unknown."""
    if not isinstance(stripe_status, str):
        return SubscriptionStatus.NONE
    return STATUS_MAP.get(stripe_status.strip().lower(), SubscriptionStatus.NONE)


def plan_prices_from_config(app_config):
    """Read the two reference price ids from app config."""
    return PlanPrices(
        monthly=stripe_id(app_config.get("STRIPE_PRICE_ID_MONTHLY")),
        yearly=stripe_id(app_config.get("STRIPE_PRICE_ID_YEARLY")),
    )


def detect_plan(price_id, prices):
    """Map a Stripe price ID to a plan.

    Monthly / yearly reference ids map to their premium plans; any other
    price, or no price at all, is CUSTOM.
    """
    price_id = stripe_id(price_id)
    if not price_id:
        return SubscriptionPlan.CUSTOM
    if prices.monthly and price_id == prices.monthly:
        return SubscriptionPlan.PREMIUM_MONTHLY
    if prices.yearly and price_id == prices.yearly:
        return SubscriptionPlan.PREMIUM_YEARLY
    return SubscriptionPlan.CUSTOM


# ──────────────────────────────────────────────
# Snapshot
# ──────────────────────────────────────────────

def create_snapshot(subscription, prices):
    """Build an EntitlementSnapshot from a Stripe subscription object.

    Price / product come from the first line item. Period bounds come from
    the first line item too; older API versions put them on the
    subscription itself, so that is the fallback.
    """
    item = _first_item(subscription)
    price = field(item, "price")
    price_id = stripe_id(price)

    period_start = field(item, "current_period_start")
    if period_start is None:
        period_start = field(subscription, "current_period_start")
    period_end = field(item, "current_period_end")
    if period_end is None:
        period_end = field(subscription, "current_period_end")

    return EntitlementSnapshot(
        stripe_subscription_id=stripe_id(field(subscription, "id")),
        stripe_customer_id=stripe_id(field(subscription, "customer")),
        stripe_price_id=price_id,
        stripe_product_id=stripe_id(field(price, "product")),
        latest_invoice_id=stripe_id(field(subscription, "latest_invoice")),
        plan=detect_plan(price_id, prices),
        status=map_subscription_status(field(subscription, "status")),
        cancel_at_period_end=bool(field(subscription, "cancel_at_period_end")),
        current_period_start=from_unix(period_start),
        current_period_end=from_unix(period_end),
        trial_ends_at=from_unix(field(subscription, "trial_end")),
    )
