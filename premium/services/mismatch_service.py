"""Mismatch service: compare a local entitlement against a Stripe snapshot.

Pure and side-effect free so the report endpoint and the tests see the
exact same answer. An empty list means in sync.
"""

from datetime import timedelta

from premium.models.entitlement import SubscriptionPlan, SubscriptionStatus
from premium.services.snapshot_service import as_utc

# Absorbs clock / serialization skew between Stripe and the database.
DATE_TOLERANCE = timedelta(seconds=60)

NO_PROVIDER_SUBSCRIPTION = "provider subscription could not be found"
PAID_WITHOUT_PROVIDER = "local entitlement indicates paid access without a provider source"


def dates_aligned(left, right, tolerance=DATE_TOLERANCE):
    """Both None is aligned; exactly one None is not."""
    if left is None and right is None:
        return True
    if left is None or right is None:
        return False
    return abs(as_utc(left) - as_utc(right)) <= tolerance


def _label(value):
    return getattr(value, "value", value)


def compute_mismatch_reasons(local, snapshot):
    """Return the ordered list of human-readable mismatch reasons.

    `local` is anything with the entitlement's plan, status,
    stripe_subscription_id, stripe_price_id, cancel_at_period_end,
    current_period_start, current_period_end and latest_invoice_id.
    """
    reasons = []

    if snapshot is None:
        if local.stripe_subscription_id:
            reasons.append(NO_PROVIDER_SUBSCRIPTION)
        if local.plan != SubscriptionPlan.FREE or local.status != SubscriptionStatus.NONE:
            reasons.append(PAID_WITHOUT_PROVIDER)
        return reasons

    if local.plan != snapshot.plan:
        reasons.append(
            f"plan mismatch (local {_label(local.plan)}, provider {_label(snapshot.plan)})"
        )
    if local.status != snapshot.status:
        reasons.append(
            f"status mismatch (local {_label(local.status)}, provider {_label(snapshot.status)})"
        )
    if (local.stripe_price_id or None) != (snapshot.stripe_price_id or None):
        reasons.append("price id mismatch")
    if bool(local.cancel_at_period_end) != bool(snapshot.cancel_at_period_end):
        reasons.append("cancel-at-period-end flag mismatch")
    if not dates_aligned(local.current_period_start, snapshot.current_period_start):
        reasons.append("current period start mismatch")
    if not dates_aligned(local.current_period_end, snapshot.current_period_end):
        reasons.append("current period end mismatch")
    if (local.latest_invoice_id or None) != (snapshot.latest_invoice_id or None):
        reasons.append("latest invoice mismatch")

    return reasons
