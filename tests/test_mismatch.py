"""Tests for the mismatch detector.

Covers:
- In-sync snapshot -> no reasons
- Each field-level mismatch and their order
- 60 second date tolerance (59s aligned, 61s not)
- No-snapshot branch for paid / free / linked rows
- Symmetry: a snapshot-derived local copy is always in sync
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from premium.models.entitlement import SubscriptionPlan, SubscriptionStatus
from premium.services.mismatch_service import (
    NO_PROVIDER_SUBSCRIPTION,
    PAID_WITHOUT_PROVIDER,
    compute_mismatch_reasons,
    dates_aligned,
)
from premium.services.snapshot_service import EntitlementSnapshot

START = datetime(2030, 1, 1, tzinfo=timezone.utc)
END = datetime(2030, 2, 1, tzinfo=timezone.utc)


def _snapshot(**overrides):
    fields = dict(
        stripe_subscription_id="sub_1",
        stripe_customer_id="cus_1",
        stripe_price_id="price_monthly_test",
        stripe_product_id="prod_1",
        latest_invoice_id="in_1",
        plan=SubscriptionPlan.PREMIUM_MONTHLY,
        status=SubscriptionStatus.ACTIVE,
        cancel_at_period_end=False,
        current_period_start=START,
        current_period_end=END,
        trial_ends_at=None,
    )
    fields.update(overrides)
    return EntitlementSnapshot(**fields)


def _local_from(snapshot, **overrides):
    """A local row that carries exactly what the snapshot says."""
    fields = dict(
        plan=snapshot.plan,
        status=snapshot.status,
        stripe_subscription_id=snapshot.stripe_subscription_id,
        stripe_price_id=snapshot.stripe_price_id,
        cancel_at_period_end=snapshot.cancel_at_period_end,
        current_period_start=snapshot.current_period_start,
        current_period_end=snapshot.current_period_end,
        latest_invoice_id=snapshot.latest_invoice_id,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestDatesAligned:

    def test_both_none(self):
        assert dates_aligned(None, None) is True

    def test_one_none(self):
        assert dates_aligned(START, None) is False
        assert dates_aligned(None, START) is False

    def test_within_tolerance(self):
        assert dates_aligned(START, START + timedelta(seconds=59)) is True
        assert dates_aligned(START + timedelta(seconds=59), START) is True

    def test_outside_tolerance(self):
        assert dates_aligned(START, START + timedelta(seconds=61)) is False

    def test_naive_values_treated_as_utc(self):
        assert dates_aligned(START.replace(tzinfo=None), START) is True


class TestWithSnapshot:

    def test_in_sync(self):
        snapshot = _snapshot()
        assert compute_mismatch_reasons(_local_from(snapshot), snapshot) == []

    def test_local_copy_of_any_snapshot_is_in_sync(self):
        for snapshot in (
            _snapshot(),
            _snapshot(plan=SubscriptionPlan.CUSTOM, stripe_price_id=None, latest_invoice_id=None),
            _snapshot(status=SubscriptionStatus.CANCELED, cancel_at_period_end=True,
                      current_period_start=None, current_period_end=None),
        ):
            assert compute_mismatch_reasons(_local_from(snapshot), snapshot) == []

    def test_plan_and_status_reasons_name_both_sides(self):
        snapshot = _snapshot()
        local = _local_from(
            snapshot,
            plan=SubscriptionPlan.FREE,
            status=SubscriptionStatus.NONE,
        )
        assert compute_mismatch_reasons(local, snapshot) == [
            "plan mismatch (local FREE, provider PREMIUM_MONTHLY)",
            "status mismatch (local NONE, provider ACTIVE)",
        ]

    def test_all_reasons_in_order(self):
        snapshot = _snapshot()
        local = _local_from(
            snapshot,
            plan=SubscriptionPlan.PREMIUM_YEARLY,
            status=SubscriptionStatus.PAST_DUE,
            stripe_price_id="price_yearly_test",
            cancel_at_period_end=True,
            current_period_start=START - timedelta(days=1),
            current_period_end=None,
            latest_invoice_id="in_other",
        )
        assert compute_mismatch_reasons(local, snapshot) == [
            "plan mismatch (local PREMIUM_YEARLY, provider PREMIUM_MONTHLY)",
            "status mismatch (local PAST_DUE, provider ACTIVE)",
            "price id mismatch",
            "cancel-at-period-end flag mismatch",
            "current period start mismatch",
            "current period end mismatch",
            "latest invoice mismatch",
        ]

    def test_period_end_tolerance(self):
        snapshot = _snapshot()
        close = _local_from(snapshot, current_period_end=END + timedelta(seconds=59))
        far = _local_from(snapshot, current_period_end=END + timedelta(seconds=61))
        assert compute_mismatch_reasons(close, snapshot) == []
        assert compute_mismatch_reasons(far, snapshot) == ["current period end mismatch"]

    def test_subscription_id_difference_alone_is_not_reported(self):
        snapshot = _snapshot()
        local = _local_from(snapshot, stripe_subscription_id="sub_other")
        assert compute_mismatch_reasons(local, replace(snapshot)) == []


class TestWithoutSnapshot:

    def test_free_unlinked_row_is_in_sync(self):
        local = SimpleNamespace(
            plan=SubscriptionPlan.FREE,
            status=SubscriptionStatus.NONE,
            stripe_subscription_id=None,
        )
        assert compute_mismatch_reasons(local, None) == []

    def test_paid_linked_row_gets_both_reasons(self):
        local = SimpleNamespace(
            plan=SubscriptionPlan.PREMIUM_MONTHLY,
            status=SubscriptionStatus.ACTIVE,
            stripe_subscription_id="sub_gone",
        )
        assert compute_mismatch_reasons(local, None) == [
            NO_PROVIDER_SUBSCRIPTION,
            PAID_WITHOUT_PROVIDER,
        ]

    def test_free_row_with_stale_subscription_id(self):
        local = SimpleNamespace(
            plan=SubscriptionPlan.FREE,
            status=SubscriptionStatus.NONE,
            stripe_subscription_id="sub_gone",
        )
        assert compute_mismatch_reasons(local, None) == [NO_PROVIDER_SUBSCRIPTION]

    def test_free_plan_with_non_none_status(self):
        local = SimpleNamespace(
            plan=SubscriptionPlan.FREE,
            status=SubscriptionStatus.CANCELED,
            stripe_subscription_id=None,
        )
        assert compute_mismatch_reasons(local, None) == [PAID_WITHOUT_PROVIDER]
