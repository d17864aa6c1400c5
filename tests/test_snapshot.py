"""Tests for the Stripe subscription -> snapshot mapping.

Covers:
- Status mapping (known, unknown, casing, non-strings)
- Plan detection from the configured monthly / yearly prices
- Snapshot construction (expanded vs bare ids, period fallback, bad timestamps)
- from_unix edge cases
"""

import math
from datetime import datetime, timezone

import stripe

from premium.models.entitlement import SubscriptionPlan, SubscriptionStatus
from premium.services.snapshot_service import (
    PlanPrices,
    as_utc,
    create_snapshot,
    detect_plan,
    from_unix,
    map_subscription_status,
    plan_prices_from_config,
)

PRICES = PlanPrices(monthly="price_monthly_test", yearly="price_yearly_test")


class TestStatusMapping:

    def test_known_statuses(self):
        assert map_subscription_status("active") == SubscriptionStatus.ACTIVE
        assert map_subscription_status("trialing") == SubscriptionStatus.TRIALING
        assert map_subscription_status("past_due") == SubscriptionStatus.PAST_DUE
        assert map_subscription_status("incomplete_expired") == SubscriptionStatus.INCOMPLETE_EXPIRED
        assert map_subscription_status("paused") == SubscriptionStatus.PAUSED

    def test_case_and_whitespace_insensitive(self):
        assert map_subscription_status("  Canceled ") == SubscriptionStatus.CANCELED

    def test_unknown_maps_to_none(self):
        assert map_subscription_status("something_new") == SubscriptionStatus.NONE
        assert map_subscription_status("") == SubscriptionStatus.NONE
        assert map_subscription_status(None) == SubscriptionStatus.NONE
        assert map_subscription_status(42) == SubscriptionStatus.NONE


class TestPlanDetection:

    def test_monthly_and_yearly(self):
        assert detect_plan("price_monthly_test", PRICES) == SubscriptionPlan.PREMIUM_MONTHLY
        assert detect_plan("price_yearly_test", PRICES) == SubscriptionPlan.PREMIUM_YEARLY

    def test_unrecognized_or_missing_is_custom(self):
        assert detect_plan("price_other", PRICES) == SubscriptionPlan.CUSTOM
        assert detect_plan(None, PRICES) == SubscriptionPlan.CUSTOM
        assert detect_plan("   ", PRICES) == SubscriptionPlan.CUSTOM

    def test_blank_configured_price_never_matches(self):
        prices = PlanPrices(monthly=None, yearly="price_yearly_test")
        assert detect_plan("", prices) == SubscriptionPlan.CUSTOM
        assert detect_plan(None, prices) == SubscriptionPlan.CUSTOM

    def test_prices_from_config(self, app):
        prices = plan_prices_from_config(app.config)
        assert prices == PRICES

    def test_blank_config_values_are_none(self):
        prices = plan_prices_from_config({"STRIPE_PRICE_ID_MONTHLY": "  ", "STRIPE_PRICE_ID_YEARLY": None})
        assert prices == PlanPrices(monthly=None, yearly=None)


class TestCreateSnapshot:

    def test_maps_all_fields(self, make_subscription):
        sub = make_subscription(trial_end=1893000000, cancel_at_period_end=True)
        snapshot = create_snapshot(sub, PRICES)

        assert snapshot.stripe_subscription_id == "sub_member"
        assert snapshot.stripe_customer_id == "cus_member"
        assert snapshot.stripe_price_id == "price_monthly_test"
        assert snapshot.stripe_product_id == "prod_premium"
        assert snapshot.latest_invoice_id == "in_member"
        assert snapshot.plan == SubscriptionPlan.PREMIUM_MONTHLY
        assert snapshot.status == SubscriptionStatus.ACTIVE
        assert snapshot.cancel_at_period_end is True
        assert snapshot.current_period_start == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert snapshot.current_period_end == datetime(2030, 2, 1, tzinfo=timezone.utc)
        assert snapshot.trial_ends_at == datetime.fromtimestamp(1893000000, tz=timezone.utc)

    def test_expanded_customer_and_invoice_objects(self, make_subscription):
        sub = make_subscription(
            customer={"id": "cus_expanded", "email": "x@example.com"},
            latest_invoice={"id": "in_expanded", "status": "paid"},
        )
        snapshot = create_snapshot(sub, PRICES)
        assert snapshot.stripe_customer_id == "cus_expanded"
        assert snapshot.latest_invoice_id == "in_expanded"

    def test_unexpanded_price_id_string(self, make_subscription):
        sub = make_subscription()
        sub["items"]["data"][0]["price"] = "price_yearly_test"
        snapshot = create_snapshot(sub, PRICES)
        assert snapshot.stripe_price_id == "price_yearly_test"
        assert snapshot.stripe_product_id is None
        assert snapshot.plan == SubscriptionPlan.PREMIUM_YEARLY

    def test_no_items_is_custom_with_no_price(self, make_subscription):
        sub = make_subscription(items={"data": []})
        snapshot = create_snapshot(sub, PRICES)
        assert snapshot.stripe_price_id is None
        assert snapshot.plan == SubscriptionPlan.CUSTOM
        assert snapshot.current_period_end is None

    def test_period_falls_back_to_subscription_level(self, make_subscription):
        sub = make_subscription(
            current_period_start=1893456000,
            current_period_end=1896134400,
        )
        del sub["items"]["data"][0]["current_period_start"]
        del sub["items"]["data"][0]["current_period_end"]
        snapshot = create_snapshot(sub, PRICES)
        assert snapshot.current_period_start == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert snapshot.current_period_end == datetime(2030, 2, 1, tzinfo=timezone.utc)

    def test_bad_timestamps_become_none(self, make_subscription):
        sub = make_subscription(period_start=0, period_end="soon", trial_end=-5)
        snapshot = create_snapshot(sub, PRICES)
        assert snapshot.current_period_start is None
        assert snapshot.current_period_end is None
        assert snapshot.trial_ends_at is None

    def test_accepts_stripe_objects(self, make_subscription):
        sub = stripe.StripeObject.construct_from(make_subscription(), "sk_test_fake")
        snapshot = create_snapshot(sub, PRICES)
        assert snapshot.stripe_subscription_id == "sub_member"
        assert snapshot.plan == SubscriptionPlan.PREMIUM_MONTHLY


class TestTimeHelpers:

    def test_from_unix_rejects_non_numbers(self):
        assert from_unix(None) is None
        assert from_unix("1893456000") is None
        assert from_unix(True) is None

    def test_from_unix_rejects_non_positive_and_non_finite(self):
        assert from_unix(0) is None
        assert from_unix(-1) is None
        assert from_unix(math.inf) is None
        assert from_unix(math.nan) is None

    def test_from_unix_out_of_range(self):
        assert from_unix(10 ** 20) is None

    def test_as_utc_treats_naive_as_utc(self):
        naive = datetime(2030, 1, 1, 12, 0)
        assert as_utc(naive) == datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert as_utc(None) is None
