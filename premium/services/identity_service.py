"""Identity service: locate the one entitlement row a set of hints refers to.

Lookup priority lives in LOOKUP_ORDER. Stripe identifiers come first (one
subscription belongs to one customer belongs to at most one local row),
then the owning application's user id, then email, which is not unique
and can be reused over time.
"""

import logging

from premium.extensions import db
from premium.models.entitlement import SubscriptionEntitlement

logger = logging.getLogger(__name__)


def normalize_email(value):
    """Trim + lower-case; empty after trimming counts as absent."""
    if not isinstance(value, str):
        return None
    value = value.strip().lower()
    return value or None


def normalize_id(value):
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


class IdentityHints:
    """Optional identity keys usable to find an entitlement."""

    __slots__ = (
        "user_external_id",
        "user_email",
        "stripe_customer_id",
        "stripe_subscription_id",
    )

    def __init__(self, user_external_id=None, user_email=None,
                 stripe_customer_id=None, stripe_subscription_id=None):
        self.user_external_id = normalize_id(user_external_id)
        self.user_email = normalize_email(user_email)
        self.stripe_customer_id = normalize_id(stripe_customer_id)
        self.stripe_subscription_id = normalize_id(stripe_subscription_id)

    def merged_with(self, stripe_customer_id=None, stripe_subscription_id=None):
        """Copy with the Stripe ids filled in where given."""
        return IdentityHints(
            user_external_id=self.user_external_id,
            user_email=self.user_email,
            stripe_customer_id=stripe_customer_id or self.stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id or self.stripe_subscription_id,
        )

    def is_empty(self):
        return not any(getattr(self, name) for name in self.__slots__)

    def __repr__(self):
        present = {n: getattr(self, n) for n in self.__slots__ if getattr(self, n)}
        return f"<IdentityHints {present}>"


# ──────────────────────────────────────────────
# Lookup strategies
# ──────────────────────────────────────────────

def _query(for_update):
    query = SubscriptionEntitlement.query
    if for_update:
        query = query.with_for_update()
    return query


def _by_subscription_id(value, for_update=False):
    return _query(for_update).filter_by(stripe_subscription_id=value).first()


def _by_customer_id(value, for_update=False):
    return _query(for_update).filter_by(stripe_customer_id=value).first()


def _by_external_id(value, for_update=False):
    return _query(for_update).filter_by(user_external_id=value).first()


def _by_email(value, for_update=False):
    return (
        _query(for_update)
        .filter_by(user_email=value)
        .order_by(SubscriptionEntitlement.updated_at.desc())
        .first()
    )


# First match wins.
LOOKUP_ORDER = (
    ("stripe_subscription_id", _by_subscription_id),
    ("stripe_customer_id", _by_customer_id),
    ("user_external_id", _by_external_id),
    ("user_email", _by_email),
)


def resolve_entitlement(hints, for_update=False):
    """Return the entitlement the hints point at, or None.

    for_update=True takes a row lock where the backend supports it; the
    sync engine uses it so its check-then-write happens under the lock.
    """
    for attr, lookup in LOOKUP_ORDER:
        value = getattr(hints, attr)
        if not value:
            continue
        entitlement = lookup(value, for_update=for_update)
        if entitlement is not None:
            logger.debug(f"Resolved entitlement {entitlement.id} by {attr}")
            return entitlement
    return None


def get_entitlement(entitlement_id):
    """Fetch by primary key."""
    return db.session.get(SubscriptionEntitlement, entitlement_id)
