# Models package: import all models here so Alembic can discover them.

from premium.models.user import User  # noqa: F401
from premium.models.entitlement import (  # noqa: F401
    SubscriptionEntitlement,
    SubscriptionPlan,
    SubscriptionStatus,
)
from premium.models.stripe_event import StripeEvent  # noqa: F401
from premium.models.audit import AuditEvent  # noqa: F401
