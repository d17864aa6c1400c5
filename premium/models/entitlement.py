"""Subscription entitlement model.

One row per user-billing relationship: the locally cached answer to "does
this user have paid access", kept in step with Stripe by the sync engine
and the reconciliation actions. Rows are never hard-deleted; a manual
reset zeroes the Stripe linkage and keeps history in metadata.
"""

import enum
import uuid
from typing import TypedDict

from premium.extensions import db


class SubscriptionPlan(str, enum.Enum):
    FREE = "FREE"
    PREMIUM_MONTHLY = "PREMIUM_MONTHLY"
    PREMIUM_YEARLY = "PREMIUM_YEARLY"
    CUSTOM = "CUSTOM"


class SubscriptionStatus(str, enum.Enum):
    NONE = "NONE"
    INCOMPLETE = "INCOMPLETE"
    INCOMPLETE_EXPIRED = "INCOMPLETE_EXPIRED"
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    UNPAID = "UNPAID"
    PAUSED = "PAUSED"


class EntitlementMetadata(TypedDict, total=False):
    """Known keys of the audit metadata bag.

    Writers may add other keys; merges are a shallow union and never drop
    keys they don't know about.
    """

    lastProviderEventId: str
    lastProviderEventCreatedAt: str
    lastProviderSyncAt: str
    lastCheckoutSessionId: str
    lastManualResetBy: str
    lastManualResetAt: str
    checkoutMode: str
    checkoutStatus: str
    checkoutPaymentStatus: str
    lastCheckoutCreatedAt: str


class SubscriptionEntitlement(db.Model):
    __tablename__ = "subscription_entitlements"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_external_id = db.Column(db.String(255), unique=True, nullable=True)
    user_email = db.Column(db.String(255), index=True, nullable=True)  # lower-cased, not unique

    plan = db.Column(
        db.Enum(SubscriptionPlan, name="subscription_plan", native_enum=False, length=32),
        nullable=False,
        default=SubscriptionPlan.FREE,
    )
    status = db.Column(
        db.Enum(SubscriptionStatus, name="subscription_status", native_enum=False, length=32),
        nullable=False,
        default=SubscriptionStatus.NONE,
    )

    # --- Stripe linkage ---
    stripe_customer_id = db.Column(db.String(255), unique=True, nullable=True)
    stripe_subscription_id = db.Column(db.String(255), unique=True, nullable=True)
    stripe_price_id = db.Column(db.String(255), nullable=True)
    stripe_product_id = db.Column(db.String(255), nullable=True)
    latest_invoice_id = db.Column(db.String(255), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    checkout_session_id = db.Column(db.String(255), nullable=True)

    # --- Reconciliation bookkeeping ---
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    mismatch_reason = db.Column(db.Text, nullable=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # EntitlementMetadata, named metadata_ to avoid the declarative clash

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
        index=True,
    )

    # --- Relationships ---
    audit_events = db.relationship(
        "AuditEvent", back_populates="entitlement", lazy="dynamic"
    )

    def __repr__(self):
        return f"<SubscriptionEntitlement {self.id} {self.plan} ({self.status})>"
