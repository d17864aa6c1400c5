"""Audit event model.

Logs every entitlement write (webhook sync, checkout upsert, operator
reconciliation action) with its actor, for the operator activity feed and
debugging drift after the fact.
"""

import uuid

from premium.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    entitlement_id = db.Column(
        db.String(36), db.ForeignKey("subscription_entitlements.id"), nullable=True,
        index=True,
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    action = db.Column(db.String(255), nullable=False)  # e.g. "reconciliation.reset_to_free"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid the declarative clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    entitlement = db.relationship("SubscriptionEntitlement", back_populates="audit_events")
    actor = db.relationship("User", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
