"""Stripe event model (delivery log).

Every webhook event is recorded by its Stripe event ID. Before processing
any event, the handler checks this table. If the event_id already exists,
it returns 200 immediately so Stripe retries don't re-run the sync.

This only dedupes redeliveries of the same event. It does not order
distinct events for the same subscription.
"""

import uuid

from premium.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "customer.subscription.updated"
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.event_type})>"
