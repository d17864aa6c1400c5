"""User model.

One table for both sides of the service: end users, whose id is the
user_external_id written on their entitlement at checkout, and operators
(is_admin) who run reconciliation. Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from premium.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255))
    is_admin = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # Reconciliation actions this operator ran
    audit_events = db.relationship(
        "AuditEvent", back_populates="actor", lazy="dynamic"
    )

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_api(self):
        """camelCase view returned by the auth endpoints."""
        return {
            "id": self.id,
            "email": self.email,
            "fullName": self.full_name,
            "isAdmin": bool(self.is_admin),
        }

    def __repr__(self):
        return f"<User {self.email}{' (admin)' if self.is_admin else ''}>"
