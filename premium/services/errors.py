"""Entitlement error taxonomy.

Each error carries the HTTP status the blueprints answer with. Stripe
lookup misses are not errors (they become a mismatch note), and transient
Stripe failures during reporting are caught per record, so neither
appears here.
"""


class EntitlementError(Exception):
    """Base class for client-facing entitlement errors."""

    status_code = 400
    default_message = "Entitlement request failed"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)

    @property
    def message(self):
        return str(self)


class IdentityRequiredError(EntitlementError):
    """The operation needs an identity the caller didn't supply."""

    default_message = "A user identity is required for this operation"


class MissingEntitlementIdError(EntitlementError):
    default_message = "entitlementId is required"


class UnsupportedActionError(EntitlementError):
    default_message = "Unsupported action"


class EntitlementNotFoundError(EntitlementError):
    status_code = 404
    default_message = "Entitlement not found"


class ProviderUnavailableError(EntitlementError):
    """Stripe client can't be constructed (missing configuration)."""

    status_code = 503
    default_message = "Stripe is not configured"
