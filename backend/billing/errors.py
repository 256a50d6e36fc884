# Overview: Domain error taxonomy for the billing core.

"""
Billing error taxonomy.

Every error raised by a core operation derives from BillingError and is
raised before anything is committed, so a rejected mutation never leaves a
partial effect behind. Routes translate these into JSON using status_code.
"""


class BillingError(Exception):
    """Base class for billing/ledger errors."""

    status_code = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": self.code,
            "retryable": self.retryable,
            "details": self.details,
        }


class InvalidLineItem(BillingError):
    """Negative/zero quantity, negative price or rate, or no lines at all."""


class InvalidDiscount(BillingError):
    """Discount is negative or larger than the subtotal."""


class InvalidMovement(BillingError):
    """Inventory movement with a zero quantity or a sign that contradicts its type."""


class InvalidPayment(BillingError):
    """Non-positive amount, unknown method, or payment against a closed document."""


class Overpayment(BillingError):
    """Cumulative payments would exceed the total beyond the tolerance."""


class SplitMismatch(BillingError):
    """Split tender amounts do not add up to the order total."""


class InvalidTransition(BillingError):
    status_code = 409


class AlreadyFinalized(BillingError):
    """The order already reached a terminal state."""
    status_code = 409


class Contention(BillingError):
    """Lock wait timed out or a concurrent writer won; safe to retry."""
    status_code = 503
    retryable = True


class NotFound(BillingError):
    status_code = 404


class CorruptionDetected(BillingError):
    """Cached stock disagrees with the movement log. Needs manual reconciliation."""
    status_code = 500


class PermissionDenied(BillingError):
    """The caller's role may not perform this operation on the row as it stands."""
    status_code = 403
