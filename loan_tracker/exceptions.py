"""
Exception hierarchy for the loan tracker.

Every error is recoverable at the call site; none of them is fatal to the
process.
"""


class LoanTrackerError(Exception):
    """Base exception for all loan tracker errors."""


class InvalidTermsError(LoanTrackerError):
    """Raised when loan terms are out of range at creation."""


class InvalidPaymentError(LoanTrackerError):
    """Raised when a payment cannot be applied to a loan."""


class InvalidCorrectionError(LoanTrackerError):
    """Raised when a manual override falls outside the loan's range."""


class NotFoundError(LoanTrackerError):
    """Raised when a referenced loan or party does not exist."""


class AuthorizationError(LoanTrackerError):
    """Raised when the caller's role or ownership does not allow the action."""


class LoanNotDeletableError(LoanTrackerError):
    """Raised when deleting a loan that is not completed."""


class NotificationDeliveryError(LoanTrackerError):
    """Raised when a gateway fails or times out. Retried on the next scan."""


class NotificationTimeoutError(NotificationDeliveryError):
    """Raised when a gateway does not answer in time. The message may still go out."""
