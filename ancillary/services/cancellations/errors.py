"""
Cancellation error taxonomy.

Every error carries a ``status_code`` (HTTP equivalent used by the outer
layer) and a ``retryable`` flag so callers can tell caller errors and
business rejections from transient vendor unavailability.
"""

from typing import Any, Optional

from ancillary.services.cancellations.enums import IneligibilityReason


class CancellationError(Exception):
    """Base exception for cancellation errors."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class CancellationNotAllowedError(CancellationError):
    """Raised when a business rule makes the product ineligible."""

    status_code = 422

    def __init__(
        self,
        message: str,
        reason_code: Optional[IneligibilityReason] = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.reason_code = reason_code


class AlreadyCancelledError(CancellationNotAllowedError):
    """Raised when the product is already cancelled."""

    status_code = 409


class AlreadyConsumedError(CancellationNotAllowedError):
    """Raised when the provider sub-status shows the product was consumed."""

    pass


class WindowExpiredError(CancellationNotAllowedError):
    """Raised when no refundable cancellation window applies."""

    pass


class WrongProviderError(CancellationError):
    """Raised when a command is run against another provider's product."""

    status_code = 400


class UnsupportedProviderError(CancellationError):
    """Raised when no cancellation command exists for a provider tag."""

    status_code = 400


class VendorUnavailableError(CancellationError):
    """Raised when the provider could not process the cancellation."""

    status_code = 503
    retryable = True

    def __init__(self, message: str, retry_after: Optional[int] = None, **context: Any):
        super().__init__(message, **context)
        self.retry_after = retry_after


class ServiceUnavailableError(CancellationError):
    """Surfaced to callers when a cancellation should be retried later."""

    status_code = 503
    retryable = True

    def __init__(self, message: str, retry_after: Optional[int] = None, **context: Any):
        super().__init__(message, **context)
        self.retry_after = retry_after


INELIGIBILITY_ERRORS: dict[IneligibilityReason, type[CancellationNotAllowedError]] = {
    IneligibilityReason.ALREADY_CANCELLED: AlreadyCancelledError,
    IneligibilityReason.ALREADY_CONSUMED: AlreadyConsumedError,
    IneligibilityReason.WINDOW_EXPIRED: WindowExpiredError,
}


def ineligibility_error(
    message: str,
    reason_code: IneligibilityReason,
    **context: Any,
) -> CancellationNotAllowedError:
    """Build the error matching an ineligibility reason."""
    error_cls = INELIGIBILITY_ERRORS.get(reason_code, CancellationNotAllowedError)
    return error_cls(message, reason_code=reason_code, **context)
