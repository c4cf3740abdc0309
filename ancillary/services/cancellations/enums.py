"""Cancellation lifecycle and outcome enums."""

from enum import Enum


class CancellationStatus(str, Enum):
    """Cancellation record lifecycle status.

    Valid transitions:
    - PENDING -> SUCCESS, FAILED, DENIED
    - SUCCESS, FAILED, DENIED -> (terminal states)
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    DENIED = "denied"

    def is_terminal(self) -> bool:
        return self != CancellationStatus.PENDING


class ResultKind(str, Enum):
    """Tag of a cancellation command result."""

    SUCCESS = "success"
    FAILURE = "failure"


class IneligibilityReason(str, Enum):
    """Why a product cannot be cancelled."""

    ALREADY_CANCELLED = "already_cancelled"
    BOOKING_FAILED = "booking_failed"
    BOOKING_DENIED = "booking_denied"
    NOT_CANCELLABLE = "not_cancellable"
    ALREADY_CONSUMED = "already_consumed"
    WINDOW_EXPIRED = "window_expired"


class AuditOutcome(str, Enum):
    """Outcome recorded for an invoked command."""

    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
