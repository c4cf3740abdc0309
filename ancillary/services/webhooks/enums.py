"""Webhook event enums."""

from enum import Enum


class WebhookEvent(str, Enum):
    """Closed set of events a webhook subscription may listen to."""

    CANCELLATION_SUCCESS = "cancellation.success"
    CANCELLATION_FAILED = "cancellation.failed"
    CANCELLATION_ERROR = "cancellation.error"
    BULK_COMPLETED = "cancellation.bulk_completed"
    BULK_ERROR = "cancellation.bulk_error"
    ORDER_PARTNER_CANCELLED = "order.partner_cancelled"
    ORDER_FAILED = "order.failed"

    @classmethod
    def from_string(cls, value: str) -> "WebhookEvent":
        """Convert an event name to WebhookEvent.

        Raises:
            ValueError: If the event name is not supported
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid_values = ", ".join([e.value for e in cls])
            raise ValueError(
                f"Invalid webhook event: {value}. "
                f"Valid values are: {valid_values}"
            )

    @property
    def notifies_admin(self) -> bool:
        """Whether the event also triggers an admin email."""
        return "success" in self.value or "failed" in self.value
