"""
Webhook delivery transport.

The dispatcher hands every signed payload to a WebhookTransport. The
simulated transport stands in for an HTTP POST: it waits a configurable
latency and fails a configurable share of deliveries.
"""

import asyncio
import random
from typing import Any, Optional, Protocol

from ancillary.core.config import Settings, get_settings
from ancillary.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


class WebhookServiceError(Exception):
    """Base exception for webhook errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class WebhookValidationError(WebhookServiceError):
    """Raised for an invalid subscription URL or event name."""

    pass


class WebhookDeliveryError(WebhookServiceError):
    """Raised when a payload could not be delivered to a subscriber."""

    pass


class WebhookTransport(Protocol):
    """Delivers a serialized, signed payload to a subscriber URL."""

    async def deliver(
        self, url: str, payload: str, headers: dict[str, str]
    ) -> int: ...


class SimulatedWebhookTransport:
    """Transport that simulates delivery latency and random failures."""

    def __init__(
        self,
        latency_seconds: Optional[float] = None,
        failure_rate: Optional[float] = None,
        rng: Optional[random.Random] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.latency_seconds = (
            settings.webhook_latency_seconds
            if latency_seconds is None
            else latency_seconds
        )
        self.failure_rate = (
            settings.webhook_failure_rate if failure_rate is None else failure_rate
        )
        self.rng = rng or random.Random()

    async def deliver(self, url: str, payload: str, headers: dict[str, str]) -> int:
        """
        Simulate an HTTP POST of the payload.

        Returns:
            HTTP status code of the simulated response

        Raises:
            WebhookDeliveryError: If the simulated delivery fails
        """
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        if self.rng.random() < self.failure_rate:
            raise WebhookDeliveryError(
                "Webhook delivery failed",
                url=url,
                status_code=503,
            )

        logger.debug("Webhook delivered", url=url, payload_bytes=len(payload))
        return 200
