"""
Webhook subscription data access.

Subscriptions are soft-deactivated and never deleted.
"""

from typing import Optional, Protocol

from ancillary.core.logging import get_logger
from ancillary.schemas.webhooks import WebhookSubscription
from ancillary.services.webhooks.enums import WebhookEvent

logger = get_logger(__name__)


class WebhookStore(Protocol):
    """Webhook subscription persistence."""

    async def create(self, subscription: WebhookSubscription) -> WebhookSubscription: ...

    async def find_by_id(self, webhook_id: str) -> Optional[WebhookSubscription]: ...

    async def find_active_by_event(
        self, event: WebhookEvent
    ) -> list[WebhookSubscription]: ...

    async def list_all(self) -> list[WebhookSubscription]: ...

    async def set_active(
        self, webhook_id: str, is_active: bool
    ) -> Optional[WebhookSubscription]: ...


class InMemoryWebhookStore:
    """In-memory subscription registry keeping registration order."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, WebhookSubscription] = {}

    async def create(self, subscription: WebhookSubscription) -> WebhookSubscription:
        self._subscriptions[subscription.id] = subscription.model_copy(deep=True)
        logger.info(
            "Webhook subscription stored",
            webhook_id=subscription.id,
            events=[event.value for event in subscription.events],
        )
        return subscription.model_copy(deep=True)

    async def find_by_id(self, webhook_id: str) -> Optional[WebhookSubscription]:
        subscription = self._subscriptions.get(webhook_id)
        return subscription.model_copy(deep=True) if subscription else None

    async def find_active_by_event(
        self, event: WebhookEvent
    ) -> list[WebhookSubscription]:
        return [
            subscription.model_copy(deep=True)
            for subscription in self._subscriptions.values()
            if subscription.listens_to(event)
        ]

    async def list_all(self) -> list[WebhookSubscription]:
        return [
            subscription.model_copy(deep=True)
            for subscription in self._subscriptions.values()
        ]

    async def set_active(
        self, webhook_id: str, is_active: bool
    ) -> Optional[WebhookSubscription]:
        """Toggle a subscription, returning None when it does not exist."""
        subscription = self._subscriptions.get(webhook_id)
        if subscription is None:
            return None
        subscription.is_active = is_active
        return subscription.model_copy(deep=True)
