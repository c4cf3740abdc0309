"""
Webhook dispatcher and subscription management.

``trigger`` fans an event out to every active subscription listening to it.
Each delivery is signed with the subscription's secret (HMAC-SHA256, sent as
``sha256=<hex>``) and isolated from the others: a failing subscriber is
logged and reported in its DeliveryResult without affecting the rest.
Success and failure events also produce a best-effort admin email.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from ancillary.core.config import Settings, get_settings
from ancillary.core.logging import get_correlation_id, get_logger
from ancillary.core.security import generate_webhook_secret, sign_payload
from ancillary.core.security import verify_signature as verify_hmac_signature
from ancillary.schemas.webhooks import (
    DeliveryResult,
    WebhookPayload,
    WebhookRegistration,
    WebhookSubscription,
)
from ancillary.services.notifications.service import (
    NotificationService,
    NotificationServiceError,
)
from ancillary.services.webhooks.enums import WebhookEvent
from ancillary.services.webhooks.repository import InMemoryWebhookStore, WebhookStore
from ancillary.services.webhooks.transport import (
    SIGNATURE_HEADER,
    SimulatedWebhookTransport,
    WebhookDeliveryError,
    WebhookTransport,
    WebhookValidationError,
)

logger = get_logger(__name__)


class WebhookService:
    """Registers webhook subscriptions and dispatches signed events to them."""

    def __init__(
        self,
        store: Optional[WebhookStore] = None,
        transport: Optional[WebhookTransport] = None,
        notification_service: Optional[NotificationService] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize webhook service.

        Args:
            store: Subscription store (in-memory if None)
            transport: Delivery transport (simulated if None)
            notification_service: Email channel for admin notifications;
                admin emails are skipped when None
            settings: Application settings
            clock: Source of payload timestamps
        """
        self.settings = settings or get_settings()
        self.store = store or InMemoryWebhookStore()
        self.transport = transport or SimulatedWebhookTransport(settings=self.settings)
        self.notification_service = notification_service
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def register_webhook(
        self,
        url: str,
        events: list[Union[str, WebhookEvent]],
        created_by: Optional[str] = None,
    ) -> WebhookSubscription:
        """
        Register a subscription with a freshly generated signing secret.

        Args:
            url: Subscriber URL (http or https)
            events: Event names to subscribe to
            created_by: Admin registering the subscription

        Returns:
            Stored subscription, including its secret

        Raises:
            WebhookValidationError: If the URL or any event name is invalid
        """
        try:
            registration = WebhookRegistration(url=url, events=events)
        except ValidationError as e:
            logger.warning("Webhook registration rejected", url=url, errors=e.errors())
            raise WebhookValidationError(
                "Invalid webhook registration",
                url=url,
                events=[str(event) for event in events],
            ) from e

        subscription = WebhookSubscription(
            url=registration.url,
            events=registration.events,
            secret=generate_webhook_secret(),
            created_by=created_by,
        )
        stored = await self.store.create(subscription)

        logger.info(
            "Webhook registered",
            webhook_id=stored.id,
            url=stored.url,
            events=[event.value for event in stored.events],
            created_by=created_by,
        )
        return stored

    async def list_webhooks(self) -> list[WebhookSubscription]:
        return await self.store.list_all()

    async def deactivate_webhook(self, webhook_id: str) -> bool:
        """Soft-disable a subscription. Returns False when it does not exist."""
        subscription = await self.store.set_active(webhook_id, False)
        if subscription is None:
            logger.warning("Webhook not found for deactivation", webhook_id=webhook_id)
            return False

        logger.info("Webhook deactivated", webhook_id=webhook_id)
        return True

    async def trigger(
        self,
        event: Union[str, WebhookEvent],
        data: dict[str, Any],
    ) -> list[DeliveryResult]:
        """
        Dispatch an event to its active subscriptions.

        Args:
            event: Event to dispatch
            data: Event data

        Returns:
            One DeliveryResult per subscription listening to the event
        """
        event = WebhookEvent.from_string(event) if isinstance(event, str) else event
        subscriptions = await self.store.find_active_by_event(event)

        results = list(
            await asyncio.gather(
                *(self._deliver(subscription, event, data) for subscription in subscriptions)
            )
        )

        logger.info(
            "Webhook event dispatched",
            webhook_event=event.value,
            subscribers=len(results),
            delivered=sum(1 for result in results if result.success),
        )

        if event.notifies_admin:
            await self._notify_admin(event, data)

        return results

    def verify_signature(
        self, payload: Union[str, bytes], signature: Optional[str], secret: str
    ) -> bool:
        """Check a ``sha256=<hex>`` signature against a payload."""
        return verify_hmac_signature(payload, signature, secret)

    async def _deliver(
        self,
        subscription: WebhookSubscription,
        event: WebhookEvent,
        data: dict[str, Any],
    ) -> DeliveryResult:
        payload = WebhookPayload(
            event=event,
            data=data,
            timestamp=self.clock(),
            webhook_id=subscription.id,
        ).serialize()
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(payload, subscription.secret),
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id

        try:
            status_code = await self.transport.deliver(subscription.url, payload, headers)
        except WebhookDeliveryError as e:
            logger.warning(
                "Webhook delivery failed",
                webhook_id=subscription.id,
                url=subscription.url,
                webhook_event=event.value,
                error=str(e),
            )
            return DeliveryResult(
                webhook_id=subscription.id,
                url=subscription.url,
                event=event,
                success=False,
                status_code=e.context.get("status_code"),
                error=str(e),
            )
        except Exception as e:
            logger.error(
                "Unexpected webhook delivery error",
                webhook_id=subscription.id,
                url=subscription.url,
                webhook_event=event.value,
                error=str(e),
                exc_info=True,
            )
            return DeliveryResult(
                webhook_id=subscription.id,
                url=subscription.url,
                event=event,
                success=False,
                error=str(e),
            )

        return DeliveryResult(
            webhook_id=subscription.id,
            url=subscription.url,
            event=event,
            success=True,
            status_code=status_code,
        )

    async def _notify_admin(self, event: WebhookEvent, data: dict[str, Any]) -> None:
        if self.notification_service is None:
            return

        try:
            await self.notification_service.send_admin_notification(
                self.settings.admin_email,
                {
                    "event": event.value,
                    "status": event.value,
                    "cancellation_id": data.get("cancellation_id"),
                    "order_id": data.get("order_id"),
                    "product_id": data.get("product_id"),
                    "refund_amount": data.get("refund_amount"),
                    "message": data.get("message"),
                },
            )
        except NotificationServiceError as e:
            logger.warning(
                "Admin notification failed",
                webhook_event=event.value,
                error=str(e),
            )
