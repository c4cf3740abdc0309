"""
Notification service for cancellation emails.

Sends the customer confirmation for a single cancellation, the consolidated
confirmation for a bulk cancellation, and the administrative summary used as
a fallback alongside webhooks. Bodies are rendered from the
Jinja2 templates in ``ancillary/templates/notifications``; SES calls run in a
worker thread so the event loop is never blocked by boto3.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

from ancillary.core.config import Settings, get_settings
from ancillary.core.logging import get_logger
from ancillary.services.notifications.aws_clients import (
    SESClient,
    SESClientError,
    get_ses_client,
)
from ancillary.services.notifications.templates import (
    TemplateEngine,
    TemplateEngineError,
    get_template_engine,
)

logger = get_logger(__name__)


class NotificationServiceError(Exception):
    """Base exception for notification service errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class NotificationDeliveryError(NotificationServiceError):
    """Exception for notification delivery failures."""

    pass


class NotificationService:
    """
    Email notifications for cancellation outcomes.

    Every method raises NotificationDeliveryError when the email could not
    be sent. Callers treat notifications as best effort and log the failure.
    """

    def __init__(
        self,
        ses_client: Optional[SESClient] = None,
        settings: Optional[Settings] = None,
        template_engine: Optional[TemplateEngine] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.ses_client = ses_client or get_ses_client(settings=self.settings)
        self.template_engine = template_engine or get_template_engine()


    async def send_cancellation_confirmation(
        self,
        email: str,
        name: str,
        details: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Send the customer confirmation for one cancellation.

        Args:
            email: Customer email address
            name: Customer display name
            details: Cancellation details (cancellation_id, refund_amount,
                cancellation_fee, currency, product_title, message, success)

        Returns:
            SES delivery result

        Raises:
            NotificationDeliveryError: If rendering or sending failed
        """
        context = {
            "name": name,
            "outcome": "approved" if details.get("success", True) else "denied",
            "cancellation_id": details.get("cancellation_id"),
            "product_title": details.get("product_title"),
            "refund_amount": details.get("refund_amount") or 0,
            "cancellation_fee": details.get("cancellation_fee") or 0,
            "currency": details.get("currency"),
            "message": details.get("message"),
        }
        return await self._send(
            email,
            "cancellation_confirmation",
            context,
            cancellation_id=details.get("cancellation_id"),
        )

    async def send_bulk_cancellation_confirmation(
        self,
        email: str,
        name: str,
        summary: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Send one consolidated confirmation for a bulk cancellation.

        Args:
            email: Customer email address
            name: Customer display name
            summary: ``order_pnr``, ``items`` (product_title, cancellation_id,
                refund_amount, currency, message), ``total_refund`` and the
                shared ``currency`` of the items, if any

        Returns:
            SES delivery result

        Raises:
            NotificationDeliveryError: If rendering or sending failed
        """
        items = summary.get("items", [])
        pnr = summary.get("order_pnr", "")
        context = {
            "name": name,
            "order_pnr": pnr,
            "items": items,
            "total_refund": summary.get("total_refund"),
            "currency": summary.get("currency"),
        }
        return await self._send(
            email,
            "bulk_cancellation_confirmation",
            context,
            order_pnr=pnr,
            item_count=len(items),
        )

    async def send_admin_notification(
        self,
        email: Optional[str],
        details: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Send an administrative cancellation summary.

        Args:
            email: Admin address (defaults to the configured admin email)
            details: Event details (event, status, cancellation_id,
                order_id, product_id, refund_amount, message)

        Returns:
            SES delivery result

        Raises:
            NotificationDeliveryError: If rendering or sending failed
        """
        context = {
            **details,
            "status": str(details.get("status") or details.get("event") or "update"),
            "reference": details.get("cancellation_id") or details.get("order_id"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return await self._send(
            email or self.settings.admin_email,
            "admin_notification",
            context,
            webhook_event=details.get("event"),
        )

    async def _send(
        self,
        email: str,
        notification: str,
        template_context: dict[str, Any],
        **context: Any,
    ) -> dict[str, Any]:
        try:
            rendered = self.template_engine.render_email(notification, template_context)
            result = await asyncio.to_thread(
                self.ses_client.send_email,
                to_addresses=[email],
                subject=rendered["subject"],
                body_text=rendered["text_body"],
            )
        except (TemplateEngineError, SESClientError) as e:
            logger.error(
                "Notification delivery failed",
                notification=notification,
                recipient=email,
                error=str(e),
                **context,
            )
            raise NotificationDeliveryError(
                f"Failed to send {notification}",
                recipient=email,
                **context,
            ) from e

        logger.info(
            "Notification sent",
            notification=notification,
            recipient=email,
            message_id=result.get("message_id"),
            **context,
        )
        return result
