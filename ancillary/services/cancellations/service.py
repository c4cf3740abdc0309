"""
Cancellation orchestration for single and bulk requests.

This module implements the CancellationService class which resolves the
order the requester may touch, checks eligibility with the refund policy
evaluator, builds the provider command from the provider registry, runs it
through the command invoker, and fans the outcome out to the customer (email)
and to webhook subscribers. Bulk requests are processed sequentially with
failures isolated per item.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from ancillary.core.config import Settings, get_settings
from ancillary.core.logging import (
    get_correlation_id,
    get_logger,
    set_correlation_id,
    set_requester_id,
)
from ancillary.schemas.cancellations import (
    ZERO,
    BulkCancellationRequest,
    BulkCancellationResponse,
    BulkCancellationSummary,
    BulkItemResult,
    CancellationRequest,
    CancellationResponse,
    CancellationResult,
    ProviderBreakdown,
    RequestedBy,
)
from ancillary.schemas.orders import Order, Product, Requester
from ancillary.services.cancellations.commands import (
    AuditSink,
    CancellationCommandInvoker,
    InMemoryAuditTrail,
    ProviderCancellationCommand,
)
from ancillary.services.cancellations.errors import (
    CancellationNotAllowedError,
    ServiceUnavailableError,
    UnsupportedProviderError,
    VendorUnavailableError,
    ineligibility_error,
)
from ancillary.services.cancellations.policy import (
    evaluate_refund,
    user_facing_message,
)
from ancillary.services.cancellations.providers import (
    ProviderStrategy,
    build_default_strategies,
)
from ancillary.services.cancellations.repository import CancellationStore
from ancillary.services.notifications.service import (
    NotificationService,
    NotificationServiceError,
)
from ancillary.services.orders.enums import Provider
from ancillary.services.orders.repository import OrderStore, ProductNotFoundError
from ancillary.services.orders.service import find_scoped_order
from ancillary.services.webhooks.enums import WebhookEvent
from ancillary.services.webhooks.service import WebhookService

logger = get_logger(__name__)

UNKNOWN_PROVIDER = "unknown"


class CancellationService:
    """
    Cancellation orchestrator.

    Attributes:
        order_store: Order store for lookups and status writes
        cancellation_store: Store for cancellation records
        webhook_service: Dispatcher for cancellation events
        notification_service: Email channel for customer confirmations
        strategies: Provider registry used to build commands
        invoker: Command invoker auditing every execution
    """

    def __init__(
        self,
        order_store: OrderStore,
        cancellation_store: CancellationStore,
        webhook_service: WebhookService,
        notification_service: Optional[NotificationService] = None,
        strategies: Optional[dict[Provider, ProviderStrategy]] = None,
        audit_sink: Optional[AuditSink] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize cancellation service.

        Args:
            order_store: Order store
            cancellation_store: Cancellation record store
            webhook_service: Webhook dispatcher
            notification_service: Email channel (emails skipped when None)
            strategies: Provider registry (simulated vendors when None)
            audit_sink: Destination of command audit entries
            settings: Application settings
            clock: Time source shared with the commands
            sleep: Coroutine used for the delay between bulk items
        """
        self.settings = settings or get_settings()
        self.order_store = order_store
        self.cancellation_store = cancellation_store
        self.webhook_service = webhook_service
        self.notification_service = notification_service
        self.strategies = (
            strategies
            if strategies is not None
            else build_default_strategies(self.settings)
        )
        self.audit_sink = audit_sink or InMemoryAuditTrail()
        self.invoker = CancellationCommandInvoker(self.audit_sink)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    async def cancel_product(
        self,
        request: CancellationRequest,
        requester: Requester,
    ) -> CancellationResponse:
        """
        Cancel a single product.

        Args:
            request: Cancellation request
            requester: Authenticated caller

        Returns:
            Cancellation outcome; ``success`` is False when the vendor
            rejected the cancellation

        Raises:
            OrderNotFoundError: If the order is not visible to the requester
            ProductNotFoundError: If the product is not in the order
            CancellationNotAllowedError: If the product is ineligible
            UnsupportedProviderError: If no command exists for the provider
            ServiceUnavailableError: If the vendor was unavailable
        """
        self._bind_context(requester)

        order = await find_scoped_order(self.order_store, request.order, requester)
        product = order.get_product(request.product_id)
        if product is None:
            raise ProductNotFoundError(
                "Product not found",
                order_id=order.id,
                product_id=request.product_id,
            )

        self._check_eligibility(order, product)
        command = self._build_command(
            order, product, request.reason, request.request_source.value, requester
        )

        logger.info(
            "Processing cancellation",
            order_id=order.id,
            product_id=product.id,
            provider=product.provider,
            request_source=request.request_source.value,
        )

        try:
            result = await self.invoker.execute_command(command)
        except VendorUnavailableError as e:
            await self._emit_error(order, product, e, command.cancellation_id)
            raise ServiceUnavailableError(
                "Provider is temporarily unavailable, please retry later",
                retry_after=e.retry_after,
                order_id=order.id,
                product_id=product.id,
                cancellation_id=command.cancellation_id,
            ) from e
        except Exception as e:
            await self._emit_error(order, product, e, command.cancellation_id)
            raise

        if result.success:
            await self._send_confirmation(order, product, result)

        await self._emit(
            WebhookEvent.CANCELLATION_SUCCESS if result.success
            else WebhookEvent.CANCELLATION_FAILED,
            self._result_event_data(order, product, result, request.reason),
        )

        return CancellationResponse(
            success=result.success,
            cancellation_id=result.cancellation_id,
            refund_amount=result.refund_amount,
            cancellation_fee=result.cancellation_fee,
            message=result.message,
            processed_at=self.clock(),
        )

    async def cancel_products(
        self,
        request: BulkCancellationRequest,
        requester: Requester,
    ) -> BulkCancellationResponse:
        """
        Cancel several products of one order.

        Items are processed in request order with a fixed delay between them.
        A failing item is reported inline and never stops the others.

        Args:
            request: Bulk cancellation request
            requester: Authenticated caller

        Returns:
            Per-item results and totals; ``successful + failed`` always
            equals the number of requested ids

        Raises:
            OrderNotFoundError: If the order is not visible to the requester
        """
        self._bind_context(requester)
        order = await find_scoped_order(self.order_store, request.order, requester)

        logger.info(
            "Processing bulk cancellation",
            order_id=order.id,
            pnr=order.pnr,
            product_count=len(request.product_ids),
        )

        try:
            results: list[BulkItemResult] = []
            for index, product_id in enumerate(request.product_ids):
                if index:
                    await self._sleep(self.settings.bulk_item_delay_seconds)
                results.append(
                    await self._cancel_bulk_item(order, product_id, request, requester)
                )

            summary = self._summarise(results)
            response = BulkCancellationResponse(
                order_id=order.id,
                pnr=order.pnr,
                total_requested=len(request.product_ids),
                successful=sum(1 for item in results if item.success),
                failed=sum(1 for item in results if not item.success),
                results=results,
                summary=summary,
                processed_at=self.clock(),
            )

            if response.successful:
                await self._send_bulk_confirmation(order, response)

            await self._emit(
                WebhookEvent.BULK_COMPLETED,
                {
                    "order_id": order.id,
                    "pnr": order.pnr,
                    "total_requested": response.total_requested,
                    "successful": response.successful,
                    "failed": response.failed,
                    "total_refund": summary.total_refund,
                    "total_fees": summary.total_fees,
                },
            )
        except Exception as e:
            logger.error(
                "Bulk cancellation failed",
                order_id=order.id,
                error=str(e),
                exc_info=True,
            )
            await self._emit(
                WebhookEvent.BULK_ERROR,
                {
                    "order_id": order.id,
                    "pnr": order.pnr,
                    "product_ids": request.product_ids,
                    "error": str(e),
                    "correlation_id": get_correlation_id(),
                },
            )
            raise

        logger.info(
            "Bulk cancellation completed",
            order_id=order.id,
            successful=response.successful,
            failed=response.failed,
            total_refund=str(summary.total_refund),
        )
        return response

    async def _cancel_bulk_item(
        self,
        order: Order,
        product_id: str,
        request: BulkCancellationRequest,
        requester: Requester,
    ) -> BulkItemResult:
        """Cancel one bulk item, converting every failure into a result."""
        product = await self.order_store.find_product_by_id(order.id, product_id)
        if product is None:
            item = BulkItemResult(
                product_id=product_id,
                success=False,
                message="Product not found",
                error="Product not found",
            )
            await self._emit(
                WebhookEvent.CANCELLATION_FAILED,
                {
                    "order_id": order.id,
                    "pnr": order.pnr,
                    "product_id": product_id,
                    "message": item.message,
                },
            )
            return item

        base = {
            "product_id": product_id,
            "provider": product.provider,
            "title": product.title,
            "currency": product.price.currency,
        }

        try:
            self._check_eligibility(order, product)
        except CancellationNotAllowedError as e:
            await self._emit(
                WebhookEvent.CANCELLATION_FAILED,
                self._product_event_data(
                    order, product, message=e.message, reason_code=e.reason_code
                ),
            )
            return BulkItemResult(**base, success=False, message=e.message, error=e.message)

        command: Optional[ProviderCancellationCommand] = None
        try:
            command = self._build_command(
                order, product, request.reason, request.request_source.value, requester
            )
            result = await self.invoker.execute_command(command)
        except VendorUnavailableError as e:
            await self._emit_error(order, product, e, command.cancellation_id)
            return BulkItemResult(
                **base,
                success=False,
                cancellation_id=command.cancellation_id,
                message="Provider is temporarily unavailable, please retry later",
                error=e.message,
                retryable=True,
                retry_after=e.retry_after,
            )
        except Exception as e:
            logger.warning(
                "Bulk item cancellation failed",
                order_id=order.id,
                product_id=product_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._emit_error(
                order, product, e, command.cancellation_id if command else None
            )
            return BulkItemResult(**base, success=False, message=str(e), error=str(e))

        await self._emit(
            WebhookEvent.CANCELLATION_SUCCESS if result.success
            else WebhookEvent.CANCELLATION_FAILED,
            self._result_event_data(order, product, result, request.reason),
        )
        return BulkItemResult(
            **base,
            success=result.success,
            cancellation_id=result.cancellation_id,
            refund_amount=result.refund_amount,
            cancellation_fee=result.cancellation_fee,
            message=result.message,
            error=None if result.success else result.error_code,
        )

    def _check_eligibility(self, order: Order, product: Product) -> None:
        eligibility = evaluate_refund(product, self.clock())
        if eligibility.can_cancel:
            return

        logger.info(
            "Cancellation rejected",
            order_id=order.id,
            product_id=product.id,
            reason_code=eligibility.reason_code.value if eligibility.reason_code else None,
        )
        raise ineligibility_error(
            user_facing_message(eligibility),
            eligibility.reason_code,
            order_id=order.id,
            product_id=product.id,
        )

    def _build_command(
        self,
        order: Order,
        product: Product,
        reason: Optional[str],
        request_source: str,
        requester: Requester,
    ) -> ProviderCancellationCommand:
        provider = product.provider_enum
        strategy = self.strategies.get(provider) if provider else None
        if strategy is None:
            raise UnsupportedProviderError(
                f"Cancellation is not supported for provider {product.provider}",
                order_id=order.id,
                product_id=product.id,
                provider=product.provider,
            )

        return ProviderCancellationCommand(
            order_id=order.id,
            product_id=product.id,
            strategy=strategy,
            order_store=self.order_store,
            cancellation_store=self.cancellation_store,
            reason=reason,
            request_source=request_source,
            requested_by=RequestedBy(user_id=requester.user_id, role=requester.role),
            settings=self.settings,
            clock=self.clock,
        )

    @staticmethod
    def _summarise(results: list[BulkItemResult]) -> BulkCancellationSummary:
        breakdown: dict[str, ProviderBreakdown] = {}
        total_refund = ZERO
        total_fees = ZERO

        for item in results:
            bucket = breakdown.setdefault(
                item.provider or UNKNOWN_PROVIDER, ProviderBreakdown()
            )
            bucket.requested += 1
            if item.success:
                bucket.successful += 1
                bucket.refund_amount += item.refund_amount
                bucket.cancellation_fee += item.cancellation_fee
                total_refund += item.refund_amount
                total_fees += item.cancellation_fee
            else:
                bucket.failed += 1

        return BulkCancellationSummary(
            total_refund=total_refund,
            total_fees=total_fees,
            per_provider_breakdown=breakdown,
        )

    async def _send_confirmation(
        self, order: Order, product: Product, result: CancellationResult
    ) -> None:
        if self.notification_service is None:
            return
        try:
            await self.notification_service.send_cancellation_confirmation(
                order.customer.email,
                order.customer.full_name,
                {
                    "success": result.success,
                    "cancellation_id": result.cancellation_id,
                    "product_title": product.title,
                    "currency": product.price.currency,
                    "refund_amount": result.refund_amount,
                    "cancellation_fee": result.cancellation_fee,
                    "message": result.message,
                },
            )
        except NotificationServiceError as e:
            logger.warning(
                "Cancellation confirmation email failed",
                order_id=order.id,
                cancellation_id=result.cancellation_id,
                error=str(e),
            )

    async def _send_bulk_confirmation(
        self, order: Order, response: BulkCancellationResponse
    ) -> None:
        if self.notification_service is None:
            return
        succeeded = [item for item in response.results if item.success]
        # A total is only meaningful when every refund is in one currency
        currencies = {item.currency for item in succeeded}
        try:
            await self.notification_service.send_bulk_cancellation_confirmation(
                order.customer.email,
                order.customer.full_name,
                {
                    "order_pnr": order.pnr,
                    "items": [
                        {
                            "product_title": item.title,
                            "cancellation_id": item.cancellation_id,
                            "refund_amount": item.refund_amount,
                            "currency": item.currency,
                            "message": item.message,
                        }
                        for item in succeeded
                    ],
                    "total_refund": response.summary.total_refund,
                    "currency": currencies.pop() if len(currencies) == 1 else None,
                },
            )
        except NotificationServiceError as e:
            logger.warning(
                "Bulk cancellation confirmation email failed",
                order_id=order.id,
                error=str(e),
            )

    @staticmethod
    def _bind_context(requester: Requester) -> None:
        if not get_correlation_id():
            set_correlation_id()
        set_requester_id(requester.user_id)

    @staticmethod
    def _product_event_data(
        order: Order, product: Product, **extra: Any
    ) -> dict[str, Any]:
        data = {
            "order_id": order.id,
            "pnr": order.pnr,
            "product_id": product.id,
            "product_title": product.title,
            "provider": product.provider,
        }
        data.update(extra)
        return data

    def _result_event_data(
        self,
        order: Order,
        product: Product,
        result: CancellationResult,
        reason: Optional[str],
    ) -> dict[str, Any]:
        return self._product_event_data(
            order,
            product,
            cancellation_id=result.cancellation_id,
            refund_amount=result.refund_amount,
            cancellation_fee=result.cancellation_fee,
            refund_percentage=result.refund_percentage,
            message=result.message,
            error_code=result.error_code,
            reason=reason,
        )

    async def _emit_error(
        self,
        order: Order,
        product: Product,
        error: Exception,
        cancellation_id: Optional[str],
    ) -> None:
        await self._emit(
            WebhookEvent.CANCELLATION_ERROR,
            self._product_event_data(
                order,
                product,
                cancellation_id=cancellation_id,
                error=str(error),
                error_type=type(error).__name__,
                retryable=getattr(error, "retryable", False),
                correlation_id=get_correlation_id(),
            ),
        )

    async def _emit(self, event: WebhookEvent, data: dict[str, Any]) -> None:
        try:
            await self.webhook_service.trigger(event, data)
        except Exception as e:
            logger.error(
                "Failed to dispatch cancellation event",
                webhook_event=event.value,
                order_id=data.get("order_id"),
                error=str(e),
            )
