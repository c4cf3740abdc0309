"""
Provider cancellation command and command invoker.

A ProviderCancellationCommand cancels one product with one provider. It is
parameterised by a ProviderStrategy instead of being subclassed per vendor.
The CancellationCommandInvoker runs a command exactly once, compensates on
failure, and appends an AuditEntry for every invocation to an injected
AuditSink.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

from ancillary.core.config import Settings, get_settings
from ancillary.core.logging import get_logger, log_performance
from ancillary.core.security import generate_cancellation_id
from ancillary.schemas.cancellations import (
    ZERO,
    AuditEntry,
    CancellationRecord,
    CancellationResult,
    RefundEligibility,
    RequestedBy,
)
from ancillary.schemas.orders import Order, Product
from ancillary.services.cancellations.enums import (
    AuditOutcome,
    CancellationStatus,
    ResultKind,
)
from ancillary.services.cancellations.errors import (
    VendorUnavailableError,
    WrongProviderError,
    ineligibility_error,
)
from ancillary.services.cancellations.policy import evaluate_refund
from ancillary.services.cancellations.providers import (
    SERVICE_UNAVAILABLE,
    VENDOR_STATUS_ERROR,
    ProviderStrategy,
    is_vendor_success,
    is_vendor_unavailable,
)
from ancillary.services.cancellations.repository import CancellationStore
from ancillary.services.orders.enums import ProductStatus
from ancillary.services.orders.repository import (
    OrderNotFoundError,
    OrderStore,
    ProductNotFoundError,
)
from ancillary.services.orders.state_machine import ProductStateMachine

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CancellationCommand(Protocol):
    """Command contract consumed by the invoker."""

    async def execute(self) -> CancellationResult: ...

    async def undo(self) -> None: ...

    def audit_info(self) -> dict[str, Any]: ...


class ProviderCancellationCommand:
    """
    Cancel one product with its provider.

    ``execute`` re-evaluates eligibility with the same evaluator the
    orchestrator uses, writes a pending CancellationRecord, calls the vendor
    within the configured timeout, finalises the record and, on vendor
    success, moves the product to ``cancelled``. ``undo`` reverts only a
    cancellation this command applied itself.
    """

    def __init__(
        self,
        order_id: str,
        product_id: str,
        strategy: ProviderStrategy,
        order_store: OrderStore,
        cancellation_store: CancellationStore,
        reason: Optional[str] = None,
        request_source: str = "api",
        requested_by: Optional[RequestedBy] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        self.order_id = order_id
        self.product_id = product_id
        self.strategy = strategy
        self.order_store = order_store
        self.cancellation_store = cancellation_store
        self.state_machine = ProductStateMachine(order_store)
        self.reason = reason
        self.request_source = request_source
        self.requested_by = requested_by
        self.settings = settings or get_settings()
        self.clock = clock or utcnow

        self.executed_at: Optional[datetime] = None
        self.cancellation_id: Optional[str] = None
        self._status_applied = False
        self._sub_status_applied = False

    @property
    def command_type(self) -> str:
        return f"{self.strategy.provider.value}_cancellation"

    async def execute(self) -> CancellationResult:
        """
        Execute the cancellation.

        Returns:
            Tagged result, ``failure`` when the vendor rejected the request

        Raises:
            OrderNotFoundError: If the order does not exist
            ProductNotFoundError: If the product is not in the order
            WrongProviderError: If the product belongs to another provider
            CancellationNotAllowedError: If the product is ineligible
            VendorUnavailableError: If the vendor could not process the call
        """
        now = self.clock()
        self.executed_at = now

        order = await self.order_store.find_by_id(self.order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=self.order_id)

        product = order.get_product(self.product_id)
        if product is None:
            raise ProductNotFoundError(
                "Product not found",
                order_id=self.order_id,
                product_id=self.product_id,
            )

        if product.provider != self.strategy.provider.value:
            raise WrongProviderError(
                f"Product belongs to {product.provider}, not "
                f"{self.strategy.provider.value}",
                order_id=self.order_id,
                product_id=self.product_id,
            )

        quote = evaluate_refund(product, now)
        if not quote.can_cancel:
            raise ineligibility_error(
                quote.reason or "Product cannot be cancelled",
                quote.reason_code,
                order_id=self.order_id,
                product_id=self.product_id,
            )

        record = await self._create_record(order, product, quote, now)
        self.cancellation_id = record.cancellation_id

        try:
            response = await self._call_vendor(product, quote)
            if is_vendor_success(response):
                await self._apply_cancellation(product)
                status = CancellationStatus.SUCCESS
            elif is_vendor_unavailable(response):
                status = CancellationStatus.FAILED
            else:
                status = CancellationStatus.DENIED

            succeeded = status == CancellationStatus.SUCCESS
            await self.cancellation_store.update_cancellation_record(
                record.cancellation_id,
                status,
                vendor_response=response,
                refund_amount=quote.refund_amount if succeeded else ZERO,
                cancellation_fee=quote.cancellation_fee if succeeded else ZERO,
            )
        except Exception as e:
            await self._mark_record_failed(record.cancellation_id, e)
            raise

        logger.info(
            "Provider cancellation finished",
            cancellation_id=record.cancellation_id,
            provider=self.strategy.provider.value,
            order_id=self.order_id,
            product_id=self.product_id,
            status=status.value,
        )

        if status == CancellationStatus.FAILED:
            raise VendorUnavailableError(
                response.get("message", "Vendor service temporarily unavailable"),
                retry_after=response.get("retry_after"),
                cancellation_id=record.cancellation_id,
                provider=self.strategy.provider.value,
            )

        return CancellationResult(
            kind=ResultKind.SUCCESS if succeeded else ResultKind.FAILURE,
            cancellation_id=record.cancellation_id,
            provider=self.strategy.provider.value,
            refund_amount=quote.refund_amount if succeeded else ZERO,
            cancellation_fee=quote.cancellation_fee if succeeded else ZERO,
            refund_percentage=quote.refund_percentage if succeeded else 0,
            message=response.get("message", ""),
            error_code=response.get("error_code"),
            vendor_response=response,
        )

    async def undo(self) -> None:
        """Revert a cancellation applied by this command. Never raises."""
        if not self._status_applied:
            logger.info(
                "Nothing to compensate",
                command_type=self.command_type,
                order_id=self.order_id,
                product_id=self.product_id,
            )
            return

        try:
            # Compensation is outside the transition table: cancelled is terminal
            await self.order_store.update_product_status(
                self.order_id,
                self.product_id,
                ProductStatus.CONFIRMED,
                expected_status=ProductStatus.CANCELLED,
            )
            self._status_applied = False

            if self._sub_status_applied and self.strategy.restored_sub_status:
                await self.order_store.update_provider_sub_status(
                    self.order_id,
                    self.product_id,
                    self.strategy.restored_sub_status,
                    expected_sub_status=self.strategy.cancelled_sub_status,
                )
                self._sub_status_applied = False

            logger.info(
                "Cancellation compensated",
                command_type=self.command_type,
                order_id=self.order_id,
                product_id=self.product_id,
            )
        except Exception as e:
            logger.error(
                "Failed to undo cancellation",
                command_type=self.command_type,
                order_id=self.order_id,
                product_id=self.product_id,
                error=str(e),
                exc_info=True,
            )

    def audit_info(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "product_id": self.product_id,
            "reason": self.reason,
            "executed_at": self.executed_at,
            "command_type": self.command_type,
            "cancellation_id": self.cancellation_id,
        }

    async def _create_record(
        self,
        order: Order,
        product: Product,
        quote: RefundEligibility,
        now: datetime,
    ) -> CancellationRecord:
        record = CancellationRecord(
            cancellation_id=generate_cancellation_id(int(now.timestamp() * 1000)),
            order_id=order.id,
            product_id=product.id,
            pnr=order.pnr,
            provider=product.provider,
            status=CancellationStatus.PENDING,
            refund_amount=quote.refund_amount,
            cancellation_fee=quote.cancellation_fee,
            refund_percentage=quote.refund_percentage,
            request_source=self.request_source,
            requested_by=self.requested_by,
            reason=self.reason,
            requested_at=now,
        )
        return await self.cancellation_store.create_cancellation_record(record)

    async def _mark_record_failed(self, cancellation_id: str, error: Exception) -> None:
        """Finalise the record as failed; a write failure here is only logged."""
        try:
            await self.cancellation_store.update_cancellation_record(
                cancellation_id,
                CancellationStatus.FAILED,
                vendor_response={
                    "status": VENDOR_STATUS_ERROR,
                    "error_code": "INTERNAL_ERROR",
                    "message": str(error),
                },
                refund_amount=ZERO,
                cancellation_fee=ZERO,
            )
        except Exception as e:
            logger.error(
                "Cancellation record could not be marked failed",
                cancellation_id=cancellation_id,
                original_error=str(error),
                error=str(e),
                exc_info=True,
            )

    async def _call_vendor(
        self, product: Product, quote: RefundEligibility
    ) -> dict[str, Any]:
        """Call the vendor, mapping a timeout to an unavailable response."""
        try:
            with log_performance(
                logger,
                "vendor_cancel",
                slow_threshold_ms=2000.0,
                provider=self.strategy.provider.value,
                product_id=product.id,
            ):
                return await asyncio.wait_for(
                    self.strategy.call_vendor(product, quote),
                    timeout=self.settings.vendor_timeout_seconds,
                )
        except asyncio.TimeoutError:
            logger.warning(
                "Vendor call timed out",
                provider=self.strategy.provider.value,
                product_id=product.id,
                timeout_seconds=self.settings.vendor_timeout_seconds,
            )
            return {
                "status": VENDOR_STATUS_ERROR,
                "error_code": SERVICE_UNAVAILABLE,
                "message": "Vendor did not respond in time",
                "retry_after": self.settings.vendor_retry_after_seconds,
            }

    async def _apply_cancellation(self, product: Product) -> None:
        await self.state_machine.apply_transition(
            self.order_id,
            product,
            ProductStatus.CANCELLED,
            user_id=self.requested_by.user_id if self.requested_by else None,
            reason=self.reason,
        )
        self._status_applied = True

        if self.strategy.cancelled_sub_status is not None:
            await self.state_machine.apply_sub_status_transition(
                self.order_id,
                product,
                self.strategy.cancelled_sub_status,
            )
            self._sub_status_applied = True


class AuditSink(Protocol):
    """Append-only destination for command audit entries."""

    def record(self, entry: AuditEntry) -> None: ...


class InMemoryAuditTrail:
    """Audit sink kept in memory. Entries are only removed by ``clear``."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self._entries.append(entry)

    def entries(self) -> list[AuditEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class CancellationCommandInvoker:
    """Runs cancellation commands with compensation and auditing."""

    def __init__(self, audit_sink: AuditSink):
        self.audit_sink = audit_sink

    async def execute_command(
        self,
        command: CancellationCommand,
        compensate: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> CancellationResult:
        """
        Execute a command exactly once.

        On exception the compensation (``command.undo`` unless given) runs at
        most once. A compensation failure is logged and the original error is
        re-raised.

        Args:
            command: Command to execute
            compensate: Compensation callable overriding ``command.undo``

        Returns:
            The command's result
        """
        compensation = compensate or command.undo

        try:
            result = await command.execute()
        except Exception as e:
            self._record(command, AuditOutcome.ERROR, error=str(e))
            try:
                await compensation()
            except Exception as undo_error:
                logger.error(
                    "Compensation failed",
                    error=str(undo_error),
                    original_error=str(e),
                    **self._log_context(command),
                )
            raise

        outcome = AuditOutcome.SUCCESS if result.success else AuditOutcome.FAILURE
        self._record(command, outcome, cancellation_id=result.cancellation_id)
        return result

    def _record(
        self,
        command: CancellationCommand,
        outcome: AuditOutcome,
        cancellation_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        info = command.audit_info()
        entry = AuditEntry(
            order_id=info["order_id"],
            product_id=info["product_id"],
            reason=info.get("reason"),
            executed_at=info.get("executed_at") or utcnow(),
            command_type=info["command_type"],
            outcome=outcome,
            cancellation_id=cancellation_id or info.get("cancellation_id"),
            error=error,
        )
        self.audit_sink.record(entry)

        logger.info(
            "Command audited",
            outcome=outcome.value,
            cancellation_id=entry.cancellation_id,
            **self._log_context(command),
        )

    @staticmethod
    def _log_context(command: CancellationCommand) -> dict[str, Any]:
        info = command.audit_info()
        return {
            "command_type": info.get("command_type"),
            "order_id": info.get("order_id"),
            "product_id": info.get("product_id"),
        }
