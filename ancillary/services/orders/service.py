"""
Order service managing the product lifecycle outside of cancellation.

This module implements the OrderService class for placing orders, resolving
pending products automatically after a delay, activating eSIMs, applying
manual status updates issued by partners, and summarising product statuses.
Status writes go through the ProductStateMachine and use compare-and-set so
the automatic resolution timer and a concurrent partner update cannot
overwrite each other.
"""

import asyncio
import random
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from ancillary.core.config import Settings, get_settings
from ancillary.core.logging import get_logger
from ancillary.core.security import generate_pnr
from ancillary.schemas.orders import (
    Order,
    OrderCreateRequest,
    OrderIdentifier,
    Product,
    Requester,
)
from ancillary.services.orders.enums import (
    PROVIDER_INITIAL_SUB_STATUS,
    PROVIDER_SUB_STATUS_FIELD,
    ProductStatus,
    Provider,
    SimStatus,
)
from ancillary.services.orders.repository import (
    DuplicateReferenceError,
    OrderNotFoundError,
    OrderStore,
    ProductNotFoundError,
    StatusConflictError,
)
from ancillary.services.orders.state_machine import (
    ProductStateMachine,
    StateTransitionError,
)
from ancillary.services.webhooks.enums import WebhookEvent
from ancillary.services.webhooks.service import WebhookService

logger = get_logger(__name__)

PNR_GENERATION_ATTEMPTS = 10

OutcomePicker = Callable[[Product], ProductStatus]


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderAccessError(OrderServiceError):
    """Raised when the requester may not perform the operation."""

    pass


class OrderProcessingError(OrderServiceError):
    """Raised when an order operation cannot be applied."""

    pass


async def find_scoped_order(
    store: OrderStore,
    identifier: OrderIdentifier,
    requester: Requester,
) -> Order:
    """
    Resolve an order the requester is allowed to see.

    Admins and partners look orders up by PNR or id. Customers must also
    match the order's contact email, taken from the identifier or, failing
    that, from the requester.

    Raises:
        OrderNotFoundError: If no visible order matches
    """
    order: Optional[Order] = None

    if requester.is_customer:
        email = identifier.email or requester.email
        if email:
            if identifier.pnr:
                order = await store.find_by_reference_and_contact(identifier.pnr, email)
            else:
                order = await store.find_by_id(identifier.order_id)
                if order is not None and order.customer.email != email:
                    order = None
    elif identifier.pnr:
        order = await store.find_by_reference(identifier.pnr)
    else:
        order = await store.find_by_id(identifier.order_id)

    if order is not None and identifier.order_id and order.id != identifier.order_id:
        order = None

    if order is None:
        raise OrderNotFoundError(
            "Order not found",
            pnr=identifier.pnr,
            order_id=identifier.order_id,
            requester_role=requester.role.value,
        )
    return order


class OrderService:
    """
    Order service driving the product state machine.

    Attributes:
        store: Order store for data access
        state_machine: State machine for product lifecycle management
        webhook_service: Dispatcher for order lifecycle events
    """

    def __init__(
        self,
        store: OrderStore,
        webhook_service: Optional[WebhookService] = None,
        settings: Optional[Settings] = None,
        outcome_picker: Optional[OutcomePicker] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize order service.

        Args:
            store: Order store
            webhook_service: Webhook dispatcher (events skipped when None)
            settings: Application settings
            outcome_picker: Chooses the status a pending product resolves to
                (weighted random from settings when None)
            rng: Random source for the default picker
            clock: Time source for activation timestamps
        """
        self.store = store
        self.state_machine = ProductStateMachine(store)
        self.webhook_service = webhook_service
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()
        self.outcome_picker = outcome_picker or self._weighted_outcome
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._resolution_tasks: set[asyncio.Task] = set()

    async def create_order(
        self,
        request: OrderCreateRequest,
        requester: Requester,
    ) -> Order:
        """
        Place an order with every product pending.

        Each product starts with its provider's initial sub-status and an
        automatic status resolution is scheduled for the order.

        Args:
            request: Order placement request
            requester: Customer placing the order

        Returns:
            Stored order

        Raises:
            DuplicateReferenceError: If no unique PNR could be generated
        """
        pnr = await self._generate_unique_pnr()

        products = []
        for item in request.products:
            field_name = PROVIDER_SUB_STATUS_FIELD[item.provider]
            product = Product(
                **item.model_dump(exclude={"provider"}),
                provider=item.provider.value,
                status=ProductStatus.PENDING,
                **{field_name: PROVIDER_INITIAL_SUB_STATUS[item.provider]},
            )
            products.append(product)

        order_data: dict[str, Any] = {
            "pnr": pnr,
            "customer_id": requester.user_id,
            "customer": request.customer,
            "products": products,
        }
        if request.transaction_id:
            order_data["transaction_id"] = request.transaction_id

        order = await self.store.create_order(Order(**order_data))

        logger.info(
            "Order created",
            order_id=order.id,
            pnr=order.pnr,
            product_count=len(order.products),
            customer_id=requester.user_id,
        )

        self._schedule_resolution(order.id)
        return order

    async def get_order(
        self,
        identifier: OrderIdentifier,
        requester: Requester,
    ) -> Order:
        return await find_scoped_order(self.store, identifier, requester)

    async def list_customer_orders(self, requester: Requester) -> list[Order]:
        """
        List the requesting customer's orders, newest first.

        Orders are matched by the requester's id and, for orders placed
        before an account existed, by the requester's email.

        Raises:
            OrderAccessError: If the requester is not a customer
        """
        if not requester.is_customer:
            raise OrderAccessError(
                "Only customers can list their own orders",
                requester_id=requester.user_id,
                requester_role=requester.role.value,
            )

        orders = await self.store.find_by_customer(
            customer_id=requester.user_id, email=requester.email
        )
        logger.debug(
            "Customer orders listed",
            requester_id=requester.user_id,
            order_count=len(orders),
        )
        return orders

    async def resolve_pending_products(self, order_id: str) -> Optional[Order]:
        """
        Resolve every still-pending product of an order.

        A product whose status changed since it was read is left alone.
        Failed and denied outcomes emit ``order.failed``.

        Args:
            order_id: Order to resolve

        Returns:
            Order after resolution, or None if it no longer exists
        """
        order = await self.store.find_by_id(order_id)
        if order is None:
            logger.warning("Order vanished before status resolution", order_id=order_id)
            return None

        for product in order.products:
            if product.status != ProductStatus.PENDING:
                continue

            outcome = self.outcome_picker(product)
            try:
                order = await self.state_machine.apply_transition(
                    order_id,
                    product,
                    outcome,
                    reason="automatic status resolution",
                )
            except StatusConflictError as e:
                logger.info(
                    "Product changed before automatic resolution, skipping",
                    order_id=order_id,
                    product_id=product.id,
                    actual_status=e.actual.value,
                )
                continue

            if outcome in (ProductStatus.FAILED, ProductStatus.DENIED):
                await self._emit(
                    WebhookEvent.ORDER_FAILED,
                    self._product_event_data(order, product, outcome, "automatic"),
                )

        return await self.store.find_by_id(order_id)

    async def activate_esim(
        self,
        identifier: OrderIdentifier,
        product_id: str,
        requester: Requester,
    ) -> Product:
        """
        Activate an eSIM product.

        Args:
            identifier: Order reference
            product_id: eSIM product to activate
            requester: Caller identity

        Returns:
            The activated product

        Raises:
            OrderNotFoundError: If the order is not visible to the requester
            ProductNotFoundError: If the product is not in the order
            OrderProcessingError: If the product is not an eSIM or cannot be
                activated from its current state
        """
        order = await find_scoped_order(self.store, identifier, requester)
        product = self._get_product(order, product_id)

        if product.provider_enum != Provider.AIRALO:
            raise OrderProcessingError(
                "Only eSIM products can be activated",
                order_id=order.id,
                product_id=product_id,
                provider=product.provider,
            )

        try:
            updated = await self.state_machine.apply_sub_status_transition(
                order.id,
                product,
                SimStatus.ACTIVE,
                activated_at=self.clock(),
            )
        except (StateTransitionError, StatusConflictError) as e:
            logger.warning(
                "eSIM activation rejected",
                order_id=order.id,
                product_id=product_id,
                sim_status=product.sim_status.value if product.sim_status else None,
                status=product.status.value,
            )
            raise OrderProcessingError(
                f"eSIM cannot be activated: {e}",
                order_id=order.id,
                product_id=product_id,
            ) from e

        logger.info("eSIM activated", order_id=order.id, product_id=product_id)
        return updated.get_product(product_id)

    async def update_product_status(
        self,
        identifier: OrderIdentifier,
        product_id: str,
        status: ProductStatus,
        requester: Requester,
        reason: Optional[str] = None,
    ) -> Order:
        """
        Apply a manual product status update issued by a partner or admin.

        Args:
            identifier: Order reference
            product_id: Product to update
            status: Target status
            requester: Partner or admin issuing the update
            reason: Optional reason recorded in the logs

        Returns:
            Updated order

        Raises:
            OrderAccessError: If the requester is a customer
            OrderNotFoundError: If the order does not exist
            ProductNotFoundError: If the product is not in the order
            OrderProcessingError: If the transition is invalid or the
                product changed concurrently
        """
        if requester.is_customer:
            raise OrderAccessError(
                "Customers cannot update product status",
                user_id=requester.user_id,
            )

        order = await find_scoped_order(self.store, identifier, requester)
        product = self._get_product(order, product_id)

        try:
            updated = await self.state_machine.apply_transition(
                order.id,
                product,
                status,
                user_id=requester.user_id,
                reason=reason,
            )
        except StateTransitionError as e:
            logger.warning(
                "Invalid state transition",
                order_id=order.id,
                product_id=product_id,
                current_status=e.current_state.value,
                target_status=e.target_state.value,
            )
            raise OrderProcessingError(
                f"Invalid status transition: {e}",
                order_id=order.id,
                product_id=product_id,
                allowed_transitions=e.context.get("allowed_transitions"),
            ) from e
        except StatusConflictError as e:
            raise OrderProcessingError(
                "Product status changed concurrently, retry with the current status",
                order_id=order.id,
                product_id=product_id,
                actual_status=e.actual.value,
            ) from e

        if status == ProductStatus.CANCELLED:
            await self._emit(
                WebhookEvent.ORDER_PARTNER_CANCELLED,
                self._product_event_data(updated, product, status, requester.user_id, reason),
            )
        elif status in (ProductStatus.FAILED, ProductStatus.DENIED):
            await self._emit(
                WebhookEvent.ORDER_FAILED,
                self._product_event_data(updated, product, status, requester.user_id, reason),
            )

        return updated

    async def get_status_summary(self) -> dict[str, dict[str, Any]]:
        """
        Count products and sum their prices per status.

        Returns:
            Mapping of status to ``{"count": int, "amount": Decimal}``,
            covering every status
        """
        summary: dict[str, dict[str, Any]] = {
            status.value: {"count": 0, "amount": Decimal("0.00")}
            for status in ProductStatus
        }
        for order in await self.store.list_orders():
            for product in order.products:
                bucket = summary[product.status.value]
                bucket["count"] += 1
                bucket["amount"] += product.price.amount
        return summary

    async def shutdown(self) -> None:
        """Cancel outstanding automatic resolution tasks."""
        tasks = list(self._resolution_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Order service shut down", cancelled_tasks=len(tasks))

    def _schedule_resolution(self, order_id: str) -> None:
        task = asyncio.create_task(self._resolve_after_delay(order_id))
        self._resolution_tasks.add(task)
        task.add_done_callback(self._resolution_tasks.discard)

    async def _resolve_after_delay(self, order_id: str) -> None:
        await asyncio.sleep(self.settings.status_resolution_delay_seconds)
        try:
            await self.resolve_pending_products(order_id)
        except Exception as e:
            logger.error(
                "Automatic status resolution failed",
                order_id=order_id,
                error=str(e),
                exc_info=True,
            )

    def _weighted_outcome(self, product: Product) -> ProductStatus:
        weights = self.settings.status_resolution_weights
        statuses = list(weights)
        choice = self.rng.choices(statuses, weights=[weights[s] for s in statuses])[0]
        return ProductStatus(choice)

    async def _generate_unique_pnr(self) -> str:
        for _ in range(PNR_GENERATION_ATTEMPTS):
            pnr = generate_pnr()
            if await self.store.find_by_reference(pnr) is None:
                return pnr
        raise DuplicateReferenceError(
            "Could not generate a unique booking reference",
            attempts=PNR_GENERATION_ATTEMPTS,
        )

    @staticmethod
    def _get_product(order: Order, product_id: str) -> Product:
        product = order.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(
                "Product not found",
                order_id=order.id,
                product_id=product_id,
            )
        return product

    @staticmethod
    def _product_event_data(
        order: Order,
        product: Product,
        status: ProductStatus,
        updated_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        return {
            "order_id": order.id,
            "pnr": order.pnr,
            "product_id": product.id,
            "product_title": product.title,
            "provider": product.provider,
            "status": status.value,
            "updated_by": updated_by,
            "reason": reason,
        }

    async def _emit(self, event: WebhookEvent, data: dict[str, Any]) -> None:
        if self.webhook_service is None:
            return
        try:
            await self.webhook_service.trigger(event, data)
        except Exception as e:
            logger.error(
                "Failed to dispatch order event",
                webhook_event=event.value,
                order_id=data.get("order_id"),
                error=str(e),
            )
