"""
Order data access interface and in-memory implementation.

This module defines the OrderStore protocol the cancellation engine consumes
(lookups by id, by booking reference, by reference plus contact email,
product lookups, and compare-and-set status writes) together with an
in-memory implementation used for development and tests. The document store
backing production deployments implements the same protocol.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

from ancillary.core.logging import get_logger
from ancillary.schemas.orders import Order, Product
from ancillary.services.orders.enums import ProductStatus

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    pass


class ProductNotFoundError(OrderRepositoryError):
    """Raised when a product is not found within an order."""

    pass


class DuplicateReferenceError(OrderRepositoryError):
    """Raised when a booking reference is already taken."""

    pass


class StatusConflictError(OrderRepositoryError):
    """Raised when a compare-and-set write sees an unexpected prior status."""

    def __init__(self, message: str, expected: Any, actual: Any, **context: Any):
        super().__init__(message, **context)
        self.expected = expected
        self.actual = actual


class OrderStore(Protocol):
    """Order/product persistence consumed by the cancellation engine."""

    async def create_order(self, order: Order) -> Order: ...

    async def find_by_id(self, order_id: str) -> Optional[Order]: ...

    async def find_by_reference(self, pnr: str) -> Optional[Order]: ...

    async def find_by_reference_and_contact(
        self, pnr: str, email: str
    ) -> Optional[Order]: ...

    async def find_by_customer(
        self, customer_id: Optional[str] = None, email: Optional[str] = None
    ) -> list[Order]: ...

    async def find_product_by_id(
        self, order_id: str, product_id: str
    ) -> Optional[Product]: ...

    async def update_product_status(
        self,
        order_id: str,
        product_id: str,
        status: ProductStatus,
        expected_status: Optional[ProductStatus] = None,
    ) -> Order: ...

    async def update_provider_sub_status(
        self,
        order_id: str,
        product_id: str,
        sub_status: Enum,
        expected_sub_status: Optional[Enum] = None,
        activated_at: Optional[datetime] = None,
    ) -> Order: ...

    async def list_orders(self) -> list[Order]: ...


class InMemoryOrderStore:
    """
    In-memory order store.

    Orders are kept by id with a secondary PNR index. Reads return deep
    copies so callers never mutate stored state without going through the
    update methods. Status writes support compare-and-set through
    ``expected_status`` so a check-then-act race surfaces as a
    StatusConflictError instead of a lost update.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._pnr_index: dict[str, str] = {}

    async def create_order(self, order: Order) -> Order:
        """
        Persist a new order.

        Args:
            order: Order to persist

        Returns:
            Stored copy of the order

        Raises:
            DuplicateReferenceError: If the PNR or id is already used
        """
        if order.pnr in self._pnr_index or order.id in self._orders:
            raise DuplicateReferenceError(
                "Booking reference already exists",
                pnr=order.pnr,
                order_id=order.id,
            )

        self._orders[order.id] = order.model_copy(deep=True)
        self._pnr_index[order.pnr] = order.id

        logger.info(
            "Order stored",
            order_id=order.id,
            pnr=order.pnr,
            product_count=len(order.products),
        )
        return order.model_copy(deep=True)

    async def find_by_id(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def find_by_reference(self, pnr: str) -> Optional[Order]:
        order_id = self._pnr_index.get(pnr.strip().upper())
        return await self.find_by_id(order_id) if order_id else None

    async def find_by_reference_and_contact(
        self, pnr: str, email: str
    ) -> Optional[Order]:
        """Find an order by PNR, only if the contact email matches."""
        order = await self.find_by_reference(pnr)
        if order is None or order.customer.email != email.strip().lower():
            return None
        return order

    async def find_by_customer(
        self, customer_id: Optional[str] = None, email: Optional[str] = None
    ) -> list[Order]:
        """
        List the orders placed by a customer, newest first.

        An order matches when its customer id equals ``customer_id`` or its
        contact email equals ``email``. With neither given nothing matches.
        """
        email = email.strip().lower() if email else None
        matches = [
            order
            for order in self._orders.values()
            if (customer_id and order.customer_id == customer_id)
            or (email and order.customer.email == email)
        ]
        matches.sort(key=lambda order: order.ordered_at, reverse=True)
        return [order.model_copy(deep=True) for order in matches]

    async def find_product_by_id(
        self, order_id: str, product_id: str
    ) -> Optional[Product]:
        order = self._orders.get(order_id)
        if order is None:
            return None
        product = order.get_product(product_id)
        return product.model_copy(deep=True) if product else None

    async def update_product_status(
        self,
        order_id: str,
        product_id: str,
        status: ProductStatus,
        expected_status: Optional[ProductStatus] = None,
    ) -> Order:
        """
        Update a product status, optionally conditional on its prior status.

        Args:
            order_id: Order identifier
            product_id: Product identifier within the order
            status: New product status
            expected_status: Required current status for the write to apply

        Returns:
            Updated order copy

        Raises:
            OrderNotFoundError: If order not found
            ProductNotFoundError: If product not found
            StatusConflictError: If the current status is not expected_status
        """
        order, product = self._locate(order_id, product_id)

        if expected_status is not None and product.status != expected_status:
            raise StatusConflictError(
                "Product status changed concurrently",
                expected=expected_status,
                actual=product.status,
                order_id=order_id,
                product_id=product_id,
            )

        previous = product.status
        product.status = status
        order.updated_at = datetime.now(timezone.utc)

        logger.info(
            "Product status updated",
            order_id=order_id,
            product_id=product_id,
            transition=f"{previous.value}->{status.value}",
        )
        return order.model_copy(deep=True)

    async def update_provider_sub_status(
        self,
        order_id: str,
        product_id: str,
        sub_status: Enum,
        expected_sub_status: Optional[Enum] = None,
        activated_at: Optional[datetime] = None,
    ) -> Order:
        """
        Update the provider-specific sub-status of a product.

        Raises:
            OrderNotFoundError: If order not found
            ProductNotFoundError: If product not found
            OrderRepositoryError: If the provider has no sub-status field
            StatusConflictError: If the current sub-status is unexpected
        """
        order, product = self._locate(order_id, product_id)

        field_name = product.sub_status_field
        if field_name is None:
            raise OrderRepositoryError(
                "Provider has no sub-status",
                order_id=order_id,
                product_id=product_id,
                provider=product.provider,
            )

        current = getattr(product, field_name)
        if expected_sub_status is not None and current != expected_sub_status:
            raise StatusConflictError(
                "Product sub-status changed concurrently",
                expected=expected_sub_status,
                actual=current,
                order_id=order_id,
                product_id=product_id,
            )

        setattr(product, field_name, sub_status)
        if activated_at is not None:
            product.activated_at = activated_at
        order.updated_at = datetime.now(timezone.utc)

        logger.info(
            "Product sub-status updated",
            order_id=order_id,
            product_id=product_id,
            field=field_name,
            sub_status=sub_status.value,
        )
        return order.model_copy(deep=True)

    async def list_orders(self) -> list[Order]:
        return [order.model_copy(deep=True) for order in self._orders.values()]

    def _locate(self, order_id: str, product_id: str) -> tuple[Order, Product]:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=order_id)

        product = order.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(
                "Product not found",
                order_id=order_id,
                product_id=product_id,
            )
        return order, product
