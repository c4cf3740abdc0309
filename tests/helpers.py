"""
Test data factories and assertion helpers shared across the test suites.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional
from unittest.mock import AsyncMock

from ancillary.schemas.orders import (
    CancellationPolicy,
    CancellationWindow,
    CustomerContact,
    Order,
    Price,
    Product,
)
from ancillary.services.orders.enums import (
    PROVIDER_INITIAL_SUB_STATUS,
    PROVIDER_SUB_STATUS_FIELD,
    ProductStatus,
    Provider,
)

FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
CUSTOMER_EMAIL = "jane.doe@example.com"


def make_policy(
    windows: Optional[list[tuple[float, int]]] = None,
    can_cancel: bool = True,
    cancel_condition: str = "before_consumption",
) -> CancellationPolicy:
    """Build a policy from ``(threshold_hours, refund_percentage)`` pairs."""
    if windows is None:
        windows = [(24, 100), (72, 75)]
    return CancellationPolicy(
        windows=[
            CancellationWindow(threshold_hours=hours, refund_percentage=pct)
            for hours, pct in windows
        ],
        can_cancel=can_cancel,
        cancel_condition=cancel_condition,
    )


def make_product(
    product_id: str = "prod-1",
    provider: str = "airalo",
    status: ProductStatus = ProductStatus.CONFIRMED,
    sub_status: Any = None,
    elapsed_hours: float = 2,
    price: str = "85.00",
    policy: Optional[CancellationPolicy] = None,
    title: Optional[str] = None,
    currency: str = "USD",
) -> Product:
    """Build a product whose service reference point lies ``elapsed_hours`` ago."""
    data: dict[str, Any] = {
        "id": product_id,
        "title": title or f"{provider} product {product_id}",
        "provider": provider,
        "price": Price(amount=Decimal(price), currency=currency),
        "status": status,
        "cancellation_policy": policy or make_policy(),
        "service_datetime": FIXED_NOW - timedelta(hours=elapsed_hours),
    }
    known = Provider.lookup(provider)
    if known is not None:
        data[PROVIDER_SUB_STATUS_FIELD[known]] = (
            sub_status or PROVIDER_INITIAL_SUB_STATUS[known]
        )
    return Product(**data)


def make_order(
    products: Optional[list[Product]] = None,
    pnr: str = "ABC123",
    email: str = CUSTOMER_EMAIL,
    customer_id: str = "cust-1",
) -> Order:
    return Order(
        pnr=pnr,
        customer_id=customer_id,
        customer=CustomerContact(email=email, first_name="Jane", last_name="Doe"),
        products=products or [make_product()],
    )


def triggered_events(webhook_service: AsyncMock) -> list[str]:
    """Event names passed to a mocked webhook service, in call order."""
    return [call.args[0].value for call in webhook_service.trigger.await_args_list]
