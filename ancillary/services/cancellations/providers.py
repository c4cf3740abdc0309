"""
Provider strategies and vendor clients for ancillary cancellations.

Each supported provider is described by a ProviderStrategy: which product
field holds its sub-status, which sub-statuses mean the product was consumed,
how the sub-status changes on cancel and on compensation, and the vendor
client that performs the remote cancellation. The vendor clients shipped
here simulate the three vendors (latency, transient unavailability and
deterministic business rejections); real HTTP clients implement the same
VendorClient protocol.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from ancillary.core.config import Settings, get_settings
from ancillary.core.logging import get_logger
from ancillary.schemas.cancellations import RefundEligibility
from ancillary.schemas.orders import Product
from ancillary.services.orders.enums import (
    PROVIDER_BLOCKING_SUB_STATUSES,
    PROVIDER_SUB_STATUS_FIELD,
    Provider,
    SimStatus,
)

logger = get_logger(__name__)

VENDOR_STATUS_SUCCESS = "success"
VENDOR_STATUS_ERROR = "error"

SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
CANCELLATION_WINDOW_EXPIRED = "CANCELLATION_WINDOW_EXPIRED"
SIM_ALREADY_ACTIVATED = "SIM_ALREADY_ACTIVATED"
TRANSFER_ALREADY_STARTED = "TRANSFER_ALREADY_STARTED"
ACCESS_ALREADY_USED = "ACCESS_ALREADY_USED"


def _money(value: Decimal) -> float:
    return float(value)


def refund_policy_label(percentage: int) -> str:
    """Vendor label for the refund tier applied."""
    return "full_refund" if percentage == 100 else f"{percentage}_percent_refund"


def is_vendor_success(response: dict[str, Any]) -> bool:
    return response.get("status") == VENDOR_STATUS_SUCCESS


def is_vendor_unavailable(response: dict[str, Any]) -> bool:
    return response.get("error_code") == SERVICE_UNAVAILABLE


class VendorClient(Protocol):
    """Remote cancellation call for one provider."""

    async def cancel(
        self, product: Product, quote: RefundEligibility
    ) -> dict[str, Any]: ...


class SimulatedVendorClient:
    """
    Base simulated vendor.

    Waits ``latency_seconds``, rejects consumed products and zero-refund
    quotes deterministically, and otherwise reports the vendor unavailable
    with probability ``failure_rate``. The random source and clock are
    injectable so tests can pin outcomes.
    """

    provider: Provider
    id_prefix: str
    consumed_error_code: str
    consumed_message: str
    success_message: str
    partial_message: str
    estimated_refund_time: str

    def __init__(
        self,
        latency_seconds: float = 0.0,
        failure_rate: float = 0.1,
        retry_after: int = 900,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.latency_seconds = latency_seconds
        self.failure_rate = failure_rate
        self.retry_after = retry_after
        self.rng = rng or random.Random()
        self.clock = clock or time.time

    async def cancel(
        self, product: Product, quote: RefundEligibility
    ) -> dict[str, Any]:
        """
        Request cancellation of a product from the vendor.

        Args:
            product: Product being cancelled
            quote: Refund evaluation the cancellation is based on

        Returns:
            Raw vendor payload with a ``status`` of success or error
        """
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        if product.sub_status in PROVIDER_BLOCKING_SUB_STATUSES[self.provider]:
            return {
                "status": VENDOR_STATUS_ERROR,
                "error_code": self.consumed_error_code,
                "message": self.consumed_message,
                **self._identifiers(product),
            }

        if self.rng.random() < self.failure_rate:
            logger.warning(
                "Vendor temporarily unavailable",
                provider=self.provider.value,
                product_id=product.id,
            )
            return {
                "status": VENDOR_STATUS_ERROR,
                "error_code": SERVICE_UNAVAILABLE,
                "message": "Vendor service temporarily unavailable",
                "retry_after": self.retry_after,
            }

        if quote.refund_percentage == 0:
            return {
                "status": VENDOR_STATUS_ERROR,
                "error_code": CANCELLATION_WINDOW_EXPIRED,
                "message": "Cancellation window has expired",
                **self._identifiers(product),
            }

        full_refund = quote.refund_percentage == 100
        return {
            "status": VENDOR_STATUS_SUCCESS,
            "cancellation_id": f"{self.id_prefix}{int(self.clock() * 1000)}",
            "refund_amount": _money(quote.refund_amount),
            "cancellation_fee": _money(quote.cancellation_fee),
            "currency": product.price.currency,
            "refund_policy": refund_policy_label(quote.refund_percentage),
            "estimated_refund_time": self.estimated_refund_time,
            "message": self.success_message if full_refund else self.partial_message,
            **self._identifiers(product),
            **self._success_extras(product),
        }

    def _identifiers(self, product: Product) -> dict[str, Any]:
        return {}

    def _success_extras(self, product: Product) -> dict[str, Any]:
        return {}


class AiraloClient(SimulatedVendorClient):
    """Simulated eSIM vendor."""

    provider = Provider.AIRALO
    id_prefix = "CXL_AL_"
    consumed_error_code = SIM_ALREADY_ACTIVATED
    consumed_message = "eSIM cannot be cancelled - already activated and in use"
    success_message = "eSIM cancelled successfully - not yet activated"
    partial_message = "eSIM cancelled with processing fee - not activated"
    estimated_refund_time = "1-3 business days"

    def _identifiers(self, product: Product) -> dict[str, Any]:
        return {
            "order_id": product.metadata.get("order_id"),
            "order_code": product.metadata.get("order_code"),
            "package_id": product.metadata.get("package_id"),
            "iccid": product.metadata.get("iccid"),
        }

    def _success_extras(self, product: Product) -> dict[str, Any]:
        return {"sim_status": SimStatus.CANCELLED.value}


class MozioClient(SimulatedVendorClient):
    """Simulated airport transfer vendor."""

    provider = Provider.MOZIO
    id_prefix = "CXL_MZ_"
    consumed_error_code = TRANSFER_ALREADY_STARTED
    consumed_message = "Transfer cannot be cancelled - already in progress"
    success_message = "Transfer cancellation processed successfully"
    partial_message = "Transfer cancelled with processing fee"
    estimated_refund_time = "3-5 business days"

    def _identifiers(self, product: Product) -> dict[str, Any]:
        return {
            "booking_id": product.metadata.get("booking_reference"),
            "reservation_id": product.metadata.get("reservation_id"),
        }


class DragonPassClient(SimulatedVendorClient):
    """Simulated lounge access vendor."""

    provider = Provider.DRAGONPASS
    id_prefix = "CXL_DP_"
    consumed_error_code = ACCESS_ALREADY_USED
    consumed_message = "Lounge access cannot be cancelled - already used"
    success_message = "Lounge access cancelled successfully"
    partial_message = "Lounge access cancelled with processing fee"
    estimated_refund_time = "5-7 business days"

    def _identifiers(self, product: Product) -> dict[str, Any]:
        return {
            "booking_id": product.metadata.get("access_code"),
            "lounge_id": product.metadata.get("lounge_id"),
        }


@dataclass(frozen=True)
class ProviderStrategy:
    """Provider specific behaviour plugged into the generic cancellation command."""

    provider: Provider
    client: VendorClient
    sub_status_field: str
    blocking_sub_statuses: frozenset
    cancelled_sub_status: Optional[Enum] = None
    restored_sub_status: Optional[Enum] = None

    async def call_vendor(
        self, product: Product, quote: RefundEligibility
    ) -> dict[str, Any]:
        return await self.client.cancel(product, quote)


def build_strategy(
    provider: Provider,
    client: VendorClient,
) -> ProviderStrategy:
    """
    Build the strategy for a provider around a vendor client.

    Only the eSIM provider tracks its sub-status through cancellation; the
    transfer and lounge sub-statuses are left as the vendor reported them.
    """
    tracks_sub_status = provider == Provider.AIRALO
    return ProviderStrategy(
        provider=provider,
        client=client,
        sub_status_field=PROVIDER_SUB_STATUS_FIELD[provider],
        blocking_sub_statuses=PROVIDER_BLOCKING_SUB_STATUSES[provider],
        cancelled_sub_status=SimStatus.CANCELLED if tracks_sub_status else None,
        restored_sub_status=(
            SimStatus.READY_FOR_ACTIVATION if tracks_sub_status else None
        ),
    )


def build_default_strategies(
    settings: Optional[Settings] = None,
    rng: Optional[random.Random] = None,
) -> dict[Provider, ProviderStrategy]:
    """
    Build the provider registry backed by the simulated vendors.

    Args:
        settings: Settings supplying latencies and failure rate
        rng: Shared random source for the simulated vendors

    Returns:
        Mapping of provider to its strategy
    """
    settings = settings or get_settings()
    common = {
        "failure_rate": settings.vendor_failure_rate,
        "retry_after": settings.vendor_retry_after_seconds,
        "rng": rng,
    }
    clients: dict[Provider, VendorClient] = {
        Provider.AIRALO: AiraloClient(
            latency_seconds=settings.airalo_latency_seconds, **common
        ),
        Provider.MOZIO: MozioClient(
            latency_seconds=settings.mozio_latency_seconds, **common
        ),
        Provider.DRAGONPASS: DragonPassClient(
            latency_seconds=settings.dragonpass_latency_seconds, **common
        ),
    }
    return {
        provider: build_strategy(provider, client)
        for provider, client in clients.items()
    }
