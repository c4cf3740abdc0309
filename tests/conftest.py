"""
Pytest configuration and shared test fixtures.

Provides zero-latency settings, a fixed clock, requester identities,
in-memory stores, deterministic provider strategies, and mocked webhook and
notification collaborators shared by the service test suites.
"""

from unittest.mock import AsyncMock

import pytest

from ancillary.core.config import Settings
from ancillary.schemas.orders import Requester
from ancillary.services.cancellations.commands import InMemoryAuditTrail
from ancillary.services.cancellations.providers import build_default_strategies
from ancillary.services.cancellations.repository import InMemoryCancellationStore
from ancillary.services.cancellations.service import CancellationService
from ancillary.services.notifications.service import NotificationService
from ancillary.services.orders.enums import RequesterRole
from ancillary.services.orders.repository import InMemoryOrderStore
from ancillary.services.webhooks.service import WebhookService
from helpers import CUSTOMER_EMAIL, FIXED_NOW


# ============================================================================
# Core Fixtures
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings with every simulated delay and random failure disabled."""
    return Settings(
        vendor_failure_rate=0.0,
        airalo_latency_seconds=0.0,
        mozio_latency_seconds=0.0,
        dragonpass_latency_seconds=0.0,
        webhook_failure_rate=0.0,
        webhook_latency_seconds=0.0,
        bulk_item_delay_seconds=0.0,
        status_resolution_delay_seconds=0.0,
    )


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def customer() -> Requester:
    return Requester(user_id="cust-1", role=RequesterRole.CUSTOMER, email=CUSTOMER_EMAIL)


@pytest.fixture
def admin() -> Requester:
    return Requester(user_id="admin-1", role=RequesterRole.ADMIN, email="ops@arcube.com")


@pytest.fixture
def partner() -> Requester:
    return Requester(user_id="partner-1", role=RequesterRole.PARTNER)


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def cancellation_store() -> InMemoryCancellationStore:
    return InMemoryCancellationStore()


@pytest.fixture
def audit_trail() -> InMemoryAuditTrail:
    return InMemoryAuditTrail()


# ============================================================================
# Collaborator Fixtures
# ============================================================================


@pytest.fixture
def strategies(settings: Settings):
    """Provider registry whose simulated vendors always answer immediately."""
    return build_default_strategies(settings)


@pytest.fixture
def mock_webhook_service() -> AsyncMock:
    service = AsyncMock(spec=WebhookService)
    service.trigger.return_value = []
    return service


@pytest.fixture
def mock_notification_service() -> AsyncMock:
    service = AsyncMock(spec=NotificationService)
    service.send_cancellation_confirmation.return_value = {"status": "sent"}
    service.send_bulk_cancellation_confirmation.return_value = {"status": "sent"}
    return service


@pytest.fixture
def cancellation_service(
    order_store: InMemoryOrderStore,
    cancellation_store: InMemoryCancellationStore,
    mock_webhook_service: AsyncMock,
    mock_notification_service: AsyncMock,
    strategies,
    audit_trail: InMemoryAuditTrail,
    settings: Settings,
    clock,
) -> CancellationService:
    return CancellationService(
        order_store=order_store,
        cancellation_store=cancellation_store,
        webhook_service=mock_webhook_service,
        notification_service=mock_notification_service,
        strategies=strategies,
        audit_sink=audit_trail,
        settings=settings,
        clock=clock,
        sleep=AsyncMock(),
    )
