"""
Test suite for OrderService.

Tests cover order placement, automatic resolution of pending products,
eSIM activation, partner status updates with their webhook events, and the
status summary.
"""

import asyncio
import random
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from ancillary.core.config import Settings
from ancillary.schemas.orders import (
    CustomerContact,
    OrderCreateRequest,
    OrderIdentifier,
    Price,
    ProductCreateRequest,
    Requester,
)
from ancillary.services.orders.enums import (
    AccessStatus,
    ProductStatus,
    RequesterRole,
    SimStatus,
    TransferStatus,
)
from ancillary.services.orders.repository import InMemoryOrderStore
from ancillary.services.orders.service import (
    OrderAccessError,
    OrderProcessingError,
    OrderService,
)
from helpers import FIXED_NOW, make_order, make_product, make_policy, triggered_events

PNR = OrderIdentifier(pnr="ABC123")


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def order_service(
    order_store: InMemoryOrderStore,
    mock_webhook_service: AsyncMock,
    settings: Settings,
    clock,
):
    """OrderService whose automatic resolution never fires during a test."""
    service = OrderService(
        order_store,
        webhook_service=mock_webhook_service,
        settings=settings.model_copy(update={"status_resolution_delay_seconds": 3600}),
        outcome_picker=lambda product: ProductStatus.SUCCESS,
        clock=clock,
    )
    yield service
    await service.shutdown()


@pytest.fixture
def create_request() -> OrderCreateRequest:
    def line(product_id: str, provider: str, amount: str) -> ProductCreateRequest:
        return ProductCreateRequest(
            id=product_id,
            title=f"{provider} booking",
            provider=provider,
            price=Price(amount=Decimal(amount)),
            cancellation_policy=make_policy(),
            service_datetime=FIXED_NOW + timedelta(days=3),
        )

    return OrderCreateRequest(
        customer=CustomerContact(
            email="Jane.Doe@Example.com", first_name="Jane", last_name="Doe"
        ),
        products=[
            line("esim-1", "airalo", "15.00"),
            line("transfer-1", "mozio", "85.00"),
            line("lounge-1", "dragonpass", "40.00"),
        ],
        transaction_id="TXN-42",
    )


# ============================================================================
# Order Placement Tests
# ============================================================================


class TestCreateOrder:
    """Test order placement."""

    @pytest.mark.asyncio
    async def test_products_start_pending(
        self,
        order_service: OrderService,
        create_request: OrderCreateRequest,
        customer: Requester,
    ) -> None:
        """Test products start pending with their provider's initial sub-status."""
        order = await order_service.create_order(create_request, customer)

        assert len(order.pnr) == 6
        assert order.pnr.isalnum() and order.pnr.isupper()
        assert order.transaction_id == "TXN-42"
        assert order.customer_id == "cust-1"
        assert order.customer.email == "jane.doe@example.com"
        assert all(p.status == ProductStatus.PENDING for p in order.products)

        esim, transfer, lounge = order.products
        assert esim.sim_status == SimStatus.READY_FOR_ACTIVATION
        assert transfer.transfer_status == TransferStatus.CONFIRMED
        assert lounge.access_status == AccessStatus.CONFIRMED
        assert esim.transfer_status is None

    @pytest.mark.asyncio
    async def test_resolution_scheduled(
        self,
        order_service: OrderService,
        create_request: OrderCreateRequest,
        customer: Requester,
    ) -> None:
        await order_service.create_order(create_request, customer)

        assert len(order_service._resolution_tasks) == 1

    @pytest.mark.asyncio
    async def test_get_order_is_scoped(
        self,
        order_service: OrderService,
        create_request: OrderCreateRequest,
        customer: Requester,
    ) -> None:
        order = await order_service.create_order(create_request, customer)

        found = await order_service.get_order(OrderIdentifier(pnr=order.pnr), customer)

        assert found.id == order.id


class TestListCustomerOrders:
    """Test the customer's own order listing."""

    @pytest.mark.asyncio
    async def test_lists_only_own_orders(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        customer: Requester,
    ) -> None:
        await order_store.create_order(
            make_order(pnr="AAA111").model_copy(
                update={"ordered_at": FIXED_NOW - timedelta(days=1)}
            )
        )
        await order_store.create_order(
            make_order(pnr="BBB222").model_copy(update={"ordered_at": FIXED_NOW})
        )
        await order_store.create_order(
            make_order(pnr="ZZZ999", customer_id="cust-2", email="other@example.com")
        )

        orders = await order_service.list_customer_orders(customer)

        assert [order.pnr for order in orders] == ["BBB222", "AAA111"]

    @pytest.mark.asyncio
    async def test_no_orders(
        self, order_service: OrderService, order_store: InMemoryOrderStore
    ) -> None:
        await order_store.create_order(make_order())
        stranger = Requester(
            user_id="cust-7", role=RequesterRole.CUSTOMER, email="stranger@example.com"
        )

        assert await order_service.list_customer_orders(stranger) == []

    @pytest.mark.asyncio
    async def test_non_customer_rejected(
        self, order_service: OrderService, admin: Requester
    ) -> None:
        with pytest.raises(OrderAccessError):
            await order_service.list_customer_orders(admin)


# ============================================================================
# Automatic Resolution Tests
# ============================================================================


class TestAutomaticResolution:
    """Test resolution of pending products."""

    @pytest.mark.asyncio
    async def test_resolves_pending_products(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        mock_webhook_service: AsyncMock,
    ) -> None:
        order = await order_store.create_order(
            make_order(
                [
                    make_product("prod-1", status=ProductStatus.PENDING),
                    make_product("prod-2", status=ProductStatus.CONFIRMED),
                ]
            )
        )

        resolved = await order_service.resolve_pending_products(order.id)

        assert [p.status for p in resolved.products] == [
            ProductStatus.SUCCESS,
            ProductStatus.CONFIRMED,
        ]
        mock_webhook_service.trigger.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_outcome_emits_order_failed(
        self,
        order_store: InMemoryOrderStore,
        mock_webhook_service: AsyncMock,
        settings: Settings,
    ) -> None:
        """Test failed and denied outcomes are announced."""
        outcomes = iter([ProductStatus.FAILED, ProductStatus.DENIED])
        service = OrderService(
            order_store,
            webhook_service=mock_webhook_service,
            settings=settings,
            outcome_picker=lambda product: next(outcomes),
        )
        order = await order_store.create_order(
            make_order(
                [
                    make_product("prod-1", status=ProductStatus.PENDING),
                    make_product("prod-2", status=ProductStatus.PENDING),
                ]
            )
        )

        await service.resolve_pending_products(order.id)

        assert triggered_events(mock_webhook_service) == ["order.failed", "order.failed"]
        data = mock_webhook_service.trigger.await_args.args[1]
        assert data["status"] == "denied"
        assert data["updated_by"] == "automatic"

    @pytest.mark.asyncio
    async def test_concurrent_change_is_skipped(
        self, order_service: OrderService, order_store: InMemoryOrderStore
    ) -> None:
        """Test a product changed after the read is left untouched."""
        order = await order_store.create_order(
            make_order(
                [
                    make_product("prod-1", status=ProductStatus.PENDING),
                    make_product("prod-2", status=ProductStatus.PENDING),
                ]
            )
        )
        stale = await order_store.find_by_id(order.id)
        await order_store.update_product_status(
            order.id, "prod-1", ProductStatus.CANCELLED
        )

        with patch.object(order_store, "find_by_id", AsyncMock(return_value=stale)):
            await order_service.resolve_pending_products(order.id)

        first = await order_store.find_product_by_id(order.id, "prod-1")
        second = await order_store.find_product_by_id(order.id, "prod-2")
        assert first.status == ProductStatus.CANCELLED
        assert second.status == ProductStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_vanished_order(self, order_service: OrderService) -> None:
        assert await order_service.resolve_pending_products("missing") is None

    @pytest.mark.asyncio
    async def test_scheduled_resolution_runs(
        self,
        order_store: InMemoryOrderStore,
        settings: Settings,
        create_request: OrderCreateRequest,
        customer: Requester,
    ) -> None:
        """Test the timer resolves pending products once the delay elapses."""
        service = OrderService(
            order_store,
            settings=settings,
            outcome_picker=lambda product: ProductStatus.SUCCESS,
        )
        order = await service.create_order(create_request, customer)

        await asyncio.gather(*list(service._resolution_tasks))

        stored = await order_store.find_by_id(order.id)
        assert all(p.status == ProductStatus.SUCCESS for p in stored.products)

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_resolution(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        create_request: OrderCreateRequest,
        customer: Requester,
    ) -> None:
        order = await order_service.create_order(create_request, customer)

        await order_service.shutdown()

        assert not order_service._resolution_tasks
        stored = await order_store.find_by_id(order.id)
        assert all(p.status == ProductStatus.PENDING for p in stored.products)

    def test_weighted_outcome(self, order_store: InMemoryOrderStore) -> None:
        """Test the default picker draws from the configured weights."""
        service = OrderService(
            order_store,
            settings=Settings(status_resolution_weights={"denied": 1.0}),
            rng=random.Random(7),
        )

        assert service.outcome_picker(make_product()) == ProductStatus.DENIED


# ============================================================================
# eSIM Activation Tests
# ============================================================================


class TestActivateEsim:
    """Test eSIM activation."""

    @pytest.mark.asyncio
    async def test_activate(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        customer: Requester,
    ) -> None:
        await order_store.create_order(make_order())

        product = await order_service.activate_esim(PNR, "prod-1", customer)

        assert product.sim_status == SimStatus.ACTIVE
        assert product.activated_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_activate_non_esim(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        customer: Requester,
    ) -> None:
        await order_store.create_order(make_order([make_product(provider="mozio")]))

        with pytest.raises(OrderProcessingError, match="Only eSIM"):
            await order_service.activate_esim(PNR, "prod-1", customer)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,sim_status",
        [
            (ProductStatus.CONFIRMED, SimStatus.ACTIVE),
            (ProductStatus.CANCELLED, SimStatus.CANCELLED),
            (ProductStatus.PENDING, SimStatus.READY_FOR_ACTIVATION),
        ],
    )
    async def test_activation_rejected(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        customer: Requester,
        status: ProductStatus,
        sim_status: SimStatus,
    ) -> None:
        """Test already active, cancelled and unbooked eSIMs cannot be activated."""
        await order_store.create_order(
            make_order([make_product(status=status, sub_status=sim_status)])
        )

        with pytest.raises(OrderProcessingError, match="cannot be activated"):
            await order_service.activate_esim(PNR, "prod-1", customer)


# ============================================================================
# Partner Update Tests
# ============================================================================


class TestUpdateProductStatus:
    """Test manual status updates."""

    @pytest.mark.asyncio
    async def test_partner_cancel_emits_event(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        partner: Requester,
        mock_webhook_service: AsyncMock,
    ) -> None:
        await order_store.create_order(make_order())

        updated = await order_service.update_product_status(
            PNR, "prod-1", ProductStatus.CANCELLED, partner, reason="No-show"
        )

        assert updated.get_product("prod-1").status == ProductStatus.CANCELLED
        assert triggered_events(mock_webhook_service) == ["order.partner_cancelled"]
        data = mock_webhook_service.trigger.await_args.args[1]
        assert data["updated_by"] == "partner-1"
        assert data["reason"] == "No-show"

    @pytest.mark.asyncio
    async def test_partner_marks_failed(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        partner: Requester,
        mock_webhook_service: AsyncMock,
    ) -> None:
        await order_store.create_order(
            make_order([make_product(status=ProductStatus.PENDING)])
        )

        await order_service.update_product_status(
            PNR, "prod-1", ProductStatus.FAILED, partner
        )

        assert triggered_events(mock_webhook_service) == ["order.failed"]

    @pytest.mark.asyncio
    async def test_confirm_emits_nothing(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        admin: Requester,
        mock_webhook_service: AsyncMock,
    ) -> None:
        await order_store.create_order(
            make_order([make_product(status=ProductStatus.SUCCESS)])
        )

        await order_service.update_product_status(
            PNR, "prod-1", ProductStatus.CONFIRMED, admin
        )

        mock_webhook_service.trigger.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_customer_rejected(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        customer: Requester,
    ) -> None:
        await order_store.create_order(make_order())

        with pytest.raises(OrderAccessError):
            await order_service.update_product_status(
                PNR, "prod-1", ProductStatus.CANCELLED, customer
            )

    @pytest.mark.asyncio
    async def test_invalid_transition(
        self,
        order_service: OrderService,
        order_store: InMemoryOrderStore,
        partner: Requester,
    ) -> None:
        """Test invalid transitions report the allowed ones."""
        await order_store.create_order(make_order())

        with pytest.raises(OrderProcessingError) as exc_info:
            await order_service.update_product_status(
                PNR, "prod-1", ProductStatus.PENDING, partner
            )

        assert exc_info.value.context["allowed_transitions"] == ["cancelled"]


# ============================================================================
# Summary Tests
# ============================================================================


class TestStatusSummary:
    """Test the per-status summary."""

    @pytest.mark.asyncio
    async def test_summary(
        self, order_service: OrderService, order_store: InMemoryOrderStore
    ) -> None:
        await order_store.create_order(
            make_order(
                [
                    make_product("prod-1", price="85.00"),
                    make_product("prod-2", price="15.00"),
                    make_product("prod-3", status=ProductStatus.CANCELLED, price="40.00"),
                ]
            )
        )

        summary = await order_service.get_status_summary()

        assert set(summary) == {status.value for status in ProductStatus}
        assert summary["confirmed"] == {"count": 2, "amount": Decimal("100.00")}
        assert summary["cancelled"] == {"count": 1, "amount": Decimal("40.00")}
        assert summary["pending"]["count"] == 0
