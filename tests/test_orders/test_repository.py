"""
Test suite for the in-memory order store.
"""

from datetime import timedelta

import pytest

from ancillary.services.orders.enums import ProductStatus, SimStatus
from ancillary.services.orders.repository import (
    DuplicateReferenceError,
    InMemoryOrderStore,
    OrderNotFoundError,
    OrderRepositoryError,
    ProductNotFoundError,
    StatusConflictError,
)
from helpers import CUSTOMER_EMAIL, FIXED_NOW, make_order, make_product


class TestLookups:
    """Test order and product lookups."""

    @pytest.mark.asyncio
    async def test_find_by_reference_normalises_pnr(
        self, order_store: InMemoryOrderStore
    ) -> None:
        order = await order_store.create_order(make_order())

        found = await order_store.find_by_reference(" abc123 ")

        assert found.id == order.id

    @pytest.mark.asyncio
    async def test_find_by_reference_and_contact(
        self, order_store: InMemoryOrderStore
    ) -> None:
        """Test contact lookups require a matching email."""
        await order_store.create_order(make_order())

        assert await order_store.find_by_reference_and_contact(
            "ABC123", CUSTOMER_EMAIL.upper()
        )
        assert (
            await order_store.find_by_reference_and_contact("ABC123", "x@example.com")
            is None
        )

    @pytest.mark.asyncio
    async def test_unknown_lookups_return_none(
        self, order_store: InMemoryOrderStore
    ) -> None:
        assert await order_store.find_by_id("missing") is None
        assert await order_store.find_by_reference("ZZZ999") is None
        assert await order_store.find_product_by_id("missing", "prod-1") is None

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, order_store: InMemoryOrderStore) -> None:
        """Test mutating a read never changes stored state."""
        order = await order_store.create_order(make_order())

        copy = await order_store.find_by_id(order.id)
        copy.products[0].status = ProductStatus.CANCELLED

        stored = await order_store.find_product_by_id(order.id, "prod-1")
        assert stored.status == ProductStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_duplicate_reference_rejected(
        self, order_store: InMemoryOrderStore
    ) -> None:
        await order_store.create_order(make_order())

        with pytest.raises(DuplicateReferenceError):
            await order_store.create_order(make_order())

    @pytest.mark.asyncio
    async def test_list_orders(self, order_store: InMemoryOrderStore) -> None:
        await order_store.create_order(make_order(pnr="AAA111"))
        await order_store.create_order(make_order(pnr="BBB222"))

        orders = await order_store.list_orders()

        assert [order.pnr for order in orders] == ["AAA111", "BBB222"]

    @pytest.mark.asyncio
    async def test_find_by_customer_newest_first(
        self, order_store: InMemoryOrderStore
    ) -> None:
        """Test orders match by customer id or contact email, newest first."""
        older = make_order(pnr="AAA111").model_copy(
            update={"ordered_at": FIXED_NOW - timedelta(days=2)}
        )
        newer = make_order(pnr="BBB222").model_copy(update={"ordered_at": FIXED_NOW})
        guest = make_order(pnr="CCC333", customer_id="guest-9").model_copy(
            update={"ordered_at": FIXED_NOW - timedelta(days=1)}
        )
        other = make_order(pnr="DDD444", customer_id="cust-2", email="other@example.com")
        for order in (older, newer, guest, other):
            await order_store.create_order(order)

        orders = await order_store.find_by_customer(
            customer_id="cust-1", email=CUSTOMER_EMAIL.upper()
        )

        assert [order.pnr for order in orders] == ["BBB222", "CCC333", "AAA111"]

    @pytest.mark.asyncio
    async def test_find_by_customer_without_criteria(
        self, order_store: InMemoryOrderStore
    ) -> None:
        await order_store.create_order(make_order())

        assert await order_store.find_by_customer() == []


class TestCompareAndSet:
    """Test conditional status writes."""

    @pytest.mark.asyncio
    async def test_update_with_expected_status(
        self, order_store: InMemoryOrderStore
    ) -> None:
        order = await order_store.create_order(make_order())

        updated = await order_store.update_product_status(
            order.id,
            "prod-1",
            ProductStatus.CANCELLED,
            expected_status=ProductStatus.CONFIRMED,
        )

        assert updated.get_product("prod-1").status == ProductStatus.CANCELLED
        assert updated.updated_at >= order.updated_at

    @pytest.mark.asyncio
    async def test_unexpected_status_conflicts(
        self, order_store: InMemoryOrderStore
    ) -> None:
        """Test a write expecting a stale status is refused."""
        order = await order_store.create_order(make_order())

        with pytest.raises(StatusConflictError) as exc_info:
            await order_store.update_product_status(
                order.id,
                "prod-1",
                ProductStatus.SUCCESS,
                expected_status=ProductStatus.PENDING,
            )

        assert exc_info.value.actual == ProductStatus.CONFIRMED
        stored = await order_store.find_product_by_id(order.id, "prod-1")
        assert stored.status == ProductStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_unconditional_update(self, order_store: InMemoryOrderStore) -> None:
        order = await order_store.create_order(make_order())

        updated = await order_store.update_product_status(
            order.id, "prod-1", ProductStatus.CANCELLED
        )

        assert updated.get_product("prod-1").status == ProductStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_missing_order_and_product(
        self, order_store: InMemoryOrderStore
    ) -> None:
        order = await order_store.create_order(make_order())

        with pytest.raises(OrderNotFoundError):
            await order_store.update_product_status(
                "missing", "prod-1", ProductStatus.CANCELLED
            )
        with pytest.raises(ProductNotFoundError):
            await order_store.update_product_status(
                order.id, "missing", ProductStatus.CANCELLED
            )

    @pytest.mark.asyncio
    async def test_sub_status_update(self, order_store: InMemoryOrderStore) -> None:
        order = await order_store.create_order(make_order())

        updated = await order_store.update_provider_sub_status(
            order.id,
            "prod-1",
            SimStatus.ACTIVE,
            expected_sub_status=SimStatus.READY_FOR_ACTIVATION,
            activated_at=FIXED_NOW,
        )

        product = updated.get_product("prod-1")
        assert product.sim_status == SimStatus.ACTIVE
        assert product.activated_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_sub_status_conflict(self, order_store: InMemoryOrderStore) -> None:
        order = await order_store.create_order(make_order())

        with pytest.raises(StatusConflictError):
            await order_store.update_provider_sub_status(
                order.id,
                "prod-1",
                SimStatus.CANCELLED,
                expected_sub_status=SimStatus.ACTIVE,
            )

    @pytest.mark.asyncio
    async def test_sub_status_for_unknown_provider(
        self, order_store: InMemoryOrderStore
    ) -> None:
        order = await order_store.create_order(
            make_order([make_product(provider="viator")])
        )

        with pytest.raises(OrderRepositoryError, match="no sub-status"):
            await order_store.update_provider_sub_status(
                order.id, "prod-1", SimStatus.CANCELLED
            )
