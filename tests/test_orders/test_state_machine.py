"""
Test suite for ProductStateMachine.

Tests cover product status transitions, provider sub-status transitions with
their guards, compare-and-set persistence, and the transition tables.
"""

import pytest

from ancillary.services.orders.enums import (
    AccessStatus,
    ProductStatus,
    Provider,
    SimStatus,
    TransferStatus,
    get_allowed_product_transitions,
    parse_sub_status,
    validate_product_status_transition,
    validate_sub_status_transition,
)
from ancillary.services.orders.repository import InMemoryOrderStore, StatusConflictError
from ancillary.services.orders.state_machine import (
    ProductStateMachine,
    StateTransitionError,
)
from helpers import make_order, make_product


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def state_machine(order_store: InMemoryOrderStore) -> ProductStateMachine:
    """Create ProductStateMachine backed by the in-memory store.

    Args:
        order_store: In-memory order store

    Returns:
        ProductStateMachine instance for testing
    """
    return ProductStateMachine(order_store)


# ============================================================================
# Transition Table Tests
# ============================================================================


class TestTransitionTables:
    """Test the product and sub-status transition tables."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (ProductStatus.PENDING, ProductStatus.SUCCESS),
            (ProductStatus.PENDING, ProductStatus.FAILED),
            (ProductStatus.PENDING, ProductStatus.DENIED),
            (ProductStatus.PENDING, ProductStatus.CANCELLED),
            (ProductStatus.SUCCESS, ProductStatus.CONFIRMED),
            (ProductStatus.SUCCESS, ProductStatus.CANCELLED),
            (ProductStatus.CONFIRMED, ProductStatus.CANCELLED),
        ],
    )
    def test_valid_product_transitions(
        self, current: ProductStatus, target: ProductStatus
    ) -> None:
        """Test valid product status transitions are allowed."""
        assert validate_product_status_transition(current, target) is True

    @pytest.mark.parametrize(
        "current",
        [ProductStatus.CANCELLED, ProductStatus.FAILED, ProductStatus.DENIED],
    )
    def test_terminal_statuses_have_no_exits(self, current: ProductStatus) -> None:
        """Test terminal statuses cannot transition."""
        assert current.is_terminal() is True
        assert get_allowed_product_transitions(current) == set()

    def test_confirmed_cannot_return_to_pending(self) -> None:
        assert (
            validate_product_status_transition(
                ProductStatus.CONFIRMED, ProductStatus.PENDING
            )
            is False
        )

    def test_allowed_transitions_returns_copy(self) -> None:
        allowed = get_allowed_product_transitions(ProductStatus.PENDING)
        allowed.clear()

        assert get_allowed_product_transitions(ProductStatus.PENDING)

    def test_active_esim_has_no_exit(self) -> None:
        """Test an active eSIM can no longer be cancelled."""
        assert (
            validate_sub_status_transition(
                Provider.AIRALO, SimStatus.ACTIVE, SimStatus.CANCELLED
            )
            is False
        )

    def test_transfer_progression(self) -> None:
        assert validate_sub_status_transition(
            Provider.MOZIO, TransferStatus.CONFIRMED, TransferStatus.IN_PROGRESS
        )
        assert validate_sub_status_transition(
            Provider.MOZIO, TransferStatus.IN_PROGRESS, TransferStatus.COMPLETED
        )
        assert not validate_sub_status_transition(
            Provider.MOZIO, TransferStatus.IN_PROGRESS, TransferStatus.CANCELLED
        )

    def test_parse_sub_status(self) -> None:
        assert parse_sub_status(Provider.DRAGONPASS, " USED ") == AccessStatus.USED

        with pytest.raises(ValueError, match="Invalid dragonpass sub-status"):
            parse_sub_status(Provider.DRAGONPASS, "active")

    def test_product_status_from_string(self) -> None:
        assert ProductStatus.from_string("Confirmed") == ProductStatus.CONFIRMED

        with pytest.raises(ValueError, match="Valid values are"):
            ProductStatus.from_string("shipped")

    def test_provider_lookup(self) -> None:
        assert Provider.lookup("DragonPass") == Provider.DRAGONPASS
        assert Provider.lookup("viator") is None
        assert Provider.MOZIO.product_category == "transfer"


# ============================================================================
# Product Transition Tests
# ============================================================================


class TestProductTransitions:
    """Test applying product status transitions."""

    @pytest.mark.asyncio
    async def test_apply_transition(
        self, state_machine: ProductStateMachine, order_store: InMemoryOrderStore
    ) -> None:
        """Test a valid transition is persisted."""
        order = await order_store.create_order(
            make_order([make_product(status=ProductStatus.PENDING)])
        )

        updated = await state_machine.apply_transition(
            order.id, order.products[0], ProductStatus.SUCCESS, user_id="partner-1"
        )

        assert updated.get_product("prod-1").status == ProductStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_invalid_transition_raises(
        self, state_machine: ProductStateMachine, order_store: InMemoryOrderStore
    ) -> None:
        """Test invalid transitions raise with allowed transitions in context."""
        order = await order_store.create_order(
            make_order([make_product(status=ProductStatus.CANCELLED)])
        )

        with pytest.raises(StateTransitionError) as exc_info:
            await state_machine.apply_transition(
                order.id, order.products[0], ProductStatus.CONFIRMED
            )

        error = exc_info.value
        assert error.current_state == ProductStatus.CANCELLED
        assert error.target_state == ProductStatus.CONFIRMED
        assert error.context["allowed_transitions"] == []

    @pytest.mark.asyncio
    async def test_stale_read_conflicts(
        self, state_machine: ProductStateMachine, order_store: InMemoryOrderStore
    ) -> None:
        """Test a transition validated against a stale status is rejected."""
        order = await order_store.create_order(
            make_order([make_product(status=ProductStatus.PENDING)])
        )
        stale = order.products[0]
        await state_machine.apply_transition(order.id, stale, ProductStatus.CANCELLED)

        with pytest.raises(StatusConflictError) as exc_info:
            await state_machine.apply_transition(order.id, stale, ProductStatus.SUCCESS)

        assert exc_info.value.expected == ProductStatus.PENDING
        assert exc_info.value.actual == ProductStatus.CANCELLED
        stored = await order_store.find_product_by_id(order.id, "prod-1")
        assert stored.status == ProductStatus.CANCELLED

    def test_get_allowed_transitions(self, state_machine: ProductStateMachine) -> None:
        product = make_product(status=ProductStatus.SUCCESS)

        assert state_machine.get_allowed_transitions(product) == {
            ProductStatus.CONFIRMED,
            ProductStatus.CANCELLED,
        }


# ============================================================================
# Sub-status Transition Tests
# ============================================================================


class TestSubStatusTransitions:
    """Test provider sub-status transitions and guards."""

    @pytest.mark.asyncio
    async def test_activate_esim(
        self, state_machine: ProductStateMachine, order_store: InMemoryOrderStore
    ) -> None:
        order = await order_store.create_order(make_order())

        updated = await state_machine.apply_sub_status_transition(
            order.id, order.products[0], SimStatus.ACTIVE
        )

        assert updated.get_product("prod-1").sim_status == SimStatus.ACTIVE

    @pytest.mark.parametrize(
        "status", [ProductStatus.PENDING, ProductStatus.CANCELLED, ProductStatus.FAILED]
    )
    def test_consumption_guard_requires_live_product(
        self, state_machine: ProductStateMachine, status: ProductStatus
    ) -> None:
        """Test a product that is not booked cannot be consumed."""
        product = make_product(status=status)

        with pytest.raises(StateTransitionError) as exc_info:
            state_machine.validate_sub_status_transition(product, SimStatus.ACTIVE)

        assert exc_info.value.context["guard_failed"] is True

    def test_cancel_sub_status_has_no_guard(
        self, state_machine: ProductStateMachine
    ) -> None:
        product = make_product(status=ProductStatus.CANCELLED)

        assert state_machine.validate_sub_status_transition(product, SimStatus.CANCELLED)

    def test_lounge_access_used(self, state_machine: ProductStateMachine) -> None:
        product = make_product(provider="dragonpass")

        assert state_machine.validate_sub_status_transition(product, AccessStatus.USED)

    def test_invalid_sub_status_transition(
        self, state_machine: ProductStateMachine
    ) -> None:
        product = make_product(sub_status=SimStatus.ACTIVE)

        with pytest.raises(StateTransitionError, match="Invalid airalo transition"):
            state_machine.validate_sub_status_transition(product, SimStatus.CANCELLED)

    def test_unknown_provider_has_no_sub_status(
        self, state_machine: ProductStateMachine
    ) -> None:
        product = make_product(provider="viator")

        with pytest.raises(StateTransitionError, match="no provider sub-status"):
            state_machine.validate_sub_status_transition(product, SimStatus.CANCELLED)

    @pytest.mark.asyncio
    async def test_stale_sub_status_conflicts(
        self, state_machine: ProductStateMachine, order_store: InMemoryOrderStore
    ) -> None:
        order = await order_store.create_order(make_order())
        stale = order.products[0]
        await state_machine.apply_sub_status_transition(order.id, stale, SimStatus.ACTIVE)

        with pytest.raises(StatusConflictError):
            await state_machine.apply_sub_status_transition(
                order.id, stale, SimStatus.CANCELLED
            )
