"""Product state machine implementation with transition validation.

This module implements the ProductStateMachine class for managing product
lifecycle and provider sub-status transitions with validation, guards, and
compare-and-set persistence through the order store.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from ancillary.core.logging import get_logger
from ancillary.schemas.orders import Order, Product
from ancillary.services.orders.enums import (
    SUB_STATUS_TRANSITIONS,
    AccessStatus,
    ProductStatus,
    SimStatus,
    TransferStatus,
    get_allowed_product_transitions,
    validate_product_status_transition,
    validate_sub_status_transition,
)
from ancillary.services.orders.repository import OrderStore

logger = get_logger(__name__)

LIVE_PRODUCT_STATUSES = {ProductStatus.SUCCESS, ProductStatus.CONFIRMED}


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: Any,
        target_state: Any,
        **context: Any
    ):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


class ProductStateMachine:
    """State machine for product lifecycle and provider sub-status transitions.

    Validates transitions against the transition tables, runs guards for
    consumption transitions, and persists through the order store using the
    validated prior status as the compare-and-set expectation.
    """

    def __init__(self, store: OrderStore):
        """Initialize state machine with an order store.

        Args:
            store: Order store used for persistence
        """
        self.store = store
        self._sub_status_guards: Dict[
            tuple[Enum, Enum],
            Callable[[Product], bool]
        ] = self._initialize_sub_status_guards()

    def _initialize_sub_status_guards(
        self
    ) -> Dict[tuple[Enum, Enum], Callable[[Product], bool]]:
        """Initialize sub-status guard functions.

        Returns:
            Dictionary mapping sub-status transitions to guard functions
        """
        return {
            (SimStatus.READY_FOR_ACTIVATION, SimStatus.ACTIVE): (
                self._guard_product_live
            ),
            (TransferStatus.CONFIRMED, TransferStatus.IN_PROGRESS): (
                self._guard_product_live
            ),
            (AccessStatus.CONFIRMED, AccessStatus.USED): (
                self._guard_product_live
            ),
        }

    def validate_transition(
        self,
        product: Product,
        target_status: ProductStatus,
    ) -> bool:
        """Validate if transition to target status is allowed.

        Args:
            product: Product to validate
            target_status: Desired target status

        Returns:
            True if transition is valid

        Raises:
            StateTransitionError: If transition is invalid
        """
        current_status = product.status

        if not validate_product_status_transition(current_status, target_status):
            allowed = get_allowed_product_transitions(current_status)
            raise StateTransitionError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                product_id=product.id,
                allowed_transitions=sorted(s.value for s in allowed),
            )

        return True

    async def apply_transition(
        self,
        order_id: str,
        product: Product,
        target_status: ProductStatus,
        user_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Order:
        """Apply a product status transition.

        The write only succeeds if the stored status still equals the status
        the transition was validated against.

        Args:
            order_id: Order owning the product
            product: Product as last read
            target_status: Target status to transition to
            user_id: User initiating the transition
            reason: Optional reason for transition

        Returns:
            Updated order

        Raises:
            StateTransitionError: If transition is invalid
            StatusConflictError: If the product changed since it was read
        """
        self.validate_transition(product, target_status)

        order = await self.store.update_product_status(
            order_id,
            product.id,
            target_status,
            expected_status=product.status,
        )

        logger.info(
            "Product transition applied",
            order_id=order_id,
            product_id=product.id,
            transition=f"{product.status.value}->{target_status.value}",
            user_id=user_id,
            reason=reason,
        )
        return order

    def validate_sub_status_transition(
        self,
        product: Product,
        target: Enum,
    ) -> bool:
        """Validate a provider sub-status transition.

        Args:
            product: Product to validate
            target: Desired provider sub-status

        Returns:
            True if transition is valid

        Raises:
            StateTransitionError: If provider is unknown, the transition is
                not in the provider table, or its guard fails
        """
        provider = product.provider_enum
        current = product.sub_status

        if provider is None or current is None:
            raise StateTransitionError(
                f"Product {product.id} has no provider sub-status",
                current_state=current,
                target_state=target,
                provider=product.provider,
            )

        if not validate_sub_status_transition(provider, current, target):
            allowed = SUB_STATUS_TRANSITIONS[provider].get(current, set())
            raise StateTransitionError(
                f"Invalid {provider.value} transition from {current.value} to "
                f"{target.value}",
                current_state=current,
                target_state=target,
                product_id=product.id,
                allowed_transitions=sorted(s.value for s in allowed),
            )

        guard = self._sub_status_guards.get((current, target))
        if guard is not None and not guard(product):
            raise StateTransitionError(
                f"Transition guard failed for {current.value} -> {target.value}",
                current_state=current,
                target_state=target,
                product_id=product.id,
                product_status=product.status.value,
                guard_failed=True,
            )

        return True

    async def apply_sub_status_transition(
        self,
        order_id: str,
        product: Product,
        target: Enum,
        activated_at: Optional[datetime] = None,
    ) -> Order:
        """Apply a provider sub-status transition with compare-and-set.

        Raises:
            StateTransitionError: If transition is invalid
            StatusConflictError: If the sub-status changed since it was read
        """
        self.validate_sub_status_transition(product, target)

        order = await self.store.update_provider_sub_status(
            order_id,
            product.id,
            target,
            expected_sub_status=product.sub_status,
            activated_at=activated_at,
        )

        logger.info(
            "Product sub-status transition applied",
            order_id=order_id,
            product_id=product.id,
            transition=f"{product.sub_status.value}->{target.value}",
        )
        return order

    def get_allowed_transitions(self, product: Product) -> Set[ProductStatus]:
        """Get allowed transitions from current product status."""
        return get_allowed_product_transitions(product.status)

    def _guard_product_live(self, product: Product) -> bool:
        """Consumption requires a booked, non-terminal product."""
        is_live = product.status in LIVE_PRODUCT_STATUSES

        logger.debug(
            "Product live guard check",
            product_id=product.id,
            status=product.status.value,
            is_live=is_live,
        )

        return is_live
