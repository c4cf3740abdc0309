"""
Refund policy evaluation.

``evaluate_refund`` is a pure function of a product and the current time. The
orchestrator runs it before building a command and the command runs it again
before touching the vendor, so both always agree on eligibility and on the
refund percentage.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ancillary.core.logging import get_logger
from ancillary.schemas.cancellations import RefundEligibility
from ancillary.schemas.orders import CancellationWindow, Product
from ancillary.services.cancellations.enums import IneligibilityReason
from ancillary.services.orders.enums import (
    PROVIDER_BLOCKING_SUB_STATUSES,
    CancelCondition,
    ProductStatus,
    Provider,
)

logger = get_logger(__name__)

CENTS = Decimal("0.01")

TERMINAL_STATUS_REASONS: dict[ProductStatus, tuple[IneligibilityReason, str]] = {
    ProductStatus.CANCELLED: (
        IneligibilityReason.ALREADY_CANCELLED,
        "Product has already been cancelled",
    ),
    ProductStatus.FAILED: (
        IneligibilityReason.BOOKING_FAILED,
        "Product booking failed, nothing to refund",
    ),
    ProductStatus.DENIED: (
        IneligibilityReason.BOOKING_DENIED,
        "Product booking was denied, nothing to refund",
    ),
}

CONSUMED_REASONS: dict[Provider, str] = {
    Provider.AIRALO: "eSIM has already been activated and cannot be refunded",
    Provider.MOZIO: "Transfer is already in progress or completed",
    Provider.DRAGONPASS: "Lounge access has already been used or has expired",
}

# Customer facing wording per ineligibility reason
USER_FACING_MESSAGES: dict[IneligibilityReason, str] = {
    IneligibilityReason.ALREADY_CANCELLED: "This product has already been cancelled.",
    IneligibilityReason.BOOKING_FAILED: (
        "This booking failed or was denied, so there is nothing to cancel."
    ),
    IneligibilityReason.BOOKING_DENIED: (
        "This booking failed or was denied, so there is nothing to cancel."
    ),
    IneligibilityReason.NOT_CANCELLABLE: "This product cannot be cancelled.",
    IneligibilityReason.WINDOW_EXPIRED: (
        "The cancellation window for this product has expired."
    ),
}


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def elapsed_hours(product: Product, now: datetime) -> float:
    """Hours elapsed from the product's service reference point to ``now``."""
    delta = _as_utc(now) - _as_utc(product.service_datetime)
    return delta.total_seconds() / 3600


def calculate_amounts(price: Decimal, percentage: int) -> tuple[Decimal, Decimal]:
    """
    Split a price into refund and fee for a refund percentage.

    Returns:
        Tuple of (refund_amount, cancellation_fee), both quantized to cents
    """
    refund = (price * Decimal(percentage) / Decimal(100)).quantize(
        CENTS, rounding=ROUND_HALF_UP
    )
    fee = (price - refund).quantize(CENTS, rounding=ROUND_HALF_UP)
    return refund, fee


def match_window(
    windows: list[CancellationWindow], hours: float
) -> Optional[CancellationWindow]:
    """First window, by ascending threshold, whose threshold covers ``hours``."""
    for window in sorted(windows, key=lambda w: w.threshold_hours):
        if window.threshold_hours >= hours:
            return window
    return None


def _reject(
    reason_code: IneligibilityReason,
    reason: str,
    hours: Optional[float] = None,
) -> RefundEligibility:
    return RefundEligibility(
        can_cancel=False,
        refund_percentage=0,
        reason=reason,
        reason_code=reason_code,
        elapsed_hours=hours,
    )


def evaluate_refund(
    product: Product,
    now: Optional[datetime] = None,
) -> RefundEligibility:
    """
    Decide whether a product may be cancelled and what it refunds.

    Checks run in order: terminal product status, the policy's can_cancel
    flag, the provider consumption guard, then the refund windows. Unknown
    providers skip the consumption guard.

    Args:
        product: Product to evaluate
        now: Evaluation time (defaults to the current UTC time)

    Returns:
        RefundEligibility with the chosen percentage and amounts, or the
        reason the product is ineligible
    """
    now = now or datetime.now(timezone.utc)
    policy = product.cancellation_policy

    terminal = TERMINAL_STATUS_REASONS.get(product.status)
    if terminal is not None:
        reason_code, reason = terminal
        return _reject(reason_code, reason)

    if not policy.can_cancel:
        return _reject(
            IneligibilityReason.NOT_CANCELLABLE,
            "Cancellation policy does not allow cancellation",
        )

    provider = product.provider_enum
    if provider is not None:
        blocking = PROVIDER_BLOCKING_SUB_STATUSES[provider]
        if product.sub_status in blocking:
            return _reject(
                IneligibilityReason.ALREADY_CONSUMED,
                CONSUMED_REASONS[provider],
            )

    hours = elapsed_hours(product, now)

    if policy.cancel_condition == CancelCondition.BEFORE_CONSUMPTION:
        window = match_window(policy.windows, hours)
        if window is None or window.refund_percentage == 0:
            return _reject(
                IneligibilityReason.WINDOW_EXPIRED,
                "Cancellation window has expired",
                hours,
            )
        percentage = window.refund_percentage
    else:
        percentage = max(policy.declared_percentages, default=100)

    refund, fee = calculate_amounts(product.price.amount, percentage)

    logger.debug(
        "Refund evaluated",
        product_id=product.id,
        provider=product.provider,
        elapsed_hours=round(hours, 2),
        refund_percentage=percentage,
    )

    return RefundEligibility(
        can_cancel=True,
        refund_percentage=percentage,
        refund_amount=refund,
        cancellation_fee=fee,
        elapsed_hours=hours,
    )


def user_facing_message(eligibility: RefundEligibility) -> str:
    """Customer wording for an ineligible evaluation."""
    if eligibility.reason_code == IneligibilityReason.ALREADY_CONSUMED:
        return f"{eligibility.reason}. Products already activated or used cannot be cancelled."
    if eligibility.reason_code in USER_FACING_MESSAGES:
        return USER_FACING_MESSAGES[eligibility.reason_code]
    return eligibility.reason or "This product cannot be cancelled."
