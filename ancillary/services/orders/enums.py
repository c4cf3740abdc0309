"""Product status, provider, and sub-status enums for the ancillary order domain.

This module defines the core enums for order line items including the product
status lifecycle, the supported providers, and the provider-specific
sub-statuses (eSIM activation, transfer progress, lounge access) with their
state transition validation rules.
"""

from enum import Enum
from typing import Dict, Optional, Set, Type


class ProductStatus(str, Enum):
    """Product (order line item) lifecycle status.

    Valid transitions:
    - PENDING -> SUCCESS, FAILED, DENIED, CANCELLED
    - SUCCESS -> CONFIRMED, CANCELLED
    - CONFIRMED -> CANCELLED
    - CANCELLED -> (terminal state)
    - FAILED -> (terminal state)
    - DENIED -> (terminal state)
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    DENIED = "denied"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "ProductStatus":
        """Convert string to ProductStatus enum.

        Args:
            value: String representation of status

        Returns:
            ProductStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid product status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state.

        Returns:
            True if status is terminal (CANCELLED, FAILED, DENIED)
        """
        return self in TERMINAL_PRODUCT_STATUSES

    @property
    def display_name(self) -> str:
        """Get human-readable display name for status."""
        return self.value.replace("_", " ").title()


TERMINAL_PRODUCT_STATUSES: Set[ProductStatus] = {
    ProductStatus.CANCELLED,
    ProductStatus.FAILED,
    ProductStatus.DENIED,
}


class Provider(str, Enum):
    """Upstream vendor fulfilling a product category."""

    AIRALO = "airalo"  # eSIM data plans
    MOZIO = "mozio"  # airport transfers
    DRAGONPASS = "dragonpass"  # lounge access

    @classmethod
    def from_string(cls, value: str) -> "Provider":
        """Convert a provider tag to Provider enum.

        Args:
            value: Provider tag

        Returns:
            Provider enum value

        Raises:
            ValueError: If the tag is not a supported provider
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid_values = ", ".join([p.value for p in cls])
            raise ValueError(
                f"Unsupported provider: {value}. "
                f"Valid values are: {valid_values}"
            )

    @classmethod
    def lookup(cls, value: str) -> Optional["Provider"]:
        """Return the Provider for a tag, or None when unrecognized."""
        try:
            return cls.from_string(value)
        except ValueError:
            return None

    @property
    def product_category(self) -> str:
        """Get the product category fulfilled by this provider."""
        return {
            Provider.AIRALO: "esim",
            Provider.MOZIO: "transfer",
            Provider.DRAGONPASS: "lounge",
        }[self]


class SimStatus(str, Enum):
    """eSIM activation status (Airalo products).

    Valid transitions:
    - READY_FOR_ACTIVATION -> ACTIVE, CANCELLED
    - ACTIVE -> (no exit, an active eSIM is consumed)
    - CANCELLED -> (terminal state)
    """

    READY_FOR_ACTIVATION = "ready_for_activation"
    ACTIVE = "active"
    CANCELLED = "cancelled"


class TransferStatus(str, Enum):
    """Airport transfer status (Mozio products).

    Valid transitions:
    - CONFIRMED -> IN_PROGRESS, CANCELLED
    - IN_PROGRESS -> COMPLETED
    - COMPLETED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AccessStatus(str, Enum):
    """Lounge access status (DragonPass products).

    Valid transitions:
    - CONFIRMED -> USED, EXPIRED, CANCELLED
    - USED, EXPIRED, CANCELLED -> (terminal states)
    """

    CONFIRMED = "confirmed"
    USED = "used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class CancelCondition(str, Enum):
    """Condition under which a cancellation policy applies its windows."""

    BEFORE_CONSUMPTION = "before_consumption"
    ANYTIME = "anytime"


class RequesterRole(str, Enum):
    """Role of the already-authenticated caller."""

    CUSTOMER = "customer"
    ADMIN = "admin"
    PARTNER = "partner"


class RequestSource(str, Enum):
    """Channel a cancellation request arrived from."""

    CUSTOMER_APP = "customer_app"
    ADMIN_PANEL = "admin_panel"
    PARTNER_API = "partner_api"


# Product field holding each provider's sub-status
PROVIDER_SUB_STATUS_FIELD: Dict[Provider, str] = {
    Provider.AIRALO: "sim_status",
    Provider.MOZIO: "transfer_status",
    Provider.DRAGONPASS: "access_status",
}

PROVIDER_SUB_STATUS_ENUM: Dict[Provider, Type[Enum]] = {
    Provider.AIRALO: SimStatus,
    Provider.MOZIO: TransferStatus,
    Provider.DRAGONPASS: AccessStatus,
}

PROVIDER_INITIAL_SUB_STATUS: Dict[Provider, Enum] = {
    Provider.AIRALO: SimStatus.READY_FOR_ACTIVATION,
    Provider.MOZIO: TransferStatus.CONFIRMED,
    Provider.DRAGONPASS: AccessStatus.CONFIRMED,
}

# Sub-statuses meaning the product has been consumed and cannot be cancelled
PROVIDER_BLOCKING_SUB_STATUSES: Dict[Provider, frozenset] = {
    Provider.AIRALO: frozenset({SimStatus.ACTIVE}),
    Provider.MOZIO: frozenset({TransferStatus.IN_PROGRESS, TransferStatus.COMPLETED}),
    Provider.DRAGONPASS: frozenset({AccessStatus.USED, AccessStatus.EXPIRED}),
}


# State transition validation rules
PRODUCT_STATUS_TRANSITIONS: Dict[ProductStatus, Set[ProductStatus]] = {
    ProductStatus.PENDING: {
        ProductStatus.SUCCESS,
        ProductStatus.FAILED,
        ProductStatus.DENIED,
        ProductStatus.CANCELLED,
    },
    ProductStatus.SUCCESS: {
        ProductStatus.CONFIRMED,
        ProductStatus.CANCELLED,
    },
    ProductStatus.CONFIRMED: {
        ProductStatus.CANCELLED,
    },
    ProductStatus.CANCELLED: set(),  # Terminal
    ProductStatus.FAILED: set(),  # Terminal
    ProductStatus.DENIED: set(),  # Terminal
}

SIM_STATUS_TRANSITIONS: Dict[SimStatus, Set[SimStatus]] = {
    SimStatus.READY_FOR_ACTIVATION: {
        SimStatus.ACTIVE,
        SimStatus.CANCELLED,
    },
    SimStatus.ACTIVE: set(),
    SimStatus.CANCELLED: set(),  # Terminal
}

TRANSFER_STATUS_TRANSITIONS: Dict[TransferStatus, Set[TransferStatus]] = {
    TransferStatus.CONFIRMED: {
        TransferStatus.IN_PROGRESS,
        TransferStatus.CANCELLED,
    },
    TransferStatus.IN_PROGRESS: {
        TransferStatus.COMPLETED,
    },
    TransferStatus.COMPLETED: set(),  # Terminal
    TransferStatus.CANCELLED: set(),  # Terminal
}

ACCESS_STATUS_TRANSITIONS: Dict[AccessStatus, Set[AccessStatus]] = {
    AccessStatus.CONFIRMED: {
        AccessStatus.USED,
        AccessStatus.EXPIRED,
        AccessStatus.CANCELLED,
    },
    AccessStatus.USED: set(),  # Terminal
    AccessStatus.EXPIRED: set(),  # Terminal
    AccessStatus.CANCELLED: set(),  # Terminal
}

SUB_STATUS_TRANSITIONS: Dict[Provider, Dict] = {
    Provider.AIRALO: SIM_STATUS_TRANSITIONS,
    Provider.MOZIO: TRANSFER_STATUS_TRANSITIONS,
    Provider.DRAGONPASS: ACCESS_STATUS_TRANSITIONS,
}


def validate_product_status_transition(
    current: ProductStatus,
    new: ProductStatus
) -> bool:
    """Validate if product status transition is allowed.

    Args:
        current: Current product status
        new: Desired new status

    Returns:
        True if transition is valid
    """
    return new in PRODUCT_STATUS_TRANSITIONS.get(current, set())


def get_allowed_product_transitions(
    current: ProductStatus
) -> Set[ProductStatus]:
    """Get all allowed transitions from current product status.

    Args:
        current: Current product status

    Returns:
        Set of allowed next statuses
    """
    return PRODUCT_STATUS_TRANSITIONS.get(current, set()).copy()


def validate_sub_status_transition(
    provider: Provider,
    current: Enum,
    new: Enum
) -> bool:
    """Validate a provider-specific sub-status transition.

    Args:
        provider: Provider owning the sub-status
        current: Current sub-status
        new: Desired new sub-status

    Returns:
        True if transition is valid
    """
    transitions = SUB_STATUS_TRANSITIONS.get(provider, {})
    return new in transitions.get(current, set())


def parse_sub_status(provider: Provider, value: str) -> Enum:
    """Convert a sub-status string into the provider's sub-status enum.

    Args:
        provider: Provider owning the sub-status
        value: String representation of the sub-status

    Returns:
        Provider-specific sub-status enum value

    Raises:
        ValueError: If value is not valid for the provider
    """
    enum_cls = PROVIDER_SUB_STATUS_ENUM[provider]
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        valid_values = ", ".join([s.value for s in enum_cls])
        raise ValueError(
            f"Invalid {provider.value} sub-status: {value}. "
            f"Valid values are: {valid_values}"
        )
