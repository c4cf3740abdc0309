"""
Order and product Pydantic schemas for the ancillary order domain.

This module defines the order aggregate with its embedded products,
cancellation policies with refund windows, customer contact snapshots,
requester identity, and the request models used to create orders and
update product statuses.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from ancillary.services.orders.enums import (
    PROVIDER_SUB_STATUS_FIELD,
    AccessStatus,
    CancelCondition,
    ProductStatus,
    Provider,
    RequesterRole,
    SimStatus,
    TransferStatus,
)

SUB_STATUS_FIELDS = ("sim_status", "transfer_status", "access_status")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Price(BaseModel):
    """Monetary amount with currency."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal = Field(..., ge=0, description="Non-negative amount")
    currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="ISO 4217 currency code",
    )

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Normalize currency code."""
        return v.upper()


class CancellationWindow(BaseModel):
    """Refund rule mapping elapsed hours to a refund percentage."""

    model_config = ConfigDict(frozen=True)

    threshold_hours: float = Field(
        default=0,
        description="Window applies while elapsed hours are at most this value",
    )
    refund_percentage: int = Field(..., ge=0, le=100)
    description: str = Field(default="")


class CancellationPolicy(BaseModel):
    """Cancellation policy attached to a product."""

    windows: list[CancellationWindow] = Field(default_factory=list)
    can_cancel: bool = Field(default=True)
    cancel_condition: CancelCondition = Field(
        default=CancelCondition.BEFORE_CONSUMPTION
    )

    @property
    def declared_percentages(self) -> set[int]:
        """Refund percentages declared by the policy windows."""
        return {window.refund_percentage for window in self.windows}


class CustomerContact(BaseModel):
    """Customer contact snapshot taken at purchase time."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(..., min_length=3, max_length=255)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(default="", max_length=100)

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v: str) -> str:
        """Validate email format."""
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Invalid email format")
        return v.lower()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Product(BaseModel):
    """One purchased unit from one provider, embedded in an order."""

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    provider: str = Field(..., min_length=1, description="Provider tag")
    type: str = Field(default="")
    price: Price
    status: ProductStatus = Field(default=ProductStatus.PENDING)
    cancellation_policy: CancellationPolicy = Field(
        default_factory=CancellationPolicy
    )
    service_datetime: datetime
    activation_deadline: Optional[datetime] = None

    # Provider-specific status, only the provider's own field may be set
    sim_status: Optional[SimStatus] = None
    transfer_status: Optional[TransferStatus] = None
    access_status: Optional[AccessStatus] = None

    activated_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def validate_sub_status_field(self) -> "Product":
        """Ensure only the sub-status selected by the provider is populated."""
        provider = Provider.lookup(self.provider)
        allowed = PROVIDER_SUB_STATUS_FIELD.get(provider) if provider else None
        for field_name in SUB_STATUS_FIELDS:
            if field_name != allowed and getattr(self, field_name) is not None:
                raise ValueError(
                    f"{field_name} is not valid for provider {self.provider}"
                )
        return self

    @property
    def provider_enum(self) -> Optional[Provider]:
        """Known Provider for this product, or None when unrecognized."""
        return Provider.lookup(self.provider)

    @property
    def sub_status_field(self) -> Optional[str]:
        provider = self.provider_enum
        return PROVIDER_SUB_STATUS_FIELD.get(provider) if provider else None

    @property
    def sub_status(self) -> Optional[Enum]:
        """Provider-specific sub-status, or None for unknown providers."""
        field_name = self.sub_status_field
        return getattr(self, field_name) if field_name else None


class Order(BaseModel):
    """Purchase transaction identified by a booking reference (PNR)."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    pnr: str = Field(..., min_length=1, max_length=20)
    transaction_id: str = Field(default_factory=lambda: f"TXN-{uuid4().hex[:12].upper()}")
    customer_id: str = Field(..., min_length=1)
    customer: CustomerContact
    products: list[Product] = Field(..., min_length=1)
    status: str = Field(default="confirmed")
    ordered_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("pnr")
    @classmethod
    def normalize_pnr(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def validate_unique_product_ids(self) -> "Order":
        """Product ids must be unique within the order."""
        ids = [product.id for product in self.products]
        if len(ids) != len(set(ids)):
            raise ValueError("Product ids must be unique within an order")
        return self

    def get_product(self, product_id: str) -> Optional[Product]:
        """Find an embedded product by id."""
        for product in self.products:
            if product.id == product_id:
                return product
        return None


class Requester(BaseModel):
    """Authenticated caller identity supplied by the outer layer."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    role: RequesterRole
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v

    @property
    def is_customer(self) -> bool:
        return self.role == RequesterRole.CUSTOMER


class OrderIdentifier(BaseModel):
    """Reference to an order by PNR and/or id, with optional contact email."""

    model_config = ConfigDict(str_strip_whitespace=True)

    pnr: Optional[str] = None
    order_id: Optional[str] = None
    email: Optional[str] = None

    @field_validator("pnr")
    @classmethod
    def normalize_pnr(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v

    @model_validator(mode="after")
    def validate_reference_present(self) -> "OrderIdentifier":
        """Require a PNR or an order id."""
        if not self.pnr and not self.order_id:
            raise ValueError("Order identifier (PNR or order id) required")
        return self


class ProductCreateRequest(BaseModel):
    """Product line item supplied when placing an order."""

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    provider: Provider
    type: str = Field(default="")
    price: Price
    cancellation_policy: CancellationPolicy = Field(
        default_factory=CancellationPolicy
    )
    service_datetime: datetime
    activation_deadline: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class OrderCreateRequest(BaseModel):
    """Order placement request."""

    customer: CustomerContact
    products: list[ProductCreateRequest] = Field(..., min_length=1)
    transaction_id: Optional[str] = None


class ProductStatusUpdateRequest(BaseModel):
    """Manual product status update issued by a partner."""

    order: OrderIdentifier
    product_id: str = Field(..., min_length=1)
    status: ProductStatus
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("product_id")
    @classmethod
    def strip_product_id(cls, v: str) -> str:
        return v.strip()
