"""
Cancellation Pydantic schemas for requests, results, and audit records.

This module defines refund eligibility results, cancellation records, the
tagged command result, single and bulk request/response payloads, and the
audit entries written by the command invoker.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ancillary.schemas.orders import OrderIdentifier
from ancillary.services.cancellations.enums import (
    AuditOutcome,
    CancellationStatus,
    IneligibilityReason,
    ResultKind,
)
from ancillary.services.orders.enums import RequestSource, RequesterRole

ZERO = Decimal("0.00")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefundEligibility(BaseModel):
    """Outcome of evaluating a product against its cancellation policy."""

    model_config = ConfigDict(frozen=True)

    can_cancel: bool
    refund_percentage: int = Field(default=0, ge=0, le=100)
    reason: Optional[str] = None
    reason_code: Optional[IneligibilityReason] = None
    refund_amount: Decimal = ZERO
    cancellation_fee: Decimal = ZERO
    elapsed_hours: Optional[float] = None


class RequestedBy(BaseModel):
    """Identity recorded against a cancellation attempt."""

    user_id: Optional[str] = None
    role: Optional[RequesterRole] = None


class CancellationRecord(BaseModel):
    """Audit record of one cancellation attempt."""

    cancellation_id: str
    order_id: str
    product_id: str
    pnr: str
    provider: str
    status: CancellationStatus = CancellationStatus.PENDING
    refund_amount: Decimal = ZERO
    cancellation_fee: Decimal = ZERO
    refund_percentage: int = 0
    vendor_response: Optional[dict[str, Any]] = None
    request_source: str = "api"
    requested_by: Optional[RequestedBy] = None
    reason: Optional[str] = None
    email_sent: bool = False
    requested_at: datetime = Field(default_factory=_utcnow)
    processed_at: Optional[datetime] = None


class CancellationResult(BaseModel):
    """Tagged result of a provider cancellation command."""

    kind: ResultKind
    cancellation_id: str
    provider: str
    refund_amount: Decimal = ZERO
    cancellation_fee: Decimal = ZERO
    refund_percentage: int = 0
    message: str = ""
    error_code: Optional[str] = None
    vendor_response: dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.kind == ResultKind.SUCCESS


class CancellationRequest(BaseModel):
    """Single product cancellation request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    order: OrderIdentifier
    product_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)
    request_source: RequestSource = RequestSource.CUSTOMER_APP


class BulkCancellationRequest(BaseModel):
    """Cancellation of several products within one order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    order: OrderIdentifier
    product_ids: list[str] = Field(..., min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)
    request_source: RequestSource = RequestSource.CUSTOMER_APP

    @field_validator("product_ids")
    @classmethod
    def validate_product_ids(cls, v: list[str]) -> list[str]:
        """Strip ids and reject blanks."""
        cleaned = [product_id.strip() for product_id in v]
        if any(not product_id for product_id in cleaned):
            raise ValueError("Product ids must not be blank")
        return cleaned


class CancellationResponse(BaseModel):
    """Payload returned for a single cancellation."""

    success: bool
    cancellation_id: str
    refund_amount: Decimal
    cancellation_fee: Decimal
    message: str
    processed_at: datetime


class BulkItemResult(BaseModel):
    """Per-product outcome inside a bulk cancellation."""

    product_id: str
    success: bool
    provider: Optional[str] = None
    title: Optional[str] = None
    currency: Optional[str] = None
    cancellation_id: Optional[str] = None
    refund_amount: Decimal = ZERO
    cancellation_fee: Decimal = ZERO
    message: str = ""
    error: Optional[str] = None
    retryable: bool = False
    retry_after: Optional[int] = None


class ProviderBreakdown(BaseModel):
    """Aggregated bulk results for one provider."""

    requested: int = 0
    successful: int = 0
    failed: int = 0
    refund_amount: Decimal = ZERO
    cancellation_fee: Decimal = ZERO


class BulkCancellationSummary(BaseModel):
    total_refund: Decimal = ZERO
    total_fees: Decimal = ZERO
    per_provider_breakdown: dict[str, ProviderBreakdown] = Field(default_factory=dict)


class BulkCancellationResponse(BaseModel):
    """Payload returned for a bulk cancellation."""

    order_id: str
    pnr: str
    total_requested: int
    successful: int
    failed: int
    results: list[BulkItemResult]
    summary: BulkCancellationSummary
    processed_at: datetime = Field(default_factory=_utcnow)


class AuditEntry(BaseModel):
    """Append-only audit entry for an invoked cancellation command."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    product_id: str
    reason: Optional[str] = None
    executed_at: datetime
    command_type: str
    outcome: AuditOutcome
    cancellation_id: Optional[str] = None
    error: Optional[str] = None
    recorded_at: datetime = Field(default_factory=_utcnow)
