"""
Webhook subscription and delivery Pydantic schemas.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ancillary.services.webhooks.enums import WebhookEvent


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_url(v: str) -> str:
    parsed = urlparse(v)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Invalid webhook URL: {v}")
    return v


class WebhookRegistration(BaseModel):
    """Admin request to register a webhook subscription."""

    model_config = ConfigDict(str_strip_whitespace=True)

    url: str = Field(..., min_length=1, max_length=2048)
    events: list[WebhookEvent] = Field(..., min_length=1)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_url(v)

    @field_validator("events")
    @classmethod
    def deduplicate_events(cls, v: list[WebhookEvent]) -> list[WebhookEvent]:
        """Drop repeated events while keeping their order."""
        return list(dict.fromkeys(v))


class WebhookSubscription(BaseModel):
    """Registered webhook endpoint."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    url: str
    events: list[WebhookEvent]
    is_active: bool = True
    secret: str = Field(..., repr=False)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    def listens_to(self, event: WebhookEvent) -> bool:
        return self.is_active and event in self.events


class WebhookPayload(BaseModel):
    """Envelope delivered to subscribers."""

    model_config = ConfigDict(populate_by_name=True)

    event: WebhookEvent
    data: dict[str, Any]
    timestamp: datetime = Field(default_factory=_utcnow)
    webhook_id: str = Field(..., alias="webhookId")

    def serialize(self) -> str:
        """Compact JSON exactly as signed and delivered."""
        return self.model_dump_json(by_alias=True)


class DeliveryResult(BaseModel):
    """Outcome of delivering one event to one subscription."""

    webhook_id: str
    url: str
    event: WebhookEvent
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    delivered_at: datetime = Field(default_factory=_utcnow)
