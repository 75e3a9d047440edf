"""Webhook data models and event types.

Pydantic schemas for the outbound event envelope and the result
objects returned by the dispatcher.
"""

from enum import Enum
from typing import Optional, Any, Dict, List
from datetime import datetime, timezone
from pydantic import BaseModel, Field
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEventType(str, Enum):
    """Known booking/contract event types."""

    # Booking events
    BOOKING_CREATED = "booking.created"
    BOOKING_UPDATED = "booking.updated"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_EVENT = "booking.event"

    # Tracking / payment
    TRACKING_UPDATED = "tracking.updated"
    PAYMENT_SUCCEEDED = "payment.succeeded"

    # Contracts and services
    SERVICE_CREATED = "service.created"
    CONTRACT_APPROVED = "contract.approved"

    # Connectivity check
    TEST_PING = "test.ping"

    CUSTOM = "custom"


class BookingEventPayload(BaseModel):
    """Domain event supplied by callers.

    Treated as opaque data: only ``id`` and ``event_type`` are used
    when building the envelope, extra keys are passed through.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str = WebhookEventType.BOOKING_EVENT.value
    booking_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "allow"


class SystemContext(BaseModel):
    """Sender-side context attached to every envelope."""

    environment: str
    timestamp: str
    request_metadata: Dict[str, Any] = Field(default_factory=dict)


class WebhookEventEnvelope(BaseModel):
    """Body of one outbound webhook request."""

    event_id: str
    event_type: str
    event_timestamp: str
    payload: Dict[str, Any]
    system_context: SystemContext

    @classmethod
    def build(
        cls,
        event: BookingEventPayload,
        environment: str,
        additional_context: Optional[Dict[str, Any]] = None,
    ) -> "WebhookEventEnvelope":
        """Wrap a domain event for delivery."""
        now = _utcnow().isoformat()
        return cls(
            event_id=event.id,
            event_type=event.event_type,
            event_timestamp=now,
            payload=event.model_dump(mode="json"),
            system_context=SystemContext(
                environment=environment,
                timestamp=now,
                request_metadata=dict(additional_context or {}),
            ),
        )


class DeliveryResult(BaseModel):
    """Outcome of a delivery; never raised, always returned."""

    success: bool
    error: Optional[str] = None
    attempts: int = 0
    status_code: Optional[int] = None
    response_time_ms: Optional[float] = None


class PingResult(BaseModel):
    """Outcome of a connectivity test."""

    success: bool
    response_time_ms: float = 0.0
    status_code: Optional[int] = None
    error: Optional[str] = None


class BatchResult(BaseModel):
    """Aggregate outcome of batch_send."""

    total_events: int = 0
    successful_events: int = 0
    failed_events: int = 0
    errors: List[str] = Field(default_factory=list)


class BatchSendRequest(BaseModel):
    """Request body for the batch endpoint."""

    events: List[BookingEventPayload]
    batch_size: Optional[int] = Field(default=None, ge=1)
    delay_between_batches_ms: Optional[int] = Field(default=None, ge=0)
