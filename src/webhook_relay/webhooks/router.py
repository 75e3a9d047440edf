"""Webhook API routes.

FastAPI router exposing delivery statistics, configuration checks
and manual event dispatch for the outbound integration.
"""

from fastapi import APIRouter, Depends, HTTPException
import logging

from ..core.settings import ConfigValidation
from .dispatcher import WebhookDispatcher, get_dispatcher
from .models import (
    BatchResult,
    BatchSendRequest,
    BookingEventPayload,
    DeliveryResult,
    PingResult,
    WebhookEventType,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


# ============================================================================
# Monitoring Endpoints
# ============================================================================

@router.get("/config", response_model=ConfigValidation)
async def get_config_status(dispatcher: WebhookDispatcher = Depends(get_dispatcher)):
    """Validate the webhook configuration."""
    return dispatcher.validate_config()


@router.get("/stats")
async def get_stats(dispatcher: WebhookDispatcher = Depends(get_dispatcher)):
    """Get delivery statistics for dashboards."""
    return dispatcher.get_stats()


@router.post("/stats/reset")
async def reset_stats(dispatcher: WebhookDispatcher = Depends(get_dispatcher)):
    """Zero the delivery statistics."""
    dispatcher.reset_stats()
    return {"status": "success", "message": "Webhook stats reset"}


@router.get("/circuits")
async def get_circuits(dispatcher: WebhookDispatcher = Depends(get_dispatcher)):
    """Get circuit breaker status per endpoint."""
    return dispatcher.get_circuit_status()


@router.get("/event-types")
async def list_event_types():
    """List known webhook event types."""
    return {
        "event_types": [
            {"value": e.value, "name": e.name}
            for e in WebhookEventType
        ]
    }


# ============================================================================
# Dispatch Endpoints
# ============================================================================

@router.post("/test", response_model=PingResult)
async def test_webhook(dispatcher: WebhookDispatcher = Depends(get_dispatcher)):
    """Send a test event to the configured endpoint.

    Responds 502 when the endpoint could not be reached.
    """
    result = await dispatcher.send_test_event()
    if not result.success:
        raise HTTPException(status_code=502, detail=f"Test webhook failed: {result.error}")
    return result


@router.post("/events", response_model=DeliveryResult)
async def send_event(
    event: BookingEventPayload,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Deliver a single event with retry."""
    logger.info(f"Dispatching event {event.id} ({event.event_type})")
    return await dispatcher.send_with_retry(event, {"source": "api"})


@router.post("/events/batch", response_model=BatchResult)
async def send_batch(
    request: BatchSendRequest,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Deliver a list of events in batches."""
    return await dispatcher.batch_send(
        request.events,
        batch_size=request.batch_size,
        delay_between_batches_ms=request.delay_between_batches_ms,
    )
