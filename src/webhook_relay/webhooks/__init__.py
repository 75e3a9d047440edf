"""Outbound webhook delivery.

Provides:
- Event envelope and result models
- A dispatcher with retry, batching and circuit breaking
- Per-dispatcher delivery statistics
"""

from .models import (
    BatchResult,
    BookingEventPayload,
    DeliveryResult,
    PingResult,
    WebhookEventEnvelope,
    WebhookEventType,
)
from .stats import StatsRegistry, WebhookStats, get_stats_registry
from .dispatcher import WebhookDispatcher, get_dispatcher

__all__ = [
    "BatchResult",
    "BookingEventPayload",
    "DeliveryResult",
    "PingResult",
    "WebhookEventEnvelope",
    "WebhookEventType",
    "StatsRegistry",
    "WebhookStats",
    "get_stats_registry",
    "WebhookDispatcher",
    "get_dispatcher",
]
