"""Delivery statistics.

Counters live on a StatsRegistry instance owned by (or passed to)
a dispatcher, so separate integrations keep separate numbers unless
they deliberately share a registry.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass
class WebhookStats:
    """Counters for outbound webhook attempts."""

    total_sent: int = 0
    successful_sent: int = 0
    failed_sent: int = 0
    average_response_time_ms: float = 0.0
    last_sent_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def success_rate(self) -> float:
        """Success rate as percentage."""
        if self.total_sent == 0:
            return 100.0
        return (self.successful_sent / self.total_sent) * 100

    def to_dict(self) -> dict:
        return {
            "total_sent": self.total_sent,
            "successful_sent": self.successful_sent,
            "failed_sent": self.failed_sent,
            "average_response_time_ms": self.average_response_time_ms,
            "success_rate": self.success_rate,
            "last_sent_at": self.last_sent_at.isoformat() if self.last_sent_at else None,
            "last_error": self.last_error,
        }


class StatsRegistry:
    """Thread-safe owner of a WebhookStats record.

    Example:
        >>> registry = StatsRegistry()
        >>> registry.record(success=True, response_time_ms=120.0)
        >>> registry.snapshot().total_sent
        1
    """

    def __init__(self):
        self._stats = WebhookStats()
        self._lock = threading.Lock()

    def record(
        self,
        success: bool,
        response_time_ms: float,
        error: Optional[str] = None,
    ) -> None:
        """Record one delivery attempt."""
        with self._lock:
            stats = self._stats
            stats.total_sent += 1
            if success:
                stats.successful_sent += 1
            else:
                stats.failed_sent += 1
                stats.last_error = error

            n = stats.total_sent
            stats.average_response_time_ms = (
                stats.average_response_time_ms * (n - 1) + response_time_ms
            ) / n
            stats.last_sent_at = datetime.now(timezone.utc)

    def snapshot(self) -> WebhookStats:
        """Copy of the current counters."""
        with self._lock:
            s = self._stats
            return WebhookStats(
                total_sent=s.total_sent,
                successful_sent=s.successful_sent,
                failed_sent=s.failed_sent,
                average_response_time_ms=s.average_response_time_ms,
                last_sent_at=s.last_sent_at,
                last_error=s.last_error,
            )

    def reset(self) -> None:
        with self._lock:
            self._stats = WebhookStats()


# Process-wide registry for callers that want shared counters
_stats_registry: Optional[StatsRegistry] = None


def get_stats_registry() -> StatsRegistry:
    """Get the shared stats registry."""
    global _stats_registry
    if _stats_registry is None:
        _stats_registry = StatsRegistry()
    return _stats_registry
