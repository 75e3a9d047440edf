"""Typed errors for webhook delivery and resilience.

Retry predicates match on these classes instead of probing
arbitrary attributes on unknown exception objects.
"""

from typing import Optional


class WebhookDeliveryError(Exception):
    """Base class for failures while delivering a webhook."""


class NetworkError(WebhookDeliveryError):
    """Connection-level failure (DNS, refused, reset, protocol)."""


class WebhookTimeoutError(WebhookDeliveryError):
    """Request did not complete within the configured timeout."""

    def __init__(self, timeout_ms: int, message: Optional[str] = None):
        self.timeout_ms = timeout_ms
        super().__init__(message or f"Request timed out after {timeout_ms}ms")


class HttpStatusError(WebhookDeliveryError):
    """Receiver answered with a non-2xx status."""

    def __init__(self, status_code: int, reason: str = "", body: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"HTTP {status_code}: {reason}")

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500


class RetryCancelledError(Exception):
    """Backoff wait was interrupted by a cancellation signal."""

    def __init__(self, attempt: int):
        self.attempt = attempt
        super().__init__(f"Retry cancelled after attempt {attempt}")


class CircuitOpenError(Exception):
    """Raised when a circuit is open and short-circuits the call."""

    def __init__(self, name: str, retry_after_seconds: float):
        self.name = name
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Circuit '{name}' is open, retry after {retry_after_seconds:.1f}s"
        )
