"""Resilience primitives: retry with backoff and circuit breaking."""

from .retry import RetryPolicy, compute_delay_ms, retry_async, retryable
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)

__all__ = [
    "RetryPolicy",
    "compute_delay_ms",
    "retry_async",
    "retryable",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
]
