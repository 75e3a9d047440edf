"""Circuit Breaker Pattern - Stop hammering a failing webhook receiver.

Opens after a streak of failed deliveries and rejects calls until a
cool-down elapses. The first call after the cool-down is a single
probe: success closes the circuit, failure opens it again.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import CircuitOpenError
from .retry import RetryPolicy, SleepFunc, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"        # Normal operation, requests pass through
    OPEN = "open"            # Failing, requests are blocked
    HALF_OPEN = "half_open"  # One probe request in flight


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""

    failure_threshold: int = 5
    cooldown_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be non-negative")


@dataclass
class CircuitStats:
    """Counters for a circuit breaker."""

    failure_count: int = 0
    last_failure_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    total_calls: int = 0
    total_blocked: int = 0


class CircuitBreaker:
    """Circuit breaker guarding one downstream endpoint.

    Example:
        >>> breaker = CircuitBreaker("make.com")
        >>> result = await breaker.execute(post_event, RetryPolicy(max_attempts=3))
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            name: Identifier for this circuit.
            config: Configuration options.
            clock: Monotonic time source in seconds.
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.stats = CircuitStats()
        self._clock = clock
        self._last_failure_at: Optional[float] = None
        self._probe_in_flight = False
        self._lock = threading.Lock()

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self.state == CircuitState.HALF_OPEN

    @property
    def is_cooling_down(self) -> bool:
        """True while the circuit is open and still rejecting calls."""
        with self._lock:
            return self._is_cooling_down()

    def _remaining_cooldown(self) -> float:
        if self._last_failure_at is None:
            return 0.0
        elapsed = self._clock() - self._last_failure_at
        return max(0.0, self.config.cooldown_seconds - elapsed)

    def _is_cooling_down(self) -> bool:
        return self.state == CircuitState.OPEN and self._remaining_cooldown() > 0

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self.state
        if old_state == new_state:
            return
        self.state = new_state
        logger.info(f"Circuit '{self.name}': {old_state.value} -> {new_state.value}")

    def allow_request(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        with self._lock:
            if self.state == CircuitState.CLOSED:
                self.stats.total_calls += 1
                return

            if self.state == CircuitState.OPEN:
                remaining = self._remaining_cooldown()
                if remaining > 0:
                    self.stats.total_blocked += 1
                    raise CircuitOpenError(self.name, remaining)
                self._transition_to(CircuitState.HALF_OPEN)
                self._probe_in_flight = True
                self.stats.total_calls += 1
                return

            # Half-open: the probe is the only call allowed through
            if self._probe_in_flight:
                self.stats.total_blocked += 1
                raise CircuitOpenError(self.name, 0.0)
            self._probe_in_flight = True
            self.stats.total_calls += 1

    def record_success(self) -> None:
        """Record an overall successful call."""
        with self._lock:
            self.stats.failure_count = 0
            self.stats.last_success_time = datetime.now()
            self._probe_in_flight = False
            self._transition_to(CircuitState.CLOSED)

    def record_failure(self, error: Optional[BaseException] = None) -> None:
        """Record an overall failed call."""
        with self._lock:
            self.stats.failure_count += 1
            self.stats.last_failure_time = datetime.now()
            self._last_failure_at = self._clock()
            self._probe_in_flight = False

            if self.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self.stats.failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

        if self.is_open:
            logger.warning(
                f"Circuit '{self.name}' open after {self.stats.failure_count} failures: {error}"
            )

    def release(self) -> None:
        """Release an admitted call that ended without an outcome.

        Used when the call is cancelled. Nothing is counted; a
        half-open probe hands the circuit back to OPEN so the next
        caller after the cooldown can probe again.
        """
        with self._lock:
            if not self._probe_in_flight:
                return
            self._probe_in_flight = False
            if self.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        retry_policy: Optional[RetryPolicy] = None,
        *,
        sleep: Optional[SleepFunc] = None,
    ) -> T:
        """Run fn through retry_async unless the circuit is open.

        Raises:
            CircuitOpenError: If the circuit is open (fn is not called).
            Exception: The last error from fn once retries are exhausted.
        """
        self.allow_request()
        try:
            result = await retry_async(fn, retry_policy, sleep=sleep)
        except Exception as error:
            self.record_failure(error)
            raise
        except BaseException:
            # Cancelled before an outcome; never leave the probe slot taken
            self.release()
            raise
        self.record_success()
        return result

    def get_status(self) -> dict:
        """Snapshot of breaker state for monitoring."""
        with self._lock:
            remaining = self._remaining_cooldown()
            last_failure = self.stats.last_failure_time
            return {
                "failures": self.stats.failure_count,
                "is_open": self._is_cooling_down(),
                "state": self.state.value,
                "last_failure_time": last_failure.isoformat() if last_failure else None,
                "retry_after_seconds": remaining if self.state == CircuitState.OPEN else 0.0,
                "total_calls": self.stats.total_calls,
                "total_blocked": self.stats.total_blocked,
            }

    def reset(self) -> None:
        """Manually reset the circuit to closed state."""
        with self._lock:
            self.stats.failure_count = 0
            self._last_failure_at = None
            self._probe_in_flight = False
            self._transition_to(CircuitState.CLOSED)


class CircuitBreakerRegistry:
    """One circuit breaker per downstream endpoint.

    Example:
        >>> registry = CircuitBreakerRegistry()
        >>> breaker = registry.get_or_create("https://hook.eu1.make.com/abc")
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

    def get_or_create(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
    ) -> CircuitBreaker:
        """Get existing or create new circuit breaker."""
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(
                    name,
                    config or self.default_config,
                    clock=self._clock,
                )
            return self._breakers[name]

    def get(self, name: str) -> Optional[CircuitBreaker]:
        with self._lock:
            return self._breakers.get(name)

    def list_all(self) -> list[CircuitBreaker]:
        with self._lock:
            return list(self._breakers.values())

    def get_open_circuits(self) -> list[CircuitBreaker]:
        """Get all circuits still rejecting calls (open, cooldown not elapsed)."""
        return [b for b in self.list_all() if b.is_cooling_down]

    def reset_all(self) -> None:
        for breaker in self.list_all():
            breaker.reset()

    def get_status(self) -> dict[str, dict]:
        """Status for all breakers, keyed by name."""
        with self._lock:
            breakers = dict(self._breakers)
        return {name: breaker.get_status() for name, breaker in breakers.items()}
