"""Outbound webhook dispatcher.

Sends booking/contract events to the configured automation endpoint
with a hard timeout, retry with exponential backoff, batched fan-out
and a per-endpoint circuit breaker. Public methods never raise:
failures come back as result objects.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, Optional, Tuple, Union

import httpx
from pydantic import ValidationError

from ..core.observability import EventLogger
from ..core.settings import ConfigValidation, WebhookSettings, get_settings, validate_config
from ..errors import (
    CircuitOpenError,
    HttpStatusError,
    NetworkError,
    WebhookDeliveryError,
    WebhookTimeoutError,
)
from ..resilience.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from ..resilience.retry import RetryPolicy, SleepFunc
from .models import (
    BatchResult,
    BookingEventPayload,
    DeliveryResult,
    PingResult,
    WebhookEventEnvelope,
    WebhookEventType,
)
from .security import build_webhook_headers
from .stats import StatsRegistry, get_stats_registry

logger = logging.getLogger(__name__)

EventLike = Union[BookingEventPayload, Dict[str, Any]]


def _coerce_event(event: EventLike) -> BookingEventPayload:
    if isinstance(event, BookingEventPayload):
        return event
    return BookingEventPayload.model_validate(event)


def _invalid_event_result(exc: ValidationError) -> DeliveryResult:
    """Failed result for an event that could not be read. No HTTP call is made."""
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'event'}: {err['msg']}"
        for err in exc.errors()
    )
    logger.warning(f"Dropping invalid webhook event: {details}")
    return DeliveryResult(success=False, error=f"Invalid event payload: {details}", attempts=0)


def _event_label(event: Any, index: int) -> str:
    """Id used in batch error lines, falling back to the item position."""
    if isinstance(event, BookingEventPayload):
        return event.id
    if isinstance(event, dict) and event.get("id") is not None:
        return str(event["id"])
    return f"#{index}"


class WebhookDispatcher:
    """Delivers webhook events to a single configured endpoint.

    Features:
    - Async HTTP delivery with a hard timeout
    - Manual retry loop with exponential backoff (send_with_retry)
    - Batched fan-out with bounded concurrency (batch_send)
    - Circuit breaker + retry policy path (send_protected)
    - Per-instance delivery statistics

    Example:
        dispatcher = WebhookDispatcher(WebhookSettings.from_env())
        event = BookingEventPayload(
            id="evt_123",
            event_type=WebhookEventType.BOOKING_CREATED,
            booking_id="bk_42",
        )
        result = await dispatcher.send_with_retry(event)
    """

    def __init__(
        self,
        settings: Optional[WebhookSettings] = None,
        stats: Optional[StatsRegistry] = None,
        circuit_breakers: Optional[CircuitBreakerRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        """Initialize dispatcher.

        Args:
            settings: Webhook configuration (defaults to environment).
            stats: Stats registry; a private one is created if omitted.
            circuit_breakers: Breaker registry keyed by target URL.
            transport: httpx transport override (tests, proxies).
            sleep: Sleep implementation used for backoff and batch delays.
        """
        self.settings = settings or get_settings()
        self.stats = stats or StatsRegistry()
        self.circuit_breakers = circuit_breakers or CircuitBreakerRegistry(
            CircuitBreakerConfig(
                failure_threshold=self.settings.circuit_failure_threshold,
                cooldown_seconds=self.settings.circuit_cooldown_seconds,
            )
        )
        self._transport = transport
        self._sleep = sleep or asyncio.sleep

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _post(self, envelope: WebhookEventEnvelope) -> httpx.Response:
        """POST the envelope. Raises httpx / asyncio timeout errors."""
        body = envelope.model_dump_json()
        headers = build_webhook_headers(
            body,
            user_agent=self.settings.user_agent,
            event_type=envelope.event_type,
            delivery_id=envelope.event_id,
            secret=self.settings.webhook_secret,
        )
        timeout = self.settings.timeout_ms / 1000

        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            return await asyncio.wait_for(
                client.post(self.settings.webhook_url, content=body, headers=headers),
                timeout=timeout,
            )

    async def _attempt(
        self, envelope: WebhookEventEnvelope
    ) -> Tuple[DeliveryResult, Optional[WebhookDeliveryError]]:
        """Make one HTTP attempt and record it in stats."""
        error: Optional[WebhookDeliveryError] = None
        status_code: Optional[int] = None
        started = time.perf_counter()

        try:
            response = await self._post(envelope)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            error = WebhookTimeoutError(self.settings.timeout_ms)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            error = NetworkError(str(exc) or type(exc).__name__)
        except Exception as exc:
            logger.exception(f"Unexpected error delivering event {envelope.event_id}")
            error = WebhookDeliveryError(str(exc) or type(exc).__name__)
        else:
            status_code = response.status_code
            if response.is_success:
                logger.debug(
                    f"Webhook {envelope.event_id} accepted with {status_code}: "
                    f"{response.text[:200]}"
                )
            else:
                error = HttpStatusError(status_code, response.reason_phrase, response.text[:1000])

        elapsed_ms = (time.perf_counter() - started) * 1000
        self.stats.record(
            success=error is None,
            response_time_ms=elapsed_ms,
            error=str(error) if error else None,
        )

        result = DeliveryResult(
            success=error is None,
            error=str(error) if error else None,
            attempts=1,
            status_code=status_code,
            response_time_ms=elapsed_ms,
        )
        return result, error

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send(
        self,
        event: EventLike,
        additional_context: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        """Deliver an event once.

        Returns success without any HTTP call when delivery is
        disabled or no URL is configured.
        """
        if not self.settings.is_active:
            logger.debug("Webhook delivery disabled, skipping send")
            return DeliveryResult(success=True, attempts=0)

        try:
            event = _coerce_event(event)
        except ValidationError as exc:
            return _invalid_event_result(exc)
        envelope = WebhookEventEnvelope.build(
            event, self.settings.environment, additional_context
        )
        result, error = await self._attempt(envelope)
        if error is not None:
            logger.warning(f"Webhook delivery failed for event {event.id}: {error}")
        return result

    async def send_with_retry(
        self,
        event: EventLike,
        additional_context: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        """Deliver an event, retrying up to settings.retry_attempts times.

        The delay before attempt n+1 is 2**(n-1) * retry_base_delay_ms.
        The returned result reports how many attempts were used.
        """
        if not self.settings.is_active:
            return DeliveryResult(success=True, attempts=0)

        try:
            event = _coerce_event(event)
        except ValidationError as exc:
            return _invalid_event_result(exc)
        max_attempts = self.settings.retry_attempts
        result = DeliveryResult(success=False, error="No delivery attempted")

        for attempt in range(1, max_attempts + 1):
            result = await self.send(event, additional_context)
            result.attempts = attempt

            if result.success:
                EventLogger.delivery(event.id, event.event_type, True, attempt)
                return result

            if attempt < max_attempts:
                delay_ms = 2 ** (attempt - 1) * self.settings.retry_base_delay_ms
                logger.warning(
                    f"Retrying event {event.id} in {delay_ms}ms "
                    f"(attempt {attempt}/{max_attempts}): {result.error}"
                )
                await self._sleep(delay_ms / 1000)

        logger.error(
            f"Webhook delivery failed after {max_attempts} attempts "
            f"for event {event.id}: {result.error}"
        )
        EventLogger.delivery(event.id, event.event_type, False, max_attempts, result.error)
        return result

    async def batch_send(
        self,
        events: Iterable[EventLike],
        batch_size: Optional[int] = None,
        delay_between_batches_ms: Optional[int] = None,
    ) -> BatchResult:
        """Deliver events in batches.

        Items within a batch run concurrently; batches run one after
        another with a fixed delay between them (none after the last).
        """
        items = list(events)
        size = max(1, batch_size or self.settings.batch_size)
        delay_ms = (
            self.settings.batch_delay_ms
            if delay_between_batches_ms is None
            else delay_between_batches_ms
        )

        result = BatchResult(total_events=len(items))
        batches = [items[i:i + size] for i in range(0, len(items), size)]

        for index, batch in enumerate(batches):
            outcomes = await asyncio.gather(
                *(self.send_with_retry(event) for event in batch),
                return_exceptions=True,
            )

            for offset, (event, outcome) in enumerate(zip(batch, outcomes)):
                label = _event_label(event, index * size + offset)
                if isinstance(outcome, BaseException):
                    result.failed_events += 1
                    result.errors.append(f"{label}: {outcome}")
                elif outcome.success:
                    result.successful_events += 1
                else:
                    result.failed_events += 1
                    result.errors.append(f"{label}: {outcome.error}")

            if index < len(batches) - 1 and delay_ms > 0:
                await self._sleep(delay_ms / 1000)

        EventLogger.info(
            "webhook.batch.completed",
            total_events=result.total_events,
            successful_events=result.successful_events,
            failed_events=result.failed_events,
            batches=len(batches),
        )
        return result

    async def send_protected(
        self,
        event: EventLike,
        additional_context: Optional[Dict[str, Any]] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> DeliveryResult:
        """Deliver through the endpoint's circuit breaker and a retry policy.

        attempts is 0 when the circuit rejected the call outright.
        """
        if not self.settings.is_active:
            return DeliveryResult(success=True, attempts=0)

        try:
            event = _coerce_event(event)
        except ValidationError as exc:
            return _invalid_event_result(exc)
        breaker = self.circuit_breakers.get_or_create(self.settings.webhook_url)
        policy = retry_policy or RetryPolicy(
            max_attempts=self.settings.retry_attempts,
            initial_delay_ms=self.settings.retry_base_delay_ms,
        )
        attempts = 0

        async def post_once() -> DeliveryResult:
            nonlocal attempts
            attempts += 1
            envelope = WebhookEventEnvelope.build(
                event, self.settings.environment, additional_context
            )
            attempt_result, error = await self._attempt(envelope)
            if error is not None:
                raise error
            return attempt_result

        try:
            result = await breaker.execute(post_once, policy, sleep=self._sleep)
        except CircuitOpenError as exc:
            logger.warning(f"Skipping event {event.id}: {exc}")
            return DeliveryResult(success=False, error=str(exc), attempts=0)
        except WebhookDeliveryError as exc:
            EventLogger.delivery(event.id, event.event_type, False, attempts, str(exc))
            return DeliveryResult(
                success=False,
                error=str(exc),
                attempts=attempts,
                status_code=getattr(exc, "status_code", None),
            )

        result.attempts = attempts
        EventLogger.delivery(event.id, event.event_type, True, attempts)
        return result

    async def send_test_event(self) -> PingResult:
        """Send a single test.ping event to check connectivity."""
        if not self.settings.is_active:
            return PingResult(success=False, error="Webhook URL is not configured or disabled")

        event = BookingEventPayload(
            event_type=WebhookEventType.TEST_PING.value,
            description="Connectivity test from webhook-relay",
            metadata={"test": True},
        )
        result = await self.send(event, {"source": "connectivity-test"})
        return PingResult(
            success=result.success,
            response_time_ms=result.response_time_ms or 0.0,
            status_code=result.status_code,
            error=result.error,
        )

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def validate_config(self) -> ConfigValidation:
        return validate_config(self.settings)

    def get_stats(self) -> dict:
        """Snapshot of delivery statistics."""
        return self.stats.snapshot().to_dict()

    def reset_stats(self) -> None:
        self.stats.reset()

    def get_circuit_status(self) -> dict[str, dict]:
        return self.circuit_breakers.get_status()


# Global dispatcher instance
_dispatcher: Optional[WebhookDispatcher] = None


def get_dispatcher() -> WebhookDispatcher:
    """Get the global webhook dispatcher instance.

    Uses the shared stats registry so counters are visible to
    any monitoring code that reads get_stats_registry().
    """
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher(stats=get_stats_registry())
    return _dispatcher
