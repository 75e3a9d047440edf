"""Tests for the webhooks module.

Covers the envelope models, request headers, stats registry and
the dispatcher's single, retry, batch and circuit-protected paths.
"""

import asyncio
import json

import httpx
import pytest

from webhook_relay.resilience.retry import RetryPolicy
from webhook_relay.webhooks.dispatcher import WebhookDispatcher
from webhook_relay.webhooks.models import (
    BookingEventPayload,
    WebhookEventEnvelope,
    WebhookEventType,
)
from webhook_relay.webhooks.security import build_webhook_headers, generate_signature
from webhook_relay.webhooks.stats import StatsRegistry

from .conftest import RecordingSleep, ScriptedReceiver, WEBHOOK_URL


def booking_event(event_id: str = "evt-1", **extra) -> BookingEventPayload:
    return BookingEventPayload(
        id=event_id,
        event_type=WebhookEventType.BOOKING_CREATED.value,
        booking_id="bk-42",
        description="Booking confirmed",
        **extra,
    )


def make_dispatcher(settings, handler, sleep=None, stats=None) -> WebhookDispatcher:
    return WebhookDispatcher(
        settings,
        stats=stats,
        transport=httpx.MockTransport(handler),
        sleep=sleep or RecordingSleep(),
    )


# ============================================================================
# Model Tests
# ============================================================================

class TestWebhookModels:
    """Tests for webhook Pydantic models."""

    def test_envelope_wraps_event(self):
        """Test building an envelope from a booking event."""
        event = booking_event(metadata={"amount": 120})

        envelope = WebhookEventEnvelope.build(event, "production", {"request_id": "req-9"})

        assert envelope.event_id == "evt-1"
        assert envelope.event_type == "booking.created"
        assert envelope.payload["booking_id"] == "bk-42"
        assert envelope.payload["metadata"] == {"amount": 120}
        assert envelope.system_context.environment == "production"
        assert envelope.system_context.request_metadata == {"request_id": "req-9"}
        assert envelope.event_timestamp == envelope.system_context.timestamp

    def test_envelope_serialization(self):
        """Test the envelope serializes to plain JSON."""
        envelope = WebhookEventEnvelope.build(booking_event(), "test")

        data = json.loads(envelope.model_dump_json())

        assert set(data) == {
            "event_id", "event_type", "event_timestamp", "payload", "system_context",
        }
        assert isinstance(data["payload"]["created_at"], str)

    def test_payload_allows_extra_fields(self):
        """Test unknown keys pass through untouched."""
        event = BookingEventPayload.model_validate(
            {"id": "evt-2", "event_type": "booking.updated", "contract_number": "PAC-1"}
        )

        assert event.model_dump()["contract_number"] == "PAC-1"


# ============================================================================
# Security Tests
# ============================================================================

class TestWebhookHeaders:
    """Tests for outbound header generation."""

    def test_signature_deterministic(self):
        sig1, ts1 = generate_signature('{"test": true}', "key", 1234567890)
        sig2, ts2 = generate_signature('{"test": true}', "key", 1234567890)

        assert sig1 == sig2
        assert ts1 == ts2 == 1234567890

    def test_headers_without_secret(self):
        headers = build_webhook_headers("{}", "webhook-relay/0.1.0", "booking.created", "evt-1")

        assert headers["Content-Type"] == "application/json"
        assert headers["User-Agent"] == "webhook-relay/0.1.0"
        assert headers["X-Webhook-Delivery-Id"] == "evt-1"
        assert "X-Webhook-Secret" not in headers
        assert "X-Webhook-Signature" not in headers

    def test_headers_with_secret(self):
        headers = build_webhook_headers(
            "{}", "webhook-relay/0.1.0", "booking.created", "evt-1", secret="s3cret"
        )

        assert headers["X-Webhook-Secret"] == "s3cret"
        assert headers["X-Webhook-Signature"].startswith("sha256=")
        assert headers["X-Webhook-Timestamp"].isdigit()


# ============================================================================
# Stats Tests
# ============================================================================

class TestStatsRegistry:
    """Tests for delivery statistics."""

    def test_running_average(self):
        stats = StatsRegistry()

        stats.record(success=True, response_time_ms=100)
        stats.record(success=True, response_time_ms=200)
        stats.record(success=False, response_time_ms=600, error="HTTP 500: ")

        snapshot = stats.snapshot()
        assert snapshot.total_sent == 3
        assert snapshot.successful_sent == 2
        assert snapshot.failed_sent == 1
        assert snapshot.average_response_time_ms == pytest.approx(300)
        assert snapshot.last_error == "HTTP 500: "
        assert snapshot.last_sent_at is not None

    def test_reset(self):
        stats = StatsRegistry()
        stats.record(success=False, response_time_ms=10, error="boom")

        stats.reset()

        snapshot = stats.snapshot()
        assert snapshot.total_sent == 0
        assert snapshot.last_error is None
        assert snapshot.to_dict()["success_rate"] == 100.0

    def test_separate_registries_do_not_share_counters(self):
        first, second = StatsRegistry(), StatsRegistry()

        first.record(success=True, response_time_ms=5)

        assert second.snapshot().total_sent == 0


# ============================================================================
# Dispatcher: single send
# ============================================================================

class TestSend:
    """Tests for WebhookDispatcher.send."""

    @pytest.mark.asyncio
    async def test_disabled_without_url(self, make_settings):
        """Test an unset URL is a successful no-op with no HTTP call."""
        receiver = ScriptedReceiver([200])
        dispatcher = make_dispatcher(make_settings(webhook_url=None), receiver)

        result = await dispatcher.send(booking_event())

        assert result.success is True
        assert result.attempts == 0
        assert receiver.call_count == 0
        assert dispatcher.get_stats()["total_sent"] == 0

    @pytest.mark.asyncio
    async def test_disabled_by_flag(self, make_settings):
        receiver = ScriptedReceiver([200])
        dispatcher = make_dispatcher(make_settings(enabled=False), receiver)

        result = await dispatcher.send_with_retry(booking_event())

        assert result.success is True
        assert receiver.call_count == 0

    @pytest.mark.asyncio
    async def test_posts_envelope_with_headers(self, make_settings):
        """Test the request carries the JSON envelope and secret header."""
        receiver = ScriptedReceiver([200])
        dispatcher = make_dispatcher(make_settings(), receiver)

        result = await dispatcher.send(booking_event(), {"request_id": "req-1"})

        assert result.success is True
        assert result.status_code == 200
        request = receiver.requests[0]
        assert request.method == "POST"
        assert str(request.url) == WEBHOOK_URL
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Webhook-Secret"] == "s3cret"
        assert request.headers["User-Agent"].startswith("webhook-relay/")

        body = json.loads(request.content)
        assert body["event_id"] == "evt-1"
        assert body["system_context"]["environment"] == "test"
        assert body["system_context"]["request_metadata"] == {"request_id": "req-1"}

    @pytest.mark.asyncio
    async def test_accepts_dict_events(self, make_settings):
        receiver = ScriptedReceiver([202])
        dispatcher = make_dispatcher(make_settings(), receiver)

        result = await dispatcher.send({"id": "evt-7", "event_type": "payment.succeeded"})

        assert result.success is True
        assert receiver.event_ids == ["evt-7"]

    @pytest.mark.asyncio
    async def test_non_2xx_reports_status(self, make_settings):
        receiver = ScriptedReceiver([503])
        dispatcher = make_dispatcher(make_settings(), receiver)

        result = await dispatcher.send(booking_event())

        assert result.success is False
        assert result.error == "HTTP 503: Service Unavailable"
        assert result.status_code == 503

    @pytest.mark.asyncio
    async def test_network_error_never_raises(self, make_settings):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher = make_dispatcher(make_settings(), refuse)

        result = await dispatcher.send(booking_event())

        assert result.success is False
        assert result.error == "connection refused"

    @pytest.mark.asyncio
    async def test_invalid_dict_event_is_a_failure(self, make_settings):
        """Test an unreadable dict event is reported, not raised."""
        receiver = ScriptedReceiver([200])
        dispatcher = make_dispatcher(make_settings(), receiver)

        result = await dispatcher.send({"id": "evt-1", "metadata": "not-a-dict"})

        assert result.success is False
        assert result.attempts == 0
        assert result.error.startswith("Invalid event payload: metadata:")
        assert receiver.call_count == 0
        assert dispatcher.get_stats()["total_sent"] == 0

    @pytest.mark.asyncio
    async def test_invalid_event_with_retry_and_protected(self, make_settings):
        receiver = ScriptedReceiver([200])
        sleep = RecordingSleep()
        dispatcher = make_dispatcher(make_settings(), receiver, sleep)

        retried = await dispatcher.send_with_retry({"id": 7})
        protected = await dispatcher.send_protected(["not", "an", "event"])

        assert retried.success is False
        assert "id:" in retried.error
        assert protected.success is False
        assert "event:" in protected.error
        assert receiver.call_count == 0
        assert sleep.delays == []
        assert dispatcher.get_circuit_status() == {}

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(self, make_settings):
        """Test a slow receiver is aborted at the configured timeout."""

        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        dispatcher = make_dispatcher(make_settings(timeout_ms=50), slow)

        result = await dispatcher.send(booking_event())

        assert result.success is False
        assert result.error == "Request timed out after 50ms"

    @pytest.mark.asyncio
    async def test_stats_updated_on_success_and_failure(self, make_settings):
        receiver = ScriptedReceiver([200, 500])
        dispatcher = make_dispatcher(make_settings(), receiver)

        await dispatcher.send(booking_event("evt-1"))
        await dispatcher.send(booking_event("evt-2"))

        stats = dispatcher.get_stats()
        assert stats["total_sent"] == 2
        assert stats["successful_sent"] == 1
        assert stats["failed_sent"] == 1
        assert stats["last_error"] == "HTTP 500: Internal Server Error"

        dispatcher.reset_stats()
        assert dispatcher.get_stats()["total_sent"] == 0


# ============================================================================
# Dispatcher: retry
# ============================================================================

class TestSendWithRetry:
    """Tests for WebhookDispatcher.send_with_retry."""

    @pytest.mark.asyncio
    async def test_recovers_after_503s(self, make_settings):
        """Test 503, 503, 200 succeeds on the third attempt."""
        receiver = ScriptedReceiver([503, 503, 200])
        sleep = RecordingSleep()
        dispatcher = make_dispatcher(make_settings(retry_attempts=3), receiver, sleep)

        result = await dispatcher.send_with_retry(booking_event())

        assert result.success is True
        assert result.attempts == 3
        assert receiver.call_count == 3
        assert sleep.delays == [1.0, 2.0]
        assert receiver.event_ids == ["evt-1", "evt-1", "evt-1"]

    @pytest.mark.asyncio
    async def test_exhausts_attempts(self, make_settings):
        """Test an always-500 receiver fails after retry_attempts."""
        receiver = ScriptedReceiver([500])
        sleep = RecordingSleep()
        dispatcher = make_dispatcher(make_settings(retry_attempts=2), receiver, sleep)

        result = await dispatcher.send_with_retry(booking_event())

        assert result.success is False
        assert result.attempts == 2
        assert result.error.startswith("HTTP 500: ")
        assert sleep.delays == [1.0]
        assert dispatcher.get_stats()["failed_sent"] == 2

    @pytest.mark.asyncio
    async def test_first_attempt_success_does_not_sleep(self, make_settings):
        receiver = ScriptedReceiver([200])
        sleep = RecordingSleep()
        dispatcher = make_dispatcher(make_settings(), receiver, sleep)

        result = await dispatcher.send_with_retry(booking_event())

        assert result.attempts == 1
        assert sleep.delays == []


# ============================================================================
# Dispatcher: batch
# ============================================================================

class TestBatchSend:
    """Tests for WebhookDispatcher.batch_send."""

    @pytest.mark.asyncio
    async def test_batches_of_two(self, make_settings):
        """Test 5 events with batch size 2 run as [2, 2, 1]."""
        log: list = []
        sleep = RecordingSleep(log)

        def handler(request: httpx.Request) -> httpx.Response:
            event_id = json.loads(request.content)["event_id"]
            log.append(event_id)
            return httpx.Response(500 if event_id == "evt-3" else 200)

        dispatcher = make_dispatcher(
            make_settings(retry_attempts=1, batch_delay_ms=250), handler, sleep
        )
        events = [booking_event(f"evt-{n}") for n in range(1, 6)]

        result = await dispatcher.batch_send(events, batch_size=2)

        groups = [set(group.split(",")) for group in ",".join(log).split(",|,")]
        assert groups == [{"evt-1", "evt-2"}, {"evt-3", "evt-4"}, {"evt-5"}]
        assert sleep.delays == [0.25, 0.25]

        assert result.total_events == 5
        assert result.successful_events == 4
        assert result.failed_events == 1
        assert result.successful_events + result.failed_events == 5
        assert result.errors == ["evt-3: HTTP 500: Internal Server Error"]

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_siblings(self, make_settings):
        """Test items in the same batch complete when one keeps failing."""
        receiver = ScriptedReceiver([200], fail_ids={"evt-1"})
        dispatcher = make_dispatcher(make_settings(retry_attempts=2), receiver)

        result = await dispatcher.batch_send(
            [booking_event("evt-1"), booking_event("evt-2"), booking_event("evt-3")],
            batch_size=3,
        )

        assert result.successful_events == 2
        assert result.failed_events == 1
        assert receiver.event_ids.count("evt-1") == 2
        assert receiver.event_ids.count("evt-2") == 1

    @pytest.mark.asyncio
    async def test_invalid_item_counts_as_one_failure(self, make_settings):
        """Test a malformed item fails alone and the rest are delivered."""
        receiver = ScriptedReceiver([200])
        dispatcher = make_dispatcher(make_settings(retry_attempts=2), receiver)

        result = await dispatcher.batch_send(
            [
                {"id": "evt-1", "event_type": "booking.created"},
                {"id": 7},
                "garbage",
                booking_event("evt-4"),
            ],
            batch_size=2,
            delay_between_batches_ms=0,
        )

        assert result.total_events == 4
        assert result.successful_events == 2
        assert result.failed_events == 2
        assert sorted(receiver.event_ids) == ["evt-1", "evt-4"]
        assert result.errors[0].startswith("7: Invalid event payload: id:")
        assert result.errors[1].startswith("#2: Invalid event payload: event:")

    @pytest.mark.asyncio
    async def test_uses_configured_defaults(self, make_settings):
        receiver = ScriptedReceiver([200])
        sleep = RecordingSleep()
        dispatcher = make_dispatcher(
            make_settings(batch_size=4, batch_delay_ms=1000), receiver, sleep
        )

        result = await dispatcher.batch_send([booking_event(f"evt-{n}") for n in range(9)])

        assert result.successful_events == 9
        assert sleep.delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_empty_batch(self, make_settings):
        dispatcher = make_dispatcher(make_settings(), ScriptedReceiver([200]))

        result = await dispatcher.batch_send([])

        assert result.total_events == 0
        assert result.errors == []


# ============================================================================
# Dispatcher: circuit-protected path and test ping
# ============================================================================

class TestSendProtected:
    """Tests for WebhookDispatcher.send_protected."""

    @pytest.mark.asyncio
    async def test_circuit_opens_and_skips_http(self, make_settings):
        receiver = ScriptedReceiver([500])
        dispatcher = make_dispatcher(
            make_settings(circuit_failure_threshold=3, circuit_cooldown_seconds=60), receiver
        )
        policy = RetryPolicy(max_attempts=1)

        for n in range(3):
            result = await dispatcher.send_protected(booking_event(f"evt-{n}"), retry_policy=policy)
            assert result.success is False
            assert result.attempts == 1
            assert result.status_code == 500

        result = await dispatcher.send_protected(booking_event("evt-4"), retry_policy=policy)

        assert result.success is False
        assert result.attempts == 0
        assert "is open" in result.error
        assert receiver.call_count == 3
        assert dispatcher.get_circuit_status()[WEBHOOK_URL]["is_open"] is True

    @pytest.mark.asyncio
    async def test_retries_inside_breaker(self, make_settings):
        receiver = ScriptedReceiver([503, 200])
        sleep = RecordingSleep()
        dispatcher = make_dispatcher(make_settings(retry_base_delay_ms=500), receiver, sleep)

        result = await dispatcher.send_protected(booking_event())

        assert result.success is True
        assert result.attempts == 2
        assert sleep.delays == [0.5]
        assert dispatcher.get_circuit_status()[WEBHOOK_URL]["failures"] == 0


class TestSendTestEvent:
    """Tests for the connectivity test."""

    @pytest.mark.asyncio
    async def test_ping_success(self, make_settings):
        receiver = ScriptedReceiver([200])
        dispatcher = make_dispatcher(make_settings(), receiver)

        result = await dispatcher.send_test_event()

        assert result.success is True
        assert result.status_code == 200
        assert result.response_time_ms >= 0
        assert json.loads(receiver.requests[0].content)["event_type"] == "test.ping"

    @pytest.mark.asyncio
    async def test_ping_unconfigured(self, make_settings):
        receiver = ScriptedReceiver([200])
        dispatcher = make_dispatcher(make_settings(webhook_url=None), receiver)

        result = await dispatcher.send_test_event()

        assert result.success is False
        assert "not configured" in result.error
        assert receiver.call_count == 0
