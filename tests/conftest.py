"""Shared fixtures for webhook-relay tests."""

import json
from typing import Callable, List, Optional

import httpx
import pytest

from webhook_relay.core.settings import WebhookSettings


WEBHOOK_URL = "https://hook.eu1.make.com/test-hook"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records requested delays."""

    def __init__(self, log: Optional[list] = None):
        self.delays: List[float] = []
        self._log = log

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._log is not None:
            self._log.append("|")


class ScriptedReceiver:
    """httpx handler answering with a scripted sequence of status codes.

    The last status repeats once the script runs out.
    """

    def __init__(self, statuses: List[int], fail_ids: Optional[set] = None):
        self.statuses = list(statuses)
        self.fail_ids = fail_ids or set()
        self.requests: List[httpx.Request] = []
        self.event_ids: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content)
        self.event_ids.append(body["event_id"])

        if body["event_id"] in self.fail_ids:
            return httpx.Response(500)
        index = min(len(self.requests) - 1, len(self.statuses) - 1)
        return httpx.Response(self.statuses[index], text="Accepted")

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_settings() -> Callable[..., WebhookSettings]:
    def factory(**overrides) -> WebhookSettings:
        values = {
            "webhook_url": WEBHOOK_URL,
            "webhook_secret": "s3cret",
            "retry_attempts": 3,
            "timeout_ms": 1000,
            "environment": "test",
        }
        values.update(overrides)
        return WebhookSettings(**values)

    return factory
