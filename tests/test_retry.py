"""Tests for rate-limit retry: backoff schedule, Retry-After and budget exhaustion."""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from liteagent.retry import (
    CallDescriptor,
    RetryGate,
    RetryPolicy,
    parse_retry_after,
    retry_on_status,
)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def scripted_transport(*responses):
    """MockTransport answering with the given responses in order."""
    remaining = list(responses)
    seen = []

    def handler(request):
        seen.append(request)
        return remaining.pop(0)

    transport = httpx.MockTransport(handler)
    transport.seen = seen
    return transport


CALL = CallDescriptor(method="POST", url="https://llm.test/v1/generate", body={"q": 1})


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("1") == 1.0
        assert parse_retry_after("2.5") == 2.5

    def test_missing_or_garbage(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("soon") is None

    def test_http_date(self):
        when = datetime.now(timezone.utc) + timedelta(seconds=30)
        delay = parse_retry_after(format_datetime(when, usegmt=True))
        assert 25 <= delay <= 31

    def test_past_date_is_zero(self):
        when = datetime.now(timezone.utc) - timedelta(minutes=5)
        assert parse_retry_after(format_datetime(when, usegmt=True)) == 0.0


class TestRetryOnStatus:
    async def test_backoff_schedule(self):
        results = iter([429, 429, 429, 200])
        sleep = RecordingSleep()

        async def call():
            return next(results)

        result = await retry_on_status(
            call,
            should_retry=lambda r: r == 429,
            policy=RetryPolicy(max_retries=3, base_delay=2.0),
            sleep=sleep,
        )
        assert result == 200
        assert sleep.delays == [2.0, 4.0, 8.0]

    async def test_exceptions_are_not_retried(self):
        attempts = []

        async def call():
            attempts.append(1)
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await retry_on_status(call, should_retry=lambda r: True, sleep=RecordingSleep())
        assert len(attempts) == 1


class TestRetryGate:
    async def test_retry_after_honored_then_success(self):
        transport = scripted_transport(
            httpx.Response(429, headers={"retry-after": "1"}),
            httpx.Response(200, text="ok"),
        )
        waits = []
        sleep = RecordingSleep()
        async with httpx.AsyncClient(transport=transport) as client:
            gate = RetryGate(client, on_wait=lambda delay, attempt: waits.append((delay, attempt)))
            response = await gate.send(CALL, sleep=sleep)

        assert response.status_code == 200
        assert sleep.delays == [1.0]
        assert waits == [(1.0, 1)]
        assert len(transport.seen) == 2
        assert transport.seen[1].content == transport.seen[0].content

    async def test_exhausted_budget_returns_last_response(self):
        transport = scripted_transport(*[httpx.Response(429) for _ in range(3)])
        sleep = RecordingSleep()
        async with httpx.AsyncClient(transport=transport) as client:
            gate = RetryGate(client, RetryPolicy(max_retries=2, base_delay=0.5))
            response = await gate.send(CALL, sleep=sleep)

        assert response.status_code == 429
        assert sleep.delays == [0.5, 1.0]

    async def test_other_errors_returned_untouched(self):
        transport = scripted_transport(httpx.Response(500, text="boom"))
        sleep = RecordingSleep()
        async with httpx.AsyncClient(transport=transport) as client:
            response = await RetryGate(client).send(CALL, sleep=sleep)

        assert response.status_code == 500
        assert sleep.delays == []

    async def test_connection_errors_propagate(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.ConnectError):
                await RetryGate(client).send(CALL, sleep=RecordingSleep())
