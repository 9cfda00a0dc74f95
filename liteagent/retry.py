"""Rate-limit aware retry for network calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from liteagent.config import MAX_RETRIES, RETRY_BASE_DELAY

logger = logging.getLogger(__name__)

R = TypeVar("R")

RATE_LIMIT_STATUS = 429

# Called before each backoff wait with (delay_seconds, attempt_number)
WaitCallback = Callable[[float, int], None]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class CallDescriptor:
    """Everything needed to (re)issue one HTTP request."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass
class RetryPolicy:
    """Retry budget and backoff schedule."""

    max_retries: int = MAX_RETRIES
    base_delay: float = RETRY_BASE_DELAY
    retry_statuses: frozenset[int] = frozenset({RATE_LIMIT_STATUS})

    def backoff(self, attempt: int) -> float:
        """Exponential delay for the given zero-based attempt."""
        return self.base_delay * (2 ** attempt)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header: delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable Retry-After header: %r", value)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


async def retry_on_status(
    call: Callable[[], Awaitable[R]],
    *,
    should_retry: Callable[[R], bool],
    policy: RetryPolicy | None = None,
    delay_hint: Callable[[R], float | None] | None = None,
    discard: Callable[[R], Awaitable[None]] | None = None,
    on_wait: WaitCallback | None = None,
    sleep: Sleep = asyncio.sleep,
) -> R:
    """Run ``call`` until ``should_retry`` rejects its result or the budget runs out.

    The last result is returned as-is once retries are exhausted; deciding
    whether it is a failure is the caller's job. Exceptions raised by
    ``call`` are never retried.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        result = await call()
        if not should_retry(result) or attempt >= policy.max_retries:
            return result

        hinted = delay_hint(result) if delay_hint else None
        delay = hinted if hinted is not None else policy.backoff(attempt)
        attempt += 1
        if discard is not None:
            await discard(result)
        if on_wait is not None:
            on_wait(delay, attempt)
        await sleep(delay)


class RetryGate:
    """Issues HTTP calls through an httpx client, backing off on rate limits."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: RetryPolicy | None = None,
        on_wait: WaitCallback | None = None,
    ):
        self.client = client
        self.policy = policy or RetryPolicy()
        self.on_wait = on_wait

    def _build(self, call: CallDescriptor) -> httpx.Request:
        return self.client.build_request(
            call.method,
            call.url,
            headers=call.headers,
            json=call.body,
        )

    def _notify(self, delay: float, attempt: int) -> None:
        logger.warning(
            "Rate limited, retrying in %.1fs (attempt %d/%d)",
            delay, attempt, self.policy.max_retries,
        )
        if self.on_wait is not None:
            self.on_wait(delay, attempt)

    async def send(
        self,
        call: CallDescriptor,
        *,
        stream: bool = False,
        sleep: Sleep = asyncio.sleep,
    ) -> httpx.Response:
        """Send ``call``, retrying only on rate-limit statuses.

        With ``stream=True`` the body is left unread; the caller must close
        the returned response.
        """

        async def _attempt() -> httpx.Response:
            return await self.client.send(self._build(call), stream=stream)

        async def _discard(response: httpx.Response) -> None:
            await response.aclose()

        return await retry_on_status(
            _attempt,
            should_retry=lambda r: r.status_code in self.policy.retry_statuses,
            policy=self.policy,
            delay_hint=lambda r: parse_retry_after(r.headers.get("retry-after")),
            discard=_discard,
            on_wait=self._notify,
            sleep=sleep,
        )
