"""Cooperative cancellation for a single send()."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from liteagent.errors import TurnCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _discard_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Detached task finished with error after cancellation: %s", exc)


class CancellationToken:
    """One-shot stop signal threaded through the remote call, the stream and tool calls."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelled()

    async def race(self, awaitable: Awaitable[T], *, detach: bool = False) -> T:
        """Await ``awaitable`` unless the token fires first.

        When the token wins, the work is cancelled, or left running in the
        background with its outcome discarded if ``detach`` is set.
        Raises TurnCancelled in that case.
        """
        if self.cancelled:
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            raise TurnCancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if not self.cancelled:
            return work.result()

        if work.done():
            # finished alongside the stop signal; the outcome is dropped
            _discard_result(work)
        elif detach:
            work.add_done_callback(_discard_result)
        else:
            work.cancel()
            # let the cancelled work unwind before callers release its resources
            await asyncio.gather(work, return_exceptions=True)
        raise TurnCancelled()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early with TurnCancelled."""
        await self.race(asyncio.sleep(delay))
