"""Human-in-the-loop consent for tool execution."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from liteagent.cancellation import CancellationToken
from liteagent.errors import ToolDenied

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    """Answers the user can give to an authorization request."""

    ONCE = "once"
    SESSION = "session"
    DENY = "deny"


@dataclass
class PendingAuthorization:
    """A tool call waiting in the authorization queue."""

    tool_name: str
    tool_args: dict
    call_id: str = ""
    future: asyncio.Future | None = field(default=None, repr=False)


# Called when a request reaches the head of the queue: (tool_name, tool_args)
RequestCallback = Callable[[str, dict], None]


class AuthorizationGate:
    """Checks tool calls one at a time against the session approval record.

    Calls are queued in arrival order. Only the head of the queue can be
    awaiting a decision; the rest wait behind it.
    """

    def __init__(
        self,
        on_request: RequestCallback | None = None,
        auto_approve: bool = False,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.on_request = on_request
        self.auto_approve = auto_approve
        self.approved: set[str] = set()
        self._queue: deque[PendingAuthorization] = deque()
        self._log = log or logger

    @property
    def active(self) -> PendingAuthorization | None:
        """The request currently awaiting a decision, if any."""
        head = self._queue[0] if self._queue else None
        if head is not None and head.future is not None and not head.future.done():
            return head
        return None

    def is_approved(self, tool_name: str) -> bool:
        return self.auto_approve or tool_name in self.approved

    async def check(
        self,
        calls: list[PendingAuthorization],
        token: CancellationToken | None = None,
    ) -> list[PendingAuthorization]:
        """Authorize ``calls`` in order; returns them once all are approved.

        Raises ToolDenied on the first denial; calls still queued behind it
        are abandoned. Raises TurnCancelled if ``token`` fires while waiting.
        """
        self._queue.extend(calls)
        try:
            while self._queue:
                head = self._queue[0]
                if self.is_approved(head.tool_name):
                    self._queue.popleft()
                    continue

                self._log.info("Tool requires authorization: %s", head.tool_name)
                head.future = asyncio.get_running_loop().create_future()
                if self.on_request is not None:
                    self.on_request(head.tool_name, head.tool_args)

                if token is not None:
                    decision = await token.race(asyncio.shield(head.future))
                else:
                    decision = await head.future

                self._queue.popleft()
                if decision == Decision.DENY:
                    raise ToolDenied(head.tool_name)
        finally:
            self._queue.clear()
        return calls

    def authorize(self, decision: Decision | str, tool_name: str | None = None) -> bool:
        """Resolve the active request. Returns False if nothing was waiting.

        ``tool_name``, when given, must name the active request.
        """
        decision = Decision(decision)
        head = self.active
        if head is None:
            self._log.debug("Authorization %s ignored: nothing pending", decision.value)
            return False
        if tool_name and tool_name != head.tool_name:
            self._log.warning(
                "Authorization for '%s' ignored: waiting on '%s'", tool_name, head.tool_name
            )
            return False

        self._log.info("Authorization decision for %s: %s", head.tool_name, decision.value)
        if decision == Decision.SESSION:
            self.approved.add(head.tool_name)
        head.future.set_result(decision)
        return True

    def abandon(self) -> None:
        """Drop every queued request without resolving it."""
        for pending in self._queue:
            if pending.future is not None and not pending.future.done():
                pending.future.cancel()
        self._queue.clear()
