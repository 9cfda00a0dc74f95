"""Outbound notifications from a conversation to its presentation layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of events a conversation emits."""

    DATA = "data"
    THOUGHT = "thought"
    ACTIVITY = "activity"
    STATUS = "status"
    ERROR = "error"
    REQUEST_AUTHORIZATION = "request_authorization"
    RESPONSE_COMPLETE = "response_complete"


@dataclass
class AgentEvent:
    """An event emitted by a conversation for UI rendering."""

    type: EventType
    content: str = ""
    tool_name: str = ""
    tool_args: dict = field(default_factory=dict)


Listener = Callable[[AgentEvent], None]


class EventBus:
    """Synchronous fan-out to subscribed listeners.

    Listeners must not block; a listener that raises is logged and the
    remaining listeners still run.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Add a listener. Returns a function that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: AgentEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", event.type.value)

    def data(self, text: str) -> None:
        self.emit(AgentEvent(type=EventType.DATA, content=text))

    def thought(self, text: str) -> None:
        self.emit(AgentEvent(type=EventType.THOUGHT, content=text))

    def activity(self, label: str) -> None:
        self.emit(AgentEvent(type=EventType.ACTIVITY, content=label))

    def status(self, state: str) -> None:
        self.emit(AgentEvent(type=EventType.STATUS, content=state))

    def error(self, message: str) -> None:
        self.emit(AgentEvent(type=EventType.ERROR, content=message))

    def request_authorization(self, tool_name: str, tool_args: dict) -> None:
        self.emit(AgentEvent(
            type=EventType.REQUEST_AUTHORIZATION,
            tool_name=tool_name,
            tool_args=tool_args,
        ))

    def response_complete(self) -> None:
        self.emit(AgentEvent(type=EventType.RESPONSE_COMPLETE))
