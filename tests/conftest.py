"""Shared fixtures for liteagent tests."""

import asyncio
import logging
from pathlib import Path

import pytest

from liteagent.client import RemoteCaller
from liteagent.config import AppConfig
from liteagent.events import EventBus, EventType
from liteagent.orchestrator import Conversation
from liteagent.stream import FragmentType, StreamFragment
from liteagent.tools import ToolDirectory
from liteagent.tools.base import ToolDeclaration, ToolProvider, ToolResult


def text(value: str) -> StreamFragment:
    return StreamFragment(type=FragmentType.TEXT, text=value)


def call(name: str, args: dict | None = None, call_id: str = "") -> StreamFragment:
    return StreamFragment(
        type=FragmentType.TOOL_CALL,
        tool_name=name,
        tool_args=args or {},
        call_id=call_id or f"call_{name}",
    )


def finished() -> StreamFragment:
    return StreamFragment(type=FragmentType.FINISHED, text="STOP")


class ScriptedRemote(RemoteCaller):
    """Plays back one scripted fragment list per remote call.

    A script entry may also be an exception (raised instead of streaming)
    or, inside a list, an asyncio.Event the stream waits on.
    """

    def __init__(self, turns=None):
        self.turns = list(turns or [])
        self.requests = []
        self.retry_listener = None
        self.closed = False

    def set_retry_listener(self, listener):
        self.retry_listener = listener

    async def stream(self, request, token=None, loop_detector=None):
        self.requests.append(request)
        if not self.turns:
            raise AssertionError("unexpected remote call")
        script = self.turns.pop(0)
        if isinstance(script, Exception):
            raise script
        for item in script:
            if isinstance(item, asyncio.Event):
                await token.race(item.wait())
                continue
            if token is not None and token.cancelled:
                return
            yield item
            await asyncio.sleep(0)

    async def aclose(self):
        self.closed = True


class FakeProvider(ToolProvider):
    """In-memory tool provider that records every call."""

    def __init__(self, name="fake", tools=None, fail_connect=False):
        self._name = name
        self.tools = dict(tools or {"list_dir": "a.txt\nb.txt"})
        self.fail_connect = fail_connect
        self.calls = []
        self.is_connected = not fail_connect
        self.closed = False

    @property
    def name(self):
        return self._name

    @property
    def connected(self):
        return self.is_connected

    async def connect(self):
        if self.fail_connect:
            raise ConnectionError("server not running")
        self.is_connected = True

    async def list_tools(self):
        return [ToolDeclaration(name=n, description=f"{n} tool") for n in self.tools]

    async def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        outcome = self.tools[name]
        if callable(outcome):
            outcome = await outcome(arguments)
        if isinstance(outcome, ToolResult):
            return outcome
        return ToolResult(content=outcome)

    async def close(self):
        self.closed = True


class EventRecorder:
    """Collects every event emitted on a bus."""

    def __init__(self, bus: EventBus):
        self.events = []
        bus.subscribe(self.events.append)

    def of(self, event_type: EventType):
        return [e for e in self.events if e.type == event_type]

    def count(self, event_type: EventType) -> int:
        return len(self.of(event_type))

    def data_text(self) -> str:
        return "".join(e.content for e in self.of(EventType.DATA))

    async def wait_for(self, event_type: EventType, count: int = 1):
        for _ in range(500):
            if self.count(event_type) >= count:
                return self.of(event_type)[count - 1]
            await asyncio.sleep(0)
        raise AssertionError(f"no {event_type.value} event arrived")


@pytest.fixture
def tmp_workdir(tmp_path: Path) -> Path:
    """Create a temporary working directory for tool tests."""
    workdir = tmp_path / "project"
    workdir.mkdir()
    return workdir


@pytest.fixture
def config(tmp_workdir: Path) -> AppConfig:
    return AppConfig(model="test-model", endpoint="https://llm.test/v1", working_dir=str(tmp_workdir))


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_conversation(config, provider):
    """Factory for started conversations wired to a scripted remote."""

    async def _make(turns=None, providers=None, **overrides):
        for key, value in overrides.items():
            setattr(config, key, value)
        remote = turns if isinstance(turns, ScriptedRemote) else ScriptedRemote(turns)
        conversation = Conversation(
            config,
            remote,
            ToolDirectory(providers if providers is not None else [provider]),
            audit_logger=logging.getLogger("tests.audit"),
        )
        recorder = EventRecorder(conversation.events)
        await conversation.start()
        return conversation, remote, recorder

    return _make
