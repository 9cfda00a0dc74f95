"""Tests for the authorization gate and the cancellation token."""

import asyncio

import pytest

from liteagent.authorization import AuthorizationGate, Decision, PendingAuthorization
from liteagent.cancellation import CancellationToken
from liteagent.errors import ToolDenied, TurnCancelled


def pending(*names):
    return [PendingAuthorization(tool_name=n, tool_args={"n": n}) for n in names]


async def until(predicate):
    for _ in range(200):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never held")


class TestAuthorizationGate:
    async def test_approved_calls_pass_without_request(self):
        requests = []
        gate = AuthorizationGate(on_request=lambda name, args: requests.append(name))
        gate.approved.add("list_dir")

        await gate.check(pending("list_dir", "list_dir"))

        assert requests == []

    async def test_auto_approve(self):
        requests = []
        gate = AuthorizationGate(on_request=lambda n, a: requests.append(n), auto_approve=True)
        await gate.check(pending("anything"))
        assert requests == []

    async def test_one_request_at_a_time_in_order(self):
        requests = []
        gate = AuthorizationGate(on_request=lambda name, args: requests.append(name))
        task = asyncio.create_task(gate.check(pending("first", "second")))

        await until(lambda: gate.active is not None)
        assert requests == ["first"]

        gate.authorize(Decision.ONCE)
        await until(lambda: len(requests) == 2)
        assert gate.active.tool_name == "second"
        gate.authorize("once", "second")

        await task
        assert gate.approved == set()

    async def test_session_decision_recorded(self):
        gate = AuthorizationGate()
        task = asyncio.create_task(gate.check(pending("read_file", "read_file")))
        await until(lambda: gate.active is not None)

        gate.authorize("session", "read_file")
        await task

        assert gate.is_approved("read_file")

    async def test_deny_raises_and_clears_queue(self):
        requests = []
        gate = AuthorizationGate(on_request=lambda name, args: requests.append(name))
        task = asyncio.create_task(gate.check(pending("rm", "ls")))
        await until(lambda: gate.active is not None)

        gate.authorize(Decision.DENY, "rm")

        with pytest.raises(ToolDenied) as exc_info:
            await task
        assert exc_info.value.tool_name == "rm"
        assert requests == ["rm"]
        assert gate.active is None

    async def test_mismatched_name_ignored(self):
        gate = AuthorizationGate()
        task = asyncio.create_task(gate.check(pending("ls")))
        await until(lambda: gate.active is not None)

        assert gate.authorize("once", "rm") is False
        assert gate.active is not None
        assert gate.authorize("once", "ls") is True
        await task

    def test_authorize_without_pending(self):
        assert AuthorizationGate().authorize("once") is False

    async def test_cancelled_wait_abandons_request(self):
        gate = AuthorizationGate()
        token = CancellationToken()
        task = asyncio.create_task(gate.check(pending("ls"), token))
        await until(lambda: gate.active is not None)

        token.cancel()

        with pytest.raises(TurnCancelled):
            await task
        assert gate.active is None
        assert gate.authorize("once") is False


class TestCancellationToken:
    async def test_race_returns_result(self):
        token = CancellationToken()

        async def work():
            return 42

        assert await token.race(work()) == 42

    async def test_race_cancels_work(self):
        token = CancellationToken()
        cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        task = asyncio.create_task(token.race(work()))
        await asyncio.sleep(0)
        token.cancel()

        with pytest.raises(TurnCancelled):
            await task
        assert cancelled.is_set()

    async def test_detached_work_keeps_running(self):
        token = CancellationToken()
        release = asyncio.Event()
        finished = []

        async def work():
            await release.wait()
            finished.append(True)
            return "late"

        task = asyncio.create_task(token.race(work(), detach=True))
        await asyncio.sleep(0)
        token.cancel()
        with pytest.raises(TurnCancelled):
            await task

        release.set()
        await until(lambda: finished)

    async def test_already_cancelled(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(TurnCancelled):
            await token.race(asyncio.sleep(10))
        with pytest.raises(TurnCancelled):
            await token.sleep(10)
        with pytest.raises(TurnCancelled):
            token.raise_if_cancelled()
