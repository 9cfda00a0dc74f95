"""Turn orchestration: the send-a-prompt, get-a-final-answer loop."""

from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from liteagent.authorization import AuthorizationGate, Decision, PendingAuthorization
from liteagent.cancellation import CancellationToken
from liteagent.client import ModelRequest, RemoteCaller
from liteagent.commands import CommandHandler
from liteagent.config import AppConfig
from liteagent.errors import (
    Busy,
    NotReady,
    ProviderUnavailable,
    RemoteError,
    ToolDenied,
    ToolNotFound,
    TurnCancelled,
)
from liteagent.events import EventBus
from liteagent.history import ConversationHistory, format_prompt
from liteagent.logging_config import ExecutionTrace, log_tool_execution, session_logger
from liteagent.loop_detection import LoopDetector
from liteagent.stream import FragmentType
from liteagent.tools import ToolDirectory, ToolResult

# Hard ceiling on model round-trips per send(); not configurable
MAX_TURNS = 20

STOPPED_MESSAGE = "Request stopped by user."
MAX_TURNS_MESSAGE = f"Maximum number of turns ({MAX_TURNS}) reached. Stopping."
LOOP_MESSAGE = "Loop detected: the model kept repeating the same output. Stopping this response."


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class TurnState:
    """Bookkeeping for one send(); discarded when the loop exits."""

    token: CancellationToken = field(default_factory=CancellationToken)
    turn_count: int = 0
    aborted: bool = False
    stopped: bool = False
    text: str = ""
    text_recorded: bool = False
    pending: list[PendingAuthorization] = field(default_factory=list)


class Conversation:
    """One chat session with the model: history, approvals and the active turn.

    ``send`` drives the turn loop. ``stop``, ``restart`` and ``authorize``
    are plain method calls meant to be made from other tasks while a turn
    is running. Everything the UI needs to render arrives on ``events``.
    """

    def __init__(
        self,
        config: AppConfig,
        remote: RemoteCaller,
        directory: ToolDirectory,
        events: EventBus | None = None,
        log: logging.Logger | logging.LoggerAdapter | None = None,
        traces_dir: Path | None = None,
        audit_logger: logging.Logger | None = None,
    ):
        self.config = config
        self.remote = remote
        self.directory = directory
        self.events = events or EventBus()
        self.traces_dir = traces_dir
        self.audit_logger = audit_logger
        self.commands = CommandHandler(self)

        self.session_id = new_session_id()
        self._injected_log = log
        self._log = log or session_logger(self.session_id)
        self._history = ConversationHistory()
        self._gate = self._new_gate()
        self._turn: TurnState | None = None
        self._ready = False
        self._disposed = False

        self.remote.set_retry_listener(self._on_retry)

    def _new_gate(self) -> AuthorizationGate:
        return AuthorizationGate(
            on_request=self.events.request_authorization,
            auto_approve=self.config.auto_approve,
            log=self._log,
        )

    # -- state ---------------------------------------------------------------

    @property
    def history(self) -> ConversationHistory:
        return self._history

    @property
    def gate(self) -> AuthorizationGate:
        return self._gate

    @property
    def approved_tools(self) -> set[str]:
        return set(self._gate.approved)

    @property
    def ready(self) -> bool:
        return self._ready and not self._disposed

    @property
    def busy(self) -> bool:
        return self._turn is not None

    @property
    def log(self) -> logging.Logger | logging.LoggerAdapter:
        return self._log

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Discover tools and mark the conversation ready."""
        if self._disposed:
            raise NotReady("Conversation has been disposed.")
        self.events.status("initializing")
        count = await self.directory.discover()
        self._ready = True
        self._log.info("Conversation ready with %d tools (model %s)", count, self.config.model)
        self.events.status("ready")
        providers = len(self.directory.providers)
        summary = f"Loaded {count} tool(s) from {providers} provider(s)"
        if self.directory.failures:
            summary += f"; unavailable: {', '.join(sorted(self.directory.failures))}"
        self.events.activity(summary)

    def restart(self) -> None:
        """Cancel any active turn and begin a new, empty session."""
        if self._turn is not None:
            self._turn.token.cancel()
            self._turn = None
        self._gate.abandon()

        # fresh objects, so a turn still unwinding cannot write into the new session
        self._history = ConversationHistory()
        self.session_id = new_session_id()
        if self._injected_log is None:
            self._log = session_logger(self.session_id)
        self._gate = self._new_gate()
        self._log.info("Session restarted")

    async def dispose(self) -> None:
        """Cancel everything and release providers and the HTTP client."""
        if self._turn is not None:
            self._turn.stopped = True
            self._turn.token.cancel()
            self._turn = None
        self._gate.abandon()
        self._ready = False
        self._disposed = True
        await self.directory.close()
        await self.remote.aclose()

    # -- inbound commands ----------------------------------------------------

    def stop(self) -> bool:
        """Cancel the active turn. Returns False if nothing was running."""
        state = self._turn
        if state is None:
            return False
        self._log.info("Stop requested")
        state.stopped = True
        state.token.cancel()
        self._gate.abandon()
        return True

    def authorize(self, decision: Decision | str, tool_name: str | None = None) -> bool:
        """Answer the pending authorization request."""
        return self._gate.authorize(decision, tool_name)

    def _on_retry(self, delay: float, attempt: int) -> None:
        self.events.activity(f"Retrying in {math.ceil(delay)}s...")

    async def send(self, prompt: str, attachments: list[str] | None = None) -> None:
        """Run one user prompt to completion.

        Raises Busy or NotReady before doing anything else. Every other
        outcome ends with exactly one responseComplete event.
        """
        if self._turn is not None:
            raise Busy()
        if not self.ready:
            raise NotReady()

        handler = self.commands.lookup(prompt)
        state = TurnState()
        self._turn = state
        if handler is not None:
            await self._run_command(state, handler, prompt)
            return

        history = self._history
        gate = self._gate
        log = self._log
        text = format_prompt(prompt, attachments)
        trace = ExecutionTrace(text, self.traces_dir)
        log.info("Prompt received (%d chars)", len(text))
        try:
            history.add_user_text(text)
            await self._turn_loop(state, history, gate, trace)
        except TurnCancelled:
            state.aborted = True
            log.info("Turn cancelled after %d turn(s)", state.turn_count)
            trace.section("Aborted", STOPPED_MESSAGE)
            self._keep_text(state, history)
            if state.stopped:
                self.events.error(STOPPED_MESSAGE)
        except Exception as e:
            log.exception("Turn failed")
            self._keep_text(state, history)
            self._abort(state, trace, f"Error: {e}")
        finally:
            if self._turn is state:
                self._turn = None
            try:
                if trace.traces_dir is not None:
                    await asyncio.to_thread(trace.save, log)
            finally:
                self.events.response_complete()

    async def _run_command(self, state: TurnState, handler, prompt: str) -> None:
        try:
            output = await handler(prompt)
            if output:
                self.events.data(output)
        except Exception as e:
            self._log.exception("Command failed: %s", prompt)
            self.events.error(f"Command failed: {e}")
        finally:
            if self._turn is state:
                self._turn = None
            self.events.response_complete()

    # -- turn loop -----------------------------------------------------------

    def _keep_text(self, state: TurnState, history: ConversationHistory) -> None:
        """Record streamed model text once per turn, whatever ends the turn."""
        if state.text and not state.text_recorded:
            history.add_model_text(state.text)
            state.text_recorded = True

    def _abort(self, state: TurnState, trace: ExecutionTrace, message: str) -> None:
        state.aborted = True
        self._log.warning("Turn aborted: %s", message)
        trace.section("Aborted", message)
        self.events.error(message)

    async def _turn_loop(
        self,
        state: TurnState,
        history: ConversationHistory,
        gate: AuthorizationGate,
        trace: ExecutionTrace,
    ) -> None:
        detector = LoopDetector()
        token = state.token

        while True:
            state.turn_count += 1
            if state.turn_count > MAX_TURNS:
                self._abort(state, trace, MAX_TURNS_MESSAGE)
                return
            trace.turn(state.turn_count)
            state.text = ""
            state.text_recorded = False
            state.pending = []
            thoughts: list[str] = []
            failure = ""

            request = ModelRequest(
                model=self.config.model,
                contents=history.to_contents(),
                tools=self.directory.function_declarations(),
                system_instruction=self.config.system_prompt,
            )
            try:
                async with aclosing(self.remote.stream(request, token, detector)) as fragments:
                    async for fragment in fragments:
                        if token.cancelled:
                            break
                        if fragment.type == FragmentType.TEXT:
                            state.text += fragment.text
                            self.events.data(fragment.text)
                        elif fragment.type == FragmentType.THOUGHT:
                            thoughts.append(fragment.text)
                            self.events.thought(fragment.text)
                        elif fragment.type == FragmentType.TOOL_CALL:
                            state.pending.append(PendingAuthorization(
                                tool_name=fragment.tool_name,
                                tool_args=fragment.tool_args,
                                call_id=fragment.call_id,
                            ))
                            self.events.activity(f"Planning tool call: {fragment.tool_name}...")
                        elif fragment.type == FragmentType.ERROR:
                            failure = f"Model error: {fragment.text}"
                            break
                        elif fragment.type == FragmentType.LOOP_DETECTED:
                            failure = LOOP_MESSAGE
                            break
            except TurnCancelled:
                # the token is set; handled with the partial text below
                pass
            except RemoteError as e:
                failure = str(e)
            except httpx.HTTPError as e:
                failure = f"Network error: {e}"

            trace.section("Thought", "".join(thoughts))
            trace.section("Response", state.text)

            token.raise_if_cancelled()
            if failure:
                self._keep_text(state, history)
                self._abort(state, trace, failure)
                return
            if not state.pending:
                history.add_model_text(state.text)
                state.text_recorded = True
                self._log.info("Turn complete after %d turn(s)", state.turn_count)
                return

            if not await self._run_tools(state, history, gate, trace):
                return

    async def _run_tools(
        self,
        state: TurnState,
        history: ConversationHistory,
        gate: AuthorizationGate,
        trace: ExecutionTrace,
    ) -> bool:
        """Authorize and execute the queued calls. Returns False if the turn was aborted."""
        trace.add("\n#### Tool Requests")
        for call in state.pending:
            trace.tool_request(call.tool_name, call.tool_args)

        try:
            await gate.check(list(state.pending), state.token)
        except ToolDenied as e:
            self._keep_text(state, history)
            self._abort(state, trace, f"{e} The response was stopped.")
            return False

        self.events.activity(f"Executing {len(state.pending)} tool(s)...")
        results: list[tuple[PendingAuthorization, ToolResult]] = []
        for call in state.pending:
            result = await self._invoke(state, call)
            trace.section(f"Tool Response: {call.tool_name}", result.as_text()[:2000])
            results.append((call, result))

        self._keep_text(state, history)
        for call, _ in results:
            history.add_tool_call(call.tool_name, call.tool_args, call.call_id)
        for call, result in results:
            history.add_tool_result(call.tool_name, result, call.call_id)
        return True

    async def _invoke(self, state: TurnState, call: PendingAuthorization) -> ToolResult:
        started = time.monotonic()
        try:
            # a tool that ignores the token keeps running; its result is dropped
            result = await state.token.race(
                self.directory.invoke(call.tool_name, call.tool_args), detach=True
            )
        except (ToolNotFound, ProviderUnavailable) as e:
            result = ToolResult(error=str(e))
        except TurnCancelled:
            raise
        except Exception as e:
            self._log.exception("Tool %s raised", call.tool_name)
            result = ToolResult(error=f"{type(e).__name__}: {e}")
        duration = time.monotonic() - started

        self._log.info(
            "Tool %s finished in %.2fs%s",
            call.tool_name, duration, " (error)" if result.is_error else "",
        )
        log_tool_execution(
            call.tool_name, call.tool_args, result.as_text(), duration,
            audit_logger=self.audit_logger,
        )
        return result
