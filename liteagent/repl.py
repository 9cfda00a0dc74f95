"""Interactive REPL: prompt_toolkit input, rich output, authorization prompts."""

from __future__ import annotations

import asyncio
import logging
import signal

from prompt_toolkit import PromptSession

from liteagent.config import AppConfig
from liteagent.errors import LiteAgentError
from liteagent.events import AgentEvent, EventType
from liteagent.orchestrator import Conversation
from liteagent.ui import renderer
from liteagent.ui.prompts import create_prompt_session, get_prompt_text, parse_authorization

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")


class REPL:
    """Reads prompts, runs them through a Conversation and renders its events."""

    def __init__(self, config: AppConfig, conversation: Conversation):
        self.config = config
        self.conversation = conversation
        self.session = create_prompt_session()
        self._answer_session: PromptSession = PromptSession()
        self._auth_requests: asyncio.Queue[AgentEvent] = asyncio.Queue()
        self._spinner = None
        conversation.events.subscribe(self._on_event)

    def _stop_spinner(self):
        renderer.stop_thinking_spinner(self._spinner)
        self._spinner = None

    def _on_event(self, event: AgentEvent):
        if event.type != EventType.STATUS:
            self._stop_spinner()

        if event.type == EventType.DATA:
            renderer.write_text(event.content)
        elif event.type == EventType.THOUGHT:
            if self.config.verbose:
                renderer.show_thought(event.content)
        elif event.type == EventType.ACTIVITY:
            renderer.show_activity(event.content)
        elif event.type == EventType.STATUS:
            if self.config.verbose:
                renderer.show_info(f"status: {event.content}")
        elif event.type == EventType.ERROR:
            renderer.show_error(event.content)
        elif event.type == EventType.REQUEST_AUTHORIZATION:
            renderer.show_authorization_request(event.tool_name, event.tool_args)
            self._auth_requests.put_nowait(event)
        elif event.type == EventType.RESPONSE_COMPLETE:
            renderer.end_response()

    def _interrupt(self):
        if self.conversation.stop():
            renderer.show_info("Stopping...")

    async def _ask_authorization(self, event: AgentEvent):
        while True:
            try:
                answer = await self._answer_session.prompt_async(
                    "Allow? (o)nce / (s)ession / (d)eny: "
                )
            except (EOFError, KeyboardInterrupt):
                self.conversation.stop()
                return
            decision = parse_authorization(answer)
            if decision is not None:
                self.conversation.authorize(decision, event.tool_name)
                return
            renderer.show_info("Please answer o, s or d.")

    async def run_prompt(self, text: str):
        """Send one prompt and service authorization requests until it completes."""
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self._interrupt)
            handles_sigint = True
        except (NotImplementedError, RuntimeError):
            handles_sigint = False

        self._spinner = renderer.start_thinking_spinner()
        task = asyncio.create_task(self.conversation.send(text))
        try:
            while not task.done():
                request = asyncio.ensure_future(self._auth_requests.get())
                done, _ = await asyncio.wait(
                    {task, request}, return_when=asyncio.FIRST_COMPLETED
                )
                if request in done:
                    await self._ask_authorization(request.result())
                else:
                    request.cancel()
            await task
        except LiteAgentError as e:
            renderer.show_error(str(e))
        finally:
            self._stop_spinner()
            if handles_sigint:
                loop.remove_signal_handler(signal.SIGINT)

    async def run(self, initial_prompt: str | None = None):
        """Main REPL loop."""
        renderer.show_welcome(self.config.model, self.config.working_dir)
        await self.conversation.start()

        try:
            if initial_prompt:
                await self.run_prompt(initial_prompt)

            while True:
                try:
                    text = await self.session.prompt_async(
                        get_prompt_text(self.config.model_short_name)
                    )
                except KeyboardInterrupt:
                    continue
                except EOFError:
                    # Ctrl+D
                    break

                text = text.strip()
                if not text:
                    continue
                if text.lower() in EXIT_COMMANDS:
                    break
                await self.run_prompt(text)
        finally:
            await self.conversation.dispose()
            renderer.console.print("[dim]Goodbye![/dim]")
