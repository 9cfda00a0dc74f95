"""Slash commands handled locally, without a model round-trip."""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from liteagent.orchestrator import Conversation

CommandFn = Callable[[str], Awaitable[str]]

HELP_TEXT = """\
Available commands:
  /help               Show this help
  /clear              Clear the conversation (same as /restart)
  /restart            Start a new session: empty history, no approved tools
  /status             Show model, session and tool counts
  /tools              List the tools offered to the model
  /mcp [list]         Show tool providers and their connection state
  /mcp reconnect      Reconnect providers and rediscover tools
  /debug              Show the history summary and session-approved tools

Anything else starting with / is sent to the model as a normal prompt."""


class CommandHandler:
    """Maps slash-prefixed input to local handlers for one conversation."""

    def __init__(self, conversation: "Conversation"):
        self.conversation = conversation
        self._commands: dict[str, CommandFn] = {
            "/help": self.cmd_help,
            "/clear": self.cmd_restart,
            "/restart": self.cmd_restart,
            "/status": self.cmd_status,
            "/tools": self.cmd_tools,
            "/mcp": self.cmd_mcp,
            "/debug": self.cmd_debug,
        }

    def lookup(self, text: str) -> CommandFn | None:
        """Return the handler for ``text``, or None if it is not a local command."""
        stripped = text.strip()
        if not stripped.startswith("/"):
            return None
        cmd = stripped.split(maxsplit=1)[0].lower()
        return self._commands.get(cmd)

    @staticmethod
    def _arg(text: str) -> str:
        parts = text.strip().split(maxsplit=1)
        return parts[1].strip() if len(parts) > 1 else ""

    async def cmd_help(self, text: str) -> str:
        return HELP_TEXT

    async def cmd_restart(self, text: str) -> str:
        self.conversation.restart()
        return "Conversation cleared. New session started."

    async def cmd_status(self, text: str) -> str:
        conv = self.conversation
        status = conv.directory.get_status()
        connected = sum(1 for p in status["providers"].values() if p["connected"])
        lines = [
            f"Model: {conv.config.model}",
            f"Endpoint: {conv.config.endpoint}",
            f"Session: {conv.session_id}",
            f"Working directory: {conv.config.working_dir}",
            f"History entries: {len(conv.history)}",
            f"Tools: {status['total_tools']} from {connected}/{len(status['providers'])} providers",
            f"Approved for session: {len(conv.approved_tools)}",
            f"Auto-approve: {'on' if conv.config.auto_approve else 'off'}",
        ]
        return "\n".join(lines)

    async def cmd_tools(self, text: str) -> str:
        declarations = self.conversation.directory.list_declarations()
        if not declarations:
            return "No tools available."
        lines = [f"Tools ({len(declarations)}):"]
        for decl in declarations:
            summary = decl.description.split("\n", 1)[0]
            lines.append(f"  {decl.name} - {summary}" if summary else f"  {decl.name}")
        return "\n".join(lines)

    async def cmd_mcp(self, text: str) -> str:
        arg = self._arg(text).lower()
        directory = self.conversation.directory
        if arg == "reconnect":
            count = await directory.reload()
            header = f"Reconnected providers: {count} tool(s) available."
        elif arg in ("", "list"):
            header = ""
        else:
            return f"Unknown /mcp subcommand: {arg}. Usage: /mcp [list|reconnect]"

        status = directory.get_status()
        lines = [header] if header else []
        if not status["providers"]:
            lines.append("No tool providers configured.")
        for name, info in status["providers"].items():
            state = "connected" if info["connected"] else "disconnected"
            lines.append(f"{name}: {state}, {len(info['tools'])} tool(s)")
            if info["error"]:
                lines.append(f"  error: {info['error']}")
            for tool in info["tools"]:
                lines.append(f"  - {tool}")
        for tool, provider in status["collisions"]:
            lines.append(f"Shadowed: '{tool}' from {provider} (an earlier provider owns it)")
        return "\n".join(lines)

    async def cmd_debug(self, text: str) -> str:
        conv = self.conversation
        lines = [f"Session {conv.session_id}: {len(conv.history)} history entries"]
        lines.extend(conv.history.summary())
        approved = sorted(conv.approved_tools)
        lines.append(f"Approved for session: {', '.join(approved) if approved else '(none)'}")
        return "\n".join(lines)
