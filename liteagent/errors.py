"""Exception types raised across liteagent."""

from __future__ import annotations


class LiteAgentError(Exception):
    """Base class for all liteagent errors."""


class Busy(LiteAgentError):
    """A turn is already active on this conversation."""

    def __init__(self) -> None:
        super().__init__("A response is still in progress. Wait for it to complete or stop it.")


class NotReady(LiteAgentError):
    """The conversation has not been started, or has been disposed."""

    def __init__(self, reason: str = "Not ready yet. Please wait for initialization.") -> None:
        super().__init__(reason)


class TurnCancelled(LiteAgentError):
    """The active turn was stopped by its cancellation token."""


class ToolDenied(LiteAgentError):
    """The user refused to let a tool run."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"User denied execution of '{tool_name}'.")


class ToolNotFound(LiteAgentError):
    """No provider registered a tool with this name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found.")


class ProviderUnavailable(LiteAgentError):
    """The provider owning a tool has lost its connection."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Tool provider '{provider}' is not connected.")


class RemoteError(LiteAgentError):
    """The model endpoint answered with a non-success status."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"API error ({status}): {message}")
