"""Tool provider contract and the base class for built-in tools."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


class PathSandboxError(Exception):
    """Raised when a file path escapes the working directory."""


@dataclass
class ToolDeclaration:
    """What the model is told about one tool."""

    name: str
    description: str = ""
    parameters: dict = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_function_declaration(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass
class ToolResult:
    """Outcome of one tool invocation: a success payload or a structured error."""

    content: str = ""
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_response(self) -> dict:
        if self.is_error:
            return {"error": self.error}
        return {"content": self.content}

    def as_text(self) -> str:
        return f"Error: {self.error}" if self.is_error else self.content


class ToolProvider(ABC):
    """A source of named tools, local or remote."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name used in listings and logs."""
        ...

    @property
    def connected(self) -> bool:
        return True

    async def connect(self) -> None:
        """Open the provider's connection, if it has one."""

    @abstractmethod
    async def list_tools(self) -> list[ToolDeclaration]:
        ...

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict) -> ToolResult:
        """Run a tool. Tool-level failures come back as ToolResult.error."""
        ...

    async def close(self) -> None:
        """Release the provider's connection, if it has one."""


class BaseTool(ABC):
    """Base class for tools implemented in-process."""

    def __init__(self, working_dir: str):
        self.working_dir = Path(working_dir).resolve()

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name as the model will call it."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict:
        """JSON Schema for the tool's parameters."""
        ...

    @abstractmethod
    def execute(self, **kwargs: Any) -> str:
        """Execute the tool. Must always return a string, never raise.

        Failures are reported as strings starting with ``Error:``.
        """
        ...

    def _resolve_path(self, path: str) -> Path:
        """Resolve ``path`` against working_dir, refusing anything outside it."""
        p = Path(path).expanduser()
        resolved = p.resolve() if p.is_absolute() else (self.working_dir / p).resolve()
        try:
            resolved.relative_to(self.working_dir)
        except ValueError:
            raise PathSandboxError(
                f"Access denied: {resolved} is outside the working directory ({self.working_dir})"
            ) from None
        return resolved

    def to_declaration(self) -> ToolDeclaration:
        return ToolDeclaration(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )
