"""Built-in filesystem tools served in-process."""

from __future__ import annotations

import asyncio
from typing import Any

from liteagent.config import MAX_FILE_READ_CHARS, MAX_TOOL_OUTPUT_CHARS
from liteagent.tools.base import BaseTool, PathSandboxError, ToolDeclaration, ToolProvider, ToolResult

ERROR_PREFIX = "Error: "


def _format_size(size: int) -> str:
    """Format file size in human-readable form."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


class ListDirTool(BaseTool):
    @property
    def name(self) -> str:
        return "list_dir"

    @property
    def description(self) -> str:
        return (
            "List directory contents (non-recursive). Directories are listed first, "
            "files with their sizes."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory path (default: working directory)",
                },
            },
            "required": [],
        }

    def execute(self, **kwargs: Any) -> str:
        path_str = kwargs.get("path", "")
        try:
            directory = self._resolve_path(path_str) if path_str else self.working_dir
        except PathSandboxError as e:
            return f"Error: {e}"

        if not directory.is_dir():
            return f"Error: Not a directory: {directory}"

        try:
            entries = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
        except PermissionError:
            return f"Error: Permission denied: {directory}"

        if not entries:
            return f"Directory is empty: {directory}"

        lines = []
        for entry in entries:
            if entry.is_dir():
                lines.append(f"  {entry.name}/")
                continue
            try:
                lines.append(f"  {entry.name}  ({_format_size(entry.stat().st_size)})")
            except OSError:
                lines.append(f"  {entry.name}")
        return f"Contents of {directory}:\n" + "\n".join(lines)


class ReadFileTool(BaseTool):
    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return (
            "Read a text file with line numbers. "
            f"Output is truncated at {MAX_FILE_READ_CHARS} characters; "
            "use offset (1-based line) and limit to page through large files."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the working directory"},
                "offset": {"type": "integer", "description": "Starting line number (1-based)"},
                "limit": {"type": "integer", "description": "Maximum number of lines"},
            },
            "required": ["path"],
        }

    def execute(self, **kwargs: Any) -> str:
        path_str = kwargs.get("path", "")
        if not path_str:
            return "Error: path is required"
        try:
            path = self._resolve_path(path_str)
        except PathSandboxError as e:
            return f"Error: {e}"
        if not path.is_file():
            return f"Error: File not found: {path}"

        try:
            lines = path.read_text(errors="replace").splitlines()
        except OSError as e:
            return f"Error: Cannot read {path}: {e}"

        offset = max(1, int(kwargs.get("offset") or 1))
        limit = kwargs.get("limit")
        end = offset - 1 + int(limit) if limit else len(lines)
        numbered = "\n".join(
            f"{i:>6}\t{line}" for i, line in enumerate(lines[offset - 1:end], start=offset)
        )
        if len(numbered) > MAX_FILE_READ_CHARS:
            numbered = numbered[:MAX_FILE_READ_CHARS] + f"\n... [truncated, {len(lines)} lines total]"
        return numbered


class LocalToolProvider(ToolProvider):
    """Serves BaseTool instances; each call runs in a worker thread."""

    def __init__(self, working_dir: str, tools: list[BaseTool] | None = None, name: str = "builtin"):
        self._name = name
        if tools is None:
            tools = [ListDirTool(working_dir), ReadFileTool(working_dir)]
        self._tools: dict[str, BaseTool] = {tool.name: tool for tool in tools}

    @property
    def name(self) -> str:
        return self._name

    async def list_tools(self) -> list[ToolDeclaration]:
        return [tool.to_declaration() for tool in self._tools.values()]

    async def call_tool(self, name: str, arguments: dict) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult(error=f"Unknown tool '{name}'")
        try:
            output = await asyncio.to_thread(tool.execute, **arguments)
        except (TypeError, ValueError) as e:
            return ToolResult(error=f"Invalid arguments for {name}: {e}")

        if len(output) > MAX_TOOL_OUTPUT_CHARS:
            output = output[:MAX_TOOL_OUTPUT_CHARS] + f"\n... [{len(output)} chars total]"
        if output.startswith(ERROR_PREFIX):
            return ToolResult(error=output[len(ERROR_PREFIX):])
        return ToolResult(content=output)
