"""MCP (Model Context Protocol) tool providers.

Each configured server becomes one ToolProvider. Servers are described in
``~/.liteagent/mcp.json`` and ``<project>/.liteagent/mcp.json`` (project
entries override global ones) under an ``mcpServers`` key.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anyio
from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from liteagent.config import MCP_CONFIG_FILE, MCP_CONNECT_TIMEOUT, PROJECT_MCP_CONFIG
from liteagent.errors import ProviderUnavailable
from liteagent.tools.base import ToolDeclaration, ToolProvider, ToolResult

logger = logging.getLogger(__name__)

# Errors meaning the transport itself is gone, not that the tool failed
_CONNECTION_ERRORS = (
    OSError,
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
)


@dataclass
class MCPServerConfig:
    """Parsed configuration for a single MCP server."""

    name: str
    transport: str = "stdio"  # "stdio" or "sse"
    command: str = ""
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    disabled: bool = False

    @classmethod
    def from_dict(cls, name: str, raw: dict) -> "MCPServerConfig":
        transport = raw.get("type") or raw.get("transport") or ("sse" if raw.get("url") else "stdio")
        return cls(
            name=name,
            transport=transport,
            command=raw.get("command", ""),
            args=list(raw.get("args", [])),
            env=dict(raw.get("env", {})),
            url=raw.get("url", ""),
            headers=dict(raw.get("headers", {})),
            disabled=bool(raw.get("disabled", False)),
        )


def _read_servers(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to read MCP config %s: %s", path, e)
        return {}
    servers = data.get("mcpServers")
    if servers is None:
        servers = data.get("mcp", {}).get("servers", {})
    return servers if isinstance(servers, dict) else {}


def load_mcp_config(
    working_dir: str,
    global_config: Path | None = None,
) -> dict[str, MCPServerConfig]:
    """Load and merge global + project MCP configs, skipping disabled servers."""
    merged: dict[str, Any] = {}
    global_config = global_config or MCP_CONFIG_FILE
    if global_config.exists():
        merged.update(_read_servers(global_config))

    project_cfg = Path(working_dir) / PROJECT_MCP_CONFIG
    if project_cfg.exists():
        merged.update(_read_servers(project_cfg))

    configs: dict[str, MCPServerConfig] = {}
    for name, raw in merged.items():
        cfg = MCPServerConfig.from_dict(name, raw)
        if cfg.disabled:
            logger.info("Skipping disabled MCP server: %s", name)
            continue
        configs[name] = cfg
    return configs


def _content_text(result: Any) -> str:
    """Flatten MCP content blocks into text."""
    parts = []
    for block in getattr(result, "content", None) or []:
        text = getattr(block, "text", None)
        parts.append(text if text is not None else str(block))
    return "\n".join(parts)


class MCPToolProvider(ToolProvider):
    """One MCP server session.

    The session lives in a dedicated task so its transport context is
    entered and exited by the same task.
    """

    def __init__(self, config: MCPServerConfig, connect_timeout: float = MCP_CONNECT_TIMEOUT):
        self.config = config
        self.connect_timeout = connect_timeout
        self._session: ClientSession | None = None
        self._runner: asyncio.Task | None = None
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def connected(self) -> bool:
        return self._session is not None

    def _transport(self):
        cfg = self.config
        if cfg.transport == "stdio":
            params = StdioServerParameters(
                command=cfg.command,
                args=cfg.args,
                env={**os.environ, **cfg.env},
            )
            return stdio_client(params)
        if cfg.transport == "sse":
            return sse_client(cfg.url, headers=cfg.headers)
        raise ValueError(f"Unknown MCP transport: {cfg.transport}")

    async def _run(self) -> None:
        try:
            async with AsyncExitStack() as stack:
                read_stream, write_stream = await stack.enter_async_context(self._transport())
                session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
                await session.initialize()
                self._session = session
                self._ready.set()
                await self._closing.wait()
        finally:
            self._session = None

    async def connect(self) -> None:
        if self.connected:
            return
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()
        self._runner = asyncio.create_task(self._run(), name=f"mcp-{self.name}")
        ready = asyncio.create_task(self._ready.wait())
        try:
            await asyncio.wait(
                {ready, self._runner},
                timeout=self.connect_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            ready.cancel()

        if self._runner.done():
            # surfaces the connection error
            self._runner.result()
            raise ProviderUnavailable(self.name)
        if not self.connected:
            await self.close()
            raise TimeoutError(f"MCP server '{self.name}' did not start within {self.connect_timeout}s")
        logger.info("Connected to MCP server '%s'", self.name)

    async def list_tools(self) -> list[ToolDeclaration]:
        if self._session is None:
            raise ProviderUnavailable(self.name)
        result = await self._session.list_tools()
        declarations = []
        for tool in getattr(result, "tools", []):
            declarations.append(ToolDeclaration(
                name=tool.name,
                description=tool.description or "",
                parameters=tool.inputSchema or {"type": "object", "properties": {}},
            ))
        return declarations

    async def call_tool(self, name: str, arguments: dict) -> ToolResult:
        if self._session is None:
            raise ProviderUnavailable(self.name)
        try:
            result = await self._session.call_tool(name, arguments=arguments)
        except McpError as e:
            return ToolResult(error=str(e))
        except _CONNECTION_ERRORS as e:
            logger.warning("MCP server '%s' dropped during %s: %s", self.name, name, e)
            self._session = None
            raise ProviderUnavailable(self.name) from e

        text = _content_text(result)
        if getattr(result, "isError", False):
            return ToolResult(error=text or "Tool reported an error")
        return ToolResult(content=text)

    async def close(self) -> None:
        self._closing.set()
        if self._runner is not None:
            try:
                await asyncio.wait_for(self._runner, timeout=10)
            except Exception as e:
                logger.debug("MCP server '%s' shutdown: %s", self.name, e)
            self._runner = None
        self._session = None
