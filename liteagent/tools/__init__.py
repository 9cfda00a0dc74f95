"""Tool directory - discovers tools from providers and routes invocations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from liteagent.errors import ProviderUnavailable, ToolNotFound
from liteagent.tools.base import BaseTool, ToolDeclaration, ToolProvider, ToolResult

logger = logging.getLogger(__name__)

__all__ = [
    "BaseTool",
    "ToolDeclaration",
    "ToolDirectory",
    "ToolProvider",
    "ToolResult",
]


@dataclass
class _Entry:
    provider: ToolProvider
    declaration: ToolDeclaration


class ToolDirectory:
    """Name -> provider lookup, in discovery order.

    When two providers expose the same tool name, the provider registered
    first keeps it; the later one is recorded in ``collisions``.
    """

    def __init__(self, providers: list[ToolProvider] | None = None):
        self._providers: list[ToolProvider] = list(providers or [])
        self._entries: dict[str, _Entry] = {}
        self.collisions: list[tuple[str, str]] = []
        self.failures: dict[str, str] = {}

    @property
    def providers(self) -> list[ToolProvider]:
        return list(self._providers)

    def add_provider(self, provider: ToolProvider) -> None:
        self._providers.append(provider)

    async def discover(self) -> int:
        """Connect every provider and collect its tools. Returns the tool count.

        A provider that fails to connect or list is logged and skipped.
        """
        self._entries = {}
        self.collisions = []
        self.failures = {}
        for provider in self._providers:
            try:
                if not provider.connected:
                    await provider.connect()
                declarations = await provider.list_tools()
            except Exception as e:
                logger.warning("Tool provider '%s' unavailable: %s", provider.name, e)
                self.failures[provider.name] = str(e)
                continue

            for decl in declarations:
                existing = self._entries.get(decl.name)
                if existing is not None:
                    logger.warning(
                        "Tool '%s' from '%s' shadowed by '%s'",
                        decl.name, provider.name, existing.provider.name,
                    )
                    self.collisions.append((decl.name, provider.name))
                    continue
                self._entries[decl.name] = _Entry(provider=provider, declaration=decl)
            logger.info("Tool provider '%s': %d tools", provider.name, len(declarations))
        return len(self._entries)

    async def reload(self) -> int:
        """Close every provider and run discovery again."""
        for provider in self._providers:
            try:
                await provider.close()
            except Exception as e:
                logger.debug("Error closing provider '%s': %s", provider.name, e)
        return await self.discover()

    def list_declarations(self) -> list[ToolDeclaration]:
        return [entry.declaration for entry in self._entries.values()]

    def function_declarations(self) -> list[dict]:
        """Declarations in the shape the model endpoint expects."""
        return [decl.to_function_declaration() for decl in self.list_declarations()]

    def tools_by_provider(self, provider_name: str) -> list[str]:
        return [
            name for name, entry in self._entries.items()
            if entry.provider.name == provider_name
        ]

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def invoke(self, name: str, arguments: dict) -> ToolResult:
        """Route a call to the provider that owns ``name``.

        Raises ToolNotFound or ProviderUnavailable; tool-level failures are
        returned inside the ToolResult.
        """
        entry = self._entries.get(name)
        if entry is None:
            raise ToolNotFound(name)
        if not entry.provider.connected:
            raise ProviderUnavailable(entry.provider.name)
        return await entry.provider.call_tool(name, arguments)

    def get_status(self) -> dict[str, Any]:
        """Per-provider connection state and tool names, for /mcp."""
        return {
            "total_tools": len(self._entries),
            "providers": {
                provider.name: {
                    "connected": provider.connected,
                    "tools": self.tools_by_provider(provider.name),
                    "error": self.failures.get(provider.name, ""),
                }
                for provider in self._providers
            },
            "collisions": list(self.collisions),
        }

    async def close(self) -> None:
        for provider in self._providers:
            try:
                await provider.close()
            except Exception as e:
                logger.debug("Error closing provider '%s': %s", provider.name, e)
