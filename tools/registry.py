"""
ToolRegistry — the tool set offered to the model for one chat turn.

``resolve_connector_tools`` assembles it from every enabled connector whose
status is not ``disconnected``: each one gets a fresh API client bound to
the lifecycle manager, and its descriptor's tool factory turns that client
into ``ToolDefinition`` objects.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List

from connectors.errors import ConnectorError
from tools import ToolDefinition

if TYPE_CHECKING:
    from cache.engine import ConnectorCache
    from connectors.registry import ConnectorRegistry
    from connectors.token_manager import OAuthLifecycleManager

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Maps tool-name → ToolDefinition."""

    def __init__(self, definitions: Iterable[ToolDefinition] = ()):
        self._tools: Dict[str, ToolDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise ValueError(f"Tool '{definition.name}' is already registered")
        self._tools[definition.name] = definition

    def get_tool(self, tool_name: str) -> ToolDefinition:
        """
        Raises
        ------
        ValueError – tool not found
        """
        if tool_name not in self._tools:
            raise ValueError(f"Tool '{tool_name}' not found in registry")
        return self._tools[tool_name]

    def has_tool(self, tool_name: str) -> bool:
        return tool_name in self._tools

    def list_tools(self) -> List[str]:
        return list(self._tools.keys())

    def schemas(self) -> List[Dict[str, Any]]:
        return [d.schema() for d in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)


async def resolve_connector_tools(
    registry: "ConnectorRegistry",
    manager: "OAuthLifecycleManager",
    cache: "ConnectorCache",
) -> ToolRegistry:
    """Build the turn's tool set from the healthy connectors."""
    tools = ToolRegistry()
    connectors = await manager.healthy_connectors()
    for cfg in connectors:
        descriptor = registry.require(cfg.type)
        try:
            client = await manager.build_client(cfg.type)
        except ConnectorError as exc:
            logger.warning("Skipping %s tools: %s", cfg.type, exc)
            continue
        for definition in descriptor.tools_factory(client, cache):
            tools.register(definition)

    logger.info(
        "Resolved %d tools from %d connectors",
        len(tools),
        len(connectors),
    )
    return tools
