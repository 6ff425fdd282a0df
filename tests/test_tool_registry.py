"""
Tests for the tool registry, the @tool decorator and per-connector tool
resolution.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from cache.engine import ConnectorCache
from connectors.errors import AuthorizationError
from connectors.models import ConnectorConfig
from tools import ToolDefinition, collect_tools, tool
from tools.google_tools import build_gmail_tools
from tools.registry import ToolRegistry, resolve_connector_tools
from tools.yahoo_tools import build_yahoo_tools


def _definition(name="dummy_tool"):
    async def handler():
        return "ok"

    return ToolDefinition(
        name=name,
        description="dummy",
        parameters={"type": "object", "properties": {}, "required": []},
        handler=handler,
    )


class TestToolRegistry:
    @pytest.mark.asyncio
    async def test_register_and_get(self):
        registry = ToolRegistry([_definition()])

        definition = registry.get_tool("dummy_tool")

        assert await definition.handler() == "ok"
        assert registry.has_tool("dummy_tool")
        assert registry.list_tools() == ["dummy_tool"]
        assert len(registry) == 1

    def test_unknown_tool(self):
        with pytest.raises(ValueError, match="not found"):
            ToolRegistry().get_tool("missing")

    def test_duplicate_name_rejected(self):
        registry = ToolRegistry([_definition()])
        with pytest.raises(ValueError, match="already registered"):
            registry.register(_definition())

    def test_schemas_are_provider_neutral(self):
        schema = ToolRegistry([_definition()]).schemas()[0]
        assert set(schema) == {"name", "description", "parameters"}


class TestToolDecorator:
    def test_collect_tools_uses_name_and_first_paragraph(self):
        @tool(properties={"query": {"type": "string"}}, required=["query"])
        async def search_things(query: str):
            """Search things.

            Longer explanation that the model does not need.
            """

        (definition,) = collect_tools("gmail", search_things)

        assert definition.name == "search_things"
        assert definition.description == "Search things."
        assert definition.parameters["required"] == ["query"]
        assert definition.connector_type == "gmail"

    def test_undecorated_function_rejected(self):
        async def plain():
            pass

        with pytest.raises(RuntimeError, match="@tool"):
            collect_tools("gmail", plain)


class TestConnectorTools:
    @pytest.mark.asyncio
    async def test_gmail_labels_go_through_cache(self):
        client = MagicMock()
        client.list_labels = AsyncMock(
            return_value=[{"id": "INBOX", "name": "INBOX", "type": "system", "messagesUnread": 3}]
        )
        cache = ConnectorCache(default_ttl=60)
        tools = ToolRegistry(build_gmail_tools(client, cache))

        handler = tools.get_tool("gmail_list_labels").handler
        first = await handler()
        second = await handler()

        assert first == second
        assert first[0]["messages_unread"] == 3
        client.list_labels.assert_awaited_once()
        assert cache.peek("gmail", "labels") is not None

    @pytest.mark.asyncio
    async def test_yahoo_tool_names(self):
        names = [d.name for d in build_yahoo_tools(MagicMock(), ConnectorCache())]
        assert names == [
            "yahoo_search_emails",
            "yahoo_get_email",
            "yahoo_list_folders",
            "yahoo_get_folder_emails",
        ]

    @pytest.mark.asyncio
    async def test_resolve_skips_connectors_that_cannot_build(self, registry):
        manager = MagicMock()
        manager.healthy_connectors = AsyncMock(
            return_value=[
                ConnectorConfig(type="gmail", name="Gmail", encrypted_blob="x"),
                ConnectorConfig(type="outlook", name="Outlook", encrypted_blob="x"),
            ]
        )

        async def build_client(connector_type):
            if connector_type == "outlook":
                raise AuthorizationError("Outlook not authorized")
            return MagicMock()

        manager.build_client = build_client

        tools = await resolve_connector_tools(registry, manager, ConnectorCache())

        names = tools.list_tools()
        assert "gmail_search_emails" in names
        assert not any(n.startswith("outlook_") for n in names)


class TestDefaultRegistry:
    def test_every_connector_is_registered(self, registry):
        assert registry.types() == [
            "gmail",
            "google-drive",
            "google-docs",
            "google-sheets",
            "google-calendar",
            "outlook",
            "yahoo",
        ]

    def test_tool_names_are_unique_across_connectors(self, registry):
        names = []
        for descriptor in registry.all():
            names.extend(d.name for d in descriptor.tools_factory(MagicMock(), ConnectorCache()))
        assert len(names) == len(set(names))

    def test_flow_differences_are_data(self, registry):
        assert registry.require("yahoo").flow.use_basic_auth is True
        assert registry.require("gmail").flow.use_basic_auth is False
        assert registry.require("outlook").flow.extra_fields == ("tenant_id",)
        assert ("access_type", "offline") in registry.require("google-drive").flow.authorize_params

    def test_ttl_override(self, settings_factory):
        from connectors.registry import build_default_registry

        registry = build_default_registry(settings_factory(cache_ttl_overrides={"gmail": 42}))
        assert registry.require("gmail").cache_ttl == 42
        assert registry.require("google-calendar").cache_ttl == 300

    def test_unknown_type(self, registry):
        from connectors.errors import ConnectorNotFoundError

        assert "myspace" not in registry
        with pytest.raises(ConnectorNotFoundError):
            registry.require("myspace")
