"""Tests for mcp_bridge.tools module."""

import pytest
import asyncio
import json

import httpx
from pydantic import Field

from mcp_bridge.errors import (
    ArgumentParseError,
    ResultSerializeError,
    ToolExecutionError,
    ToolNotFoundError,
)
from mcp_bridge.protocol import ToolInvocation, ToolResult
from mcp_bridge.tools import (
    BaseTool,
    EchoTool,
    FetchTool,
    MemoryStore,
    MemoryTool,
    ToolArguments,
    ToolRegistry,
    html_to_markdown,
)


class FailingArguments(ToolArguments):
    reason: str = Field(description="Why the tool fails")


class FailingTool(BaseTool):
    name = "failing"
    description = "Always raises"
    arguments = FailingArguments

    async def call(self, args: FailingArguments) -> ToolResult:
        raise RuntimeError(args.reason)


class WrongResultTool(BaseTool):
    name = "wrong_result"
    description = "Returns a plain string"
    arguments = ToolArguments

    async def call(self, args) -> ToolResult:
        return "not a result"


def builtin_tools():
    return [EchoTool(), MemoryTool(MemoryStore()), FetchTool()]


def text_of(result: ToolResult) -> str:
    return result.content[0].text


class TestSchemaDerivation:
    def test_echo_schema(self):
        definition = EchoTool.definition()
        assert definition.name == "echo"
        assert definition.description == "Echoes back the input message"

        schema = definition.input_schema
        assert schema.type == "object"
        assert schema.properties["message"] == {
            "description": "The message to echo",
            "type": "string",
        }
        assert schema.required == ["message"]

    def test_memory_schema(self):
        schema = MemoryTool.definition().input_schema
        action = schema.properties["action"]
        assert action["type"] == "string"
        assert set(action["enum"]) == {"store", "retrieve", "list", "delete", "clear"}
        assert "key" in schema.properties
        assert "value" in schema.properties
        assert schema.required == ["action"]

    def test_optional_fields_collapse(self):
        schema = FetchTool.definition().input_schema
        assert schema.properties["max_length"]["type"] == "integer"
        assert schema.properties["raw"]["type"] == "boolean"
        assert "anyOf" not in schema.properties["max_length"]
        assert "title" not in schema.properties["url"]
        assert schema.required == ["url"]

    def test_definition_is_cached(self):
        assert EchoTool.definition() is EchoTool().definition()

    @pytest.mark.parametrize("tool", builtin_tools(), ids=lambda t: t.name)
    def test_required_matches_argument_shape(self, tool):
        expected = [
            name for name, info in tool.arguments.model_fields.items() if info.is_required()
        ]
        assert tool.definition().input_schema.required == expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tool", builtin_tools(), ids=lambda t: t.name)
    async def test_missing_required_field_is_argument_error(self, tool):
        with pytest.raises(ArgumentParseError):
            await tool.invoke({})


class TestEchoTool:
    @pytest.mark.asyncio
    async def test_echo(self):
        result = await EchoTool().invoke({"message": "hello"})
        assert text_of(result) == "hello"
        assert result.is_error is False

    @pytest.mark.asyncio
    async def test_wrong_type(self):
        with pytest.raises(ArgumentParseError):
            await EchoTool().invoke({"message": 5})

    @pytest.mark.asyncio
    async def test_no_arguments(self):
        with pytest.raises(ArgumentParseError):
            await EchoTool().invoke(None)

    @pytest.mark.asyncio
    async def test_unknown_fields_ignored(self):
        result = await EchoTool().invoke({"message": "hi", "extra": True})
        assert text_of(result) == "hi"


class TestMemoryTool:
    @pytest.mark.asyncio
    async def test_operations(self):
        tool = MemoryTool(MemoryStore())

        result = await tool.invoke({"action": "store", "key": "test_key", "value": {"test": "value"}})
        assert "Successfully stored" in text_of(result)

        result = await tool.invoke({"action": "retrieve", "key": "test_key"})
        assert json.loads(text_of(result)) == {"test": "value"}

        result = await tool.invoke({"action": "list"})
        assert json.loads(text_of(result)) == ["test_key"]

        result = await tool.invoke({"action": "delete", "key": "test_key"})
        assert "Successfully deleted" in text_of(result)

        await tool.invoke({"action": "store", "key": "test_key2", "value": [1, 2]})
        result = await tool.invoke({"action": "clear"})
        assert "Successfully cleared" in text_of(result)

        result = await tool.invoke({"action": "list"})
        assert text_of(result) == "[]"

    @pytest.mark.asyncio
    async def test_store_requires_key(self):
        result = await MemoryTool(MemoryStore()).invoke({"action": "store", "value": 1})
        assert result.is_error is True
        assert "Key is required" in text_of(result)

    @pytest.mark.asyncio
    async def test_store_requires_value(self):
        result = await MemoryTool(MemoryStore()).invoke({"action": "store", "key": "k"})
        assert result.is_error is True
        assert "Value is required" in text_of(result)

    @pytest.mark.asyncio
    async def test_retrieve_missing(self):
        result = await MemoryTool(MemoryStore()).invoke({"action": "retrieve", "key": "nope"})
        assert result.is_error is False
        assert "No memory found for key: nope" in text_of(result)

    @pytest.mark.asyncio
    async def test_delete_missing(self):
        result = await MemoryTool(MemoryStore()).invoke({"action": "delete", "key": "nope"})
        assert "No memory found to delete" in text_of(result)

    @pytest.mark.asyncio
    async def test_unknown_action(self):
        with pytest.raises(ArgumentParseError):
            await MemoryTool(MemoryStore()).invoke({"action": "explode"})

    @pytest.mark.asyncio
    async def test_stores_are_independent(self):
        first = MemoryTool(MemoryStore())
        second = MemoryTool(MemoryStore())
        await first.invoke({"action": "store", "key": "k", "value": 1})
        result = await second.invoke({"action": "list"})
        assert text_of(result) == "[]"

    @pytest.mark.asyncio
    async def test_concurrent_stores(self):
        store = MemoryStore()
        tool = MemoryTool(store)
        await asyncio.gather(*[
            tool.invoke({"action": "store", "key": f"k{i}", "value": i}) for i in range(50)
        ])
        assert len(store) == 50


def mock_client(routes):
    """AsyncClient answering from a path -> Response mapping (404 otherwise)."""

    def handler(request: httpx.Request) -> httpx.Response:
        route = routes.get(request.url.path)
        if route is None:
            return httpx.Response(404)
        if isinstance(route, Exception):
            raise route
        return route

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


PAGE = "<html><body><h1>Test Page</h1><p>Content</p></body></html>"


class TestFetchTool:
    def test_defaults(self):
        tool = FetchTool()
        assert tool.timeout == 30.0
        assert tool.name == "fetch"

    @pytest.mark.asyncio
    async def test_robots_txt(self):
        client = mock_client({
            "/robots.txt": httpx.Response(200, text="User-agent: *\nDisallow: /private/"),
            "/test": httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}),
            "/private/test": httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}),
        })
        tool = FetchTool(client=client)

        result = await tool.invoke({"url": "http://example.test/test"})
        assert result.is_error is False

        result = await tool.invoke({"url": "http://example.test/private/test"})
        assert result.is_error is True
        assert "robots.txt" in text_of(result)

    @pytest.mark.asyncio
    async def test_html_is_converted(self):
        client = mock_client({
            "/page": httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}),
        })
        result = await FetchTool(client=client).invoke({"url": "http://example.test/page"})
        text = text_of(result)
        assert "# Test Page" in text
        assert "Content" in text
        assert "<html>" not in text

    @pytest.mark.asyncio
    async def test_raw_content(self):
        client = mock_client({
            "/raw": httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}),
        })
        result = await FetchTool(client=client).invoke({"url": "http://example.test/raw", "raw": True})
        assert result.is_error is False
        assert "<html><body>" in text_of(result)

    @pytest.mark.asyncio
    async def test_length_limits(self):
        client = mock_client({
            "/limited": httpx.Response(200, text="1234567890", headers={"content-type": "text/plain"}),
        })
        tool = FetchTool(client=client)

        result = await tool.invoke({"url": "http://example.test/limited", "max_length": 5})
        assert text_of(result) == "12345"

        result = await tool.invoke({"url": "http://example.test/limited", "start_index": 5})
        assert text_of(result) == "67890"

        result = await tool.invoke({"url": "http://example.test/limited", "start_index": 50})
        assert text_of(result) == ""

    @pytest.mark.asyncio
    async def test_default_max_length(self):
        client = mock_client({
            "/long": httpx.Response(200, text="x" * 6000, headers={"content-type": "text/plain"}),
        })
        result = await FetchTool(client=client).invoke({"url": "http://example.test/long"})
        assert len(text_of(result)) == 5000

    @pytest.mark.asyncio
    async def test_robots_rules_apply_on_server_error(self):
        client = mock_client({
            "/robots.txt": httpx.Response(503, text="User-agent: *\nDisallow: /private/"),
            "/private/page": httpx.Response(200, text="secret", headers={"content-type": "text/plain"}),
        })
        result = await FetchTool(client=client).invoke({"url": "http://example.test/private/page"})
        assert result.is_error is True
        assert "robots.txt" in text_of(result)

    @pytest.mark.asyncio
    async def test_missing_robots_allows(self):
        client = mock_client({
            "/robots.txt": httpx.Response(403, text="User-agent: *\nDisallow: /"),
            "/page": httpx.Response(200, text="open", headers={"content-type": "text/plain"}),
        })
        result = await FetchTool(client=client).invoke({"url": "http://example.test/page"})
        assert result.is_error is False
        assert text_of(result) == "open"

    @pytest.mark.asyncio
    async def test_not_found(self):
        client = mock_client({})
        result = await FetchTool(client=client).invoke({"url": "http://example.test/not-found"})
        assert result.is_error is True
        assert "Failed to fetch URL" in text_of(result)

    @pytest.mark.asyncio
    async def test_invalid_url(self):
        result = await FetchTool(client=mock_client({})).invoke({"url": "not-a-url"})
        assert result.is_error is True
        assert "Invalid URL" in text_of(result)

    @pytest.mark.asyncio
    async def test_network_error(self):
        client = mock_client({
            "/robots.txt": httpx.ConnectError("connection refused"),
            "/down": httpx.ConnectError("connection refused"),
        })
        result = await FetchTool(client=client).invoke({"url": "http://example.test/down"})
        assert result.is_error is True
        assert "Failed to fetch URL" in text_of(result)

    @pytest.mark.asyncio
    async def test_negative_length_rejected(self):
        with pytest.raises(ArgumentParseError):
            await FetchTool(client=mock_client({})).invoke({"url": "http://example.test/", "max_length": -1})


class TestHtmlToMarkdown:
    def test_structure(self):
        html = (
            "<html><head><title>T</title><script>track()</script></head><body>"
            "<h2>Title</h2><p>Hello <a href='/x'>link</a> there</p>"
            "<ul><li>one</li><li>two</li></ul></body></html>"
        )
        text = html_to_markdown(html)
        assert "## Title" in text
        assert "Hello [link](/x) there" in text
        assert "- one" in text
        assert "- two" in text
        assert "track()" not in text


class TestToolRegistry:
    def test_register_and_get(self):
        registry = ToolRegistry()
        tool = EchoTool()
        registry.register(tool)
        assert registry.get("echo") is tool

    def test_duplicate_name(self):
        registry = ToolRegistry()
        registry.register(EchoTool())
        with pytest.raises(ValueError):
            registry.register(EchoTool())

    def test_unregister(self):
        registry = ToolRegistry()
        registry.register(EchoTool())
        assert registry.unregister("echo") is True
        assert registry.unregister("echo") is False

    def test_list_tools_in_registration_order(self):
        registry = ToolRegistry()
        for tool in builtin_tools():
            registry.register(tool)
        assert [d.name for d in registry.list_tools()] == ["echo", "memory", "fetch"]

    @pytest.mark.asyncio
    async def test_execute(self):
        registry = ToolRegistry()
        registry.register(EchoTool())
        result = await registry.execute(ToolInvocation("echo", {"message": "hi"}))
        assert text_of(result) == "hi"

    @pytest.mark.asyncio
    async def test_execute_unknown(self):
        with pytest.raises(ToolNotFoundError):
            await ToolRegistry().execute(ToolInvocation("nonexistent"))

    @pytest.mark.asyncio
    async def test_execute_bad_arguments(self):
        registry = ToolRegistry()
        registry.register(EchoTool())
        with pytest.raises(ArgumentParseError):
            await registry.execute(ToolInvocation("echo", {"msg": "hi"}))

    @pytest.mark.asyncio
    async def test_execute_tool_raises(self):
        registry = ToolRegistry()
        registry.register(FailingTool())
        with pytest.raises(ToolExecutionError) as exc_info:
            await registry.execute(ToolInvocation("failing", {"reason": "disk on fire"}))
        assert "disk on fire" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_execute_wrong_result_type(self):
        registry = ToolRegistry()
        registry.register(WrongResultTool())
        with pytest.raises(ResultSerializeError):
            await registry.execute(ToolInvocation("wrong_result", {}))
