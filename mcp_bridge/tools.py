"""
MCP Tools implementation.

Bridges untyped JSON arguments to strongly-typed tools. A tool declares its
argument shape as a pydantic model; the input schema advertised to peers is
derived from that model, and incoming arguments are validated against it
before the tool runs.

Provides the built-in echo, memory and fetch tools.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from html.parser import HTMLParser
from typing import Any, ClassVar, Dict, List, Literal, Optional, Type
from urllib.parse import urljoin, urlsplit
from urllib.robotparser import RobotFileParser

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import (
    ArgumentParseError,
    ResultSerializeError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
)
from .protocol import ToolDefinition, ToolInputSchema, ToolInvocation, ToolResult


logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "mcp-bridge-server/0.1.0"
DEFAULT_FETCH_TIMEOUT = 30.0
DEFAULT_MAX_LENGTH = 5000


class ToolArguments(BaseModel):
    """
    Base class for tool argument shapes.

    Validation is strict: JSON values are never coerced into another type.
    Unknown fields are ignored.
    """

    model_config = ConfigDict(strict=True, extra="ignore")


def _property_schema(fragment: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a pydantic property schema to the fragment peers expect."""
    fragment = {k: v for k, v in fragment.items() if k != "title"}

    # Optional[X] comes out as anyOf [X, null]; advertise X.
    options = fragment.get("anyOf")
    if options is not None:
        non_null = [o for o in options if o.get("type") != "null"]
        if len(non_null) == 1 and len(non_null) < len(options):
            del fragment["anyOf"]
            for key, value in non_null[0].items():
                if key != "title":
                    fragment.setdefault(key, value)

    if "default" in fragment and fragment["default"] is None:
        del fragment["default"]
    return fragment


@lru_cache(maxsize=None)
def _derive_definition(tool_cls: Type["BaseTool"]) -> ToolDefinition:
    schema = tool_cls.arguments.model_json_schema()
    properties = {
        name: _property_schema(fragment)
        for name, fragment in schema.get("properties", {}).items()
    }
    return ToolDefinition(
        name=tool_cls.name,
        description=tool_cls.description,
        input_schema=ToolInputSchema(
            type=schema.get("type", "object"),
            properties=properties,
            required=list(schema.get("required", [])),
        ),
    )


class BaseTool(ABC):
    """
    Base class for MCP tools.

    Subclasses set ``name``, ``description`` and ``arguments`` and implement
    ``call``. Nothing else (registry, dispatcher) needs to change to add one.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    arguments: ClassVar[Type[ToolArguments]]

    @abstractmethod
    async def call(self, args: Any) -> ToolResult:
        """Run the tool with validated, typed arguments."""
        pass

    @classmethod
    def definition(cls) -> ToolDefinition:
        """Tool definition derived from the argument model (computed once)."""
        return _derive_definition(cls)

    async def invoke(self, arguments: Optional[Dict[str, Any]]) -> ToolResult:
        """Validate untyped arguments, then call the tool."""
        try:
            args = self.arguments.model_validate(arguments if arguments is not None else {})
        except ValidationError as e:
            raise ArgumentParseError(self.name, str(e)) from e
        return await self.call(args)

    async def close(self) -> None:
        """Release resources held by the tool."""
        pass


@dataclass
class ToolRegistry:
    """Registry for managing tools."""
    tools: Dict[str, BaseTool] = field(default_factory=dict)

    def register(self, tool: BaseTool) -> None:
        """Register a tool. Names must be unique."""
        if tool.name in self.tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self.tools[tool.name] = tool
        logger.debug(f"Registered tool {tool.name}")

    def unregister(self, name: str) -> bool:
        """Unregister a tool by name."""
        if name in self.tools:
            del self.tools[name]
            return True
        return False

    def get(self, name: str) -> Optional[BaseTool]:
        """Get a tool by name."""
        return self.tools.get(name)

    def list_tools(self) -> List[ToolDefinition]:
        """List all registered tools as MCP tool definitions."""
        return [tool.definition() for tool in self.tools.values()]

    async def execute(self, invocation: ToolInvocation) -> ToolResult:
        """
        Execute a tool by name.

        Raises ToolNotFoundError, ArgumentParseError, ToolExecutionError or
        ResultSerializeError. Domain failures come back as is_error results.
        """
        tool = self.get(invocation.tool_name)
        if tool is None:
            raise ToolNotFoundError(invocation.tool_name)

        try:
            result = await tool.invoke(invocation.arguments)
        except ToolError:
            raise
        except Exception as e:
            raise ToolExecutionError(tool.name, str(e)) from e

        if not isinstance(result, ToolResult):
            raise ResultSerializeError(
                tool.name, f"expected ToolResult, got {type(result).__name__}"
            )
        return result

    async def close(self) -> None:
        for tool in self.tools.values():
            await tool.close()


class EchoArguments(ToolArguments):
    message: str = Field(description="The message to echo")


class EchoTool(BaseTool):
    """Echo the input message back."""

    name = "echo"
    description = "Echoes back the input message"
    arguments = EchoArguments

    async def call(self, args: EchoArguments) -> ToolResult:
        return ToolResult.text(args.message)


class MemoryStore:
    """
    Key/value store shared by calls to the memory tool.

    Each method holds the lock for one dict operation only.
    """

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


MemoryAction = Literal["store", "retrieve", "list", "delete", "clear"]


class MemoryArguments(ToolArguments):
    action: MemoryAction = Field(
        description=(
            "The action to perform: 'store' to save a value, 'retrieve' to get a value, "
            "'list' to see all keys, 'delete' to remove a key, or 'clear' to remove all keys"
        )
    )
    key: Optional[str] = Field(
        None,
        description="The key to store/retrieve/delete the memory under (not required for list/clear)",
    )
    value: Optional[Any] = Field(
        None, description="The JSON value to store (only required for store action)"
    )


class MemoryTool(BaseTool):
    """Store and retrieve JSON values under string keys."""

    name = "memory"
    description = "Store and retrieve JSON memories using string keys"
    arguments = MemoryArguments

    def __init__(self, store: MemoryStore):
        self.store = store
        self._actions = {
            "store": self._store,
            "retrieve": self._retrieve,
            "list": self._list,
            "delete": self._delete,
            "clear": self._clear,
        }

    async def call(self, args: MemoryArguments) -> ToolResult:
        return self._actions[args.action](args)

    def _store(self, args: MemoryArguments) -> ToolResult:
        if args.key is None:
            return ToolResult.error("Key is required for store action")
        if args.value is None:
            return ToolResult.error("Value is required for store action")
        self.store.put(args.key, args.value)
        return ToolResult.text(f"Successfully stored memory with key: {args.key}")

    def _retrieve(self, args: MemoryArguments) -> ToolResult:
        if args.key is None:
            return ToolResult.error("Key is required for retrieve action")
        value = self.store.get(args.key)
        if value is None:
            return ToolResult.text(f"No memory found for key: {args.key}")
        return ToolResult.text(json.dumps(value, indent=2))

    def _list(self, args: MemoryArguments) -> ToolResult:
        return ToolResult.text(json.dumps(self.store.keys(), indent=2))

    def _delete(self, args: MemoryArguments) -> ToolResult:
        if args.key is None:
            return ToolResult.error("Key is required for delete action")
        if self.store.delete(args.key):
            return ToolResult.text(f"Successfully deleted memory with key: {args.key}")
        return ToolResult.text(f"No memory found to delete for key: {args.key}")

    def _clear(self, args: MemoryArguments) -> ToolResult:
        self.store.clear()
        return ToolResult.text("Successfully cleared all memories")


class _ReadableText(HTMLParser):
    """Collects the readable part of an HTML page as light markdown."""

    SKIP = {"script", "style", "head", "nav", "footer", "noscript", "template"}
    BLOCKS = {"p", "div", "section", "article", "main", "br", "tr", "table", "ul", "ol", "pre"}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self._parts: List[str] = []
        self._skip_depth = 0
        self._href: Optional[str] = None
        self._link_text: List[str] = []

    def handle_starttag(self, tag, attrs):
        if tag in self.SKIP:
            self._skip_depth += 1
            return
        if self._skip_depth:
            return
        if len(tag) == 2 and tag[0] == "h" and tag[1].isdigit():
            self._parts.append("\n\n" + "#" * int(tag[1]) + " ")
        elif tag == "li":
            self._parts.append("\n- ")
        elif tag == "a":
            self._href = dict(attrs).get("href")
            self._link_text = []
        elif tag in self.BLOCKS:
            self._parts.append("\n\n")

    def handle_endtag(self, tag):
        if tag in self.SKIP:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if self._skip_depth:
            return
        if tag == "a" and self._href is not None:
            text = "".join(self._link_text).strip()
            if text:
                self._append_inline(f"[{text}]({self._href})")
            self._href = None
        elif (len(tag) == 2 and tag[0] == "h" and tag[1].isdigit()) or tag in self.BLOCKS:
            self._parts.append("\n\n")

    def handle_data(self, data):
        if self._skip_depth:
            return
        text = " ".join(data.split())
        if not text:
            return
        if self._href is not None:
            self._link_text.append(text + " ")
            return
        self._append_inline(text)

    def _append_inline(self, text: str) -> None:
        if self._parts and not self._parts[-1].endswith((" ", "\n")):
            text = " " + text
        self._parts.append(text)

    def markdown(self) -> str:
        lines = [line.rstrip() for line in "".join(self._parts).splitlines()]
        collapsed: List[str] = []
        for line in lines:
            if not line and (not collapsed or not collapsed[-1]):
                continue
            collapsed.append(line)
        return "\n".join(collapsed).strip()


def html_to_markdown(html: str) -> str:
    parser = _ReadableText()
    parser.feed(html)
    parser.close()
    return parser.markdown()


class FetchArguments(ToolArguments):
    url: str = Field(description="URL to fetch")
    max_length: Optional[int] = Field(None, ge=0, description="Maximum number of characters to return")
    start_index: Optional[int] = Field(None, ge=0, description="Start content from this character index")
    raw: Optional[bool] = Field(None, description="Get raw content without markdown conversion")


class FetchTool(BaseTool):
    """Fetch a URL and return its readable content."""

    name = "fetch"
    description = "Fetches a URL from the internet and extracts its contents as markdown"
    arguments = FetchArguments

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
    ):
        self.user_agent = user_agent
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def call(self, args: FetchArguments) -> ToolResult:
        parts = urlsplit(args.url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            return ToolResult.error(f"Invalid URL: {args.url}")

        if not await self._allowed_by_robots(args.url):
            return ToolResult.error(f"Access denied by robots.txt: {args.url}")

        try:
            response = await self._http().get(args.url, headers={"User-Agent": self.user_agent})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Fetch of {args.url} failed: {e}")
            return ToolResult.error(f"Failed to fetch URL: {e}")

        content = self._process_content(response, args)
        return ToolResult.text(content)

    async def _allowed_by_robots(self, url: str) -> bool:
        robots_url = urljoin(url, "/robots.txt")
        try:
            response = await self._http().get(robots_url, headers={"User-Agent": self.user_agent})
        except httpx.HTTPError as e:
            logger.debug(f"robots.txt unavailable at {robots_url}: {e}")
            return True

        if response.is_client_error:
            return True

        parser = RobotFileParser()
        parser.parse(response.text.splitlines())
        return parser.can_fetch(self.user_agent, url)

    def _process_content(self, response: httpx.Response, args: FetchArguments) -> str:
        text = response.text
        content_type = response.headers.get("content-type", "")
        head = text.lstrip()[:15].lower()
        is_html = "text/html" in content_type or head.startswith(("<html", "<!doctype html"))

        if is_html and not args.raw:
            text = html_to_markdown(text)

        start = args.start_index or 0
        max_length = args.max_length if args.max_length is not None else DEFAULT_MAX_LENGTH
        return text[start:start + max_length]

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
