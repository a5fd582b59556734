"""
MCP Server implementation.

Owns the tool registry, the static resource and prompt catalogue and the
capability descriptor, wires them into the dispatcher's method table, and
runs the read -> dispatch -> write loop over a transport.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, List, Optional

from .dispatcher import Dispatcher, MethodHandler
from .errors import (
    ArgumentParseError,
    RPCError,
    ToolError,
    ToolNotFoundError,
    TransportError,
)
from .protocol import (
    CancelledParams,
    Implementation,
    InitializeParams,
    InitializeResult,
    MCPErrorCode,
    Prompt,
    PromptArgument,
    Resource,
    ServerCapabilities,
    ToolInvocation,
    list_result,
)
from .tools import (
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_USER_AGENT,
    BaseTool,
    EchoTool,
    FetchTool,
    MemoryStore,
    MemoryTool,
    ToolRegistry,
)
from .transport import Transport


logger = logging.getLogger(__name__)

# Marks the end of the transport's stream on the message queue.
_END_OF_STREAM = object()


@dataclass
class ServerConfig:
    """Configuration for MCP server."""
    name: str = "mcp-bridge-server"
    version: str = "0.1.0"
    instructions: Optional[str] = "Basic MCP server with tool support"
    transport: str = "stdio"
    ws_addr: str = "127.0.0.1:8080"
    queue_size: int = 32
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    log_file: str = "mcp_server.log"
    log_level: str = "DEBUG"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Read MCP_SERVER_* environment variables over the defaults."""
        defaults = cls()
        env = os.environ
        return cls(
            name=env.get("MCP_SERVER_NAME", defaults.name),
            version=env.get("MCP_SERVER_VERSION", defaults.version),
            instructions=env.get("MCP_SERVER_INSTRUCTIONS", defaults.instructions),
            transport=env.get("MCP_SERVER_TRANSPORT", defaults.transport),
            ws_addr=env.get("MCP_SERVER_WS_ADDR", defaults.ws_addr),
            queue_size=int(env.get("MCP_SERVER_QUEUE_SIZE", defaults.queue_size)),
            fetch_timeout=float(env.get("MCP_SERVER_FETCH_TIMEOUT", defaults.fetch_timeout)),
            user_agent=env.get("MCP_SERVER_USER_AGENT", defaults.user_agent),
            log_file=env.get("MCP_SERVER_LOG_FILE", defaults.log_file),
            log_level=env.get("MCP_SERVER_LOG_LEVEL", defaults.log_level),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "transport": self.transport,
            "ws_addr": self.ws_addr,
            "queue_size": self.queue_size,
        }


class MCPServer:
    """
    MCP Server that handles tool registration, request processing, and lifecycle.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        registry: Optional[ToolRegistry] = None,
        resources: Optional[List[Resource]] = None,
        prompts: Optional[List[Prompt]] = None,
    ):
        self.config = config or ServerConfig()
        self.registry = registry or ToolRegistry()
        self.resources = list(resources or [])
        self.prompts = list(prompts or [])
        self.dispatcher = Dispatcher()
        self._running = False

        self._register_default_handlers()

    def _register_default_handlers(self) -> None:
        """Register built-in MCP method and notification handlers."""
        methods = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "resources/list": self._handle_list_resources,
            "prompts/list": self._handle_list_prompts,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
        }
        for method, handler in methods.items():
            self.dispatcher.register_method(method, handler)

        self.dispatcher.register_notification("notifications/initialized", self._handle_initialized)
        self.dispatcher.register_notification("cancelled", self._handle_cancelled)
        self.dispatcher.register_notification("notifications/cancelled", self._handle_cancelled)

    def register_tool(self, tool: BaseTool) -> None:
        """Register a tool with the server."""
        self.registry.register(tool)

    def register_method(self, method: str, handler: MethodHandler) -> None:
        """Register a custom request handler."""
        self.dispatcher.register_method(method, handler)

    def capabilities(self) -> ServerCapabilities:
        return ServerCapabilities(
            tools={"listChanged": False},
            resources={"listChanged": False, "subscribe": False},
            prompts={"listChanged": False},
        )

    async def _handle_initialize(self, params: Any) -> dict:
        try:
            init = InitializeParams.from_params(params)
        except ValueError as e:
            logger.error(f"Failed to parse initialize parameters: {e}")
            raise RPCError(MCPErrorCode.INVALID_PARAMS, "Invalid params")

        client = (init.client_info or {}).get("name", "unknown")
        logger.info(f"Initialize from {client} (protocol {init.protocol_version})")
        return InitializeResult(
            capabilities=self.capabilities(),
            protocol_version=init.protocol_version,
            server_info=Implementation(name=self.config.name, version=self.config.version),
            instructions=self.config.instructions,
        ).to_dict()

    async def _handle_initialized(self, params: Any) -> None:
        logger.info("Received initialized notification")

    async def _handle_cancelled(self, params: Any) -> None:
        try:
            cancel = CancelledParams.from_params(params)
        except ValueError as e:
            logger.error(f"Failed to parse cancellation params: {e}")
            return
        # Tool calls run to completion before the next message is read, so
        # there is never anything to abort.
        logger.info(f"Received cancellation for request {cancel.request_id}: {cancel.reason or ''}")

    async def _handle_ping(self, params: Any) -> dict:
        return {}

    async def _handle_list_resources(self, params: Any) -> dict:
        return list_result("resources", self.resources)

    async def _handle_list_prompts(self, params: Any) -> dict:
        return list_result("prompts", self.prompts)

    async def _handle_list_tools(self, params: Any) -> dict:
        return list_result("tools", self.registry.list_tools())

    async def _handle_call_tool(self, params: Any) -> dict:
        try:
            invocation = ToolInvocation.from_params(params)
        except ValueError as e:
            logger.error(f"Failed to parse tool call parameters: {e}")
            raise RPCError(MCPErrorCode.INVALID_PARAMS, "Invalid params")

        try:
            result = await self.registry.execute(invocation)
        except ToolNotFoundError:
            logger.error(f"Unknown tool requested: {invocation.tool_name}")
            raise RPCError(MCPErrorCode.METHOD_NOT_FOUND, "Method not found")
        except ArgumentParseError as e:
            logger.error(str(e))
            raise RPCError(MCPErrorCode.INVALID_PARAMS, "Invalid params")
        except ToolError as e:
            logger.error(f"Tool execution failed: {e}")
            raise RPCError(MCPErrorCode.INTERNAL_ERROR, "Internal error")

        logger.info(f"Successfully handled tool call for: {invocation.tool_name}")
        return result.to_dict()

    async def handle_message(self, raw: str) -> Optional[str]:
        """Handle one raw message; returns the response text, if any."""
        return await self.dispatcher.handle(raw)

    async def _pump(self, transport: Transport, queue: asyncio.Queue) -> None:
        try:
            await transport.start(queue)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Transport error: {e}")
        await queue.put(_END_OF_STREAM)

    async def run(self, transport: Transport) -> None:
        """
        Run the server main loop.

        Messages are processed one at a time in arrival order. Returns when
        the transport's stream ends; raises TransportError if a response
        cannot be written.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_size)
        reader = asyncio.create_task(self._pump(transport, queue))
        self._running = True

        logger.info(f"MCP Server {self.config.name} v{self.config.version} starting")

        try:
            while self._running:
                message = await queue.get()
                if message is _END_OF_STREAM:
                    logger.info("Transport closed, shutting down")
                    break
                if not self._running:
                    logger.info("Stopped while waiting, message left unprocessed")
                    break

                response = await self.handle_message(message)
                if response:
                    try:
                        await transport.send_response(response)
                    except TransportError as e:
                        logger.error(f"Failed to send response: {e}")
                        raise
        finally:
            self._running = False
            if not reader.done():
                reader.cancel()
                try:
                    await reader
                except asyncio.CancelledError:
                    pass
            await self.registry.close()
            logger.info("Server stopped")

    def stop(self) -> None:
        """Signal the server to stop after the current message."""
        self._running = False


def default_resources() -> List[Resource]:
    return [
        Resource(
            uri="file:///example.txt",
            name="example.txt",
            description="An example text file",
            mime_type="text/plain",
        )
    ]


def default_prompts() -> List[Prompt]:
    return [
        Prompt(
            name="greet",
            description="A friendly greeting prompt",
            arguments=[
                PromptArgument(name="name", description="Name of the person to greet", required=True)
            ],
        )
    ]


def create_server(
    config: Optional[ServerConfig] = None,
    tools: Optional[List[BaseTool]] = None,
) -> MCPServer:
    """
    Create an MCP server with the built-in tools and example catalogue.

    Args:
        config: Server configuration
        tools: Extra tools to register after the built-in ones

    Returns:
        Configured MCPServer instance
    """
    config = config or ServerConfig()
    server = MCPServer(config, resources=default_resources(), prompts=default_prompts())

    server.register_tool(EchoTool())
    server.register_tool(MemoryTool(MemoryStore()))
    server.register_tool(FetchTool(user_agent=config.user_agent, timeout=config.fetch_timeout))

    for tool in tools or []:
        server.register_tool(tool)

    return server
