"""
MCP Bridge Server - JSON-RPC tool server for the Model Context Protocol.

Moves JSON-RPC messages between a peer and the server over stdio or a
WebSocket, dispatches them to protocol handlers, and bridges untyped tool
arguments to strongly-typed tool implementations.
"""

from .dispatcher import Dispatcher
from .errors import (
    ArgumentParseError,
    ResultSerializeError,
    RPCError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    TransportError,
)
from .protocol import (
    MCPError,
    MCPErrorCode,
    MCPNotification,
    MCPRequest,
    MCPResponse,
    Prompt,
    PromptArgument,
    Resource,
    ServerCapabilities,
    TextContent,
    ToolDefinition,
    ToolInputSchema,
    ToolInvocation,
    ToolResult,
)
from .server import MCPServer, ServerConfig, create_server
from .tools import (
    BaseTool,
    EchoTool,
    FetchTool,
    MemoryStore,
    MemoryTool,
    ToolArguments,
    ToolRegistry,
)
from .transport import (
    Transport,
    StdioTransport,
    WebSocketTransport,
    create_transport,
)

__version__ = "0.1.0"

__all__ = [
    # Protocol
    "MCPError",
    "MCPErrorCode",
    "MCPNotification",
    "MCPRequest",
    "MCPResponse",
    "Prompt",
    "PromptArgument",
    "Resource",
    "ServerCapabilities",
    "TextContent",
    "ToolDefinition",
    "ToolInputSchema",
    "ToolInvocation",
    "ToolResult",
    # Errors
    "ArgumentParseError",
    "ResultSerializeError",
    "RPCError",
    "ToolError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "TransportError",
    # Dispatch and server
    "Dispatcher",
    "MCPServer",
    "ServerConfig",
    "create_server",
    # Tools
    "BaseTool",
    "EchoTool",
    "FetchTool",
    "MemoryStore",
    "MemoryTool",
    "ToolArguments",
    "ToolRegistry",
    # Transport
    "Transport",
    "StdioTransport",
    "WebSocketTransport",
    "create_transport",
]
