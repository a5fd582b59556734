"""
Exception types shared across the server.

Transport failures, JSON-RPC level failures raised by handlers, and the
tool bridge's own error family.
"""

from typing import Any, Optional

from .protocol import MCPError, MCPErrorCode


class TransportError(Exception):
    """I/O failure while reading from or writing to a channel."""


class RPCError(Exception):
    """Raised by a method handler to answer with a JSON-RPC error object."""

    def __init__(self, code: MCPErrorCode, message: str, data: Optional[Any] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)

    def to_error(self) -> MCPError:
        return MCPError.from_code(self.code, self.message, self.data)


class ToolError(Exception):
    """Base error for tool lookup and invocation failures."""


class ToolNotFoundError(ToolError):
    """No tool is registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool not found: {name}")


class ArgumentParseError(ToolError):
    """Arguments do not match the tool's argument shape."""

    def __init__(self, tool: str, detail: str):
        self.tool = tool
        self.detail = detail
        super().__init__(f"Failed to parse arguments for {tool}: {detail}")


class ToolExecutionError(ToolError):
    """The tool raised while running."""

    def __init__(self, tool: str, detail: str):
        self.tool = tool
        self.detail = detail
        super().__init__(f"Tool execution failed: {tool}: {detail}")


class ResultSerializeError(ToolError):
    """The tool produced something that is not a ToolResult."""

    def __init__(self, tool: str, detail: str):
        self.tool = tool
        self.detail = detail
        super().__init__(f"Failed to serialize result of {tool}: {detail}")
