"""
MCP Protocol definitions.

Implements the JSON-RPC envelopes and the Model Context Protocol records the
server exchanges with its peer: tool definitions, tool results, resources,
prompts and the capability descriptor.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

JSONRPC_VERSION = "2.0"
NOTIFICATION_PREFIX = "notifications/"
CANCELLED_METHOD = "cancelled"

RequestId = Union[str, int, float, None]


class MCPErrorCode(Enum):
    """Standard JSON-RPC error codes."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


@dataclass
class MCPError:
    """JSON-RPC error object."""
    code: int
    message: str
    data: Optional[Any] = None

    @classmethod
    def from_code(cls, code: MCPErrorCode, message: str, data: Any = None) -> "MCPError":
        return cls(code=code.value, message=message, data=data)

    def to_dict(self) -> dict:
        result = {"code": self.code, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result


def is_request_id(value: Any) -> bool:
    """True for the id types JSON-RPC allows: string, number or null."""
    if value is None:
        return True
    return not isinstance(value, bool) and isinstance(value, (str, int, float))


def is_notification_method(method: str) -> bool:
    """Methods that never receive a response, whatever the envelope says."""
    return method == CANCELLED_METHOD or method.startswith(NOTIFICATION_PREFIX)


@dataclass
class MCPRequest:
    """JSON-RPC request: carries an id and expects exactly one response."""
    id: RequestId
    method: str
    params: Optional[Union[Dict[str, Any], List[Any]]] = None
    jsonrpc: str = JSONRPC_VERSION


@dataclass
class MCPNotification:
    """JSON-RPC notification: no id, never answered."""
    method: str
    params: Optional[Union[Dict[str, Any], List[Any]]] = None
    jsonrpc: str = JSONRPC_VERSION


@dataclass
class MCPResponse:
    """JSON-RPC response carrying either a result or an error."""
    id: RequestId = None
    result: Optional[Any] = None
    error: Optional[MCPError] = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict:
        result = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            result["error"] = self.error.to_dict()
        else:
            result["result"] = self.result
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def success(cls, id: RequestId, result: Any) -> "MCPResponse":
        return cls(id=id, result=result)

    @classmethod
    def failure(cls, id: RequestId, error: MCPError) -> "MCPResponse":
        return cls(id=id, error=error)


def parse_message(data: Union[str, dict]) -> Union[MCPRequest, MCPNotification]:
    """
    Parse a raw envelope into a request or a notification.

    Raises ValueError when the text is not JSON or the object is not a valid
    JSON-RPC 2.0 envelope.
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}")

    if not isinstance(data, dict):
        raise ValueError("Message must be a JSON object")

    if data.get("jsonrpc", JSONRPC_VERSION) != JSONRPC_VERSION:
        raise ValueError(f"Unsupported jsonrpc version: {data.get('jsonrpc')!r}")

    method = data.get("method")
    if not isinstance(method, str):
        raise ValueError("Envelope has no method name")

    params = data.get("params")
    if params is not None and not isinstance(params, (dict, list)):
        raise ValueError("params must be an object or an array")

    if "id" not in data or is_notification_method(method):
        return MCPNotification(method=method, params=params)

    request_id = data["id"]
    if not is_request_id(request_id):
        raise ValueError("id must be a string, a number or null")

    return MCPRequest(id=request_id, method=method, params=params)


@dataclass
class ToolInputSchema:
    """JSON-Schema-like description of the arguments a tool accepts."""
    type: str = "object"
    properties: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    required: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "properties": self.properties,
            "required": self.required,
        }


@dataclass
class ToolDefinition:
    """Tool definition as advertised by tools/list."""
    name: str
    description: str
    input_schema: ToolInputSchema = field(default_factory=ToolInputSchema)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema.to_dict(),
        }


@dataclass
class ToolInvocation:
    """One tools/call request, consumed synchronously."""
    tool_name: str
    arguments: Optional[Dict[str, Any]] = None

    @classmethod
    def from_params(cls, params: Any) -> "ToolInvocation":
        if not isinstance(params, dict):
            raise ValueError("tools/call params must be an object")
        name = params.get("name")
        if not isinstance(name, str):
            raise ValueError("tools/call requires a string 'name'")
        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, dict):
            raise ValueError("'arguments' must be an object")
        return cls(tool_name=name, arguments=arguments)


@dataclass
class TextContent:
    """Plain text content item."""
    text: str
    type: str = "text"

    def to_dict(self) -> dict:
        return {"type": self.type, "text": self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "TextContent":
        if data.get("type") != "text":
            raise ValueError(f"Unsupported content type: {data.get('type')!r}")
        return cls(text=data["text"])


@dataclass
class ToolResult:
    """
    Outcome of a tool invocation.

    is_error results are still JSON-RPC successes; they carry a failure the
    peer is meant to read. Protocol failures never take this shape.
    """
    content: List[TextContent] = field(default_factory=list)
    is_error: bool = False
    meta: Optional[Dict[str, Any]] = None

    @classmethod
    def text(cls, message: str) -> "ToolResult":
        return cls(content=[TextContent(text=message)])

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(content=[TextContent(text=message)], is_error=True)

    def to_dict(self) -> dict:
        result = {
            "content": [item.to_dict() for item in self.content],
            "isError": self.is_error,
        }
        if self.meta is not None:
            result["_meta"] = self.meta
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "ToolResult":
        return cls(
            content=[TextContent.from_dict(item) for item in data.get("content", [])],
            is_error=bool(data.get("isError", False)),
            meta=data.get("_meta"),
        )


@dataclass
class Resource:
    """A static resource advertised by resources/list."""
    uri: str
    name: str
    description: Optional[str] = None
    mime_type: Optional[str] = None

    def to_dict(self) -> dict:
        result = {"uri": self.uri, "name": self.name}
        if self.description is not None:
            result["description"] = self.description
        if self.mime_type is not None:
            result["mimeType"] = self.mime_type
        return result


@dataclass
class PromptArgument:
    name: str
    description: Optional[str] = None
    required: bool = False

    def to_dict(self) -> dict:
        result = {"name": self.name, "required": self.required}
        if self.description is not None:
            result["description"] = self.description
        return result


@dataclass
class Prompt:
    """A prompt template advertised by prompts/list."""
    name: str
    description: Optional[str] = None
    arguments: List[PromptArgument] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {
            "name": self.name,
            "arguments": [arg.to_dict() for arg in self.arguments],
        }
        if self.description is not None:
            result["description"] = self.description
        return result


@dataclass
class ServerCapabilities:
    """Feature areas the server declares at initialize time."""
    tools: Optional[Dict[str, Any]] = None
    resources: Optional[Dict[str, Any]] = None
    prompts: Optional[Dict[str, Any]] = None
    logging: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        sections = {
            "tools": self.tools,
            "resources": self.resources,
            "prompts": self.prompts,
            "logging": self.logging,
        }
        return {key: value for key, value in sections.items() if value is not None}


@dataclass
class Implementation:
    name: str
    version: str

    def to_dict(self) -> dict:
        return {"name": self.name, "version": self.version}


@dataclass
class InitializeParams:
    """Client side of the initialize handshake."""
    protocol_version: str
    capabilities: Dict[str, Any] = field(default_factory=dict)
    client_info: Optional[Dict[str, Any]] = None

    @classmethod
    def from_params(cls, params: Any) -> "InitializeParams":
        if not isinstance(params, dict):
            raise ValueError("initialize params must be an object")
        version = params.get("protocolVersion")
        if not isinstance(version, str):
            raise ValueError("initialize requires a string 'protocolVersion'")
        capabilities = params.get("capabilities") or {}
        if not isinstance(capabilities, dict):
            raise ValueError("'capabilities' must be an object")
        return cls(
            protocol_version=version,
            capabilities=capabilities,
            client_info=params.get("clientInfo"),
        )


@dataclass
class InitializeResult:
    capabilities: ServerCapabilities
    protocol_version: str
    server_info: Implementation
    instructions: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            "capabilities": self.capabilities.to_dict(),
            "protocolVersion": self.protocol_version,
            "serverInfo": self.server_info.to_dict(),
        }
        if self.instructions is not None:
            result["instructions"] = self.instructions
        return result


@dataclass
class CancelledParams:
    request_id: RequestId
    reason: Optional[str] = None

    @classmethod
    def from_params(cls, params: Any) -> "CancelledParams":
        if not isinstance(params, dict) or "requestId" not in params:
            raise ValueError("cancellation requires 'requestId'")
        reason = params.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ValueError("'reason' must be a string")
        return cls(request_id=params["requestId"], reason=reason)


def list_result(key: str, items: List[Any]) -> dict:
    """Single-page list result; pagination is declared but never used."""
    return {key: [item.to_dict() for item in items], "nextCursor": None}
