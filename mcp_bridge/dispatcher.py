"""
JSON-RPC dispatcher.

Parses raw envelopes, routes them through a method table, and serializes the
response. Notifications are routed through their own table and never answered.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import RPCError
from .protocol import (
    MCPError,
    MCPErrorCode,
    MCPNotification,
    MCPRequest,
    MCPResponse,
    is_notification_method,
    is_request_id,
    parse_message,
)


logger = logging.getLogger(__name__)

MethodHandler = Callable[[Any], Awaitable[Any]]
NotificationHandler = Callable[[Any], Awaitable[None]]


class Dispatcher:
    """Routes JSON-RPC messages to registered handlers."""

    def __init__(self):
        self.methods: Dict[str, MethodHandler] = {}
        self.notifications: Dict[str, NotificationHandler] = {}

    def register_method(self, method: str, handler: MethodHandler) -> None:
        """Register a request handler; its return value becomes the result."""
        self.methods[method] = handler

    def register_notification(self, method: str, handler: NotificationHandler) -> None:
        self.notifications[method] = handler

    async def handle(self, raw: str) -> Optional[str]:
        """
        Handle one raw message.

        Returns the serialized response, or None when nothing must be sent:
        notifications, and messages too broken to carry an id.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Dropping unparseable message: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning("Dropping message that is not a JSON object")
            return None

        method = data.get("method")
        try:
            message = parse_message(data)
        except ValueError as e:
            if isinstance(method, str) and is_notification_method(method):
                logger.warning(f"Dropping invalid {method} notification: {e}")
                return None
            if "id" not in data:
                logger.warning(f"Dropping invalid envelope without id: {e}")
                return None
            logger.error(f"Invalid envelope: {e}")
            request_id = data["id"] if is_request_id(data["id"]) else None
            error = MCPError.from_code(MCPErrorCode.PARSE_ERROR, "Parse error")
            return MCPResponse.failure(request_id, error).to_json()

        if isinstance(message, MCPNotification):
            await self.handle_notification(message)
            return None

        response = await self.handle_request(message)
        try:
            return response.to_json()
        except (TypeError, ValueError):
            logger.exception(f"Failed to serialize {message.method} result")
            error = MCPError.from_code(MCPErrorCode.INTERNAL_ERROR, "Internal error")
            return MCPResponse.failure(message.id, error).to_json()

    async def handle_notification(self, notification: MCPNotification) -> None:
        handler = self.notifications.get(notification.method)
        if handler is None:
            logger.debug(f"Ignoring unknown notification: {notification.method}")
            return

        try:
            await handler(notification.params)
        except Exception:
            logger.exception(f"Notification handler for {notification.method} failed")

    async def handle_request(self, request: MCPRequest) -> MCPResponse:
        handler = self.methods.get(request.method)
        if handler is None:
            logger.error(f"Unknown method: {request.method}")
            error = MCPError.from_code(MCPErrorCode.METHOD_NOT_FOUND, "Method not found")
            return MCPResponse.failure(request.id, error)

        logger.debug(f"Handling {request.method} request")
        try:
            result = await handler(request.params)
        except RPCError as e:
            return MCPResponse.failure(request.id, e.to_error())
        except Exception:
            logger.exception(f"Error processing {request.method} request")
            error = MCPError.from_code(MCPErrorCode.INTERNAL_ERROR, "Internal error")
            return MCPResponse.failure(request.id, error)

        return MCPResponse.success(request.id, result)
