"""
MCP protocol client bound to one transport.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from mcp import types
from mcp.client.session import ClientSession
from mcp.shared.exceptions import McpError
from pydantic import AnyUrl

from mcp_hub.errors import DiscoveryFailureError, RequestTimeoutError, TransportFailureError
from mcp_hub.mcp.lifecycle import HostedContext, describe_error
from mcp_hub.mcp.transports import McpTransport

logger = logging.getLogger(__name__)

# (level, logger, data) of a notifications/message from the server
LogNotificationHandler = Callable[[str, str, str], Awaitable[None]]
# (method, params) of any other server notification
FallbackNotificationHandler = Callable[[str, dict], Awaitable[None]]

DEFAULT_CONNECT_TIMEOUT_SECONDS = 60.0


class MCPClient:
    """Client for one MCP server.

    The session is opened by connect() and lives until close(). Every request
    is bounded by a timeout; closing the client cancels requests in flight.
    """

    def __init__(
        self,
        name: str,
        client_name: str = "mcp-hub",
        client_version: str = "0.1.0",
        request_timeout: float = 5.0,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ):
        """Initialize MCPClient.

        Args:
            name: Server name, used in logs and error messages
            client_name: Client name sent during the handshake
            client_version: Client version sent during the handshake
            request_timeout: Default timeout in seconds for list and read requests
            connect_timeout: Timeout in seconds for the initialize handshake
        """
        self.name = name
        self.client_name = client_name
        self.client_version = client_version
        self.request_timeout = request_timeout
        self.connect_timeout = connect_timeout
        self.session: Optional[ClientSession] = None
        self.transport: Optional[McpTransport] = None
        self._host: Optional[HostedContext] = None
        self._pending: set[asyncio.Task] = set()
        self._closed = False
        self._notification_handler: Optional[LogNotificationHandler] = None
        self._fallback_notification_handler: Optional[FallbackNotificationHandler] = None

    def set_notification_handler(self, handler: Optional[LogNotificationHandler]) -> None:
        """Register the handler for notifications/message (log) notifications."""
        self._notification_handler = handler

    def set_fallback_notification_handler(
        self, handler: Optional[FallbackNotificationHandler]
    ) -> None:
        """Register the handler for every other server notification."""
        self._fallback_notification_handler = handler

    async def connect(self, transport: McpTransport) -> None:
        """Start the transport and perform the protocol handshake.

        Raises:
            TransportFailureError: If the transport or the handshake fails.
                The transport is closed before the error is raised.
        """
        self.transport = transport
        try:
            read_stream, write_stream = await transport.start()

            self._host = HostedContext(
                f"mcp-session-{self.name}",
                lambda: ClientSession(
                    read_stream,
                    write_stream,
                    logging_callback=self._on_logging_message,
                    message_handler=self._on_message,
                    client_info=types.Implementation(
                        name=self.client_name, version=self.client_version
                    ),
                ),
                on_enter=self._initialize,
            )
            self.session = await self._host.start()
        except Exception as e:
            await self._close_transport()
            if isinstance(e, TransportFailureError):
                raise
            raise TransportFailureError(
                f"Failed to connect to MCP server '{self.name}': {describe_error(e)}"
            ) from e

    async def _initialize(self, session: ClientSession) -> ClientSession:
        await asyncio.wait_for(session.initialize(), timeout=self.connect_timeout)
        return session

    async def _on_logging_message(self, params: types.LoggingMessageNotificationParams) -> None:
        if self._notification_handler is None:
            return
        data = params.data
        if data is None:
            data = ""
        elif not isinstance(data, str):
            data = json.dumps(data, ensure_ascii=False)
        await self._notification_handler(params.level or "info", params.logger or "", data)

    async def _on_message(self, message: Any) -> None:
        if not isinstance(message, types.ServerNotification):
            return
        notification = message.root
        if isinstance(notification, types.LoggingMessageNotification):
            return
        if self._fallback_notification_handler is None:
            return
        params = getattr(notification, "params", None)
        params_dict = params.model_dump(mode="json", exclude_none=True) if params else {}
        await self._fallback_notification_handler(notification.method, params_dict)

    def _ensure_connected(self) -> ClientSession:
        if self.session is None or self._closed:
            raise TransportFailureError(f"Client for '{self.name}' is not connected")
        return self.session

    async def _request(
        self, operation: str, factory: Callable[[ClientSession], Awaitable[Any]], timeout: float
    ) -> Any:
        session = self._ensure_connected()
        task = asyncio.ensure_future(factory(session))
        self._pending.add(task)
        try:
            return await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                f"{operation} on '{self.name}' timed out after {timeout} seconds"
            ) from e
        except asyncio.CancelledError:
            if self._closed and task.cancelled():
                raise TransportFailureError(
                    f"{operation} on '{self.name}' was cancelled because the connection closed"
                ) from None
            raise
        finally:
            self._pending.discard(task)

    async def _discover(
        self, operation: str, factory: Callable[[ClientSession], Awaitable[Any]]
    ) -> Any:
        try:
            return await self._request(operation, factory, self.request_timeout)
        except McpError as e:
            raise DiscoveryFailureError(f"{operation} on '{self.name}' failed: {e}") from e

    async def list_tools(self) -> list[dict]:
        """List available tools from the connected MCP server.

        Returns:
            List of tool definitions with name, description, and inputSchema

        Raises:
            DiscoveryFailureError: If the server answers with a protocol error
        """
        response = await self._discover("tools/list", lambda s: s.list_tools())
        return [
            {"name": tool.name, "description": tool.description, "inputSchema": tool.inputSchema}
            for tool in response.tools or []
        ]

    async def list_resources(self) -> list[dict]:
        response = await self._discover("resources/list", lambda s: s.list_resources())
        return [
            resource.model_dump(mode="json", exclude_none=True)
            for resource in response.resources or []
        ]

    async def list_resource_templates(self) -> list[dict]:
        response = await self._discover(
            "resources/templates/list", lambda s: s.list_resource_templates()
        )
        return [
            template.model_dump(mode="json", exclude_none=True)
            for template in response.resourceTemplates or []
        ]

    async def read_resource(self, uri: str, timeout: Optional[float] = None) -> dict:
        """Read a resource.

        Returns:
            Result with structure {"contents": [{"uri": ..., "text"|"blob": ...}]}
        """
        response = await self._request(
            "resources/read",
            lambda s: s.read_resource(AnyUrl(uri)),
            timeout if timeout is not None else self.request_timeout,
        )
        return response.model_dump(mode="json", exclude_none=True)

    async def call_tool(self, name: str, arguments: Optional[dict], timeout: float) -> dict:
        """Execute a tool on the MCP server.

        Args:
            name: Tool name (e.g., "get_weather")
            arguments: Tool arguments as dict (e.g., {"location": "Tokyo"})
            timeout: Timeout in seconds

        Returns:
            Tool result with structure:
            {
                "content": [
                    {"type": "text", "text": "..."},
                    # or {"type": "image", "data": "...", "mimeType": "..."},
                    # or {"type": "resource", "resource": {...}}
                ],
                "isError": bool
            }
        """
        response = await self._request(
            "tools/call", lambda s: s.call_tool(name, arguments), timeout
        )

        content = []
        for item in response.content or []:
            item_dict = {"type": item.type}
            item_dict.update(item.model_dump(mode="json", exclude={"type"}, exclude_none=True))
            content.append(item_dict)

        result = {
            "content": content,
            "isError": bool(getattr(response, "isError", False)),
        }
        structured = getattr(response, "structuredContent", None)
        if structured is not None:
            result["structuredContent"] = structured
        return result

    async def close(self) -> None:
        """Close the session and cancel requests in flight."""
        if self._closed:
            return
        self._closed = True

        for task in list(self._pending):
            task.cancel()

        if self._host is not None:
            await self._host.stop()
            self._host = None
        self.session = None

    async def _close_transport(self) -> None:
        if self.transport is None:
            return
        try:
            await self.transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport for '{self.name}': {describe_error(e)}")
