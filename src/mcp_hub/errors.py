"""Exception types raised by the MCP hub.

Failures while reconciling a single server are contained by the hub and
recorded on the connection. Failures of direct invocations (call_tool,
read_resource) propagate to the caller using these types.
"""

from typing import Optional


class McpHubError(Exception):
    """Base class for all hub errors."""


class ConfigInvalidError(McpHubError):
    """Settings file is malformed JSON or violates the settings schema."""

    def __init__(self, message: str, issues: Optional[list[str]] = None):
        super().__init__(message)
        self.issues = list(issues or [])


class ConnectionNotFoundError(McpHubError, LookupError):
    """No connection is registered under the requested server name."""

    def __init__(self, server_name: str, message: Optional[str] = None):
        super().__init__(message or f"No connection found for server: {server_name}")
        self.server_name = server_name


class ServerDisabledError(McpHubError, RuntimeError):
    """The requested server is disabled in the settings file."""

    def __init__(self, server_name: str, message: Optional[str] = None):
        super().__init__(message or f'Server "{server_name}" is disabled')
        self.server_name = server_name


class TransportFailureError(McpHubError, ConnectionError):
    """Spawning, connecting or handshaking with a server failed."""


class DiscoveryFailureError(McpHubError):
    """A list call (tools, resources, resource templates) failed after connect."""


class RequestTimeoutError(McpHubError, TimeoutError):
    """A protocol request exceeded its timeout."""
