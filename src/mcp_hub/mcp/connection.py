"""
Live connection state for one MCP server.
"""

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from mcp_hub.mcp.client import MCPClient
from mcp_hub.mcp.transports import McpTransport

STATUS_CONNECTING = "connecting"
STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"


@dataclass
class McpServer:
    """Read-only snapshot of a connection handed to callers and observers.

    Attributes:
        name: Server name (key in the settings file)
        config: Serialized config the connection was built from
        status: connecting, connected or disconnected
        disabled: Whether the server is disabled in the settings file
        error: Newline-joined diagnostic text
        tools: Tool definitions, each with an "autoApprove" flag
        resources: Resource definitions
        resource_templates: Resource template definitions
    """

    name: str
    config: str
    status: str
    disabled: bool = False
    error: str = ""
    tools: list[dict] = field(default_factory=list)
    resources: list[dict] = field(default_factory=list)
    resource_templates: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "config": self.config,
            "status": self.status,
            "disabled": self.disabled,
            "error": self.error,
            "tools": self.tools,
            "resources": self.resources,
            "resourceTemplates": self.resource_templates,
        }


def annotate_tools(tools: Iterable[dict], auto_approve: Iterable[str]) -> list[dict]:
    """Return copies of tools with "autoApprove" set from the given names."""
    allowed = set(auto_approve)
    return [{**tool, "autoApprove": tool.get("name") in allowed} for tool in tools]


@dataclass
class Connection:
    """Registry entry for one server.

    Disabled connections never hold a transport or client. Field updates go
    through the methods below so concurrent writers cannot tear them.
    """

    name: str
    config_snapshot: str
    status: str = STATUS_CONNECTING
    disabled: bool = False
    error: str = ""
    tools: list[dict] = field(default_factory=list)
    resources: list[dict] = field(default_factory=list)
    resource_templates: list[dict] = field(default_factory=list)
    transport: Optional[McpTransport] = None
    client: Optional[MCPClient] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def config_dict(self) -> dict[str, Any]:
        return json.loads(self.config_snapshot)

    def set_status(self, status: str) -> None:
        with self._lock:
            self.status = status

    def mark_connected(self) -> None:
        with self._lock:
            self.status = STATUS_CONNECTED
            self.error = ""

    def mark_disconnected(self, error: Optional[str] = None) -> None:
        with self._lock:
            self.status = STATUS_DISCONNECTED
            if error:
                self._append_error(error)

    def append_error(self, error: str) -> None:
        with self._lock:
            self._append_error(error)

    def _append_error(self, error: str) -> None:
        self.error = f"{self.error}\n{error}" if self.error else error

    def clear_error(self) -> None:
        with self._lock:
            self.error = ""

    def set_disabled(self, disabled: bool) -> None:
        with self._lock:
            self.disabled = disabled
            if disabled:
                self.status = STATUS_DISCONNECTED

    def set_capabilities(
        self, tools: list[dict], resources: list[dict], resource_templates: list[dict]
    ) -> None:
        with self._lock:
            self.tools = tools
            self.resources = resources
            self.resource_templates = resource_templates

    def apply_auto_approve(self, auto_approve: Iterable[str]) -> None:
        with self._lock:
            self.tools = annotate_tools(self.tools, auto_approve)

    def detach(self) -> None:
        """Drop transport and client references after they were closed."""
        with self._lock:
            self.transport = None
            self.client = None

    def snapshot(self, auto_approve: Optional[Iterable[str]] = None) -> McpServer:
        """Copy the current state.

        Args:
            auto_approve: Tool names approved in the live settings. If None,
                the flags cached on the tools are kept.
        """
        with self._lock:
            tools = [dict(tool) for tool in self.tools]
            if auto_approve is not None:
                tools = annotate_tools(tools, auto_approve)
            return McpServer(
                name=self.name,
                config=self.config_snapshot,
                status=self.status,
                disabled=self.disabled,
                error=self.error,
                tools=tools,
                resources=[dict(r) for r in self.resources],
                resource_templates=[dict(t) for t in self.resource_templates],
            )
