"""Filesystem-backed gateway for the MCP settings file.

The settings file is the single source of truth for server definitions:

    {
      "mcpServers": {
        "<name>": { ...server entry... }
      }
    }

Writers work on the raw JSON document so that keys this module does not know
about are preserved. Key order of "mcpServers" is the display order of servers.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable

from mcp_hub.errors import ConfigInvalidError, ConnectionNotFoundError
from mcp_hub.mcp.server_config import ServerConfig, parse_settings, validate_timeout

logger = logging.getLogger(__name__)

EMPTY_SETTINGS = '{\n  "mcpServers": {}\n}\n'


class McpSettings:
    """Reads, validates and rewrites the MCP settings file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def ensure_file(self) -> Path:
        """Create the settings file with an empty server map if it is missing."""
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(EMPTY_SETTINGS, encoding="utf-8")
            logger.info(f"Created MCP settings file: {self.path}")
        return self.path

    def read_raw(self) -> dict[str, Any]:
        """Return the parsed JSON document.

        Raises:
            ConfigInvalidError: If the file is not valid JSON
        """
        self.ensure_file()
        content = self.path.read_text(encoding="utf-8")
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigInvalidError(
                "Invalid MCP settings format. Please ensure your settings follow the correct JSON format.",
                [str(e)],
            ) from e
        if not isinstance(data, dict):
            raise ConfigInvalidError("Invalid MCP settings schema.", ["Settings must be a JSON object"])
        return data

    def load(self) -> dict[str, ServerConfig]:
        """Return the validated server mapping in file order.

        Raises:
            ConfigInvalidError: If the file is malformed or violates the schema
        """
        return parse_settings(self.read_raw())

    def server_order(self) -> list[str]:
        """Return server names in the order they appear in the file."""
        servers = self.read_raw().get("mcpServers") or {}
        if not isinstance(servers, dict):
            return []
        return list(servers.keys())

    def auto_approve_for(self, server_name: str) -> set[str]:
        """Return the auto-approved tool names of a server (empty if unknown)."""
        servers = self.read_raw().get("mcpServers") or {}
        entry = servers.get(server_name) if isinstance(servers, dict) else None
        if not isinstance(entry, dict):
            return set()
        return {name for name in entry.get("autoApprove") or [] if isinstance(name, str)}

    def write_raw(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")

    def _servers(self, data: dict[str, Any]) -> dict[str, Any]:
        servers = data.get("mcpServers")
        if not isinstance(servers, dict):
            servers = {}
            data["mcpServers"] = servers
        return servers

    def _entry(self, data: dict[str, Any], server_name: str) -> dict[str, Any]:
        entry = self._servers(data).get(server_name)
        if not isinstance(entry, dict):
            raise ConnectionNotFoundError(
                server_name, f'Server "{server_name}" not found in MCP configuration'
            )
        return entry

    def set_disabled(self, server_name: str, disabled: bool) -> dict[str, Any]:
        """Persist the disabled flag of a server and return the new document."""
        with self._lock:
            data = self.read_raw()
            self._entry(data, server_name)["disabled"] = disabled
            self.write_raw(data)
        return data

    def set_auto_approve(
        self, server_name: str, tool_names: Iterable[str], allow: bool
    ) -> list[str]:
        """Add or remove tool names from a server's auto-approve list.

        Repeating the same call leaves the file unchanged.

        Returns:
            list[str]: The resulting auto-approve list
        """
        with self._lock:
            data = self.read_raw()
            entry = self._entry(data, server_name)
            auto_approve = entry.get("autoApprove")
            if not isinstance(auto_approve, list):
                auto_approve = []
            for tool_name in tool_names:
                if allow and tool_name not in auto_approve:
                    auto_approve.append(tool_name)
                elif not allow:
                    auto_approve = [name for name in auto_approve if name != tool_name]
            entry["autoApprove"] = auto_approve
            self.write_raw(data)
        return list(auto_approve)

    def set_timeout(self, server_name: str, timeout: Any) -> dict[str, Any]:
        """Persist a server timeout.

        Raises:
            ValueError: If the timeout is below the minimum
        """
        issue = validate_timeout(timeout)
        if issue:
            raise ValueError(issue)
        with self._lock:
            data = self.read_raw()
            self._entry(data, server_name)["timeout"] = timeout
            self.write_raw(data)
        return data

    def add_server(self, server_name: str, entry: dict[str, Any]) -> dict[str, Any]:
        """Append a new server entry.

        Raises:
            ValueError: If a server with the same name already exists
        """
        with self._lock:
            data = self.read_raw()
            servers = self._servers(data)
            if server_name in servers:
                raise ValueError(f'An MCP server with the name "{server_name}" already exists')
            servers[server_name] = entry
            self.write_raw(data)
        return data

    def remove_server(self, server_name: str) -> dict[str, Any]:
        """Delete a server entry."""
        with self._lock:
            data = self.read_raw()
            servers = self._servers(data)
            if server_name not in servers:
                raise ConnectionNotFoundError(
                    server_name, f"{server_name} not found in MCP configuration"
                )
            del servers[server_name]
            self.write_raw(data)
        return data
