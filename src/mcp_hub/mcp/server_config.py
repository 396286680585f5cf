"""
MCP server configuration data structures.

This module defines the per-server entries of the settings file
(``{"mcpServers": {<name>: <entry>}}``) and their validation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Union
from urllib.parse import urlparse

from mcp_hub.config import DEFAULT_MCP_TIMEOUT_SECONDS, MIN_MCP_TIMEOUT_SECONDS
from mcp_hub.errors import ConfigInvalidError

TRANSPORT_STDIO = "stdio"
TRANSPORT_SSE = "sse"
TRANSPORT_STREAMABLE_HTTP = "streamableHttp"

TRANSPORT_TYPES = (TRANSPORT_STDIO, TRANSPORT_SSE, TRANSPORT_STREAMABLE_HTTP)


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _is_str_dict(value: Any) -> bool:
    return isinstance(value, dict) and all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    )


def validate_timeout(timeout: Any) -> Optional[str]:
    """Return an error message if timeout is not an acceptable value."""
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        return f"Invalid timeout value: {timeout!r}. Must be a number of seconds."
    if timeout < MIN_MCP_TIMEOUT_SECONDS:
        return (
            f"Invalid timeout value: {timeout}. "
            f"Must be at minimum {MIN_MCP_TIMEOUT_SECONDS} seconds."
        )
    return None


def validate_url(url: Any) -> Optional[str]:
    """Return an error message if url is not an absolute http(s) URL."""
    if not isinstance(url, str) or not url:
        return "Server URL cannot be empty"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return f"URL must use HTTP or HTTPS scheme: {url}"
    if not parsed.netloc:
        return f"URL missing host/domain: {url}"
    return None


@dataclass
class BaseServerConfig(ABC):
    """Fields shared by every transport kind.

    Attributes:
        disabled: Disabled servers stay listed but never get a transport
        timeout: Tool call timeout in seconds
        auto_approve: Tool names that may run without confirmation
    """

    disabled: bool = False
    timeout: Union[int, float] = DEFAULT_MCP_TIMEOUT_SECONDS
    auto_approve: list[str] = field(default_factory=list)

    type: str = ""

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues.

        Returns:
            list[str]: List of validation error messages. Empty if valid.
        """
        issues = []

        if not isinstance(self.disabled, bool):
            issues.append(f"Invalid disabled flag: {self.disabled!r} (must be true or false)")

        timeout_issue = validate_timeout(self.timeout)
        if timeout_issue:
            issues.append(timeout_issue)

        if not _is_str_list(self.auto_approve):
            issues.append("autoApprove must be a list of tool names")

        return issues

    def _common_dict(self) -> dict[str, Any]:
        return {
            "disabled": self.disabled,
            "timeout": self.timeout,
            "autoApprove": list(self.auto_approve),
        }

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Canonical serialized form, used for snapshots and drift detection."""


@dataclass
class StdioServerConfig(BaseServerConfig):
    """Server launched as a child process speaking over stdin/stdout."""

    command: str = ""
    args: list[str] = field(default_factory=list)
    cwd: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)

    type: str = TRANSPORT_STDIO

    def validate(self) -> list[str]:
        issues = super().validate()

        if not isinstance(self.command, str) or not self.command:
            issues.append("Server command cannot be empty")

        if not _is_str_list(self.args):
            issues.append("args must be a list of strings")

        if self.cwd is not None and not isinstance(self.cwd, str):
            issues.append("cwd must be a string")

        if not _is_str_dict(self.env):
            issues.append("env must map strings to strings")

        return issues

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "command": self.command, "args": list(self.args)}
        if self.cwd is not None:
            data["cwd"] = self.cwd
        data["env"] = dict(self.env)
        data.update(self._common_dict())
        return data


@dataclass
class RemoteServerConfig(BaseServerConfig):
    """Server reached over HTTP."""

    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    def validate(self) -> list[str]:
        issues = super().validate()

        url_issue = validate_url(self.url)
        if url_issue:
            issues.append(url_issue)

        if not _is_str_dict(self.headers):
            issues.append("headers must map strings to strings")

        return issues

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "url": self.url, "headers": dict(self.headers)}
        data.update(self._common_dict())
        return data


@dataclass
class SseServerConfig(RemoteServerConfig):
    type: str = TRANSPORT_SSE


@dataclass
class StreamableHttpServerConfig(RemoteServerConfig):
    type: str = TRANSPORT_STREAMABLE_HTTP


ServerConfig = Union[StdioServerConfig, SseServerConfig, StreamableHttpServerConfig]


def resolve_transport_type(data: dict[str, Any]) -> Optional[str]:
    """Return the transport kind of a raw entry.

    An explicit "type" wins. Otherwise a "command" means stdio and a "url"
    means SSE.
    """
    explicit = data.get("type")
    if explicit is not None:
        return explicit if explicit in TRANSPORT_TYPES else None
    if "command" in data:
        return TRANSPORT_STDIO
    if "url" in data:
        return TRANSPORT_SSE
    return None


def parse_server_config(name: str, data: Any) -> ServerConfig:
    """Build a typed config from one raw settings entry.

    Args:
        name: Server name (only used in error messages)
        data: Raw JSON object from the settings file

    Returns:
        The typed server configuration

    Raises:
        ConfigInvalidError: If the entry does not satisfy the schema
    """
    if not isinstance(data, dict):
        raise ConfigInvalidError(
            f"Invalid configuration for server '{name}'",
            [f"Server '{name}' entry must be an object"],
        )

    transport_type = resolve_transport_type(data)
    common = {
        "disabled": data.get("disabled", False),
        "timeout": data.get("timeout", DEFAULT_MCP_TIMEOUT_SECONDS),
        "auto_approve": data.get("autoApprove", []),
    }

    config: ServerConfig
    if transport_type == TRANSPORT_STDIO:
        config = StdioServerConfig(
            command=data.get("command", ""),
            args=data.get("args", []),
            cwd=data.get("cwd"),
            env=data.get("env", {}),
            **common,
        )
    elif transport_type == TRANSPORT_SSE:
        config = SseServerConfig(url=data.get("url", ""), headers=data.get("headers", {}), **common)
    elif transport_type == TRANSPORT_STREAMABLE_HTTP:
        config = StreamableHttpServerConfig(
            url=data.get("url", ""), headers=data.get("headers", {}), **common
        )
    else:
        raise ConfigInvalidError(
            f"Invalid configuration for server '{name}'",
            [
                f"Server '{name}' has no usable transport. Set 'command', 'url' "
                f"or a 'type' of {', '.join(TRANSPORT_TYPES)}."
            ],
        )

    issues = config.validate()
    if issues:
        raise ConfigInvalidError(
            f"Invalid configuration for server '{name}': {', '.join(issues)}",
            [f"{name}: {issue}" for issue in issues],
        )
    return config


def parse_settings(data: Any) -> dict[str, ServerConfig]:
    """Validate a whole settings document.

    Returns:
        Mapping of server name to config, in file order

    Raises:
        ConfigInvalidError: If the document or any entry is invalid
    """
    if not isinstance(data, dict):
        raise ConfigInvalidError("Invalid MCP settings schema.", ["Settings must be a JSON object"])

    servers = data.get("mcpServers", {})
    if not isinstance(servers, dict):
        raise ConfigInvalidError("Invalid MCP settings schema.", ["'mcpServers' must be an object"])

    parsed: dict[str, ServerConfig] = {}
    issues: list[str] = []
    for name, entry in servers.items():
        try:
            parsed[name] = parse_server_config(name, entry)
        except ConfigInvalidError as e:
            issues.extend(e.issues)

    if issues:
        raise ConfigInvalidError("Invalid MCP settings schema.", issues)
    return parsed
