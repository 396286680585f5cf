"""Tests for MCP server configuration parsing and validation."""

import pytest

from mcp_hub.errors import ConfigInvalidError
from mcp_hub.mcp.server_config import (
    TRANSPORT_SSE,
    TRANSPORT_STDIO,
    TRANSPORT_STREAMABLE_HTTP,
    BaseServerConfig,
    SseServerConfig,
    StdioServerConfig,
    StreamableHttpServerConfig,
    parse_server_config,
    parse_settings,
    resolve_transport_type,
    validate_timeout,
    validate_url,
)


class TestResolveTransportType:
    def test_explicit_type_wins(self):
        assert resolve_transport_type({"type": "streamableHttp", "url": "http://x"}) == (
            TRANSPORT_STREAMABLE_HTTP
        )

    def test_command_means_stdio(self):
        assert resolve_transport_type({"command": "node"}) == TRANSPORT_STDIO

    def test_url_means_sse(self):
        assert resolve_transport_type({"url": "http://localhost:3000/sse"}) == TRANSPORT_SSE

    def test_unknown_type(self):
        assert resolve_transport_type({"type": "websocket"}) is None
        assert resolve_transport_type({}) is None


class TestValidators:
    def test_validate_timeout(self):
        assert validate_timeout(1) is None
        assert validate_timeout(30.5) is None
        assert "Must be at minimum 1 seconds" in validate_timeout(0)
        assert validate_timeout("10") is not None
        assert validate_timeout(True) is not None

    def test_validate_url(self):
        assert validate_url("https://example.com/mcp") is None
        assert validate_url("") == "Server URL cannot be empty"
        assert "HTTP or HTTPS" in validate_url("ftp://example.com")
        assert "missing host" in validate_url("http://")


class TestBaseServerConfig:
    def test_cannot_be_instantiated(self):
        """共通設定クラスは直接生成できない"""
        with pytest.raises(TypeError):
            BaseServerConfig()


class TestParseServerConfig:
    def test_parse_stdio_entry(self):
        """stdio設定がパースできる"""
        config = parse_server_config(
            "fs",
            {
                "command": "node",
                "args": ["/srv/fs/build/index.js"],
                "env": {"ROOT": "/tmp"},
                "autoApprove": ["read_file"],
            },
        )
        assert isinstance(config, StdioServerConfig)
        assert config.type == TRANSPORT_STDIO
        assert config.args == ["/srv/fs/build/index.js"]
        assert config.timeout == 60
        assert config.disabled is False
        assert config.auto_approve == ["read_file"]

    def test_parse_remote_entries(self):
        """リモート設定がtypeに応じてパースされる"""
        sse = parse_server_config("a", {"url": "http://localhost:3000/sse"})
        http = parse_server_config(
            "b",
            {"type": "streamableHttp", "url": "https://example.com/mcp", "headers": {"X": "1"}},
        )
        assert isinstance(sse, SseServerConfig)
        assert isinstance(http, StreamableHttpServerConfig)
        assert http.headers == {"X": "1"}

    def test_to_dict_is_canonical(self):
        """未知のキーは除去され、既定値が補われる"""
        config = parse_server_config(
            "fs", {"command": "node", "args": ["x"], "comment": "ignored"}
        )
        assert config.to_dict() == {
            "type": "stdio",
            "command": "node",
            "args": ["x"],
            "env": {},
            "disabled": False,
            "timeout": 60,
            "autoApprove": [],
        }

    def test_equal_entries_serialize_equal(self):
        a = parse_server_config("s", {"url": "http://h/sse", "disabled": False})
        b = parse_server_config("s", {"type": "sse", "url": "http://h/sse"})
        assert a.to_dict() == b.to_dict()

    def test_missing_command_raises(self):
        with pytest.raises(ConfigInvalidError) as exc_info:
            parse_server_config("bad", {"type": "stdio"})
        assert any("command cannot be empty" in issue for issue in exc_info.value.issues)

    def test_timeout_below_minimum_raises(self):
        with pytest.raises(ConfigInvalidError, match="Must be at minimum 1 seconds"):
            parse_server_config("bad", {"command": "node", "timeout": 0})

    def test_no_transport_raises(self):
        with pytest.raises(ConfigInvalidError) as exc_info:
            parse_server_config("bad", {"disabled": True})
        assert "no usable transport" in exc_info.value.issues[0]

    def test_non_object_entry_raises(self):
        with pytest.raises(ConfigInvalidError):
            parse_server_config("bad", ["node"])


class TestParseSettings:
    def test_preserves_key_order(self):
        servers = parse_settings(
            {
                "mcpServers": {
                    "zeta": {"command": "z"},
                    "alpha": {"url": "http://a/sse"},
                    "mid": {"command": "m", "disabled": True},
                }
            }
        )
        assert list(servers) == ["zeta", "alpha", "mid"]

    def test_missing_servers_key_is_empty(self):
        assert parse_settings({}) == {}

    def test_aggregates_issues(self):
        with pytest.raises(ConfigInvalidError) as exc_info:
            parse_settings(
                {"mcpServers": {"a": {"type": "stdio"}, "b": {"url": "not a url"}}}
            )
        issues = exc_info.value.issues
        assert any(issue.startswith("a:") for issue in issues)
        assert any(issue.startswith("b:") for issue in issues)

    def test_servers_must_be_object(self):
        with pytest.raises(ConfigInvalidError):
            parse_settings({"mcpServers": []})
