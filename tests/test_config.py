"""Tests for configuration repository module."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from mcp_hub.config import (
    DEFAULT_MCP_TIMEOUT_SECONDS,
    MIN_MCP_TIMEOUT_SECONDS,
    AppConfig,
    get_config,
    is_config_initialized,
    load_config_from_env,
    reset_config,
    set_config,
)


@pytest.fixture(autouse=True)
def reset_config_state():
    """Reset configuration state before each test."""
    reset_config()
    yield
    reset_config()


class TestAppConfig:
    """Tests for AppConfig dataclass."""

    def test_appconfig_defaults(self):
        """Test that AppConfig has correct default values."""
        config = AppConfig()
        assert config.settings_dir == Path.home() / ".mcp_hub"
        assert config.client_name == "mcp-hub"
        assert config.request_timeout_seconds == 5.0
        assert config.restart_delay_seconds == 0.5
        assert config.file_watch_interval == 1.0
        assert config.pending_notification_limit == 100
        assert config.log_level is None

    def test_timeout_constants(self):
        assert DEFAULT_MCP_TIMEOUT_SECONDS == 60
        assert MIN_MCP_TIMEOUT_SECONDS == 1

    def test_settings_path(self, tmp_path):
        config = AppConfig(settings_dir=tmp_path)
        assert config.settings_path == tmp_path / "mcp_settings.json"

    def test_appconfig_validation_defaults_ok(self):
        assert AppConfig().validate() == []

    def test_appconfig_validation_invalid_values(self):
        """Test validation catches invalid timeouts and limits."""
        config = AppConfig(
            request_timeout_seconds=0,
            restart_delay_seconds=-1,
            file_watch_interval=0,
            pending_notification_limit=0,
        )
        issues = config.validate()
        assert len(issues) == 4
        assert any("REQUEST_TIMEOUT_SECONDS" in issue for issue in issues)
        assert any("PENDING_NOTIFICATION_LIMIT" in issue for issue in issues)


class TestConfigRepository:
    """Tests for configuration repository functions."""

    def test_is_config_initialized_before_set(self):
        assert not is_config_initialized()

    def test_set_config_stores_instance(self):
        config = AppConfig(client_name="custom")
        set_config(config)
        assert get_config() is config
        assert is_config_initialized()

    def test_set_config_twice_raises_error(self):
        set_config(AppConfig())
        with pytest.raises(RuntimeError, match="Configuration already set"):
            set_config(AppConfig())

    def test_get_config_before_init_raises_error(self):
        with pytest.raises(RuntimeError, match="Configuration not initialized"):
            get_config()

    def test_reset_config_allows_reinit(self):
        set_config(AppConfig(client_name="one"))
        reset_config()
        set_config(AppConfig(client_name="two"))
        assert get_config().client_name == "two"


class TestLoadConfigFromEnv:
    """Tests for load_config_from_env() function."""

    def test_load_config_from_env_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = load_config_from_env()
            assert config.client_name == "mcp-hub"
            assert config.client_version == "0.1.0"
            assert config.request_timeout_seconds == 5.0
            assert config.pending_notification_limit == 100

    def test_load_config_from_env_custom_values(self, tmp_path):
        env = {
            "MCP_HUB_SETTINGS_DIR": str(tmp_path),
            "MCP_HUB_CLIENT_NAME": "embedder",
            "MCP_HUB_CLIENT_VERSION": "2.0.0",
            "MCP_HUB_REQUEST_TIMEOUT_SECONDS": "12.5",
            "MCP_HUB_RESTART_DELAY_SECONDS": "0",
            "MCP_HUB_FILE_WATCH_INTERVAL": "0.25",
            "MCP_HUB_PENDING_NOTIFICATION_LIMIT": "10",
            "MCP_HUB_LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env, clear=True):
            config = load_config_from_env()
            assert config.settings_dir == tmp_path
            assert config.client_name == "embedder"
            assert config.client_version == "2.0.0"
            assert config.request_timeout_seconds == 12.5
            assert config.restart_delay_seconds == 0
            assert config.file_watch_interval == 0.25
            assert config.pending_notification_limit == 10
            assert config.log_level == "DEBUG"

    def test_load_config_from_env_invalid_number_value(self, caplog):
        """Test that invalid numeric values fall back to defaults with warning."""
        env = {
            "MCP_HUB_REQUEST_TIMEOUT_SECONDS": "soon",
            "MCP_HUB_PENDING_NOTIFICATION_LIMIT": "many",
        }
        with patch.dict(os.environ, env, clear=True):
            with caplog.at_level("WARNING"):
                config = load_config_from_env()
        assert config.request_timeout_seconds == 5.0
        assert config.pending_notification_limit == 100
        assert any("MCP_HUB_REQUEST_TIMEOUT_SECONDS" in r.message for r in caplog.records)

    def test_load_config_from_env_logs_validation_warnings(self, caplog):
        with patch.dict(os.environ, {"MCP_HUB_FILE_WATCH_INTERVAL": "-1"}, clear=True):
            with caplog.at_level("WARNING"):
                load_config_from_env()
        assert any("MCP_HUB_FILE_WATCH_INTERVAL" in r.message for r in caplog.records)
