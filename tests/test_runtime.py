"""Tests for runtime initialization module."""

import logging
from unittest.mock import patch

import pytest

from mcp_hub.config import is_config_initialized, reset_config
from mcp_hub.runtime import init_runtime, is_initialized, reset_runtime


@pytest.fixture(autouse=True)
def reset_state():
    """Reset runtime and config state before each test."""
    reset_runtime()
    reset_config()
    yield
    reset_runtime()
    reset_config()


def test_init_runtime_loads_dotenv():
    """Test that init_runtime() calls load_dotenv() and initializes config."""
    with patch("mcp_hub.runtime.load_dotenv") as mock_load:
        init_runtime()
        mock_load.assert_called_once()
        assert is_initialized()
        assert is_config_initialized()


def test_init_runtime_idempotent():
    """Test that calling init_runtime() multiple times is safe."""
    with patch("mcp_hub.runtime.load_dotenv") as mock_load:
        init_runtime()
        init_runtime()
        mock_load.assert_called_once()


def test_init_runtime_with_log_level():
    """Test that init_runtime() configures logging when log_level is provided."""
    with (
        patch("mcp_hub.runtime.load_dotenv"),
        patch("mcp_hub.runtime.logging.basicConfig") as mock_config,
    ):
        init_runtime(log_level="debug")
        mock_config.assert_called_once()
        assert mock_config.call_args.kwargs["level"] == logging.DEBUG


def test_init_runtime_uses_log_level_from_env():
    with (
        patch("mcp_hub.runtime.load_dotenv"),
        patch.dict("os.environ", {"MCP_HUB_LOG_LEVEL": "WARNING"}),
        patch("mcp_hub.runtime.logging.basicConfig") as mock_config,
    ):
        init_runtime()
        assert mock_config.call_args.kwargs["level"] == logging.WARNING


def test_init_runtime_with_invalid_log_level_rolls_back():
    """Test that an invalid log level raises and leaves nothing initialized."""
    with patch("mcp_hub.runtime.load_dotenv"):
        with pytest.raises(ValueError, match="Invalid log level"):
            init_runtime(log_level="LOUD")
    assert not is_initialized()
    assert not is_config_initialized()


def test_init_runtime_without_log_level():
    with (
        patch("mcp_hub.runtime.load_dotenv"),
        patch.dict("os.environ", {}, clear=True),
        patch("mcp_hub.runtime.logging.basicConfig") as mock_config,
    ):
        init_runtime(log_level=None)
        mock_config.assert_not_called()


def test_is_initialized_before_init():
    assert not is_initialized()
