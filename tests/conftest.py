import json

import pytest


def pytest_configure(config):
    """Initialize runtime before test collection (pytest plugin hook)."""
    from mcp_hub.runtime import init_runtime, is_initialized

    if not is_initialized():
        init_runtime()


@pytest.fixture(autouse=True)
def ensure_config_initialized():
    """Ensure configuration is initialized before each test."""
    from mcp_hub.config import is_config_initialized, load_config_from_env, set_config

    # If config was reset by a previous test, reinitialize it
    if not is_config_initialized():
        set_config(load_config_from_env())

    yield


def dump_settings(path, servers):
    """Write a settings document with the given mcpServers mapping."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"mcpServers": servers}, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def settings_path(tmp_path):
    return tmp_path / "settings" / "mcp_settings.json"


@pytest.fixture
def write_settings():
    return dump_settings
