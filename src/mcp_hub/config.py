"""Application configuration repository.

Centralizes access to configuration values loaded from environment variables.
The hub, the CLI and the tests all read settings through get_config() instead
of touching os.environ directly.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Per-server tool call timeout (seconds) used when a server does not set one
DEFAULT_MCP_TIMEOUT_SECONDS = 60
# Lowest per-server timeout accepted by the settings validator
MIN_MCP_TIMEOUT_SECONDS = 1

SETTINGS_FILE_NAME = "mcp_settings.json"


def _default_settings_dir() -> Path:
    return Path.home() / ".mcp_hub"


@dataclass
class AppConfig:
    """Application configuration container.

    Values are typically loaded from environment variables during
    init_runtime().
    """

    # Settings file location
    settings_dir: Path = field(default_factory=_default_settings_dir)

    # Identity sent to servers during the protocol handshake
    client_name: str = "mcp-hub"
    client_version: str = "0.1.0"

    # Timeouts and delays (seconds)
    request_timeout_seconds: float = 5.0
    restart_delay_seconds: float = 0.5
    file_watch_interval: float = 1.0

    # Notifications
    pending_notification_limit: int = 100

    log_level: Optional[str] = None

    @property
    def settings_path(self) -> Path:
        return Path(self.settings_dir) / SETTINGS_FILE_NAME

    def validate(self) -> list[str]:
        """Validate configuration and return list of warnings.

        Returns:
            list[str]: List of warning messages for invalid configuration.
        """
        issues = []

        if self.request_timeout_seconds <= 0:
            issues.append(f"Invalid MCP_HUB_REQUEST_TIMEOUT_SECONDS: {self.request_timeout_seconds}")

        if self.restart_delay_seconds < 0:
            issues.append(f"Invalid MCP_HUB_RESTART_DELAY_SECONDS: {self.restart_delay_seconds}")

        if self.file_watch_interval <= 0:
            issues.append(f"Invalid MCP_HUB_FILE_WATCH_INTERVAL: {self.file_watch_interval}")

        if self.pending_notification_limit <= 0:
            issues.append(
                f"Invalid MCP_HUB_PENDING_NOTIFICATION_LIMIT: {self.pending_notification_limit}"
            )

        return issues


# Global configuration instance (set once at startup)
_config: Optional[AppConfig] = None


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables.

    Returns:
        AppConfig: Configuration instance populated from environment variables.
    """

    def _get_env_float(key: str, default: float) -> float:
        """Safely parse float from environment variable with fallback."""
        val_str = os.getenv(key)
        if val_str is None:
            return default
        try:
            return float(val_str)
        except (ValueError, TypeError):
            logger.warning(f"Invalid value for {key}: '{val_str}'. Using default value: {default}.")
            return default

    def _get_env_int(key: str, default: int) -> int:
        """Safely parse int from environment variable with fallback."""
        val_str = os.getenv(key)
        if val_str is None:
            return default
        try:
            return int(val_str)
        except (ValueError, TypeError):
            logger.warning(f"Invalid value for {key}: '{val_str}'. Using default value: {default}.")
            return default

    settings_dir_str = os.getenv("MCP_HUB_SETTINGS_DIR")
    settings_dir = (
        Path(settings_dir_str).expanduser() if settings_dir_str else _default_settings_dir()
    )

    config = AppConfig(
        settings_dir=settings_dir,
        client_name=os.getenv("MCP_HUB_CLIENT_NAME", "mcp-hub"),
        client_version=os.getenv("MCP_HUB_CLIENT_VERSION", "0.1.0"),
        request_timeout_seconds=_get_env_float("MCP_HUB_REQUEST_TIMEOUT_SECONDS", 5.0),
        restart_delay_seconds=_get_env_float("MCP_HUB_RESTART_DELAY_SECONDS", 0.5),
        file_watch_interval=_get_env_float("MCP_HUB_FILE_WATCH_INTERVAL", 1.0),
        pending_notification_limit=_get_env_int("MCP_HUB_PENDING_NOTIFICATION_LIMIT", 100),
        log_level=os.getenv("MCP_HUB_LOG_LEVEL"),
    )

    # Log validation issues
    issues = config.validate()
    for issue in issues:
        logger.warning(issue)

    return config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance.

    Raises:
        RuntimeError: If configuration has already been set.
    """
    global _config
    if _config is not None:
        raise RuntimeError("Configuration already set. Call reset_config() first.")
    _config = config
    logger.debug("Configuration initialized")


def get_config() -> AppConfig:
    """Get the global configuration instance.

    Raises:
        RuntimeError: If configuration has not been initialized.
                     Call init_runtime() first.
    """
    if _config is None:
        raise RuntimeError(
            "Configuration not initialized. Call init_runtime() at application startup."
        )
    return _config


def reset_config() -> None:
    """Reset configuration state (for testing purposes only)."""
    global _config
    _config = None


def is_config_initialized() -> bool:
    return _config is not None
