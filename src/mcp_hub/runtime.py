"""Runtime initialization for mcp-hub.

Call init_runtime() once at application startup, before creating a hub.
It loads the .env file, installs the global configuration and optionally
configures logging.
"""

import logging
import threading
from typing import Optional

from dotenv import load_dotenv

from .config import load_config_from_env, set_config

logger = logging.getLogger(__name__)
_initialized = False
_init_lock = threading.Lock()


def init_runtime(log_level: Optional[str] = None) -> None:
    """Initialize runtime environment for the CLI or an embedding application.

    This function:
    1. Loads environment variables from .env file
    2. Initializes the global configuration repository
    3. Optionally configures logging

    Thread-safe: Uses double-checked locking to prevent race conditions.

    Args:
        log_level: Optional log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
                   Falls back to MCP_HUB_LOG_LEVEL. If neither is set, logging
                   configuration is not modified.

    Note:
        This function is idempotent. Once initialized, subsequent calls
        are silently ignored, including log_level settings.

    Raises:
        ValueError: If an invalid log_level is provided.
    """
    global _initialized

    # Fast path: already initialized (no lock needed)
    if _initialized:
        logger.debug("Runtime already initialized, skipping")
        return

    with _init_lock:
        if _initialized:
            logger.debug("Runtime already initialized (detected in lock), skipping")
            return

        try:
            load_dotenv()

            config = load_config_from_env()
            set_config(config)

            level_name = log_level or config.log_level
            if level_name:
                numeric_level = getattr(logging, level_name.upper(), None)
                if not isinstance(numeric_level, int):
                    raise ValueError(f"Invalid log level: {level_name}")
                logging.basicConfig(
                    level=numeric_level,
                    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
                )

            _initialized = True
            logger.debug("Runtime initialized successfully")
        except Exception:
            # Clean up partial initialization on error
            from .config import reset_config

            reset_config()
            raise


def is_initialized() -> bool:
    return _initialized


def reset_runtime() -> None:
    """Reset initialization state (for testing purposes only)."""
    global _initialized
    _initialized = False
