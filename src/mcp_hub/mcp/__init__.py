"""
MCP (Model Context Protocol) connection hub package.
"""

import asyncio
import logging
import threading
from typing import Optional

from mcp_hub.mcp.client import MCPClient
from mcp_hub.mcp.connection import McpServer
from mcp_hub.mcp.hub import McpHub
from mcp_hub.mcp.notifications import McpNotification
from mcp_hub.mcp.settings import McpSettings

__all__ = [
    "MCPClient",
    "McpHub",
    "McpNotification",
    "McpServer",
    "McpSettings",
    "get_mcp_hub",
    "set_mcp_hub",
    "reset_mcp_hub",
    "reset_mcp_hub_async",
]

logger = logging.getLogger(__name__)


# Global hub instance
_mcp_hub: Optional[McpHub] = None
_mcp_hub_lock = threading.Lock()


def get_mcp_hub() -> Optional[McpHub]:
    """Get the global MCP hub instance.

    Returns:
        McpHub or None: The global hub, or None if not set.
    """
    with _mcp_hub_lock:
        return _mcp_hub


def set_mcp_hub(hub: McpHub) -> None:
    """Set the global MCP hub instance.

    Raises:
        RuntimeError: If a hub has already been set.
    """
    global _mcp_hub
    with _mcp_hub_lock:
        if _mcp_hub is not None:
            raise RuntimeError("MCP hub already set. Call reset_mcp_hub() first.")
        _mcp_hub = hub


def reset_mcp_hub() -> None:
    """Dispose and clear the global hub (tests and shutdown only).

    Raises:
        RuntimeError: If called while an event loop is running. Use
            reset_mcp_hub_async() there instead.
    """
    global _mcp_hub
    with _mcp_hub_lock:
        if _mcp_hub is not None:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                pass
            else:
                raise RuntimeError(
                    "reset_mcp_hub() cannot be called from async context. "
                    "Use 'await reset_mcp_hub_async()' instead."
                )

            try:
                asyncio.run(_mcp_hub.dispose())
                logger.debug("MCP hub disposed during reset")
            except Exception:
                logger.exception("Failed to dispose MCP hub during reset")
        _mcp_hub = None


async def reset_mcp_hub_async() -> None:
    """Async version of reset_mcp_hub()."""
    global _mcp_hub
    with _mcp_hub_lock:
        hub = _mcp_hub
        _mcp_hub = None
    if hub is not None:
        try:
            await hub.dispose()
            logger.debug("MCP hub disposed during async reset")
        except Exception:
            logger.exception("Failed to dispose MCP hub during async reset")
