"""Supervised connection hub for MCP tool servers."""

__version__ = "0.1.0"
