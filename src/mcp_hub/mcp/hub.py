"""
MCP hub: supervised connections to the servers listed in the settings file.

The hub reconciles the settings file against its connection registry, keeps
each connection's tool and resource lists, restarts local servers when their
build output changes, routes server notifications, and pushes a snapshot of
all servers to an observer after every observable change.

All structural changes to the registry (create, delete, recreate) happen
under one asyncio lock. Invocations (call_tool, read_resource) only read it.
"""

import asyncio
import inspect
import json
import logging
import re
from typing import Any, Callable, Coroutine, Iterable, Optional

from mcp_hub.config import DEFAULT_MCP_TIMEOUT_SECONDS, AppConfig, get_config
from mcp_hub.errors import (
    ConfigInvalidError,
    ConnectionNotFoundError,
    ServerDisabledError,
    TransportFailureError,
)
from mcp_hub.mcp.client import MCPClient
from mcp_hub.mcp.connection import (
    STATUS_CONNECTING,
    STATUS_DISCONNECTED,
    Connection,
    McpServer,
    annotate_tools,
)
from mcp_hub.mcp.lifecycle import describe_error
from mcp_hub.mcp.notifications import McpNotification, NotificationConsumer, NotificationRouter
from mcp_hub.mcp.server_config import (
    TRANSPORT_SSE,
    TRANSPORT_STDIO,
    ServerConfig,
    StdioServerConfig,
    parse_server_config,
    validate_url,
)
from mcp_hub.mcp.settings import McpSettings
from mcp_hub.mcp.transports import McpTransport, StdioTransport, create_transport
from mcp_hub.mcp.watchers import FileWatcher, FileWatcherRegistry, find_build_artifact

logger = logging.getLogger(__name__)

# stderr lines matching this are informational output, not errors
INFO_LOG_PATTERN = re.compile(r"INFO", re.IGNORECASE)

MESSAGE_INFO = "info"
MESSAGE_ERROR = "error"

SnapshotPublisher = Callable[[list[McpServer]], Any]
MessagePresenter = Callable[[str, str], Any]


def _log_message(level: str, message: str) -> None:
    if level == MESSAGE_ERROR:
        logger.error(message)
    else:
        logger.info(message)


class McpHub:
    """Connection hub for MCP servers.

    Args:
        settings: Gateway to the settings file
        publish_server_snapshot: Called with the settings-ordered server list
            after every observable change. May be a coroutine function.
        ui_forward: Best-effort hook receiving every log notification
        show_message: Presents one-line status messages (level, text).
            Defaults to logging them.
        config: Application config. Defaults to the global one.
    """

    def __init__(
        self,
        settings: McpSettings,
        publish_server_snapshot: Optional[SnapshotPublisher] = None,
        ui_forward: Optional[Callable[[McpNotification], Any]] = None,
        show_message: Optional[MessagePresenter] = None,
        config: Optional[AppConfig] = None,
    ):
        self._config = config or get_config()
        self.settings = settings
        self._publish = publish_server_snapshot
        self._show_message_fn = show_message or _log_message

        self.connections: list[Connection] = []
        self.is_connecting = False
        self._registry_lock = asyncio.Lock()

        self._file_watchers = FileWatcherRegistry(interval=self._config.file_watch_interval)
        self._settings_watcher: Optional[FileWatcher] = None
        self._notifications = NotificationRouter(
            max_pending=self._config.pending_notification_limit, ui_forward=ui_forward
        )
        self._background_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Startup and shutdown
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect every configured server and start watching the settings file."""
        self.settings.ensure_file()
        servers = self._read_settings()
        if servers is not None:
            await self.update_server_connections(servers)
        self._watch_settings_file()

    def _watch_settings_file(self) -> None:
        if self._settings_watcher is not None:
            return
        self._settings_watcher = FileWatcher(
            str(self.settings.path),
            lambda: self._spawn(self._reload_settings()),
            interval=self._config.file_watch_interval,
        )
        self._settings_watcher.start()

    async def _reload_settings(self) -> None:
        servers = self._read_settings()
        if servers is None:
            return
        try:
            await self.update_server_connections(servers)
        except Exception:
            logger.exception("Failed to process MCP settings change")

    def _read_settings(self) -> Optional[dict[str, ServerConfig]]:
        """Return the validated server mapping, or None if the file is unusable."""
        try:
            return self.settings.load()
        except ConfigInvalidError as e:
            logger.error(f"{e} {'; '.join(e.issues)}".strip())
            self._show_message(MESSAGE_ERROR, str(e))
        except OSError as e:
            logger.error(f"Failed to read MCP settings: {e}")
        return None

    async def dispose(self) -> None:
        """Stop all watchers and close every connection."""
        if self._settings_watcher is not None:
            self._settings_watcher.close()
            self._settings_watcher = None
        self._file_watchers.remove_all()

        async with self._registry_lock:
            for connection in list(self.connections):
                try:
                    await self._delete_connection(connection.name)
                except Exception:
                    logger.exception(f"Failed to close connection for {connection.name}")
            self.connections = []

        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {describe_error(task.exception())}")

    # ------------------------------------------------------------------
    # Registry queries
    # ------------------------------------------------------------------

    def _find_connection(self, name: str) -> Optional[Connection]:
        for connection in self.connections:
            if connection.name == name:
                return connection
        return None

    def _auto_approve_map(self) -> Optional[dict[str, set[str]]]:
        try:
            raw = self.settings.read_raw()
        except (ConfigInvalidError, OSError) as e:
            logger.debug(f"Using cached autoApprove flags: {e}")
            return None
        servers = raw.get("mcpServers") or {}
        if not isinstance(servers, dict):
            return {}
        result: dict[str, set[str]] = {}
        for name, entry in servers.items():
            names = entry.get("autoApprove") if isinstance(entry, dict) else None
            result[name] = {n for n in names or [] if isinstance(n, str)}
        return result

    def _snapshots(self, connections: Iterable[Connection]) -> list[McpServer]:
        auto_approve = self._auto_approve_map()
        return [
            connection.snapshot(
                auto_approve.get(connection.name, set()) if auto_approve is not None else None
            )
            for connection in connections
        ]

    def get_connections(self, include_disabled: bool = False) -> list[McpServer]:
        """Return snapshots of the registry in registry order."""
        return self._snapshots(
            c for c in self.connections if include_disabled or not c.disabled
        )

    def get_servers(self) -> list[McpServer]:
        """Return snapshots of enabled servers only."""
        return self.get_connections(include_disabled=False)

    def get_sorted_connections(self, order_hint: Optional[list[str]] = None) -> list[McpServer]:
        """Return snapshots of all connections ordered like order_hint.

        Without a hint, the key order of the settings file is read now.
        Names missing from the order come first, in registry order.
        """
        if order_hint is None:
            order_hint = self._server_order()
        positions = {name: index for index, name in enumerate(order_hint)}
        ordered = sorted(self.connections, key=lambda c: positions.get(c.name, -1))
        return self._snapshots(ordered)

    def _server_order(self) -> list[str]:
        try:
            return self.settings.server_order()
        except (ConfigInvalidError, OSError) as e:
            logger.warning(f"Falling back to registry order: {e}")
            return [connection.name for connection in self.connections]

    async def get_latest_servers(self) -> list[McpServer]:
        """Return settings-ordered snapshots, or [] if the settings cannot be read."""
        if self._read_settings() is None:
            return []
        return self.get_sorted_connections()

    async def send_latest_servers(self) -> None:
        await self._notify_server_changes()

    async def _notify_server_changes(self) -> None:
        """Push the settings-ordered snapshot to the observer."""
        if self._publish is None:
            return
        servers = self.get_sorted_connections()
        try:
            result = self._publish(servers)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Failed to publish MCP server snapshot")

    def _show_message(self, level: str, message: str) -> None:
        try:
            self._show_message_fn(level, message)
        except Exception as e:
            logger.warning(f"Failed to show message '{message}': {e}")

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def update_server_connections(self, new_servers: dict[str, ServerConfig]) -> None:
        """Converge the registry to new_servers.

        Removed servers are deleted, new servers are connected, servers whose
        serialized config changed are deleted and reconnected, unchanged
        servers are left alone. One server failing never stops the others.
        """
        async with self._registry_lock:
            self.is_connecting = True
            try:
                self._file_watchers.remove_all()

                for name in [connection.name for connection in self.connections]:
                    if name not in new_servers:
                        await self._delete_connection(name)
                        logger.info(f"Deleted MCP server: {name}")

                for name, config in new_servers.items():
                    current = self._find_connection(name)
                    if config.type == TRANSPORT_STDIO:
                        self._setup_file_watcher(name, config)

                    if current is None:
                        try:
                            await self._connect_to_server(name, config)
                        except Exception as e:
                            logger.error(
                                f"Failed to connect to new MCP server {name}: {describe_error(e)}"
                            )
                    elif current.config_dict() != config.to_dict():
                        try:
                            await self._delete_connection(name)
                            await self._connect_to_server(name, config)
                            logger.info(f"Reconnected MCP server with updated config: {name}")
                        except Exception as e:
                            logger.error(
                                f"Failed to reconnect MCP server {name}: {describe_error(e)}"
                            )
            finally:
                self.is_connecting = False

        await self._notify_server_changes()

    def _setup_file_watcher(self, name: str, config: StdioServerConfig) -> None:
        file_path = find_build_artifact(config.args)
        if not file_path:
            return

        def on_change() -> None:
            logger.info(f"Detected change in {file_path}. Restarting server {name}...")
            self._spawn(self.restart_connection(name))

        self._file_watchers.watch(name, file_path, on_change)

    async def _connect_to_server(self, name: str, config: ServerConfig) -> None:
        """Create the registry entry for name and connect it.

        Must be called with the registry lock held.

        Raises:
            TransportFailureError: If connecting fails. The entry stays in the
                registry as disconnected with the error recorded.
        """
        # Should already be gone, delete_connection runs first
        self.connections = [c for c in self.connections if c.name != name]
        snapshot = json.dumps(config.to_dict())

        if config.disabled:
            logger.debug(f'Creating disabled connection object for server "{name}"')
            self.connections.append(
                Connection(
                    name=name,
                    config_snapshot=snapshot,
                    status=STATUS_DISCONNECTED,
                    disabled=True,
                )
            )
            return

        transport = create_transport(name, config)
        client = MCPClient(
            name,
            client_name=self._config.client_name,
            client_version=self._config.client_version,
            request_timeout=self._config.request_timeout_seconds,
        )
        self._bind_transport(name, transport)
        client.set_notification_handler(
            lambda level, logger_name, data: self._handle_log_notification(
                name, level, logger_name, data
            )
        )
        client.set_fallback_notification_handler(
            lambda method, params: self._handle_other_notification(name, method, params)
        )

        connection = Connection(
            name=name,
            config_snapshot=snapshot,
            status=STATUS_CONNECTING,
            disabled=False,
            transport=transport,
            client=client,
        )
        self.connections.append(connection)

        try:
            await client.connect(transport)
        except Exception as e:
            connection.detach()
            connection.mark_disconnected(describe_error(e))
            raise

        connection.mark_connected()
        auto_approve = self._auto_approve_for(name)
        tools = annotate_tools(await self._fetch_tools_list(connection), auto_approve)
        resources = await self._fetch_resources_list(connection)
        templates = await self._fetch_resource_templates_list(connection)
        connection.set_capabilities(tools, resources, templates)
        logger.info(
            f"Connected to MCP server {name}: {len(tools)} tools, "
            f"{len(resources)} resources, {len(templates)} resource templates"
        )

    def _bind_transport(self, name: str, transport: McpTransport) -> None:
        transport.on_error = lambda error: self._handle_transport_error(name, transport, error)
        transport.on_close = lambda: self._handle_transport_close(name, transport)
        if isinstance(transport, StdioTransport):
            transport.on_stderr = lambda line: self._handle_stderr(name, transport, line)

    def _owned_connection(self, name: str, transport: McpTransport) -> Optional[Connection]:
        connection = self._find_connection(name)
        if connection is None or connection.transport is not transport:
            return None
        return connection

    def _handle_transport_error(
        self, name: str, transport: McpTransport, error: BaseException
    ) -> None:
        logger.error(f'Transport error for "{name}": {describe_error(error)}')
        connection = self._owned_connection(name, transport)
        if connection is not None:
            connection.mark_disconnected(describe_error(error))
        self._spawn(self._notify_server_changes())

    def _handle_transport_close(self, name: str, transport: McpTransport) -> None:
        connection = self._owned_connection(name, transport)
        if connection is not None:
            connection.mark_disconnected()
        self._spawn(self._notify_server_changes())

    def _handle_stderr(self, name: str, transport: McpTransport, line: str) -> None:
        if INFO_LOG_PATTERN.search(line):
            logger.info(f'Server "{name}" info: {line}')
            return

        logger.warning(f'Server "{name}" stderr: {line}')
        connection = self._owned_connection(name, transport)
        if connection is None:
            return
        connection.append_error(line)
        if connection.status == STATUS_DISCONNECTED:
            self._spawn(self._notify_server_changes())

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _auto_approve_for(self, name: str) -> set[str]:
        try:
            return self.settings.auto_approve_for(name)
        except (ConfigInvalidError, OSError) as e:
            logger.warning(f"Failed to read autoApprove settings for {name}: {e}")
            return set()

    async def _fetch_tools_list(self, connection: Connection) -> list[dict]:
        if connection.disabled or connection.client is None:
            return []
        try:
            return await connection.client.list_tools()
        except Exception as e:
            logger.error(f"Failed to fetch tools for {connection.name}: {describe_error(e)}")
            return []

    async def _fetch_resources_list(self, connection: Connection) -> list[dict]:
        if connection.disabled or connection.client is None:
            return []
        try:
            return await connection.client.list_resources()
        except Exception as e:
            logger.debug(f"Failed to fetch resources for {connection.name}: {describe_error(e)}")
            return []

    async def _fetch_resource_templates_list(self, connection: Connection) -> list[dict]:
        if connection.disabled or connection.client is None:
            return []
        try:
            return await connection.client.list_resource_templates()
        except Exception as e:
            logger.debug(
                f"Failed to fetch resource templates for {connection.name}: {describe_error(e)}"
            )
            return []

    # ------------------------------------------------------------------
    # Deletion and restart
    # ------------------------------------------------------------------

    async def _delete_connection(self, name: str) -> None:
        """Close and unregister name. Must be called with the registry lock held."""
        connection = self._find_connection(name)
        if connection is None:
            return

        await self._close_connection(connection)
        self.connections = [c for c in self.connections if c is not connection]

    async def _close_connection(self, connection: Connection) -> None:
        name = connection.name
        # A peer that will not shut down must not block cleanup
        if connection.client is not None:
            try:
                await connection.client.close()
            except Exception as e:
                logger.error(f"Failed to close client for {name}: {describe_error(e)}")
        if connection.transport is not None:
            try:
                await connection.transport.close()
            except Exception as e:
                logger.error(f"Failed to close transport for {name}: {describe_error(e)}")
        connection.detach()

    async def delete_connection(self, name: str) -> None:
        """Close one connection and remove it and its file watcher from the registry."""
        async with self._registry_lock:
            self._file_watchers.remove(name)
            await self._delete_connection(name)
        await self._notify_server_changes()

    async def restart_connection(self, server_name: str) -> list[McpServer]:
        """Delete and recreate one connection from its current config.

        Failures are logged and reported as a status message, never raised.

        Returns:
            Settings-ordered snapshots after the restart
        """
        async with self._registry_lock:
            self.is_connecting = True
            try:
                await self._restart_locked(server_name)
            finally:
                self.is_connecting = False

        await self._notify_server_changes()
        return self.get_sorted_connections()

    async def _restart_locked(self, server_name: str) -> None:
        connection = self._find_connection(server_name)
        if connection is None:
            logger.warning(f"Cannot restart unknown MCP server {server_name}")
            return
        if connection.disabled:
            logger.info(f"Skipping restart of disabled MCP server {server_name}")
            return

        config_snapshot = connection.config_snapshot
        self._show_message(MESSAGE_INFO, f"Restarting {server_name} MCP server...")
        connection.set_status(STATUS_CONNECTING)
        connection.clear_error()
        await self._notify_server_changes()

        # Give observers time to show the transitional state
        await asyncio.sleep(self._config.restart_delay_seconds)

        try:
            config = parse_server_config(server_name, json.loads(config_snapshot))
            await self._delete_connection(server_name)
            await self._connect_to_server(server_name, config)
            self._show_message(MESSAGE_INFO, f"{server_name} MCP server connected")
        except Exception as e:
            logger.error(f"Failed to restart connection for {server_name}: {describe_error(e)}")
            self._show_message(MESSAGE_ERROR, f"Failed to connect to {server_name} MCP server")

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def _require_connection(self, server_name: str) -> Connection:
        connection = self._find_connection(server_name)
        if connection is None:
            raise ConnectionNotFoundError(
                server_name,
                f"No connection found for server: {server_name}. "
                "Please make sure to use MCP servers available under 'Connected MCP Servers'.",
            )
        if connection.disabled:
            raise ServerDisabledError(
                server_name, f'Server "{server_name}" is disabled and cannot be used'
            )
        if connection.client is None:
            raise TransportFailureError(f'Server "{server_name}" is not connected')
        return connection

    async def read_resource(self, server_name: str, uri: str) -> dict:
        """Read a resource from a server under the default request timeout.

        Raises:
            ConnectionNotFoundError: If server_name is not registered
            ServerDisabledError: If the server is disabled
        """
        connection = self._require_connection(server_name)
        return await connection.client.read_resource(uri)

    async def call_tool(
        self, server_name: str, tool_name: str, tool_arguments: Optional[dict] = None
    ) -> dict:
        """Call a tool using the server's configured timeout.

        Raises:
            ConnectionNotFoundError: If server_name is not registered
            ServerDisabledError: If the server is disabled
        """
        connection = self._require_connection(server_name)

        timeout = DEFAULT_MCP_TIMEOUT_SECONDS
        try:
            timeout = parse_server_config(server_name, connection.config_dict()).timeout
        except (ConfigInvalidError, ValueError) as e:
            logger.error(f"Failed to parse timeout configuration for server {server_name}: {e}")

        result = await connection.client.call_tool(tool_name, tool_arguments, timeout=timeout)
        result["content"] = result.get("content") or []
        return result

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def set_notification_consumer(self, consumer: NotificationConsumer) -> None:
        self._notifications.set_consumer(consumer)

    def clear_notification_consumer(self) -> None:
        self._notifications.clear_consumer()

    def drain_pending_notifications(self) -> list[McpNotification]:
        return self._notifications.drain_pending()

    async def _handle_log_notification(
        self, name: str, level: str, logger_name: str, data: str
    ) -> None:
        logger.debug(f"[MCP Notification] {name}: level={level}, data={data}, logger={logger_name}")
        message = f"[{logger_name}] {data}" if logger_name else data
        await self._notifications.route(name, level, message)

    async def _handle_other_notification(self, name: str, method: str, params: dict) -> None:
        logger.debug(f"[MCP Fallback Notification] {name}: {method}")
        self._show_message(
            MESSAGE_INFO,
            f"MCP {name}: {method or 'unknown'} - {json.dumps(params, ensure_ascii=False)}",
        )

    # ------------------------------------------------------------------
    # Settings mutations
    # ------------------------------------------------------------------

    async def _reconcile_from_settings(self) -> None:
        servers = self._read_settings()
        if servers is not None:
            await self.update_server_connections(servers)

    async def toggle_server_disabled(self, server_name: str, disabled: bool) -> list[McpServer]:
        """Persist the disabled flag and apply it.

        The live entry flips in place under the registry lock. A connected
        entry that is being disabled has its transport and client closed first.
        The registry is then reconciled against the written settings.
        """
        try:
            self.settings.set_disabled(server_name, disabled)
        except Exception as e:
            logger.error(f"Failed to update server disabled state: {e}")
            self._show_message(MESSAGE_ERROR, f"Failed to update server state: {e}")
            raise

        async with self._registry_lock:
            connection = self._find_connection(server_name)
            if connection is not None:
                if disabled:
                    await self._close_connection(connection)
                connection.set_disabled(disabled)

        await self._reconcile_from_settings()
        return self.get_sorted_connections()

    async def toggle_tool_auto_approve(
        self, server_name: str, tool_names: list[str], should_allow: bool
    ) -> list[McpServer]:
        """Add or remove tools from a server's auto-approve list."""
        try:
            auto_approve = self.settings.set_auto_approve(server_name, tool_names, should_allow)
        except Exception as e:
            logger.error(f"Failed to update autoApprove settings: {e}")
            self._show_message(MESSAGE_ERROR, "Failed to update autoApprove settings")
            raise

        connection = self._find_connection(server_name)
        if connection is not None:
            connection.apply_auto_approve(auto_approve)
            await self._notify_server_changes()
        return self.get_sorted_connections()

    async def update_server_timeout(self, server_name: str, timeout: int) -> list[McpServer]:
        """Persist a new tool call timeout and reconnect the server with it.

        Raises:
            ValueError: If the timeout is below the minimum
        """
        try:
            self.settings.set_timeout(server_name, timeout)
        except Exception as e:
            logger.error(f"Failed to update server timeout: {e}")
            self._show_message(MESSAGE_ERROR, f"Failed to update server timeout: {e}")
            raise

        await self._reconcile_from_settings()
        return self.get_sorted_connections()

    async def add_remote_server(
        self, server_name: str, server_url: str, transport_type: str = TRANSPORT_SSE
    ) -> list[McpServer]:
        """Add a remote server to the settings file and connect it.

        Raises:
            ValueError: If the name is taken or the URL is invalid
        """
        url_issue = validate_url(server_url)
        if url_issue:
            raise ValueError(f"Invalid server URL: {server_url}. Please provide a valid URL.")

        entry: dict[str, Any] = {"url": server_url, "disabled": False, "autoApprove": []}
        if transport_type != TRANSPORT_SSE:
            entry = {"type": transport_type, **entry}
        # Reject entries the settings validator would refuse later
        parse_server_config(server_name, entry)

        self.settings.add_server(server_name, entry)
        await self._reconcile_from_settings()
        return self.get_sorted_connections()

    async def delete_server(self, server_name: str) -> list[McpServer]:
        """Remove a server from the settings file and disconnect it."""
        self.settings.remove_server(server_name)
        await self._reconcile_from_settings()
        return self.get_sorted_connections()
