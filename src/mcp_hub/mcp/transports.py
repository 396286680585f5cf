"""
Transport adapters for MCP servers.

Three kinds are supported, selected by the server config's type:

- stdio: child process speaking over stdin/stdout, stderr captured as lines
- sse: Server-Sent Events stream plus POST endpoint
- streamableHttp: streamable HTTP endpoint

Each adapter exposes the same surface: start(), close(), and the on_error /
on_close callbacks. The stdio adapter additionally reports stderr lines via
on_stderr.
"""

import asyncio
import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Optional

import anyio
from mcp.client.sse import sse_client
from mcp.client.stdio import StdioServerParameters, get_default_environment, stdio_client
from mcp.client.streamable_http import streamablehttp_client

from mcp_hub.errors import TransportFailureError
from mcp_hub.mcp.lifecycle import HostedContext, describe_error
from mcp_hub.mcp.server_config import (
    TRANSPORT_SSE,
    TRANSPORT_STDIO,
    TRANSPORT_STREAMABLE_HTTP,
    RemoteServerConfig,
    ServerConfig,
    StdioServerConfig,
)

logger = logging.getLogger(__name__)

# SSE stream (re)connect attempts and the cap on the wait between them
SSE_CONNECT_ATTEMPTS = 3
SSE_MAX_RETRY_SECONDS = 5.0
SSE_INITIAL_RETRY_SECONDS = 0.5


class McpTransport(ABC):
    """Common base for all transport adapters.

    Inbound messages are relayed from the SDK read stream to the stream handed
    to the protocol client. An exception item raises on_error. The end of the
    stream raises on_close, unless close() was called.
    """

    transport_type = ""

    def __init__(self, name: str):
        self.name = name
        self.on_error: Optional[Callable[[BaseException], None]] = None
        self.on_close: Optional[Callable[[], None]] = None
        self.read_stream: Any = None
        self.write_stream: Any = None
        self._closed = False
        self._relay_task: Optional[asyncio.Task] = None
        self._host = HostedContext(
            f"mcp-transport-{name}",
            self._open,
            on_enter=self._attach,
            on_failure=self._emit_error,
        )

    @abstractmethod
    def _open(self) -> AsyncContextManager[Any]:
        """Return the SDK context manager yielding (read_stream, write_stream, ...)."""

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> tuple[Any, Any]:
        """Open the underlying process or connection.

        Returns:
            (read_stream, write_stream) for the protocol client

        Raises:
            TransportFailureError: If the transport could not be opened
        """
        try:
            await self._host.start()
        except Exception as e:
            raise TransportFailureError(
                f"Failed to start {self.transport_type} transport for '{self.name}': "
                f"{describe_error(e)}"
            ) from e
        return self.read_stream, self.write_stream

    async def _attach(self, streams: Any) -> Any:
        source, self.write_stream = streams[0], streams[1]
        relay_send, relay_recv = anyio.create_memory_object_stream(0)
        self.read_stream = relay_recv
        self._relay_task = asyncio.create_task(
            self._relay(source, relay_send), name=f"mcp-relay-{self.name}"
        )
        return streams

    async def _relay(self, source: Any, sink: Any) -> None:
        try:
            async with sink:
                async for item in source:
                    if isinstance(item, Exception):
                        self._emit_error(item)
                    await sink.send(item)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            pass
        except Exception as e:
            self._emit_error(e)
        if not self._closed:
            self._emit_close()

    def _emit_error(self, error: BaseException) -> None:
        if self._closed:
            return
        if self.on_error is not None:
            self.on_error(error)
        else:
            logger.error(f"Transport error for '{self.name}': {describe_error(error)}")

    def _emit_close(self) -> None:
        logger.info(f"Transport for '{self.name}' closed by peer")
        if self.on_close is not None:
            self.on_close()

    async def close(self) -> None:
        """Close the transport, terminating the process or connection."""
        if self._closed:
            return
        self._closed = True

        if self._relay_task is not None:
            self._relay_task.cancel()
            await asyncio.gather(self._relay_task, return_exceptions=True)
            self._relay_task = None

        await self._host.stop()


class _StderrPipe:
    """OS pipe handed to the child as stderr, read line by line on a thread.

    Lines are delivered on the event loop that created the pipe.
    """

    def __init__(self, name: str, on_line: Callable[[str], None]):
        read_fd, write_fd = os.pipe()
        self.writer = os.fdopen(write_fd, "w")
        self._reader = os.fdopen(read_fd, "r", encoding="utf-8", errors="replace")
        self._on_line = on_line
        self._loop = asyncio.get_running_loop()
        self._thread = threading.Thread(
            target=self._pump, name=f"mcp-stderr-{name}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def _pump(self) -> None:
        with self._reader:
            for line in self._reader:
                text = line.rstrip("\r\n")
                if not text:
                    continue
                try:
                    self._loop.call_soon_threadsafe(self._on_line, text)
                except RuntimeError:
                    # Event loop already closed
                    break

    def close(self) -> None:
        if not self.writer.closed:
            self.writer.close()


class StdioTransport(McpTransport):
    """Child process transport.

    The child environment is the SDK default environment overlaid with the
    server's env map.
    """

    transport_type = TRANSPORT_STDIO

    def __init__(self, name: str, config: StdioServerConfig):
        super().__init__(name)
        self.config = config
        self.on_stderr: Optional[Callable[[str], None]] = None

    def server_parameters(self) -> StdioServerParameters:
        env = get_default_environment()
        env.update(self.config.env or {})
        return StdioServerParameters(
            command=self.config.command,
            args=list(self.config.args),
            env=env,
            cwd=self.config.cwd,
        )

    def _handle_stderr_line(self, line: str) -> None:
        if self.on_stderr is not None:
            self.on_stderr(line)
        else:
            logger.info(f'Server "{self.name}" stderr: {line}')

    @asynccontextmanager
    async def _open(self) -> AsyncIterator[Any]:
        pipe = _StderrPipe(self.name, self._handle_stderr_line)
        pipe.start()
        try:
            async with stdio_client(self.server_parameters(), errlog=pipe.writer) as streams:
                yield streams
        finally:
            pipe.close()


class SseTransport(McpTransport):
    """SSE transport.

    The event stream is held open by a supervisor task. Opening it, and
    reopening it after the peer drops it, is retried with a doubling interval
    capped at SSE_MAX_RETRY_SECONDS. The protocol client keeps the same pair
    of streams across reconnects; on_close is raised only once the attempts
    run out.
    """

    transport_type = TRANSPORT_SSE

    def __init__(self, name: str, config: RemoteServerConfig):
        super().__init__(name)
        self.config = config

    @asynccontextmanager
    async def _open(self) -> AsyncIterator[Any]:
        inbound_send, inbound_recv = anyio.create_memory_object_stream(0)
        outbound_send, outbound_recv = anyio.create_memory_object_stream(0)
        ready = asyncio.get_running_loop().create_future()
        supervisor = asyncio.create_task(
            self._supervise(inbound_send, outbound_recv, ready), name=f"mcp-sse-{self.name}"
        )
        try:
            await ready
            yield inbound_recv, outbound_send
        finally:
            supervisor.cancel()
            await asyncio.gather(supervisor, return_exceptions=True)
            outbound_send.close()

    async def _supervise(self, inbound: Any, outbound: Any, ready: asyncio.Future) -> None:
        async with inbound:
            attempt = 0
            delay = SSE_INITIAL_RETRY_SECONDS
            while not self._closed:
                attempt += 1
                try:
                    async with sse_client(
                        self.config.url, headers=dict(self.config.headers) or None
                    ) as streams:
                        if ready.done():
                            logger.info(f"SSE stream for '{self.name}' reopened")
                        else:
                            ready.set_result(None)
                        attempt = 0
                        delay = SSE_INITIAL_RETRY_SECONDS
                        await self._pump(streams, inbound, outbound)
                    if self._closed:
                        return
                    logger.warning(
                        f"SSE stream for '{self.name}' ended. Reconnecting in {delay}s"
                    )
                except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                    return
                except Exception as e:
                    if attempt >= SSE_CONNECT_ATTEMPTS:
                        if not ready.done():
                            ready.set_exception(e)
                        else:
                            logger.warning(
                                f"Giving up on SSE stream for '{self.name}' after {attempt} attempts"
                            )
                            self._emit_error(e)
                        return
                    logger.warning(
                        f"SSE connection to '{self.name}' failed (attempt {attempt}/"
                        f"{SSE_CONNECT_ATTEMPTS}): {describe_error(e)}. Retrying in {delay}s"
                    )
                await asyncio.sleep(delay)
                delay = min(delay * 2, SSE_MAX_RETRY_SECONDS)

    async def _pump(self, streams: Any, inbound: Any, outbound: Any) -> None:
        source, sink = streams[0], streams[1]

        async def forward_outbound() -> None:
            async for message in outbound:
                await sink.send(message)

        forwarder = asyncio.create_task(forward_outbound(), name=f"mcp-sse-out-{self.name}")
        try:
            async for item in source:
                await inbound.send(item)
        finally:
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)


class StreamableHttpTransport(McpTransport):
    """Streamable HTTP transport. Failures surface as transport errors, no retry."""

    transport_type = TRANSPORT_STREAMABLE_HTTP

    def __init__(self, name: str, config: RemoteServerConfig):
        super().__init__(name)
        self.config = config

    def _open(self) -> AsyncContextManager[Any]:
        return streamablehttp_client(self.config.url, headers=dict(self.config.headers) or None)


def create_transport(name: str, config: ServerConfig) -> McpTransport:
    """Create the transport adapter matching a server config.

    Raises:
        ValueError: If the transport type is unknown
    """
    if config.type == TRANSPORT_STDIO:
        return StdioTransport(name, config)
    if config.type == TRANSPORT_SSE:
        return SseTransport(name, config)
    if config.type == TRANSPORT_STREAMABLE_HTTP:
        return StreamableHttpTransport(name, config)
    raise ValueError(f"Unknown transport type: {config.type}")
