"""
Task hosting for MCP SDK async context managers.

The SDK transports and ClientSession open anyio task groups in __aenter__.
anyio requires a cancel scope to be exited by the task that entered it, so a
context that must outlive the call that opened it is kept inside a dedicated
task. Callers only ask that task to leave the context.
"""

import asyncio
import logging
from typing import Any, AsyncContextManager, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


def describe_error(error: BaseException) -> str:
    """Return a readable one-line description of an exception.

    Exception groups are flattened and exceptions with an empty message
    (EndOfStream, ClosedResourceError, CancelledError) get a generic text.
    """
    nested = getattr(error, "exceptions", None)
    if nested:
        return "; ".join(describe_error(e) for e in nested)
    message = str(error)
    return message if message else f"{type(error).__name__}: Connection closed or timed out"


class HostedContext:
    """Keeps one async context manager entered inside its own task.

    Args:
        name: Task name, used in logs
        opener: Returns the async context manager to enter
        on_enter: Optional coroutine run on the entered value. Its return
            value is what start() returns.
        on_failure: Called with the exception if the context fails after
            start() has returned and before stop() was requested
    """

    def __init__(
        self,
        name: str,
        opener: Callable[[], AsyncContextManager[Any]],
        on_enter: Optional[Callable[[Any], Awaitable[Any]]] = None,
        on_failure: Optional[Callable[[BaseException], None]] = None,
    ):
        self.name = name
        self._opener = opener
        self._on_enter = on_enter
        self._on_failure = on_failure
        self._task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._stopping = asyncio.Event()
        self._value: Any = None
        self._startup_error: Optional[BaseException] = None

    async def start(self) -> Any:
        """Enter the context and return the (post-processed) entered value.

        Raises:
            RuntimeError: If called twice
            Exception: Whatever entering the context or on_enter raised
        """
        if self._task is not None:
            raise RuntimeError(f"{self.name} already started")

        self._task = asyncio.create_task(self._run(), name=self.name)
        try:
            await self._ready.wait()
        except asyncio.CancelledError:
            await self.stop()
            raise

        if self._startup_error is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            raise self._startup_error
        return self._value

    async def _run(self) -> None:
        try:
            async with self._opener() as value:
                if self._on_enter is not None:
                    value = await self._on_enter(value)
                self._value = value
                self._ready.set()
                await self._stopping.wait()
        except Exception as e:
            if not self._ready.is_set():
                self._startup_error = e
            elif not self._stopping.is_set() and self._on_failure is not None:
                self._on_failure(e)
            else:
                logger.debug(f"{self.name} exited with error during shutdown: {describe_error(e)}")
        finally:
            self._ready.set()

    async def stop(self, timeout: float = 5.0) -> None:
        """Leave the context, cancelling the hosting task if it does not finish in time."""
        if self._task is None:
            return

        self._stopping.set()
        if self._task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} did not stop within {timeout}s, cancelling")
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
