"""
File change watchers.

A watcher polls one file and calls its callback when an existing file is
modified. Creation and deletion are not reported. Callbacks are plain
functions; a callback that needs to do async work schedules it itself, so
closing a watcher never cancels work it triggered.
"""

import asyncio
import logging
import os
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

# Argument fragment identifying the built entry point of a local stdio server
BUILD_ARTIFACT_MARKER = "build/index.js"


def find_build_artifact(args: Iterable[str]) -> Optional[str]:
    """Return the first argument that points at a server build artifact."""
    for arg in args:
        if isinstance(arg, str) and BUILD_ARTIFACT_MARKER in arg:
            return arg
    return None


class FileWatcher:
    """Polls a file's modification time and size."""

    def __init__(self, path: str, on_change: Callable[[], None], interval: float = 1.0):
        self.path = path
        self._on_change = on_change
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._signature: Optional[tuple[int, int]] = None

    def _stat(self) -> Optional[tuple[int, int]]:
        try:
            st = os.stat(self.path)
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_size)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._signature = self._stat()
        self._task = asyncio.create_task(self._poll(), name=f"file-watch-{self.path}")

    def check(self) -> bool:
        """Compare the file against the last seen state and fire on modification.

        Returns:
            bool: True if the callback was invoked
        """
        current = self._stat()
        previous = self._signature
        self._signature = current
        if previous is None or current is None or previous == current:
            return False

        logger.info(f"Detected change in {self.path}")
        try:
            self._on_change()
        except Exception:
            logger.exception(f"File change handler failed for {self.path}")
        return True

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.check()

    def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None


class FileWatcherRegistry:
    """File watchers keyed by server name."""

    def __init__(self, interval: float = 1.0):
        self._interval = interval
        self._watchers: dict[str, FileWatcher] = {}

    def watch(self, key: str, path: str, on_change: Callable[[], None]) -> FileWatcher:
        """Start watching path for key, replacing any existing watcher of key."""
        self.remove(key)
        watcher = FileWatcher(path, on_change, interval=self._interval)
        watcher.start()
        self._watchers[key] = watcher
        logger.debug(f"Watching {path} for server {key}")
        return watcher

    def get(self, key: str) -> Optional[FileWatcher]:
        return self._watchers.get(key)

    def remove(self, key: str) -> None:
        watcher = self._watchers.pop(key, None)
        if watcher is not None:
            watcher.close()

    def remove_all(self) -> None:
        for watcher in self._watchers.values():
            watcher.close()
        self._watchers.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._watchers

    def __len__(self) -> int:
        return len(self._watchers)
