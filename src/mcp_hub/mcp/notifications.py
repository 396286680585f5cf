"""
Routing of out-of-band server notifications.

A notification goes to the registered consumer if there is one, otherwise it
is queued until drain_pending() is called. Independently, it is forwarded to
the UI hook on a best-effort basis.
"""

import inspect
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# (server_name, level, message)
NotificationConsumer = Callable[[str, str, str], Any]


@dataclass(frozen=True)
class McpNotification:
    server_name: str
    level: str
    message: str
    timestamp: float = field(default_factory=time.time)


class NotificationRouter:
    """Delivers notifications to one consumer or a bounded pending queue."""

    def __init__(
        self,
        max_pending: int = 100,
        ui_forward: Optional[Callable[[McpNotification], Any]] = None,
    ):
        self._consumer: Optional[NotificationConsumer] = None
        self._pending: deque[McpNotification] = deque(maxlen=max_pending)
        self._lock = threading.Lock()
        self._ui_forward = ui_forward

    @property
    def has_consumer(self) -> bool:
        return self._consumer is not None

    def set_consumer(self, consumer: NotificationConsumer) -> None:
        """Register the active consumer, replacing any previous one."""
        self._consumer = consumer
        logger.debug("Notification consumer set")

    def clear_consumer(self) -> None:
        self._consumer = None
        logger.debug("Notification consumer cleared")

    async def route(self, server_name: str, level: str, message: str) -> None:
        """Deliver one notification.

        If the consumer raises, the notification is queued instead so it is
        not lost.
        """
        notification = McpNotification(server_name=server_name, level=level, message=message)

        consumer = self._consumer
        delivered = False
        if consumer is not None:
            try:
                result = consumer(server_name, level, message)
                if inspect.isawaitable(result):
                    await result
                delivered = True
                logger.debug(f"Delivered notification from {server_name} to active consumer")
            except Exception:
                logger.exception(f"Notification consumer failed for {server_name}, queueing")

        if not delivered:
            with self._lock:
                if len(self._pending) == self._pending.maxlen:
                    logger.warning("Pending notification queue full, dropping oldest entry")
                self._pending.append(notification)
            logger.debug(f"No active consumer, stored notification from {server_name}")

        await self._forward_to_ui(notification)

    async def _forward_to_ui(self, notification: McpNotification) -> None:
        if self._ui_forward is None:
            return
        try:
            result = self._ui_forward(notification)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Failed to forward notification to UI: {e}")

    def drain_pending(self) -> list[McpNotification]:
        """Return pending notifications in arrival order and clear the queue."""
        with self._lock:
            notifications = list(self._pending)
            self._pending.clear()
        return notifications

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)
