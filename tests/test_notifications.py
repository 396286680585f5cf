"""Tests for notification routing."""

import unittest
from unittest.mock import AsyncMock, Mock

from mcp_hub.mcp.notifications import NotificationRouter


class TestNotificationRouter(unittest.IsolatedAsyncioTestCase):
    async def test_without_consumer_notifications_are_queued(self):
        """コンシューマ未登録時は保留キューに溜まる"""
        router = NotificationRouter()
        await router.route("s1", "info", "first")
        await router.route("s2", "error", "second")

        self.assertEqual(router.pending_count, 2)
        pending = router.drain_pending()
        self.assertEqual([n.message for n in pending], ["first", "second"])
        self.assertEqual(pending[0].server_name, "s1")
        self.assertEqual(router.drain_pending(), [])

    async def test_consumer_receives_notifications(self):
        """登録済みコンシューマに直接配送される"""
        router = NotificationRouter()
        consumer = Mock()
        router.set_consumer(consumer)

        await router.route("s1", "warning", "hello")

        consumer.assert_called_once_with("s1", "warning", "hello")
        self.assertEqual(router.pending_count, 0)

    async def test_async_consumer_is_awaited(self):
        router = NotificationRouter()
        consumer = AsyncMock()
        router.set_consumer(consumer)

        await router.route("s1", "info", "hello")

        consumer.assert_awaited_once_with("s1", "info", "hello")

    async def test_failing_consumer_falls_back_to_queue(self):
        """コンシューマが例外を投げた通知は失われない"""
        router = NotificationRouter()
        router.set_consumer(Mock(side_effect=RuntimeError("boom")))

        await router.route("s1", "info", "kept")

        self.assertEqual([n.message for n in router.drain_pending()], ["kept"])

    async def test_queue_is_bounded(self):
        """上限を超えると古い通知から捨てられる"""
        router = NotificationRouter(max_pending=3)
        for i in range(5):
            await router.route("s", "info", f"m{i}")

        self.assertEqual([n.message for n in router.drain_pending()], ["m2", "m3", "m4"])

    async def test_clear_consumer_resumes_queueing(self):
        router = NotificationRouter()
        consumer = Mock()
        router.set_consumer(consumer)
        router.clear_consumer()
        self.assertFalse(router.has_consumer)

        await router.route("s", "info", "later")

        consumer.assert_not_called()
        self.assertEqual(router.pending_count, 1)

    async def test_ui_forward_failure_is_contained(self):
        """UI転送の失敗は配送に影響しない"""
        forward = Mock(side_effect=RuntimeError("ui gone"))
        router = NotificationRouter(ui_forward=forward)
        consumer = Mock()
        router.set_consumer(consumer)

        await router.route("s", "info", "msg")

        consumer.assert_called_once()
        forward.assert_called_once()
        self.assertEqual(forward.call_args.args[0].message, "msg")
