import json
import unittest
from datetime import datetime, timezone
from unittest import mock

from pywebpush import WebPushException

from bhss.db import IN_MEMORY_DATABASE_URL, DbClient
from bhss.live import InMemoryLiveFeed
from bhss.notifications import (
    Notifier,
    PushMessage,
    PushSubscriptionGone,
    WebPushSender,
)


class RecordingFeed:
    def __init__(self, fail=False):
        self.published = []
        self.fail = fail

    async def publish(self, event, data):
        if self.fail:
            raise RuntimeError("feed down")
        self.published.append((event, data))


class FakeSender:
    """Gone for endpoints containing "gone", broken for "broken"."""

    def __init__(self):
        self.sent = []

    def send(self, subscription_info, payload):
        endpoint = subscription_info["endpoint"]
        if "gone" in endpoint:
            raise PushSubscriptionGone(410)
        if "broken" in endpoint:
            raise RuntimeError("push service unavailable")
        self.sent.append((endpoint, json.loads(payload)))


class PushMessageTests(unittest.TestCase):
    def test_tag_is_optional(self):
        self.assertEqual(
            json.loads(PushMessage("T", "B", "/x").to_json()),
            {"title": "T", "body": "B", "url": "/x"},
        )
        self.assertEqual(json.loads(PushMessage("T", "B", "/x", tag="t1").to_json())["tag"], "t1")


class WebPushSenderTests(unittest.TestCase):
    def setUp(self):
        self.sender = WebPushSender(private_key="private", subject="mailto:ops@example.com")
        self.info = {"endpoint": "https://push/1", "keys": {"p256dh": "k", "auth": "a"}}

    def _failure(self, status_code):
        return WebPushException("push failed", response=mock.Mock(status_code=status_code))

    def test_sends_signed_payload(self):
        with mock.patch("bhss.notifications.webpush") as webpush:
            self.sender.send(self.info, '{"title": "T"}')
        kwargs = webpush.call_args.kwargs
        self.assertEqual(kwargs["subscription_info"], self.info)
        self.assertEqual(kwargs["vapid_private_key"], "private")
        self.assertEqual(kwargs["vapid_claims"], {"sub": "mailto:ops@example.com"})

    def test_expired_subscriptions_are_gone(self):
        for status_code in (404, 410):
            with self.subTest(status_code=status_code):
                with mock.patch(
                    "bhss.notifications.webpush", side_effect=self._failure(status_code)
                ):
                    with self.assertRaises(PushSubscriptionGone):
                        self.sender.send(self.info, "{}")

    def test_other_failures_are_reraised(self):
        with mock.patch("bhss.notifications.webpush", side_effect=self._failure(500)):
            with self.assertRaises(WebPushException):
                self.sender.send(self.info, "{}")
        no_response = WebPushException("connection reset")
        with mock.patch("bhss.notifications.webpush", side_effect=no_response):
            with self.assertRaises(WebPushException):
                self.sender.send(self.info, "{}")


class NotifierTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.db = DbClient(IN_MEMORY_DATABASE_URL)
        for endpoint in ("https://push/ok", "https://push/gone", "https://push/broken"):
            self.db.save_push_subscription(
                user_id="u1", endpoint=endpoint, p256dh="key", auth="secret"
            )
        self.sender = FakeSender()
        self.message = PushMessage(
            title="New attendance saved", body="School • Grade 2 • 2025-01-06", url="/admin"
        )

    def _endpoints(self):
        return sorted(s.endpoint for s in self.db.list_push_subscriptions())

    async def test_gone_subscription_is_pruned(self):
        feed = RecordingFeed()
        notifier = Notifier(feed, self.db, self.sender)
        saved_at = datetime(2025, 1, 6, 8, 30, tzinfo=timezone.utc)

        await notifier.notify("attendance:saved", {"savedAt": saved_at}, self.message)

        self.assertEqual(feed.published[0][0], "attendance:saved")
        self.assertIsInstance(feed.published[0][1]["savedAt"], str)
        self.assertEqual([e for e, _ in self.sender.sent], ["https://push/ok"])
        self.assertEqual(self.sender.sent[0][1]["title"], "New attendance saved")
        self.assertEqual(self._endpoints(), ["https://push/broken", "https://push/ok"])

        self.sender.sent.clear()
        await notifier.notify("attendance:saved", {}, self.message)
        self.assertEqual([e for e, _ in self.sender.sent], ["https://push/ok"])
        self.assertEqual(self._endpoints(), ["https://push/broken", "https://push/ok"])

    async def test_feed_failure_does_not_block_push(self):
        notifier = Notifier(RecordingFeed(fail=True), self.db, self.sender)
        with self.assertLogs("bhss.notifications", level="ERROR"):
            await notifier.notify("delivery:saved", {}, self.message)
        self.assertEqual(len(self.sender.sent), 1)

    async def test_live_only_events_skip_push(self):
        feed = RecordingFeed()
        notifier = Notifier(feed, self.db, self.sender)
        await notifier.notify("file-submission:uploaded", {"filesCount": 2})
        self.assertEqual(feed.published, [("file-submission:uploaded", {"filesCount": 2})])
        self.assertEqual(self.sender.sent, [])

    async def test_without_sender_push_is_skipped(self):
        feed = RecordingFeed()
        notifier = Notifier(feed, self.db, sender=None)
        await notifier.notify("announcement:created", {"id": "a1"}, self.message)
        self.assertEqual(len(feed.published), 1)
        self.assertEqual(len(self._endpoints()), 3)

    async def test_broadcasts_to_live_listeners(self):
        feed = InMemoryLiveFeed()
        notifier = Notifier(feed, self.db)
        async with feed.subscribe() as messages:
            await notifier.notify("event:created", {"event": {"id": "e1"}})
            message = await messages.__anext__()
        self.assertEqual(message, {"event": "event:created", "data": {"event": {"id": "e1"}}})


if __name__ == "__main__":
    unittest.main()
