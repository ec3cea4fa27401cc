"""
Notification fan-out: live feed broadcast plus best-effort web push.

Nothing here is allowed to fail the save that triggered it. Subscriptions
whose push service answers 404/410 are pruned; every other failure is logged.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Protocol

from fastapi.encoders import jsonable_encoder
from pywebpush import WebPushException, webpush
from starlette.concurrency import run_in_threadpool

from bhss.live import LiveFeed

if TYPE_CHECKING:
    from bhss.db import DbClient
    from bhss.tables import PushSubscriptionRow

logger = logging.getLogger(__name__)


@dataclass
class PushMessage:
    title: str
    body: str
    url: str
    tag: Optional[str] = None

    def to_json(self) -> str:
        payload = {"title": self.title, "body": self.body, "url": self.url}
        if self.tag:
            payload["tag"] = self.tag
        return json.dumps(payload)


class PushSubscriptionGone(Exception):
    """The push service no longer knows this subscription."""


class PushSender(Protocol):
    def send(self, subscription_info: dict, payload: str) -> None:
        ...


@dataclass
class WebPushSender:
    """Delivers VAPID-signed notifications through pywebpush."""

    private_key: str
    subject: str
    ttl: int = 60

    def send(self, subscription_info: dict, payload: str) -> None:
        try:
            webpush(
                subscription_info=subscription_info,
                data=payload,
                vapid_private_key=self.private_key,
                # pywebpush mutates the claims dict.
                vapid_claims={"sub": self.subject},
                ttl=self.ttl,
            )
        except WebPushException as exc:
            status = getattr(exc.response, "status_code", None)
            if status in (404, 410):
                raise PushSubscriptionGone(status) from exc
            raise


class Notifier:
    def __init__(
        self,
        feed: LiveFeed,
        db: "DbClient",
        sender: Optional[PushSender] = None,
    ):
        self.feed = feed
        self.db = db
        self.sender = sender

    async def notify(
        self, event: str, payload: Any, push: Optional[PushMessage] = None
    ) -> None:
        data = jsonable_encoder(payload)
        try:
            await self.feed.publish(event, data)
        except Exception:
            logger.exception("Live feed publish failed for %s", event)

        if push is None:
            return
        if self.sender is None:
            logger.info("Push skipped for %s: VAPID keys are not configured", event)
            return

        try:
            subscriptions = await run_in_threadpool(self.db.list_push_subscriptions)
        except Exception:
            logger.exception("Could not load push subscriptions for %s", event)
            return
        if not subscriptions:
            logger.info("Push skipped for %s: no subscriptions", event)
            return

        body = push.to_json()
        await asyncio.gather(*(self._deliver(sub, body) for sub in subscriptions))

    async def _deliver(self, subscription: "PushSubscriptionRow", body: str) -> None:
        try:
            await run_in_threadpool(
                self.sender.send, subscription.subscription_info(), body
            )
        except PushSubscriptionGone:
            logger.info("Removing expired push subscription %s", subscription.id)
            try:
                await run_in_threadpool(
                    self.db.delete_push_subscription, subscription.endpoint
                )
            except Exception:
                logger.exception(
                    "Could not remove push subscription %s", subscription.id
                )
        except Exception:
            logger.exception("Push delivery failed for subscription %s", subscription.id)
