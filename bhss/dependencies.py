"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from bhss.config import get_settings
from bhss.db import IN_MEMORY_DATABASE_URL, DbClient
from bhss.live import InMemoryLiveFeed, LiveFeed, RedisLiveFeed
from bhss.notifications import Notifier, PushSender, WebPushSender
from bhss.storage import (
    CosStorageClient,
    InMemoryStorageClient,
    LocalStorageClient,
    StorageClient,
)

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_live_feed: LiveFeed | None = None
_notifier: Notifier | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client. Without DATABASE_URL the process runs on an
    in-memory SQLite database.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = DbClient(IN_MEMORY_DATABASE_URL)
    else:
        _db_client = DbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _storage_client = InMemoryStorageClient()
    elif settings.cos_bucket:
        _storage_client = CosStorageClient(
            bucket=settings.cos_bucket,
            region=settings.cos_region or "",
            endpoint=settings.cos_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    else:
        _storage_client = LocalStorageClient(settings.upload_dir)
    return _storage_client


def get_live_feed() -> LiveFeed:
    global _live_feed
    if _live_feed:
        return _live_feed

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _live_feed = RedisLiveFeed(url=settings.redis_url, channel=settings.redis_channel)
    else:
        _live_feed = InMemoryLiveFeed()
    return _live_feed


def get_push_sender() -> Optional[PushSender]:
    settings = get_settings()
    if not settings.push_enabled:
        return None
    return WebPushSender(
        private_key=settings.vapid_private_key, subject=settings.vapid_subject
    )


def get_notifier() -> Notifier:
    global _notifier
    if _notifier:
        return _notifier
    _notifier = Notifier(get_live_feed(), get_db_client(), get_push_sender())
    return _notifier
