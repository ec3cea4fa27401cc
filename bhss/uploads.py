"""
Helpers for multipart uploads: limits, safe names and storage keys.
"""

from __future__ import annotations

import logging
import os
import random
import re
import time
from typing import Optional, Sequence

from fastapi import UploadFile

from bhss.errors import validation_error
from bhss.storage import StorageClient

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads/"
MIB = 1024 * 1024


def safe_filename(original: Optional[str], fallback: str = "file") -> str:
    """``<sanitized-base>-<epoch-ms>-<random><ext>``"""
    cleaned = re.sub(r"\s+", "-", str(original or ""))
    cleaned = re.sub(r"[^a-zA-Z0-9_.-]", "", cleaned)[:80]
    base, ext = os.path.splitext(cleaned)
    base = base or fallback
    unique = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return f"{base}-{unique}{ext}"


def public_url(key: str) -> str:
    return f"{PUBLIC_PREFIX}{key}"


def key_from_url(url: Optional[str]) -> Optional[str]:
    if not url or not url.startswith(PUBLIC_PREFIX):
        return None
    return url[len(PUBLIC_PREFIX) :]


async def read_uploads(
    files: Optional[Sequence[UploadFile]],
    *,
    max_files: int,
    max_bytes: int,
    too_many_message: str,
    too_large_message: str,
) -> list[tuple[UploadFile, bytes]]:
    """Read every part into memory, rejecting the request past the limits."""
    files = [f for f in (files or []) if f is not None and f.filename]
    if len(files) > max_files:
        raise validation_error(too_many_message)
    contents = []
    for upload in files:
        data = await upload.read(max_bytes + 1)
        if len(data) > max_bytes:
            raise validation_error(too_large_message)
        contents.append((upload, data))
    return contents


def store_upload(
    storage: StorageClient,
    folder: str,
    upload: UploadFile,
    data: bytes,
    fallback: str = "file",
) -> dict:
    filename = safe_filename(upload.filename, fallback)
    key = f"{folder}/{filename}"
    mime_type = upload.content_type or "application/octet-stream"
    storage.put_bytes(key, data, mime_type)
    return {
        "filename": filename,
        "originalName": upload.filename or filename,
        "mimeType": mime_type,
        "size": len(data),
        "url": public_url(key),
    }


def remove_stored(storage: StorageClient, key: Optional[str]) -> None:
    if not key:
        return
    try:
        storage.delete(key)
    except Exception:
        logger.warning("Could not remove stored upload %s", key, exc_info=True)


def discard_stored(storage: StorageClient, stored: Sequence[dict]) -> None:
    """Remove files saved by ``store_upload`` whose record was never written."""
    for item in stored:
        remove_stored(storage, key_from_url(item.get("url")))
