"""
Serves stored uploads at ``/uploads/<folder>/<name>``.
"""

from __future__ import annotations

import mimetypes

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from bhss.dependencies import get_storage_client
from bhss.errors import not_found
from bhss.storage import StorageClient

router = APIRouter(tags=["uploads"])


@router.get("/uploads/{key:path}")
def get_upload(key: str, storage: StorageClient = Depends(get_storage_client)):
    try:
        data = storage.get_bytes(key)
    except FileNotFoundError:
        raise not_found("File not found") from None
    media_type, _ = mimetypes.guess_type(key)
    return Response(
        content=data,
        media_type=media_type or "application/octet-stream",
        headers={"Cache-Control": "public, max-age=86400"},
    )
