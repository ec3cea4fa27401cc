"""
Announcements: admins post, every signed-in user reads.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile
from starlette.concurrency import run_in_threadpool

from bhss.auth import CurrentUser, require_admin, require_user
from bhss.db import DbClient
from bhss.dependencies import get_db_client, get_notifier, get_storage_client
from bhss.errors import not_found, validation_error
from bhss.notifications import Notifier, PushMessage
from bhss.routes.common import epoch_ms
from bhss.schemas import AnnouncementOut, AnnouncementResponse, AnnouncementsResponse
from bhss.storage import StorageClient
from bhss.uploads import MIB, discard_stored, read_uploads, store_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/announcements", tags=["announcements"])
admin_router = APIRouter(prefix="/admin/announcements", tags=["admin"])

ANNOUNCEMENT_FOLDER = "announcements"
PRIORITIES = ("Normal", "Important", "Urgent")
AUDIENCES = ("All", "Users")
MAX_TITLE_LENGTH = 160
MAX_MESSAGE_LENGTH = 5000


@admin_router.post("", response_model=AnnouncementResponse, status_code=201)
async def create_announcement(
    background_tasks: BackgroundTasks,
    title: str = Form(""),
    message: str = Form(""),
    priority: str = Form("Normal"),
    audience: str = Form("All"),
    attachments: Optional[list[UploadFile]] = File(None),
    current: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    notifier: Notifier = Depends(get_notifier),
):
    title, message = title.strip(), message.strip()
    if not title:
        raise validation_error("title is required")
    if not message:
        raise validation_error("message is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise validation_error(f"title must be at most {MAX_TITLE_LENGTH} characters")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise validation_error(
            f"message must be at most {MAX_MESSAGE_LENGTH} characters"
        )
    priority = priority.strip()
    audience = audience.strip()

    uploads = await read_uploads(
        attachments,
        max_files=6,
        max_bytes=10 * MIB,
        too_many_message="You can only attach up to 6 files.",
        too_large_message="One of the attachments is too large.",
    )
    stored = [
        await run_in_threadpool(store_upload, storage, ANNOUNCEMENT_FOLDER, upload, data)
        for upload, data in uploads
    ]

    try:
        row = await run_in_threadpool(
            lambda: db.create_announcement(
                title=title,
                message=message,
                priority=priority if priority in PRIORITIES else "Normal",
                audience=audience if audience in AUDIENCES else "All",
                attachments=stored,
                created_by=current.id,
            )
        )
    except Exception:
        await run_in_threadpool(discard_stored, storage, stored)
        raise
    logger.info("Announcement %s created by %s", row.id, current.id)

    background_tasks.add_task(
        notifier.notify,
        "announcement:created",
        {
            "announcement": {
                "id": row.id,
                "title": row.title,
                "priority": row.priority,
                "audience": row.audience,
                "createdAt": epoch_ms(row.created_at),
            }
        },
        PushMessage(
            title="New announcement",
            body=row.title,
            url="/users/announcements",
            tag=f"announcement-{row.id}",
        ),
    )
    return AnnouncementResponse(announcement=AnnouncementOut.model_validate(row))


@router.get("", response_model=AnnouncementsResponse)
def list_announcements(
    _: CurrentUser = Depends(require_user), db: DbClient = Depends(get_db_client)
):
    return AnnouncementsResponse(
        announcements=[
            AnnouncementOut.model_validate(a) for a in db.list_announcements(limit=200)
        ]
    )


@router.get("/{announcement_id}", response_model=AnnouncementResponse)
def get_announcement(
    announcement_id: str,
    _: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    row = db.get_announcement(announcement_id.strip())
    if not row:
        raise not_found("Announcement not found")
    return AnnouncementResponse(announcement=AnnouncementOut.model_validate(row))
