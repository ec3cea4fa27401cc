"""
Scheduled events. Admins create, edit and cancel; users browse a window.
"""

from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from starlette.concurrency import run_in_threadpool

from bhss.auth import CurrentUser, require_admin, require_user
from bhss.db import DbClient
from bhss.dependencies import get_db_client, get_notifier, get_storage_client
from bhss.errors import not_found, validation_error
from bhss.notifications import Notifier, PushMessage
from bhss.routes.common import is_valid_date_key
from bhss.schemas import EventCancelRequest, EventOut, EventResponse, EventsResponse
from bhss.storage import StorageClient
from bhss.tables import utcnow
from bhss.uploads import MIB, discard_stored, read_uploads, store_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])
admin_router = APIRouter(prefix="/admin/events", tags=["admin"])

EVENT_FOLDER = "events"
SCHEDULED = "Scheduled"
CANCELLED = "Cancelled"
TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
MAX_TITLE_LENGTH = 120
MAX_DESCRIPTION_LENGTH = 2000
MAX_CANCEL_REASON_LENGTH = 500


def _check_schedule(
    title: str, description: str, date_key: str, start_time: str, end_time: str
) -> None:
    if not title:
        raise validation_error("title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise validation_error(f"title must be at most {MAX_TITLE_LENGTH} characters")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise validation_error(
            f"description must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )
    if not is_valid_date_key(date_key):
        raise validation_error("dateKey must be yyyy-MM-dd")
    if not TIME_RE.match(start_time):
        raise validation_error("startTime must be HH:mm")
    if not TIME_RE.match(end_time):
        raise validation_error("endTime must be HH:mm")
    # Zero-padded HH:mm compares correctly as text.
    if end_time <= start_time:
        raise validation_error("endTime must be after startTime")


async def _store_attachment(
    storage: StorageClient, attachment: Optional[UploadFile]
) -> Optional[dict]:
    uploads = await read_uploads(
        [attachment] if attachment else [],
        max_files=1,
        max_bytes=10 * MIB,
        too_many_message="Only one attachment is allowed.",
        too_large_message="Attachment is too large.",
    )
    if not uploads:
        return None
    upload, data = uploads[0]
    return await run_in_threadpool(store_upload, storage, EVENT_FOLDER, upload, data)


def _summary(row) -> dict:
    return {
        "id": row.id,
        "title": row.title,
        "dateKey": row.date_key,
        "startTime": row.start_time,
        "endTime": row.end_time,
        "status": row.status,
    }


def _push_body(row) -> str:
    return f"{row.title} • {row.date_key} • {row.start_time}–{row.end_time}"


@admin_router.get("", response_model=EventsResponse)
def admin_list_events(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    rows = db.list_events(date_from=date_from, date_to=date_to, limit=2000)
    return EventsResponse(events=[EventOut.model_validate(r) for r in rows])


@admin_router.post("", response_model=EventResponse, status_code=201)
async def create_event(
    background_tasks: BackgroundTasks,
    title: str = Form(""),
    description: str = Form(""),
    date_key: str = Form("", alias="dateKey"),
    start_time: str = Form("", alias="startTime"),
    end_time: str = Form("", alias="endTime"),
    attachment: Optional[UploadFile] = File(None),
    current: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    notifier: Notifier = Depends(get_notifier),
):
    title, description = title.strip(), description.strip()
    date_key = date_key.strip()
    start_time, end_time = start_time.strip(), end_time.strip()
    _check_schedule(title, description, date_key, start_time, end_time)

    stored = await _store_attachment(storage, attachment)
    try:
        row = await run_in_threadpool(
            lambda: db.create_event(
                title=title,
                description=description,
                date_key=date_key,
                start_time=start_time,
                end_time=end_time,
                status=SCHEDULED,
                attachment=stored,
                created_by=current.id,
            )
        )
    except Exception:
        await run_in_threadpool(discard_stored, storage, [stored] if stored else [])
        raise
    logger.info("Event %s scheduled for %s", row.id, row.date_key)

    background_tasks.add_task(
        notifier.notify,
        "event:created",
        {"event": _summary(row)},
        PushMessage(
            title="New event scheduled",
            body=_push_body(row),
            url="/users/announcements",
            tag=f"event-{row.id}",
        ),
    )
    return EventResponse(event=EventOut.model_validate(row))


@admin_router.put("/{event_id}", response_model=EventResponse)
async def update_event(
    event_id: str,
    title: str = Form(""),
    description: str = Form(""),
    date_key: str = Form("", alias="dateKey"),
    start_time: str = Form("", alias="startTime"),
    end_time: str = Form("", alias="endTime"),
    attachment: Optional[UploadFile] = File(None),
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    """Blank fields keep their stored values."""
    existing = await run_in_threadpool(db.get_event, event_id.strip())
    if not existing:
        raise not_found("Event not found")
    if existing.status == CANCELLED:
        raise validation_error("Cancelled events cannot be edited")

    changes = {
        "title": (title or existing.title or "").strip(),
        "description": (description or existing.description or "").strip(),
        "date_key": (date_key or existing.date_key or "").strip(),
        "start_time": (start_time or existing.start_time or "").strip(),
        "end_time": (end_time or existing.end_time or "").strip(),
    }
    _check_schedule(
        changes["title"],
        changes["description"],
        changes["date_key"],
        changes["start_time"],
        changes["end_time"],
    )
    stored = await _store_attachment(storage, attachment)
    if stored:
        changes["attachment"] = stored

    try:
        row = await run_in_threadpool(db.update_event, existing.id, changes)
        if not row:
            raise not_found("Event not found")
    except Exception:
        await run_in_threadpool(discard_stored, storage, [stored] if stored else [])
        raise
    return EventResponse(event=EventOut.model_validate(row))


@admin_router.post("/{event_id}/cancel", response_model=EventResponse)
def cancel_event(
    event_id: str,
    payload: EventCancelRequest,
    background_tasks: BackgroundTasks,
    current: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
):
    reason = payload.reason.strip()
    if not reason:
        raise validation_error("Cancellation reason is required")
    if len(reason) > MAX_CANCEL_REASON_LENGTH:
        raise validation_error(
            f"reason must be at most {MAX_CANCEL_REASON_LENGTH} characters"
        )
    existing = db.get_event(event_id.strip())
    if not existing:
        raise not_found("Event not found")
    if existing.status == CANCELLED:
        raise validation_error("Event is already cancelled")

    row = db.update_event(
        existing.id,
        {
            "status": CANCELLED,
            "cancel_reason": reason,
            "cancelled_at": utcnow(),
            "cancelled_by": current.id,
        },
    )
    logger.info("Event %s cancelled by %s", row.id, current.id)

    background_tasks.add_task(
        notifier.notify,
        "event:cancelled",
        {
            "event": {
                **_summary(row),
                "cancelReason": row.cancel_reason,
                "cancelledAt": row.cancelled_at,
            }
        },
        PushMessage(
            title="Event cancelled",
            body=f"{_push_body(row)} • {reason}",
            url="/users/announcements",
            tag=f"event-{row.id}-cancelled",
        ),
    )
    return EventResponse(event=EventOut.model_validate(row))


@router.get("", response_model=EventsResponse)
def list_events(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    _: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    """Defaults to thirty days back through ninety days ahead."""
    today = date.today()
    date_from = (date_from or "").strip()
    date_to = (date_to or "").strip()
    if not is_valid_date_key(date_from):
        date_from = (today - timedelta(days=30)).isoformat()
    if not is_valid_date_key(date_to):
        date_to = (today + timedelta(days=90)).isoformat()
    rows = db.list_events(date_from=date_from, date_to=date_to, limit=200)
    return EventsResponse(events=[EventOut.model_validate(r) for r in rows])


@router.get("/{event_id}", response_model=EventResponse)
def get_event(
    event_id: str,
    _: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    row = db.get_event(event_id.strip())
    if not row:
        raise not_found("Event not found")
    return EventResponse(event=EventOut.model_validate(row))
