"""
Attendance records: one per (user, date, grade), saved by upsert.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from bhss.auth import CurrentUser, require_admin, require_user
from bhss.db import DbClient
from bhss.dependencies import get_db_client, get_notifier
from bhss.errors import validation_error
from bhss.notifications import Notifier, PushMessage
from bhss.routes.common import oldest_first, user_summary
from bhss.schemas import (
    AttendanceBulkRequest,
    AttendanceHistoryItem,
    AttendanceHistoryResponse,
    AttendanceRecordOut,
    AttendanceRecordResponse,
    AttendanceRecordsResponse,
    AttendanceSaveRequest,
)

router = APIRouter(prefix="/attendance", tags=["attendance"])
admin_router = APIRouter(prefix="/admin/attendance", tags=["admin"])


@router.post("/record", response_model=AttendanceRecordResponse)
def save_record(
    payload: AttendanceSaveRequest,
    background_tasks: BackgroundTasks,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
):
    row = db.save_attendance_record(
        user_id=current.id,
        date_key=payload.date_key,
        grade=payload.grade,
        present=payload.present,
        absent=payload.absent,
        notes=payload.notes,
    )
    record = AttendanceRecordOut.model_validate(row)
    user = db.get_user(current.id)
    school = user.school if user else ""

    background_tasks.add_task(
        notifier.notify,
        "attendance:saved",
        {
            "record": record.model_dump(by_alias=True),
            "user": user_summary(user, current.id),
        },
        PushMessage(
            title="New attendance saved",
            body=f"{school or '(school)'} • {row.grade or '(grade)'} • {row.date_key}",
            url=f"/admin/attendance?date={row.date_key}",
        ),
    )
    return AttendanceRecordResponse(record=record)


@router.post("/record/bulk", response_model=AttendanceRecordsResponse)
def save_records(
    payload: AttendanceBulkRequest,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    date_key = payload.date_key.strip()
    if not date_key:
        raise validation_error("dateKey is required")
    if payload.entries is None:
        raise validation_error("entries must be an array")

    entries = [e for e in payload.entries if e.has_content()]
    if not entries:
        raise validation_error("No valid entries to save")

    rows = db.save_attendance_records(
        user_id=current.id,
        date_key=date_key,
        entries=[e.model_dump() for e in entries],
    )
    return AttendanceRecordsResponse(
        records=[AttendanceRecordOut.model_validate(r) for r in rows]
    )


@router.get("/by-date/{date_key}", response_model=AttendanceRecordResponse)
def get_record(
    date_key: str,
    grade: Optional[str] = None,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    row = db.get_attendance_record(current.id, date_key.strip(), (grade or "").strip())
    return AttendanceRecordResponse(
        record=AttendanceRecordOut.model_validate(row) if row else None
    )


@router.get("/by-date/{date_key}/all", response_model=AttendanceRecordsResponse)
def list_records_for_date(
    date_key: str,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    rows = db.list_attendance_for_date(current.id, date_key.strip())
    return AttendanceRecordsResponse(
        records=[AttendanceRecordOut.model_validate(r) for r in rows]
    )


def _history(rows) -> AttendanceHistoryResponse:
    records = []
    for row, user in rows:
        item = AttendanceHistoryItem.model_validate(row)
        if user:
            item.municipality = user.municipality or ""
            item.school = user.school or ""
            item.user_name = user.name or ""
        records.append(item)
    return AttendanceHistoryResponse(records=records)


@router.get("/history", response_model=AttendanceHistoryResponse)
def history(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    search: Optional[str] = None,
    sort: Optional[str] = None,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    return _history(
        db.list_attendance_history(
            user_id=current.id,
            date_from=(date_from or "").strip(),
            date_to=(date_to or "").strip(),
            search=(search or "").strip(),
            oldest_first=oldest_first(sort),
            limit=1000,
        )
    )


@admin_router.get("/history", response_model=AttendanceHistoryResponse)
def admin_history(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    search: Optional[str] = None,
    sort: Optional[str] = None,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return _history(
        db.list_attendance_history(
            date_from=(date_from or "").strip(),
            date_to=(date_to or "").strip(),
            search=(search or "").strip(),
            oldest_first=oldest_first(sort),
            limit=5000,
        )
    )
