"""
Coordinator file submissions sorted into fixed folders.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from starlette.concurrency import run_in_threadpool

from bhss.auth import CurrentUser, require_admin, require_user
from bhss.db import DbClient
from bhss.delivery import parse_optional_datetime
from bhss.dependencies import get_db_client, get_notifier, get_storage_client
from bhss.errors import not_found, validation_error
from bhss.notifications import Notifier
from bhss.routes.common import attachment_response, day_range, day_start
from bhss.schemas import (
    CoordinatorOut,
    FileSubmissionHistoryItem,
    FileSubmissionHistoryResponse,
    FileSubmissionOut,
    FileSubmissionsResponse,
    FileUploadResponse,
    FolderCountsResponse,
    MessageResponse,
)
from bhss.storage import StorageClient
from bhss.tables import FileSubmissionRow, utcnow
from bhss.uploads import MIB, public_url, read_uploads, remove_stored, safe_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/file-submissions", tags=["file-submissions"])
admin_router = APIRouter(prefix="/admin/file-submissions", tags=["admin"])

SUBMISSION_FOLDER = "file-submissions"
FRUITS_VEG_FOLDER = "Fruits & Vegetables"
LEGACY_FRUITS_VEG_FOLDERS = ("Fruits", "Vegetables")
FOLDERS = (
    FRUITS_VEG_FOLDER,
    "Meat",
    "NutriBun",
    "Patties",
    "Groceries",
    "Consumables",
    "Water",
    "LPG",
    "Rice",
    "COA",
    "Others",
)
UNRESTRICTED_FOLDER = "COA"
IMAGE_TYPES = ("image/jpeg", "image/png")
COORDINATOR_ROLE = "HLA Coordinator"


def normalize_folder(folder: Optional[str]) -> str:
    raw = str(folder or "")
    if raw in LEGACY_FRUITS_VEG_FOLDERS:
        return FRUITS_VEG_FOLDER
    return raw


def _file_out(row: FileSubmissionRow) -> dict:
    return {
        "id": row.id,
        "name": row.original_name,
        "size": row.file_size,
        "type": row.mime_type,
        "description": row.description or "",
        "uploaded_at": row.upload_date,
        "status": row.status,
        "folder": normalize_folder(row.folder),
        "url": public_url(row.storage_key),
    }


def _download(storage: StorageClient, row: Optional[FileSubmissionRow]):
    if not row:
        raise not_found("File not found")
    try:
        data = storage.get_bytes(row.storage_key)
    except FileNotFoundError:
        raise not_found("File not found on server") from None
    return attachment_response(data, row.original_name, row.mime_type)


@router.get("", response_model=FileSubmissionsResponse)
def list_files(
    folder: Optional[str] = None,
    date: Optional[str] = None,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    folders = None
    if folder:
        folders = [folder]
        if folder == FRUITS_VEG_FOLDER:
            folders += list(LEGACY_FRUITS_VEG_FOLDERS)
    start, end = day_range(date) or (None, None)
    rows = db.list_file_submissions(current.id, folders=folders, start=start, end=end)
    return FileSubmissionsResponse(
        files=[FileSubmissionOut(**_file_out(r)) for r in rows]
    )


@router.post("/upload", response_model=FileUploadResponse)
async def upload_files(
    background_tasks: BackgroundTasks,
    folder: str = Form(""),
    description: str = Form(""),
    upload_date: str = Form("", alias="uploadDate"),
    files: Optional[list[UploadFile]] = File(None),
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    notifier: Notifier = Depends(get_notifier),
):
    uploads = await read_uploads(
        files,
        max_files=15,
        max_bytes=10 * MIB,
        too_many_message="You can only upload up to 15 files.",
        too_large_message="One of the files is too large.",
    )
    if not uploads:
        raise validation_error("No files uploaded")
    if not folder:
        raise validation_error("Folder is required")
    folder = normalize_folder(folder)
    if folder not in FOLDERS:
        raise validation_error("Invalid folder")
    if folder != UNRESTRICTED_FOLDER and any(
        upload.content_type not in IMAGE_TYPES for upload, _ in uploads
    ):
        raise validation_error("Invalid file type. Only JPEG/PNG images are allowed.")

    uploaded_at = parse_optional_datetime(upload_date) or utcnow()
    records = []
    for upload, data in uploads:
        key = f"{SUBMISSION_FOLDER}/{safe_filename(upload.filename)}"
        mime_type = upload.content_type or "application/octet-stream"
        await run_in_threadpool(storage.put_bytes, key, data, mime_type)
        records.append(
            {
                "user_id": current.id,
                "folder": folder,
                "file_name": key.rsplit("/", 1)[-1],
                "original_name": upload.filename,
                "file_size": len(data),
                "mime_type": mime_type,
                "storage_key": key,
                "description": description or "",
                "upload_date": uploaded_at,
                "status": "uploaded",
            }
        )
    rows = await run_in_threadpool(db.create_file_submissions, records)
    user = await run_in_threadpool(db.get_user, current.id)
    logger.info("User %s uploaded %d file(s) to %s", current.id, len(rows), folder)

    background_tasks.add_task(
        notifier.notify,
        "file-submission:uploaded",
        {
            "submission": {
                "userId": current.id,
                "folder": folder,
                "filesCount": len(rows),
                "uploadedAt": uploaded_at,
                "firstFileName": rows[0].original_name,
            },
            "user": {
                "id": current.id,
                "name": (user.name if user else "") or "",
                "username": (user.username if user else "") or "",
                "school": (user.school if user else "") or "",
                "municipality": (user.municipality if user else "") or "",
                "hlaRoleType": (user.hla_role_type if user else "") or "",
            },
        },
    )
    return FileUploadResponse(
        message=f"{len(rows)} file(s) uploaded successfully",
        files=[FileSubmissionOut(**_file_out(r)) for r in rows],
    )


@router.delete("/{file_id}", response_model=MessageResponse)
def delete_file(
    file_id: str,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    row = db.get_file_submission(file_id, user_id=current.id)
    if not row:
        raise not_found("File not found")
    remove_stored(storage, row.storage_key)
    db.delete_file_submission(row.id)
    return MessageResponse(message="File deleted successfully")


@router.get("/download/{file_id}")
def download_file(
    file_id: str,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    return _download(storage, db.get_file_submission(file_id, user_id=current.id))


@router.get("/stats/counts", response_model=FolderCountsResponse)
def folder_counts(
    date: Optional[str] = None,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    start, end = day_range(date) or (None, None)
    counts: dict[str, int] = {}
    for folder, count in db.count_file_submissions_by_folder(
        current.id, start=start, end=end
    ).items():
        key = normalize_folder(folder)
        counts[key] = counts.get(key, 0) + count
    return FolderCountsResponse(folder_counts=counts)


def history_range(date_from: Optional[str], date_to: Optional[str]):
    """
    Day range for the admin history. A lone bound selects that single day;
    the upper bound is exclusive.
    """
    start = day_start(date_from)
    to_range = day_range(date_to)
    if start and to_range:
        return start, to_range[1]
    if start:
        return day_range(date_from)
    if to_range:
        return to_range
    return None, None


@admin_router.get("/history", response_model=FileSubmissionHistoryResponse)
def admin_history(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    folder: Optional[str] = None,
    coordinator_id: Optional[str] = Query(None, alias="coordinatorId"),
    municipality: Optional[str] = None,
    school: Optional[str] = None,
    search: Optional[str] = None,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    start, end = history_range(date_from, date_to)
    rows = db.list_file_submission_history(
        hla_role_type=COORDINATOR_ROLE,
        folder=(folder or "").strip(),
        user_id=(coordinator_id or "").strip(),
        municipality=(municipality or "").strip(),
        school=(school or "").strip(),
        start=start,
        end=end,
        search=(search or "").strip(),
        limit=5000,
    )
    return FileSubmissionHistoryResponse(
        records=[
            FileSubmissionHistoryItem(
                **_file_out(row),
                coordinator=CoordinatorOut.model_validate(user),
            )
            for row, user in rows
        ]
    )


@admin_router.get("/download/{file_id}")
def admin_download_file(
    file_id: str,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    return _download(storage, db.get_file_submission(file_id))
