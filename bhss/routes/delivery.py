"""
Delivery records: one per (user, date, category) with accumulating photos.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from starlette.concurrency import run_in_threadpool

from bhss.auth import CurrentUser, require_admin, require_user
from bhss.db import DbClient
from bhss.delivery import (
    DELIVERY_STATUSES,
    normalize_concerns,
    parse_flag,
    parse_optional_datetime,
)
from bhss.dependencies import get_db_client, get_notifier, get_storage_client
from bhss.errors import not_found, validation_error
from bhss.notifications import Notifier, PushMessage
from bhss.routes.common import oldest_first, user_summary
from bhss.schemas import (
    DeliveryDeleteRequest,
    DeliveryHistoryItem,
    DeliveryHistoryResponse,
    DeliveryRecordOut,
    DeliveryRecordResponse,
    DeliveryRecordsResponse,
    SuccessResponse,
)
from bhss.storage import StorageClient
from bhss.uploads import (
    MIB,
    discard_stored,
    key_from_url,
    read_uploads,
    remove_stored,
    store_upload,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/delivery", tags=["delivery"])
admin_router = APIRouter(prefix="/admin/delivery", tags=["admin"])

DELIVERY_FOLDER = "delivery"
MAX_IMAGES = 15
MAX_IMAGE_BYTES = 2 * MIB
HLA_COORDINATOR = "HLA Coordinator"
HLA_MANAGER = "HLA Manager"


@router.post("/item", response_model=DeliveryRecordResponse)
async def save_item(
    background_tasks: BackgroundTasks,
    date_key: str = Form("", alias="dateKey"),
    category_key: str = Form("", alias="categoryKey"),
    category_label: str = Form("", alias="categoryLabel"),
    status: str = Form("", alias="status"),
    status_reason: str = Form("", alias="statusReason"),
    status_updated_at: str = Form("", alias="statusUpdatedAt"),
    uploaded_at: str = Form("", alias="uploadedAt"),
    concerns: Optional[list[str]] = Form(None, alias="concerns"),
    remarks: str = Form("", alias="remarks"),
    replace_images: str = Form("", alias="replaceImages"),
    images: Optional[list[UploadFile]] = File(None, alias="images"),
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    notifier: Notifier = Depends(get_notifier),
):
    if not date_key or not category_key or not category_label:
        raise validation_error("dateKey, categoryKey, categoryLabel are required")
    status = status.strip() or "Pending"
    if status not in DELIVERY_STATUSES:
        raise validation_error(f"status must be one of {', '.join(DELIVERY_STATUSES)}")

    uploads = await read_uploads(
        images,
        max_files=MAX_IMAGES,
        max_bytes=MAX_IMAGE_BYTES,
        too_many_message="You can only upload up to 15 images.",
        too_large_message="One of the images is too large.",
    )
    new_images = [
        await run_in_threadpool(
            store_upload, storage, DELIVERY_FOLDER, upload, data, "image"
        )
        for upload, data in uploads
    ]

    try:
        row = await run_in_threadpool(
            lambda: db.save_delivery_record(
                user_id=current.id,
                date_key=date_key,
                category_key=category_key,
                fields={
                    "category_label": category_label,
                    "status": status,
                    "status_reason": status_reason,
                    "status_updated_at": parse_optional_datetime(status_updated_at),
                    "uploaded_at": parse_optional_datetime(uploaded_at),
                    "concerns": normalize_concerns(concerns),
                    "remarks": remarks,
                },
                new_images=new_images,
                replace_images=parse_flag(replace_images),
            )
        )
    except Exception:
        await run_in_threadpool(discard_stored, storage, new_images)
        raise
    logger.info(
        "Saved delivery %s/%s for user %s (%d new image(s))",
        date_key,
        category_key,
        current.id,
        len(new_images),
    )
    record = DeliveryRecordOut.model_validate(row)
    user = await run_in_threadpool(db.get_user, current.id)
    school = user.school if user else ""

    live_record = record.model_dump(by_alias=True)
    live_record["images"] = [
        {"url": img.url, "filename": img.filename} for img in record.images
    ]
    background_tasks.add_task(
        notifier.notify,
        "delivery:saved",
        {"record": live_record, "user": user_summary(user, current.id)},
        PushMessage(
            title="New delivery saved",
            body=f"{school or '(school)'} • {row.category_label or '(category)'} • {row.date_key}",
            url=f"/admin/delivery?date={row.date_key}",
        ),
    )
    return DeliveryRecordResponse(record=record)


@router.get("/history", response_model=DeliveryHistoryResponse)
def history(
    date_key: Optional[str] = Query(None, alias="dateKey"),
    search: Optional[str] = None,
    sort: Optional[str] = None,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    """
    Own records. HLA coordinators see the records of the HLA managers at
    their school instead.
    """
    me = db.get_user(current.id)
    user_ids = [current.id]
    school = (me.school or "").strip() if me else ""
    if me and (me.hla_role_type or "").strip() == HLA_COORDINATOR and school:
        managers = db.list_user_ids(school=school, hla_role_type=HLA_MANAGER)
        if managers:
            user_ids = managers

    rows = db.list_delivery_history(
        user_ids=user_ids,
        date_key=date_key,
        search=(search or "").strip(),
        oldest_first=oldest_first(sort),
        limit=1000,
    )
    manager_name = (me.hla_manager_name if me else "") or ""
    records = []
    for row, _ in rows:
        item = DeliveryHistoryItem.model_validate(row)
        item.hla_manager_name = manager_name
        records.append(item)
    return DeliveryHistoryResponse(records=records)


@router.get("/by-date/{date_key}", response_model=DeliveryRecordsResponse)
def list_for_date(
    date_key: str,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    rows = db.list_delivery_for_date(current.id, date_key)
    return DeliveryRecordsResponse(
        records=[DeliveryRecordOut.model_validate(r) for r in rows]
    )


@router.delete("/item", response_model=SuccessResponse)
def delete_item(
    payload: DeliveryDeleteRequest,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    if not payload.date_key or not payload.category_key:
        raise validation_error("dateKey and categoryKey are required")
    deleted = db.delete_delivery_record(
        current.id, payload.date_key, payload.category_key
    )
    if not deleted:
        raise not_found("Record not found")
    for image in deleted.images or []:
        remove_stored(storage, key_from_url(image.get("url")))
    return SuccessResponse()


@admin_router.get("/history", response_model=DeliveryHistoryResponse)
def admin_history(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    search: Optional[str] = None,
    sort: Optional[str] = None,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    rows = db.list_delivery_history(
        date_from=date_from,
        date_to=date_to,
        search=(search or "").strip(),
        oldest_first=oldest_first(sort),
        limit=5000,
    )
    records = []
    for row, user in rows:
        item = DeliveryHistoryItem.model_validate(row)
        if user:
            item.municipality = user.municipality or ""
            item.school = user.school or ""
        records.append(item)
    return DeliveryHistoryResponse(records=records)
