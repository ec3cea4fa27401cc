"""
Admin endpoints for water, rice and LPG distribution batches.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response

from bhss.auth import CurrentUser, require_admin
from bhss.db import DbClient
from bhss.dependencies import get_db_client
from bhss.distribution import (
    METRIC_FIELDS,
    BatchValidationError,
    DistributionKind,
    normalize_number,
    submit_batch,
)
from bhss.errors import not_found, validation_error
from bhss.schemas import (
    BatchDetailResponse,
    BatchListResponse,
    BatchSubmissionResponse,
    BatchUploadRequest,
    DistributionBatchOut,
    DistributionRowOut,
    DistributionRowResponse,
    MessageResponse,
    RowPatchRequest,
)
from bhss.tables import DistributionRowRow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/distribution/{kind}", tags=["admin", "distribution"])


def row_out(row: DistributionRowRow) -> DistributionRowOut:
    return DistributionRowOut(
        id=row.id,
        batch_id=row.batch_id,
        municipality=row.municipality,
        bhss_kitchen_name=row.bhss_kitchen_name,
        school_name=row.school_name,
        created_at=row.created_at,
        updated_at=row.updated_at,
        **(row.metrics or {}),
    )


def _detail(db: DbClient, batch) -> BatchDetailResponse:
    if batch is None:
        return BatchDetailResponse(batch=None, rows=[])
    return BatchDetailResponse(
        batch=DistributionBatchOut.model_validate(batch),
        rows=[row_out(r) for r in db.list_batch_rows(batch.id)],
    )


@router.get("/batches", response_model=BatchListResponse)
def list_batches(
    kind: DistributionKind,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return BatchListResponse(
        batches=[
            DistributionBatchOut.model_validate(b)
            for b in db.list_batches(kind.value, limit=200)
        ]
    )


@router.get("/latest", response_model=BatchDetailResponse)
def latest_batch(
    kind: DistributionKind,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return _detail(db, db.get_latest_batch(kind.value))


@router.get("/batches/{batch_id}", response_model=BatchDetailResponse)
def get_batch(
    kind: DistributionKind,
    batch_id: str,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    batch = db.get_batch(kind.value, batch_id)
    if not batch:
        raise not_found("Batch not found")
    return _detail(db, batch)


@router.post("/batches", response_model=BatchSubmissionResponse, status_code=201)
def upload_batch(
    kind: DistributionKind,
    payload: BatchUploadRequest,
    response: Response,
    current: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    """201 for a new batch, 200 when identical content was already stored."""
    try:
        result = submit_batch(
            db,
            kind,
            items=payload.items or [],
            bhss_kitchen_name=payload.bhss_kitchen_name,
            sheet_name=payload.sheet_name,
            source_file_name=payload.source_file_name,
            uploaded_by_user_id=current.id,
        )
    except BatchValidationError as exc:
        raise validation_error(str(exc)) from exc

    if result.unchanged:
        response.status_code = 200
        logger.info("Skipped unchanged %s batch %s", kind.value, result.batch.id)
    return BatchSubmissionResponse(
        unchanged=result.unchanged,
        batch=DistributionBatchOut.model_validate(result.batch),
    )


@router.delete("/batches/{batch_id}", response_model=MessageResponse)
def delete_batch(
    kind: DistributionKind,
    batch_id: str,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not db.delete_batch(kind.value, batch_id):
        raise not_found("Batch not found")
    logger.info("Deleted %s batch %s", kind.value, batch_id)
    return MessageResponse(message="Deleted")


@router.patch("/rows/{row_id}", response_model=DistributionRowResponse)
def patch_row(
    kind: DistributionKind,
    row_id: str,
    payload: RowPatchRequest,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    field = payload.field.strip()
    if field not in METRIC_FIELDS[kind]:
        raise validation_error("Invalid field")
    row = db.update_row_metric(kind.value, row_id, field, normalize_number(payload.value))
    if not row:
        raise not_found("Row not found")
    return DistributionRowResponse(row=row_out(row))
