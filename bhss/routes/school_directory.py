"""
School directory: beneficiary counts and school contact details per
municipality and school year. Admin only.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from bhss.auth import require_admin
from bhss.db import DbClient
from bhss.dependencies import get_db_client
from bhss.errors import not_found, validation_error
from bhss.schemas import (
    BeneficiaryBulkRequest,
    BeneficiaryRowResponse,
    BeneficiaryRowsResponse,
    BeneficiaryUpdateRequest,
    MessageResponse,
    SchoolBeneficiaryOut,
    SchoolDetailsCreateRequest,
    SchoolDetailsOut,
    SchoolDetailsRowResponse,
    SchoolDetailsRowsResponse,
    SchoolDetailsUpdateRequest,
)

router = APIRouter(
    prefix="/school-directory",
    tags=["school-directory"],
    dependencies=[Depends(require_admin)],
)


def _scope(municipality: Optional[str], school_year: Optional[str]) -> tuple[str, str]:
    municipality = (municipality or "").strip()
    school_year = (school_year or "").strip()
    if not municipality or not school_year:
        raise validation_error("municipality and schoolYear are required")
    return municipality, school_year


# Beneficiaries


@router.get("/beneficiaries", response_model=BeneficiaryRowsResponse)
def list_beneficiaries(
    municipality: Optional[str] = None,
    school_year: Optional[str] = Query(None, alias="schoolYear"),
    db: DbClient = Depends(get_db_client),
):
    municipality, school_year = _scope(municipality, school_year)
    return BeneficiaryRowsResponse(
        rows=[
            SchoolBeneficiaryOut.model_validate(r)
            for r in db.list_beneficiaries(municipality, school_year)
        ]
    )


@router.post("/beneficiaries/bulk", response_model=BeneficiaryRowsResponse, status_code=201)
def create_beneficiaries(
    payload: BeneficiaryBulkRequest,
    db: DbClient = Depends(get_db_client),
):
    municipality, school_year = _scope(payload.municipality, payload.school_year)
    if not payload.items:
        raise validation_error("items is required")
    if any(not i.bhss_kitchen_name or not i.school_name for i in payload.items):
        raise validation_error("Each item requires bhssKitchenName and schoolName")

    rows = db.create_beneficiaries(
        [
            {"municipality": municipality, "school_year": school_year, **i.model_dump()}
            for i in payload.items
        ]
    )
    return BeneficiaryRowsResponse(
        rows=[SchoolBeneficiaryOut.model_validate(r) for r in rows]
    )


@router.patch("/beneficiaries/{row_id}", response_model=BeneficiaryRowResponse)
def update_beneficiary(
    row_id: str,
    payload: BeneficiaryUpdateRequest,
    db: DbClient = Depends(get_db_client),
):
    row = db.update_beneficiary(row_id, payload.model_dump(exclude_none=True))
    if not row:
        raise not_found("Row not found")
    return BeneficiaryRowResponse(row=SchoolBeneficiaryOut.model_validate(row))


@router.delete("/beneficiaries/{row_id}", response_model=MessageResponse)
def delete_beneficiary(row_id: str, db: DbClient = Depends(get_db_client)):
    if not db.delete_beneficiary(row_id):
        raise not_found("Row not found")
    return MessageResponse(message="Deleted")


# School details


@router.get("/details", response_model=SchoolDetailsRowsResponse)
def list_school_details(
    municipality: Optional[str] = None,
    school_year: Optional[str] = Query(None, alias="schoolYear"),
    db: DbClient = Depends(get_db_client),
):
    municipality, school_year = _scope(municipality, school_year)
    return SchoolDetailsRowsResponse(
        rows=[
            SchoolDetailsOut.model_validate(r)
            for r in db.list_school_details(municipality, school_year)
        ]
    )


@router.post("/details", response_model=SchoolDetailsRowResponse, status_code=201)
def create_school_details(
    payload: SchoolDetailsCreateRequest,
    db: DbClient = Depends(get_db_client),
):
    _scope(payload.municipality, payload.school_year)
    if not payload.complete_name:
        raise validation_error("completeName is required")
    row = db.create_school_details(**payload.model_dump())
    return SchoolDetailsRowResponse(row=SchoolDetailsOut.model_validate(row))


@router.patch("/details/{row_id}", response_model=SchoolDetailsRowResponse)
def update_school_details(
    row_id: str,
    payload: SchoolDetailsUpdateRequest,
    db: DbClient = Depends(get_db_client),
):
    changes = payload.model_dump(exclude_none=True)
    if "complete_name" in changes and not changes["complete_name"]:
        raise validation_error("completeName is required")
    row = db.update_school_details(row_id, changes)
    if not row:
        raise not_found("Row not found")
    return SchoolDetailsRowResponse(row=SchoolDetailsOut.model_validate(row))


@router.delete("/details/{row_id}", response_model=MessageResponse)
def delete_school_details(row_id: str, db: DbClient = Depends(get_db_client)):
    if not db.delete_school_details(row_id):
        raise not_found("Row not found")
    return MessageResponse(message="Deleted")
