"""
User management: admin CRUD plus self-service profile, password and avatar.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from starlette.concurrency import run_in_threadpool

from bhss.auth import CurrentUser, hash_password, require_admin, require_user, verify_password
from bhss.db import DbClient
from bhss.dependencies import get_db_client, get_storage_client
from bhss.errors import conflict, forbidden, not_found, validation_error
from bhss.schemas import (
    PasswordChangeRequest,
    SuccessResponse,
    UserActiveRequest,
    UserCreateRequest,
    UserOut,
    UserResponse,
    UsersResponse,
    UserUpdateRequest,
)
from bhss.storage import StorageClient
from bhss.uploads import MIB, key_from_url, read_uploads, remove_stored, store_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

AVATAR_FOLDER = "avatars"
SELF_FIELDS = (
    "email",
    "username",
    "name",
    "contact_number",
    "school_address",
    "hla_manager_name",
    "hla_role_type",
    "avatar_url",
)
ADMIN_FIELDS = ("role", "school", "municipality", "province")


def _ensure_access(current: CurrentUser, user_id: str) -> None:
    if not current.is_admin and current.id != user_id:
        raise forbidden()


def _user_response(user) -> UserResponse:
    if user is None:
        raise not_found("User not found")
    return UserResponse(user=UserOut.model_validate(user))


@router.get("", response_model=UsersResponse)
def list_users(
    _: CurrentUser = Depends(require_admin), db: DbClient = Depends(get_db_client)
):
    return UsersResponse(users=[UserOut.model_validate(u) for u in db.list_users()])


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    payload: UserCreateRequest,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not (
        payload.username and payload.password and payload.school and payload.municipality
    ):
        raise validation_error("username, password, school, and municipality are required")

    username = payload.username.strip().lower()
    email = (payload.email or "").strip().lower() or None
    if db.find_user_by_username_or_email(username, email):
        raise conflict("Username or email already exists")

    user = db.create_user(
        username=username,
        email=email,
        password_hash=hash_password(payload.password),
        name=payload.name or username,
        role=payload.role or "user",
        school=payload.school.strip(),
        contact_number=(payload.contact_number or "").strip(),
        school_address=(payload.school_address or "").strip(),
        hla_manager_name=(payload.hla_manager_name or "").strip(),
        hla_role_type=(payload.hla_role_type or "").strip(),
        municipality=payload.municipality.strip(),
        province=(payload.province or "").strip() or "Bataan",
        is_active=True,
    )
    logger.info("Admin created user %s", user.id)
    return _user_response(user)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    _ensure_access(current, user_id)
    return _user_response(db.get_user(user_id))


@router.patch("/{user_id}/active", response_model=UserResponse)
def set_active(
    user_id: str,
    payload: UserActiveRequest,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if payload.is_active is None:
        raise validation_error("isActive must be boolean")
    return _user_response(db.update_user(user_id, {"is_active": payload.is_active}))


@router.patch("/{user_id}/password", response_model=UserResponse)
def change_password(
    user_id: str,
    payload: PasswordChangeRequest,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    if current.is_admin and payload.password is not None:
        if len(payload.password) < 6:
            raise validation_error("password must be at least 6 characters")
        return _user_response(
            db.update_user(user_id, {"password_hash": hash_password(payload.password)})
        )

    if current.id != user_id:
        raise forbidden()
    if not payload.current_password or not payload.new_password:
        raise validation_error("currentPassword and newPassword are required")
    if len(payload.new_password) < 6:
        raise validation_error("newPassword must be at least 6 characters")

    user = db.get_user(user_id)
    if not user:
        raise not_found("User not found")
    if not verify_password(payload.current_password, user.password_hash):
        raise validation_error("Current password is incorrect")
    return _user_response(
        db.update_user(user_id, {"password_hash": hash_password(payload.new_password)})
    )


@router.post("/{user_id}/avatar", response_model=UserResponse)
async def upload_avatar(
    user_id: str,
    avatar: Optional[UploadFile] = File(None),
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    _ensure_access(current, user_id)
    if avatar is None or not avatar.filename:
        raise validation_error("No file uploaded")
    if not (avatar.content_type or "").startswith("image/"):
        raise validation_error("Only image uploads are allowed")

    [(upload, data)] = await read_uploads(
        [avatar],
        max_files=1,
        max_bytes=5 * MIB,
        too_many_message="Only one avatar can be uploaded.",
        too_large_message="Avatar image is too large.",
    )
    stored = await run_in_threadpool(
        store_upload, storage, AVATAR_FOLDER, upload, data, "avatar"
    )
    updated = await run_in_threadpool(
        db.update_user, user_id, {"avatar_url": stored["url"]}
    )
    if updated is None:
        await run_in_threadpool(remove_stored, storage, key_from_url(stored["url"]))
    return _user_response(updated)


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    payload: UserUpdateRequest,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    _ensure_access(current, user_id)

    changes: dict = {}
    for name in SELF_FIELDS + (ADMIN_FIELDS if current.is_admin else ()):
        value = getattr(payload, name)
        if value is not None:
            changes[name] = value.strip()
    if current.is_admin and payload.is_active is not None:
        changes["is_active"] = payload.is_active
    if "email" in changes:
        changes["email"] = changes["email"].lower() or None
    if "username" in changes:
        if not changes["username"]:
            raise validation_error("username cannot be empty")
        changes["username"] = changes["username"].lower()
    if not changes:
        raise validation_error("No valid fields to update")

    if changes.get("email") or changes.get("username"):
        existing = db.find_user_by_username_or_email(
            changes.get("username") or "", changes.get("email")
        )
        if existing and existing.id != user_id:
            raise conflict("Username or email already exists")

    return _user_response(db.update_user(user_id, changes))


@router.delete("/{user_id}", response_model=SuccessResponse)
def delete_user(
    user_id: str,
    _: CurrentUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not db.delete_user(user_id):
        raise not_found("User not found")
    return SuccessResponse()
