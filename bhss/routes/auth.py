"""
Registration and login.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends

from bhss.auth import (
    create_access_token,
    hash_password,
    looks_hashed,
    verify_password,
)
from bhss.db import DbClient
from bhss.dependencies import get_db_client
from bhss.errors import conflict, forbidden, unauthorized, validation_error
from bhss.schemas import LoginRequest, LoginResponse, RegisterRequest, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=UserOut, status_code=201)
def register(payload: RegisterRequest, db: DbClient = Depends(get_db_client)):
    if not (payload.username and payload.email and payload.password and payload.name):
        raise validation_error("username, email, password and name are required")
    role = (payload.role or "student").strip()
    if role == "admin":
        raise forbidden("Admin accounts cannot self-register")

    username = payload.username.strip().lower()
    email = payload.email.strip().lower()
    if db.find_user_by_username_or_email(username, email):
        raise conflict("Username or email already registered")

    user = db.create_user(
        username=username,
        email=email,
        password_hash=hash_password(payload.password),
        name=payload.name,
        role=role,
    )
    logger.info("Registered user %s", user.id)
    return UserOut.model_validate(user)


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, db: DbClient = Depends(get_db_client)):
    if not payload.username or not payload.password:
        raise validation_error("username and password are required")

    user = db.find_user_by_username(payload.username.strip().lower())
    if not user:
        raise unauthorized("Invalid credentials")

    stored = user.password_hash or ""
    matched = verify_password(payload.password, stored)
    if not matched and stored and not looks_hashed(stored):
        # Accounts imported with plaintext passwords are upgraded on first login.
        if hmac.compare_digest(stored.encode("utf-8"), payload.password.encode("utf-8")):
            db.update_user(user.id, {"password_hash": hash_password(payload.password)})
            logger.info("Upgraded legacy password for user %s", user.id)
            matched = True
    if not matched:
        raise unauthorized("Invalid credentials")
    if not user.is_active:
        raise forbidden("Account is inactive")

    return LoginResponse(
        token=create_access_token(user.id, user.role),
        user=UserOut.model_validate(user),
    )
