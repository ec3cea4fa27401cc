"""
Web push subscription management.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from bhss.auth import CurrentUser, require_user
from bhss.config import Settings, get_settings
from bhss.db import DbClient
from bhss.dependencies import get_db_client
from bhss.errors import validation_error
from bhss.schemas import (
    OkResponse,
    PushKeys,
    PushSubscribeRequest,
    PushSubscriptionOut,
    PushSubscriptionResponse,
    PushUnsubscribeRequest,
    VapidKeyResponse,
)

router = APIRouter(prefix="/push", tags=["push"])


@router.get("/vapid-public-key", response_model=VapidKeyResponse)
def vapid_public_key(
    _: CurrentUser = Depends(require_user),
    settings: Settings = Depends(get_settings),
):
    return VapidKeyResponse(public_key=settings.vapid_public_key or "")


@router.post("/subscribe", response_model=PushSubscriptionResponse)
def subscribe(
    payload: PushSubscribeRequest,
    current: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    """Re-subscribing the same endpoint moves it to the caller."""
    endpoint = payload.endpoint.strip()
    keys = payload.keys or PushKeys()
    if not endpoint or not keys.p256dh or not keys.auth:
        raise validation_error("Invalid subscription")

    row = db.save_push_subscription(
        user_id=current.id, endpoint=endpoint, p256dh=keys.p256dh, auth=keys.auth
    )
    return PushSubscriptionResponse(
        subscription=PushSubscriptionOut(
            id=row.id,
            user_id=row.user_id,
            endpoint=row.endpoint,
            keys=PushKeys(p256dh=row.p256dh, auth=row.auth),
        )
    )


@router.post("/unsubscribe", response_model=OkResponse)
def unsubscribe(
    payload: PushUnsubscribeRequest,
    _: CurrentUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    endpoint = payload.endpoint.strip()
    if not endpoint:
        raise validation_error("endpoint is required")
    db.delete_push_subscription(endpoint)
    return OkResponse()
