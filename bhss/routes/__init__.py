"""
HTTP routes for the BHSS API, mounted under the configured prefix.
"""

from __future__ import annotations

from fastapi import APIRouter

from bhss.routes import (
    admin_distribution,
    announcements,
    attendance,
    auth,
    delivery,
    events,
    file_submissions,
    live,
    push,
    school_directory,
    users,
)

router = APIRouter()

router.include_router(auth.router)
router.include_router(users.router)
router.include_router(attendance.router)
router.include_router(attendance.admin_router)
router.include_router(delivery.router)
router.include_router(delivery.admin_router)
router.include_router(push.router)
router.include_router(announcements.router)
router.include_router(announcements.admin_router)
router.include_router(events.router)
router.include_router(events.admin_router)
router.include_router(file_submissions.router)
router.include_router(file_submissions.admin_router)
router.include_router(admin_distribution.router)
router.include_router(school_directory.router)
router.include_router(live.router)
