"""
Small helpers shared by the route modules.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import quote

from fastapi.responses import Response

from bhss.tables import UserRow

DATE_KEY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def is_valid_date_key(value: str) -> bool:
    return bool(DATE_KEY_RE.match(value or ""))


def day_start(value: Optional[str]) -> Optional[datetime]:
    match = DATE_KEY_RE.match((value or "").strip())
    if not match:
        return None
    try:
        return datetime(
            int(match.group(1)),
            int(match.group(2)),
            int(match.group(3)),
            tzinfo=timezone.utc,
        )
    except ValueError:
        return None


def day_range(value: Optional[str]) -> Optional[tuple[datetime, datetime]]:
    """UTC ``[start, end)`` of a ``yyyy-MM-dd`` day."""
    start = day_start(value)
    if start is None:
        return None
    return start, start + timedelta(days=1)


def oldest_first(sort: Optional[str]) -> bool:
    return sort == "oldest"


def user_summary(user: Optional[UserRow], user_id: str) -> dict:
    return {
        "id": user_id,
        "name": (user.name if user else "") or "",
        "school": (user.school if user else "") or "",
        "municipality": (user.municipality if user else "") or "",
    }


def attachment_response(data: bytes, filename: str, media_type: str) -> Response:
    return Response(
        content=data,
        media_type=media_type or "application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"
        },
    )


def epoch_ms(value: Optional[datetime]) -> int:
    if value is None:
        value = datetime.now(timezone.utc)
    elif value.tzinfo is None:
        # SQLite hands timestamps back without an offset; they are stored in UTC.
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)
