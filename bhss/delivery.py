"""
Normalization helpers for delivery submissions.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Iterable, Optional

DELIVERY_STATUSES = ("Pending", "Delivered", "Delayed", "Cancelled")

NO_CONCERN_SYNONYMS = frozenset(
    {
        "no concern",
        "no concerns",
        "none",
        "no",
        "na",
        "n a",
        "no cencern",
        "no cencerns",
        "no cencer",
        "no cencers",
        "no concernss",
    }
)


def parse_string_array(values: Optional[Iterable[Any]]) -> list[str]:
    """
    Accept repeated form fields, a JSON array string or a comma-separated
    string.
    """
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    values = list(values)
    if len(values) != 1 or not isinstance(values[0], str):
        return [str(v) for v in values if v is not None and str(v)]

    raw = values[0].strip()
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(v) for v in parsed if v is not None and str(v)]
    return [part.strip() for part in raw.split(",") if part.strip()]


def normalize_concern_value(value: Any) -> str:
    return re.sub(r"\s+", " ", str(value or "")).strip()


def is_no_concerns_value(value: str) -> bool:
    normalized = re.sub(r"[\s._-]+", " ", value.lower())
    normalized = re.sub(r"[^a-z0-9 ]", "", normalized).strip()
    return normalized in NO_CONCERN_SYNONYMS


def normalize_concerns(values: Optional[Iterable[Any]]) -> list[str]:
    """A single "no concerns" entry empties the whole list."""
    concerns = [
        c for c in (normalize_concern_value(v) for v in parse_string_array(values)) if c
    ]
    if any(is_no_concerns_value(c) for c in concerns):
        return []
    return list(dict.fromkeys(concerns))


def parse_flag(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in ("true", "1")


def parse_optional_datetime(value: Optional[str]) -> Optional[datetime]:
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None
