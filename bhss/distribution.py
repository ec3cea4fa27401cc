"""
Distribution batches (water / rice / LPG) and the content-hash dedup gate.

An uploaded spreadsheet is normalized, sorted and hashed before anything is
written. Re-submitting identical content returns the batch that already
exists instead of creating a second one.
"""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Optional

if TYPE_CHECKING:
    from bhss.db import DbClient
    from bhss.tables import DistributionBatchRow

DEFAULT_KITCHEN_NAME = "BHSS Kitchen"


class DistributionKind(str, Enum):
    WATER = "water"
    RICE = "rice"
    LPG = "lpg"


# Metric fields per kind, in serialization order. Also the PATCH allow-list.
METRIC_FIELDS: dict[DistributionKind, tuple[str, ...]] = {
    DistributionKind.WATER: (
        "beneficiaries",
        "water",
        "week1",
        "week2",
        "week3",
        "week4",
        "week5",
        "total",
    ),
    DistributionKind.RICE: ("rice",),
    DistributionKind.LPG: ("gasul",),
}


class BatchValidationError(ValueError):
    """Raised when an upload payload cannot become a batch."""


@dataclass
class BatchSubmission:
    unchanged: bool
    batch: "DistributionBatchRow"


def normalize_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def normalize_number(value: Any) -> int | float:
    """Coerce spreadsheet cells to a finite number; anything else is 0."""
    if isinstance(value, (bool, int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = float(text) if text else 0.0
        except ValueError:
            number = 0.0
    else:
        number = 0.0
    if not math.isfinite(number):
        return 0
    # Integral values hash as "10", not "10.0".
    return int(number) if number.is_integer() else number


def normalize_items(
    kind: DistributionKind, bhss_kitchen_name: str, items: Iterable[dict]
) -> list[dict]:
    fields = METRIC_FIELDS[kind]
    docs = []
    for item in items:
        item = item if isinstance(item, dict) else {}
        doc = {
            "municipality": normalize_string(item.get("municipality")),
            "bhssKitchenName": bhss_kitchen_name,
            "schoolName": normalize_string(item.get("schoolName")),
        }
        for field in fields:
            doc[field] = normalize_number(item.get(field))
        docs.append(doc)
    return docs


def compute_content_hash(
    kind: DistributionKind,
    bhss_kitchen_name: str,
    sheet_name: str,
    docs: list[dict],
) -> str:
    ordered = sorted(docs, key=lambda d: (d["municipality"], d["schoolName"]))
    canonical = json.dumps(
        {
            "kind": kind.value,
            "bhssKitchenName": bhss_kitchen_name,
            "sheetName": sheet_name,
            "items": ordered,
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def row_metrics(kind: DistributionKind, doc: dict) -> dict:
    metrics = {field: doc[field] for field in METRIC_FIELDS[kind]}
    if kind is DistributionKind.WATER and not metrics["total"]:
        metrics["total"] = metrics["water"]
    return metrics


def submit_batch(
    db: "DbClient",
    kind: DistributionKind,
    *,
    items: list,
    bhss_kitchen_name: Optional[str] = None,
    sheet_name: Optional[str] = None,
    source_file_name: Optional[str] = None,
    uploaded_by_user_id: str = "",
) -> BatchSubmission:
    """
    Persist a batch and its rows unless identical content already exists.

    Two concurrent identical uploads can both miss the lookup; the unique
    content_hash constraint then rejects the second insert and the data
    layer raises DuplicateKeyError.
    """
    kitchen = normalize_string(bhss_kitchen_name or DEFAULT_KITCHEN_NAME)
    sheet = normalize_string(sheet_name)
    source = normalize_string(source_file_name)

    if not kitchen:
        raise BatchValidationError("bhssKitchenName is required")
    if not items:
        raise BatchValidationError("items is required")

    docs = normalize_items(kind, kitchen, items)
    if any(not d["municipality"] or not d["schoolName"] for d in docs):
        raise BatchValidationError("Each item requires municipality and schoolName")

    content_hash = compute_content_hash(kind, kitchen, sheet, docs)
    existing = db.find_batch_by_hash(content_hash)
    if existing:
        return BatchSubmission(unchanged=True, batch=existing)

    batch = db.create_batch(
        {
            "kind": kind.value,
            "municipality": "ALL",
            "bhss_kitchen_name": kitchen,
            "content_hash": content_hash,
            "sheet_name": sheet,
            "source_file_name": source,
            "uploaded_by_user_id": uploaded_by_user_id,
        },
        [
            {
                "kind": kind.value,
                "municipality": d["municipality"],
                "bhss_kitchen_name": kitchen,
                "school_name": d["schoolName"],
                "metrics": row_metrics(kind, d),
            }
            for d in docs
        ],
    )
    return BatchSubmission(unchanged=False, batch=batch)
