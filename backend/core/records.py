"""
records.py — Record adapter.

Records arrive in two legacy shapes: flat ({"subject": ..., "score": ...}) or
nested under a "data" sub-map ({"_id": ..., "data": {"subject": ...}}).
canonical_record() reads every field once with a top-level-then-nested
fallback so downstream code only ever sees one shape.
"""

import math
from numbers import Real
from typing import Any, Dict, Iterable, List, Optional


TEXT_FIELDS = {
    "subject": "subject",
    "grade": "grade",
    "teacher": "teacher",
    "school": "school",
    "notes": "notes",
    "exam_type": "examType",
}


def _nested(raw: Dict[str, Any]) -> Dict[str, Any]:
    data = raw.get("data")
    return data if isinstance(data, dict) else {}


def read_field(raw: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Top-level value when present and not null, else the nested one."""
    value = raw.get(key)
    if value is None:
        value = _nested(raw).get(key)
    return default if value is None else value


def numeric_or_none(value: Any) -> Optional[float]:
    # bool is a Real subclass; True is not a score
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def _read_score(raw: Dict[str, Any]) -> Optional[float]:
    top = numeric_or_none(raw.get("score"))
    if top is not None:
        return top
    return numeric_or_none(_nested(raw).get("score"))


def canonical_record(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map a raw record of either shape onto the canonical record dict."""
    if not isinstance(raw, dict):
        raw = {}

    record: Dict[str, Any] = {
        "id": str(raw.get("_id") or raw.get("id") or ""),
    }
    for name, source_key in TEXT_FIELDS.items():
        value = read_field(raw, source_key, "")
        if name == "exam_type" and value == "":
            value = read_field(raw, "exam_type", "")
        record[name] = value if isinstance(value, str) else str(value)

    year = read_field(raw, "year", "")
    if isinstance(year, float) and year.is_integer():
        year = int(year)
    record["year"] = str(year).strip()
    record["score"] = _read_score(raw)
    record["created_at"] = str(raw.get("createdAt") or raw.get("created_at") or "")
    return record


def canonical_records(raw_records: Optional[Iterable[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [canonical_record(r) for r in (raw_records or [])]
