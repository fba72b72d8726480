"""
grading.py — Score normalization and grade helpers.

normalize() maps the many ways a record can carry a result (numeric score at
either nesting level, letter grade, "87%" string) onto one 0-100 scale.
Absent signal is None, never 0, so averages can exclude it.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from core.records import canonical_record, numeric_or_none


# Letter grade → score. Ordered: "A+" must be tried before "A".
LETTER_GRADE_SCORES = [
    ("A+", 95.0),
    ("A", 90.0),
    ("B+", 85.0),
    ("B", 80.0),
    ("C+", 75.0),
    ("C", 70.0),
    ("D", 65.0),
]

# Universal grade bands (min_score, label, description), high to low.
UNIVERSAL_GRADES = [
    (80.0, "A", "Excellent"),
    (70.0, "B", "Very Good"),
    (60.0, "C", "Good"),
    (50.0, "D", "Satisfactory"),
    (40.0, "E", "Needs Improvement"),
    (0.0, "F", "Poor"),
]

RANK_BADGES = {1: "gold", 2: "silver", 3: "bronze"}

_LEADING_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)")


def _clamp_score(score: Optional[float]) -> Optional[float]:
    if score is None:
        return None
    try:
        value = float(score)
    except (TypeError, ValueError):
        return None
    return max(0.0, min(100.0, value))


def score_from_grade(grade: Any) -> Optional[float]:
    """Letter grade or percentage string → score, None when unrecognized."""
    if not isinstance(grade, str):
        return None
    g = grade.strip().upper()
    if not g:
        return None
    if g.endswith("%"):
        match = _LEADING_NUMBER.match(g)
        return float(match.group(0)) if match else None
    for prefix, value in LETTER_GRADE_SCORES:
        if g.startswith(prefix):
            return value
    return None


def normalize(record: Dict[str, Any]) -> Optional[float]:
    """Return the record's score on the 0-100 scale, or None."""
    try:
        canonical = canonical_record(record)
    except Exception:
        return None
    score = numeric_or_none(canonical.get("score"))
    if score is not None:
        return score
    return score_from_grade(canonical.get("grade"))


def normalize_records(records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """NormalizedScore dicts: subject, year, value."""
    out = []
    for raw in records or []:
        canonical = canonical_record(raw)
        out.append({
            "subject": canonical["subject"],
            "year": canonical["year"],
            "value": normalize(canonical),
        })
    return out


def get_universal_grade(score: Optional[float]) -> Dict[str, Any]:
    """Return universal grade info for a 0-100 score."""
    value = _clamp_score(score)
    if value is None:
        return {"label": "-", "description": "No score"}

    for min_score, label, desc in UNIVERSAL_GRADES:
        if value >= min_score:
            return {"label": label, "description": desc, "score": round(value, 1)}

    return {"label": "F", "description": "Poor", "score": round(value, 1)}


def get_grade_label(score: Optional[float]) -> str:
    return get_universal_grade(score)["label"]


def get_all_grade_thresholds() -> List[Dict[str, Any]]:
    """Return the full grade scale for legend/reference."""
    thresholds = []
    for idx, (min_score, label, desc) in enumerate(UNIVERSAL_GRADES):
        max_score = 100.0 if idx == 0 else UNIVERSAL_GRADES[idx - 1][0] - 0.01
        thresholds.append({
            "min": min_score,
            "max": round(max_score, 2),
            "label": label,
            "description": desc,
        })
    return thresholds


def rank_badge(rank: Optional[int]) -> Optional[str]:
    return RANK_BADGES.get(rank) if isinstance(rank, int) else None
