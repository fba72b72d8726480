"""
trends.py — Time-bucketed performance trends and subject comparison.

Records only carry a year, so a month bucket collects every record of its
calendar year. A subject appears in a bucket row only when at least one usable
(non-null) score fell into it; missing data is never reported as 0.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from core.grading import normalize
from core.records import canonical_records


WINDOW_MONTHS = {
    "6months": 6,
    "1year": 12,
    "2years": 24,
}
DEFAULT_WINDOW = "6months"

WINDOW_LABELS = {
    "6months": "Last 6 Months",
    "1year": "Last 1 Year",
    "2years": "Last 2 Years",
}

MONTH_ABBR = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

ALL_SUBJECTS = "all"


# ── Helpers ─────────────────────────────────────────────────────────

def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def window_label(window: str) -> str:
    return WINDOW_LABELS.get(window, WINDOW_LABELS[DEFAULT_WINDOW])


def _scores_frame(records: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """One row per record with a usable score: subject, year, value."""
    rows = []
    for rec in canonical_records(records):
        value = normalize(rec)
        if value is None:
            continue
        rows.append({"subject": rec["subject"], "year": rec["year"], "value": value})
    return pd.DataFrame(rows, columns=["subject", "year", "value"])


def unique_subjects(records: Iterable[Dict[str, Any]]) -> List[str]:
    """Distinct non-empty subjects in first-seen order."""
    seen = dict.fromkeys(r["subject"] for r in canonical_records(records) if r["subject"])
    return list(seen)


# ── Month buckets ───────────────────────────────────────────────────

def month_buckets(window: str = DEFAULT_WINDOW, now: Optional[datetime] = None) -> List[Dict[str, str]]:
    """Consecutive calendar months ending at the current month, oldest first."""
    now = now or datetime.now()
    count = WINDOW_MONTHS.get(window, WINDOW_MONTHS[DEFAULT_WINDOW])
    current = now.year * 12 + (now.month - 1)

    buckets = []
    for offset in range(count - 1, -1, -1):
        year, month_idx = divmod(current - offset, 12)
        buckets.append({
            "label": f"{MONTH_ABBR[month_idx]} {year}",
            "year": str(year),
            "month": f"{month_idx + 1:02d}",
        })
    return buckets


# ── Aggregations ────────────────────────────────────────────────────

def build_trend(
    records: Iterable[Dict[str, Any]],
    window: str = DEFAULT_WINDOW,
    subjects: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """One PerformanceRow per month bucket: {"month": label, <subject>: avg}."""
    subjects = list(subjects or [])
    frame = _scores_frame(records)
    means: Dict[Any, float] = {}
    if not frame.empty:
        means = frame.groupby(["year", "subject"])["value"].mean().to_dict()

    rows = []
    for bucket in month_buckets(window, now=now):
        row: Dict[str, Any] = {"month": bucket["label"]}
        for subject in subjects:
            mean = means.get((bucket["year"], subject))
            if mean is not None and not np.isnan(mean):
                row[subject] = _round_half_up(mean)
        rows.append(row)
    return rows


def build_comparison(
    records: Iterable[Dict[str, Any]],
    subjects: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """Per-subject student average; peer averages are external placeholders."""
    frame = _scores_frame(records)
    means: Dict[str, float] = {}
    if not frame.empty:
        means = frame.groupby("subject")["value"].mean().to_dict()

    rows = []
    for subject in subjects or []:
        mean = means.get(subject)
        rows.append({
            "subject": subject,
            "student_score": _round_half_up(mean) if mean is not None and not np.isnan(mean) else None,
            "peer_averages": {"city": None, "state": None},
        })
    return rows


# ── Subject filter ──────────────────────────────────────────────────

def filter_trend(rows: List[Dict[str, Any]], subject: str = ALL_SUBJECTS) -> List[Dict[str, Any]]:
    if subject == ALL_SUBJECTS:
        return rows
    filtered = []
    for row in rows:
        kept = {"month": row["month"]}
        if subject in row:
            kept[subject] = row[subject]
        filtered.append(kept)
    return filtered


def filter_comparison(rows: List[Dict[str, Any]], subject: str = ALL_SUBJECTS) -> List[Dict[str, Any]]:
    if subject == ALL_SUBJECTS:
        return rows
    return [r for r in rows if r["subject"] == subject]
