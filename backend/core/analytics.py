"""
analytics.py — Per-child analytics view.

Holds the selection (child, time range, subject) and the aggregates derived
from the selected child's records. Fetch failures clear every aggregate and
keep one error message; a view never shows records of one child next to
trends of another.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.errors import SourceError
from core.records import canonical_records
from core.sources import RecordSource
from core.trends import (
    ALL_SUBJECTS,
    DEFAULT_WINDOW,
    WINDOW_MONTHS,
    build_comparison,
    build_trend,
    filter_comparison,
    filter_trend,
    unique_subjects,
    window_label,
)

logger = logging.getLogger(__name__)


def compute_child_analytics(
    raw_records: List[Dict[str, Any]],
    window: str = DEFAULT_WINDOW,
    subject: str = ALL_SUBJECTS,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Trend and comparison rows for one child's records, filtered by subject."""
    records = canonical_records(raw_records)
    subjects = unique_subjects(records)
    trend = build_trend(records, window, subjects, now=now)
    comparison = build_comparison(records, subjects)
    return {
        "time_range": window,
        "time_range_label": window_label(window),
        "selected_subject": subject,
        "subjects": subjects,
        "record_count": len(records),
        "performance": filter_trend(trend, subject),
        "comparison": filter_comparison(comparison, subject),
    }


class AnalyticsView:
    """Selection state plus derived aggregates for the analytics dashboard."""

    def __init__(self, source: RecordSource):
        self.source = source
        self.children: List[Dict[str, str]] = []
        self.selected_child: Optional[str] = None
        self.time_range = DEFAULT_WINDOW
        self.selected_subject = ALL_SUBJECTS
        self.records: List[Dict[str, Any]] = []
        self.subjects: List[str] = []
        self.performance: List[Dict[str, Any]] = []
        self.comparison: List[Dict[str, Any]] = []
        self.error: Optional[str] = None

    # ── Children ───────────────────────────────────────────────────

    async def load_children(self):
        try:
            self.children = await self.source.fetch_children()
        except SourceError as exc:
            self.children = []
            self.error = exc.user_message
            return
        self.error = None
        if self.children:
            self.selected_child = self.children[0]["id"]

    def _index(self) -> int:
        for idx, child in enumerate(self.children):
            if child["id"] == self.selected_child:
                return idx
        return -1

    @property
    def current_child(self) -> Optional[Dict[str, str]]:
        idx = self._index()
        return self.children[idx] if idx >= 0 else None

    def select_next(self) -> bool:
        idx = self._index()
        if 0 <= idx < len(self.children) - 1:
            self.selected_child = self.children[idx + 1]["id"]
            return True
        return False

    def select_previous(self) -> bool:
        idx = self._index()
        if idx > 0:
            self.selected_child = self.children[idx - 1]["id"]
            return True
        return False

    def set_time_range(self, window: str):
        self.time_range = window if window in WINDOW_MONTHS else DEFAULT_WINDOW
        self._recompute()

    def set_subject(self, subject: str):
        self.selected_subject = subject or ALL_SUBJECTS

    # ── Records ────────────────────────────────────────────────────

    async def load_records(self, now: Optional[datetime] = None):
        if not self.selected_child:
            return
        try:
            raw = await self.source.fetch_records(self.selected_child, "academic")
        except SourceError as exc:
            logger.warning("Record fetch for child %s failed: %s", self.selected_child, exc)
            self.error = exc.user_message
            self.records, self.subjects, self.performance, self.comparison = [], [], [], []
            return
        self.error = None
        self.records = canonical_records(raw)
        self.subjects = unique_subjects(self.records)
        self._recompute(now=now)

    def _recompute(self, now: Optional[datetime] = None):
        self.performance = build_trend(self.records, self.time_range, self.subjects, now=now)
        self.comparison = build_comparison(self.records, self.subjects)

    def snapshot(self) -> Dict[str, Any]:
        child = self.current_child
        return {
            "child": child,
            "time_range": self.time_range,
            "time_range_label": window_label(self.time_range),
            "selected_subject": self.selected_subject,
            "subjects": self.subjects,
            "performance": filter_trend(self.performance, self.selected_subject),
            "comparison": filter_comparison(self.comparison, self.selected_subject),
            "error": self.error,
        }
