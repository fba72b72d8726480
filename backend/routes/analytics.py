"""
Analytics routes — normalization, monthly trends and subject comparison.
"""

from fastapi import APIRouter, HTTPException

from core.analytics import compute_child_analytics
from core.errors import SourceError
from core.grading import get_all_grade_thresholds, normalize_records
from core.records import canonical_records
from core.sources import RecordSource
from core.trends import ALL_SUBJECTS, DEFAULT_WINDOW, build_comparison, build_trend, unique_subjects

router = APIRouter()


def _records_from_payload(payload: dict) -> list:
    """Extract raw records from request payload."""
    records = payload.get("records")
    if records is None:
        raise HTTPException(400, "No records provided.")
    if not isinstance(records, list):
        raise HTTPException(400, "'records' must be a list.")
    return records


def _subjects_from_payload(payload: dict, records: list) -> list:
    subjects = payload.get("subjects")
    if subjects is None:
        return unique_subjects(records)
    if not isinstance(subjects, list):
        raise HTTPException(400, "'subjects' must be a list.")
    return [str(s) for s in subjects]


@router.post("/normalize")
async def normalize(payload: dict):
    """Per-record normalized score on the 0-100 scale (null when no signal)."""
    return {"scores": normalize_records(_records_from_payload(payload))}


@router.post("/trend")
async def trend(payload: dict):
    """Monthly performance rows for the requested window (6months/1year/2years)."""
    records = canonical_records(_records_from_payload(payload))
    subjects = _subjects_from_payload(payload, records)
    window = payload.get("time_range", DEFAULT_WINDOW)
    return {"subjects": subjects, "performance": build_trend(records, window, subjects)}


@router.post("/comparison")
async def comparison(payload: dict):
    """Per-subject student averages with peer-average placeholders."""
    records = canonical_records(_records_from_payload(payload))
    subjects = _subjects_from_payload(payload, records)
    return {"comparison": build_comparison(records, subjects)}


@router.get("/child/{child_id}")
async def child_analytics(child_id: str, time_range: str = DEFAULT_WINDOW, subject: str = ALL_SUBJECTS):
    """Fetch a child's academic records and return trend + comparison."""
    try:
        raw = await RecordSource().fetch_records(child_id, "academic")
    except SourceError as exc:
        raise HTTPException(502, f"Failed to load academic records: {exc}")
    return compute_child_analytics(raw, time_range, subject)


@router.get("/grade-scale")
async def grade_scale():
    return {"grade_scale": get_all_grade_thresholds()}
