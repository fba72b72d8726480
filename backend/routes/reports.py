"""
Report routes — academic performance PDF and Excel export endpoints.
"""

import os
import uuid
from datetime import datetime
from pathlib import Path

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from core.analytics import compute_child_analytics
from core.report_builder import (
    DEFAULT_ATTRIBUTION,
    DirectorySink,
    ExportContext,
    TrendChartSurface,
    export_report,
    export_workbook,
)
from core.trends import ALL_SUBJECTS, DEFAULT_WINDOW

router = APIRouter()

ATTRIBUTION = os.getenv("REPORT_ATTRIBUTION", DEFAULT_ATTRIBUTION)
CHART_SETTLE_SECONDS = float(os.getenv("CHART_SETTLE_SECONDS", "0.5"))
REPORTS_DIR = Path(os.getenv("EXPORT_DIR", str(Path(__file__).resolve().parent.parent / "exports")))


def _safe_unlink(path: str):
    """Best-effort removal of the export and its per-request directory."""
    p = Path(path)
    p.unlink(missing_ok=True)
    try:
        p.parent.rmdir()
    except OSError:
        pass


def _context_from_payload(payload: dict, sink: DirectorySink) -> ExportContext:
    records = payload.get("records")
    if not isinstance(records, list):
        raise HTTPException(400, "Provide 'records' as a list.")

    window = payload.get("time_range", DEFAULT_WINDOW)
    subject = payload.get("subject", ALL_SUBJECTS) or ALL_SUBJECTS
    analytics = compute_child_analytics(records, window, ALL_SUBJECTS)

    surface = None
    if payload.get("include_chart", True):
        surface = TrendChartSurface(analytics["performance"], analytics["subjects"], selected_subject=subject)

    return ExportContext(
        student_name=str(payload.get("student_name") or ""),
        comparison=analytics["comparison"],
        performance=analytics["performance"],
        subjects=analytics["subjects"],
        selected_subject=subject,
        time_range=window,
        surface=surface,
        sink=sink,
        settle_delay=CHART_SETTLE_SECONDS,
        attribution=ATTRIBUTION,
        generated_at=datetime.now(),
    )


@router.post("/academic-pdf")
async def academic_report_pdf(payload: dict):
    """Generate the academic performance report PDF for one student."""
    sink = DirectorySink(REPORTS_DIR / str(uuid.uuid4())[:8])
    context = _context_from_payload(payload, sink)

    result = await export_report(context)
    if not result.success:
        raise HTTPException(500, result.error)

    output_path = sink.directory / result.filename
    headers = {"X-Report-Warnings": str(len(result.warnings))}
    return FileResponse(
        str(output_path),
        media_type="application/pdf",
        filename=result.filename,
        headers=headers,
        background=BackgroundTask(_safe_unlink, str(output_path)),
    )


@router.post("/excel")
async def excel_export(payload: dict):
    """Export the comparison and trend tables as an Excel workbook."""
    sink = DirectorySink(REPORTS_DIR / str(uuid.uuid4())[:8])
    context = _context_from_payload(payload, sink)

    result = export_workbook(context)
    if not result.success:
        raise HTTPException(500, result.error)

    output_path = sink.directory / result.filename
    return FileResponse(
        str(output_path),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=result.filename,
        background=BackgroundTask(_safe_unlink, str(output_path)),
    )
