"""
report_builder.py — Academic performance report export.

The PDF export runs as sequential stages:
  1. document init       (fatal: no export sink)
  2. header + table      (fatal: table could not be built)
  3. chart image         (fail-soft: warning + text placeholder)
  4. footer + finalize   (fatal: document could not be built)
  5. persist             (fatal: sink write failed)

The document is rendered in memory; the sink is written exactly once, and only
after every fatal stage has passed. Concurrent exports are not serialized here;
callers run one export at a time.

Also provides the same sections as an Excel workbook.
"""

import asyncio
import inspect
import io
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from xml.sax.saxutils import escape

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend for server use
import matplotlib.pyplot as plt
import numpy as np
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm, mm
from reportlab.lib.utils import ImageReader
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from core.errors import ChartCaptureError, ErrorKind, ReportExportError
from core.trends import ALL_SUBJECTS, DEFAULT_WINDOW, filter_comparison, filter_trend, window_label

logger = logging.getLogger(__name__)


# ── Colour palette ──────────────────────────────────────────────────

BRAND_BLUE = colors.HexColor("#3b82f6")
BRAND_GREY = colors.HexColor("#4b5563")
BORDER_GREY = colors.HexColor("#e5e7eb")
LIGHT_GREY = colors.HexColor("#f5f5f5")
WHITE = colors.white

MPL_PALETTE = ["#3b82f6", "#10b981", "#f59e0b", "#ef4444", "#6366f1"]

PEER_COLUMNS = [("city", "City Average"), ("state", "State Average")]
TABLE_HEADER = ["Subject", "Student Score"] + [label for _, label in PEER_COLUMNS]

DEFAULT_ATTRIBUTION = "© ScoreLens Education Analytics"
CHART_PLACEHOLDER = "(Performance chart could not be included - Please try again)"
REPORT_ERROR_PREFIX = "Failed to generate PDF report. "


# ── Collaborator interfaces ─────────────────────────────────────────

@runtime_checkable
class Rasterizable(Protocol):
    """A rendered surface that can be captured as PNG bytes.

    capture() may be a plain method or a coroutine; it raises
    ChartCaptureError when nothing can be produced.
    """

    def capture(self) -> bytes:
        ...


@runtime_checkable
class ExportSink(Protocol):
    def save(self, data: bytes, filename: str) -> None:
        ...


class DirectorySink:
    """Writes exports into a directory. A failed write leaves no file behind."""

    def __init__(self, directory):
        self.directory = Path(directory)
        self.saved: List[Path] = []

    def save(self, data: bytes, filename: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.directory), suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            target = self.directory / filename
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        self.saved.append(target)


class MemorySink:
    def __init__(self):
        self.files: Dict[str, bytes] = {}

    def save(self, data: bytes, filename: str) -> None:
        self.files[filename] = data


class TrendChartSurface:
    """Line chart of PerformanceRows rendered with matplotlib."""

    def __init__(self, rows: List[Dict[str, Any]], subjects: List[str],
                 selected_subject: str = ALL_SUBJECTS, title: str = "Performance Trends"):
        self.rows = rows
        self.subjects = subjects if selected_subject == ALL_SUBJECTS else [selected_subject]
        self.title = title

    def capture(self) -> bytes:
        if not self.rows:
            raise ChartCaptureError("Chart capture failed: no data to plot")

        months = [str(r.get("month", "?")) for r in self.rows]
        fig, ax = plt.subplots(figsize=(8, 4))
        try:
            for idx, subject in enumerate(self.subjects):
                values = [r.get(subject, np.nan) for r in self.rows]
                ax.plot(months, values, marker="o", linewidth=2.2, markersize=6,
                        color=MPL_PALETTE[idx % len(MPL_PALETTE)], label=subject)
            ax.set_ylim(0, 105)
            ax.set_ylabel("Average Score (%)", fontsize=10)
            ax.set_title(self.title, fontsize=12, fontweight="bold", pad=12)
            ax.spines["top"].set_visible(False)
            ax.spines["right"].set_visible(False)
            ax.tick_params(axis="x", rotation=30, labelsize=8)
            if self.subjects:
                ax.legend(fontsize=8, loc="lower right")
            fig.tight_layout()

            buf = io.BytesIO()
            fig.savefig(buf, format="png", dpi=150, bbox_inches="tight", facecolor="white")
        finally:
            plt.close(fig)
        return buf.getvalue()


# ── Export context / result ─────────────────────────────────────────

@dataclass
class ExportContext:
    student_name: str
    comparison: List[Dict[str, Any]]
    performance: List[Dict[str, Any]] = field(default_factory=list)
    subjects: List[str] = field(default_factory=list)
    selected_subject: str = ALL_SUBJECTS
    time_range: str = DEFAULT_WINDOW
    surface: Optional[Rasterizable] = None
    sink: Optional[ExportSink] = None
    settle_delay: float = 0.5
    attribution: str = DEFAULT_ATTRIBUTION
    generated_at: datetime = field(default_factory=datetime.now)


@dataclass
class ExportResult:
    success: bool
    warnings: List[str] = field(default_factory=list)
    filename: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "warnings": list(self.warnings),
            "filename": self.filename,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }


# ── Helpers ─────────────────────────────────────────────────────────

def safe_display_name(name: Optional[str], fallback: str = "student") -> str:
    """Every character outside [a-z0-9] becomes '-', lowercased."""
    token = re.sub(r"[^a-z0-9]", "-", str(name or ""), flags=re.IGNORECASE).lower()
    return token or fallback


def report_filename(student_name: Optional[str], when: datetime, extension: str = "pdf") -> str:
    return f"{safe_display_name(student_name)}-academic-report-{when.date().isoformat()}.{extension}"


def remediation_message(error: BaseException) -> str:
    """User-facing message with a hint picked from the underlying error text."""
    text = str(error)
    lowered = text.lower()
    if "disk" in lowered or "space" in lowered:
        return REPORT_ERROR_PREFIX + "Please check your available disk space and try again."
    if "chart" in lowered:
        return REPORT_ERROR_PREFIX + "There was an issue capturing the chart. Please try again in a few moments."
    return REPORT_ERROR_PREFIX + (text or "Please try again.")


def _fmt_score(value) -> str:
    return "N/A" if value is None else str(value)


def _footer(canvas, doc, attribution: str):
    """Draw attribution and page number in the page footer."""
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(colors.HexColor("#9ca3af"))
    canvas.drawString(2 * cm, 1.2 * cm, attribution)
    canvas.drawRightString(A4[0] - 2 * cm, 1.2 * cm, f"Page {doc.page}")
    canvas.restoreState()


def _styles():
    """Return custom paragraph styles."""
    ss = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "ReportTitle", parent=ss["Title"],
            fontSize=24, leading=30, textColor=BRAND_BLUE,
            alignment=0, spaceAfter=6 * mm,
        ),
        "meta": ParagraphStyle(
            "ReportMeta", parent=ss["Normal"],
            fontSize=12, leading=16, textColor=BRAND_GREY,
        ),
        "heading": ParagraphStyle(
            "ReportHeading", parent=ss["Heading2"],
            fontSize=16, leading=20, textColor=BRAND_BLUE,
            spaceBefore=8 * mm, spaceAfter=4 * mm,
        ),
        "body": ParagraphStyle(
            "ReportBody", parent=ss["Normal"],
            fontSize=10, leading=14, textColor=BRAND_GREY,
        ),
    }


def _make_table(data: List[List], col_widths=None, header_color=BRAND_BLUE):
    """Create a styled grid table."""
    style_cmds = [
        ("BACKGROUND", (0, 0), (-1, 0), header_color),
        ("TEXTCOLOR", (0, 0), (-1, 0), WHITE),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("ALIGN", (1, 0), (-1, -1), "CENTER"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("GRID", (0, 0), (-1, -1), 0.75, BORDER_GREY),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [WHITE, LIGHT_GREY]),
        ("TOPPADDING", (0, 0), (-1, -1), 6),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]
    t = Table(data, colWidths=col_widths, repeatRows=1)
    t.setStyle(TableStyle(style_cmds))
    return t


def comparison_table_rows(comparison: List[Dict[str, Any]], selected_subject: str = ALL_SUBJECTS) -> List[List[str]]:
    rows = [list(TABLE_HEADER)]
    for row in filter_comparison(comparison, selected_subject):
        peers = row.get("peer_averages") or {}
        rows.append(
            [str(row["subject"]), _fmt_score(row.get("student_score"))]
            + [_fmt_score(peers.get(key)) for key, _ in PEER_COLUMNS]
        )
    return rows


# ── Stages ──────────────────────────────────────────────────────────

def _init_document(context: ExportContext):
    if context.sink is None:
        raise ReportExportError("Export mechanism unavailable: no export sink configured")
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=2 * cm,
        rightMargin=2 * cm,
        topMargin=2 * cm,
        bottomMargin=2.5 * cm,
        title="Academic Performance Report",
    )
    return doc, buf


def _summary_section(context: ExportContext, st) -> List:
    story = [Paragraph("Academic Performance Report", st["title"])]
    if context.student_name:
        story.append(Paragraph(f"Student: {escape(context.student_name)}", st["meta"]))
    story.append(Paragraph(f"Report Generated: {context.generated_at.strftime('%B %d, %Y')}", st["meta"]))
    story.append(Paragraph(f"Time Range: {window_label(context.time_range)}", st["meta"]))
    story.append(Paragraph("Performance Summary", st["heading"]))

    try:
        rows = comparison_table_rows(context.comparison, context.selected_subject)
        story.append(_make_table(rows, col_widths=[5.5 * cm, 3.8 * cm, 3.8 * cm, 3.9 * cm]))
    except Exception as exc:
        raise ReportExportError(f"Failed to generate performance table: {exc}") from exc
    return story


async def _capture_chart(surface: Rasterizable, settle_delay: float) -> bytes:
    # let in-flight chart animations settle before capturing
    if settle_delay > 0:
        await asyncio.sleep(settle_delay)
    data = surface.capture()
    if inspect.isawaitable(data):
        data = await data
    return data


async def _chart_section(context: ExportContext, frame_width: float, st, warnings: List[str]) -> List:
    story = [Paragraph("Performance Trends", st["heading"])]
    try:
        if context.surface is None:
            raise ChartCaptureError("Chart element not found")
        data = await _capture_chart(context.surface, context.settle_delay)
        if not data:
            raise ChartCaptureError("Chart capture failed: Invalid image data")
        width, height = ImageReader(io.BytesIO(data)).getSize()
        if not width or not height:
            raise ChartCaptureError("Chart capture failed: Invalid canvas")
    except Exception as exc:
        logger.warning("Chart could not be included in report: %s", exc)
        warnings.append(f"{ErrorKind.CHART_CAPTURE_FAILED.value}: {exc}")
        story.append(Paragraph(CHART_PLACEHOLDER, st["body"]))
        return story

    max_height = 12 * cm
    draw_height = min(height * frame_width / width, max_height)
    draw_width = width * draw_height / height
    story.append(Spacer(1, 2 * mm))
    story.append(Image(io.BytesIO(data), width=draw_width, height=draw_height))
    return story


def _finalize(doc, buf: io.BytesIO, story: List, attribution: str) -> bytes:
    try:
        doc.build(
            story,
            onFirstPage=lambda c, d: _footer(c, d, attribution),
            onLaterPages=lambda c, d: _footer(c, d, attribution),
        )
    except Exception as exc:
        raise ReportExportError(f"PDF generation failed: {exc}") from exc
    data = buf.getvalue()
    if not data:
        raise ReportExportError("PDF generation failed: No pages created")
    return data


def _persist(sink: ExportSink, data: bytes, filename: str):
    try:
        sink.save(data, filename)
    except Exception as exc:
        raise ReportExportError(str(exc) or "Failed to save report", ErrorKind.EXPORT_PERSISTENCE_FAILED) from exc


# ═══════════════════════════════════════════════════════════════════
# 1. ACADEMIC REPORT PDF
# ═══════════════════════════════════════════════════════════════════

async def export_report(context: ExportContext) -> ExportResult:
    """Build and persist the academic performance PDF."""
    warnings: List[str] = []
    try:
        st = _styles()
        doc, buf = _init_document(context)
        story = _summary_section(context, st)
        story += await _chart_section(context, doc.width, st, warnings)
        data = _finalize(doc, buf, story, context.attribution)
        filename = report_filename(context.student_name, context.generated_at)
        _persist(context.sink, data, filename)
    except ReportExportError as exc:
        logger.error("Report export failed (%s): %s", exc.kind.value, exc)
        return ExportResult(
            success=False,
            warnings=warnings,
            error=remediation_message(exc),
            error_kind=exc.kind,
        )

    logger.info("Exported report %s (%d bytes, %d warnings)", filename, len(data), len(warnings))
    return ExportResult(success=True, warnings=warnings, filename=filename)


# ═══════════════════════════════════════════════════════════════════
# 2. EXCEL EXPORT
# ═══════════════════════════════════════════════════════════════════

HEADER_FONT = Font(bold=True, color="FFFFFF", size=11)
HEADER_FILL = PatternFill(start_color="3b82f6", end_color="3b82f6", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"), right=Side(style="thin"),
    top=Side(style="thin"), bottom=Side(style="thin"),
)


def _style_sheet(ws, header_row: int = 1):
    """Header styling, borders, frozen header and auto-width columns."""
    for cell in ws[header_row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center")
        cell.border = THIN_BORDER

    for row in ws.iter_rows(min_row=header_row + 1, max_row=ws.max_row):
        for cell in row:
            cell.border = THIN_BORDER
            cell.alignment = Alignment(horizontal="center")

    ws.freeze_panes = ws.cell(row=header_row + 1, column=1).coordinate

    for col_cells in ws.columns:
        max_len = max(len(str(cell.value or "")) for cell in col_cells)
        ws.column_dimensions[col_cells[0].column_letter].width = min(max_len + 4, 30)


def build_workbook(context: ExportContext) -> bytes:
    wb = Workbook()

    ws_summary = wb.active
    ws_summary.title = "Performance Summary"
    ws_summary.sheet_properties.tabColor = "3b82f6"
    ws_summary.append(["Academic Performance Report"])
    ws_summary.append([f"Student: {context.student_name or 'N/A'}"])
    ws_summary.append([f"Report Generated: {context.generated_at.strftime('%B %d, %Y')}"])
    ws_summary.append([f"Time Range: {window_label(context.time_range)}"])
    # one blank row between the meta block and the table
    header_row = ws_summary.max_row + 2
    for r_idx, row in enumerate(comparison_table_rows(context.comparison, context.selected_subject)):
        for c_idx, value in enumerate(row, start=1):
            ws_summary.cell(row=header_row + r_idx, column=c_idx, value=value)
    _style_sheet(ws_summary, header_row=header_row)
    ws_summary["A1"].font = Font(bold=True, size=14, color="3b82f6")

    ws_trend = wb.create_sheet(title="Performance Trends")
    ws_trend.sheet_properties.tabColor = "10b981"
    subjects = context.subjects if context.selected_subject == ALL_SUBJECTS else [context.selected_subject]
    ws_trend.append(["Month"] + list(subjects))
    for row in filter_trend(context.performance, context.selected_subject):
        ws_trend.append([row.get("month")] + [row.get(s) for s in subjects])
    _style_sheet(ws_trend)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def export_workbook(context: ExportContext) -> ExportResult:
    """Build and persist the same report sections as an .xlsx workbook."""
    try:
        if context.sink is None:
            raise ReportExportError("Export mechanism unavailable: no export sink configured")
        try:
            data = build_workbook(context)
        except Exception as exc:
            raise ReportExportError(f"Workbook generation failed: {exc}") from exc
        filename = report_filename(context.student_name, context.generated_at, extension="xlsx")
        _persist(context.sink, data, filename)
    except ReportExportError as exc:
        logger.error("Workbook export failed (%s): %s", exc.kind.value, exc)
        return ExportResult(success=False, error=remediation_message(exc), error_kind=exc.kind)

    logger.info("Exported workbook %s (%d bytes)", filename, len(data))
    return ExportResult(success=True, filename=filename)
