"""
Tests for core/report_builder.py — staged PDF export, fail-soft chart, Excel workbook.
"""

import asyncio
import io
import os
import sys
import tempfile
from datetime import datetime

import pytest
from openpyxl import load_workbook

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import core.report_builder as report_builder
from core.errors import ChartCaptureError, ErrorKind
from core.report_builder import (
    CHART_PLACEHOLDER,
    REPORT_ERROR_PREFIX,
    DirectorySink,
    ExportContext,
    MemorySink,
    TrendChartSurface,
    comparison_table_rows,
    export_report,
    export_workbook,
    remediation_message,
    report_filename,
    safe_display_name,
)

WHEN = datetime(2024, 3, 15, 9, 30)

COMPARISON = [
    {"subject": "Math", "student_score": 85, "peer_averages": {"city": None, "state": None}},
    {"subject": "English", "student_score": None, "peer_averages": {"city": 78, "state": None}},
]
PERFORMANCE = [
    {"month": "Jan 2024", "Math": 85},
    {"month": "Feb 2024", "Math": 85, "English": 70},
    {"month": "Mar 2024"},
]


@pytest.fixture(scope="module")
def png_bytes():
    return TrendChartSurface(PERFORMANCE, ["Math", "English"]).capture()


class StaticSurface:
    def __init__(self, data):
        self.data = data
        self.calls = 0

    def capture(self):
        self.calls += 1
        return self.data


class AsyncSurface(StaticSurface):
    async def capture(self):
        self.calls += 1
        return self.data


class BrokenSurface:
    def capture(self):
        raise ChartCaptureError("Chart capture failed: canvas tainted")


class FullDiskSink:
    def save(self, data, filename):
        raise OSError(28, "No space left on device")


def make_context(**overrides):
    values = dict(
        student_name="Ada Lovelace",
        comparison=COMPARISON,
        performance=PERFORMANCE,
        subjects=["Math", "English"],
        sink=MemorySink(),
        settle_delay=0,
        generated_at=WHEN,
    )
    values.update(overrides)
    return ExportContext(**values)


class TestExportReport:
    """The PDF pipeline: fatal stages abort, the chart stage only warns."""

    def test_complete_report_has_no_warnings(self, png_bytes):
        ctx = make_context(surface=StaticSurface(png_bytes))
        result = asyncio.run(export_report(ctx))
        assert result.success is True
        assert result.warnings == []
        assert result.filename == "ada-lovelace-academic-report-2024-03-15.pdf"
        assert list(ctx.sink.files) == [result.filename]
        assert ctx.sink.files[result.filename].startswith(b"%PDF-")

    def test_async_capture_is_awaited(self, png_bytes):
        surface = AsyncSurface(png_bytes)
        result = asyncio.run(export_report(make_context(surface=surface)))
        assert result.success is True
        assert result.warnings == []
        assert surface.calls == 1

    def test_missing_chart_degrades_to_warning(self):
        ctx = make_context(surface=None)
        result = asyncio.run(export_report(ctx))
        assert result.success is True
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("ChartCaptureFailed")
        assert "Chart element not found" in result.warnings[0]
        assert ctx.sink.files[result.filename].startswith(b"%PDF-")

    @pytest.mark.parametrize("surface,detail", [
        (StaticSurface(b""), "Invalid image data"),
        (StaticSurface(None), "Invalid image data"),
        (BrokenSurface(), "canvas tainted"),
    ])
    def test_capture_failures_are_non_fatal(self, surface, detail):
        ctx = make_context(surface=surface)
        result = asyncio.run(export_report(ctx))
        assert result.success is True
        assert len(result.warnings) == 1
        assert detail in result.warnings[0]
        assert len(ctx.sink.files) == 1

    @pytest.mark.parametrize("size", [(0, 300), (400, 0), (0, 0)])
    def test_zero_sized_image_is_non_fatal(self, png_bytes, monkeypatch, size):
        class ZeroSizeReader:
            def __init__(self, fileobj):
                pass

            def getSize(self):
                return size

        monkeypatch.setattr(report_builder, "ImageReader", ZeroSizeReader)
        ctx = make_context(surface=StaticSurface(png_bytes))
        result = asyncio.run(export_report(ctx))
        assert result.success is True
        assert result.warnings == ["ChartCaptureFailed: Chart capture failed: Invalid canvas"]
        assert ctx.sink.files[result.filename].startswith(b"%PDF-")

    def test_undecodable_image_is_non_fatal(self):
        result = asyncio.run(export_report(make_context(surface=StaticSurface(b"not an image"))))
        assert result.success is True
        assert result.warnings[0].startswith("ChartCaptureFailed")

    def test_no_sink_aborts(self):
        result = asyncio.run(export_report(make_context(sink=None)))
        assert result.success is False
        assert result.filename is None
        assert result.error.startswith(REPORT_ERROR_PREFIX)

    def test_sink_failure_reports_disk_hint(self, png_bytes):
        result = asyncio.run(export_report(make_context(surface=StaticSurface(png_bytes), sink=FullDiskSink())))
        assert result.success is False
        assert result.error_kind == ErrorKind.EXPORT_PERSISTENCE_FAILED
        assert result.error == REPORT_ERROR_PREFIX + "Please check your available disk space and try again."

    def test_table_failure_persists_nothing(self):
        ctx = make_context(comparison=[{"student_score": 50}])
        result = asyncio.run(export_report(ctx))
        assert result.success is False
        assert "performance table" in result.error
        assert ctx.sink.files == {}

    def test_empty_comparison_still_exports(self):
        ctx = make_context(comparison=[], performance=[], subjects=[], surface=None)
        result = asyncio.run(export_report(ctx))
        assert result.success is True
        assert len(result.warnings) == 1

    def test_markup_in_name_is_escaped(self, png_bytes):
        ctx = make_context(student_name="<b>Bobby & Co", surface=StaticSurface(png_bytes))
        result = asyncio.run(export_report(ctx))
        assert result.success is True
        assert result.filename == "-b-bobby---co-academic-report-2024-03-15.pdf"

    def test_to_dict(self):
        result = asyncio.run(export_report(make_context()))
        payload = result.to_dict()
        assert payload["success"] is True
        assert payload["error_kind"] is None
        assert len(payload["warnings"]) == 1


class TestDirectorySink:

    def test_writes_only_final_file(self, png_bytes):
        with tempfile.TemporaryDirectory() as tmpdir:
            sink = DirectorySink(os.path.join(tmpdir, "exports"))
            result = asyncio.run(export_report(make_context(surface=StaticSurface(png_bytes), sink=sink)))
            assert result.success is True
            names = os.listdir(os.path.join(tmpdir, "exports"))
            assert names == [result.filename]
            assert sink.saved[0].name == result.filename

    def test_unusable_directory_fails_cleanly(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            blocker = os.path.join(tmpdir, "taken")
            with open(blocker, "w") as f:
                f.write("x")
            result = asyncio.run(export_report(make_context(sink=DirectorySink(blocker))))
            assert result.success is False
            assert result.error_kind == ErrorKind.EXPORT_PERSISTENCE_FAILED
            assert os.listdir(tmpdir) == ["taken"]


class TestFilenames:

    @pytest.mark.parametrize("name,expected", [
        ("Ada Lovelace", "ada-lovelace"),
        ("Zoë O'Brien", "zo--o-brien"),
        ("ALAN_TURING", "alan-turing"),
        ("", "student"),
        (None, "student"),
    ])
    def test_safe_display_name(self, name, expected):
        assert safe_display_name(name) == expected

    def test_report_filename(self):
        assert report_filename("Ada", WHEN) == "ada-academic-report-2024-03-15.pdf"
        assert report_filename("Ada", WHEN, extension="xlsx").endswith(".xlsx")


class TestRemediationMessage:

    @pytest.mark.parametrize("text,hint", [
        ("No space left on device", "disk space"),
        ("Disk quota exceeded", "disk space"),
        ("chart surface went away", "capturing the chart"),
        ("something odd", "something odd"),
    ])
    def test_hint_by_keyword(self, text, hint):
        message = remediation_message(RuntimeError(text))
        assert message.startswith(REPORT_ERROR_PREFIX)
        assert hint in message

    def test_empty_error_text(self):
        assert remediation_message(RuntimeError()) == REPORT_ERROR_PREFIX + "Please try again."


class TestComparisonTableRows:

    def test_missing_values_render_na(self):
        rows = comparison_table_rows(COMPARISON)
        assert rows[0] == ["Subject", "Student Score", "City Average", "State Average"]
        assert rows[1] == ["Math", "85", "N/A", "N/A"]
        assert rows[2] == ["English", "N/A", "78", "N/A"]

    def test_subject_filter(self):
        rows = comparison_table_rows(COMPARISON, "English")
        assert [r[0] for r in rows[1:]] == ["English"]


class TestTrendChartSurface:

    def test_captures_png(self, png_bytes):
        assert png_bytes.startswith(b"\x89PNG")

    def test_empty_rows_raise(self):
        with pytest.raises(ChartCaptureError):
            TrendChartSurface([], ["Math"]).capture()

    def test_selected_subject_narrows_lines(self):
        assert TrendChartSurface(PERFORMANCE, ["Math", "English"], selected_subject="Math").subjects == ["Math"]

    def test_placeholder_text(self):
        assert "could not be included" in CHART_PLACEHOLDER


class TestExportWorkbook:

    def test_workbook_sheets(self):
        ctx = make_context()
        result = export_workbook(ctx)
        assert result.success is True
        assert result.filename == "ada-lovelace-academic-report-2024-03-15.xlsx"

        wb = load_workbook(io.BytesIO(ctx.sink.files[result.filename]))
        assert wb.sheetnames == ["Performance Summary", "Performance Trends"]

        summary = wb["Performance Summary"]
        assert summary["A1"].value == "Academic Performance Report"
        assert summary["A2"].value == "Student: Ada Lovelace"
        assert summary["A5"].value is None
        assert summary["A6"].value == "Subject"
        assert summary["A7"].value == "Math"
        assert summary["B7"].value == "85"

        trends = wb["Performance Trends"]
        assert [c.value for c in trends[1]] == ["Month", "Math", "English"]
        assert [c.value for c in trends[3]] == ["Feb 2024", 85, 70]
        assert trends.max_row == 4

    def test_subject_filter_applies(self):
        ctx = make_context(selected_subject="Math")
        result = export_workbook(ctx)
        wb = load_workbook(io.BytesIO(ctx.sink.files[result.filename]))
        assert [c.value for c in wb["Performance Trends"][1]] == ["Month", "Math"]
        assert wb["Performance Summary"].max_row == 7

    def test_no_sink(self):
        result = export_workbook(make_context(sink=None))
        assert result.success is False
        assert result.error.startswith(REPORT_ERROR_PREFIX)

    def test_sink_failure(self):
        result = export_workbook(make_context(sink=FullDiskSink()))
        assert result.success is False
        assert result.error_kind == ErrorKind.EXPORT_PERSISTENCE_FAILED
