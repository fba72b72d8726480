"""
errors.py — Shared failure taxonomy.

Fetch failures (Timeout … Unknown) are raised by the remote sources and caught
at the leaderboard controller boundary. Report failures split into a
non-fatal chart capture error and fatal export errors.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TIMEOUT = "Timeout"
    NETWORK_ERROR = "NetworkError"
    UNAUTHORIZED = "Unauthorized"
    NO_RECORDS = "NoRecords"
    VALIDATION_ERROR = "ValidationError"
    CHART_CAPTURE_FAILED = "ChartCaptureFailed"
    EXPORT_PERSISTENCE_FAILED = "ExportPersistenceFailed"
    UNKNOWN = "Unknown"


FETCH_ERROR_MESSAGES = {
    ErrorKind.TIMEOUT: "Request timed out. Please try again.",
    ErrorKind.NETWORK_ERROR: "Network error. Please check your connection.",
    ErrorKind.UNAUTHORIZED: "Please log in to view the leaderboard.",
    ErrorKind.NO_RECORDS: "No academic records found. Add some test scores to see the leaderboard.",
    ErrorKind.VALIDATION_ERROR: "Invalid data format. Please try again.",
    ErrorKind.UNKNOWN: "Error loading leaderboard data.",
}


class SourceError(Exception):
    """A remote source call failed; ``kind`` is one of the fetch taxonomy members."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status

    @property
    def user_message(self) -> str:
        return FETCH_ERROR_MESSAGES.get(self.kind, FETCH_ERROR_MESSAGES[ErrorKind.UNKNOWN])


class ChartCaptureError(Exception):
    """Raised by a chart surface that could not produce an image."""


class ReportExportError(Exception):
    """Fatal report failure. The export is aborted and nothing is persisted."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        super().__init__(message)
        self.kind = kind
