"""
sources.py — HTTP clients for the remote record and ranking sources.

Every failure leaves this module as a SourceError carrying one of the fetch
taxonomy kinds, so callers only ever handle one exception type.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from core.errors import ErrorKind, SourceError
from core.schemas import LeaderboardResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_PAGE_SIZE = 10


def _server_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or "Server error"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return "Server error"


def classify_error(exc: BaseException) -> SourceError:
    """Map any fetch failure onto the fetch taxonomy."""
    if isinstance(exc, SourceError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return SourceError("Request timed out", ErrorKind.TIMEOUT, 408)
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        message = _server_message(exc.response)
        if status == 401:
            return SourceError("Unauthorized access", ErrorKind.UNAUTHORIZED, status)
        if status == 404:
            return SourceError(message, ErrorKind.NO_RECORDS, status)
        if status in (400, 422):
            return SourceError(message, ErrorKind.VALIDATION_ERROR, status)
        return SourceError(message, ErrorKind.UNKNOWN, status)
    if isinstance(exc, httpx.TransportError):
        return SourceError("Network error", ErrorKind.NETWORK_ERROR, 0)
    if isinstance(exc, (ValidationError, ValueError)):
        return SourceError("Invalid response format from server", ErrorKind.VALIDATION_ERROR, 500)
    return SourceError(str(exc) or "Unknown error occurred", ErrorKind.UNKNOWN, 500)


class _JsonSource:
    """Shared GET-and-decode plumbing for the remote sources."""

    env_var = ""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or os.getenv(self.env_var, "http://localhost:5000/api")).rstrip("/")
        self.token = token if token is not None else os.getenv("API_TOKEN", "").strip()
        self.timeout = timeout if timeout is not None else float(
            os.getenv("FETCH_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS))
        )
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._headers(),
                transport=self.transport,
            ) as client:
                res = await client.get(path, params=params)
                res.raise_for_status()
                # 204 / empty 200: no payload
                if not res.content:
                    return None
                return res.json()
        except Exception as exc:
            err = classify_error(exc)
            logger.debug("GET %s%s failed: %s (%s)", self.base_url, path, err, err.kind.value)
            raise err from exc


class RecordSource(_JsonSource):
    env_var = "RECORDS_API_URL"

    async def fetch_records(self, child_id: str, record_type: Optional[str] = "academic") -> List[Dict[str, Any]]:
        """Raw records for a child, in whichever shape the server stores them."""
        params = {"childId": child_id}
        if record_type:
            params["type"] = record_type
        body = await self._get_json("/record", params=params)
        if body is None:
            return []
        if not isinstance(body, list):
            raise SourceError("Invalid response format from server", ErrorKind.VALIDATION_ERROR, 500)
        return [r for r in body if isinstance(r, dict)]

    async def fetch_children(self) -> List[Dict[str, str]]:
        body = await self._get_json("/child")
        if not isinstance(body, list):
            raise SourceError("Invalid response format from server", ErrorKind.VALIDATION_ERROR, 500)
        return [
            {"id": str(c.get("_id") or c.get("id") or ""), "name": str(c.get("name") or "")}
            for c in body
            if isinstance(c, dict)
        ]


class LeaderboardSource(_JsonSource):
    env_var = "LEADERBOARD_API_URL"

    async def fetch(self, filters: Dict[str, Any]) -> LeaderboardResponse:
        """One ranking page. Filters with a None value are not sent."""
        params = {k: v for k, v in (filters or {}).items() if v is not None}
        params["limit"] = params.get("limit") or DEFAULT_PAGE_SIZE
        body = await self._get_json("/leaderboard", params=params)
        try:
            return LeaderboardResponse.model_validate(body)
        except ValidationError as exc:
            raise classify_error(exc) from exc
