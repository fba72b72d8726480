"""
leaderboard.py — Async fetch controller for the ranking list.

Every refresh takes a new epoch. Completions (success or failure) belonging to
an older epoch are dropped when they arrive, so with overlapping requests the
last one issued wins regardless of which finishes first. Applied results
replace the whole LeaderboardState in a single assignment.

Lifecycle: create → mount() → refresh()/set_*() … → teardown(). After
teardown nothing mutates the state.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from core.errors import FETCH_ERROR_MESSAGES, ErrorKind
from core.pagination import is_valid_page
from core.schemas import DEFAULT_PAGE_INFO, LeaderboardResponse, PageInfo, RankedEntity
from core.sources import DEFAULT_PAGE_SIZE, classify_error

logger = logging.getLogger(__name__)

ALL = "all"

Fetcher = Callable[[Dict[str, Any]], Awaitable[LeaderboardResponse]]


class FetchStatus(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    APPLIED = "applied"
    DISCARDED = "discarded"
    FAILED = "failed"


class CancellationToken:
    """Cooperative cancellation: checked before every state mutation."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass(frozen=True)
class LeaderboardFilters:
    page: int = 1
    subject: str = ALL
    city: str = ALL

    def to_params(self, limit: int) -> Dict[str, Any]:
        return {
            "page": self.page,
            "limit": limit,
            "subject": None if self.subject == ALL else self.subject,
            "city": None if self.city == ALL else self.city,
        }


@dataclass(frozen=True)
class LeaderboardState:
    entities: Tuple[RankedEntity, ...] = ()
    pagination: PageInfo = DEFAULT_PAGE_INFO
    subjects: Tuple[str, ...] = ()
    filters: LeaderboardFilters = field(default_factory=LeaderboardFilters)
    status: FetchStatus = FetchStatus.IDLE
    loading: bool = False
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class LeaderboardController:
    """Owns the ranking state of one consuming view."""

    def __init__(self, fetch: Fetcher, page_size: Optional[int] = None):
        self._fetch = fetch
        self.page_size = page_size or int(os.getenv("LEADERBOARD_PAGE_SIZE", str(DEFAULT_PAGE_SIZE)))
        self._state = LeaderboardState()
        self._epoch = 0
        self._token = CancellationToken()
        self._pending: Set[asyncio.Task] = set()

    # ── Read side ──────────────────────────────────────────────────

    @property
    def state(self) -> LeaderboardState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def active(self) -> bool:
        return not self._token.cancelled

    # ── Commands ───────────────────────────────────────────────────

    def mount(self) -> asyncio.Task:
        """Initial load; shares the epoch sequence with later refreshes."""
        return self.refresh()

    def refresh(self, filters: Optional[LeaderboardFilters] = None) -> asyncio.Task:
        """Issue a fetch for ``filters`` (default: current filters). Must run inside an event loop."""
        filters = filters or self._state.filters
        self._epoch += 1
        epoch = self._epoch
        self._set_state(filters=filters, status=FetchStatus.FETCHING, loading=True, error=None, error_kind=None)

        task = asyncio.get_running_loop().create_task(self._run(epoch, filters, self._token))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def set_page(self, page: int) -> Optional[asyncio.Task]:
        if not is_valid_page(page, self._state.pagination.total_pages):
            return None
        return self.refresh(replace(self._state.filters, page=page))

    def set_subject(self, subject: str) -> asyncio.Task:
        return self.refresh(replace(self._state.filters, subject=subject or ALL, page=1))

    def set_city(self, city: str) -> asyncio.Task:
        return self.refresh(replace(self._state.filters, city=city or ALL, page=1))

    def teardown(self):
        """Stop all future state mutations; in-flight requests are left to finish unobserved."""
        self._token.cancel()

    async def wait_idle(self):
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Internals ──────────────────────────────────────────────────

    def _set_state(self, **changes):
        if self._token.cancelled:
            return
        self._state = replace(self._state, **changes)

    async def _run(self, epoch: int, filters: LeaderboardFilters, token: CancellationToken) -> FetchStatus:
        try:
            response = await self._fetch(filters.to_params(self.page_size))
        except Exception as exc:
            return self._fail(epoch, exc, token)
        return self._apply(epoch, response, token)

    def _is_stale(self, epoch: int, token: CancellationToken) -> bool:
        if token.cancelled:
            logger.debug("Leaderboard epoch %d completed after teardown", epoch)
            return True
        if epoch != self._epoch:
            logger.debug("Leaderboard epoch %d superseded by %d", epoch, self._epoch)
            return True
        return False

    def _apply(self, epoch: int, response: LeaderboardResponse, token: CancellationToken) -> FetchStatus:
        if self._is_stale(epoch, token):
            return FetchStatus.DISCARDED

        subjects = tuple(response.subjects)
        filters = self._state.filters
        if filters.subject != ALL and filters.subject not in subjects:
            filters = replace(filters, subject=ALL)

        self._state = LeaderboardState(
            entities=tuple(response.data),
            pagination=response.pagination,
            subjects=subjects,
            filters=filters,
            status=FetchStatus.APPLIED,
            loading=False,
        )
        logger.info(
            "Leaderboard epoch %d applied: %d entities, page %d/%d",
            epoch, len(response.data), response.pagination.page, response.pagination.total_pages,
        )
        return FetchStatus.APPLIED

    def _fail(self, epoch: int, exc: Exception, token: CancellationToken) -> FetchStatus:
        if self._is_stale(epoch, token):
            return FetchStatus.DISCARDED

        err = classify_error(exc)
        logger.warning("Leaderboard epoch %d failed: %s (%s)", epoch, err, err.kind.value)
        self._state = replace(
            self._state,
            entities=(),
            pagination=DEFAULT_PAGE_INFO,
            status=FetchStatus.FAILED,
            loading=False,
            error=FETCH_ERROR_MESSAGES[err.kind],
            error_kind=err.kind,
        )
        return FetchStatus.FAILED
