"""
Leaderboard routes — page windows and per-view leaderboard sessions.

A session wraps one LeaderboardController: created when a view mounts,
torn down when it unmounts (or expires). Filter changes go through the
controller so overlapping requests resolve last-issued-wins.
"""

import os
import uuid
from time import time
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from core.grading import rank_badge
from core.leaderboard import ALL, LeaderboardController, LeaderboardState
from core.pagination import compute_window
from core.sources import LeaderboardSource

router = APIRouter()

# In-memory session store: session_id → { controller, created_at }
sessions: dict = {}
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(60 * 60)))


def _drop_session(session_id: str):
    s = sessions.pop(session_id, None)
    if s:
        s["controller"].teardown()


def _purge_expired_sessions():
    now = time()
    expired = [
        sid for sid, s in sessions.items()
        if (now - float(s.get("created_at", now))) > SESSION_TTL_SECONDS
    ]
    for sid in expired:
        _drop_session(sid)


def _get_controller(session_id: str) -> LeaderboardController:
    s = sessions.get(session_id)
    if not s:
        raise HTTPException(404, f"Leaderboard session '{session_id}' not found.")
    return s["controller"]


def _filter_value(payload: dict, key: str) -> Optional[str]:
    """None when the key is absent; null/empty selects "all"."""
    if key not in payload:
        return None
    value = payload[key]
    if value is None or value == "":
        return ALL
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise HTTPException(400, f"'{key}' must be a string.")
    return str(value)


def _entity_payload(entity) -> dict:
    data = entity.model_dump()
    data["badge"] = rank_badge(entity.rank)
    return data


def _state_payload(session_id: str, state: LeaderboardState) -> dict:
    """Serialize a state snapshot; the page window is derived here, never stored."""
    pagination = state.pagination
    return {
        "session_id": session_id,
        "status": state.status.value,
        "loading": state.loading,
        "error": state.error,
        "error_kind": state.error_kind.value if state.error_kind else None,
        "filters": {
            "page": state.filters.page,
            "subject": state.filters.subject,
            "city": state.filters.city,
        },
        "subjects": list(state.subjects),
        "data": [_entity_payload(e) for e in state.entities],
        "pagination": pagination.model_dump(),
        "pages": compute_window(state.filters.page, pagination.total_pages),
    }


@router.get("/pages")
async def pages(current: int = Query(1, ge=1), total: int = Query(0, ge=0)):
    """Page-index window with collapse markers."""
    return {"current": current, "total": total, "pages": compute_window(current, total)}


@router.post("/sessions")
async def create_session(payload: Optional[dict] = None):
    """Create a leaderboard session and start its initial load."""
    _purge_expired_sessions()
    payload = payload or {}
    page_size = payload.get("page_size")
    if page_size is not None and (not isinstance(page_size, int) or page_size < 1):
        raise HTTPException(400, "'page_size' must be a positive integer.")

    session_id = str(uuid.uuid4())
    controller = LeaderboardController(LeaderboardSource().fetch, page_size=page_size)
    sessions[session_id] = {"controller": controller, "created_at": time()}
    controller.mount()
    return _state_payload(session_id, controller.state)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    controller = _get_controller(session_id)
    return _state_payload(session_id, controller.state)


@router.post("/sessions/{session_id}/filters")
async def update_filters(session_id: str, payload: dict):
    """
    Apply a filter change: {"subject": ...}, {"city": ...} or {"page": n}.
    Subject/city changes reset to page 1. Out-of-range pages are ignored.
    Pass "wait": true to respond after the resulting fetch settles.
    """
    controller = _get_controller(session_id)

    # Validate everything first; a rejected request must not touch the controller
    subject = _filter_value(payload, "subject")
    city = _filter_value(payload, "city")
    page = payload.get("page")
    if "page" in payload and (not isinstance(page, int) or isinstance(page, bool)):
        raise HTTPException(400, "'page' must be an integer.")

    if subject is not None:
        controller.set_subject(subject)
    if city is not None:
        controller.set_city(city)
    if page is not None:
        controller.set_page(page)
    if payload.get("refresh"):
        controller.refresh()
    if payload.get("wait"):
        await controller.wait_idle()
    return _state_payload(session_id, controller.state)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    _get_controller(session_id)
    _drop_session(session_id)
    return {"session_id": session_id, "deleted": True}
