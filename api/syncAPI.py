# api/syncAPI.py
# CrossPhoto - Sync session and conflict resolution API
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from _logging import log as _root_log
from cp_platform.orchestrator import (
    ConflictNotFoundError,
    InvalidTransitionError,
    Orchestrator,
    SessionNotFoundError,
)

__all__ = ["router", "SyncIn", "ResolveIn"]

router = APIRouter(prefix="/api", tags=["synchronization"])

_log = _root_log.child("api")

KEEPALIVE_SECONDS = 15.0


class SyncIn(BaseModel):
    platforms: list[str]
    type: str | None = None
    conflict_resolution: str | None = None
    force_full: bool = False
    dry_run: bool = False


class ResolveIn(BaseModel):
    strategy: str | None = None
    selected_item: dict[str, Any] | None = None
    selected_item_id: str | None = None
    selected_items: list[dict[str, Any]] | None = None
    selected_item_ids: list[str] | None = None
    reason: str | None = None


class _Err(BaseModel):
    ok: bool = False
    error: str = Field(default="")


def _orc(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def _fail(e: Exception) -> JSONResponse:
    if isinstance(e, (SessionNotFoundError, ConflictNotFoundError)):
        code = 404
    elif isinstance(e, InvalidTransitionError):
        code = 409
    elif isinstance(e, ValueError):
        code = 400
    else:
        code = 500
        _log.error(f"request failed: {type(e).__name__}: {e}")
    return JSONResponse(_Err(error=str(e)).model_dump(), status_code=code)


@router.post("/sync")
async def api_sync_start(request: Request, payload: SyncIn = Body(...)) -> Any:
    opts = payload.model_dump(exclude={"platforms"}, exclude_none=True)
    try:
        sid = await _orc(request).start_sync(payload.platforms, opts)
    except Exception as e:
        return _fail(e)
    s = _orc(request).get_sync_status(sid)
    return {"ok": True, "session_id": sid, "status": s.status.value}


@router.get("/sync")
async def api_sync_list(request: Request) -> Any:
    return [s.to_dict() for s in _orc(request).get_all_sync_sessions()]


@router.get("/sync/active")
async def api_sync_active(request: Request) -> Any:
    return [s.to_dict() for s in _orc(request).get_active_syncs()]


@router.get("/sync/statistics")
async def api_sync_statistics(request: Request) -> Any:
    return _orc(request).get_statistics()


async def event_stream(
    orc: Orchestrator, is_disconnected: Callable[[], Awaitable[bool]]
) -> AsyncIterator[str]:
    """Server-sent event frames for orchestrator events, with periodic keep-alive comments."""
    q = orc.events()
    try:
        while True:
            if await is_disconnected():
                break
            try:
                ev = await asyncio.wait_for(q.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            yield f"event: {ev.event.value}\n"
            yield f"data: {json.dumps(ev.to_dict(), separators=(',', ':'), default=str)}\n\n"
    finally:
        orc.emitter.close_queue(q)


@router.get("/sync/events")
async def api_sync_events(request: Request) -> StreamingResponse:
    return StreamingResponse(
        event_stream(_orc(request), request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-store"},
    )


@router.get("/sync/{session_id}")
async def api_sync_status(request: Request, session_id: str) -> Any:
    try:
        return _orc(request).get_sync_status(session_id).to_dict()
    except Exception as e:
        return _fail(e)


@router.post("/sync/{session_id}/pause")
async def api_sync_pause(request: Request, session_id: str) -> Any:
    try:
        s = await _orc(request).pause_sync(session_id)
    except Exception as e:
        return _fail(e)
    return {"ok": True, "session_id": s.id, "status": s.status.value}


@router.post("/sync/{session_id}/resume")
async def api_sync_resume(request: Request, session_id: str) -> Any:
    try:
        s = await _orc(request).resume_sync(session_id)
    except Exception as e:
        return _fail(e)
    return {"ok": True, "session_id": s.id, "status": s.status.value}


@router.post("/sync/{session_id}/cancel")
async def api_sync_cancel(request: Request, session_id: str) -> Any:
    try:
        s = await _orc(request).cancel_sync(session_id)
    except Exception as e:
        return _fail(e)
    return {"ok": True, "session_id": s.id, "status": s.status.value}


@router.get("/conflicts/pending")
async def api_conflicts_pending(request: Request, session_id: str | None = None) -> Any:
    return [p.to_dict() for p in _orc(request).get_pending_conflicts(session_id)]


@router.post("/conflicts/{conflict_id}/resolve")
async def api_conflict_resolve(request: Request, conflict_id: str, payload: ResolveIn = Body(...)) -> Any:
    try:
        c = await _orc(request).resolve_conflict_manually(conflict_id, payload.model_dump(exclude_none=True))
    except Exception as e:
        return _fail(e)
    s = _orc(request).sessions.get(c.session_id or "")
    return {
        "ok": True,
        "conflict": c.to_dict(),
        "session_status": s.status.value if s is not None else None,
    }
