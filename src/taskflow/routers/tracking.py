"""REST API endpoints for time tracking and session sync."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ..context import AppContext
from ..services.analytics import calculate_time_statistics
from ..tracking.models import TimeSession
from ..utils.datetime_utils import to_iso
from ..utils.time_format import format_duration
from .deps import get_context, not_found, service_errors

router = APIRouter(prefix="/api/tracking", tags=["tracking"])


class StartTrackingRequest(BaseModel):
    task_id: str = Field(..., min_length=1)


class LoadSessionsRequest(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class AnnotateSessionRequest(BaseModel):
    note: Optional[str] = None
    session_type: Optional[str] = Field(default=None, max_length=64)


class ConnectivityRequest(BaseModel):
    online: bool


def _session_dict(session: TimeSession, ctx: AppContext) -> dict[str, Any]:
    now = ctx.clock.now()
    data = session.snapshot(now).to_row() if session.is_open else session.to_row()
    data["formatted_duration"] = format_duration(session.elapsed(now))
    return data


def _state(ctx: AppContext) -> dict[str, Any]:
    current = ctx.sessions.current_session
    return {
        "state": ctx.sessions.state.value,
        "active_task_id": ctx.sessions.active_task_id,
        "current_session": _session_dict(current, ctx) if current else None,
        "sync": ctx.sync.status.to_dict(),
    }


@router.get("")
async def get_tracking_state(request: Request) -> dict[str, Any]:
    return _state(get_context(request))


@router.post("/start")
async def start_tracking(request: Request, body: StartTrackingRequest) -> dict[str, Any]:
    """Start tracking a task, closing any other open session first."""
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(body.task_id)
        await ctx.sessions.start_tracking(body.task_id)
    return _state(ctx)


@router.post("/pause")
async def pause_tracking(request: Request) -> dict[str, Any]:
    ctx = get_context(request)
    closed = await ctx.sessions.pause_tracking()
    return {**_state(ctx), "closed_session": _session_dict(closed, ctx) if closed else None}


@router.post("/stop")
async def stop_tracking(request: Request) -> dict[str, Any]:
    ctx = get_context(request)
    closed = await ctx.sessions.stop_tracking()
    return {**_state(ctx), "closed_session": _session_dict(closed, ctx) if closed else None}


@router.delete("/active-task")
async def clear_active_task(request: Request) -> dict[str, Any]:
    ctx = get_context(request)
    ctx.sessions.clear_active_task()
    return _state(ctx)


@router.get("/tasks/{task_id}/time")
async def get_task_time(request: Request, task_id: str) -> dict[str, Any]:
    """Total tracked time for a task, including the running session."""
    ctx = get_context(request)
    seconds = ctx.sessions.get_task_time(task_id)
    return {"task_id": task_id, "seconds": seconds, "formatted": format_duration(seconds)}


@router.get("/sessions")
async def list_sessions(request: Request, task_id: Optional[str] = None) -> list[dict[str, Any]]:
    """Closed sessions known locally, oldest first."""
    ctx = get_context(request)
    return [
        _session_dict(session, ctx)
        for session in ctx.sessions.sessions
        if task_id is None or session.task_id == task_id
    ]


@router.post("/sessions/load")
async def load_sessions(request: Request, body: LoadSessionsRequest) -> list[dict[str, Any]]:
    ctx = get_context(request)
    with service_errors():
        sessions = await ctx.sessions.load_sessions(body.start, body.end)
    return [_session_dict(session, ctx) for session in sessions]


@router.patch("/sessions/{session_id}")
async def annotate_session(
    request: Request, session_id: str, body: AnnotateSessionRequest
) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        session = await ctx.sessions.annotate_session(
            session_id, note=body.note, session_type=body.session_type
        )
    if session is None:
        raise not_found("Session", session_id)
    return _session_dict(session, ctx)


@router.get("/today")
async def todays_sessions(request: Request) -> list[dict[str, Any]]:
    ctx = get_context(request)
    with service_errors():
        sessions = await ctx.sessions.load_today()
    return [_session_dict(session, ctx) for session in sessions]


@router.get("/statistics")
async def time_statistics(request: Request) -> dict[str, Any]:
    ctx = get_context(request)
    stats = calculate_time_statistics(ctx.sessions.sessions, ctx.tasks.tasks)
    return stats.to_dict()


@router.get("/sync")
async def sync_status(request: Request) -> dict[str, Any]:
    ctx = get_context(request)
    return {
        **ctx.sync.status.to_dict(),
        "online": ctx.sync.is_online,
        "paused": ctx.sync.is_paused,
        "last_sync_time": to_iso(ctx.sync.last_sync_time),
    }


@router.post("/sync")
async def sync_now(request: Request) -> dict[str, Any]:
    """Flush queued sessions immediately."""
    ctx = get_context(request)
    if not ctx.sync.is_online:
        raise HTTPException(status_code=503, detail="Sync unavailable while offline")
    success = await ctx.sync.sync_now()
    return {"success": success, **ctx.sync.status.to_dict()}


@router.post("/sync/pause")
async def pause_sync(request: Request) -> dict[str, Any]:
    ctx = get_context(request)
    ctx.sync.pause_sync()
    return {"paused": True, **ctx.sync.status.to_dict()}


@router.post("/sync/resume")
async def resume_sync(request: Request) -> dict[str, Any]:
    ctx = get_context(request)
    ctx.sync.resume_sync()
    return {"paused": False, **ctx.sync.status.to_dict()}


@router.put("/connectivity")
async def set_connectivity(request: Request, body: ConnectivityRequest) -> dict[str, Any]:
    """Report a connectivity change observed by the client."""
    ctx = get_context(request)
    ctx.sync.set_online(body.online)
    return {"online": ctx.sync.is_online, **ctx.sync.status.to_dict()}


__all__ = ["router"]
