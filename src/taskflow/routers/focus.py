"""REST API endpoints for focus mode."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from ..schemas.focus import FocusSettings, FocusSettingsUpdate
from .deps import get_context, service_errors

router = APIRouter(prefix="/api/focus", tags=["focus"])


class EnterFocusRequest(BaseModel):
    task_id: str = Field(..., min_length=1)


def _state(request: Request) -> dict[str, Any]:
    ctx = get_context(request)
    current = ctx.focus.current
    return {
        "current": current.to_dict() if current else None,
        "settings": ctx.focus.settings.model_dump(),
        "history": [session.to_dict() for session in ctx.focus.history],
        "tracking": ctx.sessions.state.value,
    }


@router.get("")
async def get_focus_state(request: Request) -> dict[str, Any]:
    return _state(request)


@router.post("/enter")
async def enter_focus(request: Request, body: EnterFocusRequest) -> dict[str, Any]:
    """Focus on a task, starting its timer when ``auto_start_timer`` is on."""
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(body.task_id)
    await ctx.focus.enter(body.task_id)
    return _state(request)


@router.post("/exit")
async def exit_focus(request: Request) -> dict[str, Any]:
    get_context(request).focus.exit()
    return _state(request)


@router.post("/interruptions")
async def add_interruption(request: Request) -> dict[str, Any]:
    get_context(request).focus.add_interruption()
    return _state(request)


@router.get("/settings", response_model=FocusSettings)
async def get_focus_settings(request: Request) -> FocusSettings:
    return get_context(request).focus.settings


@router.patch("/settings", response_model=FocusSettings)
async def update_focus_settings(
    request: Request, update: FocusSettingsUpdate
) -> FocusSettings:
    return get_context(request).focus.update_settings(update)


__all__ = ["router"]
