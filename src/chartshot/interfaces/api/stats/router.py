"""Runtime introspection: pool utilisation and in-flight tasks."""

from __future__ import annotations

from typing import cast

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chartshot.interfaces.app_state import AppState

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("")
async def stats(request: Request) -> JSONResponse:
    state = cast(AppState, request.app.state)
    gs = state.graceful_shutdown
    return JSONResponse(
        content={
            "pool": state.pool.stats(),
            "tasks": await state.coordinator.snapshot(),
            "shutdown": {
                "is_ready": gs.is_ready,
                "is_shutting_down": gs.is_shutting_down,
                "active_requests": gs.active_requests,
            },
        }
    )
