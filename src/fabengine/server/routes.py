"""HTTP routes served by the engine.

Responses use a small envelope: ``{"status": "success", "data": ...}``
on success, ``{"status": "fail", "data": ...}`` for requests that name
something that does not exist, and ``{"status": "error", "message": ...}``
for errors.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from fabengine import __version__
from fabengine.engine.engine import set_time
from fabengine.server.middleware import get_params

if TYPE_CHECKING:
    from fabengine.engine.services import Dashboard, Services
    from fabengine.engine.state import EngineState

logger = logging.getLogger(__name__)

router = APIRouter()


def _state(request: Request) -> "EngineState":
    return request.app.state.engine_state


def _services(request: Request) -> "Services":
    return request.app.state.services


def _dashboard(request: Request) -> "Dashboard":
    dashboard = _services(request).dashboard
    if dashboard is None:
        raise HTTPException(status_code=503, detail="Dashboard not available")
    return dashboard


def success(data: Any) -> dict[str, Any]:
    return {"status": "success", "data": data}


def error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"status": "error", "message": message}
    )


@router.get("/")
async def root(request: Request):
    """Root endpoint."""
    return {
        "name": "fabengine",
        "engine_version": __version__,
        "version": _services(request).config.engine.get("version"),
    }


@router.get("/info")
async def get_info(request: Request):
    return success({"info": _state(request).info()})


@router.post("/time")
async def post_time(request: Request):
    """Set the system clock. Only the first request after boot applies."""
    utc = get_params(request).get("utc")
    if utc is None:
        return error("No 'utc' parameter supplied")
    try:
        applied = await asyncio.to_thread(set_time, _state(request), utc)
    except ValueError as e:
        return error(f"Invalid time: {e}")
    return success({"applied": applied})


@router.get("/status")
async def get_status(request: Request):
    state = _state(request)
    machine = state.machine
    return success(
        {
            "status": {
                "connected": state.machine_connected,
                "machine": {"ip": machine.ip, "port": machine.port} if machine else None,
                "user": request.state.user,
            }
        }
    )


@router.get("/apps")
async def get_apps(request: Request):
    return success({"apps": _dashboard(request).get_app_list()})


@router.get("/apps/{app_id}/files")
async def list_app_files(app_id: str, request: Request):
    dashboard = _dashboard(request)
    if app_id not in dashboard.get_app_index():
        return JSONResponse(status_code=404, content={"status": "fail", "data": {"app": app_id}})
    return success({"files": dashboard.get_app_files(app_id)})


@router.get("/apps/{app_id}")
async def get_app(app_id: str, request: Request):
    app = _dashboard(request).get_app_index().get(app_id)
    if app is None:
        return JSONResponse(status_code=404, content={"status": "fail", "data": {"app": app_id}})
    return success({"app": app})
