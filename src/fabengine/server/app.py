"""Assembly of the engine's FastAPI server.

The server is built by the last boot stage, after configuration has been
applied and the session secret provisioned. Middleware order matters:
Starlette runs the last-added middleware first, so they are added here
innermost first.

Request pipeline, outermost first:
    1. Error boundary (JSON error envelope, cross-origin headers kept)
    2. Cross-origin headers
    3. Artificial latency (debug "slow" mode only)
    4. Request logging (debug mode only)
    5. Query string parameters
    6. Body and upload parameters
    7. Path sanitization
    8. Session cookie
    9. Session restoration (request.state.user)
    10. gzip compression
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware

from fabengine import __version__
from fabengine.server.middleware import (
    AuthMiddleware,
    BodyParserMiddleware,
    CrossOriginMiddleware,
    ErrorBoundaryMiddleware,
    LatencyMiddleware,
    PathSanitizerMiddleware,
    QueryParamsMiddleware,
    RequestLoggingMiddleware,
    SessionCookieMiddleware,
    setup_secure_logging,
)
from fabengine.server.routes import router

if TYPE_CHECKING:
    from fabengine.config import Settings
    from fabengine.engine.config_store import ConfigStore
    from fabengine.engine.services import Services
    from fabengine.engine.state import EngineState

logger = logging.getLogger(__name__)


def versioned_redirect_target(path: str, current_version: str | None, query: str = "") -> str:
    """Where to send a request for a path that matched nothing.

    The engine URL scheme carries the version token in the first path
    segment. A stale token is replaced by the current one, preserving
    the rest of the URL. A path that already carries the current token
    points at a resource that does not exist, so it goes to the root.
    """
    if not current_version:
        return "/"
    segments = path.split("/")
    if len(segments) > 1 and segments[1] == current_version:
        return "/"
    segments[1:2] = [current_version]
    target = "/".join(segments)
    if query:
        target = f"{target}?{query}"
    return target


def _install_error_handlers(app: FastAPI, engine_config: "ConfigStore") -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            target = versioned_redirect_target(
                request.url.path, engine_config.get("version"), request.url.query
            )
            logger.debug(f"Not found: {request.url.path}, redirecting to {target}")
            return RedirectResponse(target, status_code=302)
        message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": "error", "message": message},
            headers=getattr(exc, "headers", None),
        )


def create_server(
    state: "EngineState",
    services: "Services",
    settings: "Settings",
) -> FastAPI:
    """Build the engine server.

    Args:
        state: Engine state; must already hold the session secret
        services: Engine collaborators (config, users, dashboard)
        settings: Process settings (debug flags, upload directory)

    Returns:
        Configured FastAPI application, not yet listening
    """
    if not state.auth_secret:
        raise RuntimeError("Cannot assemble the server without a session secret")

    setup_secure_logging()
    config = services.config

    app = FastAPI(
        title="fabengine",
        description="CNC controller host engine",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )
    app.state.engine_state = state
    app.state.services = services
    app.state.settings = settings

    logger.info("Enabling gzip for transport...")
    app.add_middleware(GZipMiddleware, minimum_size=500)

    logger.info("Configuring authentication...")
    app.add_middleware(AuthMiddleware, users=services.users)
    app.add_middleware(SessionCookieMiddleware, secret_key=state.auth_secret)

    app.add_middleware(PathSanitizerMiddleware)

    upload_dir = settings.upload_dir or config.engine.get("upload_dir")
    logger.info(f"Configuring upload directory ({upload_dir or 'system temp'})...")
    app.add_middleware(BodyParserMiddleware, upload_dir=Path(upload_dir) if upload_dir else None)

    app.add_middleware(QueryParamsMiddleware)

    if settings.debug:
        app.add_middleware(RequestLoggingMiddleware)

    if settings.latency_enabled:
        logger.warning("Configuring deliberate latency for testing...")
        app.add_middleware(LatencyMiddleware)

    logger.info("Configuring cross-origin requests...")
    app.add_middleware(CrossOriginMiddleware)

    app.add_middleware(ErrorBoundaryMiddleware)

    _install_error_handlers(app, config.engine)

    logger.info("Loading routes...")
    app.include_router(router)
    app.mount(
        "/approot",
        StaticFiles(directory=config.get_data_dir("approot"), check_dir=False),
        name="approot",
    )

    return app
