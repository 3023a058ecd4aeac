"""Middleware making up the engine's request pipeline.

create_server installs these in a fixed order; see fabengine.server.app.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
import tempfile
from base64 import b64decode, b64encode
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

import itsdangerous
from fastapi import Request
from fastapi.responses import JSONResponse, Response
from itsdangerous.exc import BadSignature
from starlette.datastructures import MutableHeaders, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from fabengine.engine.secret import scrub_secrets

if TYPE_CHECKING:
    from fabengine.engine.services import UserDirectory

logger = logging.getLogger(__name__)

MAX_LATENCY_SECONDS = 0.5
SESSION_COOKIE = "session"
SESSION_MAX_AGE = 31 * 24 * 60 * 60  # seconds

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def get_params(request: Request) -> dict[str, Any]:
    """Parameters gathered from the query string and request body."""
    return getattr(request.state, "params", {})


def allow_cross_origin(response: Response) -> Response:
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Headers"] = "X-Requested-With"
    return response


class CrossOriginMiddleware(BaseHTTPMiddleware):
    """Allow any origin on every response."""

    async def dispatch(self, request: Request, call_next: Callable):
        return allow_cross_origin(await call_next(request))


class LatencyMiddleware(BaseHTTPMiddleware):
    """Delay every request by a random amount, for testing client loading states."""

    async def dispatch(self, request: Request, call_next: Callable):
        await asyncio.sleep(random.uniform(0, MAX_LATENCY_SECONDS))
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        logger.debug(f"{request.method} {request.url}")
        response = await call_next(request)
        logger.debug(f"{request.method} {request.url.path} -> {response.status_code}")
        return response


class QueryParamsMiddleware(BaseHTTPMiddleware):
    """Map query parameters into request.state.params."""

    async def dispatch(self, request: Request, call_next: Callable):
        params = dict(getattr(request.state, "params", {}))
        params.update(request.query_params)
        request.state.params = params
        return await call_next(request)


class BodyParserMiddleware(BaseHTTPMiddleware):
    """Merge JSON and form bodies into request.state.params.

    Uploaded files are written to the upload directory; their parameter
    value describes the stored file.
    """

    def __init__(self, app: ASGIApp, upload_dir: Path | None = None):
        super().__init__(app)
        self.upload_dir = Path(upload_dir or tempfile.gettempdir())

    async def dispatch(self, request: Request, call_next: Callable):
        params = dict(getattr(request.state, "params", {}))
        if request.method in _BODY_METHODS:
            params.update(await self._parse_body(request))
        request.state.params = params
        return await call_next(request)

    async def _parse_body(self, request: Request) -> dict[str, Any]:
        content_type = request.headers.get("content-type", "")
        # Cache the raw body so the endpoint can read it again
        body = await request.body()
        if not body:
            return {}

        if content_type.startswith("application/json"):
            try:
                data = json.loads(body)
            except ValueError as e:
                logger.debug(f"Ignoring malformed JSON body: {e}")
                return {}
            return data if isinstance(data, dict) else {}

        if content_type.startswith(_FORM_TYPES):
            form = await request.form()
            params: dict[str, Any] = {}
            try:
                for key, value in form.multi_items():
                    if isinstance(value, UploadFile):
                        params[key] = await self._store_upload(value)
                    else:
                        params[key] = value
            finally:
                await form.close()
            return params

        return {}

    async def _store_upload(self, upload: UploadFile) -> dict[str, Any]:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        suffix = Path(upload.filename or "").suffix
        content = await upload.read()
        with tempfile.NamedTemporaryFile(
            dir=self.upload_dir, prefix="upload_", suffix=suffix, delete=False
        ) as handle:
            handle.write(content)
        logger.info(f"Stored upload {upload.filename} at {handle.name}")
        return {
            "filename": upload.filename,
            "path": handle.name,
            "size": len(content),
            "content_type": upload.content_type,
        }


_REPEATED_SLASHES = re.compile(r"/{2,}")


def sanitize_path(path: str) -> str:
    """Collapse repeated slashes and drop a trailing slash."""
    path = _REPEATED_SLASHES.sub("/", path)
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return path


class PathSanitizerMiddleware:
    """Clean up sloppy URLs like /foo////bar/ to /foo/bar before routing."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] in ("http", "websocket"):
            path = sanitize_path(scope["path"])
            if path != scope["path"]:
                scope = dict(scope)
                scope["path"] = path
                scope["raw_path"] = path.encode("utf-8")
        await self.app(scope, receive, send)


class SessionCookieMiddleware:
    """Signed cookie sessions.

    The session dict is serialized into the cookie itself and signed with
    the engine secret. Cookies are readable from client scripts and are
    sent over plain HTTP.
    """

    def __init__(
        self,
        app: ASGIApp,
        secret_key: str,
        session_cookie: str = SESSION_COOKIE,
        max_age: int = SESSION_MAX_AGE,
        path: str = "/",
        same_site: str = "lax",
        http_only: bool = False,
        https_only: bool = False,
    ):
        self.app = app
        self.signer = itsdangerous.TimestampSigner(str(secret_key))
        self.session_cookie = session_cookie
        self.max_age = max_age
        self.path = path
        self.same_site = same_site
        self.http_only = http_only
        self.https_only = https_only

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        connection = HTTPConnection(scope)
        had_session = False
        scope["session"] = {}
        if self.session_cookie in connection.cookies:
            data = connection.cookies[self.session_cookie].encode("utf-8")
            try:
                data = self.signer.unsign(data, max_age=self.max_age)
                scope["session"] = json.loads(b64decode(data))
                had_session = True
            except (BadSignature, ValueError):
                logger.debug("Discarding invalid session cookie")

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                if scope["session"]:
                    data = b64encode(json.dumps(scope["session"]).encode("utf-8"))
                    signed = self.signer.sign(data).decode("utf-8")
                    headers.append("Set-Cookie", self._cookie(signed, self.max_age))
                elif had_session:
                    headers.append("Set-Cookie", self._cookie("null", 0))
            await send(message)

        await self.app(scope, receive, send_wrapper)

    def _cookie(self, value: str, max_age: int) -> str:
        parts = [
            f"{self.session_cookie}={value}",
            f"path={self.path}",
            f"Max-Age={max_age}",
            f"SameSite={self.same_site}",
        ]
        if self.http_only:
            parts.append("HttpOnly")
        if self.https_only:
            parts.append("Secure")
        return "; ".join(parts)


class AuthMiddleware(BaseHTTPMiddleware):
    """Restore the signed-in user from the session.

    Sets request.state.user to the user record, or None for anonymous
    requests. A session naming an unknown user is logged out.
    """

    def __init__(self, app: ASGIApp, users: "UserDirectory | None" = None):
        super().__init__(app)
        self.users = users

    async def dispatch(self, request: Request, call_next: Callable):
        request.state.user = None
        user_id = request.session.get("user_id")
        if user_id is not None:
            user = self.users.get_user(user_id) if self.users else None
            if user is None:
                logger.warning(f"Session refers to unknown user {user_id}")
                request.session.pop("user_id", None)
            else:
                request.state.user = user
        return await call_next(request)


class ErrorBoundaryMiddleware(BaseHTTPMiddleware):
    """Turn request errors raised anywhere in the pipeline into a short JSON answer.

    Installed outermost, so faults in other middleware (body parsing,
    upload storage) are answered the same way as faults in routes.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        try:
            return await call_next(request)
        except StarletteHTTPException as e:
            logger.warning(
                f"{request.method} {request.url.path} failed with {e.status_code}: {e.detail}"
            )
            response = JSONResponse(
                status_code=e.status_code,
                content={"status": "error", "message": str(e.detail)},
                headers=getattr(e, "headers", None),
            )
        except Exception as e:
            logger.exception(f"Unhandled error during {request.method} {request.url.path}")
            response = JSONResponse(
                status_code=500,
                content={"status": "error", "message": str(e) or type(e).__name__},
            )
        return allow_cross_origin(response)


class MaskingFilter(logging.Filter):
    """Log filter that masks session secrets."""

    def filter(self, record: logging.LogRecord) -> bool:
        if hasattr(record, "msg") and isinstance(record.msg, str):
            record.msg = scrub_secrets(record.msg)
        return True


def setup_secure_logging() -> None:
    """Configure logging with secret masking."""
    root_logger = logging.getLogger()
    if not any(isinstance(f, MaskingFilter) for f in root_logger.filters):
        root_logger.addFilter(MaskingFilter())

    for name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        uv_logger = logging.getLogger(name)
        if not any(isinstance(f, MaskingFilter) for f in uv_logger.filters):
            uv_logger.addFilter(MaskingFilter())
