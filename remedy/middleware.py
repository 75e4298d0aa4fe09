"""ASGI middleware: request tracing and last-resort error mapping.

Routes translate the errors they expect into ``HTTPException``. Anything
that escapes a route ends up in :class:`ErrorHandlingMiddleware`, which maps
the service's own exception families to a status code and hides every other
failure behind a generic 500.
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import status
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from remedy.engine.state_machine import InvalidTransitionError
from remedy.providers.sandbox.base import SandboxUnreachableError
from remedy.store.base import RecordNotFoundError

logger = logging.getLogger("remedy.middleware")

REQUEST_ID_HEADER = b"x-request-id"

# Checked in order; the first matching class wins.
_EXCEPTION_STATUS: tuple[tuple[type[Exception], int, str], ...] = (
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND, "Not Found"),
    (InvalidTransitionError, status.HTTP_409_CONFLICT, "Conflict"),
    (SandboxUnreachableError, status.HTTP_503_SERVICE_UNAVAILABLE, "Sandbox Unavailable"),
    (ValueError, status.HTTP_400_BAD_REQUEST, "Validation Error"),
)


def _request_id(scope: Scope) -> str:
    for name, value in scope.get("headers", []):
        if name == REQUEST_ID_HEADER:
            return value.decode("latin-1")
    return uuid.uuid4().hex[:12]


class LoggingMiddleware:
    """Logs each HTTP request with a request id and echoes the id back."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _request_id(scope)
        scope.setdefault("state", {})["request_id"] = request_id
        method, path = scope.get("method", ""), scope.get("path", "")
        started = time.perf_counter()
        status_code = 0

        async def send_with_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                headers = list(message.get("headers", []))
                headers.append((REQUEST_ID_HEADER, request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_id)
        finally:
            logger.info(
                "[%s] %s %s -> %d (%.1f ms)",
                request_id, method, path, status_code,
                (time.perf_counter() - started) * 1000,
            )


class ErrorHandlingMiddleware:
    """Turns exceptions that escaped a route into JSON error bodies."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def track_start(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, track_start)
        except Exception as exc:
            if response_started:
                raise
            await self._error_response(exc)(scope, receive, send)

    @staticmethod
    def _error_response(exc: Exception) -> JSONResponse:
        for exc_type, code, title in _EXCEPTION_STATUS:
            if isinstance(exc, exc_type):
                logger.warning("%s: %s", title, exc)
                return JSONResponse(status_code=code, content={"error": title, "detail": str(exc)})
        # PromotionError and store failures land here; their text stays in the log
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal Server Error", "detail": "An unexpected error occurred"},
        )
