"""Error taxonomy and FastAPI exception handlers.

Every error is terminal for a single request/response exchange. Handlers
render ``{"error": <message>}`` and never include internals; unexpected
faults are logged server-side with their traceback.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class RelayError(Exception):
    """Base exception for errors surfaced to HTTP callers."""

    status_code = 500
    message = "internal error"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class AuthenticationError(RelayError):
    """Bad or missing signature or shared secret."""

    status_code = 401
    message = "unauthorized"


class ValidationError(RelayError):
    """Missing or malformed required fields."""

    status_code = 400
    message = "invalid request"


class NotFoundError(RelayError):
    """Unknown request id."""

    status_code = 404
    message = "not found"


class InternalError(RelayError):
    """Unexpected fault. The message is always generic."""

    status_code = 500
    message = "internal error"


class AlreadyTerminalError(RelayError):
    """The job is completed or timed out; nothing was changed.

    Not a failure from the caller's point of view: rendered as an
    idempotent 200 with a note.
    """

    status_code = 200
    message = "already processed"

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__()


ALREADY_PROCESSED = {"ok": True, "note": AlreadyTerminalError.message}


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AlreadyTerminalError)
    async def already_terminal_handler(request: Request, exc: AlreadyTerminalError):
        logger.info("Already terminal path=%s request_id=%s", request.url.path, exc.request_id)
        return JSONResponse(status_code=200, content=dict(ALREADY_PROCESSED))

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        logger.warning(
            "%s path=%s status=%s message=%r",
            type(exc).__name__, request.url.path, exc.status_code, exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(HTTPException)
    async def http_exc_handler(request: Request, exc: HTTPException):
        logger.warning(
            "HTTPException path=%s status=%s detail=%r",
            request.url.path, exc.status_code, exc.detail,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail) if exc.detail else "HTTP error"},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        logger.warning("ValidationError path=%s errors=%s", request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"error": _first_error(exc.errors())})

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error at path=%s", request.url.path)
        return JSONResponse(status_code=500, content={"error": InternalError.message})


def _first_error(errors) -> str:
    """Short human-readable summary of a pydantic error list."""
    if not errors:
        return ValidationError.message
    err = errors[0]
    loc = err.get("loc") or ()
    field = next((str(p) for p in reversed(loc) if p not in ("body", "query")), "")
    if err.get("type") == "missing" and field:
        return f"missing {field}"
    if field:
        return f"invalid {field}"
    return ValidationError.message
