"""Request logging middleware and logging setup."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
TRACE_HEADER = "X-Trace-Id"

logger = logging.getLogger("jobrelay.request")


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once with a simple, readable format."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One access line per HTTP request, tagged with a trace id.

    The trace id is taken from ``X-Trace-Id`` when the caller supplies one,
    kept on ``request.state.trace_id`` and echoed on the response. Requests
    that end in an unhandled exception are logged at ERROR with status 500.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        trace_id = request.headers.get(TRACE_HEADER) or uuid.uuid4().hex[:12]
        request.state.trace_id = trace_id
        started = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers[TRACE_HEADER] = trace_id
            return response
        finally:
            logger.log(
                logging.ERROR if status >= 500 else logging.INFO,
                "%s %s -> %d %.1fms trace=%s client=%s",
                request.method,
                request.url.path,
                status,
                (time.perf_counter() - started) * 1000.0,
                trace_id,
                request.client.host if request.client else "-",
            )


def register_request_logging(app: FastAPI) -> None:
    app.add_middleware(RequestLogMiddleware)
