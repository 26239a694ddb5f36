"""Application factory and entry point.

Wiring (leaf-first):
    SubscriptionRegistry -> BroadcastDispatcher -> TimeoutScheduler
    -> JobStore -> ConnectionManager / CallbackHandler

All state is volatile and scoped to the process; each app instance owns
its own components on ``app.state``.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

import pydantic
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobrelay import __version__
from jobrelay.api import router as api_router
from jobrelay.config import Settings, get_settings
from jobrelay.errors import register_error_handlers
from jobrelay.jobs.store import JobStore
from jobrelay.jobs.timeouts import TimeoutScheduler
from jobrelay.middleware import TRACE_HEADER, configure_logging, register_request_logging
from jobrelay.realtime.dispatcher import BroadcastDispatcher
from jobrelay.realtime.manager import ConnectionManager
from jobrelay.realtime.manager import router as ws_router
from jobrelay.realtime.registry import SubscriptionRegistry
from jobrelay.webhooks.handlers import CallbackHandler
from jobrelay.webhooks.handlers import router as callback_router
from jobrelay.webhooks.verification import SignatureVerifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "jobrelay started: providers=%s timeout=%.0fs",
        app.state.settings.callback_providers,
        app.state.settings.processing_timeout_seconds,
    )
    yield
    await app.state.scheduler.shutdown()
    logger.info("jobrelay stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    registry = SubscriptionRegistry()
    dispatcher = BroadcastDispatcher(registry)
    scheduler = TimeoutScheduler(dispatcher, message=settings.timeout_message)
    store = JobStore(scheduler, timeout_seconds=settings.processing_timeout_seconds)

    app = FastAPI(title="jobrelay", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.dispatcher = dispatcher
    app.state.scheduler = scheduler
    app.state.store = store
    app.state.connections = ConnectionManager(
        registry, dispatcher, store, queue_size=settings.outbound_queue_size
    )
    app.state.callbacks = CallbackHandler(
        SignatureVerifier(settings.shared_secret),
        store,
        dispatcher,
        providers=settings.callback_providers,
    )

    register_request_logging(app)
    register_error_handlers(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[TRACE_HEADER],
    )

    app.include_router(api_router)
    app.include_router(callback_router)
    app.include_router(ws_router)
    return app


def main() -> None:
    configure_logging()
    try:
        settings = get_settings()
    except pydantic.ValidationError as exc:
        for err in exc.errors():
            name = ".".join(str(p) for p in err["loc"]).upper() or "settings"
            if err["type"] == "missing":
                logger.error("Missing %s in environment", name)
            else:
                logger.error("Invalid %s: %s", name, err["msg"])
        sys.exit(1)

    logging.getLogger().setLevel(settings.log_level.upper())
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
