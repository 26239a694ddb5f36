"""Job API routes: initiation, processing start, status and health."""

from __future__ import annotations

import logging

import pydantic
from fastapi import APIRouter, Body, Request

from jobrelay.errors import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()


class StartRequest(pydantic.BaseModel):
    request_id: str | None = pydantic.Field(default=None, min_length=1)
    provider: str | None = None


class ExternalStartRequest(pydantic.BaseModel):
    request_id: str = pydantic.Field(min_length=1)


@router.post("/start")
async def start_job(request: Request, req: StartRequest | None = Body(default=None)):
    """Create a pending job and hand back where its worker should report."""
    state = request.app.state
    req = req or StartRequest()

    providers = state.callbacks.providers
    provider = req.provider or providers[0]
    if provider not in providers:
        raise ValidationError("unknown provider")

    job = await state.store.create(req.request_id)
    base_url = state.settings.public_base_url or str(request.base_url)
    return {
        "request_id": job.request_id,
        "callback_url": f"{base_url.rstrip('/')}/callbacks/{provider}",
        "status": job.status.value,
    }


@router.post("/external-start")
async def external_start(req: ExternalStartRequest, request: Request):
    """The worker has begun processing: start the job's deadline."""
    job = await request.app.state.store.mark_processing(req.request_id)
    return {"ok": True, "request_id": job.request_id, "status": job.status.value}


@router.get("/status")
async def job_status(request: Request, request_id: str | None = None):
    if not request_id:
        raise ValidationError("missing request_id")
    return request.app.state.store.get(request_id).to_api()


@router.get("/health")
async def health(request: Request):
    state = request.app.state
    return {
        "status": "ok",
        "jobs": len(state.store),
        "connections": len(state.registry),
        "armed_timeouts": state.scheduler.armed_count,
        "events_published": state.dispatcher.events_published,
        "fallback_broadcasts": state.dispatcher.fallback_broadcasts,
        "callbacks": dict(state.callbacks.counts),
    }
