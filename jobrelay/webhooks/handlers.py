"""Callback HTTP handlers: workers report job outcomes here.

Each callback:
1. Reads the raw body (needed for HMAC verification)
2. Authenticates it (signature, or shared-secret fallback)
3. Checks that request_id is present
4. Skips jobs that are already terminal (200 with a note, no broadcast)
5. Applies the outcome in one locked store transition; a reported
   status other than ``timed_out`` completes the job
6. Publishes ``job_completed`` to the request's subscribers

Security contract:
- Never return error details to the caller (info disclosure)
- 401 only for authentication failures, with no state change
- Unexpected faults -> generic 500, traceback logged server-side only
- Log all callback activity for audit trail
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

import pydantic
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from jobrelay.errors import ALREADY_PROCESSED, InternalError, NotFoundError, RelayError, ValidationError
from jobrelay.jobs.models import JobStatus

if TYPE_CHECKING:
    from jobrelay.jobs.store import JobStore
    from jobrelay.realtime.dispatcher import BroadcastDispatcher
    from jobrelay.webhooks.verification import SignatureVerifier

logger = logging.getLogger(__name__)

router = APIRouter()


class CallbackPayload(pydantic.BaseModel):
    """Worker report. Unknown fields (e.g. shared_secret) are ignored.

    ``status`` is advisory: workers may send ``processing`` or omit it,
    and only ``timed_out`` is treated differently from a completion.
    """

    request_id: str = pydantic.Field(min_length=1)
    status: Any = None
    response: Any = None
    analysis: Any = None
    error: Any = None

    model_config = {"extra": "ignore"}

    @property
    def outcome(self) -> JobStatus:
        if self.status == JobStatus.TIMED_OUT.value:
            return JobStatus.TIMED_OUT
        return JobStatus.COMPLETED


class CallbackHandler:
    """Verifier -> Job Store -> Dispatcher for each inbound callback."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        store: JobStore,
        dispatcher: BroadcastDispatcher,
        *,
        providers: list[str],
    ) -> None:
        self._verifier = verifier
        self._store = store
        self._dispatcher = dispatcher
        self.providers = list(providers)
        self.counts: dict[str, int] = {}

    async def handle(self, provider: str, body: bytes, headers: dict[str, str]) -> dict[str, Any]:
        """Process one callback and return the JSON response body.

        Raises:
            NotFoundError: provider is not configured
            AuthenticationError: signature / shared secret rejected
            ValidationError: body is not a JSON object or lacks request_id
            InternalError: anything unexpected
        """
        if provider not in self.providers:
            raise NotFoundError()

        request_id = "unknown"
        try:
            mode = self._verifier.verify(body, headers)
            payload = _parse_payload(body)
            request_id = payload.request_id

            job, applied = await self._store.complete(
                payload.request_id,
                payload.response,
                status=payload.outcome,
                analysis=payload.analysis,
                error=payload.error,
            )
            if not applied:
                self._audit(provider, request_id, "duplicate")
                return dict(ALREADY_PROCESSED)

            self._dispatcher.publish_final(
                job.request_id,
                {
                    "type": "job_completed",
                    "request_id": job.request_id,
                    "status": job.status.value,
                    "response": job.response,
                    "response_markdown": True,
                },
            )
            self._audit(provider, request_id, f"applied auth={mode} status={job.status.value}")
            return {"ok": True}
        except RelayError as exc:
            self._audit(provider, request_id, f"rejected {type(exc).__name__}")
            raise
        except Exception:
            logger.exception("callback error provider=%s request_id=%s", provider, request_id)
            self._audit(provider, request_id, "failed")
            raise InternalError() from None

    def _audit(self, provider: str, request_id: str, outcome: str) -> None:
        self.counts[provider] = self.counts.get(provider, 0) + 1
        logger.info(
            "CALLBACK_AUDIT provider=%s request_id=%s outcome=%s count=%d",
            provider, request_id, outcome, self.counts[provider],
        )


def _parse_payload(body: bytes) -> CallbackPayload:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("invalid JSON body") from None
    if not isinstance(data, dict):
        raise ValidationError("invalid JSON body")
    if not data.get("request_id"):
        raise ValidationError("missing request_id")
    try:
        return CallbackPayload.model_validate(data)
    except pydantic.ValidationError as exc:
        errors = exc.errors()
        loc = errors[0]["loc"] if errors else ()
        raise ValidationError(f"invalid {loc[0] if loc else 'payload'}") from None


@router.post("/callbacks/{provider}")
async def receive_callback(provider: str, request: Request):
    """Authenticated worker callback."""
    start = time.time()
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}

    result = await request.app.state.callbacks.handle(provider, body, headers)

    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Callback processed in %.1fms: %s", elapsed_ms, provider)
    return JSONResponse(result, status_code=200)
