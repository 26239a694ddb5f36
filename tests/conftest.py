"""Shared fixtures for the jobrelay test suite."""

from __future__ import annotations

import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from jobrelay.config import Settings
from jobrelay.serve import create_app
from jobrelay.webhooks.verification import compute_signature

SECRET = "test-shared-secret"


class FakeConnection:
    """Stands in for a realtime Connection; records what it was sent."""

    def __init__(self, name: str = "conn", *, open: bool = True) -> None:
        self.id = name
        self.user_id: str | None = None
        self.messages: list[dict[str, Any]] = []
        self._open = open

    def __repr__(self) -> str:
        return f"FakeConnection({self.id!r})"

    @property
    def is_open(self) -> bool:
        return self._open

    def send(self, message: str) -> bool:
        if not self._open:
            return False
        self.messages.append(json.loads(message))
        return True

    def close(self) -> None:
        self._open = False


@pytest.fixture()
def make_connection():
    """Factory for FakeConnection objects."""

    def _make(name: str = "conn", *, open: bool = True) -> FakeConnection:
        return FakeConnection(name, open=open)

    return _make


@pytest.fixture()
def shared_secret() -> str:
    return SECRET


@pytest.fixture()
def settings() -> Settings:
    """Settings with a short deadline so timeouts fire quickly in tests."""
    return Settings(
        shared_secret=SECRET,
        processing_timeout_seconds=0.3,
        _env_file=None,
    )


@pytest.fixture()
def app(settings):
    return create_app(settings)


@pytest.fixture()
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def sign():
    """Build an ``X-Signature`` header value for a raw body."""

    def _sign(body: bytes, secret: str = SECRET) -> str:
        return f"sha256={compute_signature(body, secret)}"

    return _sign


@pytest.fixture()
def post_callback(client, sign):
    """POST a signed JSON callback; returns the response."""

    def _post(payload: dict[str, Any], provider: str = "fireworks"):
        body = json.dumps(payload).encode()
        return client.post(
            f"/callbacks/{provider}",
            content=body,
            headers={"X-Signature": sign(body), "Content-Type": "application/json"},
        )

    return _post
