"""Shared pytest fixtures for voicelink tests.

Network endpoints and audio devices are replaced by in-process fakes.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable, Generator
from typing import Any

import pytest

from voicelink.config import Settings
from voicelink.core.session import EphemeralCredential
from voicelink.exceptions import DeviceAccessDenied, NegotiationFailure
from voicelink.services.credentials.broker import CredentialBroker
from voicelink.services.credentials.upstream import UpstreamResponse
from voicelink.services.realtime.negotiator import SessionNegotiator

TEST_API_KEY = "sk-test-upstream-key-0123456789"


def build_settings(**overrides) -> Settings:
    """Create a Settings object with safe test defaults."""
    base = {
        "openai_api_key": TEST_API_KEY,
        "server_url": "http://broker.test",
        "realtime_url": "https://realtime.test/v1/realtime",
        "negotiation_timeout_seconds": 2.0,
        "refresh_safety_margin_seconds": 10.0,
        "refresh_min_delay_seconds": 5.0,
        "environment": "development",
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Return a factory to build Settings with overrides."""
    return build_settings


@pytest.fixture
def settings(settings_factory: Callable[..., Settings]) -> Settings:
    """Default Settings fixture."""
    return settings_factory()


# =============================================================================
# Upstream (session-minting service) fake
# =============================================================================


class FakeUpstream:
    """Records payloads and answers with a canned response or error."""

    def __init__(self) -> None:
        self.payloads: list[dict[str, Any]] = []
        self.status = 200
        self.body: str | None = None
        self.error: Exception | None = None
        self.closed = False

    def respond(self, status: int, body: Any) -> None:
        self.status = status
        self.body = body if isinstance(body, str) else json.dumps(body)

    async def create_session(self, payload: dict[str, Any]) -> UpstreamResponse:
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        body = self.body
        if body is None:
            body = json.dumps(
                {
                    "id": "sess_123",
                    "client_secret": {
                        "value": "ek_test_ephemeral_secret",
                        "expires_at": time.time() + 60,
                    },
                }
            )
        return UpstreamResponse(status=self.status, body=body)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest.fixture
def test_client(settings_factory, fake_upstream, monkeypatch) -> Generator:
    """FastAPI TestClient with patched settings and a fake upstream."""
    from fastapi.testclient import TestClient

    import voicelink.main
    from voicelink.config import get_settings

    test_settings = settings_factory()

    monkeypatch.setattr(voicelink.main, "get_settings", lambda: test_settings)
    monkeypatch.setattr(
        voicelink.main,
        "CredentialBroker",
        lambda settings: CredentialBroker(settings, upstream=fake_upstream),
    )

    app = voicelink.main.create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings

    with TestClient(app) as client:
        yield client


# =============================================================================
# Realtime client fakes
# =============================================================================


class FakeCapture:
    """Audio capture stand-in tracking enablement and release."""

    def __init__(self) -> None:
        self.enabled = True
        self.closed = False
        self.tracks = ["mic-track"]

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    async def close(self) -> None:
        self.closed = True


class FakeTransport:
    """Peer transport stand-in; connects instantly unless told otherwise."""

    def __init__(self, on_message: Callable[[str], None], events: list[str]) -> None:
        self.on_message = on_message
        self.events = events
        self.tracks: list[Any] = []
        self.sent: list[dict[str, Any]] = []
        self.answer: str | None = None
        self.closed = False
        self.ready_delay = 0.0
        self.fail_ready = False
        self.id = len([e for e in events if e.startswith("open:")]) + 1
        events.append(f"open:{self.id}")

    def add_track(self, track: Any) -> None:
        self.tracks.append(track)

    async def create_offer(self) -> str:
        return f"v=0 offer {self.id}"

    async def apply_answer(self, sdp: str) -> None:
        self.answer = sdp

    async def wait_ready(self) -> None:
        if self.ready_delay:
            await asyncio.sleep(self.ready_delay)
        if self.fail_ready:
            raise NegotiationFailure("ICE failed", body="failed")
        self.events.append(f"ready:{self.id}")

    def send(self, event: dict[str, Any]) -> None:
        self.sent.append(event)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.events.append(f"close:{self.id}")


class FakeSignaling:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self.error: Exception | None = None
        self.delay = 0.0

    async def exchange(self, offer_sdp: str, secret: str, model: str) -> str:
        self.calls.append((offer_sdp, secret, model))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return "v=0 answer"


class FakeCredentials:
    """Credential source echoing model/voice with a configurable lifetime."""

    def __init__(self, ttl_seconds: float = 60.0) -> None:
        self.ttl_seconds = ttl_seconds
        self.requests: list[tuple[str, str, str]] = []
        self.error: Exception | None = None
        self.delay = 0.0

    async def request_credential(
        self, server_url: str, model: str, voice: str
    ) -> EphemeralCredential:
        self.requests.append((server_url, model, voice))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return EphemeralCredential(
            secret=f"ek_{len(self.requests)}",
            expires_at=time.time() + self.ttl_seconds,
            model=model,
            voice=voice,
        )


class RealtimeFakes:
    """Bundle of fakes wired into SessionNegotiator instances."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.credentials = FakeCredentials()
        self.signaling = FakeSignaling()
        self.events: list[str] = []
        self.captures: list[FakeCapture] = []
        self.transports: list[FakeTransport] = []
        self.deny_capture = False
        self.ready_delay = 0.0

    def capture_factory(self) -> FakeCapture:
        if self.deny_capture:
            raise DeviceAccessDenied("Permission denied")
        capture = FakeCapture()
        self.captures.append(capture)
        return capture

    def transport_factory(self, on_message: Callable[[str], None]) -> FakeTransport:
        transport = FakeTransport(on_message, self.events)
        transport.ready_delay = self.ready_delay
        self.transports.append(transport)
        return transport

    def negotiator(
        self,
        on_message: Callable[[str], None] | None = None,
        session_config: Callable[[EphemeralCredential], dict[str, Any]] | None = None,
    ) -> SessionNegotiator:
        return SessionNegotiator(
            self.settings,
            credentials=self.credentials,
            signaling=self.signaling,
            capture_factory=self.capture_factory,
            transport_factory=self.transport_factory,
            on_message=on_message,
            session_config=session_config,
        )


@pytest.fixture
def realtime_fakes(settings: Settings) -> RealtimeFakes:
    return RealtimeFakes(settings)
