"""Ephemeral session credential endpoint.

POST /session exchanges {model, voice} for a one-time client secret.
Errors use stable JSON codes:
- 429 rate_limit_exceeded
- 500 / upstream status sessions_failed
- 500 missing_client_secret
"""

from __future__ import annotations

import math
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from voicelink.config import Settings, get_settings
from voicelink.exceptions import CredentialError, RateLimitExceeded
from voicelink.logging_config import get_logger
from voicelink.services.credentials.broker import CredentialBroker

router = APIRouter()
logger: Any = get_logger(__name__)


class SessionRequest(BaseModel):
    """Session request body; missing fields fall back to configured defaults."""

    model: str | None = None
    voice: str | None = None


class SessionResponse(BaseModel):
    """Issued credential. The only place a client secret leaves the server."""

    client_secret: str
    model: str
    voice: str
    expires_at: float


def get_broker(request: Request) -> CredentialBroker:
    """Dependency injection for the broker built at startup."""
    broker: CredentialBroker = request.app.state.broker
    return broker


def caller_identity(request: Request, settings: Settings) -> str:
    """Rate limit key for the caller: client IP, or X-Forwarded-For behind a proxy."""
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@router.post("/session", response_model=SessionResponse)
async def create_session(
    request: Request,
    body: SessionRequest | None = None,
    broker: CredentialBroker = Depends(get_broker),
    settings: Settings = Depends(get_settings),
) -> Any:
    """Mint an ephemeral realtime credential for the caller."""
    body = body or SessionRequest()
    model = body.model or settings.default_model
    voice = body.voice or settings.default_voice
    identity = caller_identity(request, settings)

    try:
        credential = await broker.request_credential(model, voice, identity)
    except RateLimitExceeded as e:
        return JSONResponse(
            status_code=e.http_status,
            content={"error": e.code},
            headers={"Retry-After": str(math.ceil(e.retry_after))},
        )
    except CredentialError as e:
        return JSONResponse(status_code=e.http_status, content=e.to_payload())
    except Exception as e:
        logger.exception(f"Unexpected error minting session: {type(e).__name__}")
        return JSONResponse(
            status_code=500,
            content={"error": "unexpected_error", "details": type(e).__name__},
        )

    return SessionResponse(
        client_secret=credential.secret,
        model=credential.model,
        voice=credential.voice,
        expires_at=credential.expires_at,
    )
