"""Client for the broker's POST /session endpoint."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Protocol

import aiohttp

from voicelink.core.session import EphemeralCredential
from voicelink.exceptions import (
    CredentialError,
    MissingClientSecret,
    RateLimitExceeded,
    UpstreamUnavailable,
)
from voicelink.logging_config import get_logger

logger: Any = get_logger(__name__)


class CredentialSource(Protocol):
    """Anything that can hand a client an ephemeral credential."""

    async def request_credential(
        self, server_url: str, model: str, voice: str
    ) -> EphemeralCredential:
        ...


class BrokerClient:
    """Fetch ephemeral credentials from a voicelink broker.

    Broker error codes are mapped back onto the broker's exception types so
    callers see the same error kind on both sides. No retries.
    """

    def __init__(self, timeout_seconds: float = 10.0, default_ttl_seconds: float = 60.0) -> None:
        self._timeout_seconds = timeout_seconds
        self._default_ttl_seconds = default_ttl_seconds

    async def request_credential(
        self, server_url: str, model: str, voice: str
    ) -> EphemeralCredential:
        """POST {model, voice} to {server_url}/session.

        Raises:
            RateLimitExceeded: Broker answered 429
            MissingClientSecret: Broker answered without a client secret
            UpstreamUnavailable: Broker unreachable or any other failure status
        """
        url = f"{server_url.rstrip('/')}/session"
        timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json={"model": model, "voice": voice}) as resp:
                    status = resp.status
                    body = await resp.text()
                    retry_after = resp.headers.get("Retry-After")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamUnavailable(
                f"Broker unreachable at {url}: {type(e).__name__}"
            ) from e

        data = _parse_json(body)
        if status >= 400:
            raise _error_from_response(status, data, body, retry_after)

        secret = data.get("client_secret")
        if not isinstance(secret, str) or not secret:
            raise MissingClientSecret("Missing client_secret")

        expires_at = data.get("expires_at")
        if not isinstance(expires_at, (int, float)):
            expires_at = time.time() + self._default_ttl_seconds

        return EphemeralCredential(
            secret=secret,
            expires_at=float(expires_at),
            model=data.get("model") or model,
            voice=data.get("voice") or voice,
        )


def _parse_json(body: str) -> dict[str, Any]:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_from_response(
    status: int, data: dict[str, Any], body: str, retry_after: str | None
) -> CredentialError:
    code = data.get("error")
    details = data.get("details")
    if status == 429 or code == RateLimitExceeded.code:
        try:
            wait = float(retry_after) if retry_after else 60.0
        except ValueError:
            wait = 60.0
        return RateLimitExceeded("Rate limit exceeded", retry_after=wait)
    if code == MissingClientSecret.code:
        return MissingClientSecret("Broker reported missing_client_secret")
    return UpstreamUnavailable(
        f"Session request failed: {status} {code or body[:200]}",
        status=status,
        details=details if isinstance(details, str) else None,
    )
