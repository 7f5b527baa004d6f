"""Credential broker: mints ephemeral realtime credentials for clients.

The server's long-lived key is used only for the upstream call and is never
returned to callers or written to logs.
"""

from __future__ import annotations

import json
import time
from typing import Any

from voicelink.config import Settings, get_settings
from voicelink.core.session import EphemeralCredential
from voicelink.exceptions import ConfigError, MissingClientSecret, UpstreamUnavailable
from voicelink.logging_config import get_logger, redact_secret
from voicelink.observability.metrics import (
    CREDENTIALS_ISSUED,
    UPSTREAM_FAILURES,
    UPSTREAM_LATENCY,
)
from voicelink.services.credentials.rate_limiter import FixedWindowRateLimiter
from voicelink.services.credentials.upstream import (
    RealtimeSessionsClient,
    SessionsUpstream,
    UpstreamResponse,
)

logger: Any = get_logger(__name__)

# Upstream error bodies are cut to this length before reaching clients
MAX_DETAIL_CHARS = 300


class CredentialBroker:
    """Rate-limited front for the upstream session-minting service."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        upstream: SessionsUpstream | None = None,
        rate_limiter: FixedWindowRateLimiter | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        api_key = self._settings.openai_api_key
        if api_key is None or not api_key.get_secret_value():
            raise ConfigError("Server not configured: missing OPENAI_API_KEY")
        self._api_key = api_key.get_secret_value()

        self._upstream = upstream or RealtimeSessionsClient(
            url=self._settings.realtime_sessions_url,
            api_key=self._api_key,
            timeout_seconds=self._settings.upstream_timeout_seconds,
        )
        self._rate_limiter = rate_limiter or FixedWindowRateLimiter(
            max_requests=self._settings.rate_limit_max_requests,
            window_seconds=self._settings.rate_limit_window_seconds,
        )

    @property
    def rate_limiter(self) -> FixedWindowRateLimiter:
        return self._rate_limiter

    async def request_credential(
        self,
        model: str,
        voice: str,
        caller_identity: str,
    ) -> EphemeralCredential:
        """Mint a one-time credential for caller_identity.

        Args:
            model: Realtime model the client will negotiate with
            voice: Output voice for the session
            caller_identity: Rate limit key (client IP)

        Returns:
            EphemeralCredential with secret and expiry

        Raises:
            RateLimitExceeded: Caller is over quota for the current window
            UpstreamUnavailable: Upstream unreachable or returned non-2xx
            MissingClientSecret: Upstream succeeded without a client secret
        """
        await self._rate_limiter.check(caller_identity)

        payload = {"model": model, "voice": voice, "modalities": ["text", "audio"]}
        start = time.perf_counter()
        try:
            response = await self._upstream.create_session(payload)
        except UpstreamUnavailable:
            UPSTREAM_FAILURES.labels(code="unreachable").inc()
            raise
        finally:
            UPSTREAM_LATENCY.observe(time.perf_counter() - start)

        logger.info(f"[sessions] status {response.status} model={model} voice={voice}")

        if not response.ok:
            details = self._redact(response.body)[:MAX_DETAIL_CHARS]
            logger.warning(f"[sessions] upstream rejected request: {details[:200]}")
            UPSTREAM_FAILURES.labels(code=str(response.status)).inc()
            raise UpstreamUnavailable(
                f"Upstream returned {response.status}",
                status=response.status,
                details=details,
            )

        credential = self._parse_credential(response, model, voice)
        CREDENTIALS_ISSUED.labels(model=model).inc()
        logger.info(
            f"Issued credential for {caller_identity} "
            f"(expires in {credential.seconds_remaining():.0f}s)"
        )
        return credential

    def _parse_credential(
        self, response: UpstreamResponse, model: str, voice: str
    ) -> EphemeralCredential:
        try:
            data = json.loads(response.body)
        except json.JSONDecodeError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        secret, expires_at = extract_client_secret(data)
        if not secret:
            UPSTREAM_FAILURES.labels(code=MissingClientSecret.code).inc()
            logger.error("[sessions] upstream response has no client_secret")
            raise MissingClientSecret("Upstream response missing client_secret")

        if expires_at is None:
            expires_at = time.time() + self._settings.credential_ttl_seconds

        return EphemeralCredential(
            secret=secret, expires_at=expires_at, model=model, voice=voice
        )

    def _redact(self, text: str) -> str:
        return redact_secret(text, self._api_key)

    async def close(self) -> None:
        await self._upstream.close()


def extract_client_secret(data: dict[str, Any]) -> tuple[str | None, float | None]:
    """Pull (secret, expires_at) from a sessions response.

    Accepts `client_secret` as a string, as `{value, expires_at}`, or a
    top-level `value`.
    """
    raw = data.get("client_secret")
    expires_at: float | None = None

    if isinstance(raw, str):
        secret: str | None = raw
    elif isinstance(raw, dict):
        secret = raw.get("value")
        expires_at = raw.get("expires_at")
    else:
        secret = data.get("value")

    if expires_at is None:
        expires_at = data.get("expires_at")

    if not isinstance(secret, str) or not secret:
        secret = None
    if not isinstance(expires_at, (int, float)) or isinstance(expires_at, bool):
        expires_at = None
    return secret, float(expires_at) if expires_at is not None else None
