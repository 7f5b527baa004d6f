"""HTTP client for the upstream session-minting endpoint."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from voicelink.exceptions import UpstreamUnavailable
from voicelink.logging_config import get_logger

logger: Any = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class UpstreamResponse:
    """Raw upstream reply; body may contain a secret and must not be logged."""

    status: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class SessionsUpstream(Protocol):
    """Protocol for the remote session-minting service."""

    async def create_session(self, payload: dict[str, Any]) -> UpstreamResponse:
        """POST a session request.

        Raises:
            UpstreamUnavailable: When the service cannot be reached
        """
        ...

    async def close(self) -> None:
        ...


class RealtimeSessionsClient:
    """aiohttp client for POST /v1/realtime/sessions."""

    def __init__(self, url: str, api_key: str, timeout_seconds: float = 10.0) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Lazy initialization of the aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def create_session(self, payload: dict[str, Any]) -> UpstreamResponse:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            async with self.session.post(self._url, json=payload, headers=headers) as resp:
                return UpstreamResponse(status=resp.status, body=await resp.text())
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Upstream sessions endpoint unreachable: {type(e).__name__}")
            raise UpstreamUnavailable(
                "Upstream unreachable", details=type(e).__name__
            ) from e

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
