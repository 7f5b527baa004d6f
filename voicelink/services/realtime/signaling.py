"""SDP offer/answer exchange with the realtime endpoint over HTTP."""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp

from voicelink.exceptions import NegotiationFailure
from voicelink.logging_config import get_logger

logger: Any = get_logger(__name__)


class HttpSignaling:
    """POST the local offer to {realtime_url}?model=..., authenticated with the ephemeral secret."""

    def __init__(self, realtime_url: str, timeout_seconds: float = 15.0) -> None:
        self._realtime_url = realtime_url
        self._timeout_seconds = timeout_seconds

    async def exchange(self, offer_sdp: str, secret: str, model: str) -> str:
        headers = {
            "Authorization": f"Bearer {secret}",
            "Content-Type": "application/sdp",
            "OpenAI-Beta": "realtime=v1",
        }
        timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self._realtime_url,
                    params={"model": model},
                    data=offer_sdp.encode(),
                    headers=headers,
                ) as resp:
                    body = await resp.text()
                    if resp.status >= 300:
                        raise NegotiationFailure(
                            f"Realtime negotiation failed: {resp.status} {body[:300]}",
                            status=resp.status,
                            body=body,
                        )
                    return body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NegotiationFailure(
                f"Realtime endpoint unreachable: {type(e).__name__}",
                body=type(e).__name__,
            ) from e
