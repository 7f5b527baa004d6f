"""Ephemeral credential minting (broker) and retrieval (client)."""

from voicelink.services.credentials.broker import CredentialBroker, extract_client_secret
from voicelink.services.credentials.client import BrokerClient, CredentialSource
from voicelink.services.credentials.rate_limiter import (
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RateLimitBucket,
    RateLimitStore,
)
from voicelink.services.credentials.upstream import (
    RealtimeSessionsClient,
    SessionsUpstream,
    UpstreamResponse,
)

__all__ = [
    # Broker
    "CredentialBroker",
    "extract_client_secret",
    "RealtimeSessionsClient",
    "SessionsUpstream",
    "UpstreamResponse",
    # Rate limiting
    "FixedWindowRateLimiter",
    "InMemoryRateLimitStore",
    "RateLimitBucket",
    "RateLimitStore",
    # Client
    "BrokerClient",
    "CredentialSource",
]
