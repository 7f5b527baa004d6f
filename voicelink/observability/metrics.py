"""Prometheus metrics for voicelink.

Covers the credential broker (server) and the realtime session lifecycle
(client process).
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

# =============================================================================
# Broker
# =============================================================================

CREDENTIALS_ISSUED = Counter(
    "voicelink_credentials_issued_total",
    "Ephemeral credentials minted",
    ["model"],
)

RATE_LIMIT_REJECTIONS = Counter(
    "voicelink_rate_limit_rejections_total",
    "Total rate limit rejections",
    ["service"],
)

UPSTREAM_FAILURES = Counter(
    "voicelink_upstream_failures_total",
    "Failed session-minting calls by error code",
    ["code"],
)

UPSTREAM_LATENCY = Histogram(
    "voicelink_upstream_latency_seconds",
    "Session-minting call latency",
    buckets=[0.05, 0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0],
)

# =============================================================================
# Client session lifecycle
# =============================================================================

SESSION_CONNECTS = Counter(
    "voicelink_session_connects_total",
    "Session connect attempts by outcome",
    ["outcome"],
)

SESSION_REFRESHES = Counter(
    "voicelink_session_refreshes_total",
    "Transparent credential refreshes",
)

NEGOTIATION_LATENCY = Histogram(
    "voicelink_negotiation_seconds",
    "Credential request through transport readiness",
    buckets=[0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0, 10.0],
)

TOOL_CALLS = Counter(
    "voicelink_tool_calls_total",
    "Tool invocations by tool and outcome",
    ["tool", "outcome"],
)

MALFORMED_EVENTS = Counter(
    "voicelink_malformed_events_total",
    "Inbound payloads dropped as malformed",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output.

    Returns:
        Metrics in Prometheus text exposition format.
    """
    return generate_latest()


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
