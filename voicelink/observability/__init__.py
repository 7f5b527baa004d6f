"""Observability module for metrics."""

from voicelink.observability.metrics import (
    CREDENTIALS_ISSUED,
    RATE_LIMIT_REJECTIONS,
    SESSION_CONNECTS,
    SESSION_REFRESHES,
    TOOL_CALLS,
    get_content_type,
    get_metrics,
)

__all__ = [
    "CREDENTIALS_ISSUED",
    "RATE_LIMIT_REJECTIONS",
    "SESSION_CONNECTS",
    "SESSION_REFRESHES",
    "TOOL_CALLS",
    "get_content_type",
    "get_metrics",
]
