"""Tests for Prometheus metrics."""

from __future__ import annotations

from voicelink.observability.metrics import (
    SESSION_CONNECTS,
    TOOL_CALLS,
    get_content_type,
    get_metrics,
)


class TestMetricsModule:
    """Tests for metrics module functions."""

    def test_get_metrics_returns_bytes(self) -> None:
        """Test get_metrics returns bytes."""
        result = get_metrics()
        assert isinstance(result, bytes)

    def test_get_content_type(self) -> None:
        """Test get_content_type returns valid content type."""
        content_type = get_content_type()
        assert "text/plain" in content_type or "text/openmetrics" in content_type

    def test_labelled_counters_exported(self) -> None:
        """Test session and tool counters appear once incremented."""
        SESSION_CONNECTS.labels(outcome="connected").inc()
        TOOL_CALLS.labels(tool="getTime", outcome="ok").inc()

        output = get_metrics().decode("utf-8")
        assert 'voicelink_session_connects_total{outcome="connected"}' in output
        assert 'voicelink_tool_calls_total{tool="getTime",outcome="ok"}' in output
