"""OpenTelemetry metrics for session boundary detection."""

from session_boundary.metrics.setup import setup_metrics, get_meter, get_health_tracker

__all__ = ["setup_metrics", "get_meter", "get_health_tracker"]
