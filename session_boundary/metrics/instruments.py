"""Metric instruments for session boundary detection."""

import time
from contextlib import contextmanager
from typing import Optional

from opentelemetry import metrics

from session_boundary.metrics.setup import get_meter


class MetricInstruments:
    """
    Centralized metric instruments for detection.

    SLI Focus:
        - p95 per-event latency (histogram)
        - boundary and signal rates (counters)
        - error rate (counter)
    """

    def __init__(self, meter: Optional[metrics.Meter] = None):
        meter = meter or get_meter()

        self.event_duration = meter.create_histogram(
            name="session_boundary.event.duration",
            description="Per-event processing latency in milliseconds",
            unit="ms",
        )

        self.events_total = meter.create_counter(
            name="session_boundary.events.total",
            description="Events processed by type",
            unit="1",
        )

        self.boundaries_total = meter.create_counter(
            name="session_boundary.boundaries.total",
            description="Boundaries detected by reason",
            unit="1",
        )

        self.signals_total = meter.create_counter(
            name="session_boundary.signals.total",
            description="Detection signals emitted by type",
            unit="1",
        )

        self.errors_total = meter.create_counter(
            name="session_boundary.errors.total",
            description="Failed event processing by operation and error type",
            unit="1",
        )

    @contextmanager
    def track_event_processing(self, event_type: str):
        """
        Track per-event processing latency.

        Args:
            event_type: Browsing event type value

        Yields:
            None

        Example:
            with instruments.track_event_processing(event.type.value):
                boundary = engine.detect_session_boundary(event)
        """
        start = time.perf_counter()
        error_occurred = False

        try:
            yield
        except Exception as e:
            error_occurred = True
            self.record_error("process_event", e)
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self.event_duration.record(duration_ms, {"event_type": event_type})
            if not error_occurred:
                self.events_total.add(1, {"event_type": event_type})

    def record_boundary(self, reason: str):
        self.boundaries_total.add(1, {"reason": reason})

    def record_signals(self, signal_types: list[str]):
        for signal_type in signal_types:
            self.signals_total.add(1, {"signal_type": signal_type})

    def record_error(self, operation: str, error: Exception):
        self.errors_total.add(1, {"operation": operation, "error_type": type(error).__name__})


# Singleton instance
_instruments: Optional[MetricInstruments] = None


def get_instruments() -> MetricInstruments:
    """Get singleton MetricInstruments instance."""
    global _instruments

    if _instruments is None:
        _instruments = MetricInstruments()

    return _instruments
