"""
Pytest configuration and shared fixtures for session boundary tests.
"""

import itertools
from datetime import datetime

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from session_boundary.detection.domains import DomainClassifier
from session_boundary.detection.engine import SessionDetectionEngine
from session_boundary.metrics.instruments import MetricInstruments
from session_boundary.models.events import BrowsingEvent, EventType
from session_boundary.prediction.predictor import BoundaryPredictor
from session_boundary.utils.config_validator import DetectionConfig

MINUTE = 60_000


@pytest.fixture
def base_time():
    """Tuesday 14:00 local time, in ms: working hours, no transition hour."""
    return datetime(2024, 3, 5, 14, 0).timestamp() * 1000


@pytest.fixture
def make_event():
    """Factory for BrowsingEvents with sequential ids."""
    counter = itertools.count(1)

    def _make_event(event_type, timestamp, url=None, **kwargs):
        return BrowsingEvent(
            id=f"evt_{next(counter)}",
            timestamp=timestamp,
            type=EventType(event_type),
            url=url,
            tab_id=kwargs.pop("tab_id", 1),
            window_id=kwargs.pop("window_id", 1),
            **kwargs,
        )

    return _make_event


@pytest.fixture
def navigation_stream(make_event, base_time):
    """Two navigations six minutes apart on sibling subdomains."""
    return [
        make_event("navigation_completed", base_time, "https://work.example.com/dashboard"),
        make_event("navigation_completed", base_time + 6 * MINUTE, "https://video.example.com/watch"),
    ]


@pytest.fixture
def idle_stream(make_event, base_time):
    """Idle for twenty minutes, then back to a tab."""
    return [
        make_event("idle_start", base_time),
        make_event("idle_end", base_time + 20 * MINUTE),
        make_event("tab_activated", base_time + 20 * MINUTE + 1000),
    ]


@pytest.fixture
def scroll_stream(make_event, base_time):
    """Fifty scroll events 100ms apart."""
    return [
        make_event("scroll_event", base_time + i * 100, "https://docs.python.org/3/library/")
        for i in range(50)
    ]


@pytest.fixture
def detection_config():
    return DetectionConfig(session_gap_threshold=120_000, idle_threshold=300_000)


@pytest.fixture
def classifier():
    return DomainClassifier()


@pytest.fixture
def engine(detection_config, classifier):
    return SessionDetectionEngine(detection_config, classifier)


@pytest.fixture
def predictor(detection_config, classifier):
    return BoundaryPredictor(detection_config, classifier)


@pytest.fixture
def metric_reader():
    """In-memory OpenTelemetry reader for instrument assertions."""
    return InMemoryMetricReader()


@pytest.fixture
def instruments(metric_reader):
    provider = MeterProvider(metric_readers=[metric_reader])
    return MetricInstruments(meter=provider.get_meter("session_boundary.tests"))


@pytest.fixture
def collected_metrics(metric_reader):
    """Return {metric name: [data points]} from the in-memory reader."""

    def _collect():
        data = metric_reader.get_metrics_data()
        points = {}
        if data is None:
            return points
        for resource_metrics in data.resource_metrics:
            for scope_metrics in resource_metrics.scope_metrics:
                for metric in scope_metrics.metrics:
                    points.setdefault(metric.name, []).extend(metric.data.data_points)
        return points

    return _collect
