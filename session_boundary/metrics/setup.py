"""
OpenTelemetry metrics initialization.

The detector itself only records through instruments obtained from
get_meter(). Exporters are opt-in and chosen from the environment, so an
embedded detector emits nothing until the host calls setup_metrics().
"""

import sys
import time
from collections import Counter
from typing import Optional, Dict, Any, Iterator

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
    MetricExporter,
    MetricExportResult,
    MetricsData,
)
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource

from session_boundary.utils.config import get_bool_env_var, get_env_var, get_int_env_var

METER_NAME = "session_boundary"
DEFAULT_SERVICE_NAME = "session-boundary"
DEFAULT_EXPORT_INTERVAL_MS = 10000

_meter: Optional[metrics.Meter] = None
_health_tracker: Optional["MetricsHealthTracker"] = None


class MetricsHealthTracker:
    """
    Bookkeeping for metric export attempts.

    Healthy means the most recent export succeeded. Failures are also counted
    per exporter label so a broken collector is distinguishable from a broken
    console stream in the detector's status report.
    """

    def __init__(self):
        self.last_export_success: Optional[float] = None
        self.last_export_failure: Optional[float] = None
        self.total_exports: int = 0
        self.failed_exports: int = 0
        self.last_error: Optional[str] = None
        self.exporters: list[str] = []
        self.failures_by_exporter: Counter = Counter()
        self._last_outcome_ok = False

    def record_success(self):
        self.total_exports += 1
        self._last_outcome_ok = True
        self.last_export_success = time.time()

    def record_failure(self, error: str, exporter: Optional[str] = None):
        self.total_exports += 1
        self.failed_exports += 1
        self._last_outcome_ok = False
        self.last_export_failure = time.time()
        self.last_error = error
        if exporter:
            self.failures_by_exporter[exporter] += 1

    @property
    def healthy(self) -> bool:
        return self._last_outcome_ok

    @property
    def success_rate(self) -> float:
        if not self.total_exports:
            return 0.0
        return (self.total_exports - self.failed_exports) / self.total_exports

    def get_health(self) -> Dict[str, Any]:
        """Snapshot of export health for get_system_status()."""
        now = time.time()

        def _ago(ts: Optional[float]) -> Optional[float]:
            return now - ts if ts is not None else None

        last_failure = None
        if self.last_export_failure is not None:
            last_failure = {
                "timestamp": self.last_export_failure,
                "seconds_ago": _ago(self.last_export_failure),
                "error": self.last_error,
            }

        return {
            "healthy": self.healthy,
            "exporters": list(self.exporters),
            "last_success": {
                "timestamp": self.last_export_success,
                "seconds_ago": _ago(self.last_export_success),
            },
            "last_failure": last_failure,
            "failures_by_exporter": dict(self.failures_by_exporter),
            "stats": {
                "total_exports": self.total_exports,
                "failed_exports": self.failed_exports,
                "success_rate": self.success_rate,
            },
        }


class HealthTrackingExporter(MetricExporter):
    """
    MetricExporter proxy that reports every export outcome to a tracker.

    Attributes the SDK reads off an exporter (preferred temporality and
    aggregation) are served by the wrapped exporter.
    """

    def __init__(self, inner: MetricExporter, tracker: MetricsHealthTracker, name: str):
        self.inner = inner
        self.tracker = tracker
        self.name = name

    def __getattr__(self, name: str):
        # Only reached for attributes not set in __init__
        if name == "inner":
            raise AttributeError(name)
        return getattr(self.inner, name)

    def export(
        self,
        metrics_data: MetricsData,
        timeout_millis: float = 10000,
        **kwargs,
    ) -> MetricExportResult:
        try:
            result = self.inner.export(metrics_data, timeout_millis, **kwargs)
        except Exception as e:
            self.tracker.record_failure(f"{self.name}: {type(e).__name__}: {e}", self.name)
            raise

        if result == MetricExportResult.SUCCESS:
            self.tracker.record_success()
        else:
            self.tracker.record_failure(f"{self.name}: Export returned {result}", self.name)
        return result

    def shutdown(self, timeout_millis: float = 30000, **kwargs) -> None:
        return self.inner.shutdown(timeout_millis, **kwargs)

    def force_flush(self, timeout_millis: float = 10000) -> bool:
        return self.inner.force_flush(timeout_millis)


def _configured_exporters() -> Iterator[tuple[str, MetricExporter]]:
    """Yield (label, exporter) pairs enabled through the environment."""
    if get_bool_env_var("OTEL_METRICS_CONSOLE", False):
        yield "console", ConsoleMetricExporter(out=sys.stderr)

    endpoint = get_env_var("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        yield f"otlp({endpoint})", OTLPMetricExporter(endpoint=endpoint)


def setup_metrics(service_version: str = "0.1.0") -> metrics.Meter:
    """
    Install a MeterProvider for the detector's instruments.

    Environment Variables:
        OTEL_SERVICE_NAME: Service name for metrics (default: session-boundary)
        OTEL_ENVIRONMENT: Reported as ``deployment.environment``
        OTEL_EXPORTER_OTLP_ENDPOINT: Optional OTLP/HTTP collector endpoint
        OTEL_METRIC_EXPORT_INTERVAL: Export interval in milliseconds (default: 10000)
        OTEL_METRICS_CONSOLE: Write metrics to stderr when true

    Args:
        service_version: Reported as ``service.version`` on the resource

    Returns:
        Meter for session boundary instruments. Repeated calls return the
        same meter.
    """
    global _meter, _health_tracker

    if _meter is not None:
        return _meter

    tracker = MetricsHealthTracker()
    interval_ms = get_int_env_var("OTEL_METRIC_EXPORT_INTERVAL", DEFAULT_EXPORT_INTERVAL_MS)

    readers = []
    for label, exporter in _configured_exporters():
        wrapped = HealthTrackingExporter(exporter, tracker, label.split("(")[0])
        readers.append(PeriodicExportingMetricReader(wrapped, export_interval_millis=interval_ms))
        tracker.exporters.append(label)

    resource = Resource.create(
        {
            "service.name": get_env_var("OTEL_SERVICE_NAME", DEFAULT_SERVICE_NAME),
            "service.version": service_version,
            "deployment.environment": get_env_var("OTEL_ENVIRONMENT", "development"),
        }
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=readers))

    _health_tracker = tracker
    _meter = metrics.get_meter(METER_NAME)
    return _meter


def get_meter() -> metrics.Meter:
    """
    Meter for session boundary instruments.

    Before setup_metrics() runs this is the global API meter, a no-op unless
    the host installed its own MeterProvider.
    """
    if _meter is None:
        return metrics.get_meter(METER_NAME)
    return _meter


def get_health_tracker() -> Optional[MetricsHealthTracker]:
    return _health_tracker
