"""
Tests for SessionDetectionEngine.

Covers the end-to-end detection scenarios, learning, adaptive thresholds,
configuration updates and pattern export/import.
"""

import math

import pytest
from pydantic import ValidationError

from session_boundary.detection.engine import SessionDetectionEngine
from session_boundary.models.events import BoundaryReason, BrowsingEvent, EventType
from session_boundary.utils.config_validator import DetectionConfig

MINUTE = 60_000


def run(engine, events):
    return [engine.detect_session_boundary(event) for event in events]


class TestDetectionScenarios:
    """End-to-end event streams."""

    def test_navigation_gap(self, engine, navigation_stream):
        first, second = run(engine, navigation_stream)

        assert first is None
        assert second is not None
        assert second.reason is BoundaryReason.NAVIGATION_GAP
        assert second.timestamp == navigation_stream[1].timestamp
        assert second.metadata["total_signals"] == 1

    def test_idle_timeout_at_idle_end(self, engine, idle_stream):
        boundaries = run(engine, idle_stream)

        assert boundaries[0] is None
        assert boundaries[2] is None
        assert boundaries[1].reason is BoundaryReason.IDLE_TIMEOUT
        assert boundaries[1].timestamp == idle_stream[1].timestamp
        assert boundaries[1].metadata["idle_duration"] == 20 * MINUTE

    def test_scrolling_never_splits(self, engine, scroll_stream):
        assert run(engine, scroll_stream) == [None] * len(scroll_stream)

    def test_first_event_never_a_boundary(self, make_event, base_time):
        engine = SessionDetectionEngine(DetectionConfig(boundary_threshold=0.0))
        assert engine.detect_session_boundary(make_event("window_removed", base_time)) is None

    def test_domain_change(self, make_event, base_time):
        engine = SessionDetectionEngine(DetectionConfig(boundary_threshold=0.6))
        events = [
            make_event("page_loaded", base_time, "https://github.com/org/repo"),
            make_event("page_loaded", base_time + 30_000, "https://youtube.com/watch"),
        ]
        boundary = run(engine, events)[1]

        assert boundary.reason is BoundaryReason.DOMAIN_CHANGE
        assert boundary.metadata["all_signal_types"] == ["domain_change", "category_transition"]

    def test_malformed_event_skipped(self, engine, navigation_stream):
        bad = BrowsingEvent(id="bad", timestamp=math.nan, type=EventType.PAGE_LOADED)
        engine.detect_session_boundary(navigation_stream[0])

        assert engine.detect_session_boundary(bad) is None
        assert engine.events_skipped == 1
        assert engine.events_processed == 1
        assert engine.detect_session_boundary(navigation_stream[1]) is not None

    def test_last_signals_exposed(self, engine, navigation_stream):
        run(engine, navigation_stream)
        assert [s.subtype for s in engine.last_signals] == ["navigation_gap"]

    def test_long_session_ends_once(self, make_event, base_time):
        engine = SessionDetectionEngine(DetectionConfig(adaptive_thresholds=False))
        # steady tab switching every 20 minutes for 14 hours
        events = [make_event("tab_activated", base_time + i * 20 * MINUTE) for i in range(43)]
        boundaries = run(engine, events)

        fired = [(i, b) for i, b in enumerate(boundaries) if b is not None]
        assert [i for i, _ in fired] == [36]
        assert fired[0][1].reason is BoundaryReason.USER_INITIATED
        assert fired[0][1].metadata["primary_signal"] == "long_session"
        assert engine.context.session.duration == 6 * 20 * MINUTE

    def test_repeated_gaps_keep_splitting_while_learning(self, engine, make_event, base_time):
        events = [
            make_event("navigation_completed", base_time + i * 6 * MINUTE, f"https://intranet.acme.io/page/{i}")
            for i in range(20)
        ]
        boundaries = run(engine, events)

        assert boundaries[0] is None
        assert all(b is not None and b.reason is BoundaryReason.NAVIGATION_GAP for b in boundaries[1:])
        assert engine.patterns.get("boundary_navigation_gap").frequency == 19
        assert [s.subtype for s in engine.last_signals] == ["navigation_gap"]


class TestLearning:
    """Test pattern learning during detection."""

    def test_boundary_pattern_learned(self, engine, navigation_stream):
        run(engine, navigation_stream)
        pattern = engine.patterns.get("boundary_navigation_gap")

        assert pattern is not None
        assert pattern.frequency == 1
        assert "navigation_gap" in pattern.pattern
        assert "category:other" in pattern.pattern

    def test_learning_disabled(self, navigation_stream):
        engine = SessionDetectionEngine(
            DetectionConfig(session_gap_threshold=120_000, learning_enabled=False)
        )
        boundaries = run(engine, navigation_stream)

        assert boundaries[1] is not None
        assert engine.get_learned_patterns() == []

    @pytest.mark.parametrize("learning_enabled", [True, False])
    def test_repeated_domain_switch_cycle(self, make_event, base_time, learning_enabled):
        domains = ["github.com", "youtube.com", "amazon.com", "reddit.com", "docs.python.org"]
        events = [
            make_event("page_loaded", base_time + i * MINUTE, f"https://{domains[i % 5]}/item/{i}")
            for i in range(25)
        ]
        engine = SessionDetectionEngine(DetectionConfig(learning_enabled=learning_enabled))
        run(engine, events)

        learned = engine.get_learned_patterns()
        if learning_enabled:
            assert learned
        else:
            assert learned == []
            assert len(engine.patterns) == 0

    def test_export_and_import_patterns(self, engine, navigation_stream, detection_config):
        run(engine, navigation_stream)
        exported = engine.export_detection_data()["learned_patterns"]

        fresh = SessionDetectionEngine(detection_config)
        assert fresh.import_learned_patterns(exported) == len(exported)
        assert {p.id for p in fresh.patterns} == {p["id"] for p in exported}


class TestAdaptiveThresholds:
    """Test threshold adaptation."""

    def test_strong_boundary_lowers_threshold(self, idle_stream):
        engine = SessionDetectionEngine(DetectionConfig(idle_threshold=300_000, boundary_threshold=0.55))
        run(engine, idle_stream[:2])
        assert engine.active_threshold == pytest.approx(0.545)

    def test_near_miss_raises_threshold(self, make_event, base_time):
        engine = SessionDetectionEngine(DetectionConfig(session_gap_threshold=240_000))
        events = [
            make_event("page_loaded", base_time, "https://a.org/x"),
            make_event("page_loaded", base_time + 6 * MINUTE, "https://a.org/y"),
        ]
        assert run(engine, events) == [None, None]
        assert engine.active_threshold == pytest.approx(0.7025)

    def test_static_threshold_when_disabled(self, idle_stream):
        engine = SessionDetectionEngine(
            DetectionConfig(idle_threshold=300_000, boundary_threshold=0.55, adaptive_thresholds=False)
        )
        run(engine, idle_stream)
        assert engine.active_threshold == 0.55

    def test_manual_adjustment_clamped(self, engine):
        assert engine.adjust_boundary_threshold(0.5) == 0.9
        assert engine.adjust_boundary_threshold(-1.0, lower=0.3) == 0.3


class TestConfiguration:
    """Test configuration handling."""

    def test_invalid_dict_raises(self):
        with pytest.raises(ValidationError):
            SessionDetectionEngine({"boundary_threshold": 1.5})

    def test_update_applies_and_reseeds(self, engine):
        assert engine.update_config({"boundary_threshold": 0.8}) is True
        assert engine.config.boundary_threshold == 0.8
        assert engine.context.adaptive_thresholds["boundary_threshold"] == 0.8

    @pytest.mark.parametrize("partial", [{"boundary_threshold": 2.0}, {"no_such_option": 1}])
    def test_invalid_update_rejected(self, engine, partial):
        before = engine.config
        assert engine.update_config(partial) is False
        assert engine.config is before


class TestStatsAndReset:
    """Test diagnostics and reset."""

    def test_stats(self, engine, navigation_stream):
        run(engine, navigation_stream)
        stats = engine.get_detection_stats()

        assert stats["events_processed"] == 2
        assert stats["boundaries_detected"] == 1
        assert stats["boundaries_by_reason"] == {"navigation_gap": 1}
        assert stats["signal_counts"] == {"navigation_gap": 1}

    def test_export_is_plain_data(self, engine, navigation_stream):
        run(engine, navigation_stream)
        data = engine.export_detection_data()

        assert data["config"]["session_gap_threshold"] == 120_000
        assert data["recent_signals"][0]["subtype"] == "navigation_gap"

    def test_reset_keeps_halved_patterns(self, engine, navigation_stream, make_event, base_time):
        run(engine, navigation_stream)
        engine.patterns.get("boundary_navigation_gap").frequency = 4

        engine.reset()

        assert engine.events_processed == 0
        assert engine.signal_history == []
        assert engine.patterns.get("boundary_navigation_gap").frequency == 2
        assert engine.detect_session_boundary(
            make_event("navigation_completed", base_time + 20 * MINUTE, "https://a.org/x")
        ) is None
