"""Tests for weighted boundary decisioning."""

import pytest

from session_boundary.detection.decision import (
    decide_boundary,
    primary_signal,
    reason_for,
    signal_weight,
    weighted_signal_strength,
)
from session_boundary.models.events import BoundaryReason, DetectionSignal, SignalType
from session_boundary.utils.config_validator import DetectionConfig


def make_signal(subtype, strength, confidence, signal_type=SignalType.TEMPORAL):
    return DetectionSignal(signal_type, subtype, strength, confidence, 1000.0)


class TestWeights:
    """Test per-family weight lookup."""

    def test_family_weights(self):
        config = DetectionConfig(
            navigation_pattern_weight=0.9, user_behavior_weight=0.5, time_of_day_weight=0.2
        )
        assert signal_weight(SignalType.TEMPORAL, config) == 0.9
        assert signal_weight(SignalType.BEHAVIORAL, config) == 0.5
        assert signal_weight(SignalType.CONTEXTUAL, config) == 0.2
        assert signal_weight(SignalType.SPATIAL, config) == 1.0
        assert signal_weight(SignalType.LEARNED, config) == pytest.approx(0.6)

    def test_weighted_strength_is_weighted_mean(self):
        config = DetectionConfig(navigation_pattern_weight=1.0, user_behavior_weight=0.5)
        signals = [
            make_signal("navigation_gap", 1.0, 0.8),
            make_signal("tab_clustering", 0.6, 0.6, SignalType.BEHAVIORAL),
        ]
        expected = (0.8 * 1.0 + 0.36 * 0.5) / 1.5
        assert weighted_signal_strength(signals, config) == pytest.approx(expected)

    def test_no_signals_is_zero(self):
        assert weighted_signal_strength([], DetectionConfig()) == 0.0

    def test_zero_weights_is_zero(self):
        config = DetectionConfig(navigation_pattern_weight=0.0)
        assert weighted_signal_strength([make_signal("navigation_gap", 1.0, 1.0)], config) == 0.0


class TestReasons:
    """Test subtype to reason mapping."""

    @pytest.mark.parametrize(
        "subtype,reason",
        [
            ("extended_idle", BoundaryReason.IDLE_TIMEOUT),
            ("domain_change", BoundaryReason.DOMAIN_CHANGE),
            ("category_transition", BoundaryReason.DOMAIN_CHANGE),
            ("navigation_gap", BoundaryReason.NAVIGATION_GAP),
            ("window_closing", BoundaryReason.WINDOW_CLOSED),
            ("work_transition", BoundaryReason.USER_INITIATED),
            ("pattern_idle", BoundaryReason.USER_INITIATED),
        ],
    )
    def test_reason_for(self, subtype, reason):
        assert reason_for(subtype) is reason

    def test_primary_first_wins_ties(self):
        a = make_signal("navigation_gap", 0.5, 0.5)
        b = make_signal("extended_idle", 0.25, 1.0)
        assert primary_signal([a, b]) is a


class TestDecideBoundary:
    """Test the threshold decision."""

    def test_emits_at_threshold(self):
        signals = [make_signal("navigation_gap", 1.0, 0.8)]
        boundary = decide_boundary(signals, DetectionConfig(), 0.8, 5000.0)

        assert boundary is not None
        assert boundary.reason is BoundaryReason.NAVIGATION_GAP
        assert boundary.timestamp == 5000.0
        assert boundary.metadata["primary_signal"] == "navigation_gap"
        assert boundary.metadata["total_signals"] == 1
        assert boundary.metadata["weighted_strength"] == pytest.approx(0.8)

    def test_below_threshold(self):
        signals = [make_signal("navigation_gap", 1.0, 0.8)]
        assert decide_boundary(signals, DetectionConfig(), 0.81, 5000.0) is None

    def test_no_signals(self):
        assert decide_boundary([], DetectionConfig(), 0.0, 5000.0) is None

    def test_raising_threshold_never_adds_boundaries(self):
        signal_sets = [
            [make_signal("navigation_gap", s / 10, 0.9)] for s in range(11)
        ] + [[make_signal("extended_idle", 1.0, 0.9), make_signal("work_transition", 0.6, 0.5, SignalType.CONTEXTUAL)]]

        def count(threshold):
            return sum(
                decide_boundary(signals, DetectionConfig(), threshold, 0.0) is not None
                for signals in signal_sets
            )

        counts = [count(t / 20) for t in range(21)]
        assert counts == sorted(counts, reverse=True)

    def test_primary_metadata_carried(self):
        signals = [
            make_signal("extended_idle", 1.0, 0.9),
            DetectionSignal(SignalType.SPATIAL, "url_pattern", 0.5, 0.4, 0.0, {"pattern": "home_page"}),
        ]
        signals[0].metadata["idle_duration"] = 1_200_000
        boundary = decide_boundary(signals, DetectionConfig(), 0.5, 0.0)

        assert boundary.reason is BoundaryReason.IDLE_TIMEOUT
        assert boundary.metadata["idle_duration"] == 1_200_000
        assert boundary.metadata["all_signal_types"] == ["extended_idle", "url_pattern"]
