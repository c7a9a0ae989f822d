"""Tests for signal generators."""

import math

import pytest

from session_boundary.detection.context import DetectionContext, update_context
from session_boundary.detection.signals import (
    behavioral_signals,
    category_tag,
    contextual_signals,
    generate_signals,
    learned_signals,
    spatial_signals,
    temporal_signals,
)
from session_boundary.models.events import BrowsingEvent, EventType, SignalType
from session_boundary.models.patterns import BehaviorPattern, PatternType
from session_boundary.utils.config_validator import DetectionConfig

MINUTE = 60_000
HOUR = 60 * MINUTE


def feed(events, config, classifier):
    """Run the update phase for every event and return the context."""
    context = DetectionContext.create(config)
    for event in events:
        update_context(context, event, classifier)
    return context


def subtypes(signals):
    return [s.subtype for s in signals]


class TestTemporalSignals:
    """Test idle, burst and navigation gap signals."""

    def test_extended_idle_at_idle_end(self, detection_config, classifier, idle_stream):
        context = feed(idle_stream[:2], detection_config, classifier)
        signals = temporal_signals(idle_stream[1], context, detection_config)

        assert subtypes(signals) == ["extended_idle"]
        assert signals[0].strength == 1.0
        assert signals[0].confidence == 0.9
        assert signals[0].metadata["idle_duration"] == 20 * MINUTE

    def test_short_idle_is_ignored(self, detection_config, classifier, make_event, base_time):
        events = [make_event("idle_start", base_time), make_event("idle_end", base_time + 2 * MINUTE)]
        context = feed(events, detection_config, classifier)
        assert temporal_signals(events[1], context, detection_config) == []

    def test_navigation_gap(self, detection_config, classifier, navigation_stream):
        context = feed(navigation_stream, detection_config, classifier)
        signals = temporal_signals(navigation_stream[1], context, detection_config)

        assert subtypes(signals) == ["navigation_gap"]
        assert signals[0].strength == 1.0
        assert signals[0].metadata["gap"] == 6 * MINUTE

    def test_navigation_gap_partial_strength(self, classifier, make_event, base_time):
        config = DetectionConfig(session_gap_threshold=240_000)
        events = [
            make_event("page_loaded", base_time, "https://a.org/x"),
            make_event("page_loaded", base_time + 6 * MINUTE, "https://a.org/y"),
        ]
        context = feed(events, config, classifier)
        signals = temporal_signals(events[1], context, config)
        assert signals[0].strength == pytest.approx(360_000 / 480_000)

    def test_activity_burst_after_quiet(self, detection_config, classifier, make_event, base_time):
        events = [make_event("click_event", base_time)] + [
            make_event("click_event", base_time + 4 * MINUTE + i * 1000) for i in range(5)
        ]
        context = feed(events, detection_config, classifier)
        signals = temporal_signals(events[-1], context, detection_config)

        assert subtypes(signals) == ["activity_burst"]
        assert signals[0].strength == pytest.approx(0.5)


class TestSpatialSignals:
    """Test domain and URL based signals."""

    def test_domain_change_and_category_transition(self, detection_config, classifier, make_event, base_time):
        events = [
            make_event("page_loaded", base_time, "https://github.com/org/repo"),
            make_event("page_loaded", base_time + MINUTE, "https://youtube.com/watch"),
        ]
        context = feed(events, detection_config, classifier)
        signals = spatial_signals(events[1], context, detection_config, classifier)

        assert subtypes(signals) == ["domain_change", "category_transition"]
        assert signals[0].strength == 1.0
        assert signals[1].metadata == {"from_categories": ["work"], "to_category": "entertainment"}

    def test_related_domains_do_not_signal(self, detection_config, classifier, navigation_stream):
        context = feed(navigation_stream, detection_config, classifier)
        assert spatial_signals(navigation_stream[1], context, detection_config, classifier) == []

    def test_domain_change_disabled(self, classifier, make_event, base_time):
        config = DetectionConfig(domain_change_session_boundary=False)
        events = [
            make_event("page_loaded", base_time, "https://github.com/a"),
            make_event("page_loaded", base_time + MINUTE, "https://youtube.com/b"),
        ]
        context = feed(events, config, classifier)
        assert spatial_signals(events[1], context, config, classifier) == []

    @pytest.mark.parametrize(
        "url,pattern",
        [("https://accounts.example.com/signin/v2", "authentication"), ("https://example.org/", "home_page")],
    )
    def test_url_patterns(self, detection_config, classifier, make_event, base_time, url, pattern):
        event = make_event("page_loaded", base_time, url)
        context = feed([event], detection_config, classifier)
        signals = spatial_signals(event, context, detection_config, classifier)

        assert subtypes(signals) == ["url_pattern"]
        assert signals[0].metadata["pattern"] == pattern

    def test_no_url_no_signal(self, detection_config, classifier, make_event, base_time):
        event = make_event("click_event", base_time)
        context = feed([event], detection_config, classifier)
        assert spatial_signals(event, context, detection_config, classifier) == []


class TestBehavioralSignals:
    """Test tab, window and velocity signals."""

    def test_tab_clustering(self, detection_config, classifier, make_event, base_time):
        events = [make_event("tab_activated", base_time + i * 1000, tab_id=i) for i in range(6)]
        context = feed(events, detection_config, classifier)
        signals = behavioral_signals(events[-1], context, detection_config)

        assert subtypes(signals) == ["tab_clustering"]
        assert signals[0].strength == pytest.approx(0.6)

    def test_window_closing_last_window(self, detection_config, classifier, make_event, base_time):
        event = make_event("window_removed", base_time)
        context = feed([event], detection_config, classifier)
        signals = behavioral_signals(event, context, detection_config)

        assert subtypes(signals) == ["window_closing"]
        assert signals[0].strength == 0.9

    def test_window_closing_down_to_one(self, detection_config, classifier, make_event, base_time):
        events = [make_event("window_created", base_time), make_event("window_removed", base_time + 1000)]
        context = feed(events, detection_config, classifier)
        signals = behavioral_signals(events[-1], context, detection_config)
        assert signals[0].strength == 0.6

    def test_velocity_change(self, detection_config, classifier, scroll_stream):
        context = feed(scroll_stream, detection_config, classifier)
        signals = behavioral_signals(scroll_stream[-1], context, detection_config)

        assert subtypes(signals) == ["velocity_change"]
        assert signals[0].score < 0.7


class TestContextualSignals:
    """Test time-of-day and session length signals."""

    def test_work_transition_hour(self, detection_config, classifier, make_event, base_time):
        event = make_event("click_event", base_time + 3 * HOUR)  # 17:00
        context = feed([event], detection_config, classifier)
        signals = contextual_signals(event, context, detection_config)

        assert subtypes(signals) == ["work_transition"]
        assert signals[0].metadata["transition"] == "work_end"

    def test_long_session(self, detection_config, classifier, make_event, base_time):
        events = [make_event("click_event", base_time), make_event("click_event", base_time + 9 * HOUR)]
        context = feed(events, detection_config, classifier)
        signals = contextual_signals(events[-1], context, detection_config)

        assert subtypes(signals) == ["long_session"]
        assert signals[0].strength == pytest.approx(0.75)

    def test_disabled(self, classifier, make_event, base_time):
        config = DetectionConfig(contextual_analysis=False)
        event = make_event("click_event", base_time + 3 * HOUR)
        context = feed([event], config, classifier)
        assert contextual_signals(event, context, config) == []


class TestLearnedSignals:
    """Test pattern-driven signals."""

    @pytest.fixture
    def work_pattern(self):
        return BehaviorPattern(
            id="boundary_domain_change",
            type=PatternType.DOMAIN_SWITCH,
            pattern=["domain_change", category_tag("work")],
            frequency=3,
            confidence=0.8,
        )

    def test_matching_category(self, detection_config, classifier, make_event, base_time, work_pattern):
        event = make_event("page_loaded", base_time, "https://github.com/x")
        signals = learned_signals(event, detection_config, [work_pattern], classifier)

        assert subtypes(signals) == ["pattern_domain_switch"]
        assert signals[0].type is SignalType.LEARNED
        assert signals[0].strength == 0.8
        assert signals[0].metadata["pattern_id"] == "boundary_domain_change"

    def test_other_category(self, detection_config, classifier, make_event, base_time, work_pattern):
        event = make_event("page_loaded", base_time, "https://youtube.com/x")
        assert learned_signals(event, detection_config, [work_pattern], classifier) == []

    def test_infrequent_pattern_ignored(self, detection_config, classifier, make_event, base_time, work_pattern):
        work_pattern.frequency = 2
        event = make_event("page_loaded", base_time, "https://github.com/x")
        assert learned_signals(event, detection_config, [work_pattern], classifier) == []

    def test_low_confidence_ignored(self, detection_config, classifier, make_event, base_time, work_pattern):
        work_pattern.confidence = 0.6
        event = make_event("page_loaded", base_time, "https://github.com/x")
        assert learned_signals(event, detection_config, [work_pattern], classifier) == []

    @pytest.mark.parametrize("pattern_type", [PatternType.TIME_BASED, PatternType.IDLE, PatternType.TAB_CLUSTERING])
    def test_only_domain_switch_patterns_match(
        self, detection_config, classifier, make_event, base_time, work_pattern, pattern_type
    ):
        work_pattern.type = pattern_type
        event = make_event("page_loaded", base_time, "https://github.com/x")
        assert learned_signals(event, detection_config, [work_pattern], classifier) == []

    def test_learning_disabled(self, classifier, make_event, base_time, work_pattern):
        config = DetectionConfig(learning_enabled=False)
        event = make_event("page_loaded", base_time, "https://github.com/x")
        assert learned_signals(event, config, [work_pattern], classifier) == []


class TestGenerateSignals:
    """Test the combined generator."""

    def test_malformed_event_yields_nothing(self, detection_config, classifier):
        event = BrowsingEvent(id="bad", timestamp=math.nan, type=EventType.PAGE_LOADED, url="https://a.org/")
        context = DetectionContext.create(detection_config)
        assert generate_signals(event, context, detection_config, [], classifier) == []

    def test_families_combined(self, detection_config, classifier, make_event, base_time):
        events = [
            make_event("page_loaded", base_time, "https://github.com/org/repo"),
            make_event("page_loaded", base_time + 6 * MINUTE, "https://youtube.com/watch"),
        ]
        context = feed(events, detection_config, classifier)
        signals = generate_signals(events[1], context, detection_config, [], classifier)
        assert subtypes(signals) == ["navigation_gap", "domain_change", "category_transition"]
