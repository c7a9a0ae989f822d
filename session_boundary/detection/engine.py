"""Session detection engine: context update, signals, decision and learning."""

import logging
from collections import Counter
from typing import Any

from pydantic import ValidationError

from session_boundary.detection.context import DetectionContext, update_context
from session_boundary.detection.decision import decide_boundary, weighted_signal_strength
from session_boundary.detection.domains import (
    DomainCategorizer,
    DomainClassifier,
    extract_domain,
)
from session_boundary.detection.patterns import PatternStore
from session_boundary.detection.signals import category_tag, generate_signals
from session_boundary.models.events import BrowsingEvent, DetectionSignal, SessionBoundary
from session_boundary.models.patterns import BehaviorPattern
from session_boundary.utils.config_validator import (
    DetectionConfig,
    coerce_config,
    format_validation_errors,
)

logger = logging.getLogger(__name__)

SIGNAL_HISTORY_CAP = 200
SIGNAL_HISTORY_KEEP = 100
SIGNAL_HISTORY_MAX_AGE_MS = 3_600_000
MIN_ADAPTIVE_THRESHOLD = 0.5
MAX_ADAPTIVE_THRESHOLD = 0.9


class SessionDetectionEngine:
    """
    Multi-signal session boundary detector.

    Each call to detect_session_boundary() runs two explicit phases:
    update_context() folds the event into the rolling context, then
    generate_signals() reads that context. The weighted signal strength is
    compared against the active threshold to decide on a boundary, after which
    patterns and adaptive thresholds are updated.
    """

    def __init__(
        self,
        config: DetectionConfig | dict[str, Any] | None = None,
        classifier: DomainCategorizer | None = None,
    ):
        """
        Initialize engine.

        Args:
            config: Detection configuration (defaults if None)
            classifier: Hostname -> category function (default table if None)

        Raises:
            ValidationError: If a config dict fails validation
        """
        self.config = coerce_config(config)
        self.categorize = classifier or DomainClassifier()
        self.context = DetectionContext.create(self.config)
        self.patterns = PatternStore()
        self.signal_history: list[DetectionSignal] = []
        self.last_signals: list[DetectionSignal] = []
        self.events_processed = 0
        self.events_skipped = 0
        self.boundary_counts: Counter[str] = Counter()

        logger.info(
            f"SessionDetectionEngine initialized (idle={self.config.idle_threshold}ms, "
            f"gap={self.config.session_gap_threshold}ms, learning={self.config.learning_enabled})"
        )

    @property
    def active_threshold(self) -> float:
        if self.config.adaptive_thresholds:
            return self.context.adaptive_thresholds.get(
                "boundary_threshold", self.config.boundary_threshold
            )
        return self.config.boundary_threshold

    def detect_session_boundary(self, event: BrowsingEvent) -> SessionBoundary | None:
        """
        Process one event and decide whether it crosses a session boundary.

        Args:
            event: Next event in arrival order

        Returns:
            SessionBoundary, or None when there is not enough evidence, not
            enough context (first event) or the event is malformed
        """
        if not event.is_well_formed():
            self.events_skipped += 1
            self.last_signals = []
            logger.debug(f"Skipping malformed event {event.id}")
            return None

        update_context(self.context, event, self.categorize)
        signals = generate_signals(event, self.context, self.config, self.patterns, self.categorize)
        self.events_processed += 1
        self.last_signals = signals
        self._record_signals(signals, event.timestamp)

        boundary = None
        if self.events_processed > 1:
            boundary = decide_boundary(
                signals, self.config, self.active_threshold, event.timestamp
            )

        if self.config.learning_enabled:
            self._update_patterns(event, signals, boundary)
        if self.config.adaptive_thresholds:
            self._update_adaptive_thresholds(signals, boundary)

        if boundary is not None:
            self.boundary_counts[boundary.reason.value] += 1
            self.context.start_session(event.timestamp)
            logger.info(
                f"Session boundary {boundary.id}: {boundary.reason.value} "
                f"(strength={boundary.metadata['weighted_strength']:.3f}, "
                f"signals={boundary.metadata['total_signals']})"
            )
        return boundary

    def _record_signals(self, signals: list[DetectionSignal], now: float):
        self.signal_history.extend(signals)
        cutoff = now - SIGNAL_HISTORY_MAX_AGE_MS
        self.signal_history = [s for s in self.signal_history if s.timestamp >= cutoff]
        if len(self.signal_history) > SIGNAL_HISTORY_CAP:
            self.signal_history = self.signal_history[-SIGNAL_HISTORY_KEEP:]

    def _event_tags(self, event: BrowsingEvent) -> list[str]:
        domain = extract_domain(event.url)
        return [category_tag(self.categorize(domain))] if domain else []

    def _update_patterns(
        self,
        event: BrowsingEvent,
        signals: list[DetectionSignal],
        boundary: SessionBoundary | None,
    ):
        tags = self._event_tags(event)
        if boundary is not None:
            self.patterns.learn_from_boundary(
                boundary, [*boundary.metadata["all_signal_types"], *tags], self.config.adaptation_rate
            )
        self.patterns.learn_signal_combination(signals, tags, event.timestamp)
        self.patterns.decay(event.timestamp, self.config.pattern_decay_rate)

    def _update_adaptive_thresholds(
        self, signals: list[DetectionSignal], boundary: SessionBoundary | None
    ):
        thresholds = self.context.adaptive_thresholds
        current = thresholds.get("boundary_threshold", self.config.boundary_threshold)
        rate = self.config.adaptation_rate * 0.1

        if boundary is not None:
            if boundary.metadata["weighted_strength"] > current * 1.5:
                thresholds["boundary_threshold"] = max(
                    current - rate, min(current, MIN_ADAPTIVE_THRESHOLD)
                )
        elif signals and max(s.score for s in signals) > current * 0.8:
            thresholds["boundary_threshold"] = min(
                current + rate * 0.5, max(current, MAX_ADAPTIVE_THRESHOLD)
            )

    def adjust_boundary_threshold(
        self, delta: float, lower: float = MIN_ADAPTIVE_THRESHOLD, upper: float = MAX_ADAPTIVE_THRESHOLD
    ) -> float:
        """Nudge the adaptive boundary threshold, clamped to [lower, upper]."""
        thresholds = self.context.adaptive_thresholds
        current = thresholds.get("boundary_threshold", self.config.boundary_threshold)
        thresholds["boundary_threshold"] = max(lower, min(upper, current + delta))
        return thresholds["boundary_threshold"]

    def update_config(self, partial: dict[str, Any]) -> bool:
        """
        Apply a partial configuration update atomically.

        Returns:
            True if applied, False if validation failed (previous config kept)
        """
        try:
            new_config = self.config.merged(partial)
        except ValidationError as e:
            logger.warning(f"Rejected detection config update: {format_validation_errors(e)}")
            return False

        self.config = new_config
        seeded = {"boundary_threshold", "idle_threshold", "domain_similarity_threshold"}
        if seeded & partial.keys():
            self.context.seed_thresholds(new_config)
        logger.info(f"Detection config updated: {sorted(partial)}")
        return True

    def get_learned_patterns(self) -> list[BehaviorPattern]:
        return self.patterns.active(self.context.current_time)

    def import_learned_patterns(self, patterns: list[dict]) -> int:
        """Restore previously exported patterns."""
        count = self.patterns.load(patterns)
        logger.info(f"Imported {count} learned patterns")
        return count

    def get_detection_stats(self) -> dict:
        """Counters and summaries for diagnostics."""
        signal_counts = Counter(s.subtype for s in self.signal_history)
        signal_types = Counter(s.type.value for s in self.signal_history)
        return {
            "events_processed": self.events_processed,
            "events_skipped": self.events_skipped,
            "boundaries_detected": sum(self.boundary_counts.values()),
            "boundaries_by_reason": dict(self.boundary_counts),
            "recent_signals": len(self.signal_history),
            "signal_counts": dict(signal_counts),
            "signal_types": dict(signal_types),
            "learned_patterns": len(self.get_learned_patterns()),
            "active_threshold": self.active_threshold,
            "adaptive_thresholds": dict(self.context.adaptive_thresholds),
            "weighted_strength_last": weighted_signal_strength(self.last_signals, self.config),
        }

    def export_detection_data(self) -> dict:
        """JSON-serializable snapshot of config, context, patterns and recent signals."""
        return {
            "config": self.config.model_dump(),
            "context": self.context.summary(),
            "learned_patterns": [p.to_dict() for p in self.get_learned_patterns()],
            "recent_signals": [s.to_dict() for s in self.signal_history[-20:]],
            "stats": self.get_detection_stats(),
        }

    def reset(self):
        """Clear context and signal history; keep patterns with halved frequencies."""
        self.context = DetectionContext.create(self.config)
        self.signal_history = []
        self.last_signals = []
        self.events_processed = 0
        self.events_skipped = 0
        self.boundary_counts.clear()
        self.patterns.halve_frequencies()
        logger.info("SessionDetectionEngine reset")
