"""Decaying store of learned boundary and signal-combination patterns."""

import logging
from collections.abc import Iterator, Sequence

from session_boundary.models.events import BoundaryReason, DetectionSignal, SessionBoundary
from session_boundary.models.patterns import BehaviorPattern, PatternType

logger = logging.getLogger(__name__)

MAX_PATTERN_AGE_MS = 30 * 24 * 3_600_000
MIN_PATTERN_CONFIDENCE = 0.1
BOUNDARY_PATTERN_CONFIDENCE = 0.5
COMBINATION_PATTERN_CONFIDENCE = 0.3
MIN_COMBINATION_SIGNALS = 2
MAX_COMBINATION_SIGNALS = 5

_REASON_PATTERN_TYPES = {
    BoundaryReason.IDLE_TIMEOUT: PatternType.IDLE,
    BoundaryReason.DOMAIN_CHANGE: PatternType.DOMAIN_SWITCH,
    BoundaryReason.NAVIGATION_GAP: PatternType.TIME_BASED,
    BoundaryReason.WINDOW_CLOSED: PatternType.TAB_CLUSTERING,
    BoundaryReason.USER_INITIATED: PatternType.NAVIGATION_BURST,
}


def combination_pattern_type(subtypes: Sequence[str]) -> PatternType:
    """Classify a signal combination by its most telling member."""
    if "extended_idle" in subtypes:
        return PatternType.IDLE
    if "domain_change" in subtypes or "category_transition" in subtypes:
        return PatternType.DOMAIN_SWITCH
    if "tab_clustering" in subtypes or "window_closing" in subtypes:
        return PatternType.TAB_CLUSTERING
    if "work_transition" in subtypes or "long_session" in subtypes:
        return PatternType.TIME_BASED
    return PatternType.NAVIGATION_BURST


class PatternStore:
    """
    In-memory pattern memory keyed by pattern id.

    Boundary patterns (``boundary_<reason>``) gain confidence on every repeat;
    signal-combination patterns (``signal_pattern_<subtypes>``) only count
    frequency. Confidence decays with age and patterns older than
    MAX_PATTERN_AGE_MS are removed.
    """

    def __init__(self):
        self._patterns: dict[str, BehaviorPattern] = {}

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self) -> Iterator[BehaviorPattern]:
        return iter(list(self._patterns.values()))

    def get(self, pattern_id: str) -> BehaviorPattern | None:
        return self._patterns.get(pattern_id)

    def learn_from_boundary(
        self,
        boundary: SessionBoundary,
        tags: list[str],
        adaptation_rate: float,
    ) -> BehaviorPattern:
        """Create or reinforce the pattern for a boundary's reason."""
        pattern_id = f"boundary_{boundary.reason.value}"
        pattern = self._patterns.get(pattern_id)
        if pattern is None:
            pattern = BehaviorPattern(
                id=pattern_id,
                type=_REASON_PATTERN_TYPES[boundary.reason],
                pattern=list(tags),
                frequency=1,
                last_seen=boundary.timestamp,
                confidence=BOUNDARY_PATTERN_CONFIDENCE,
            )
            self._patterns[pattern_id] = pattern
            logger.debug(f"Created pattern {pattern_id}")
        else:
            pattern.frequency += 1
            pattern.last_seen = boundary.timestamp
            pattern.confidence = min(1.0, pattern.confidence + adaptation_rate)
            pattern.add_tags(tags)
        return pattern

    def learn_signal_combination(
        self,
        signals: Sequence[DetectionSignal],
        tags: list[str],
        now: float,
    ) -> BehaviorPattern | None:
        """Record a multi-signal combination; single or very noisy events are ignored."""
        if not MIN_COMBINATION_SIGNALS <= len(signals) <= MAX_COMBINATION_SIGNALS:
            return None

        subtypes = sorted({s.subtype for s in signals})
        pattern_id = "signal_pattern_" + "_".join(subtypes)
        pattern = self._patterns.get(pattern_id)
        if pattern is None:
            pattern = BehaviorPattern(
                id=pattern_id,
                type=combination_pattern_type(subtypes),
                pattern=[*subtypes, *(t for t in tags if t not in subtypes)],
                frequency=1,
                last_seen=now,
                confidence=COMBINATION_PATTERN_CONFIDENCE,
            )
            self._patterns[pattern_id] = pattern
        else:
            pattern.frequency += 1
            pattern.last_seen = now
            pattern.add_tags(tags)
        return pattern

    def decay(self, now: float, decay_rate: float) -> int:
        """
        Age every pattern relative to ``now``.

        Returns:
            Number of patterns removed for exceeding the maximum age
        """
        removed = 0
        for pattern_id, pattern in list(self._patterns.items()):
            age = max(0.0, now - pattern.last_seen)
            if age > MAX_PATTERN_AGE_MS:
                del self._patterns[pattern_id]
                removed += 1
                continue
            factor = max(1 - (age / MAX_PATTERN_AGE_MS) * decay_rate, MIN_PATTERN_CONFIDENCE)
            pattern.confidence = max(pattern.confidence * factor, MIN_PATTERN_CONFIDENCE)
        if removed:
            logger.debug(f"Expired {removed} patterns")
        return removed

    def halve_frequencies(self):
        for pattern in self._patterns.values():
            pattern.frequency = max(1, pattern.frequency // 2)

    def active(self, now: float) -> list[BehaviorPattern]:
        """Patterns still within the maximum age at ``now``."""
        return [p for p in self._patterns.values() if now - p.last_seen <= MAX_PATTERN_AGE_MS]

    def load(self, patterns: list[dict]) -> int:
        """Restore patterns from exported dictionaries, replacing same-id entries."""
        count = 0
        for data in patterns:
            pattern = BehaviorPattern.from_dict(data)
            pattern.confidence = max(pattern.confidence, MIN_PATTERN_CONFIDENCE)
            self._patterns[pattern.id] = pattern
            count += 1
        return count

    def clear(self):
        self._patterns.clear()
