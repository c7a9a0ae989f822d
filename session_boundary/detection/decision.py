"""Weighted boundary decisioning."""

from collections.abc import Sequence

from session_boundary.models.events import (
    BoundaryReason,
    DetectionSignal,
    SessionBoundary,
    SignalType,
)
from session_boundary.utils.config_validator import DetectionConfig

LEARNED_WEIGHT_BOOST = 1.2

_REASONS = {
    "extended_idle": BoundaryReason.IDLE_TIMEOUT,
    "domain_change": BoundaryReason.DOMAIN_CHANGE,
    "category_transition": BoundaryReason.DOMAIN_CHANGE,
    "navigation_gap": BoundaryReason.NAVIGATION_GAP,
    "window_closing": BoundaryReason.WINDOW_CLOSED,
}


def signal_weight(signal_type: SignalType, config: DetectionConfig) -> float:
    """Per-family weight taken from configuration."""
    if signal_type == SignalType.TEMPORAL:
        return config.navigation_pattern_weight
    if signal_type == SignalType.BEHAVIORAL:
        return config.user_behavior_weight
    if signal_type == SignalType.CONTEXTUAL:
        return config.time_of_day_weight
    if signal_type == SignalType.LEARNED:
        return config.user_behavior_weight * LEARNED_WEIGHT_BOOST
    return 1.0


def weighted_signal_strength(signals: Sequence[DetectionSignal], config: DetectionConfig) -> float:
    """
    Combine signals into one score.

    sum(strength * confidence * weight) / sum(weight); 0 for no signals.
    """
    if not signals:
        return 0.0
    weights = [signal_weight(s.type, config) for s in signals]
    total_weight = sum(weights)
    if total_weight <= 0:
        return 0.0
    return sum(s.score * w for s, w in zip(signals, weights)) / total_weight


def reason_for(subtype: str) -> BoundaryReason:
    """Map a signal subtype to the boundary reason it implies."""
    return _REASONS.get(subtype, BoundaryReason.USER_INITIATED)


def primary_signal(signals: Sequence[DetectionSignal]) -> DetectionSignal:
    """Signal with the highest strength * confidence (first wins ties)."""
    return max(signals, key=lambda s: s.score)


def decide_boundary(
    signals: Sequence[DetectionSignal],
    config: DetectionConfig,
    threshold: float,
    timestamp: float,
) -> SessionBoundary | None:
    """
    Emit a boundary when the weighted signal strength reaches ``threshold``.

    Args:
        signals: Signals generated for the current event
        config: Active detection configuration (supplies family weights)
        threshold: Active boundary threshold
        timestamp: Event time for the boundary

    Returns:
        SessionBoundary with signal provenance in metadata, or None
    """
    if not signals:
        return None

    strength = weighted_signal_strength(signals, config)
    if strength < threshold:
        return None

    primary = primary_signal(signals)
    metadata = {
        **primary.metadata,
        "primary_signal": primary.subtype,
        "signal_strength": primary.strength,
        "signal_confidence": primary.confidence,
        "total_signals": len(signals),
        "all_signal_types": [s.subtype for s in signals],
        "weighted_strength": strength,
        "threshold": threshold,
        "detection_engine": "enhanced",
    }
    return SessionBoundary.create(reason_for(primary.subtype), timestamp, metadata)
