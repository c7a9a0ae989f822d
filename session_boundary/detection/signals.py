"""
Signal generators.

Each family reads the event and the already-updated DetectionContext and
returns zero or more DetectionSignals. Generators never mutate the context.
"""

from collections.abc import Iterable
from urllib.parse import urlsplit

from session_boundary.detection.context import DetectionContext
from session_boundary.detection.domains import (
    DomainCategorizer,
    domain_similarity,
    extract_domain,
)
from session_boundary.models.events import (
    BrowsingEvent,
    DetectionSignal,
    EventType,
    SignalType,
)
from session_boundary.models.patterns import BehaviorPattern, PatternType
from session_boundary.utils.config_validator import DetectionConfig

BURST_WINDOW_MS = 60_000
TAB_CLUSTER_WINDOW_MS = 30_000
LONG_SESSION_MS = 8 * 3_600_000
LONG_SESSION_CAP_MS = 12 * 3_600_000
WORK_TRANSITION_HOURS = {
    9: "work_start",
    12: "lunch_break",
    17: "work_end",
    22: "evening_wind_down",
}
AUTH_PATH_MARKERS = ("login", "signin", "auth")


def category_tag(category: str) -> str:
    """Pattern tag for a domain category."""
    return f"category:{category}"


def temporal_signals(
    event: BrowsingEvent, context: DetectionContext, config: DetectionConfig
) -> list[DetectionSignal]:
    """Idle overflow, post-quiet bursts and navigation gaps."""
    ts = event.timestamp
    signals = []

    idle = context.last_idle_duration
    if idle > config.idle_threshold:
        strength = min((idle - config.idle_grace_period) / config.idle_threshold, 1.0)
        if strength > 0:
            signals.append(
                DetectionSignal(
                    type=SignalType.TEMPORAL,
                    subtype="extended_idle",
                    strength=strength,
                    confidence=0.9,
                    timestamp=ts,
                    metadata={"idle_duration": idle, "threshold": config.idle_threshold},
                )
            )

    burst = context.events_between(ts - BURST_WINDOW_MS, ts)
    if len(burst) > 3:
        burst_start = min(e.timestamp for e in burst)
        earlier = [e.timestamp for e in context.recent_events if e.timestamp < burst_start]
        if earlier:
            quiet = burst_start - max(earlier)
            if quiet >= 0.5 * config.idle_threshold:
                signals.append(
                    DetectionSignal(
                        type=SignalType.TEMPORAL,
                        subtype="activity_burst",
                        strength=min(len(burst) / 10, 1.0),
                        confidence=0.7,
                        timestamp=ts,
                        metadata={"quiet_period": quiet, "burst_events": len(burst)},
                    )
                )

    if event.type.is_navigation:
        prior = [
            e.timestamp
            for e in context.recent_events
            if e is not event and e.type.is_navigation and e.timestamp <= ts
        ]
        if prior:
            gap = ts - max(prior)
            if gap > config.session_gap_threshold:
                signals.append(
                    DetectionSignal(
                        type=SignalType.TEMPORAL,
                        subtype="navigation_gap",
                        strength=min(gap / (2 * config.session_gap_threshold), 1.0),
                        confidence=0.8,
                        timestamp=ts,
                        metadata={"gap": gap, "threshold": config.session_gap_threshold},
                    )
                )

    return signals


def _url_path(url: str) -> str | None:
    try:
        return urlsplit(url).path.lower()
    except ValueError:
        return None


def spatial_signals(
    event: BrowsingEvent,
    context: DetectionContext,
    config: DetectionConfig,
    categorize: DomainCategorizer,
) -> list[DetectionSignal]:
    """Domain changes, category transitions and URL heuristics."""
    domain = extract_domain(event.url)
    if domain is None:
        return []

    ts = event.timestamp
    signals = []
    previous = context.previous_domains

    if previous and config.domain_change_session_boundary:
        threshold = context.adaptive_thresholds.get(
            "domain_similarity_threshold", config.domain_similarity_threshold
        )
        similarity = max(domain_similarity(domain, d, categorize) for d in previous)
        if similarity < threshold:
            signals.append(
                DetectionSignal(
                    type=SignalType.SPATIAL,
                    subtype="domain_change",
                    strength=1.0 - similarity,
                    confidence=0.8,
                    timestamp=ts,
                    metadata={
                        "domain": domain,
                        "similarity": similarity,
                        "previous_domains": sorted(previous),
                    },
                )
            )

        category = categorize(domain)
        previous_categories = {context.domain_categories.get(d) or categorize(d) for d in previous}
        if category not in previous_categories:
            signals.append(
                DetectionSignal(
                    type=SignalType.SPATIAL,
                    subtype="category_transition",
                    strength=0.7,
                    confidence=0.6,
                    timestamp=ts,
                    metadata={
                        "from_categories": sorted(previous_categories),
                        "to_category": category,
                    },
                )
            )

    path = _url_path(event.url)
    if path is not None:
        if any(marker in path for marker in AUTH_PATH_MARKERS):
            url_pattern = "authentication"
        elif path in ("", "/"):
            url_pattern = "home_page"
        else:
            url_pattern = None
        if url_pattern:
            signals.append(
                DetectionSignal(
                    type=SignalType.SPATIAL,
                    subtype="url_pattern",
                    strength=0.5,
                    confidence=0.4,
                    timestamp=ts,
                    metadata={"pattern": url_pattern, "domain": domain},
                )
            )

    return signals


def behavioral_signals(
    event: BrowsingEvent, context: DetectionContext, config: DetectionConfig
) -> list[DetectionSignal]:
    """Tab clustering, closing down to the last window and velocity shifts."""
    ts = event.timestamp
    signals = []

    if event.type in (EventType.TAB_CREATED, EventType.TAB_ACTIVATED):
        tab_events = [
            e for e in context.events_between(ts - TAB_CLUSTER_WINDOW_MS, ts) if e.type.is_tab
        ]
        if len(tab_events) > 5:
            signals.append(
                DetectionSignal(
                    type=SignalType.BEHAVIORAL,
                    subtype="tab_clustering",
                    strength=min(len(tab_events) / 10, 1.0),
                    confidence=0.6,
                    timestamp=ts,
                    metadata={"tab_events": len(tab_events), "window": TAB_CLUSTER_WINDOW_MS},
                )
            )

    if event.type == EventType.WINDOW_REMOVED:
        remaining = context.session.window_count
        if remaining <= 1:
            signals.append(
                DetectionSignal(
                    type=SignalType.BEHAVIORAL,
                    subtype="window_closing",
                    strength=0.9 if remaining == 0 else 0.6,
                    confidence=0.8,
                    timestamp=ts,
                    metadata={"remaining_windows": remaining},
                )
            )

    # Trailing rate: events 10-20 minutes ago, per minute
    trailing = len(
        [e for e in context.recent_events if ts - 20 * 60_000 <= e.timestamp < ts - 10 * 60_000]
    ) / 10
    delta = abs(context.event_velocity - trailing)
    if delta > 5:
        signals.append(
            DetectionSignal(
                type=SignalType.BEHAVIORAL,
                subtype="velocity_change",
                strength=min(delta / 20, 1.0),
                confidence=0.5,
                timestamp=ts,
                metadata={"current_velocity": context.event_velocity, "trailing_velocity": trailing},
            )
        )

    return signals


def contextual_signals(
    event: BrowsingEvent, context: DetectionContext, config: DetectionConfig
) -> list[DetectionSignal]:
    """Work-day transition hours and very long sessions."""
    if not config.contextual_analysis:
        return []

    ts = event.timestamp
    signals = []

    transition = WORK_TRANSITION_HOURS.get(context.time_of_day)
    if transition:
        signals.append(
            DetectionSignal(
                type=SignalType.CONTEXTUAL,
                subtype="work_transition",
                strength=0.6,
                confidence=0.5,
                timestamp=ts,
                metadata={"hour": context.time_of_day, "transition": transition},
            )
        )

    duration = context.session.duration
    if duration > LONG_SESSION_MS:
        signals.append(
            DetectionSignal(
                type=SignalType.CONTEXTUAL,
                subtype="long_session",
                strength=min(duration / LONG_SESSION_CAP_MS, 1.0),
                confidence=0.7,
                timestamp=ts,
                metadata={"session_duration": duration},
            )
        )

    return signals


def learned_signals(
    event: BrowsingEvent,
    config: DetectionConfig,
    patterns: Iterable[BehaviorPattern],
    categorize: DomainCategorizer,
) -> list[DetectionSignal]:
    """
    Emit a signal for each established domain-switch pattern matching the event.

    A domain-switch pattern matches with its own confidence when its tags
    include the category of the event's domain. Other pattern types never
    match, and patterns seen fewer than ``minimum_pattern_length`` times are
    ignored.
    """
    if not config.learning_enabled:
        return []
    domain = extract_domain(event.url)
    if domain is None:
        return []

    tag = category_tag(categorize(domain))
    signals = []
    for pattern in patterns:
        if pattern.type is not PatternType.DOMAIN_SWITCH:
            continue
        if pattern.frequency < config.minimum_pattern_length:
            continue
        match = pattern.confidence if tag in pattern.pattern else 0.0
        if match > config.pattern_confidence_threshold:
            signals.append(
                DetectionSignal(
                    type=SignalType.LEARNED,
                    subtype=f"pattern_{pattern.type.value}",
                    strength=match,
                    confidence=pattern.confidence,
                    timestamp=event.timestamp,
                    metadata={"pattern_id": pattern.id, "frequency": pattern.frequency},
                )
            )
    return signals


def generate_signals(
    event: BrowsingEvent,
    context: DetectionContext,
    config: DetectionConfig,
    patterns: Iterable[BehaviorPattern],
    categorize: DomainCategorizer,
) -> list[DetectionSignal]:
    """Run every generator family for one event."""
    if not event.is_well_formed():
        return []
    return [
        *temporal_signals(event, context, config),
        *spatial_signals(event, context, config, categorize),
        *behavioral_signals(event, context, config),
        *contextual_signals(event, context, config),
        *learned_signals(event, config, patterns, categorize),
    ]
