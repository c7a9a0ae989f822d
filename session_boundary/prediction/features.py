"""Feature extraction and normalization for the boundary predictor."""

from collections.abc import Sequence
from datetime import datetime

from session_boundary.detection.domains import (
    UNKNOWN_DOMAIN,
    DomainCategorizer,
    domain_similarity,
    extract_domain,
)
from session_boundary.models.events import BrowsingEvent, EventType
from session_boundary.models.prediction import FeatureVector

RECENT_WINDOW_MS = 5 * 60_000
BURST_EVENTS_PER_MINUTE = 5
LONG_SESSION_MS = 8 * 3_600_000
WORK_TRANSITION_HOURS = (9, 12, 17, 22)

# Upper bounds used to scale raw feature values into [0, 1]
_NORMALIZATION_CAPS = {
    "time_since_last_event": 30 * 60_000,
    "time_of_day": 23,
    "day_of_week": 6,
    "session_duration": 12 * 3_600_000,
    "event_velocity": 10,
    "recent_event_count": 50,
    "idle_time": 3_600_000,
    "domain_change_count": 10,
    "category_change_count": 10,
    "max_navigation_gap": 30 * 60_000,
    "tab_switches": 20,
    "focus_time": 30 * 60_000,
    "window_changes": 5,
}


def normalize_feature(name: str, value: float) -> float:
    """Scale a raw feature value into [0, 1]."""
    cap = _NORMALIZATION_CAPS.get(name)
    if cap is not None:
        value = value / cap
    return max(0.0, min(1.0, value))


def _count_changes(labels: Sequence[str]) -> int:
    return sum(1 for prev, cur in zip(labels, labels[1:]) if cur != prev)


def _idle_time(events: Sequence[BrowsingEvent]) -> float:
    total = 0.0
    idle_start = None
    for e in events:
        if e.type == EventType.IDLE_START:
            idle_start = e.timestamp
        elif e.type == EventType.IDLE_END and idle_start is not None:
            total += e.timestamp - idle_start
            idle_start = None
    return total


def _focus_time(events: Sequence[BrowsingEvent]) -> float:
    activations = [e.timestamp for e in events if e.type == EventType.TAB_ACTIVATED]
    if len(activations) < 2:
        return 0.0
    return activations[-1] - activations[-2]


def extract_features(
    event: BrowsingEvent,
    recent_events: Sequence[BrowsingEvent],
    categorize: DomainCategorizer,
) -> FeatureVector:
    """
    Summarize the activity leading up to ``event``.

    Features come from the event and the recent window only. The engine's
    signals for the same event are not an input here; the predictor uses them
    for its reasoning text alone, so a forecast stays independent of the
    decision it is later scored against.

    Args:
        event: Current event
        recent_events: Events before ``event``, oldest first
        categorize: Hostname -> category function

    Returns:
        FeatureVector with raw (unnormalized) values
    """
    now = event.timestamp
    try:
        local = datetime.fromtimestamp(now / 1000)
        hour, day_of_week = local.hour, (local.weekday() + 1) % 7
    except (OverflowError, OSError, ValueError):
        hour, day_of_week = 0, 0

    time_since_last = now - recent_events[-1].timestamp if recent_events else 0.0
    session_duration = now - recent_events[0].timestamp if recent_events else 0.0

    recent = [e for e in recent_events if now - e.timestamp < RECENT_WINDOW_MS]
    event_velocity = len(recent) / RECENT_WINDOW_MS * 60_000

    recent_domains = [extract_domain(e.url) or UNKNOWN_DOMAIN for e in recent if e.url]
    all_domains = [extract_domain(e.url) or UNKNOWN_DOMAIN for e in recent_events if e.url]
    domain_change_count = _count_changes(recent_domains)
    category_change_count = _count_changes([categorize(d) for d in recent_domains])

    current_domain = extract_domain(event.url)
    if current_domain and all_domains:
        similarity = max(
            domain_similarity(current_domain, d, categorize, category_score=0.6)
            for d in set(all_domains)
        )
    else:
        similarity = 0.0

    navigation = [e.timestamp for e in recent_events if e.type.is_navigation]
    gaps = [b - a for a, b in zip(navigation, navigation[1:])]

    window_changes = sum(1 for e in recent_events if e.type.is_window)
    tab_switches = sum(1 for e in recent_events if e.type == EventType.TAB_ACTIVATED)

    return FeatureVector(
        time_since_last_event=time_since_last,
        time_of_day=hour,
        day_of_week=day_of_week,
        session_duration=session_duration,
        event_velocity=event_velocity,
        recent_event_count=len(recent),
        idle_time=_idle_time([*recent_events, event]),
        domain_change_count=domain_change_count,
        category_change_count=category_change_count,
        domain_similarity=similarity,
        max_navigation_gap=max(gaps, default=0.0),
        back_navigation=event.metadata.get("transition_type") == "auto_bookmark",
        tab_switches=tab_switches,
        focus_time=_focus_time(recent_events),
        burst_activity=event_velocity > BURST_EVENTS_PER_MINUTE,
        window_changes=window_changes,
        is_working_hours=1 <= day_of_week <= 5 and 9 <= hour <= 17,
        work_transition=hour in WORK_TRANSITION_HOURS,
        long_session=session_duration > LONG_SESSION_MS,
    )
