"""Rolling detection context and the update phase that precedes signal generation."""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from session_boundary.detection.domains import DomainCategorizer, extract_domain
from session_boundary.models.events import BrowsingEvent, EventType
from session_boundary.utils.config_validator import DetectionConfig

logger = logging.getLogger(__name__)

RECENT_EVENT_CAP = 50
RECENT_EVENT_KEEP = 25
ACTIVE_DOMAIN_CAP = 15
ACTIVE_DOMAIN_RECOMPUTE_WINDOW = 20
VELOCITY_WINDOW_MS = 5 * 60_000
WORK_START_HOUR = 9
WORK_END_HOUR = 17


@dataclass
class SessionCounters:
    """Per-session running counters."""

    started_at: float | None = None
    duration: float = 0.0
    tab_count: int = 0
    window_count: int = 1
    domain_count: int = 0
    last_activity: float | None = None


@dataclass
class DetectionContext:
    """
    Mutable rolling state owned by one detection engine.

    The ``previous_*`` fields and ``last_idle_duration`` hold what the most
    recent update_context() call replaced, so signal generators can compare
    the current event against the state that existed before it.
    """

    current_time: float = 0.0
    time_of_day: int = 0
    day_of_week: int = 0  # 0 = Sunday
    is_working_hours: bool = False
    recent_events: list[BrowsingEvent] = field(default_factory=list)
    event_velocity: float = 0.0
    session: SessionCounters = field(default_factory=SessionCounters)
    active_domains: set[str] = field(default_factory=set)
    domain_categories: dict[str, str] = field(default_factory=dict)
    adaptive_thresholds: dict[str, float] = field(default_factory=dict)

    previous_activity: float | None = None
    previous_domains: frozenset[str] = frozenset()
    idle_started_at: float | None = None
    last_idle_duration: float = 0.0

    @classmethod
    def create(cls, config: DetectionConfig) -> "DetectionContext":
        """Create an empty context with thresholds seeded from config."""
        context = cls()
        context.seed_thresholds(config)
        return context

    def seed_thresholds(self, config: DetectionConfig):
        self.adaptive_thresholds.update(
            {
                "boundary_threshold": config.boundary_threshold,
                "idle_threshold": float(config.idle_threshold),
                "domain_similarity_threshold": config.domain_similarity_threshold,
            }
        )

    def start_session(self, timestamp: float):
        """Restart session timing at a boundary; tab and window counts carry over."""
        self.session.started_at = timestamp
        self.session.duration = 0.0

    def events_between(self, start: float, end: float) -> list[BrowsingEvent]:
        """Recent events with start <= timestamp <= end."""
        return [e for e in self.recent_events if start <= e.timestamp <= end]

    def summary(self) -> dict:
        """JSON-serializable snapshot used by exports."""
        return {
            "current_time": self.current_time,
            "time_of_day": self.time_of_day,
            "day_of_week": self.day_of_week,
            "is_working_hours": self.is_working_hours,
            "recent_events": [e.to_dict() for e in self.recent_events[-10:]],
            "event_velocity": self.event_velocity,
            "session": {
                "started_at": self.session.started_at,
                "duration": self.session.duration,
                "tab_count": self.session.tab_count,
                "window_count": self.session.window_count,
                "domain_count": self.session.domain_count,
                "last_activity": self.session.last_activity,
            },
            "active_domains": sorted(self.active_domains),
            "domain_categories": dict(self.domain_categories),
            "adaptive_thresholds": dict(self.adaptive_thresholds),
        }


def _apply_clock(context: DetectionContext, timestamp: float):
    context.current_time = timestamp
    try:
        local = datetime.fromtimestamp(timestamp / 1000)
    except (OverflowError, OSError, ValueError):
        logger.debug(f"Timestamp {timestamp} outside the platform clock range")
        return
    context.time_of_day = local.hour
    context.day_of_week = (local.weekday() + 1) % 7
    context.is_working_hours = (
        1 <= context.day_of_week <= 5 and WORK_START_HOUR <= local.hour <= WORK_END_HOUR
    )


def update_context(
    context: DetectionContext,
    event: BrowsingEvent,
    categorize: DomainCategorizer,
):
    """
    Fold one well-formed event into the rolling context.

    Must run before signal generation for the same event.
    """
    ts = event.timestamp
    context.previous_activity = context.session.last_activity
    context.previous_domains = frozenset(context.active_domains)
    context.last_idle_duration = 0.0

    _apply_clock(context, ts)

    context.recent_events.append(event)
    if len(context.recent_events) > RECENT_EVENT_CAP:
        context.recent_events = context.recent_events[-RECENT_EVENT_KEEP:]

    in_window = len(context.events_between(ts - VELOCITY_WINDOW_MS, ts))
    context.event_velocity = in_window / (VELOCITY_WINDOW_MS / 60_000)

    session = context.session
    if session.started_at is None:
        session.started_at = ts
    # bounded by the rolling window as well as by the last boundary
    window_start = max(session.started_at, context.recent_events[0].timestamp)
    session.duration = max(0.0, ts - window_start)
    session.last_activity = ts

    if event.type == EventType.TAB_CREATED:
        session.tab_count += 1
    elif event.type == EventType.TAB_REMOVED:
        session.tab_count = max(0, session.tab_count - 1)
    elif event.type == EventType.WINDOW_CREATED:
        session.window_count += 1
    elif event.type == EventType.WINDOW_REMOVED:
        session.window_count = max(0, session.window_count - 1)

    if event.type == EventType.IDLE_START:
        if context.idle_started_at is None:
            context.idle_started_at = ts
    elif context.idle_started_at is not None:
        context.last_idle_duration = max(0.0, ts - context.idle_started_at)
        context.idle_started_at = None

    domain = extract_domain(event.url)
    if domain:
        context.active_domains.add(domain)
        context.domain_categories[domain] = categorize(domain)
        if len(context.active_domains) > ACTIVE_DOMAIN_CAP:
            # most recent distinct domains, newest first
            window = context.recent_events[-ACTIVE_DOMAIN_RECOMPUTE_WINDOW:]
            recent = [d for d in (extract_domain(e.url) for e in reversed(window)) if d]
            context.active_domains = set(list(dict.fromkeys(recent))[:ACTIVE_DOMAIN_CAP])
            context.domain_categories = {
                d: c for d, c in context.domain_categories.items() if d in context.active_domains
            }
        session.domain_count = len(context.active_domains)
