"""Data models for browsing events, detection signals and session boundaries."""

import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Closed set of browsing activity events accepted by the detector."""

    TAB_CREATED = "tab_created"
    TAB_UPDATED = "tab_updated"
    TAB_REMOVED = "tab_removed"
    TAB_ACTIVATED = "tab_activated"
    TAB_MOVED = "tab_moved"
    TAB_PINNED = "tab_pinned"
    TAB_UNPINNED = "tab_unpinned"
    TAB_MUTED = "tab_muted"
    TAB_UNMUTED = "tab_unmuted"
    WINDOW_CREATED = "window_created"
    WINDOW_REMOVED = "window_removed"
    WINDOW_FOCUS_CHANGED = "window_focus_changed"
    WINDOW_STATE_CHANGED = "window_state_changed"
    NAVIGATION_STARTED = "navigation_started"
    NAVIGATION_COMPLETED = "navigation_completed"
    NAVIGATION_COMMITTED = "navigation_committed"
    NAVIGATION_ERROR = "navigation_error"
    PAGE_LOADED = "page_loaded"
    PAGE_UNLOADED = "page_unloaded"
    FORM_INTERACTION = "form_interaction"
    SCROLL_EVENT = "scroll_event"
    CLICK_EVENT = "click_event"
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    IDLE_START = "idle_start"
    IDLE_END = "idle_end"

    @property
    def is_tab(self) -> bool:
        return self.value.startswith("tab_")

    @property
    def is_window(self) -> bool:
        return self.value.startswith("window_")

    @property
    def is_navigation(self) -> bool:
        return self in NAVIGATION_EVENT_TYPES


NAVIGATION_EVENT_TYPES = frozenset(
    {
        EventType.NAVIGATION_STARTED,
        EventType.NAVIGATION_COMPLETED,
        EventType.NAVIGATION_COMMITTED,
        EventType.PAGE_LOADED,
    }
)

# Metadata keys understood by the detector, with accepted value types.
# Keys outside the vocabulary of an event's family are dropped on construction.
METADATA_VOCABULARY: dict[str, tuple[type, ...]] = {
    "source": (str,),
    "transition_type": (str,),
    "transition_qualifiers": (list, tuple),
    "frame_id": (int,),
    "opener_tab_id": (int,),
    "index": (int,),
    "pinned": (bool,),
    "muted": (bool,),
    "window_type": (str,),
    "window_state": (str,),
    "focused": (bool,),
    "idle_state": (str,),
    "error": (str,),
    "status_code": (int,),
    "load_time": (int, float),
    "scroll_depth": (int, float),
    "element": (str,),
    "form_action": (str,),
}

_COMMON_KEYS = frozenset({"source"})
_FAMILY_KEYS: dict[str, frozenset[str]] = {
    "tab": frozenset({"opener_tab_id", "index", "pinned", "muted"}),
    "window": frozenset({"window_type", "window_state", "focused"}),
    "navigation": frozenset(
        {"transition_type", "transition_qualifiers", "frame_id", "error", "status_code", "load_time"}
    ),
    "interaction": frozenset({"scroll_depth", "element", "form_action"}),
    "session": frozenset({"idle_state"}),
}


def metadata_family(event_type: EventType) -> str:
    """Map an event type to the metadata vocabulary family it draws from."""
    if event_type.is_tab:
        return "tab"
    if event_type.is_window:
        return "window"
    if event_type.value.startswith(("navigation_", "page_")):
        return "navigation"
    if event_type in (EventType.FORM_INTERACTION, EventType.SCROLL_EVENT, EventType.CLICK_EVENT):
        return "interaction"
    return "session"


def validate_metadata(event_type: EventType, metadata: dict | None) -> dict[str, Any]:
    """
    Filter a raw metadata bag down to the documented vocabulary.

    Args:
        event_type: Type of the event carrying the metadata
        metadata: Raw key/value pairs from the event source

    Returns:
        New dictionary holding only known keys with correctly typed values
    """
    if not metadata:
        return {}

    allowed = _COMMON_KEYS | _FAMILY_KEYS[metadata_family(event_type)]
    clean: dict[str, Any] = {}
    for key, value in metadata.items():
        expected = METADATA_VOCABULARY.get(key)
        if key not in allowed or expected is None:
            logger.debug(f"Dropping metadata key '{key}' for {event_type.value}")
            continue
        # bool is an int subclass; keep integer fields strict
        if isinstance(value, bool) and bool not in expected:
            logger.debug(f"Dropping metadata key '{key}': unexpected bool")
            continue
        if not isinstance(value, expected):
            logger.debug(f"Dropping metadata key '{key}': unexpected {type(value).__name__}")
            continue
        clean[key] = list(value) if isinstance(value, tuple) else value
    return clean


def _coerce_timestamp(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


@dataclass(frozen=True)
class BrowsingEvent:
    """
    A single browsing activity fact delivered by the host.

    Events are read-only inside the detector. Timestamps are milliseconds
    since the epoch; a missing or non-numeric timestamp is stored as NaN and
    the event is treated as malformed rather than rejected.
    """

    id: str
    timestamp: float
    type: EventType
    tab_id: int | None = None
    window_id: int | None = None
    url: str | None = None
    title: str | None = None
    session_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Coerce the event type and restrict metadata to the vocabulary."""
        if not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType(self.type))
        object.__setattr__(self, "metadata", validate_metadata(self.type, self.metadata))

    def is_well_formed(self) -> bool:
        """Check that the event carries a usable timestamp."""
        return (
            isinstance(self.timestamp, (int, float))
            and not isinstance(self.timestamp, bool)
            and math.isfinite(self.timestamp)
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "tab_id": self.tab_id,
            "window_id": self.window_id,
            "url": self.url,
            "title": self.title,
            "session_id": self.session_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BrowsingEvent":
        """
        Create an event from a raw payload.

        Raises:
            ValueError: If the event type is not a known EventType
        """
        return cls(
            id=str(data.get("id") or f"event_{uuid.uuid4().hex[:12]}"),
            timestamp=_coerce_timestamp(data.get("timestamp")),
            type=EventType(data["type"]),
            tab_id=data.get("tab_id"),
            window_id=data.get("window_id"),
            url=data.get("url"),
            title=data.get("title"),
            session_id=data.get("session_id"),
            metadata=data.get("metadata") or {},
        )


class SignalType(str, Enum):
    """Evidence families produced by the signal generators."""

    TEMPORAL = "temporal"
    SPATIAL = "spatial"
    BEHAVIORAL = "behavioral"
    CONTEXTUAL = "contextual"
    LEARNED = "learned"


def clamp_unit(value: float) -> float:
    """Clamp a score into [0, 1], mapping NaN to 0."""
    if value != value:
        return 0.0
    return max(0.0, min(1.0, float(value)))


@dataclass
class DetectionSignal:
    """A scored piece of evidence suggesting a session boundary."""

    type: SignalType
    subtype: str
    strength: float
    confidence: float
    timestamp: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.strength = clamp_unit(self.strength)
        self.confidence = clamp_unit(self.confidence)

    @property
    def score(self) -> float:
        """Strength weighted by confidence."""
        return self.strength * self.confidence

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "subtype": self.subtype,
            "strength": self.strength,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }


class BoundaryType(str, Enum):
    START = "start"
    END = "end"


class BoundaryReason(str, Enum):
    """Attributed cause of a session boundary."""

    USER_INITIATED = "user_initiated"
    IDLE_TIMEOUT = "idle_timeout"
    NAVIGATION_GAP = "navigation_gap"
    DOMAIN_CHANGE = "domain_change"
    WINDOW_CLOSED = "window_closed"


@dataclass(frozen=True)
class SessionBoundary:
    """
    Decision output of the detector.

    Immutable once created; the caller assigns the owning session through
    with_session().
    """

    id: str
    type: BoundaryType
    reason: BoundaryReason
    timestamp: float
    session_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        reason: BoundaryReason,
        timestamp: float,
        metadata: dict[str, Any] | None = None,
        boundary_type: BoundaryType = BoundaryType.END,
    ) -> "SessionBoundary":
        """Create a boundary with a fresh id."""
        return cls(
            id=f"boundary_{uuid.uuid4().hex[:12]}",
            type=boundary_type,
            reason=reason,
            timestamp=timestamp,
            metadata=metadata or {},
        )

    def with_session(self, session_id: str) -> "SessionBoundary":
        """Return a copy bound to the given session."""
        return replace(self, session_id=session_id)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "type": self.type.value,
            "reason": self.reason.value,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "metadata": dict(self.metadata),
        }
