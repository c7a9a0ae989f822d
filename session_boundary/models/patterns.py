"""Data models for learned behavior patterns."""

from dataclasses import dataclass, field
from enum import Enum


class PatternType(str, Enum):
    DOMAIN_SWITCH = "domain_switch"
    IDLE = "idle"
    NAVIGATION_BURST = "navigation_burst"
    TAB_CLUSTERING = "tab_clustering"
    TIME_BASED = "time_based"


@dataclass
class BehaviorPattern:
    """
    Decaying memory of an observed signal or boundary combination.

    The pattern body is a list of feature tags: signal subtypes plus
    ``category:<name>`` tags for the domain categories seen alongside it.
    """

    id: str
    type: PatternType
    pattern: list[str] = field(default_factory=list)
    frequency: int = 1
    last_seen: float = 0.0
    confidence: float = 0.5
    user_specific: bool = True

    def add_tags(self, tags: list[str]):
        """Merge new feature tags, keeping first-seen order."""
        for tag in tags:
            if tag not in self.pattern:
                self.pattern.append(tag)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "type": self.type.value,
            "pattern": list(self.pattern),
            "frequency": self.frequency,
            "last_seen": self.last_seen,
            "confidence": self.confidence,
            "user_specific": self.user_specific,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BehaviorPattern":
        """Create pattern from dictionary."""
        return cls(
            id=data["id"],
            type=PatternType(data["type"]),
            pattern=list(data.get("pattern", [])),
            frequency=int(data.get("frequency", 1)),
            last_seen=float(data.get("last_seen", 0.0)),
            confidence=max(0.0, min(1.0, float(data.get("confidence", 0.5)))),
            user_specific=bool(data.get("user_specific", True)),
        )
