"""Data models for the boundary predictor."""

from dataclasses import asdict, dataclass, field
from typing import Any

from session_boundary.models.events import SessionBoundary


@dataclass
class FeatureVector:
    """Numeric and boolean summary of the activity around one event."""

    # Temporal
    time_since_last_event: float = 0.0
    time_of_day: float = 0.0
    day_of_week: float = 0.0
    session_duration: float = 0.0
    # Activity
    event_velocity: float = 0.0
    recent_event_count: float = 0.0
    idle_time: float = 0.0
    # Domain
    domain_change_count: float = 0.0
    category_change_count: float = 0.0
    domain_similarity: float = 1.0
    # Navigation
    max_navigation_gap: float = 0.0
    back_navigation: bool = False
    tab_switches: float = 0.0
    # Behavioral
    focus_time: float = 0.0
    burst_activity: bool = False
    window_changes: float = 0.0
    # Contextual
    is_working_hours: bool = False
    work_transition: bool = False
    long_session: bool = False

    def get(self, name: str) -> float:
        """Read a feature as a float."""
        return float(getattr(self, name))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "FeatureVector":
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})


FEATURE_NAMES: tuple[str, ...] = tuple(FeatureVector.__dataclass_fields__)


@dataclass
class PredictionModel:
    """One feature-weighted logistic scorer inside the ensemble."""

    id: str
    type: str
    features: list[str]
    weights: dict[str, float]
    accuracy: float = 0.5
    last_trained: float = 0.0
    predictions: int = 0
    correct_predictions: int = 0

    def renormalize(self):
        """Scale weights so they sum to 1."""
        total = sum(self.weights.values())
        if total <= 0:
            equal = 1.0 / len(self.features)
            self.weights = {name: equal for name in self.features}
            return
        self.weights = {name: weight / total for name, weight in self.weights.items()}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "features": list(self.features),
            "weights": dict(self.weights),
            "accuracy": self.accuracy,
            "last_trained": self.last_trained,
            "predictions": self.predictions,
            "correct_predictions": self.correct_predictions,
        }


@dataclass
class BoundaryPrediction:
    """Ensemble forecast for a single event."""

    timestamp: float
    probability: float
    confidence: float
    features: FeatureVector
    reasoning: list[str] = field(default_factory=list)
    model_predictions: dict[str, float] = field(default_factory=dict)
    predicted_boundary: SessionBoundary | None = None

    def __post_init__(self):
        self.probability = max(0.0, min(1.0, self.probability))
        self.confidence = max(0.0, min(1.0, self.confidence))

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "probability": self.probability,
            "confidence": self.confidence,
            "features": self.features.to_dict(),
            "reasoning": list(self.reasoning),
            "model_predictions": dict(self.model_predictions),
            "predicted_boundary": (
                self.predicted_boundary.to_dict() if self.predicted_boundary else None
            ),
        }


@dataclass
class TrainingSample:
    """Labeled feature vector recorded after an outcome is known."""

    features: FeatureVector
    label: bool
    timestamp: float
    boundary_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "features": self.features.to_dict(),
            "label": self.label,
            "timestamp": self.timestamp,
            "boundary_id": self.boundary_id,
        }
