"""Ensemble boundary predictor that learns from detection outcomes."""

import logging
import math
from collections.abc import Sequence
from typing import Any

import numpy as np

from session_boundary.detection.domains import DomainCategorizer, DomainClassifier
from session_boundary.models.events import (
    BoundaryReason,
    BoundaryType,
    BrowsingEvent,
    DetectionSignal,
    SessionBoundary,
)
from session_boundary.models.prediction import (
    BoundaryPrediction,
    FeatureVector,
    PredictionModel,
    TrainingSample,
)
from session_boundary.prediction.features import extract_features, normalize_feature
from session_boundary.utils.config_validator import DetectionConfig, coerce_config

logger = logging.getLogger(__name__)

FEATURE_HISTORY_CAP = 1000
FEATURE_HISTORY_KEEP = 500
TRAINING_DATA_CAP = 500
TRAINING_DATA_KEEP = 250
PREDICTION_CAP = 1000
PREDICTION_MAX_AGE_MS = 24 * 3_600_000
RETRAIN_MIN_SAMPLES = 50
RETRAIN_INTERVAL = 10
MIN_IMPORTANCE_SAMPLES = 5
MIN_FEATURE_WEIGHT = 0.01

MODEL_DEFINITIONS: dict[str, dict[str, float]] = {
    # Time-based patterns
    "temporal": {
        "time_since_last_event": 0.25,
        "time_of_day": 0.15,
        "session_duration": 0.20,
        "idle_time": 0.15,
        "is_working_hours": 0.10,
        "work_transition": 0.10,
        "long_session": 0.05,
    },
    # Event sequences and navigation
    "sequential": {
        "event_velocity": 0.20,
        "domain_change_count": 0.20,
        "category_change_count": 0.15,
        "tab_switches": 0.15,
        "back_navigation": 0.10,
        "burst_activity": 0.10,
        "focus_time": 0.10,
    },
    "ensemble": {
        "time_since_last_event": 0.15,
        "session_duration": 0.12,
        "event_velocity": 0.12,
        "domain_change_count": 0.12,
        "category_change_count": 0.10,
        "idle_time": 0.10,
        "tab_switches": 0.10,
        "burst_activity": 0.10,
        "work_transition": 0.09,
    },
}


def create_models() -> dict[str, PredictionModel]:
    """Build the three prediction models with their initial weights."""
    return {
        model_id: PredictionModel(
            id=model_id,
            type=model_id,
            features=list(weights),
            weights=dict(weights),
        )
        for model_id, weights in MODEL_DEFINITIONS.items()
    }


def sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


class BoundaryPredictor:
    """
    Forecasts boundary probability ahead of the decision engine.

    Three feature-weighted models score every event; their outputs are
    combined weighted by each model's tracked accuracy. Outcomes fed back via
    train_with_outcome() update accuracy and, periodically, feature weights.
    """

    def __init__(
        self,
        config: DetectionConfig | dict[str, Any] | None = None,
        classifier: DomainCategorizer | None = None,
    ):
        self.config = coerce_config(config)
        self.categorize = classifier or DomainClassifier()
        self.models = create_models()
        self.training_data: list[TrainingSample] = []
        self.feature_history: list[FeatureVector] = []
        self.predictions: list[BoundaryPrediction] = []

    def predict_boundary(
        self,
        event: BrowsingEvent,
        recent_events: Sequence[BrowsingEvent],
        signals: Sequence[DetectionSignal],
    ) -> BoundaryPrediction:
        """
        Forecast whether ``event`` sits near a session boundary.

        Args:
            event: Current (well-formed) event
            recent_events: Events before ``event``, oldest first
            signals: Signals the engine generated for ``event``; used for the
                reasoning text only, never as model features

        Returns:
            BoundaryPrediction with a candidate boundary when the ensemble
            probability exceeds ``pattern_confidence_threshold``
        """
        features = extract_features(event, recent_events, self.categorize)
        self.feature_history.append(features)
        if len(self.feature_history) > FEATURE_HISTORY_CAP:
            self.feature_history = self.feature_history[-FEATURE_HISTORY_KEEP:]

        model_predictions = {
            model_id: self.predict_with_model(model, features)
            for model_id, model in self.models.items()
        }
        probability = self._ensemble_probability(model_predictions)
        confidence = self._prediction_confidence(list(model_predictions.values()))

        predicted_boundary = None
        if probability > self.config.pattern_confidence_threshold:
            predicted_boundary = self._create_predicted_boundary(
                event, features, probability, confidence
            )

        prediction = BoundaryPrediction(
            timestamp=event.timestamp,
            probability=probability,
            confidence=confidence,
            features=features,
            reasoning=self.generate_reasoning(features, model_predictions, signals),
            model_predictions=model_predictions,
            predicted_boundary=predicted_boundary,
        )

        self.predictions.append(prediction)
        cutoff = event.timestamp - PREDICTION_MAX_AGE_MS
        self.predictions = [p for p in self.predictions if p.timestamp >= cutoff][-PREDICTION_CAP:]
        return prediction

    def predict_with_model(self, model: PredictionModel, features: FeatureVector) -> float:
        """sigmoid of the weighted mean of normalized features."""
        model.predictions += 1
        total_weight = sum(model.weights.get(name, 0.0) for name in model.features)
        if total_weight <= 0:
            return 0.5
        score = sum(
            normalize_feature(name, features.get(name)) * model.weights.get(name, 0.0)
            for name in model.features
        )
        return sigmoid(score / total_weight)

    def _ensemble_probability(self, model_predictions: dict[str, float]) -> float:
        if not model_predictions:
            return 0.0
        probabilities = np.array(list(model_predictions.values()), dtype=float)
        weights = np.array(
            [self.models[model_id].accuracy or 0.5 for model_id in model_predictions], dtype=float
        )
        return float(np.clip(np.dot(probabilities, weights) / weights.sum(), 0.0, 1.0))

    @staticmethod
    def _prediction_confidence(values: list[float]) -> float:
        """Model agreement: 1 - standard deviation of model outputs."""
        if len(values) < 2:
            return 0.5
        return max(0.0, 1.0 - math.sqrt(float(np.var(values))))

    def generate_reasoning(
        self,
        features: FeatureVector,
        model_predictions: dict[str, float],
        signals: Sequence[DetectionSignal],
    ) -> list[str]:
        """Human-readable explanation of a prediction."""
        reasoning = []

        if features.time_since_last_event > 300_000:
            minutes = round(features.time_since_last_event / 60_000)
            reasoning.append(f"Long gap since last activity ({minutes}min)")
        if features.session_duration > 8 * 3_600_000:
            reasoning.append("Extended session duration suggests natural break point")
        if features.work_transition:
            reasoning.append(f"Work transition hour ({int(features.time_of_day)}:00) detected")

        if features.event_velocity < 0.1:
            reasoning.append("Low activity velocity indicates potential session end")
        if features.burst_activity:
            reasoning.append("Activity burst after quiet period suggests new session")

        if features.domain_change_count > 3:
            reasoning.append("Multiple domain changes indicate context switching")
        if features.category_change_count > 2:
            reasoning.append("Category transitions suggest task switching")

        if features.focus_time < 30_000 and features.tab_switches > 5:
            reasoning.append("High distraction pattern with frequent tab switching")
        if features.window_changes > 0:
            reasoning.append("Window management activity detected")

        for signal in signals:
            if signal.strength > 0.7:
                reasoning.append(
                    f"Strong {signal.subtype} signal detected ({round(signal.strength * 100)}%)"
                )

        if model_predictions:
            average = sum(model_predictions.values()) / len(model_predictions)
            if average > 0.8:
                reasoning.append("High model agreement on boundary likelihood")
            elif average < 0.3:
                reasoning.append("Low probability of boundary based on patterns")

        return reasoning or ["No significant boundary indicators detected"]

    def _create_predicted_boundary(
        self,
        event: BrowsingEvent,
        features: FeatureVector,
        probability: float,
        confidence: float,
    ) -> SessionBoundary:
        if features.time_since_last_event > self.config.idle_threshold:
            reason = BoundaryReason.IDLE_TIMEOUT
        elif features.domain_change_count > 2:
            reason = BoundaryReason.DOMAIN_CHANGE
        elif features.max_navigation_gap > self.config.session_gap_threshold:
            reason = BoundaryReason.NAVIGATION_GAP
        elif features.window_changes > 0:
            reason = BoundaryReason.WINDOW_CLOSED
        else:
            reason = BoundaryReason.USER_INITIATED

        boundary = SessionBoundary.create(
            reason,
            event.timestamp + self.config.boundary_prediction_lookahead,
            {
                "predicted": True,
                "probability": probability,
                "confidence": confidence,
                "features": {
                    "time_since_last_event": features.time_since_last_event,
                    "session_duration": features.session_duration,
                    "domain_change_count": features.domain_change_count,
                    "event_velocity": features.event_velocity,
                },
            },
            boundary_type=BoundaryType.END,
        )
        return boundary

    def train_with_outcome(
        self,
        prediction: BoundaryPrediction,
        actual_boundary: SessionBoundary | None,
    ):
        """
        Record the engine's actual decision for a prediction.

        Every model's accuracy moves as accuracy * 0.9 + (correct / predictions) * 0.1;
        ``correct_predictions`` only grows here, while ``predictions`` counts every
        model invocation. Weights are retrained every RETRAIN_INTERVAL samples once
        more than RETRAIN_MIN_SAMPLES are held.
        """
        if not self.config.learning_enabled:
            return

        label = actual_boundary is not None
        self.training_data.append(
            TrainingSample(
                features=prediction.features,
                label=label,
                timestamp=prediction.timestamp,
                boundary_id=actual_boundary.id if actual_boundary else None,
            )
        )
        if len(self.training_data) > TRAINING_DATA_CAP:
            self.training_data = self.training_data[-TRAINING_DATA_KEEP:]

        correct = (prediction.probability > 0.5) == label
        for model in self.models.values():
            if correct:
                model.correct_predictions += 1
            observed = model.correct_predictions / model.predictions if model.predictions else 0.0
            model.accuracy = max(0.0, min(1.0, model.accuracy * 0.9 + observed * 0.1))

        if len(self.training_data) > RETRAIN_MIN_SAMPLES and len(self.training_data) % RETRAIN_INTERVAL == 0:
            self.retrain_models()

        if not correct:
            self._adapt_feature_weights(prediction.features)

    def retrain_models(self):
        """Blend label correlation into every model's weights (80/20) and renormalize."""
        for model in self.models.values():
            importance = self.feature_importance(model.features)
            for name, value in importance.items():
                blended = model.weights.get(name, 0.0) * 0.8 + value * 0.2
                model.weights[name] = max(MIN_FEATURE_WEIGHT, min(1.0, blended))
            model.renormalize()
            if self.training_data:
                model.last_trained = self.training_data[-1].timestamp
        logger.debug(f"Retrained prediction models on {len(self.training_data)} samples")

    def feature_importance(self, feature_names: Sequence[str]) -> dict[str, float]:
        """
        Mean absolute product of normalized feature value and label.

        Falls back to equal importance with fewer than MIN_IMPORTANCE_SAMPLES samples.
        """
        if len(self.training_data) < MIN_IMPORTANCE_SAMPLES:
            equal = 1.0 / len(feature_names)
            return {name: equal for name in feature_names}

        values = np.array(
            [
                [normalize_feature(name, sample.features.get(name)) for name in feature_names]
                for sample in self.training_data
            ],
            dtype=float,
        )
        labels = np.array([1.0 if s.label else 0.0 for s in self.training_data])
        importance = np.abs((values * labels[:, None]).mean(axis=0))
        return dict(zip(feature_names, importance.tolist()))

    def _adapt_feature_weights(self, features: FeatureVector):
        """Penalize features that were strongly active in a wrong prediction."""
        step = self.config.adaptation_rate * 0.1
        for model in self.models.values():
            for name in model.features:
                if normalize_feature(name, features.get(name)) > 0.7:
                    model.weights[name] = max(MIN_FEATURE_WEIGHT, model.weights[name] - step)
            model.renormalize()

    def update_config(self, config: DetectionConfig):
        self.config = config

    def get_model_stats(self) -> dict:
        return {
            "models": {
                model_id: {
                    "accuracy": model.accuracy,
                    "predictions": model.predictions,
                    "correct_predictions": model.correct_predictions,
                    "last_trained": model.last_trained,
                    "features": len(model.features),
                }
                for model_id, model in self.models.items()
            },
            "training_data_size": len(self.training_data),
            "feature_history_size": len(self.feature_history),
            "recent_predictions": len(self.predictions),
        }

    def get_recent_predictions(self, limit: int = 10) -> list[BoundaryPrediction]:
        return self.predictions[-limit:]

    def export_predictor_state(self) -> dict:
        """JSON-serializable snapshot of models, recent training data and predictions."""
        return {
            "models": {model_id: model.to_dict() for model_id, model in self.models.items()},
            "training_data": [s.to_dict() for s in self.training_data[-100:]],
            "recent_predictions": [p.to_dict() for p in self.predictions[-50:]],
            "stats": self.get_model_stats(),
        }

    def import_predictor_state(self, state: dict) -> None:
        """
        Restore model weights, accuracy and counters from an export.

        Raises:
            ValueError: If the state names an unknown model
        """
        for model_id, data in state.get("models", {}).items():
            model = self.models.get(model_id)
            if model is None:
                raise ValueError(f"Unknown prediction model: {model_id}")
            for name, weight in data.get("weights", {}).items():
                if name in model.weights:
                    model.weights[name] = max(MIN_FEATURE_WEIGHT, float(weight))
            model.renormalize()
            model.accuracy = max(0.0, min(1.0, float(data.get("accuracy", model.accuracy))))
            model.predictions = int(data.get("predictions", model.predictions))
            model.correct_predictions = int(
                data.get("correct_predictions", model.correct_predictions)
            )
            model.last_trained = float(data.get("last_trained", model.last_trained))

        self.training_data = [
            TrainingSample(
                features=FeatureVector.from_dict(item["features"]),
                label=bool(item["label"]),
                timestamp=float(item["timestamp"]),
                boundary_id=item.get("boundary_id"),
            )
            for item in state.get("training_data", [])
        ]
        logger.info(f"Restored predictor state ({len(self.training_data)} training samples)")

    def reset(self):
        """Clear histories and counters; keep learned weights."""
        self.training_data = []
        self.feature_history = []
        self.predictions = []
        for model in self.models.values():
            model.predictions = 0
            model.correct_predictions = 0
            model.accuracy = 0.5
