"""Detection outcome tracking, accuracy metrics and tuning recommendations."""

import logging
import time
from collections import Counter, defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np
import psutil

from session_boundary.models.events import DetectionSignal, SessionBoundary
from session_boundary.models.prediction import BoundaryPrediction

logger = logging.getLogger(__name__)

DETECTION_HISTORY_CAP = 5000
DETECTION_HISTORY_KEEP = 2500
FEEDBACK_CAP = 1000
FEEDBACK_KEEP = 500
CONFIG_HISTORY_CAP = 100
CONFIG_HISTORY_KEEP = 50
DETECTION_TIMES_CAP = 1000
DETECTION_TIMES_KEEP = 500
STRENGTH_SAMPLES_CAP = 100
STRENGTH_SAMPLES_KEEP = 50
HOUR_MS = 3_600_000
DAY_MS = 24 * HOUR_MS
SLOW_DETECTION_MS = 100


class FeedbackRating(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    UNNECESSARY = "unnecessary"
    MISSED = "missed"


@dataclass
class DetectionRecord:
    boundary: SessionBoundary
    signals: list[DetectionSignal]
    processing_time: float
    timestamp: float
    prediction: BoundaryPrediction | None = None
    patterns: list[str] = field(default_factory=list)
    correct: bool | None = None


@dataclass
class UserFeedback:
    timestamp: float
    boundary_id: str
    rating: FeedbackRating
    confidence: float
    context: dict[str, Any] = field(default_factory=dict)
    comment: str | None = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "boundary_id": self.boundary_id,
            "rating": self.rating.value,
            "confidence": self.confidence,
            "context": dict(self.context),
            "comment": self.comment,
        }


def signal_key(signal: DetectionSignal) -> str:
    return f"{signal.type.value}:{signal.subtype}"


def _trend(metric: str, timeframe: str, change: float, tolerance: float) -> dict:
    if change > tolerance:
        direction = "improving" if metric == "accuracy" else "increasing"
    elif change < -tolerance:
        direction = "declining" if metric == "accuracy" else "decreasing"
    else:
        direction = "stable"
    return {
        "metric": metric,
        "timeframe": timeframe,
        "direction": direction,
        "change": change,
        "significance": abs(change),
    }


class DetectionAnalytics:
    """
    Records detections and user feedback and derives quality metrics.

    Time windows are measured from the newest detection timestamp seen, so
    replayed event streams produce the same reports as live ones. The
    ``clock`` (ms) is only consulted before any detection has been recorded.
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        self._clock = clock or (lambda: time.time() * 1000)
        self._process = psutil.Process()
        self.detection_history: list[DetectionRecord] = []
        self.user_feedback: list[UserFeedback] = []
        self.performance_history: list[dict] = []
        self.config_history: list[dict] = []
        self.signal_counts: Counter[str] = Counter()
        self.signal_success: Counter[str] = Counter()
        self.signal_strengths: dict[str, list[float]] = defaultdict(list)
        self.pattern_usage: Counter[str] = Counter()
        self.pattern_success: Counter[str] = Counter()
        self.detection_times: list[float] = []
        self._latest_timestamp: float | None = None
        self.real_time_metrics = self._empty_real_time_metrics()

    def now(self) -> float:
        """Reference time for windowed queries."""
        return self._latest_timestamp if self._latest_timestamp is not None else self._clock()

    def record_detection(
        self,
        boundary: SessionBoundary,
        signals: Sequence[DetectionSignal],
        processing_time: float,
        prediction: BoundaryPrediction | None = None,
        patterns: Sequence[str] = (),
    ):
        """
        Record a detected boundary.

        Args:
            boundary: Boundary emitted by the engine
            signals: Signals that produced it
            processing_time: Per-event processing time (ms)
            prediction: Predictor output for the same event
            patterns: Ids of behavior patterns active at the time
        """
        timestamp = boundary.timestamp
        self._latest_timestamp = max(self._latest_timestamp or timestamp, timestamp)
        self.detection_history.append(
            DetectionRecord(
                boundary=boundary,
                signals=list(signals),
                processing_time=processing_time,
                timestamp=timestamp,
                prediction=prediction,
                patterns=list(patterns),
            )
        )
        if len(self.detection_history) > DETECTION_HISTORY_CAP:
            self.detection_history = self.detection_history[-DETECTION_HISTORY_KEEP:]

        for signal in signals:
            key = signal_key(signal)
            self.signal_counts[key] += 1
            strengths = self.signal_strengths[key]
            strengths.append(signal.strength)
            if len(strengths) > STRENGTH_SAMPLES_CAP:
                self.signal_strengths[key] = strengths[-STRENGTH_SAMPLES_KEEP:]
        for pattern_id in patterns:
            self.pattern_usage[pattern_id] += 1

        self.detection_times.append(processing_time)
        if len(self.detection_times) > DETECTION_TIMES_CAP:
            self.detection_times = self.detection_times[-DETECTION_TIMES_KEEP:]

        self._update_real_time_metrics(processing_time, timestamp)

    def record_user_feedback(
        self,
        boundary_id: str,
        rating: FeedbackRating | str,
        confidence: float,
        context: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> bool:
        """
        Attach a user rating to a detection.

        Returns:
            True if a matching detection was found and marked
        """
        rating = FeedbackRating(rating)
        self.user_feedback.append(
            UserFeedback(
                timestamp=self.now(),
                boundary_id=boundary_id,
                rating=rating,
                confidence=max(0.0, min(1.0, confidence)),
                context=context or {},
                comment=comment,
            )
        )
        if len(self.user_feedback) > FEEDBACK_CAP:
            self.user_feedback = self.user_feedback[-FEEDBACK_KEEP:]

        record = next((d for d in self.detection_history if d.boundary.id == boundary_id), None)
        if record is None:
            logger.debug(f"Feedback for unknown boundary {boundary_id}")
            return False

        record.correct = rating == FeedbackRating.CORRECT
        if record.correct:
            for signal in record.signals:
                self.signal_success[signal_key(signal)] += 1
            for pattern_id in record.patterns:
                self.pattern_success[pattern_id] += 1
        self.real_time_metrics["current_accuracy"] = self.calculate_accuracy(HOUR_MS)
        return True

    def record_configuration_change(self, config: dict[str, Any]):
        self.config_history.append({"timestamp": self.now(), "config": dict(config)})
        if len(self.config_history) > CONFIG_HISTORY_CAP:
            self.config_history = self.config_history[-CONFIG_HISTORY_KEEP:]

    def calculate_accuracy(self, time_window: float = HOUR_MS) -> float:
        """Share of feedback-confirmed detections rated correct (0.5 without feedback)."""
        cutoff = self.now() - time_window
        rated = [d for d in self.detection_history if d.timestamp >= cutoff and d.correct is not None]
        if not rated:
            return 0.5
        return sum(1 for d in rated if d.correct) / len(rated)

    def generate_performance_report(
        self, start_time: float | None = None, end_time: float | None = None
    ) -> dict:
        """
        Full report over a time range (default: the last 24 hours).

        Returns:
            Dictionary with time_range, total_detections, metrics,
            signal_analysis, pattern_analysis, configuration_impact,
            recommendations and trends
        """
        now = self.now()
        start = start_time if start_time is not None else now - DAY_MS
        end = end_time if end_time is not None else now
        detections = [d for d in self.detection_history if start <= d.timestamp <= end]

        metrics = self._calculate_metrics(detections)
        signal_analysis = self._analyze_signals(detections)
        pattern_analysis = self._analyze_patterns()
        configuration_impact = self._analyze_configuration_impact()

        if detections:
            self.performance_history.append(metrics)
            self.performance_history = self.performance_history[-50:]

        return {
            "time_range": {"start": start, "end": end},
            "total_detections": len(detections),
            "metrics": metrics,
            "signal_analysis": signal_analysis,
            "pattern_analysis": pattern_analysis,
            "configuration_impact": configuration_impact,
            "recommendations": self._recommendations(metrics, signal_analysis, pattern_analysis),
            "trends": self._trends(),
        }

    def _calculate_metrics(self, detections: list[DetectionRecord]) -> dict:
        if not detections:
            return self._empty_metrics()

        rated = [d for d in detections if d.correct is not None]
        true_positives = sum(1 for d in rated if d.correct)
        false_positives = len(rated) - true_positives
        false_negatives = sum(1 for f in self.user_feedback if f.rating == FeedbackRating.MISSED)

        precision = true_positives / (true_positives + false_positives) if true_positives else 0.0
        recall = true_positives / (true_positives + false_negatives) if true_positives else 0.0
        f1 = 2 * precision * recall / (precision + recall) if precision + recall > 0 else 0.0

        with_prediction = [d for d in rated if d.prediction is not None]
        prediction_accuracy = (
            sum(1 for d in with_prediction if (d.prediction.probability > 0.5) == d.correct)
            / len(with_prediction)
            if with_prediction
            else 0.0
        )

        return {
            "accuracy": true_positives / len(rated) if rated else 0.5,
            "precision": precision,
            "recall": recall,
            "f1_score": f1,
            "total_boundaries_detected": len(detections),
            "correct_boundaries": true_positives,
            "false_positives": false_positives,
            "false_negatives": false_negatives,
            "missed_boundaries": false_negatives,
            "average_detection_time": float(np.mean([d.processing_time for d in detections])),
            "signals_per_boundary": float(np.mean([len(d.signals) for d in detections])),
            "prediction_accuracy": prediction_accuracy,
            "boundary_quality_score": self._boundary_quality(detections),
            "user_satisfaction_score": self._user_satisfaction(),
            "adaptation_effectiveness": self._adaptation_effectiveness(),
        }

    @staticmethod
    def _empty_metrics() -> dict:
        return {
            "accuracy": 0.5,
            "precision": 0.0,
            "recall": 0.0,
            "f1_score": 0.0,
            "total_boundaries_detected": 0,
            "correct_boundaries": 0,
            "false_positives": 0,
            "false_negatives": 0,
            "missed_boundaries": 0,
            "average_detection_time": 0.0,
            "signals_per_boundary": 0.0,
            "prediction_accuracy": 0.0,
            "boundary_quality_score": 0.5,
            "user_satisfaction_score": 0.5,
            "adaptation_effectiveness": 0.5,
        }

    def _analyze_signals(self, detections: list[DetectionRecord]) -> dict:
        distribution: Counter[str] = Counter()
        strengths: dict[str, list[float]] = defaultdict(list)
        correlations: dict[str, Counter] = defaultdict(Counter)

        for detection in detections:
            keys = [signal_key(s) for s in detection.signals]
            for key, signal in zip(keys, detection.signals):
                distribution[key] += 1
                strengths[key].append(signal.strength)
            for i, first in enumerate(keys):
                for second in keys[i + 1:]:
                    correlations[first][second] += 1

        effective = []
        underperforming = []
        for key, count in distribution.items():
            signal_type, subtype = key.split(":", 1)
            success_rate = self.signal_success[key] / count
            if count > 5 and success_rate > 0.7:
                effective.append(
                    {
                        "type": signal_type,
                        "subtype": subtype,
                        "success_rate": success_rate,
                        "average_strength": float(np.mean(strengths[key])),
                    }
                )
            elif count > 5 and success_rate < 0.3:
                underperforming.append(
                    {
                        "type": signal_type,
                        "subtype": subtype,
                        "success_rate": success_rate,
                        "false_positive_rate": (count - self.signal_success[key]) / count,
                    }
                )

        return {
            "signal_type_distribution": dict(distribution),
            "average_signal_strength": {k: float(np.mean(v)) for k, v in strengths.items()},
            "signal_correlations": {k: dict(v) for k, v in correlations.items()},
            "most_effective_signals": sorted(effective, key=lambda s: -s["success_rate"]),
            "underperforming_signals": sorted(underperforming, key=lambda s: s["success_rate"]),
        }

    def _analyze_patterns(self) -> dict:
        effectiveness = {
            pattern_id: self.pattern_success[pattern_id] / usage
            for pattern_id, usage in self.pattern_usage.items()
            if usage > 0
        }
        ranked = sorted(effectiveness.items(), key=lambda item: -item[1])
        learned = len(self.pattern_usage)
        return {
            "learned_patterns": learned,
            "pattern_effectiveness": effectiveness,
            "pattern_usage": dict(self.pattern_usage),
            "adaptation_rate": len(effectiveness) / learned if learned else 0.0,
            "most_valuable_patterns": [pid for pid, score in ranked if score >= 0.7][:5],
            "obsolete_patterns": [
                pid for pid, score in ranked if score < 0.2 and self.pattern_usage[pid] > 5
            ],
        }

    def _accuracy_between(self, start: float, end: float) -> float | None:
        rated = [
            d for d in self.detection_history if start <= d.timestamp < end and d.correct is not None
        ]
        if not rated:
            return None
        return sum(1 for d in rated if d.correct) / len(rated)

    def _analyze_configuration_impact(self) -> dict:
        """Accuracy observed while each configuration value was in effect."""
        parameter_effectiveness: dict[str, float] = {}
        optimal_values: dict[str, Any] = {}
        adjustments: dict[str, list] = defaultdict(list)
        best_scores: dict[str, float] = {}

        for index, change in enumerate(self.config_history):
            end = (
                self.config_history[index + 1]["timestamp"]
                if index + 1 < len(self.config_history)
                else float("inf")
            )
            accuracy = self._accuracy_between(change["timestamp"], end)
            for param, value in change["config"].items():
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    adjustments[param].append(value)
                if accuracy is None:
                    continue
                parameter_effectiveness[param] = accuracy
                if accuracy > best_scores.get(param, -1.0):
                    best_scores[param] = accuracy
                    optimal_values[param] = value

        return {
            "parameter_effectiveness": parameter_effectiveness,
            "optimal_values": optimal_values,
            "adaptive_adjustments": dict(adjustments),
            "configuration_changes": len(self.config_history),
        }

    @staticmethod
    def _recommendations(metrics: dict, signal_analysis: dict, pattern_analysis: dict) -> list[str]:
        recommendations = []

        if metrics["accuracy"] < 0.7:
            recommendations.append("Consider adjusting detection thresholds to improve accuracy")

        if metrics["false_positives"] > metrics["false_negatives"] * 2:
            recommendations.append("Increase boundary threshold to reduce false positives")
        elif metrics["false_negatives"] > metrics["false_positives"] * 2:
            recommendations.append("Decrease boundary threshold to reduce missed boundaries")

        if signal_analysis["underperforming_signals"]:
            worst = signal_analysis["underperforming_signals"][0]
            recommendations.append(
                f"Consider reducing weight for {worst['subtype']} signals "
                f"({round(worst['success_rate'] * 100)}% success rate)"
            )
        if signal_analysis["most_effective_signals"]:
            best = signal_analysis["most_effective_signals"][0]
            recommendations.append(
                f"Consider increasing weight for {best['subtype']} signals "
                f"({round(best['success_rate'] * 100)}% success rate)"
            )

        if metrics["average_detection_time"] > SLOW_DETECTION_MS:
            recommendations.append("Consider optimizing signal processing for better performance")
        if metrics["signals_per_boundary"] > 10:
            recommendations.append("Consider pruning signal types to reduce noise")
        if pattern_analysis["adaptation_rate"] < 0.3:
            recommendations.append("Enable adaptive learning to improve pattern recognition")
        if metrics["user_satisfaction_score"] < 0.6:
            recommendations.append("Review boundary detection logic based on user feedback")

        return recommendations

    def _trends(self) -> list[dict]:
        """Hour-over-hour and day-over-day changes in detection volume and accuracy."""
        now = self.now()
        trends = []
        for timeframe, span in (("hourly", HOUR_MS), ("daily", DAY_MS)):
            recent = sum(1 for d in self.detection_history if now - span < d.timestamp <= now)
            previous = sum(
                1 for d in self.detection_history if now - 2 * span < d.timestamp <= now - span
            )
            if recent or previous:
                trends.append(
                    _trend("detections", timeframe, (recent - previous) / max(previous, 1), 0.1)
                )

            recent_accuracy = self._accuracy_between(now - span, now + 1)
            previous_accuracy = self._accuracy_between(now - 2 * span, now - span)
            if recent_accuracy is not None and previous_accuracy is not None:
                trends.append(
                    _trend("accuracy", timeframe, recent_accuracy - previous_accuracy, 0.05)
                )
        return trends

    @staticmethod
    def _boundary_quality(detections: list[DetectionRecord]) -> float:
        scores = []
        for d in detections:
            strength = float(np.mean([s.strength for s in d.signals])) if d.signals else 0.0
            rating = 0.5 if d.correct is None else float(d.correct)
            scores.append((strength + rating) / 2)
        return float(np.mean(scores)) if scores else 0.5

    def _user_satisfaction(self) -> float:
        if not self.user_feedback:
            return 0.5
        positive = sum(
            1
            for f in self.user_feedback
            if f.rating == FeedbackRating.CORRECT
            or (f.confidence > 0.7 and f.rating != FeedbackRating.INCORRECT)
        )
        return positive / len(self.user_feedback)

    def _adaptation_effectiveness(self) -> float:
        """Share of recent config changes followed by higher accuracy than before them."""
        if len(self.config_history) < 2:
            return 0.5
        improved = compared = 0
        for change in self.config_history[-5:]:
            before = self._accuracy_between(change["timestamp"] - HOUR_MS, change["timestamp"])
            after = self._accuracy_between(change["timestamp"], change["timestamp"] + HOUR_MS)
            if before is None or after is None:
                continue
            compared += 1
            if after > before:
                improved += 1
        return improved / compared if compared else 0.5

    def _empty_real_time_metrics(self) -> dict:
        return {
            "current_accuracy": 0.5,
            "recent_detections": 0,
            "average_response_time": 0.0,
            "memory_usage": 0.0,
            "cpu_usage": 0.0,
            "signal_queue_length": 0,
            "last_update_time": None,
            "window_start": None,
        }

    def _update_real_time_metrics(self, processing_time: float, timestamp: float):
        metrics = self.real_time_metrics
        if metrics["window_start"] is None or timestamp - metrics["window_start"] >= HOUR_MS:
            metrics["window_start"] = timestamp
            metrics["recent_detections"] = 0
        metrics["average_response_time"] = (
            metrics["average_response_time"] * 0.9 + processing_time * 0.1
        )
        metrics["recent_detections"] += 1
        metrics["current_accuracy"] = self.calculate_accuracy(HOUR_MS)
        metrics["last_update_time"] = timestamp

    def set_queue_length(self, length: int):
        self.real_time_metrics["signal_queue_length"] = length

    def get_real_time_metrics(self) -> dict:
        """Smoothed live metrics plus current process memory (MB) and CPU (%)."""
        metrics = dict(self.real_time_metrics)
        metrics["memory_usage"] = self._process.memory_info().rss / 1024 / 1024
        metrics["cpu_usage"] = self._process.cpu_percent(interval=None)
        return metrics

    def get_signal_effectiveness(self) -> list[dict]:
        """Signals ranked by success rate."""
        ranking = []
        for key, count in self.signal_counts.items():
            signal_type, subtype = key.split(":", 1)
            strengths = self.signal_strengths.get(key) or []
            ranking.append(
                {
                    "type": signal_type,
                    "subtype": subtype,
                    "success_rate": self.signal_success[key] / count if count else 0.0,
                    "usage": count,
                    "average_strength": float(np.mean(strengths)) if strengths else 0.0,
                }
            )
        return sorted(ranking, key=lambda item: -item["success_rate"])

    def _average_processing_time(self) -> float:
        return float(np.mean(self.detection_times)) if self.detection_times else 0.0

    def get_summary_stats(self) -> dict:
        return {
            "total_detections": len(self.detection_history),
            "total_feedback": len(self.user_feedback),
            "current_accuracy": self.calculate_accuracy(),
            "average_processing_time": self._average_processing_time(),
            "signal_types": len(self.signal_counts),
            "configuration_changes": len(self.config_history),
        }

    def get_detection_history(
        self, start_time: float | None = None, end_time: float | None = None
    ) -> list[DetectionRecord]:
        now = self.now()
        start = start_time if start_time is not None else now - DAY_MS
        end = end_time if end_time is not None else now
        return [d for d in self.detection_history if start <= d.timestamp <= end]

    def export_analytics_data(self) -> dict:
        """JSON-serializable analytics snapshot."""
        return {
            "detection_history": [
                {
                    "boundary_id": d.boundary.id,
                    "reason": d.boundary.reason.value,
                    "signal_count": len(d.signals),
                    "processing_time": d.processing_time,
                    "correct": d.correct,
                    "timestamp": d.timestamp,
                }
                for d in self.detection_history[-100:]
            ],
            "performance_metrics": self.performance_history[-10:],
            "signal_analysis": {
                "signal_counts": dict(self.signal_counts),
                "signal_success": dict(self.signal_success),
                "effectiveness": self.get_signal_effectiveness(),
            },
            "user_feedback": [f.to_dict() for f in self.user_feedback[-50:]],
            "real_time_metrics": dict(self.real_time_metrics),
            "summary": {
                "total_detections": len(self.detection_history),
                "current_accuracy": self.calculate_accuracy(),
                "average_processing_time": self._average_processing_time(),
            },
        }

    def reset(self):
        self.detection_history = []
        self.user_feedback = []
        self.performance_history = []
        self.config_history = []
        self.signal_counts.clear()
        self.signal_success.clear()
        self.signal_strengths.clear()
        self.pattern_usage.clear()
        self.pattern_success.clear()
        self.detection_times = []
        self._latest_timestamp = None
        self.real_time_metrics = self._empty_real_time_metrics()
        logger.info("Detection analytics reset")
