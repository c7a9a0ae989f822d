"""Integrated session detection: engine, predictor, analyzer and analytics behind one lifecycle."""

import logging
import time
from enum import Enum
from typing import Any

from session_boundary.analysis.behavior import BehaviorAnalyzer
from session_boundary.analytics.detection import DetectionAnalytics, FeedbackRating
from session_boundary.detection.domains import DomainCategorizer, DomainClassifier
from session_boundary.detection.engine import SessionDetectionEngine
from session_boundary.metrics.instruments import MetricInstruments, get_instruments
from session_boundary.metrics.setup import get_health_tracker
from session_boundary.models.events import BrowsingEvent, SessionBoundary
from session_boundary.prediction.predictor import BoundaryPredictor
from session_boundary.utils.config_validator import DetectionConfig, validate_config
from session_boundary.utils.profiles import DEFAULT_PROFILE_ID, DetectionConfigManager, get_preset

logger = logging.getLogger(__name__)

RECENT_EVENT_LIMIT = 50
FEEDBACK_CONFIDENCE_CUTOFF = 0.8
FEEDBACK_STEP = 0.05
PATTERN_THRESHOLD_BOUNDS = (0.3, 0.9)
BOUNDARY_THRESHOLD_BOUNDS = (0.5, 0.9)


class DetectorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    RESET = "reset"
    SHUTDOWN = "shutdown"


class DetectorShutdownError(RuntimeError):
    """Raised when an event is submitted after shutdown()."""


class IntegratedSessionDetection:
    """
    Session detection system with a queued start-up and terminal shutdown.

    Events submitted before initialize() are buffered and replayed in arrival
    order. After reset() the detector keeps accepting events with cleared
    context and history. After shutdown() any further event is a caller error.
    """

    def __init__(
        self,
        config: DetectionConfig | dict[str, Any] | None = None,
        classifier: DomainCategorizer | None = None,
        instruments: MetricInstruments | None = None,
    ):
        """
        Initialize the system.

        Args:
            config: Initial configuration or overrides (defaults if None)
            classifier: Hostname -> category function shared by all components
            instruments: Metric instruments (process-wide instruments if None)
        """
        self.config_manager = DetectionConfigManager()
        self._config_rejected = False
        if config is not None:
            try:
                profile_id = self.config_manager.create_profile(
                    "Initial Configuration",
                    "Configuration provided during initialization",
                    config,
                )
                self.config_manager.switch_profile(profile_id)
            except ValueError as e:
                self._config_rejected = True
                logger.warning(f"Initial configuration rejected, using defaults: {e}")

        active = self.config_manager.get_active_config()
        self.categorize = classifier or DomainClassifier()
        self.engine = SessionDetectionEngine(active, self.categorize)
        self.analyzer = BehaviorAnalyzer(active.max_events_in_memory, self.categorize)
        self.predictor = BoundaryPredictor(active, self.categorize)
        self.analytics = DetectionAnalytics()
        self.instruments = instruments or get_instruments()

        self.state = DetectorState.UNINITIALIZED
        self.event_queue: list[BrowsingEvent] = []

    @property
    def config(self) -> DetectionConfig:
        return self.config_manager.get_active_config()

    def initialize(self):
        """Validate the active configuration and drain queued events in order."""
        if self.state in (DetectorState.ACTIVE, DetectorState.RESET):
            return
        if self.state == DetectorState.SHUTDOWN:
            raise DetectorShutdownError("Cannot initialize a detector that has been shut down")

        logger.info("Initializing session detection system")
        validation = validate_config(self.config)
        if not validation.is_valid:
            logger.warning(f"Configuration validation failed: {validation.errors}")
            self.switch_configuration_profile(DEFAULT_PROFILE_ID)
        for warning in validation.warnings:
            logger.warning(f"Configuration warning: {warning}")

        self.state = DetectorState.ACTIVE
        self._drain_queue()
        logger.info("Session detection system initialized")

    def _drain_queue(self):
        if not self.event_queue:
            return
        events, self.event_queue = self.event_queue, []
        logger.info(f"Processing {len(events)} queued events")
        for event in events:
            self._process(event)

    def process_event(self, event: BrowsingEvent) -> SessionBoundary | None:
        """
        Feed one event through the system.

        Returns:
            Detected SessionBoundary, or None (no boundary, event queued before
            initialization, or an internal fault that was logged)

        Raises:
            DetectorShutdownError: If the detector has been shut down
        """
        if self.state == DetectorState.SHUTDOWN:
            raise DetectorShutdownError(f"Detector is shut down; event {event.id} rejected")
        if self.state == DetectorState.UNINITIALIZED:
            self._enqueue(event)
            return None
        if self.state == DetectorState.RESET:
            self.state = DetectorState.ACTIVE
        return self._process(event)

    def _enqueue(self, event: BrowsingEvent):
        self.event_queue.append(event)
        limit = self.config.max_events_in_memory
        if len(self.event_queue) > limit:
            dropped = len(self.event_queue) - limit
            self.event_queue = self.event_queue[dropped:]
            logger.warning(f"Pre-initialization queue full, dropped {dropped} oldest events")
        self.analytics.set_queue_length(len(self.event_queue))

    def _process(self, event: BrowsingEvent) -> SessionBoundary | None:
        try:
            with self.instruments.track_event_processing(event.type.value):
                start = time.perf_counter()
                recent_events = self.analyzer.get_recent_events(RECENT_EVENT_LIMIT)
                boundary = self.engine.detect_session_boundary(event)
                if not event.is_well_formed():
                    return None

                self.analyzer.add_event(event)
                signals = self.engine.last_signals
                prediction = self.predictor.predict_boundary(event, recent_events, signals)
                processing_time = (time.perf_counter() - start) * 1000

                self.instruments.record_signals([s.type.value for s in signals])
                if boundary is not None:
                    patterns = [s.metadata["pattern_id"] for s in signals if "pattern_id" in s.metadata]
                    self.analytics.record_detection(
                        boundary, signals, processing_time, prediction, patterns
                    )
                    self.instruments.record_boundary(boundary.reason.value)
                    self._maybe_adapt()

                self.predictor.train_with_outcome(prediction, boundary)
                return boundary
        except Exception as e:
            logger.error(f"Error processing event {event.id}: {type(e).__name__}: {e}", exc_info=True)
            return None

    def _maybe_adapt(self):
        manager = self.config_manager
        if not manager.adaptive_mode:
            return
        settings = manager.get_profile(manager.active_profile_id).adaptive_settings
        if len(self.analytics.detection_history) % settings.minimum_samples:
            return

        report = self.analytics.generate_performance_report()
        metrics = report["metrics"]
        adjustments = manager.apply_adaptive_adjustments(
            {
                "accuracy": metrics["accuracy"],
                "false_positives": metrics["false_positives"],
                "false_negatives": metrics["false_negatives"],
                "recent_boundaries": self.analytics.real_time_metrics["recent_detections"],
                "user_satisfaction": metrics["user_satisfaction_score"],
            }
        )
        if adjustments:
            self._apply_to_components(adjustments)

    def _apply_to_components(self, partial: dict[str, Any]):
        self.engine.update_config(partial)
        self.predictor.update_config(self.config)
        self.analytics.record_configuration_change(partial)

    def record_user_feedback(
        self,
        boundary_id: str,
        rating: FeedbackRating | str,
        confidence: float,
        comment: str | None = None,
    ) -> bool:
        """
        Record a user's verdict on a boundary and adapt thresholds to it.

        High-confidence ``unnecessary`` feedback raises the pattern confidence
        and boundary thresholds; high-confidence ``missed`` feedback lowers them.

        Returns:
            True if the boundary was found in the detection history
        """
        rating = FeedbackRating(rating)
        context = self.engine.context
        found = self.analytics.record_user_feedback(
            boundary_id,
            rating,
            confidence,
            {
                "session_duration": context.session.duration,
                "domain_context": sorted(context.active_domains),
                "time_of_day": context.time_of_day,
            },
            comment,
        )

        config = self.config
        if config.adaptive_thresholds and config.learning_enabled:
            self._adapt_from_feedback(rating, confidence)
        return found

    def _adapt_from_feedback(self, rating: FeedbackRating, confidence: float):
        if confidence <= FEEDBACK_CONFIDENCE_CUTOFF:
            return
        if rating == FeedbackRating.UNNECESSARY:
            delta = FEEDBACK_STEP
        elif rating == FeedbackRating.MISSED:
            delta = -FEEDBACK_STEP
        else:
            return

        low, high = PATTERN_THRESHOLD_BOUNDS
        current = self.config.pattern_confidence_threshold
        target = round(max(low, min(high, current + delta)), 6)
        if target != current:
            self.update_configuration({"pattern_confidence_threshold": target})
        threshold = self.engine.adjust_boundary_threshold(delta, *BOUNDARY_THRESHOLD_BOUNDS)
        logger.info(
            f"Feedback '{rating.value}' moved thresholds: pattern={target}, boundary={threshold:.2f}"
        )

    def update_configuration(self, partial: dict[str, Any]) -> bool:
        """
        Validate and apply a partial update to the active profile.

        Returns:
            False if validation failed; the previous configuration stays in effect
        """
        validation = validate_config(partial, base=self.config)
        if not validation.is_valid:
            logger.warning(f"Configuration update failed validation: {validation.errors}")
            return False

        if not self.config_manager.update_profile(self.config_manager.active_profile_id, config=partial):
            return False
        self._apply_to_components(partial)
        logger.info("Configuration updated")
        return True

    def switch_configuration_profile(self, profile_id: str) -> bool:
        """
        Activate another profile and push its configuration to every component.

        Raises:
            ValueError: If the profile does not exist
        """
        if not self.config_manager.switch_profile(profile_id):
            raise ValueError(f"Unknown configuration profile: {profile_id}")
        self._apply_to_components(self.config.model_dump())
        return True

    def set_adaptive_mode(self, enabled: bool):
        self.config_manager.set_adaptive_mode(enabled)
        logger.info(f"Adaptive mode {'enabled' if enabled else 'disabled'}")

    def get_performance_report(self, start_time: float | None = None, end_time: float | None = None) -> dict:
        return self.analytics.generate_performance_report(start_time, end_time)

    def get_real_time_metrics(self) -> dict:
        return self.analytics.get_real_time_metrics()

    def get_system_status(self) -> dict:
        """Lifecycle state plus per-component statistics."""
        tracker = get_health_tracker()
        return {
            "state": self.state.value,
            "queued_events": len(self.event_queue),
            "engine": self.engine.get_detection_stats(),
            "behavior": self.analyzer.calculate_behavior_metrics(),
            "predictor": self.predictor.get_model_stats(),
            "analytics": self.analytics.get_summary_stats(),
            "configuration": {
                "active_profile": self.config_manager.active_profile_id,
                "total_profiles": len(self.config_manager.profiles),
                "adaptive_mode": self.config_manager.adaptive_mode,
                "initial_config_rejected": self._config_rejected,
            },
            "metrics_health": tracker.get_health() if tracker else None,
        }

    def export_system_state(self) -> dict:
        """JSON-serializable snapshot of every component."""
        return {
            "configuration": self.config_manager.export_config(),
            "analytics": self.analytics.export_analytics_data(),
            "behavior_analysis": self.analyzer.export_analysis_data(),
            "prediction_models": self.predictor.export_predictor_state(),
            "detection_engine": self.engine.export_detection_data(),
            "system_info": {
                "state": self.state.value,
                "queued_events": len(self.event_queue),
                "exported_at": time.time() * 1000,
            },
        }

    def reset(self):
        """Clear runtime state in every component; learned weights and patterns survive."""
        if self.state == DetectorState.SHUTDOWN:
            raise DetectorShutdownError("Cannot reset a detector that has been shut down")
        logger.info("Resetting session detection system")
        self.engine.reset()
        self.analyzer.clear_history()
        self.predictor.reset()
        self.analytics.reset()
        self.event_queue = []
        if self.state != DetectorState.UNINITIALIZED:
            self.state = DetectorState.RESET

    def shutdown(self):
        """Process anything still queued, then stop accepting events."""
        if self.state == DetectorState.SHUTDOWN:
            return
        logger.info("Shutting down session detection system")
        if self.event_queue:
            self.state = DetectorState.ACTIVE
            self._drain_queue()
        self.state = DetectorState.SHUTDOWN
        logger.info("Session detection system shut down")


def create_session_detection(
    config: DetectionConfig | dict[str, Any] | None = None,
    preset: str | None = None,
    auto_initialize: bool = True,
    classifier: DomainCategorizer | None = None,
    instruments: MetricInstruments | None = None,
) -> IntegratedSessionDetection:
    """
    Build an IntegratedSessionDetection.

    Args:
        config: Configuration or overrides, applied on top of ``preset``
        preset: Preset name (conservative, aggressive, balanced, learning)
        auto_initialize: Call initialize() before returning
        classifier: Hostname -> category function
        instruments: Metric instruments

    Raises:
        KeyError: If ``preset`` is unknown
    """
    if preset is not None:
        base = get_preset(preset)
        if isinstance(config, DetectionConfig):
            config = config.model_dump(exclude_unset=True)
        config = {**base.model_dump(), **(config or {})}

    system = IntegratedSessionDetection(config, classifier, instruments)
    if auto_initialize:
        system.initialize()
    return system
