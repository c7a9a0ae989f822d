"""Session boundary detection for browsing activity streams."""

__version__ = "0.1.0"

from session_boundary.detection.engine import SessionDetectionEngine
from session_boundary.models.events import BrowsingEvent, EventType, SessionBoundary
from session_boundary.prediction.predictor import BoundaryPredictor
from session_boundary.system import (
    DetectorShutdownError,
    DetectorState,
    IntegratedSessionDetection,
    create_session_detection,
)
from session_boundary.utils.config_validator import DetectionConfig

__all__ = [
    "SessionDetectionEngine",
    "BoundaryPredictor",
    "IntegratedSessionDetection",
    "create_session_detection",
    "DetectorState",
    "DetectorShutdownError",
    "BrowsingEvent",
    "EventType",
    "SessionBoundary",
    "DetectionConfig",
]
