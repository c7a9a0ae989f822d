"""Boundary detection: context tracking, signal generation and decisions."""

from session_boundary.detection.context import DetectionContext, update_context
from session_boundary.detection.decision import decide_boundary, weighted_signal_strength
from session_boundary.detection.domains import DomainClassifier, domain_similarity, extract_domain
from session_boundary.detection.engine import SessionDetectionEngine
from session_boundary.detection.signals import generate_signals

__all__ = [
    "SessionDetectionEngine",
    "DetectionContext",
    "update_context",
    "generate_signals",
    "decide_boundary",
    "weighted_signal_strength",
    "DomainClassifier",
    "domain_similarity",
    "extract_domain",
]
