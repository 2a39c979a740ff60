"""
Safety Module

Provides crisis detection for incoming patient messages.
"""

from app.safety.crisis_detector import (
    CrisisDetectionResult,
    CrisisDetector,
    CrisisLevel,
    CrisisType,
    detect_crisis,
    get_crisis_detector,
)

__all__ = [
    "CrisisDetectionResult",
    "CrisisDetector",
    "CrisisLevel",
    "CrisisType",
    "detect_crisis",
    "get_crisis_detector",
]
