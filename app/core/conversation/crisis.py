"""
Crisis Handler.

DETERMINISTIC ONLY. NO AI. NO VARIATION.

When a patient mentions suicide or self-harm we do not risk an LLM
generating an inappropriate or variable reply, and nothing about the
inquiry is written.
"""

import logging
from typing import Optional

from app.safety.crisis_detector import CrisisDetectionResult, CrisisDetector, get_crisis_detector

logger = logging.getLogger(__name__)


class CrisisHandler:
    """
    Deterministic crisis response handler.

    Returns the same crisis-resources message every time a crisis is
    detected.
    """

    # Fixed response
    CRISIS_RESPONSE = (
        "I'm really sorry you're going through this, and I'm concerned about your safety. "
        "Please reach out for support right now: in the US you can call or text 988 "
        "(Suicide & Crisis Lifeline), and in India you can call Tele MANAS at 14416, anytime, 24/7. "
        "If you are in immediate danger, please call your local emergency number or go to the "
        "nearest emergency room. You don't have to go through this alone."
    )

    def __init__(self, detector: Optional[CrisisDetector] = None):
        self._detector = detector or get_crisis_detector()

    def check(self, message: str) -> CrisisDetectionResult:
        """Run crisis detection on the raw message."""
        return self._detector.detect(message)

    def respond(self, result: CrisisDetectionResult, patient_id: str = "unknown") -> str:
        """
        Return deterministic crisis response.

        Args:
            result: Detection result (logged, not echoed)
            patient_id: Session identifier for the safety log

        Returns:
            Fixed crisis response with hotline information
        """
        logger.warning(
            f"Crisis response triggered for patient={patient_id} "
            f"type={result.crisis_type.value} level={result.level.value}"
        )
        return self.CRISIS_RESPONSE
