"""
Crisis Detection Module

Detects suicide and self-harm language so the conversation can stop and
hand the user crisis resources before any LLM call or state change.

IMPORTANT: This is a supplementary safety layer, not a replacement
for professional crisis intervention services.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class CrisisLevel(str, Enum):
    """Severity levels for detected crises."""

    NONE = "none"
    MEDIUM = "medium"     # Clear distress signals, offer resources
    HIGH = "high"         # Explicit crisis indicators
    CRITICAL = "critical" # Imminent danger


class CrisisType(str, Enum):
    """Types of crises that can be detected."""

    NONE = "none"
    SELF_HARM = "self_harm"
    SUICIDE = "suicide"


@dataclass
class CrisisDetectionResult:
    """Result of crisis detection analysis."""

    is_crisis: bool
    level: CrisisLevel = CrisisLevel.NONE
    crisis_type: CrisisType = CrisisType.NONE
    matched_patterns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "is_crisis": self.is_crisis,
            "level": self.level.value,
            "crisis_type": self.crisis_type.value,
            "matched_patterns": self.matched_patterns,
        }


# ==================================
# Crisis Patterns Configuration
# ==================================

# Pattern structure: (regex_pattern, crisis_type, level)

CRISIS_PATTERNS: list[tuple[str, CrisisType, CrisisLevel]] = [
    # ==========================================
    # SUICIDE
    # ==========================================

    # Explicit suicidal intent
    (r"\b(want|going|plan(ning)?|think(ing)?( about)?)\s+(to\s+)?(kill\s+myself|end\s+(my\s+)?life|die)\b",
     CrisisType.SUICIDE, CrisisLevel.CRITICAL),
    (r"\bkill(ing)?\s+myself\b",
     CrisisType.SUICIDE, CrisisLevel.CRITICAL),
    (r"\b(commit(ting)?|attempt(ing|ed)?)\s+suicide\b",
     CrisisType.SUICIDE, CrisisLevel.CRITICAL),
    (r"\bsuicid(e|al)\b",
     CrisisType.SUICIDE, CrisisLevel.HIGH),
    (r"\bend\s+it\s+all\b",
     CrisisType.SUICIDE, CrisisLevel.HIGH),
    (r"\b(no\s+)?reason\s+to\s+(live|go\s+on)\b",
     CrisisType.SUICIDE, CrisisLevel.HIGH),
    (r"\bwish\s+i\s+(was|were)\s+(dead|never\s+born)\b",
     CrisisType.SUICIDE, CrisisLevel.HIGH),
    (r"\beveryone\s+would\s+be\s+better\s+off\s+without\s+me\b",
     CrisisType.SUICIDE, CrisisLevel.HIGH),
    (r"\bdon'?t\s+want\s+to\s+(be\s+alive|live|exist|wake\s+up)\b",
     CrisisType.SUICIDE, CrisisLevel.HIGH),
    (r"\bbetter\s+off\s+dead\b",
     CrisisType.SUICIDE, CrisisLevel.HIGH),

    # Methods mentioned
    (r"\b(pills?|overdose|hanging|hang|jump(ing)?|gun|shoot|slit)\b.{0,30}\b(myself|suicide|end\s+it)\b",
     CrisisType.SUICIDE, CrisisLevel.CRITICAL),

    # ==========================================
    # SELF-HARM
    # ==========================================

    (r"\b(cutting|cut)\s+(myself|my\s+(wrists?|arms?|legs?|body))\b",
     CrisisType.SELF_HARM, CrisisLevel.HIGH),
    (r"\bself[- ]?harm(ing)?\b",
     CrisisType.SELF_HARM, CrisisLevel.HIGH),
    (r"\b(hurt(ing)?|harm(ing)?)\s+myself\b",
     CrisisType.SELF_HARM, CrisisLevel.MEDIUM),
    (r"\bburn(ing)?\s+myself\b",
     CrisisType.SELF_HARM, CrisisLevel.HIGH),
]

LEVEL_PRIORITY = {
    CrisisLevel.NONE: 0,
    CrisisLevel.MEDIUM: 1,
    CrisisLevel.HIGH: 2,
    CrisisLevel.CRITICAL: 3,
}


class CrisisDetector:
    """
    Detects suicide and self-harm language with pattern matching.

    Usage:
        detector = CrisisDetector()
        result = detector.detect("I want to hurt myself")
        if result.is_crisis:
            print(f"Crisis detected: {result.crisis_type}")
    """

    def __init__(self):
        # Compile patterns for efficiency
        self._compiled_patterns = [
            (re.compile(pattern, re.IGNORECASE), crisis_type, level)
            for pattern, crisis_type, level in CRISIS_PATTERNS
        ]

    def detect(self, text: str) -> CrisisDetectionResult:
        """
        Analyze text for crisis indicators.

        Args:
            text: User message to analyze

        Returns:
            CrisisDetectionResult with detection details
        """
        if not text or not text.strip():
            return CrisisDetectionResult(is_crisis=False)

        highest_level = CrisisLevel.NONE
        primary_type = CrisisType.NONE
        matched_patterns = []

        for pattern, crisis_type, level in self._compiled_patterns:
            if pattern.search(text):
                matched_patterns.append(f"{crisis_type.value}:{level.value}")
                if LEVEL_PRIORITY[level] > LEVEL_PRIORITY[highest_level]:
                    highest_level = level
                    primary_type = crisis_type

        if not matched_patterns:
            return CrisisDetectionResult(is_crisis=False)

        logger.debug(f"Crisis patterns matched: {matched_patterns}")
        return CrisisDetectionResult(
            is_crisis=True,
            level=highest_level,
            crisis_type=primary_type,
            matched_patterns=matched_patterns,
        )


# Singleton
_detector: CrisisDetector | None = None


def get_crisis_detector() -> CrisisDetector:
    """Get singleton CrisisDetector."""
    global _detector
    if _detector is None:
        _detector = CrisisDetector()
    return _detector


def detect_crisis(text: str) -> CrisisDetectionResult:
    """Convenience function for crisis detection."""
    return get_crisis_detector().detect(text)
