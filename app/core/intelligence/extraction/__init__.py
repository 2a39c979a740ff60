"""Intake extraction module."""

from .types import NOT_SPECIFIED, BookingIntent, ExtractedData
from .patterns import emotional_category, fallback_extract, is_greeting
from .extractor import (
    SlotExtractor,
    get_slot_extractor,
    extract_intake,
)

__all__ = [
    # Types
    "NOT_SPECIFIED",
    "BookingIntent",
    "ExtractedData",
    # Rules
    "emotional_category",
    "fallback_extract",
    "is_greeting",
    # Extractor
    "SlotExtractor",
    "get_slot_extractor",
    "extract_intake",
]
