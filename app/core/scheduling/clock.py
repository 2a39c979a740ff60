"""
Time zone helpers.

Storage uses naive UTC; callers speak in their own IANA zone. These helpers
are the only place the two meet.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings

logger = logging.getLogger(__name__)

# Returns the current time as an aware UTC datetime
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


def resolve_zone(name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA zone name, falling back to the configured default."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown time zone '{name}', using {settings.default_time_zone}")
    return ZoneInfo(settings.default_time_zone)


def to_utc_naive(value: datetime, zone: ZoneInfo) -> datetime:
    """Convert a datetime to naive UTC. Naive input is read as local to zone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_utc_naive(value: datetime, zone: ZoneInfo) -> datetime:
    """Convert a stored naive UTC datetime to an aware datetime in zone."""
    return value.replace(tzinfo=timezone.utc).astimezone(zone)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing Z.

    Raises:
        ValueError: if the string is not a timestamp
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def display_time(value: datetime) -> str:
    """Clock time for people, e.g. "10:00 AM"."""
    return value.strftime("%I:%M %p").lstrip("0")


def display_datetime(value: datetime) -> str:
    """Date and time for people, e.g. "Wednesday, December 10 at 10:00 AM"."""
    return f"{value:%A, %B} {value.day} at {display_time(value)}"
