"""
Schedule phrase parser.

Turns a free-text phrase such as "Dec 15 at 3pm" into a concrete one-hour
slot. Best effort: anything it cannot read falls back to today at 09:00.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

DEFAULT_HOUR = 9
EARLIEST_HOUR = 6
LATEST_HOUR = 22

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

AMPM_PATTERN = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.?|p\.m\.?)(?![a-z])")
AT_PATTERN = re.compile(r"\bat\s+(\d{1,2})(?::(\d{2}))?\b(?!\s*(?:st|nd|rd|th)\b)")
MONTH_PATTERN = re.compile(
    r"\b(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\b\.?"
)
DAY_PATTERN = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)?\b")


@dataclass
class ParsedSchedule:
    """A resolved slot in the caller's wall-clock time (naive)."""

    start: datetime
    end: datetime
    month_found: bool = False
    day_found: bool = False
    time_found: bool = False


def _parse_clock(text: str) -> tuple[int, int, Optional[tuple[int, int]]]:
    """Hour, minute and the matched span (None when defaulted)."""
    match = AMPM_PATTERN.search(text)
    if match:
        hour = int(match.group(1)) % 12
        minute = int(match.group(2) or 0)
        if match.group(3).startswith("p"):
            hour += 12
        return hour, minute, match.span()

    match = AT_PATTERN.search(text)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        # "at 3" means an afternoon appointment
        if 1 <= hour <= 7:
            hour += 12
        return hour, minute, match.span()

    return DEFAULT_HOUR, 0, None


def _find_month(text: str) -> Optional[int]:
    matches = list(MONTH_PATTERN.finditer(text))
    if not matches:
        return None

    def month_of(match: re.Match) -> int:
        return MONTHS[match.group(1)[:3]]

    # Prefer a month written next to a day number
    for match in matches:
        before = text[max(0, match.start() - 8):match.start()]
        after = text[match.end():match.end() + 4]
        if re.match(r"\s*\d", after) or re.search(r"\d(?:st|nd|rd|th)?\s+(?:of\s+)?$", before):
            return month_of(match)

    # "may" is usually the verb when it stands alone
    for match in matches:
        if match.group(1) != "may":
            return month_of(match)
    return None


def _find_day(text: str, clock_span: Optional[tuple[int, int]]) -> Optional[int]:
    if clock_span:
        start, end = clock_span
        text = text[:start] + " " * (end - start) + text[end:]
    for match in DAY_PATTERN.finditer(text):
        day = int(match.group(1))
        if 1 <= day <= 31:
            return day
    return None


def parse_schedule_phrase(
    text: str,
    reference: datetime,
    duration_minutes: int = 60,
) -> ParsedSchedule:
    """
    Parse a schedule phrase relative to a reference time.

    Args:
        text: Free-text schedule, e.g. "December 15th at 3pm"
        reference: Current wall-clock time in the caller's zone
        duration_minutes: Slot length

    Returns:
        ParsedSchedule with naive wall-clock start and end
    """
    lower = (text or "").lower()

    hour, minute, span = _parse_clock(lower)
    time_found = span is not None
    if hour < EARLIEST_HOUR or hour > LATEST_HOUR or minute > 59:
        hour, minute, time_found = DEFAULT_HOUR, 0, False

    month = _find_month(lower)
    day = _find_day(lower, span)

    year = reference.year
    resolved_month = month or reference.month
    last_day = calendar.monthrange(year, resolved_month)[1]
    resolved_day = min(day or reference.day, last_day)

    start = datetime(year, resolved_month, resolved_day, hour, minute)
    return ParsedSchedule(
        start=start,
        end=start + timedelta(minutes=duration_minutes),
        month_found=month is not None,
        day_found=day is not None,
        time_found=time_found,
    )
