"""Types for intake extraction."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Serialised stand-in for an absent field
NOT_SPECIFIED = "not specified"


class BookingIntent(str, Enum):
    """Whether the user wants to book with the matched therapist."""

    YES = "yes"
    NO = "no"
    CLARIFICATION = "clarification"
    NOT_SPECIFIED = "not specified"

    @classmethod
    def parse(cls, value: Optional[str]) -> "BookingIntent":
        if not value:
            return cls.NOT_SPECIFIED
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NOT_SPECIFIED


def _clean(value) -> Optional[str]:
    """Normalise an extracted value; the sentinel and blanks become None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in (NOT_SPECIFIED, "null", "none", "n/a", "unknown"):
        return None
    return text


@dataclass
class ExtractedData:
    """Fields extracted from one user message."""

    problem: Optional[str] = None
    schedule: Optional[str] = None
    insurance: Optional[str] = None
    booking_intent: BookingIntent = BookingIntent.NOT_SPECIFIED
    therapist_selection: Optional[int] = None  # 1-based

    # Metadata
    source: str = "none"  # "llm", "fallback" or "none"

    @classmethod
    def from_dict(cls, data: dict, source: str = "llm") -> "ExtractedData":
        """Build from an LLM JSON reply, treating the sentinel as absent."""
        selection = data.get("therapistSelection", data.get("therapist_selection"))
        try:
            selection = int(selection) if selection not in (None, "", NOT_SPECIFIED) else None
        except (TypeError, ValueError):
            selection = None

        return cls(
            problem=_clean(data.get("problem")),
            schedule=_clean(data.get("schedule")),
            insurance=_clean(data.get("insurance")),
            booking_intent=BookingIntent.parse(
                data.get("bookingIntent", data.get("booking_intent"))
            ),
            therapist_selection=selection,
            source=source,
        )

    def has_any(self) -> bool:
        """Check if any field was extracted."""
        return any([
            self.problem,
            self.schedule,
            self.insurance,
            self.booking_intent != BookingIntent.NOT_SPECIFIED,
            self.therapist_selection is not None,
        ])

    def to_dict(self) -> dict:
        """Serialise for responses, using the "not specified" sentinel."""
        data = {
            "problem": self.problem or NOT_SPECIFIED,
            "schedule": self.schedule or NOT_SPECIFIED,
            "insurance": self.insurance or NOT_SPECIFIED,
            "bookingIntent": self.booking_intent.value,
        }
        if self.therapist_selection is not None:
            data["therapistSelection"] = self.therapist_selection
        return data
