"""
Conversation state and orchestrator response types.

Session state is carried by the caller and passed in explicitly on every
message; the orchestrator keeps nothing in process memory between calls.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from app.config import settings
from app.core.intelligence.extraction.types import ExtractedData
from app.core.records.types import TherapistRecord


class NextAction(str, Enum):
    """Directive returned to the caller after each message."""

    AWAITING_INFO = "awaiting-info"
    FIND_THERAPIST = "find-therapist"
    THERAPIST_SELECTED = "therapist-selected"
    BOOK_APPOINTMENT = "book-appointment"
    BOOKED = "booked"
    ERROR = "error"


@dataclass
class TherapistSummary:
    """A therapist option presented to the user."""

    id: str
    name: str
    specialties: list[str] = field(default_factory=list)
    accepted_insurance: list[str] = field(default_factory=list)
    bio: Optional[str] = None

    @classmethod
    def from_record(cls, record: TherapistRecord) -> "TherapistSummary":
        return cls(
            id=record.id,
            name=record.name,
            specialties=list(record.specialties),
            accepted_insurance=list(record.accepted_insurance),
            bio=record.bio,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "TherapistSummary":
        """Accepts the search shape {"therapist": {...}} or a flat summary."""
        data = data.get("therapist", data)
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            specialties=list(data.get("specialties") or []),
            accepted_insurance=list(
                data.get("acceptedInsurance", data.get("accepted_insurance")) or []
            ),
            bio=data.get("bio"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "specialties": list(self.specialties),
            "acceptedInsurance": list(self.accepted_insurance),
            "bio": self.bio,
        }


@dataclass
class ConversationState:
    """Everything the caller carries between messages."""

    patient_id: str
    history: list[dict] = field(default_factory=list)
    matched_therapist_id: Optional[str] = None
    pending_matches: list[TherapistSummary] = field(default_factory=list)
    time_zone: str = settings.default_time_zone

    @property
    def recent_history(self) -> list[dict]:
        return self.history[-settings.history_window:]

    @property
    def pending_names(self) -> list[str]:
        return [m.name for m in self.pending_matches]


@dataclass
class OrchestratorResponse:
    """Reply plus directive for one message."""

    success: bool
    message: str
    next_action: NextAction
    inquiry_id: Optional[str] = None
    therapist_id: Optional[str] = None
    start_time: Optional[datetime] = None  # caller's wall-clock time
    end_time: Optional[datetime] = None
    time_zone: Optional[str] = None
    extracted: Optional[ExtractedData] = None
    pending_matches: Optional[list[TherapistSummary]] = None  # [] clears the caller's list
    therapist_matches: Optional[list[dict]] = None
    appointment: Optional[dict] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result = {
            "success": self.success,
            "message": self.message,
            "nextAction": self.next_action.value,
            "inquiryId": self.inquiry_id,
        }

        if self.therapist_id:
            result["therapistId"] = self.therapist_id
        if self.start_time:
            result["startTime"] = self.start_time.replace(tzinfo=None).isoformat()
        if self.end_time:
            result["endTime"] = self.end_time.replace(tzinfo=None).isoformat()
        if self.time_zone:
            result["timeZone"] = self.time_zone
        if self.extracted:
            result["extractedData"] = self.extracted.to_dict()
        if self.pending_matches is not None:
            result["pendingTherapistMatches"] = [
                {"therapist": m.to_dict()} for m in self.pending_matches
            ]
        if self.therapist_matches is not None:
            result["therapistMatches"] = self.therapist_matches
        if self.appointment:
            result["appointment"] = self.appointment
        if self.error:
            result["error"] = self.error

        return result
