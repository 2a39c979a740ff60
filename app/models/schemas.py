"""
API request and response schemas.

JSON bodies use camelCase; snake_case field names are accepted too.
"""

from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


# === Chat ===


class HistoryTurn(CamelModel):
    """One prior message in the conversation."""

    role: Literal["user", "assistant"]
    content: str


class ChatRequest(CamelModel):
    """Chat message request."""

    user_message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        validation_alias=AliasChoices("userMessage", "messageText", "user_message"),
        description="Patient's message",
        examples=["I've been feeling anxious lately"],
    )
    patient_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("patientId", "patientIdentifier", "patient_id"),
        description="Pseudo-identity for the session; generated when omitted",
    )
    conversation_history: list[HistoryTurn] = Field(default_factory=list)
    matched_therapist_id: Optional[str] = None
    pending_therapist_matches: Optional[list[dict]] = None
    time_zone: Optional[str] = None


# === Therapists ===


class TherapistSearchRequest(CamelModel):
    """Therapist search filters. All optional."""

    specialty: Optional[str] = None
    insurance: Optional[str] = None
    query: Optional[str] = None


# === Appointments ===


class BookingRequest(CamelModel):
    """Appointment booking request."""

    inquiry_id: Optional[str] = None
    therapist_id: Optional[str] = None
    start_time: Optional[str] = Field(default=None, examples=["2025-12-10T10:00:00"])
    end_time: Optional[str] = None
    time_zone: Optional[str] = None
    problem: Optional[str] = None
    patient_name: Optional[str] = None


class RescheduleRequest(CamelModel):
    """Move an appointment."""

    start_time: Optional[str] = None
    end_time: Optional[str] = None
    time_zone: Optional[str] = None


class CancelRequest(CamelModel):
    """Cancel an appointment."""

    time_zone: Optional[str] = None
