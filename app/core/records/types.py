"""
Record types.

Plain dataclasses normalised from ORM rows at the store boundary, so the
rest of the application never touches SQLAlchemy objects or optional
attributes of unknown shape.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.models.database import (
    Appointment,
    AppointmentStatus,
    Inquiry,
    InquiryStatus,
    Therapist,
)


def _iso(value: Optional[datetime], zone: Optional[ZoneInfo] = None) -> Optional[str]:
    if value is None:
        return None
    aware = value.replace(tzinfo=timezone.utc)
    if zone is not None:
        aware = aware.astimezone(zone)
    return aware.isoformat()


@dataclass
class TherapistRecord:
    """A therapist as seen by matching and booking."""

    id: str
    name: str
    bio: Optional[str] = None
    specialties: list[str] = field(default_factory=list)
    accepted_insurance: list[str] = field(default_factory=list)
    is_active: bool = True
    google_refresh_token: Optional[str] = field(default=None, repr=False)
    google_calendar_id: Optional[str] = None

    @classmethod
    def from_model(cls, row: Therapist) -> "TherapistRecord":
        return cls(
            id=str(row.id),
            name=row.name,
            bio=row.bio,
            specialties=list(row.specialties or []),
            accepted_insurance=list(row.accepted_insurance or []),
            is_active=bool(row.is_active),
            google_refresh_token=row.google_refresh_token,
            google_calendar_id=row.google_calendar_id,
        )

    @property
    def has_calendar_credentials(self) -> bool:
        return bool(self.google_refresh_token)

    def to_summary(self) -> dict:
        """Summary shape shown to callers (never includes credentials)."""
        return {
            "id": self.id,
            "name": self.name,
            "specialties": list(self.specialties),
            "acceptedInsurance": list(self.accepted_insurance),
            "bio": self.bio,
        }


@dataclass
class InquiryRecord:
    """
    One patient's intake.

    Known field values are never cleared: fill() only replaces a field when
    a concrete new value is supplied.
    """

    id: str
    patient_identifier: str
    problem_description: Optional[str] = None
    extracted_specialty: Optional[str] = None
    requested_schedule: Optional[str] = None
    insurance_info: Optional[str] = None
    matched_therapist_id: Optional[str] = None
    status: InquiryStatus = InquiryStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Status as read from the store; saves compare against it
    loaded_status: Optional[InquiryStatus] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_model(cls, row: Inquiry) -> "InquiryRecord":
        return cls(
            id=str(row.id),
            patient_identifier=row.patient_identifier,
            problem_description=row.problem_description,
            extracted_specialty=row.extracted_specialty,
            requested_schedule=row.requested_schedule,
            insurance_info=row.insurance_info,
            matched_therapist_id=str(row.matched_therapist_id) if row.matched_therapist_id else None,
            status=InquiryStatus(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
            loaded_status=InquiryStatus(row.status),
        )

    @property
    def problem(self) -> Optional[str]:
        return self.extracted_specialty

    @property
    def schedule(self) -> Optional[str]:
        return self.requested_schedule

    @property
    def insurance(self) -> Optional[str]:
        return self.insurance_info

    @property
    def missing_fields(self) -> list[str]:
        """Missing intake fields in asking order."""
        missing = []
        if not self.problem:
            missing.append("problem")
        if not self.schedule:
            missing.append("schedule")
        if not self.insurance:
            missing.append("insurance")
        return missing

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields

    def fill(
        self,
        problem: Optional[str] = None,
        schedule: Optional[str] = None,
        insurance: Optional[str] = None,
        problem_description: Optional[str] = None,
    ) -> "InquiryRecord":
        """Return a copy with the given non-empty values applied."""
        changes = {}
        if problem:
            changes["extracted_specialty"] = problem
            changes["problem_description"] = problem_description or self.problem_description or problem
        if schedule:
            changes["requested_schedule"] = schedule
        if insurance:
            changes["insurance_info"] = insurance
        return replace(self, **changes)

    def with_match(self, therapist_id: str) -> "InquiryRecord":
        """Return a copy matched to a therapist (status moves to matched)."""
        status = self.status
        if status in (InquiryStatus.PENDING, InquiryStatus.CANCELLED):
            status = InquiryStatus.MATCHED
        return replace(self, matched_therapist_id=therapist_id, status=status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "patientIdentifier": self.patient_identifier,
            "problemDescription": self.problem_description,
            "extractedSpecialty": self.extracted_specialty,
            "requestedSchedule": self.requested_schedule,
            "insuranceInfo": self.insurance_info,
            "matchedTherapistId": self.matched_therapist_id,
            "status": self.status.value,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class AppointmentRecord:
    """A booked session. Times are naive UTC."""

    id: str
    inquiry_id: str
    therapist_id: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    google_calendar_event_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, row: Appointment) -> "AppointmentRecord":
        return cls(
            id=str(row.id),
            inquiry_id=str(row.inquiry_id),
            therapist_id=str(row.therapist_id),
            start_time=row.start_time,
            end_time=row.end_time,
            status=AppointmentStatus(row.status),
            google_calendar_event_id=row.google_calendar_event_id,
            created_at=row.created_at,
        )

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.CANCELLED

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval overlap with [start, end)."""
        return start < self.end_time and end > self.start_time

    def to_dict(self, zone: Optional[ZoneInfo] = None) -> dict:
        """Serialise with times rendered in zone (UTC when omitted)."""
        return {
            "id": self.id,
            "inquiryId": self.inquiry_id,
            "therapistId": self.therapist_id,
            "startTime": _iso(self.start_time, zone),
            "endTime": _iso(self.end_time, zone),
            "status": self.status.value,
            "googleCalendarEventId": self.google_calendar_event_id,
            "createdAt": _iso(self.created_at),
        }
