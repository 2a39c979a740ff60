"""
Database Models

SQLAlchemy ORM models for the therapy intake and booking service.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, JSON, String, Text,
    Uuid, Enum as SQLEnum, text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def utcnow_naive() -> datetime:
    """Current UTC time without tzinfo, the storage convention for all columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow_naive,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow_naive,
        onupdate=utcnow_naive,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class InquiryStatus(str, Enum):
    """Inquiry status enumeration."""
    PENDING = "pending"
    MATCHED = "matched"
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Therapist(Base, TimestampMixin):
    """
    Therapist model.

    A service provider users can be matched with. Calendar credentials are
    written by the OAuth callback and only read by calendar sync.
    """

    __tablename__ = "therapists"
    __table_args__ = (
        Index("idx_therapist_active", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    specialties: Mapped[list] = mapped_column(JSON, default=list)
    accepted_insurance: Mapped[list] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    google_refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    google_calendar_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Relationships
    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment",
        back_populates="therapist"
    )

    def __repr__(self) -> str:
        return f"<Therapist(id={self.id}, name='{self.name}', active={self.is_active})>"


class Inquiry(Base, TimestampMixin):
    """
    Inquiry model.

    One conversational intake per anonymous patient identifier. Fields are
    filled in as they are extracted from successive messages.
    """

    __tablename__ = "inquiries"
    __table_args__ = (
        Index("idx_inquiry_patient_created", "patient_identifier", "created_at"),
        Index("idx_inquiry_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    patient_identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    problem_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extracted_specialty: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    requested_schedule: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    insurance_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    matched_therapist_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("therapists.id", ondelete="SET NULL"),
        nullable=True
    )
    status: Mapped[InquiryStatus] = mapped_column(
        SQLEnum(InquiryStatus),
        default=InquiryStatus.PENDING,
        nullable=False
    )

    # Relationships
    matched_therapist: Mapped[Optional["Therapist"]] = relationship("Therapist")
    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment",
        back_populates="inquiry"
    )

    def __repr__(self) -> str:
        return (
            f"<Inquiry(id={self.id}, patient='{self.patient_identifier}', "
            f"status={self.status.value})>"
        )


class Appointment(Base, TimestampMixin):
    """
    Appointment model.

    A confirmed booking between an inquiry and a therapist. Times are naive UTC.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointment_therapist_start", "therapist_id", "start_time"),
        Index("idx_appointment_inquiry", "inquiry_id"),
        CheckConstraint("end_time > start_time", name="ck_appointment_time_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    inquiry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("inquiries.id", ondelete="CASCADE"),
        nullable=False
    )
    therapist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("therapists.id", ondelete="CASCADE"),
        nullable=False
    )
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(AppointmentStatus),
        default=AppointmentStatus.SCHEDULED,
        nullable=False
    )
    google_calendar_event_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True
    )

    # Relationships
    inquiry: Mapped["Inquiry"] = relationship("Inquiry", back_populates="appointments")
    therapist: Mapped["Therapist"] = relationship("Therapist", back_populates="appointments")

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, therapist_id={self.therapist_id}, "
            f"start={self.start_time}, status={self.status.value})>"
        )
