"""
Record Store

Async SQLAlchemy access to inquiries, therapists and appointments. Every
public method runs in its own transaction and returns normalised records.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.infra.database import get_db_context
from app.models.database import (
    Appointment,
    AppointmentStatus,
    Inquiry,
    InquiryStatus,
    Therapist,
)
from .types import AppointmentRecord, InquiryRecord, TherapistRecord

logger = logging.getLogger(__name__)


def parse_id(value: Optional[str]) -> Optional[uuid.UUID]:
    """Parse a record id, returning None for anything that is not a UUID."""
    if not value:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _overlapping(therapist_id: uuid.UUID, start: datetime, end: datetime, exclude_id: Optional[uuid.UUID] = None):
    stmt = select(Appointment).where(
        Appointment.therapist_id == therapist_id,
        Appointment.status != AppointmentStatus.CANCELLED,
        Appointment.start_time < end,
        Appointment.end_time > start,
    )
    if exclude_id is not None:
        stmt = stmt.where(Appointment.id != exclude_id)
    return stmt


class SQLRecordStore:
    """
    Record store backed by SQLAlchemy.

    Usage:
        store = SQLRecordStore()
        inquiry = await store.get_current_inquiry("anon-123")
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        """Initialize store.

        Args:
            session_factory: Session factory (defaults to the application engine)
        """
        self._session_factory = session_factory

    def _db(self):
        return get_db_context(self._session_factory)

    # === Inquiries ===

    async def get_inquiry(self, inquiry_id: str) -> Optional[InquiryRecord]:
        key = parse_id(inquiry_id)
        if key is None:
            return None
        async with self._db() as db:
            row = await db.get(Inquiry, key)
            return InquiryRecord.from_model(row) if row else None

    async def get_current_inquiry(self, patient_identifier: str) -> Optional[InquiryRecord]:
        """Most recently created inquiry for a patient."""
        async with self._db() as db:
            result = await db.execute(
                select(Inquiry)
                .where(Inquiry.patient_identifier == patient_identifier)
                .order_by(Inquiry.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return InquiryRecord.from_model(row) if row else None

    async def save_inquiry(self, record: InquiryRecord) -> InquiryRecord:
        """
        Insert or update an inquiry in one transaction.

        Empty fields on the record never overwrite stored values. Status and
        match are compare-and-set: if the stored status moved since the
        record was read (a booking or cancellation committed meanwhile), the
        stored status and match win.
        """
        key = parse_id(record.id) or uuid.uuid4()
        async with self._db() as db:
            row = await db.get(Inquiry, key, with_for_update=True)
            if row is None:
                row = Inquiry(id=key, patient_identifier=record.patient_identifier)
                db.add(row)
                stale = False
            else:
                stale = (
                    record.loaded_status is not None
                    and InquiryStatus(row.status) != record.loaded_status
                )

            for attr in (
                "problem_description",
                "extracted_specialty",
                "requested_schedule",
                "insurance_info",
            ):
                value = getattr(record, attr)
                if value:
                    setattr(row, attr, value)

            if stale:
                logger.info(
                    f"Inquiry {key} moved to {InquiryStatus(row.status).value} concurrently; "
                    f"keeping it over {record.status.value}"
                )
            else:
                therapist_key = parse_id(record.matched_therapist_id)
                if therapist_key is not None:
                    row.matched_therapist_id = therapist_key
                row.status = record.status

            await db.flush()
            saved = InquiryRecord.from_model(row)

        logger.debug(f"Saved inquiry {saved.id} status={saved.status.value}")
        return saved

    async def list_inquiries(self) -> list[tuple[InquiryRecord, Optional[str]]]:
        """All inquiries newest first, with the matched therapist's name."""
        async with self._db() as db:
            result = await db.execute(
                select(Inquiry, Therapist.name)
                .outerjoin(Therapist, Inquiry.matched_therapist_id == Therapist.id)
                .order_by(Inquiry.created_at.desc())
            )
            return [(InquiryRecord.from_model(row), name) for row, name in result.all()]

    # === Therapists ===

    async def list_active_therapists(self) -> list[TherapistRecord]:
        async with self._db() as db:
            result = await db.execute(
                select(Therapist)
                .where(Therapist.is_active.is_(True))
                .order_by(Therapist.created_at, Therapist.name)
            )
            return [TherapistRecord.from_model(row) for row in result.scalars().all()]

    async def get_therapist(self, therapist_id: str) -> Optional[TherapistRecord]:
        key = parse_id(therapist_id)
        if key is None:
            return None
        async with self._db() as db:
            row = await db.get(Therapist, key)
            return TherapistRecord.from_model(row) if row else None

    async def add_therapist(self, record: TherapistRecord) -> TherapistRecord:
        """Insert a therapist (seeding and administration)."""
        async with self._db() as db:
            row = Therapist(
                id=parse_id(record.id) or uuid.uuid4(),
                name=record.name,
                bio=record.bio,
                specialties=list(record.specialties),
                accepted_insurance=list(record.accepted_insurance),
                is_active=record.is_active,
                google_refresh_token=record.google_refresh_token,
                google_calendar_id=record.google_calendar_id,
            )
            db.add(row)
            await db.flush()
            return TherapistRecord.from_model(row)

    # === Appointments ===

    async def get_appointment(self, appointment_id: str) -> Optional[AppointmentRecord]:
        key = parse_id(appointment_id)
        if key is None:
            return None
        async with self._db() as db:
            row = await db.get(Appointment, key)
            return AppointmentRecord.from_model(row) if row else None

    async def list_appointments_for_inquiry(self, inquiry_id: str) -> list[AppointmentRecord]:
        key = parse_id(inquiry_id)
        if key is None:
            return []
        async with self._db() as db:
            result = await db.execute(
                select(Appointment)
                .where(Appointment.inquiry_id == key)
                .order_by(Appointment.start_time)
            )
            return [AppointmentRecord.from_model(row) for row in result.scalars().all()]

    async def list_therapist_appointments(
        self,
        therapist_id: str,
        start: datetime,
        end: datetime,
    ) -> list[AppointmentRecord]:
        """Non-cancelled appointments of a therapist overlapping [start, end)."""
        key = parse_id(therapist_id)
        if key is None:
            return []
        async with self._db() as db:
            result = await db.execute(
                _overlapping(key, start, end).order_by(Appointment.start_time)
            )
            return [AppointmentRecord.from_model(row) for row in result.scalars().all()]

    async def create_appointment(
        self,
        inquiry_id: str,
        therapist_id: str,
        start: datetime,
        end: datetime,
        problem: Optional[str] = None,
    ) -> Optional[AppointmentRecord]:
        """
        Insert an appointment and mark the inquiry scheduled, atomically.

        The therapist row is locked and the overlap re-checked inside the
        transaction.

        Returns:
            The new appointment, or None if the slot is already taken
        """
        therapist_key = parse_id(therapist_id)
        inquiry_key = parse_id(inquiry_id)

        async with self._db() as db:
            await db.execute(
                select(Therapist.id).where(Therapist.id == therapist_key).with_for_update()
            )
            clash = await db.execute(_overlapping(therapist_key, start, end).limit(1))
            if clash.scalar_one_or_none() is not None:
                logger.info(f"Slot conflict for therapist {therapist_id} at {start}")
                return None

            row = Appointment(
                id=uuid.uuid4(),
                inquiry_id=inquiry_key,
                therapist_id=therapist_key,
                start_time=start,
                end_time=end,
                status=AppointmentStatus.SCHEDULED,
            )
            db.add(row)

            inquiry = await db.get(Inquiry, inquiry_key)
            if inquiry is not None:
                inquiry.matched_therapist_id = therapist_key
                inquiry.status = InquiryStatus.SCHEDULED
                if problem:
                    inquiry.problem_description = problem
                    if not inquiry.extracted_specialty:
                        inquiry.extracted_specialty = problem

            await db.flush()
            return AppointmentRecord.from_model(row)

    async def reschedule_appointment(
        self,
        appointment_id: str,
        start: datetime,
        end: datetime,
    ) -> Optional[AppointmentRecord]:
        """
        Move an appointment, re-checking overlap against everything but itself.

        Returns:
            The updated appointment, or None if the new slot is taken
        """
        key = parse_id(appointment_id)
        async with self._db() as db:
            row = await db.get(Appointment, key)
            if row is None:
                return None
            await db.execute(
                select(Therapist.id).where(Therapist.id == row.therapist_id).with_for_update()
            )
            clash = await db.execute(
                _overlapping(row.therapist_id, start, end, exclude_id=row.id).limit(1)
            )
            if clash.scalar_one_or_none() is not None:
                return None

            row.start_time = start
            row.end_time = end
            await db.flush()
            return AppointmentRecord.from_model(row)

    async def cancel_appointment(self, appointment_id: str) -> Optional[AppointmentRecord]:
        """Mark an appointment and its inquiry cancelled."""
        key = parse_id(appointment_id)
        if key is None:
            return None
        async with self._db() as db:
            row = await db.get(Appointment, key)
            if row is None:
                return None
            row.status = AppointmentStatus.CANCELLED

            inquiry = await db.get(Inquiry, row.inquiry_id)
            if inquiry is not None:
                inquiry.status = InquiryStatus.CANCELLED

            await db.flush()
            return AppointmentRecord.from_model(row)

    async def set_calendar_event(self, appointment_id: str, event_id: Optional[str]) -> None:
        key = parse_id(appointment_id)
        async with self._db() as db:
            row = await db.get(Appointment, key)
            if row is not None:
                row.google_calendar_event_id = event_id

    async def list_appointments(self) -> list[tuple[AppointmentRecord, Optional[str]]]:
        """All appointments by start time descending, with therapist name."""
        async with self._db() as db:
            result = await db.execute(
                select(Appointment, Therapist.name)
                .join(Therapist, Appointment.therapist_id == Therapist.id)
                .order_by(Appointment.start_time.desc())
            )
            return [(AppointmentRecord.from_model(row), name) for row, name in result.all()]


# Singleton
_store: Optional[SQLRecordStore] = None


def get_record_store() -> SQLRecordStore:
    """Get singleton record store bound to the application engine."""
    global _store
    if _store is None:
        _store = SQLRecordStore()
    return _store
