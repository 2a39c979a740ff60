"""
Booking Engine.

Validates and writes appointments, then mirrors them to the therapist's
calendar on a best-effort basis. Failures come back as BookingResult
values with an error code; nothing here raises for a user mistake.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo

from app.config import settings
from app.core.intelligence.response import ResponseGenerator
from app.core.records.store import SQLRecordStore, get_record_store
from app.core.records.types import AppointmentRecord, InquiryRecord, TherapistRecord
from app.infra.calendar_sync import (
    CalendarCredentials,
    CalendarEvent,
    CalendarSyncError,
    GoogleCalendarSync,
    get_calendar_sync,
)
from app.infra.redis import KeyedLock, therapist_locks
from app.models.database import AppointmentStatus
from .clock import Clock, from_utc_naive, parse_timestamp, resolve_zone, to_utc_naive, utc_now

logger = logging.getLogger(__name__)

TimeInput = Union[str, datetime, None]

NO_CREDENTIALS_WARNING = (
    "No Google Refresh Token found for therapist. "
    "The appointment is booked but was not added to their calendar."
)


class BookingErrorCode(str, Enum):
    """Why a booking request was rejected."""

    MISSING_FIELD = "missing_field"
    INVALID_TIME = "invalid_time"
    PAST_TIME = "past_time"
    NOT_FOUND = "not_found"
    SLOT_CONFLICT = "slot_conflict"


@dataclass
class BookingResult:
    """Result of a booking, cancellation or reschedule."""

    success: bool
    appointment: Optional[AppointmentRecord] = None
    therapist_name: Optional[str] = None
    error_code: Optional[BookingErrorCode] = None
    message: Optional[str] = None
    calendar_sync_warning: Optional[str] = None
    time_zone: Optional[str] = None

    @classmethod
    def failure(cls, code: BookingErrorCode, time_zone: Optional[str] = None) -> "BookingResult":
        return cls(
            success=False,
            error_code=code,
            message=ResponseGenerator.booking_failed(code.value),
            time_zone=time_zone,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for API and tool responses."""
        data: dict = {"success": self.success, "message": self.message}
        if self.appointment is not None:
            zone = resolve_zone(self.time_zone)
            data["appointment"] = self.appointment.to_dict(zone)
            data["timeZone"] = zone.key
        if self.therapist_name:
            data["therapistName"] = self.therapist_name
        if self.error_code is not None:
            data["error"] = self.error_code.value
        if self.calendar_sync_warning:
            data["calendarSyncWarning"] = self.calendar_sync_warning
        return data


def _coerce_time(value: TimeInput, zone: ZoneInfo) -> Optional[datetime]:
    """Parse a caller-supplied time to naive UTC, None if unreadable."""
    if isinstance(value, datetime):
        return to_utc_naive(value, zone)
    try:
        return to_utc_naive(parse_timestamp(str(value)), zone)
    except (TypeError, ValueError):
        return None


class BookingEngine:
    """
    Appointment booking with conflict protection.

    Bookings for one therapist are serialised with a keyed lock, and the
    store re-checks overlap inside the insert transaction.
    """

    def __init__(
        self,
        store: Optional[SQLRecordStore] = None,
        calendar_sync: Optional[GoogleCalendarSync] = None,
        clock: Optional[Clock] = None,
        locks: Optional[KeyedLock] = None,
    ):
        """Initialize engine.

        Args:
            store: Record store
            calendar_sync: Calendar collaborator (defaults to Google)
            clock: Current-time source (aware UTC)
            locks: Per-therapist lock registry
        """
        self._store = store or get_record_store()
        self._calendar = calendar_sync
        self._clock = clock or utc_now
        self._locks = locks or therapist_locks

    def _get_calendar(self) -> GoogleCalendarSync:
        if self._calendar is None:
            self._calendar = get_calendar_sync()
        return self._calendar

    async def _validate_times(
        self,
        start_time: TimeInput,
        end_time: TimeInput,
        zone: ZoneInfo,
    ) -> tuple[Optional[datetime], Optional[datetime], Optional[BookingErrorCode]]:
        start = _coerce_time(start_time, zone)
        if start is None:
            return None, None, BookingErrorCode.INVALID_TIME

        if end_time:
            end = _coerce_time(end_time, zone)
            if end is None or end <= start:
                return None, None, BookingErrorCode.INVALID_TIME
        else:
            end = start + timedelta(minutes=settings.appointment_minutes)

        if start < to_utc_naive(self._clock(), zone):
            return None, None, BookingErrorCode.PAST_TIME

        return start, end, None

    # === Booking ===

    async def book(
        self,
        therapist_id: Optional[str],
        start_time: TimeInput,
        end_time: TimeInput = None,
        inquiry_id: Optional[str] = None,
        problem: Optional[str] = None,
        time_zone: Optional[str] = None,
        patient_name: Optional[str] = None,
    ) -> BookingResult:
        """
        Book an appointment.

        Validation order: missing field, invalid time, past time, unknown
        therapist or inquiry, slot conflict.

        Args:
            therapist_id: Therapist to book
            start_time: ISO string or datetime (naive means caller's zone)
            end_time: Optional end, defaults to start plus one session
            inquiry_id: Inquiry the booking belongs to
            problem: Presenting problem to record on the inquiry
            time_zone: Caller's IANA zone
            patient_name: Shown in the calendar event title

        Returns:
            BookingResult
        """
        if not therapist_id or not start_time or not inquiry_id:
            return BookingResult.failure(BookingErrorCode.MISSING_FIELD, time_zone)

        zone = resolve_zone(time_zone)
        start, end, error = await self._validate_times(start_time, end_time, zone)
        if error:
            return BookingResult.failure(error, time_zone)

        therapist = await self._store.get_therapist(therapist_id)
        inquiry = await self._store.get_inquiry(inquiry_id)
        if therapist is None or not therapist.is_active or inquiry is None:
            return BookingResult.failure(BookingErrorCode.NOT_FOUND, time_zone)

        # Fast reject before taking the lock
        if await self._store.list_therapist_appointments(therapist.id, start, end):
            return BookingResult.failure(BookingErrorCode.SLOT_CONFLICT, time_zone)

        async with self._locks.hold(therapist.id):
            appointment = await self._store.create_appointment(
                inquiry_id=inquiry.id,
                therapist_id=therapist.id,
                start=start,
                end=end,
                problem=problem,
            )
        if appointment is None:
            return BookingResult.failure(BookingErrorCode.SLOT_CONFLICT, time_zone)

        logger.info(
            f"Booked appointment {appointment.id} therapist={therapist.id} "
            f"inquiry={inquiry.id} start={start.isoformat()}"
        )

        warning = await self._sync_created(appointment, therapist, inquiry, zone, patient_name)

        return BookingResult(
            success=True,
            appointment=appointment,
            therapist_name=therapist.name,
            message=ResponseGenerator.booking_confirmed(
                therapist.name, from_utc_naive(appointment.start_time, zone)
            ),
            calendar_sync_warning=warning,
            time_zone=zone.key,
        )

    async def _sync_created(
        self,
        appointment: AppointmentRecord,
        therapist: TherapistRecord,
        inquiry: InquiryRecord,
        zone: ZoneInfo,
        patient_name: Optional[str],
    ) -> Optional[str]:
        """Create the calendar event. Returns a warning instead of failing."""
        if not therapist.has_calendar_credentials:
            logger.warning(f"No Google Refresh Token found for therapist {therapist.id}")
            return NO_CREDENTIALS_WARNING

        event = CalendarEvent(
            start_local=from_utc_naive(appointment.start_time, zone),
            end_local=from_utc_naive(appointment.end_time, zone),
            time_zone=zone.key,
            inquiry_id=inquiry.id,
            patient_name=patient_name,
        )
        try:
            event_id = await self._get_calendar().create_event(self._credentials(therapist), event)
        except CalendarSyncError as e:
            logger.warning(f"Calendar sync failed for appointment {appointment.id}: {e}")
            return f"The appointment is booked, but calendar sync failed: {e}"
        except Exception as e:
            logger.error(f"Unexpected calendar sync error for appointment {appointment.id}: {e}")
            return "The appointment is booked, but calendar sync failed."

        if event_id:
            await self._store.set_calendar_event(appointment.id, event_id)
            appointment.google_calendar_event_id = event_id
        return None

    @staticmethod
    def _credentials(therapist: TherapistRecord) -> CalendarCredentials:
        return CalendarCredentials(
            refresh_token=therapist.google_refresh_token,
            calendar_id=therapist.google_calendar_id,
        )

    # === Viewing ===

    async def get_appointment(self, appointment_id: str) -> Optional[AppointmentRecord]:
        return await self._store.get_appointment(appointment_id)

    async def list_for_inquiry(self, inquiry_id: str) -> list[AppointmentRecord]:
        return await self._store.list_appointments_for_inquiry(inquiry_id)

    # === Cancel / reschedule ===

    async def cancel(self, appointment_id: Optional[str], time_zone: Optional[str] = None) -> BookingResult:
        """Cancel an appointment and remove its calendar event (best effort)."""
        if not appointment_id:
            return BookingResult.failure(BookingErrorCode.MISSING_FIELD, time_zone)

        existing = await self._store.get_appointment(appointment_id)
        if existing is None:
            return BookingResult.failure(BookingErrorCode.NOT_FOUND, time_zone)

        appointment = await self._store.cancel_appointment(existing.id)
        therapist = await self._store.get_therapist(existing.therapist_id)
        logger.info(f"Cancelled appointment {existing.id}")

        warning = None
        if existing.google_calendar_event_id and therapist and therapist.has_calendar_credentials:
            try:
                await self._get_calendar().delete_event(
                    self._credentials(therapist), existing.google_calendar_event_id
                )
            except CalendarSyncError as e:
                logger.warning(f"Calendar delete failed for appointment {existing.id}: {e}")
                warning = f"The appointment is cancelled, but the calendar event could not be removed: {e}"
            except Exception as e:
                logger.error(f"Unexpected calendar delete error for appointment {existing.id}: {e}")
                warning = "The appointment is cancelled, but the calendar event could not be removed."

        return BookingResult(
            success=True,
            appointment=appointment,
            therapist_name=therapist.name if therapist else None,
            message=ResponseGenerator.appointment_cancelled(),
            calendar_sync_warning=warning,
            time_zone=time_zone,
        )

    async def reschedule(
        self,
        appointment_id: Optional[str],
        start_time: TimeInput,
        end_time: TimeInput = None,
        time_zone: Optional[str] = None,
    ) -> BookingResult:
        """Move an appointment. Same validation as book()."""
        if not appointment_id or not start_time:
            return BookingResult.failure(BookingErrorCode.MISSING_FIELD, time_zone)

        zone = resolve_zone(time_zone)
        start, end, error = await self._validate_times(start_time, end_time, zone)
        if error:
            return BookingResult.failure(error, time_zone)

        existing = await self._store.get_appointment(appointment_id)
        if existing is None or existing.status == AppointmentStatus.CANCELLED:
            return BookingResult.failure(BookingErrorCode.NOT_FOUND, time_zone)
        therapist = await self._store.get_therapist(existing.therapist_id)
        if therapist is None:
            return BookingResult.failure(BookingErrorCode.NOT_FOUND, time_zone)

        async with self._locks.hold(therapist.id):
            appointment = await self._store.reschedule_appointment(existing.id, start, end)
        if appointment is None:
            return BookingResult.failure(BookingErrorCode.SLOT_CONFLICT, time_zone)

        logger.info(f"Rescheduled appointment {appointment.id} to {start.isoformat()}")

        warning = None
        if not therapist.has_calendar_credentials:
            warning = NO_CREDENTIALS_WARNING
        elif appointment.google_calendar_event_id:
            event = CalendarEvent(
                start_local=from_utc_naive(start, zone),
                end_local=from_utc_naive(end, zone),
                time_zone=zone.key,
                inquiry_id=appointment.inquiry_id,
            )
            try:
                await self._get_calendar().update_event(
                    self._credentials(therapist), appointment.google_calendar_event_id, event
                )
            except CalendarSyncError as e:
                logger.warning(f"Calendar update failed for appointment {appointment.id}: {e}")
                warning = f"The appointment was moved, but calendar sync failed: {e}"
            except Exception as e:
                logger.error(f"Unexpected calendar update error for appointment {appointment.id}: {e}")
                warning = "The appointment was moved, but calendar sync failed."

        return BookingResult(
            success=True,
            appointment=appointment,
            therapist_name=therapist.name,
            message=ResponseGenerator.booking_confirmed(therapist.name, from_utc_naive(start, zone)),
            calendar_sync_warning=warning,
            time_zone=zone.key,
        )


# Singleton
_engine: Optional[BookingEngine] = None


def get_booking_engine() -> BookingEngine:
    """Get singleton BookingEngine."""
    global _engine
    if _engine is None:
        _engine = BookingEngine()
    return _engine
