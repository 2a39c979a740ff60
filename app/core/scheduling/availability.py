"""
Availability Checker.

Hourly slots within working hours minus existing appointments and
anything already in the past.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from app.config import settings
from app.core.records.store import SQLRecordStore, get_record_store
from .clock import Clock, display_time, resolve_zone, to_utc_naive, utc_now


@dataclass
class Slot:
    """A free one-hour slot in the caller's zone."""

    start: datetime
    end: datetime

    @property
    def display(self) -> str:
        return display_time(self.start)

    def to_dict(self) -> dict:
        return {
            "startTime": self.start.isoformat(),
            "endTime": self.end.isoformat(),
            "display": self.display,
        }


class AvailabilityChecker:
    """Computes free slots for one therapist on one day."""

    def __init__(
        self,
        store: Optional[SQLRecordStore] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store or get_record_store()
        self._clock = clock or utc_now

    async def available_slots(
        self,
        therapist_id: str,
        day: date,
        time_zone: Optional[str] = None,
    ) -> Optional[list[Slot]]:
        """
        Free slots for a therapist on a local calendar day.

        Returns:
            Slots in order, or None if the therapist does not exist
        """
        therapist = await self._store.get_therapist(therapist_id)
        if therapist is None or not therapist.is_active:
            return None

        zone = resolve_zone(time_zone)
        day_start = datetime.combine(day, time(0), tzinfo=zone)
        day_end = day_start + timedelta(days=1)

        booked = await self._store.list_therapist_appointments(
            therapist_id,
            to_utc_naive(day_start, zone),
            to_utc_naive(day_end, zone),
        )
        now = to_utc_naive(self._clock(), zone)
        slot_length = timedelta(minutes=settings.appointment_minutes)

        slots = []
        for hour in range(settings.working_hours_start, settings.working_hours_end):
            start_local = datetime.combine(day, time(hour), tzinfo=zone)
            end_local = start_local + slot_length
            start_utc = to_utc_naive(start_local, zone)
            end_utc = to_utc_naive(end_local, zone)

            if start_utc < now:
                continue
            if any(apt.overlaps(start_utc, end_utc) for apt in booked):
                continue
            slots.append(Slot(start=start_local, end=end_local))

        return slots


# Singleton
_checker: Optional[AvailabilityChecker] = None


def get_availability_checker() -> AvailabilityChecker:
    """Get singleton AvailabilityChecker."""
    global _checker
    if _checker is None:
        _checker = AvailabilityChecker()
    return _checker
