"""
Appointment endpoints.

Booking failures come back with a status code for the error kind and a
conversational message the client can show as-is.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.core.scheduling.booking import (
    BookingEngine,
    BookingErrorCode,
    BookingResult,
    get_booking_engine,
)
from app.core.scheduling.clock import resolve_zone
from app.models.schemas import BookingRequest, CancelRequest, RescheduleRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

ERROR_STATUS = {
    BookingErrorCode.MISSING_FIELD: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingErrorCode.INVALID_TIME: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingErrorCode.PAST_TIME: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    BookingErrorCode.SLOT_CONFLICT: status.HTTP_409_CONFLICT,
}


def to_response(result: BookingResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Map a booking result to an HTTP response."""
    if result.success:
        code = success_status
    else:
        code = ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=code, content=result.to_dict())


@router.post(
    "",
    summary="Book an appointment",
    responses={
        201: {"description": "Booked (calendar sync problems appear as calendarSyncWarning)"},
        404: {"description": "Therapist or inquiry not found"},
        409: {"description": "Slot already taken"},
        422: {"description": "Missing field, invalid or past time"},
    },
)
async def book_appointment(
    request: BookingRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> JSONResponse:
    """Book a session for an inquiry."""
    result = await engine.book(
        therapist_id=request.therapist_id,
        start_time=request.start_time,
        end_time=request.end_time,
        inquiry_id=request.inquiry_id,
        problem=request.problem,
        time_zone=request.time_zone or settings.default_time_zone,
        patient_name=request.patient_name,
    )
    return to_response(result, success_status=status.HTTP_201_CREATED)


@router.get(
    "",
    summary="List appointments for an inquiry",
)
async def list_appointments(
    inquiry_id: str = Query(..., alias="inquiryId"),
    time_zone: Optional[str] = Query(default=None, alias="timeZone"),
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    """Appointments for an inquiry, times in the caller's zone."""
    zone = resolve_zone(time_zone or settings.default_time_zone)
    appointments = await engine.list_for_inquiry(inquiry_id)
    return {
        "inquiryId": inquiry_id,
        "timeZone": zone.key,
        "appointments": [a.to_dict(zone) for a in appointments],
    }


@router.post(
    "/{appointment_id}/cancel",
    summary="Cancel an appointment",
    responses={404: {"description": "Appointment not found"}},
)
async def cancel_appointment(
    appointment_id: str,
    request: Optional[CancelRequest] = None,
    engine: BookingEngine = Depends(get_booking_engine),
) -> JSONResponse:
    """Cancel an appointment and remove its calendar event."""
    time_zone = (request.time_zone if request else None) or settings.default_time_zone
    result = await engine.cancel(appointment_id, time_zone)
    return to_response(result)


@router.post(
    "/{appointment_id}/reschedule",
    summary="Reschedule an appointment",
    responses={
        404: {"description": "Appointment not found"},
        409: {"description": "Slot already taken"},
        422: {"description": "Missing field, invalid or past time"},
    },
)
async def reschedule_appointment(
    appointment_id: str,
    request: RescheduleRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> JSONResponse:
    """Move an appointment to a new time."""
    result = await engine.reschedule(
        appointment_id,
        request.start_time,
        request.end_time,
        request.time_zone or settings.default_time_zone,
    )
    return to_response(result)
