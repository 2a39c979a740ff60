"""
Therapist search and availability endpoints.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.config import settings
from app.core.scheduling.availability import AvailabilityChecker, get_availability_checker
from app.core.scheduling.clock import resolve_zone
from app.core.scheduling.matcher import TherapistMatcher, get_therapist_matcher, to_matches
from app.models.schemas import ErrorResponse, TherapistSearchRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/therapists", tags=["Therapists"])


@router.post(
    "/search",
    summary="Search therapists",
    description="Filter active therapists by specialty, insurance and free text.",
)
async def search_therapists(
    request: TherapistSearchRequest,
    matcher: TherapistMatcher = Depends(get_therapist_matcher),
) -> dict:
    """
    Search therapists.

    Falls back to all active therapists when nothing matches.
    """
    therapists = await matcher.search(
        specialty=request.specialty,
        insurance=request.insurance,
        query=request.query,
    )
    return {"matches": to_matches(therapists)}


@router.get(
    "/{therapist_id}/availability",
    summary="Free slots for a day",
    responses={
        404: {"model": ErrorResponse, "description": "Therapist not found"},
    },
)
async def availability(
    therapist_id: str,
    day: date = Query(..., alias="date", description="Local date, YYYY-MM-DD"),
    time_zone: Optional[str] = Query(default=None, alias="timeZone"),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> dict:
    """List free one-hour slots within working hours."""
    zone = resolve_zone(time_zone or settings.default_time_zone)
    slots = await checker.available_slots(therapist_id, day, zone.key)

    if slots is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="I couldn't find that therapist.",
        )

    return {
        "therapistId": therapist_id,
        "date": day.isoformat(),
        "timeZone": zone.key,
        "slots": [slot.to_dict() for slot in slots],
    }
