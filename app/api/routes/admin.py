"""
Admin Overview Endpoint

Read-only listing of inquiries and appointments for the practice,
guarded by the static admin key.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.middleware.auth import require_admin
from app.config import settings
from app.core.records.store import SQLRecordStore, get_record_store
from app.core.scheduling.clock import resolve_zone
from app.models.schemas import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.get(
    "/overview",
    summary="Inquiries and appointments",
    description="Inquiries newest first and appointments by start time descending, each with the therapist name.",
    responses={
        401: {"model": ErrorResponse, "description": "Admin key missing"},
        403: {"model": ErrorResponse, "description": "Admin key invalid"},
    },
)
async def overview(
    time_zone: Optional[str] = Query(default=None, alias="timeZone"),
    store: SQLRecordStore = Depends(get_record_store),
) -> dict:
    """Combined admin listing."""
    zone = resolve_zone(time_zone or settings.default_time_zone)

    inquiries, appointments = await asyncio.gather(
        store.list_inquiries(),
        store.list_appointments(),
    )
    logger.info(f"Admin overview: {len(inquiries)} inquiries, {len(appointments)} appointments")

    return {
        "timeZone": zone.key,
        "inquiries": [
            {**inquiry.to_dict(), "therapistName": name}
            for inquiry, name in inquiries
        ],
        "appointments": [
            {**appointment.to_dict(zone), "therapistName": name}
            for appointment, name in appointments
        ],
    }
