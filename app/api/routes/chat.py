"""
Chat API Endpoint.

Handles one patient message per request. Session state (history, matched
therapist, options shown last turn) is carried by the caller.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.core.conversation.dispatch import get_orchestrator
from app.core.conversation.orchestrator import BaseOrchestrator
from app.core.conversation.state import ConversationState, TherapistSummary
from app.models.schemas import ChatRequest, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


def build_state(request: ChatRequest) -> ConversationState:
    """Session state from the request body."""
    return ConversationState(
        patient_id=request.patient_id or f"anon-{uuid.uuid4().hex[:12]}",
        history=[turn.model_dump() for turn in request.conversation_history],
        matched_therapist_id=request.matched_therapist_id,
        pending_matches=[
            TherapistSummary.from_dict(match)
            for match in (request.pending_therapist_matches or [])
        ],
        time_zone=request.time_zone or settings.default_time_zone,
    )


@router.post(
    "",
    status_code=status.HTTP_200_OK,
    summary="Send a chat message",
    description="Send a patient message and get the reply plus the next action.",
    responses={
        200: {"description": "Successful response"},
        422: {"model": ErrorResponse, "description": "Invalid request"},
        500: {"description": "Processing failed; body still carries a reply"},
    },
)
async def chat(
    request: ChatRequest,
    orchestrator: BaseOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """
    Process a chat message.

    The patientId should be preserved across requests so that the same
    inquiry keeps filling in.
    """
    state = build_state(request)
    response = await orchestrator.handle_message(request.user_message, state)

    body = response.to_dict()
    body["patientId"] = state.patient_id

    return JSONResponse(
        status_code=status.HTTP_200_OK if response.success else status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
