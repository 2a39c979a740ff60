"""
Conversation Flow Manager.

Pure decision step of the intake state machine: given the merged inquiry,
this message's extraction and the pending options, pick the branch.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.core.intelligence.extraction.types import BookingIntent, ExtractedData
from app.core.records.types import InquiryRecord
from app.models.database import InquiryStatus
from .state import NextAction, TherapistSummary

logger = logging.getLogger(__name__)


class Branch(str, Enum):
    """Which reply path a message takes."""

    SELECT_THERAPIST = "select_therapist"
    BOOK = "book"
    ASK_TIME = "ask_time"
    CONFIRM_BOOKING = "confirm_booking"
    ALREADY_SCHEDULED = "already_scheduled"
    FIND_THERAPIST = "find_therapist"
    COLLECT_INFO = "collect_info"


@dataclass
class FlowAction:
    """Action determined by flow manager."""

    branch: Branch
    next_action: NextAction
    prompt_for: Optional[str] = None  # What to ask for next
    selected: Optional[TherapistSummary] = None
    schedule: Optional[str] = None  # Phrase to resolve for booking


class ConversationFlow:
    """
    State machine for intake conversations.

    Priority order: therapist selection, booking, then information
    gathering. States live in the inquiry fields:
    collecting-info -> matched-awaiting-confirmation -> booking -> scheduled.
    """

    def decide(
        self,
        inquiry: InquiryRecord,
        extracted: ExtractedData,
        pending_matches: Optional[list[TherapistSummary]] = None,
    ) -> FlowAction:
        """Determine the branch for this message.

        Args:
            inquiry: Inquiry with this message's fields already merged
            extracted: Extraction for this message
            pending_matches: Options shown to the user last turn

        Returns:
            FlowAction
        """
        pending = pending_matches or []

        # Selection never falls through to a new search
        selection = extracted.therapist_selection
        if selection is not None and pending and 1 <= selection <= len(pending):
            return FlowAction(
                branch=Branch.SELECT_THERAPIST,
                next_action=NextAction.THERAPIST_SELECTED,
                selected=pending[selection - 1],
            )

        if inquiry.matched_therapist_id:
            return self._handle_matched(inquiry, extracted)

        missing = inquiry.missing_fields
        if not missing:
            return FlowAction(
                branch=Branch.FIND_THERAPIST,
                next_action=NextAction.FIND_THERAPIST,
            )

        return FlowAction(
            branch=Branch.COLLECT_INFO,
            next_action=NextAction.AWAITING_INFO,
            prompt_for=missing[0],
        )

    def _handle_matched(self, inquiry: InquiryRecord, extracted: ExtractedData) -> FlowAction:
        if extracted.booking_intent == BookingIntent.YES:
            schedule = extracted.schedule or inquiry.schedule
            if schedule:
                return FlowAction(
                    branch=Branch.BOOK,
                    next_action=NextAction.BOOK_APPOINTMENT,
                    schedule=schedule,
                )
            return FlowAction(
                branch=Branch.ASK_TIME,
                next_action=NextAction.AWAITING_INFO,
                prompt_for="schedule",
            )

        if inquiry.status == InquiryStatus.SCHEDULED:
            return FlowAction(
                branch=Branch.ALREADY_SCHEDULED,
                next_action=NextAction.AWAITING_INFO,
            )

        # "no", questions and silence keep the match and ask again
        return FlowAction(
            branch=Branch.CONFIRM_BOOKING,
            next_action=NextAction.AWAITING_INFO,
            prompt_for="booking_confirmation",
        )


# Singleton
_flow: Optional[ConversationFlow] = None


def get_conversation_flow() -> ConversationFlow:
    """Get singleton ConversationFlow."""
    global _flow
    if _flow is None:
        _flow = ConversationFlow()
    return _flow
