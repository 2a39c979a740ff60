"""Tests for the conversation flow decision."""

import pytest

from app.core.conversation.flow import Branch, ConversationFlow
from app.core.conversation.state import NextAction, OrchestratorResponse, TherapistSummary
from app.core.intelligence.extraction.types import BookingIntent, ExtractedData
from app.core.records.types import InquiryRecord
from app.models.database import InquiryStatus


PENDING = [
    TherapistSummary(id="t-1", name="Dr. Anita Rao"),
    TherapistSummary(id="t-2", name="Dr. Brian Chen"),
]


def make_inquiry(**kwargs) -> InquiryRecord:
    return InquiryRecord(id="inq-1", patient_identifier="anon-1", **kwargs)


class TestConversationFlow:
    """Test branch priority."""

    @pytest.fixture
    def flow(self):
        return ConversationFlow()

    def test_asks_for_first_missing_field(self, flow):
        action = flow.decide(make_inquiry(extracted_specialty="anxiety"), ExtractedData())

        assert action.branch == Branch.COLLECT_INFO
        assert action.next_action == NextAction.AWAITING_INFO
        assert action.prompt_for == "schedule"

    def test_complete_intake_finds_therapist(self, flow):
        inquiry = make_inquiry(
            extracted_specialty="anxiety",
            requested_schedule="weekday mornings",
            insurance_info="Aetna",
        )

        action = flow.decide(inquiry, ExtractedData(insurance="Aetna"))

        assert action.branch == Branch.FIND_THERAPIST
        assert action.next_action == NextAction.FIND_THERAPIST

    def test_selection_wins(self, flow):
        """Test a valid selection never falls through to a new search."""
        inquiry = make_inquiry(
            extracted_specialty="anxiety",
            requested_schedule="weekday mornings",
            insurance_info="Aetna",
        )

        action = flow.decide(inquiry, ExtractedData(therapist_selection=2), PENDING)

        assert action.branch == Branch.SELECT_THERAPIST
        assert action.next_action == NextAction.THERAPIST_SELECTED
        assert action.selected.id == "t-2"

    def test_selection_without_pending_is_ignored(self, flow):
        action = flow.decide(make_inquiry(), ExtractedData(therapist_selection=1), [])

        assert action.branch == Branch.COLLECT_INFO

    def test_yes_with_fresh_schedule_books(self, flow):
        inquiry = make_inquiry(matched_therapist_id="t-1", status=InquiryStatus.MATCHED)
        extracted = ExtractedData(schedule="Dec 10 at 10am", booking_intent=BookingIntent.YES)

        action = flow.decide(inquiry, extracted)

        assert action.branch == Branch.BOOK
        assert action.next_action == NextAction.BOOK_APPOINTMENT
        assert action.schedule == "Dec 10 at 10am"

    def test_yes_uses_stored_schedule(self, flow):
        inquiry = make_inquiry(
            matched_therapist_id="t-1",
            requested_schedule="Dec 12 at 3pm",
            status=InquiryStatus.MATCHED,
        )

        action = flow.decide(inquiry, ExtractedData(booking_intent=BookingIntent.YES))

        assert action.branch == Branch.BOOK
        assert action.schedule == "Dec 12 at 3pm"

    def test_yes_without_schedule_asks_for_time(self, flow):
        inquiry = make_inquiry(matched_therapist_id="t-1", status=InquiryStatus.MATCHED)

        action = flow.decide(inquiry, ExtractedData(booking_intent=BookingIntent.YES))

        assert action.branch == Branch.ASK_TIME
        assert action.next_action == NextAction.AWAITING_INFO

    @pytest.mark.parametrize(
        "intent",
        [BookingIntent.NO, BookingIntent.CLARIFICATION, BookingIntent.NOT_SPECIFIED],
    )
    def test_other_intents_keep_match_and_confirm(self, flow, intent):
        """Test a matched patient is never sent back to searching."""
        inquiry = make_inquiry(
            extracted_specialty="anxiety",
            requested_schedule="mornings",
            insurance_info="Aetna",
            matched_therapist_id="t-1",
            status=InquiryStatus.MATCHED,
        )

        action = flow.decide(inquiry, ExtractedData(booking_intent=intent))

        assert action.branch == Branch.CONFIRM_BOOKING
        assert action.next_action == NextAction.AWAITING_INFO

    def test_already_scheduled(self, flow):
        inquiry = make_inquiry(matched_therapist_id="t-1", status=InquiryStatus.SCHEDULED)

        action = flow.decide(inquiry, ExtractedData())

        assert action.branch == Branch.ALREADY_SCHEDULED


class TestTherapistSummary:
    """Test summary parsing from callers."""

    def test_from_search_shape(self):
        summary = TherapistSummary.from_dict({
            "therapist": {"id": "t-1", "name": "Dr. Anita Rao", "acceptedInsurance": ["Aetna"]},
        })

        assert summary.id == "t-1"
        assert summary.accepted_insurance == ["Aetna"]

    def test_from_flat_snake_case(self):
        summary = TherapistSummary.from_dict({"id": "t-2", "name": "B", "accepted_insurance": ["Cigna"]})

        assert summary.accepted_insurance == ["Cigna"]


class TestOrchestratorResponse:
    """Test response serialisation."""

    def test_minimal(self):
        data = OrchestratorResponse(
            success=True, message="hi", next_action=NextAction.AWAITING_INFO, inquiry_id="inq-1"
        ).to_dict()

        assert data == {
            "success": True,
            "message": "hi",
            "nextAction": "awaiting-info",
            "inquiryId": "inq-1",
        }

    def test_cleared_pending_list_is_sent(self):
        data = OrchestratorResponse(
            success=True, message="ok", next_action=NextAction.THERAPIST_SELECTED, pending_matches=[]
        ).to_dict()

        assert data["pendingTherapistMatches"] == []
