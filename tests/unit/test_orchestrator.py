"""Tests for the pipeline orchestrator."""

import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.config import settings
from app.core.conversation.orchestrator import PipelineOrchestrator
from app.core.conversation.state import ConversationState, NextAction, TherapistSummary
from app.core.intelligence.extraction.extractor import SlotExtractor
from app.core.intelligence.extraction.types import ExtractedData
from app.core.intelligence.response import ResponseGenerator
from app.core.records.types import InquiryRecord
from app.core.scheduling.booking import BookingEngine
from app.core.scheduling.matcher import TherapistMatcher
from app.infra.calendar_sync import GoogleCalendarSync
from app.infra.redis import KeyedLock, LockTimeoutError
from app.models.database import InquiryStatus


PATIENT = "patient-42"


@pytest.fixture
def orchestrator(store, clock, locks, offline_completion):
    return PipelineOrchestrator(
        extractor=SlotExtractor(completion=offline_completion),
        response_generator=ResponseGenerator(completion=offline_completion),
        store=store,
        clock=clock,
        locks=locks,
    )


def make_state(**kwargs) -> ConversationState:
    kwargs.setdefault("time_zone", "Asia/Kolkata")
    return ConversationState(patient_id=PATIENT, **kwargs)


class TestCrisis:
    """Test the crisis short-circuit."""

    @pytest.mark.asyncio
    async def test_crisis_returns_resources_without_writes(self, orchestrator, store, offline_completion):
        response = await orchestrator.handle_message("I want to kill myself", make_state())

        assert response.success
        assert response.next_action == NextAction.AWAITING_INFO
        assert "988" in response.message
        assert response.inquiry_id is None
        assert await store.list_inquiries() == []
        offline_completion.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_crisis_reports_existing_inquiry(self, orchestrator, store):
        existing = await store.save_inquiry(
            InquiryRecord(id=str(uuid.uuid4()), patient_identifier=PATIENT).fill(problem="anxiety")
        )

        response = await orchestrator.handle_message("I've been cutting myself", make_state())

        assert response.inquiry_id == existing.id
        current = await store.get_current_inquiry(PATIENT)
        assert current.extracted_specialty == "anxiety"
        assert current.requested_schedule is None


class TestPipeline:
    """Test intake progression."""

    @pytest.mark.asyncio
    async def test_first_message_creates_inquiry(self, orchestrator, store):
        response = await orchestrator.handle_message("I've been feeling really anxious", make_state())

        assert response.success
        assert response.next_action == NextAction.AWAITING_INFO
        assert response.extracted.problem == "anxiety"

        saved = await store.get_inquiry(response.inquiry_id)
        assert saved.patient_identifier == PATIENT
        assert saved.extracted_specialty == "anxiety"
        assert saved.problem_description == "I've been feeling really anxious"

    @pytest.mark.asyncio
    async def test_known_fields_are_kept(self, orchestrator, store):
        await orchestrator.handle_message("I've been feeling really anxious", make_state())
        await orchestrator.handle_message("weekday mornings", make_state())

        response = await orchestrator.handle_message("I'm on Aetna", make_state())

        saved = await store.get_inquiry(response.inquiry_id)
        assert saved.extracted_specialty == "anxiety"
        assert saved.requested_schedule == "weekday mornings"
        assert saved.insurance_info == "Aetna"
        assert response.next_action == NextAction.FIND_THERAPIST

    @pytest.mark.asyncio
    async def test_greeting_keeps_single_inquiry(self, orchestrator, store):
        first = await orchestrator.handle_message("hello", make_state())
        second = await orchestrator.handle_message("hi", make_state())

        assert first.inquiry_id == second.inquiry_id
        assert len(await store.list_inquiries()) == 1

    @pytest.mark.asyncio
    async def test_selection_short_circuits(self, orchestrator, store, therapists):
        pending = [
            TherapistSummary.from_record(therapists["anita"]),
            TherapistSummary.from_record(therapists["brian"]),
        ]

        response = await orchestrator.handle_message(
            "the second one", make_state(pending_matches=pending)
        )

        assert response.next_action == NextAction.THERAPIST_SELECTED
        assert response.therapist_id == therapists["brian"].id
        assert "Dr. Brian Chen" in response.message
        assert response.pending_matches == []

        saved = await store.get_inquiry(response.inquiry_id)
        assert saved.matched_therapist_id == therapists["brian"].id
        assert saved.status == InquiryStatus.MATCHED

    @pytest.mark.asyncio
    async def test_unknown_selected_therapist(self, orchestrator):
        pending = [TherapistSummary(id=str(uuid.uuid4()), name="Dr. Gone")]

        response = await orchestrator.handle_message("the first one", make_state(pending_matches=pending))

        assert response.next_action == NextAction.AWAITING_INFO
        assert response.therapist_id is None

    @pytest.mark.asyncio
    async def test_unknown_caller_match_is_ignored(self, orchestrator, store):
        response = await orchestrator.handle_message(
            "I feel stressed", make_state(matched_therapist_id=str(uuid.uuid4()))
        )

        saved = await store.get_inquiry(response.inquiry_id)
        assert saved.matched_therapist_id is None
        assert saved.status == InquiryStatus.PENDING

    @pytest.mark.asyncio
    async def test_matched_without_time_asks_for_one(self, orchestrator, therapists):
        state = make_state(matched_therapist_id=therapists["anita"].id)

        response = await orchestrator.handle_message("yes please", state)

        assert response.next_action == NextAction.AWAITING_INFO
        assert response.therapist_id == therapists["anita"].id
        assert response.start_time is None

    @pytest.mark.asyncio
    async def test_decline_keeps_match(self, orchestrator, store, therapists):
        state = make_state(matched_therapist_id=therapists["anita"].id)

        response = await orchestrator.handle_message("not yet", state)

        assert response.next_action == NextAction.AWAITING_INFO
        saved = await store.get_inquiry(response.inquiry_id)
        assert saved.matched_therapist_id == therapists["anita"].id

    @pytest.mark.asyncio
    async def test_negated_booking_is_not_booked(self, orchestrator, store, therapists):
        await store.save_inquiry(
            InquiryRecord(id=str(uuid.uuid4()), patient_identifier=PATIENT)
            .fill(problem="anxiety", schedule="Dec 10 at 10am", insurance="Aetna")
            .with_match(therapists["anita"].id)
        )

        for message in ("No, don't book it yet", "please do not book anything", "I'm not so sure"):
            response = await orchestrator.handle_message(message, make_state())

            assert response.next_action == NextAction.AWAITING_INFO
            assert response.start_time is None
            assert response.therapist_id == therapists["anita"].id


class TestEndToEnd:
    """Test a full intake through to the booking directive."""

    @pytest.mark.asyncio
    async def test_five_message_conversation(self, orchestrator, store, therapists):
        history: list[dict] = []

        async def send(message: str, **state_kwargs):
            response = await orchestrator.handle_message(
                message, make_state(history=list(history), **state_kwargs)
            )
            history.append({"role": "user", "content": message})
            history.append({"role": "assistant", "content": response.message})
            return response

        first = await send("I've been feeling really anxious")
        assert first.next_action == NextAction.AWAITING_INFO

        second = await send("weekday mornings")
        assert second.next_action == NextAction.AWAITING_INFO
        assert second.inquiry_id == first.inquiry_id

        third = await send("Aetna")
        assert third.next_action == NextAction.FIND_THERAPIST

        # The caller runs the search and shows the options
        found = await TherapistMatcher(store=store).search()
        pending = [TherapistSummary.from_record(t) for t in found]
        assert [p.name for p in pending] == ["Dr. Anita Rao", "Dr. Brian Chen", "Dr. Carla Mendes"]

        fourth = await send("the first one", pending_matches=pending)
        assert fourth.next_action == NextAction.THERAPIST_SELECTED
        assert fourth.therapist_id == therapists["anita"].id

        fifth = await send(
            "yes, book it for Dec 10 at 10am",
            matched_therapist_id=fourth.therapist_id,
        )
        assert fifth.next_action == NextAction.BOOK_APPOINTMENT

        data = fifth.to_dict()
        assert data["therapistId"] == therapists["anita"].id
        assert data["startTime"] == "2025-12-10T10:00:00"
        assert data["endTime"] == "2025-12-10T11:00:00"
        assert data["timeZone"] == "Asia/Kolkata"
        assert "December 10 at 10:00 AM" in fifth.message

        saved = await store.get_inquiry(fifth.inquiry_id)
        assert saved.id == first.inquiry_id
        assert saved.extracted_specialty == "anxiety"
        assert saved.insurance_info == "Aetna"
        assert saved.matched_therapist_id == therapists["anita"].id


class TestFailures:
    """Test that failures leave stored state untouched."""

    @pytest.mark.asyncio
    async def test_save_failure(self, orchestrator, store):
        first = await orchestrator.handle_message("I've been feeling really anxious", make_state())

        with patch.object(store, "save_inquiry", AsyncMock(side_effect=RuntimeError("db down"))):
            response = await orchestrator.handle_message("weekday mornings", make_state())

        assert not response.success
        assert response.next_action == NextAction.ERROR
        assert response.error
        assert response.message

        saved = await store.get_inquiry(first.inquiry_id)
        assert saved.requested_schedule is None

    @pytest.mark.asyncio
    async def test_extractor_crash(self, store, clock, locks, offline_completion):
        extractor = SlotExtractor(completion=offline_completion)
        orchestrator = PipelineOrchestrator(
            extractor=extractor,
            response_generator=ResponseGenerator(completion=offline_completion),
            store=store,
            clock=clock,
            locks=locks,
        )

        with patch.object(extractor, "extract", AsyncMock(side_effect=ValueError("bad"))):
            response = await orchestrator.handle_message("I feel low", make_state())

        assert response.next_action == NextAction.ERROR
        assert await store.list_inquiries() == []


class TestConcurrency:
    """Test interleaving with bookings and other messages."""

    @pytest.mark.asyncio
    async def test_booking_during_message_keeps_scheduled(self, store, clock, locks, offline_completion, therapists):
        inquiry = await store.save_inquiry(
            InquiryRecord(id=str(uuid.uuid4()), patient_identifier=PATIENT)
            .fill(problem="anxiety", schedule="Dec 10 at 10am")
            .with_match(therapists["anita"].id)
        )
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_extract(*args, **kwargs):
            started.set()
            await release.wait()
            return ExtractedData(insurance="Aetna")

        extractor = MagicMock(spec=SlotExtractor)
        extractor.extract = AsyncMock(side_effect=slow_extract)
        orchestrator = PipelineOrchestrator(
            extractor=extractor,
            response_generator=ResponseGenerator(completion=offline_completion),
            store=store,
            clock=clock,
            locks=locks,
        )
        booking = BookingEngine(
            store=store,
            calendar_sync=MagicMock(spec=GoogleCalendarSync),
            clock=clock,
            locks=KeyedLock("booking-test"),
        )

        chat = asyncio.create_task(orchestrator.handle_message("I'm on Aetna", make_state()))
        await started.wait()
        booked = await booking.book(
            therapist_id=therapists["anita"].id,
            start_time="2025-12-10T10:00:00",
            inquiry_id=inquiry.id,
            time_zone="Asia/Kolkata",
        )
        release.set()
        response = await chat

        assert booked.success
        assert response.success
        saved = await store.get_inquiry(inquiry.id)
        assert saved.status == InquiryStatus.SCHEDULED
        assert saved.insurance_info == "Aetna"

    @pytest.mark.asyncio
    async def test_busy_session_lock_propagates(self, orchestrator, locks, monkeypatch):
        monkeypatch.setattr(settings, "lock_wait_seconds", 0.05)

        async with locks.hold(PATIENT):
            with pytest.raises(LockTimeoutError):
                await orchestrator.handle_message("I feel anxious", make_state())
