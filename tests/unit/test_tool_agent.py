"""Tests for the tool-calling orchestrator."""

import json
import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.conversation.state import ConversationState, NextAction, TherapistSummary
from app.core.conversation.tool_agent import TOOLS, ToolCallingOrchestrator, ToolContext
from app.core.intelligence.response import ResponseGenerator
from app.core.records.types import InquiryRecord
from app.core.scheduling.booking import BookingEngine
from app.core.scheduling.clock import resolve_zone
from app.infra.calendar_sync import GoogleCalendarSync
from app.infra.claude import ClaudeClientError
from app.models.database import AppointmentStatus


PATIENT = "patient-7"


def text_response(text: str):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        stop_reason="end_turn",
    )


def tool_response(name: str, tool_input: dict, tool_id: str = "toolu_1"):
    return SimpleNamespace(
        content=[SimpleNamespace(type="tool_use", id=tool_id, name=name, input=tool_input)],
        stop_reason="tool_use",
    )


@pytest.fixture
def claude():
    client = MagicMock()
    client.create_message = AsyncMock()
    return client


@pytest.fixture
def agent(claude, store, clock, locks, offline_completion):
    booking = BookingEngine(
        store=store,
        calendar_sync=MagicMock(spec=GoogleCalendarSync),
        clock=clock,
        locks=locks,
    )
    return ToolCallingOrchestrator(
        claude_client=claude,
        booking_engine=booking,
        max_rounds=2,
        response_generator=ResponseGenerator(completion=offline_completion),
        store=store,
        clock=clock,
        locks=locks,
    )


def make_state(**kwargs) -> ConversationState:
    kwargs.setdefault("time_zone", "Asia/Kolkata")
    return ConversationState(patient_id=PATIENT, **kwargs)


class TestToolLoop:
    """Test the Claude tool loop."""

    @pytest.mark.asyncio
    async def test_search_then_reply(self, agent, claude, therapists):
        claude.create_message.side_effect = [
            tool_response("search_therapists", {}),
            text_response("Dr. Anita Rao looks like a great fit."),
        ]

        response = await agent.handle_message(
            "I feel anxious, weekday mornings work, I have Aetna", make_state()
        )

        assert response.success
        assert response.next_action == NextAction.FIND_THERAPIST
        assert response.message == "Dr. Anita Rao looks like a great fit."
        assert [m.name for m in response.pending_matches] == ["Dr. Anita Rao"]
        assert response.therapist_matches[0]["therapist"]["id"] == therapists["anita"].id

        kwargs = claude.create_message.call_args.kwargs
        assert kwargs["tools"] == TOOLS
        assert "Problem: anxiety" in kwargs["system"]
        assert "Asia/Kolkata" in kwargs["system"]
        tool_result = kwargs["messages"][-1]["content"][0]
        assert tool_result["type"] == "tool_result"
        assert tool_result["tool_use_id"] == "toolu_1"
        assert json.loads(tool_result["content"])["matches"][0]["therapist"]["name"] == "Dr. Anita Rao"

    @pytest.mark.asyncio
    async def test_booking_returns_booked(self, agent, claude, store, therapists):
        claude.create_message.side_effect = [
            tool_response("book_appointment", {"start_time": "2025-12-10T10:00:00"}),
            text_response("You're all set for Wednesday at 10."),
        ]
        state = make_state(matched_therapist_id=therapists["anita"].id)

        response = await agent.handle_message("yes, book Dec 10 at 10am", state)

        assert response.next_action == NextAction.BOOKED
        assert response.message == "You're all set for Wednesday at 10."
        data = response.to_dict()
        assert data["startTime"] == "2025-12-10T10:00:00"
        assert data["endTime"] == "2025-12-10T11:00:00"
        assert data["therapistId"] == therapists["anita"].id
        assert data["pendingTherapistMatches"] == []
        assert data["appointment"]["success"]

        appointments = await store.list_appointments_for_inquiry(response.inquiry_id)
        assert len(appointments) == 1

    @pytest.mark.asyncio
    async def test_round_cap(self, agent, claude):
        claude.create_message.side_effect = [
            tool_response("view_appointments", {}, "toolu_1"),
            tool_response("view_appointments", {}, "toolu_2"),
            text_response("never reached"),
        ]

        response = await agent.handle_message("I feel anxious", make_state())

        assert claude.create_message.call_count == 2
        assert response.success
        assert response.message
        assert response.message != "never reached"

    @pytest.mark.asyncio
    async def test_claude_failure_falls_back(self, agent, claude):
        claude.create_message.side_effect = ClaudeClientError("overloaded")

        response = await agent.handle_message("I feel anxious", make_state())

        assert response.success
        assert response.next_action == NextAction.AWAITING_INFO
        assert response.message

    @pytest.mark.asyncio
    async def test_failure_after_tools_leaves_inquiry_untouched(self, agent, claude, store):
        existing = await store.save_inquiry(
            InquiryRecord(id=str(uuid.uuid4()), patient_identifier=PATIENT).fill(problem="anxiety")
        )
        claude.create_message.side_effect = [
            tool_response("search_therapists", {}),
            text_response("Here are a few options."),
        ]

        with patch.object(agent, "_apply_decision", AsyncMock(side_effect=RuntimeError("boom"))):
            response = await agent.handle_message("weekday mornings, I have Aetna", make_state())

        assert not response.success
        assert response.next_action == NextAction.ERROR
        stored = await store.get_inquiry(existing.id)
        assert stored.requested_schedule is None
        assert stored.insurance_info is None

    @pytest.mark.asyncio
    async def test_failure_before_save_writes_nothing(self, agent, claude, store):
        claude.create_message.return_value = text_response("Tell me more.")

        with patch.object(agent, "_apply_decision", AsyncMock(side_effect=RuntimeError("boom"))):
            response = await agent.handle_message("I feel anxious", make_state())

        assert response.next_action == NextAction.ERROR
        assert await store.list_inquiries() == []

    @pytest.mark.asyncio
    async def test_selection_skips_claude(self, agent, claude, therapists):
        pending = [TherapistSummary.from_record(therapists["brian"])]

        response = await agent.handle_message("the first one", make_state(pending_matches=pending))

        assert response.next_action == NextAction.THERAPIST_SELECTED
        assert response.therapist_id == therapists["brian"].id
        claude.create_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_crisis_skips_claude(self, agent, claude):
        response = await agent.handle_message("I want to end my life", make_state())

        assert "988" in response.message
        claude.create_message.assert_not_called()

    def test_history_starts_with_user(self):
        messages = ToolCallingOrchestrator._build_messages(
            [
                {"role": "assistant", "content": "Hi, how can I help?"},
                {"role": "user", "content": "I feel low"},
                {"role": "assistant", "content": ""},
                {"role": "system", "content": "ignored"},
            ],
            "weekday mornings",
        )

        assert [m["role"] for m in messages] == ["user", "user"]
        assert messages[-1]["content"] == "weekday mornings"


class TestTools:
    """Test tool execution and ownership."""

    @pytest.fixture
    async def context(self, store):
        inquiry = await store.save_inquiry(
            InquiryRecord(id=str(uuid.uuid4()), patient_identifier=PATIENT).fill(
                problem="anxiety", insurance="Aetna"
            )
        )
        return ToolContext(inquiry=inquiry, zone=resolve_zone("Asia/Kolkata"))

    @pytest.mark.asyncio
    async def test_unknown_tool(self, agent, context):
        result = await agent.execute_tool("delete_everything", {}, context)

        assert result["error"] == "unknown_tool"

    @pytest.mark.asyncio
    async def test_check_availability(self, agent, context, therapists):
        result = await agent.execute_tool(
            "check_availability",
            {"therapist_id": therapists["anita"].id, "date": "2025-12-02"},
            context,
        )

        assert result["date"] == "2025-12-02"
        assert len(result["slots"]) == 8

    @pytest.mark.asyncio
    async def test_check_availability_bad_input(self, agent, context, therapists):
        bad_date = await agent.execute_tool(
            "check_availability", {"therapist_id": therapists["anita"].id, "date": "soon"}, context
        )
        unknown = await agent.execute_tool(
            "check_availability", {"therapist_id": str(uuid.uuid4()), "date": "2025-12-02"}, context
        )

        assert bad_date["error"] == "invalid_time"
        assert unknown["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_failed_booking_is_not_recorded(self, agent, context, therapists):
        result = await agent.execute_tool(
            "book_appointment",
            {"therapist_id": therapists["anita"].id, "start_time": "2025-11-01T10:00:00"},
            context,
        )

        assert result["error"] == "past_time"
        assert context.booking is None

    @pytest.mark.asyncio
    async def test_view_own_appointments(self, agent, context, store, therapists):
        start = datetime(2025, 12, 10, 4, 30)
        await store.create_appointment(context.inquiry.id, therapists["anita"].id, start, start + timedelta(hours=1))

        result = await agent.execute_tool("view_appointments", {}, context)

        assert len(result["appointments"]) == 1
        assert result["appointments"][0]["startTime"] == "2025-12-10T10:00:00+05:30"

    @pytest.mark.asyncio
    async def test_cannot_touch_other_patients_appointments(self, agent, context, store, therapists):
        other = await store.save_inquiry(InquiryRecord(id=str(uuid.uuid4()), patient_identifier="someone-else"))
        start = datetime(2025, 12, 10, 4, 30)
        appointment = await store.create_appointment(
            other.id, therapists["anita"].id, start, start + timedelta(hours=1)
        )

        cancelled = await agent.execute_tool("cancel_appointment", {"appointment_id": appointment.id}, context)
        moved = await agent.execute_tool(
            "reschedule_appointment",
            {"appointment_id": appointment.id, "start_time": "2025-12-11T10:00:00"},
            context,
        )

        assert cancelled["error"] == "not_found"
        assert moved["error"] == "not_found"
        stored = await store.get_appointment(appointment.id)
        assert stored.status == AppointmentStatus.SCHEDULED
        assert stored.start_time == start

    @pytest.mark.asyncio
    async def test_cancel_own_appointment(self, agent, context, store, therapists):
        start = datetime(2025, 12, 10, 4, 30)
        appointment = await store.create_appointment(
            context.inquiry.id, therapists["anita"].id, start, start + timedelta(hours=1)
        )

        result = await agent.execute_tool("cancel_appointment", {"appointment_id": appointment.id}, context)

        assert result["success"]
        assert result["appointment"]["status"] == "cancelled"
