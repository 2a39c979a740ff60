"""
Tool-calling Orchestrator.

Lets Claude drive matching and booking through tools while keeping the
deterministic parts of the pipeline: crisis check, rule-based field
capture, therapist selection and the flow decision.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional
from zoneinfo import ZoneInfo

from app.config import settings
from app.core.intelligence.extraction.patterns import fallback_extract
from app.core.records.types import InquiryRecord
from app.core.scheduling.availability import AvailabilityChecker
from app.core.scheduling.booking import BookingEngine, BookingErrorCode, BookingResult
from app.core.scheduling.clock import display_datetime, from_utc_naive, resolve_zone
from app.core.scheduling.matcher import TherapistMatcher, to_matches
from app.infra.claude import ClaudeClient, ClaudeClientError
from .flow import Branch
from .orchestrator import BaseOrchestrator
from .state import ConversationState, NextAction, OrchestratorResponse, TherapistSummary

logger = logging.getLogger(__name__)


AGENT_SYSTEM_PROMPT = """You are a warm, empathetic intake coordinator for a therapy practice.
You help people find a therapist and book their first session.

YOUR PERSONALITY:
- Acknowledge feelings briefly before moving on
- Keep replies to 2-3 sentences, never clinical
- Ask for only ONE missing piece of information at a time
- Never diagnose or give medical advice

WHAT YOU CAN DO:
- Search therapists by specialty, insurance or free text
- Check a therapist's free slots on a given day
- Book, view, cancel and reschedule this patient's appointments

WHAT YOU ALREADY KNOW ABOUT THIS PATIENT:
{known}

CURRENT TIME: {now} ({time_zone})
All times you send to tools are local times in {time_zone}, formatted YYYY-MM-DDTHH:MM:SS.

IMPORTANT RULES:
- Before searching, you need the problem, preferred schedule and insurance.
- NEVER make up therapists or availability. Always use the tools.
- NEVER book without the patient clearly saying yes.
- If a tool returns an error, explain it kindly and suggest a next step."""


TOOLS: list[dict] = [
    {
        "name": "search_therapists",
        "description": (
            "Find therapists who fit the patient. "
            "Use this once the problem, schedule and insurance are known. "
            "Returns up to a few therapists with IDs, specialties and accepted insurance."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "specialty": {
                    "type": "string",
                    "description": "Presenting problem or specialty, e.g. 'anxiety'. Defaults to what the patient said.",
                },
                "insurance": {
                    "type": "string",
                    "description": "Insurance provider, e.g. 'Aetna'. Defaults to what the patient said.",
                },
                "query": {
                    "type": "string",
                    "description": "Optional free text matched against name, bio and specialties.",
                },
            },
        },
    },
    {
        "name": "check_availability",
        "description": (
            "List free one-hour slots for a therapist on a day. "
            "ALWAYS call this before booking if the patient has not named an exact time."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "therapist_id": {"type": "string", "description": "Therapist ID from search_therapists."},
                "date": {"type": "string", "description": "Local date in ISO format YYYY-MM-DD."},
            },
            "required": ["therapist_id", "date"],
        },
    },
    {
        "name": "book_appointment",
        "description": (
            "Book a session for this patient. "
            "Only call this after the patient confirmed the therapist and time."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "therapist_id": {
                    "type": "string",
                    "description": "Therapist ID. Defaults to the patient's matched therapist.",
                },
                "start_time": {"type": "string", "description": "Local start, YYYY-MM-DDTHH:MM:SS."},
                "end_time": {"type": "string", "description": "Optional local end. Defaults to one hour later."},
            },
            "required": ["start_time"],
        },
    },
    {
        "name": "view_appointments",
        "description": "List this patient's appointments.",
        "input_schema": {"type": "object", "properties": {}},
    },
    {
        "name": "cancel_appointment",
        "description": "Cancel one of this patient's appointments.",
        "input_schema": {
            "type": "object",
            "properties": {
                "appointment_id": {"type": "string", "description": "Appointment ID from view_appointments."},
            },
            "required": ["appointment_id"],
        },
    },
    {
        "name": "reschedule_appointment",
        "description": "Move one of this patient's appointments to a new time.",
        "input_schema": {
            "type": "object",
            "properties": {
                "appointment_id": {"type": "string", "description": "Appointment ID from view_appointments."},
                "start_time": {"type": "string", "description": "New local start, YYYY-MM-DDTHH:MM:SS."},
                "end_time": {"type": "string", "description": "Optional new local end."},
            },
            "required": ["appointment_id", "start_time"],
        },
    },
]


@dataclass
class ToolContext:
    """What the tools may touch for one message, and what they did."""

    inquiry: InquiryRecord
    zone: ZoneInfo
    matches: Optional[list[dict]] = None
    booking: Optional[BookingResult] = None


class ToolCallingOrchestrator(BaseOrchestrator):
    """
    Claude tool-use strategy.

    Field capture, selection and the final directive stay deterministic;
    Claude only writes the reply and decides which tools to call.
    """

    def __init__(
        self,
        claude_client: Optional[ClaudeClient] = None,
        matcher: Optional[TherapistMatcher] = None,
        availability: Optional[AvailabilityChecker] = None,
        booking_engine: Optional[BookingEngine] = None,
        max_rounds: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._client = claude_client
        self._matcher = matcher or TherapistMatcher(store=self._store)
        self._availability = availability or AvailabilityChecker(store=self._store, clock=self._clock)
        self._booking = booking_engine or BookingEngine(store=self._store, clock=self._clock)
        self._max_rounds = max_rounds or settings.max_tool_rounds

    def _get_client(self) -> ClaudeClient:
        if self._client is None:
            self._client = ClaudeClient.get_instance()
        return self._client

    async def _process(self, message: str, state: ConversationState) -> OrchestratorResponse:
        inquiry = await self._load_inquiry(state)
        inquiry = await self._apply_caller_match(inquiry, state)

        extracted = fallback_extract(
            message,
            has_matched_therapist=bool(inquiry.matched_therapist_id),
            pending_names=state.pending_names,
        )
        inquiry = inquiry.fill(
            problem=extracted.problem,
            schedule=extracted.schedule,
            insurance=extracted.insurance,
            problem_description=message,
        )

        decision = self._flow.decide(inquiry, extracted, state.pending_matches)
        zone = resolve_zone(state.time_zone)
        response = OrchestratorResponse(
            success=True,
            message="",
            next_action=decision.next_action,
            extracted=extracted,
        )

        # Selection is answered without Claude
        if decision.branch == Branch.SELECT_THERAPIST:
            inquiry = await self._apply_decision(decision, inquiry, response, zone)
            saved = await self._store.save_inquiry(inquiry)
            response.inquiry_id = saved.id
            return response

        # Nothing is written until the end of the message, except by a
        # booking tool, which stores the inquiry just before it books
        context = ToolContext(inquiry=inquiry, zone=zone)

        text = await self._run_agent(message, state, context)

        if context.booking is not None:
            return self._booked_response(context, text, extracted)

        updated = await self._apply_decision(decision, context.inquiry, response, zone)
        if text:
            response.message = text
        elif not response.message:
            response.message = self._responses.fallback_reply(message, context.inquiry, extracted)

        if context.matches is not None:
            response.therapist_matches = context.matches
            response.pending_matches = [TherapistSummary.from_dict(m) for m in context.matches]

        saved = await self._store.save_inquiry(updated or context.inquiry)
        response.inquiry_id = saved.id
        return response

    def _booked_response(self, context: ToolContext, text: Optional[str], extracted) -> OrchestratorResponse:
        result = context.booking
        appointment = result.appointment
        start_local = from_utc_naive(appointment.start_time, context.zone)
        return OrchestratorResponse(
            success=True,
            message=text or result.message,
            next_action=NextAction.BOOKED,
            inquiry_id=context.inquiry.id,
            therapist_id=appointment.therapist_id,
            start_time=start_local,
            end_time=from_utc_naive(appointment.end_time, context.zone),
            time_zone=context.zone.key,
            extracted=extracted,
            pending_matches=[],
            appointment=result.to_dict(),
        )

    # === Claude loop ===

    async def _run_agent(
        self,
        message: str,
        state: ConversationState,
        context: ToolContext,
    ) -> Optional[str]:
        """
        Run Claude with tools for at most max_rounds API calls.

        Returns:
            Claude's final text, or None if Claude failed or said nothing
        """
        messages = self._build_messages(state.recent_history, message)
        system_prompt = await self._system_prompt(context, state)
        client = self._get_client()

        text = None
        for round_number in range(1, self._max_rounds + 1):
            try:
                response = await client.create_message(
                    messages=messages,
                    system=system_prompt,
                    max_tokens=1024,
                    tools=TOOLS,
                )
            except ClaudeClientError as e:
                logger.warning(f"Tool agent call failed: {e}")
                break

            text = self._extract_text(response) or text
            if response.stop_reason != "tool_use":
                break

            tool_uses = [b for b in response.content if getattr(b, "type", None) == "tool_use"]
            if not tool_uses or round_number == self._max_rounds:
                break

            tool_results = []
            for tool_use in tool_uses:
                logger.info(f"Executing tool: {tool_use.name}")
                result = await self.execute_tool(tool_use.name, tool_use.input or {}, context)
                tool_results.append({
                    "type": "tool_result",
                    "tool_use_id": tool_use.id,
                    "content": json.dumps(result, default=str),
                })

            messages.append({"role": "assistant", "content": self._serialize_content_blocks(response.content)})
            messages.append({"role": "user", "content": tool_results})

        return text

    @staticmethod
    def _build_messages(history: list[dict], message: str) -> list[dict]:
        messages = [
            {"role": turn["role"], "content": str(turn.get("content", ""))}
            for turn in history
            if turn.get("role") in ("user", "assistant") and turn.get("content")
        ]
        # The API expects the first turn to come from the user
        while messages and messages[0]["role"] != "user":
            messages.pop(0)
        messages.append({"role": "user", "content": message})
        return messages

    async def _system_prompt(self, context: ToolContext, state: ConversationState) -> str:
        inquiry = context.inquiry
        known = [
            f"Problem: {inquiry.problem or 'unknown'}",
            f"Preferred schedule: {inquiry.schedule or 'unknown'}",
            f"Insurance: {inquiry.insurance or 'unknown'}",
        ]
        if inquiry.matched_therapist_id:
            name = await self._therapist_name(inquiry.matched_therapist_id)
            known.append(f"Matched therapist: {name} (ID {inquiry.matched_therapist_id})")
        if state.pending_matches:
            options = ", ".join(f"{i}. {m.name} (ID {m.id})" for i, m in enumerate(state.pending_matches, 1))
            known.append(f"Therapists offered last turn: {options}")

        return AGENT_SYSTEM_PROMPT.format(
            known="\n".join(known),
            now=display_datetime(self._now_local(context.zone)),
            time_zone=context.zone.key,
        )

    def _serialize_content_blocks(self, content: list) -> list[dict]:
        """Anthropic SDK blocks to plain dicts for the next request."""
        serialized = []
        for block in content:
            if hasattr(block, "type"):
                if block.type == "text":
                    serialized.append({"type": "text", "text": block.text})
                elif block.type == "tool_use":
                    serialized.append({
                        "type": "tool_use",
                        "id": block.id,
                        "name": block.name,
                        "input": block.input,
                    })
            elif isinstance(block, dict):
                serialized.append(block)
        return serialized

    @staticmethod
    def _extract_text(response: Any) -> Optional[str]:
        parts = [
            block.text for block in (response.content or [])
            if getattr(block, "type", None) == "text" and block.text
        ]
        return "\n".join(parts).strip() or None

    # === Tools ===

    async def execute_tool(self, tool_name: str, tool_input: dict, context: ToolContext) -> dict:
        """
        Execute one tool call for the current patient.

        Returns:
            Tool result as a dict (serialised into the tool_result block)
        """
        try:
            match tool_name:
                case "search_therapists":
                    return await self._search(tool_input, context)
                case "check_availability":
                    return await self._check_availability(tool_input, context)
                case "book_appointment":
                    return await self._book(tool_input, context)
                case "view_appointments":
                    return await self._view(context)
                case "cancel_appointment":
                    return await self._cancel(tool_input, context)
                case "reschedule_appointment":
                    return await self._reschedule(tool_input, context)
                case _:
                    return {
                        "error": "unknown_tool",
                        "message": f"Unknown tool: {tool_name}",
                    }
        except Exception as e:
            logger.exception(f"Tool execution failed: {tool_name}")
            return {
                "error": "execution_failed",
                "message": str(e),
            }

    async def _search(self, tool_input: dict, context: ToolContext) -> dict:
        therapists = await self._matcher.search(
            specialty=tool_input.get("specialty") or context.inquiry.problem,
            insurance=tool_input.get("insurance") or context.inquiry.insurance,
            query=tool_input.get("query"),
        )
        context.matches = to_matches(therapists)
        return {"matches": context.matches}

    async def _check_availability(self, tool_input: dict, context: ToolContext) -> dict:
        try:
            day = date.fromisoformat(str(tool_input.get("date", "")))
        except ValueError:
            return {"error": "invalid_time", "message": "date must be YYYY-MM-DD"}

        therapist_id = tool_input.get("therapist_id") or context.inquiry.matched_therapist_id
        slots = await self._availability.available_slots(therapist_id, day, context.zone.key)
        if slots is None:
            return {"error": "not_found", "message": "Therapist not found"}
        return {
            "therapistId": therapist_id,
            "date": day.isoformat(),
            "slots": [slot.to_dict() for slot in slots],
        }

    async def _book(self, tool_input: dict, context: ToolContext) -> dict:
        # The booking writes against the stored row
        context.inquiry = await self._store.save_inquiry(context.inquiry)
        result = await self._booking.book(
            therapist_id=tool_input.get("therapist_id") or context.inquiry.matched_therapist_id,
            start_time=tool_input.get("start_time"),
            end_time=tool_input.get("end_time"),
            inquiry_id=context.inquiry.id,
            problem=context.inquiry.problem,
            time_zone=context.zone.key,
        )
        if result.success:
            context.booking = result
        return result.to_dict()

    async def _view(self, context: ToolContext) -> dict:
        appointments = await self._booking.list_for_inquiry(context.inquiry.id)
        return {"appointments": [a.to_dict(context.zone) for a in appointments]}

    async def _owned(self, appointment_id: Optional[str], context: ToolContext) -> bool:
        """Tools may only touch this patient's appointments."""
        if not appointment_id:
            return False
        appointment = await self._booking.get_appointment(appointment_id)
        return appointment is not None and appointment.inquiry_id == context.inquiry.id

    async def _cancel(self, tool_input: dict, context: ToolContext) -> dict:
        appointment_id = tool_input.get("appointment_id")
        if not await self._owned(appointment_id, context):
            return BookingResult.failure(BookingErrorCode.NOT_FOUND, context.zone.key).to_dict()
        result = await self._booking.cancel(appointment_id, context.zone.key)
        return result.to_dict()

    async def _reschedule(self, tool_input: dict, context: ToolContext) -> dict:
        appointment_id = tool_input.get("appointment_id")
        if not await self._owned(appointment_id, context):
            return BookingResult.failure(BookingErrorCode.NOT_FOUND, context.zone.key).to_dict()
        result = await self._booking.reschedule(
            appointment_id,
            tool_input.get("start_time"),
            tool_input.get("end_time"),
            context.zone.key,
        )
        return result.to_dict()
