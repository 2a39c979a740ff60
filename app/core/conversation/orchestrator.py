"""
Conversation Orchestrator.

Processes one patient message against explicit session state:
(message, state) -> (reply, next action, inquiry).

Flow:
1. Crisis check (before any LLM call or write)
2. Record a caller-supplied therapist match
3. Extract fields and merge them onto the inquiry (fill-only)
4. Decide the branch (selection, booking, information gathering)
5. Build the reply for that branch
6. Save the inquiry in one write
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from app.config import settings
from app.core.intelligence.extraction.extractor import SlotExtractor
from app.core.intelligence.response import ResponseGenerator
from app.core.records.store import SQLRecordStore, get_record_store
from app.core.records.types import InquiryRecord
from app.core.scheduling.clock import Clock, resolve_zone, utc_now
from app.core.scheduling.schedule_parser import parse_schedule_phrase
from app.infra.redis import KeyedLock, LockTimeoutError, session_locks
from app.safety.crisis_detector import CrisisDetectionResult
from .crisis import CrisisHandler
from .flow import Branch, ConversationFlow, FlowAction
from .state import ConversationState, NextAction, OrchestratorResponse

logger = logging.getLogger(__name__)


class BaseOrchestrator(ABC):
    """
    Shared plumbing for both orchestration strategies.

    Provides:
    - Crisis short-circuit
    - Per-patient serialisation
    - Top-level error handling
    - Inquiry loading and caller-supplied matches
    """

    def __init__(
        self,
        store: Optional[SQLRecordStore] = None,
        flow: Optional[ConversationFlow] = None,
        response_generator: Optional[ResponseGenerator] = None,
        crisis_handler: Optional[CrisisHandler] = None,
        clock: Optional[Clock] = None,
        locks: Optional[KeyedLock] = None,
    ):
        self._store = store or get_record_store()
        self._flow = flow or ConversationFlow()
        self._responses = response_generator or ResponseGenerator()
        self._crisis = crisis_handler or CrisisHandler()
        self._clock = clock or utc_now
        self._locks = locks or session_locks

    async def handle_message(self, message: str, state: ConversationState) -> OrchestratorResponse:
        """
        Handle a patient message.

        Failures become success=False with nextAction=error and leave the
        stored inquiry untouched. LockTimeoutError propagates so the HTTP
        layer can ask the client to retry.
        """
        start_time = time.time()

        try:
            crisis = self._crisis.check(message)
            if crisis.is_crisis:
                return await self._crisis_response(crisis, state)

            async with self._locks.hold(state.patient_id):
                response = await self._process(message.strip(), state)

            logger.info(
                f"patient={state.patient_id} action={response.next_action.value} "
                f"time={(time.time() - start_time) * 1000:.0f}ms"
            )
            return response

        except LockTimeoutError:
            logger.warning(f"Session lock busy for patient={state.patient_id}")
            raise

        except Exception as e:
            logger.exception(f"Message handling failed for patient={state.patient_id}: {e}")
            return OrchestratorResponse(
                success=False,
                message=self._responses.apology(),
                next_action=NextAction.ERROR,
                error=str(e) if settings.debug else "internal_error",
            )

    @abstractmethod
    async def _process(self, message: str, state: ConversationState) -> OrchestratorResponse:
        """Strategy-specific handling, called under the session lock."""

    async def _crisis_response(
        self,
        crisis: CrisisDetectionResult,
        state: ConversationState,
    ) -> OrchestratorResponse:
        current = await self._store.get_current_inquiry(state.patient_id)
        return OrchestratorResponse(
            success=True,
            message=self._crisis.respond(crisis, state.patient_id),
            next_action=NextAction.AWAITING_INFO,
            inquiry_id=current.id if current else None,
        )

    async def _load_inquiry(self, state: ConversationState) -> InquiryRecord:
        """Current inquiry for the patient, or an unsaved new one."""
        inquiry = await self._store.get_current_inquiry(state.patient_id)
        if inquiry is None:
            inquiry = InquiryRecord(id=str(uuid.uuid4()), patient_identifier=state.patient_id)
        return inquiry

    async def _apply_caller_match(self, inquiry: InquiryRecord, state: ConversationState) -> InquiryRecord:
        """Record a therapist match the caller already knows about."""
        therapist_id = state.matched_therapist_id
        if not therapist_id or therapist_id == inquiry.matched_therapist_id:
            return inquiry

        therapist = await self._store.get_therapist(therapist_id)
        if therapist is None:
            logger.warning(f"Ignoring unknown matched therapist {therapist_id}")
            return inquiry
        return inquiry.with_match(therapist.id)

    async def _therapist_name(self, therapist_id: Optional[str]) -> Optional[str]:
        if not therapist_id:
            return None
        therapist = await self._store.get_therapist(therapist_id)
        return therapist.name if therapist else None

    def _now_local(self, zone: ZoneInfo) -> datetime:
        return self._clock().astimezone(zone).replace(tzinfo=None)

    async def _apply_decision(
        self,
        decision: FlowAction,
        inquiry: InquiryRecord,
        response: OrchestratorResponse,
        zone: ZoneInfo,
    ) -> Optional[InquiryRecord]:
        """
        Fill in the deterministic branches.

        Returns:
            The updated inquiry, or None when the branch needs a generated
            reply (information gathering)
        """
        match decision.branch:
            case Branch.SELECT_THERAPIST:
                therapist = await self._store.get_therapist(decision.selected.id)
                if therapist is None:
                    response.next_action = NextAction.AWAITING_INFO
                    response.message = self._responses.therapist_unavailable()
                    return inquiry
                response.message = self._responses.therapist_selected(therapist.name)
                response.therapist_id = therapist.id
                response.pending_matches = []
                return inquiry.with_match(therapist.id)

            case Branch.BOOK:
                name = await self._therapist_name(inquiry.matched_therapist_id)
                parsed = parse_schedule_phrase(
                    decision.schedule,
                    self._now_local(zone),
                    settings.appointment_minutes,
                )
                response.message = self._responses.booking_directive(name, parsed.start)
                response.therapist_id = inquiry.matched_therapist_id
                response.start_time = parsed.start
                response.end_time = parsed.end
                response.time_zone = zone.key
                return inquiry

            case Branch.ASK_TIME:
                name = await self._therapist_name(inquiry.matched_therapist_id)
                response.message = self._responses.ask_for_time(name)
                response.therapist_id = inquiry.matched_therapist_id
                return inquiry

            case Branch.CONFIRM_BOOKING:
                name = await self._therapist_name(inquiry.matched_therapist_id)
                response.message = self._responses.ask_booking_confirmation(name)
                response.therapist_id = inquiry.matched_therapist_id
                return inquiry

            case Branch.ALREADY_SCHEDULED:
                name = await self._therapist_name(inquiry.matched_therapist_id)
                response.message = self._responses.already_scheduled(name)
                response.therapist_id = inquiry.matched_therapist_id
                return inquiry

            case _:
                return None


class PipelineOrchestrator(BaseOrchestrator):
    """
    Fixed extract -> decide -> reply pipeline.

    The LLM is only used for extraction and information-gathering replies;
    both fall back to deterministic rules.
    """

    def __init__(self, extractor: Optional[SlotExtractor] = None, **kwargs):
        super().__init__(**kwargs)
        self._extractor = extractor or SlotExtractor()

    async def _process(self, message: str, state: ConversationState) -> OrchestratorResponse:
        inquiry = await self._load_inquiry(state)
        inquiry = await self._apply_caller_match(inquiry, state)

        extracted = await self._extractor.extract(
            message,
            state.recent_history,
            inquiry,
            state.pending_names,
        )
        inquiry = inquiry.fill(
            problem=extracted.problem,
            schedule=extracted.schedule,
            insurance=extracted.insurance,
            problem_description=message,
        )

        decision = self._flow.decide(inquiry, extracted, state.pending_matches)
        response = OrchestratorResponse(
            success=True,
            message="",
            next_action=decision.next_action,
            extracted=extracted,
        )

        zone = resolve_zone(state.time_zone)
        updated = await self._apply_decision(decision, inquiry, response, zone)
        if updated is None:
            response.message = await self._responses.generate_reply(
                message, state.recent_history, inquiry, extracted
            )
        else:
            inquiry = updated

        saved = await self._store.save_inquiry(inquiry)
        response.inquiry_id = saved.id
        return response
