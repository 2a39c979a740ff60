"""
Response Generator for the therapy intake assistant.

Generates warm, conversational replies using the LLM with fallback
templates for reliability, plus fixed texts for selection and booking.
"""

import logging
import random
from datetime import datetime
from typing import Optional

from app.config import settings
from app.core.intelligence.completion import CompletionChain
from app.core.intelligence.extraction.patterns import emotional_category
from app.core.intelligence.extraction.types import ExtractedData
from app.core.records.types import InquiryRecord
from app.core.scheduling.clock import display_datetime

logger = logging.getLogger(__name__)


REPLY_SYSTEM_PROMPT = """You are a warm, empathetic intake coordinator for a therapy practice.
You help people find a therapist and book a first session.

Guidelines:
- Acknowledge how the person feels before anything else
- Keep replies short (2-3 sentences) and never clinical
- Ask for only ONE missing piece of information at a time
- Never diagnose or give medical advice
- Do not invent therapists, times or prices

Generate ONLY the reply text, no JSON or formatting."""

REPLY_PROMPT = """What we know so far:
- problem: {problem}
- preferred schedule: {schedule}
- insurance: {insurance}

Recent conversation:
{history}

Latest message: "{message}"

Next step: {goal}"""

GOALS = {
    "problem": "Gently ask what they would like help with (for example anxiety, depression, stress or relationship issues).",
    "schedule": "Ask which days and times work best for their sessions.",
    "insurance": "Ask whether they have health insurance and which provider, or if they will self-pay.",
    None: "Thank them and tell them you are now looking for the best therapist match.",
}


# ==================================
# Fallback templates
# ==================================

EMPATHY_OPENERS: dict[str, list[str]] = {
    "depression": [
        "I'm really sorry you've been feeling this low. Reaching out takes courage.",
        "That sounds heavy to carry. Thank you for telling me about it.",
        "I hear you. Feeling down like this is hard, and you don't have to face it alone.",
    ],
    "anxiety": [
        "Anxiety can be exhausting, and I'm glad you reached out.",
        "That sounds really stressful to live with. Thank you for sharing it.",
        "It makes sense to want support when worry takes over like that.",
    ],
    "stress": [
        "It sounds like you've had a lot on your plate.",
        "Being overwhelmed like that is draining. I'm glad you're looking for support.",
        "That's a lot to juggle. Let's find someone who can help.",
    ],
    "grief": [
        "I'm so sorry for your loss.",
        "Grief can be incredibly painful. Thank you for trusting me with this.",
        "Losing someone is one of the hardest things we go through. I'm here to help.",
    ],
    "loneliness": [
        "Feeling alone is really hard, and I'm glad you reached out.",
        "Thank you for sharing that. Connection matters, and support can help.",
        "That sounds isolating. You took a good step by reaching out today.",
    ],
    "generic": [
        "Thank you for sharing that with me.",
        "I appreciate you telling me.",
        "Thanks, that helps.",
    ],
}

FIELD_QUESTIONS: dict[str, list[str]] = {
    "problem": [
        "Could you tell me a bit about what you'd like help with? For example, anxiety, depression, stress, relationship issues, or something else?",
        "What's been on your mind lately that you'd like to work on with a therapist?",
    ],
    "schedule": [
        "When would you prefer to have your appointments? Let me know the days and times that work for you.",
        "What days or times usually work best for you for a session?",
    ],
    "insurance": [
        "Do you have health insurance? If so, which provider? This helps me find therapists who accept it.",
        "Which insurance provider do you have, or would you prefer to self-pay?",
    ],
}

SEARCH_ANNOUNCEMENTS = [
    "Thank you! I have everything I need. Let me find the best therapist match for you.",
    "Great, that's all I need. I'm looking for therapists who are a good fit for you now.",
]

GREETINGS = [
    "Hi there! I'm here to help you find a therapist. What would you like support with?",
    "Hello! I can help you find a therapist and book a session. What's been on your mind?",
]

BOOKING_FAILURES = {
    "missing_field": "I need a therapist, a time and your intake details before I can book. Could you tell me what time works for you?",
    "invalid_time": "I couldn't understand that time. Could you give me a date and time, like \"Dec 10 at 10am\"?",
    "past_time": "That time has already passed. Could you pick a time in the future?",
    "not_found": "I couldn't find that therapist or appointment. Could you check and try again?",
    "slot_conflict": "That time is already booked with this therapist. Could you pick another time?",
}


class ResponseGenerator:
    """
    LLM-based reply generator with fallback templates.

    generate_reply() never raises and always returns non-empty text.
    """

    def __init__(
        self,
        completion: Optional[CompletionChain] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize generator.

        Args:
            completion: Completion chain (for testing)
            rng: Random source for template variety
        """
        self._completion = completion
        self._rng = rng or random.Random()

    def _get_completion(self) -> CompletionChain:
        if self._completion is None:
            self._completion = CompletionChain()
        return self._completion

    async def generate_reply(
        self,
        user_text: str,
        conversation_history: Optional[list[dict]],
        known_inquiry: Optional[InquiryRecord],
        extracted: ExtractedData,
    ) -> str:
        """Generate an information-gathering reply.

        Args:
            user_text: Patient's message
            conversation_history: Recent turns
            known_inquiry: Inquiry with this message's fields merged in
            extracted: What this message contributed

        Returns:
            Reply text
        """
        missing = known_inquiry.missing_fields if known_inquiry else ["problem", "schedule", "insurance"]
        goal = GOALS[missing[0] if missing else None]

        history_lines = [
            f"- {turn.get('role', 'unknown')}: {str(turn.get('content', ''))[:300]}"
            for turn in (conversation_history or [])[-settings.history_window:]
        ]
        prompt = REPLY_PROMPT.format(
            problem=(known_inquiry and known_inquiry.problem) or "unknown",
            schedule=(known_inquiry and known_inquiry.schedule) or "unknown",
            insurance=(known_inquiry and known_inquiry.insurance) or "unknown",
            history="\n".join(history_lines) or "(none)",
            message=user_text,
            goal=goal,
        )

        try:
            reply = await self._get_completion().complete(
                prompt=prompt,
                system_prompt=REPLY_SYSTEM_PROMPT,
                max_tokens=200,
                temperature=0.7,
            )
        except Exception as e:
            logger.warning(f"LLM reply generation failed: {e}")
            reply = None

        if reply:
            return reply
        return self.fallback_reply(user_text, known_inquiry, extracted)

    def fallback_reply(
        self,
        user_text: str,
        known_inquiry: Optional[InquiryRecord],
        extracted: Optional[ExtractedData] = None,
    ) -> str:
        """Template reply keyed on emotion and the next missing field."""
        missing = known_inquiry.missing_fields if known_inquiry else ["problem", "schedule", "insurance"]

        if extracted is not None and not extracted.has_any() and len(missing) == 3:
            return self._pick(GREETINGS)

        if not missing:
            return self._pick(SEARCH_ANNOUNCEMENTS)

        parts = []
        category = emotional_category(user_text)
        if extracted is not None and extracted.problem:
            parts.append(self._pick(EMPATHY_OPENERS[category]))
        elif extracted is not None and extracted.has_any():
            parts.append(self._pick(EMPATHY_OPENERS["generic"]))

        parts.append(self._pick(FIELD_QUESTIONS[missing[0]]))
        return " ".join(parts)

    def _pick(self, options: list[str]) -> str:
        return self._rng.choice(options)

    # === Branch texts ===

    @staticmethod
    def therapist_selected(name: str) -> str:
        return (
            f"Great choice! {name} would be a good fit. "
            f"Would you like me to book a session with {name}? If so, let me know a day and time that works for you."
        )

    @staticmethod
    def ask_booking_confirmation(name: Optional[str]) -> str:
        who = name or "your matched therapist"
        return f"Would you like me to book a session with {who}? Just say yes with a day and time that works for you."

    @staticmethod
    def ask_for_time(name: Optional[str]) -> str:
        who = name or "your therapist"
        return f"Happy to book that. What day and time would you like to see {who}? For example, \"Dec 10 at 10am\"."

    @staticmethod
    def booking_directive(name: Optional[str], start_local: datetime) -> str:
        who = name or "your therapist"
        return f"Perfect! I'm booking your session with {who} for {display_datetime(start_local)}."

    @staticmethod
    def booking_confirmed(name: Optional[str], start_local: datetime) -> str:
        who = name or "your therapist"
        return f"You're all set! Your session with {who} is booked for {display_datetime(start_local)}."

    @staticmethod
    def booking_failed(error_code: str) -> str:
        return BOOKING_FAILURES.get(
            error_code,
            "I couldn't complete that booking. Could you try a different time?",
        )

    @staticmethod
    def already_scheduled(name: Optional[str]) -> str:
        who = name or "your therapist"
        return (
            f"Your session with {who} is already booked. "
            "If you'd like to change or cancel it, just let me know."
        )

    @staticmethod
    def therapist_unavailable() -> str:
        return "I couldn't find that therapist anymore. Would you like me to search again?"

    @staticmethod
    def appointment_cancelled() -> str:
        return "Your appointment has been cancelled. Is there anything else I can help you with?"

    @staticmethod
    def apology() -> str:
        return "I'm sorry, something went wrong on my side. Could you say that again in a moment?"


# Singleton
_generator: Optional[ResponseGenerator] = None


def get_response_generator() -> ResponseGenerator:
    """Get singleton ResponseGenerator."""
    global _generator
    if _generator is None:
        _generator = ResponseGenerator()
    return _generator
