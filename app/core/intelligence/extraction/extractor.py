"""
LLM-based intake extraction using Claude Haiku.

Extracts: presenting problem, scheduling preference, insurance, booking
intent and therapist selection. Falls back to deterministic rules.
"""

import logging
import time
from typing import Optional

from app.config import settings
from app.core.intelligence.completion import CompletionChain, parse_json_object
from app.core.records.types import InquiryRecord
from .patterns import fallback_extract, is_greeting
from .types import NOT_SPECIFIED, BookingIntent, ExtractedData

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """Extract therapy intake information from the patient's latest message.

## What to Extract

- problem: The mental health concern or reason for seeking therapy (e.g., "anxiety", "depression", "relationship issues")
- schedule: When they are available or prefer appointments (e.g., "weekday mornings", "Dec 10 at 10am")
- insurance: Insurance company or payment method (e.g., "Aetna", "Blue Cross", "self-pay")
- bookingIntent: "yes" if they want to book with the matched therapist, "no" if they decline, "clarification" if they ask a question about it, otherwise "not specified"
{selection_instruction}
## Already Known

{known}

Keep these values unless the patient explicitly changes them.

## Recent Conversation

{history}

## Latest Message

"{message}"

## Response

Respond with ONLY valid JSON (use "not specified" for anything not mentioned):
{{
    "problem": "<value or not specified>",
    "schedule": "<value or not specified>",
    "insurance": "<value or not specified>",
    "bookingIntent": "<yes | no | clarification | not specified>",
    "therapistSelection": <1-based number or null>
}}"""

SELECTION_INSTRUCTION = """- therapistSelection: The patient was shown these therapists:
{options}
  If they pick one by position ("the second one", "2", "#3") or by name, give its number. Otherwise null.
"""


class SlotExtractor:
    """LLM-based intake extraction with a rule-based fallback."""

    def __init__(self, completion: Optional[CompletionChain] = None):
        """Initialize extractor.

        Args:
            completion: Completion chain (for testing)
        """
        self._completion = completion

    def _get_completion(self) -> CompletionChain:
        if self._completion is None:
            self._completion = CompletionChain()
        return self._completion

    async def extract(
        self,
        message: str,
        conversation_history: Optional[list[dict]] = None,
        known_inquiry: Optional[InquiryRecord] = None,
        pending_names: Optional[list[str]] = None,
    ) -> ExtractedData:
        """
        Extract intake fields from a patient message.

        Args:
            message: Patient's message
            conversation_history: Recent turns as {"role", "content"} dicts
            known_inquiry: Inquiry with previously extracted values
            pending_names: Names of therapists currently offered, in order

        Returns:
            ExtractedData (never raises)
        """
        message = message.strip()
        start_time = time.time()

        if not message or is_greeting(message):
            return ExtractedData()

        has_match = bool(known_inquiry and known_inquiry.matched_therapist_id)
        prompt = self._build_prompt(message, conversation_history, known_inquiry, pending_names)

        try:
            result = await self._get_completion().complete(
                prompt=prompt,
                parse=self._parse_response,
                max_tokens=300,
                temperature=0,
            )
        except Exception as e:
            logger.error(f"Extraction failed: {e}")
            result = None

        if result is None:
            result = fallback_extract(message, has_match, pending_names)
        else:
            result = self._validate(result, has_match, pending_names)

        logger.debug(
            f"Extracted ({result.source}) in {(time.time() - start_time) * 1000:.0f}ms: "
            f"{result.to_dict()}"
        )
        return result

    def _build_prompt(
        self,
        message: str,
        history: Optional[list[dict]],
        known: Optional[InquiryRecord],
        pending_names: Optional[list[str]],
    ) -> str:
        """Build extraction prompt."""
        known_lines = [
            f"- problem: {(known and known.problem) or NOT_SPECIFIED}",
            f"- schedule: {(known and known.schedule) or NOT_SPECIFIED}",
            f"- insurance: {(known and known.insurance) or NOT_SPECIFIED}",
        ]
        if known and known.matched_therapist_id:
            known_lines.append("- a therapist has been matched; the patient may be confirming a booking")

        history_lines = []
        for turn in (history or [])[-settings.history_window:]:
            role = turn.get("role", "unknown")
            content = str(turn.get("content", ""))[:300]
            history_lines.append(f"- {role}: {content}")

        selection = ""
        if pending_names:
            options = "\n".join(
                f"  {i}. {name}" for i, name in enumerate(pending_names, start=1)
            )
            selection = SELECTION_INSTRUCTION.format(options=options)

        return EXTRACTION_PROMPT.format(
            selection_instruction=selection,
            known="\n".join(known_lines),
            history="\n".join(history_lines) or "(none)",
            message=message,
        )

    def _parse_response(self, response: str) -> ExtractedData:
        """Parse LLM JSON response. Raises on malformed output."""
        return ExtractedData.from_dict(parse_json_object(response), source="llm")

    def _validate(
        self,
        result: ExtractedData,
        has_match: bool,
        pending_names: Optional[list[str]],
    ) -> ExtractedData:
        """Drop values the current state cannot use."""
        count = len(pending_names or [])
        if result.therapist_selection is not None and not 1 <= result.therapist_selection <= count:
            result.therapist_selection = None
        if not has_match:
            result.booking_intent = BookingIntent.NOT_SPECIFIED
        return result


# Singleton
_extractor: Optional[SlotExtractor] = None


async def get_slot_extractor() -> SlotExtractor:
    """Get singleton SlotExtractor."""
    global _extractor
    if _extractor is None:
        _extractor = SlotExtractor()
    return _extractor


async def extract_intake(
    message: str,
    conversation_history: Optional[list[dict]] = None,
    known_inquiry: Optional[InquiryRecord] = None,
    pending_names: Optional[list[str]] = None,
) -> ExtractedData:
    """Convenience function to extract intake fields."""
    extractor = await get_slot_extractor()
    return await extractor.extract(message, conversation_history, known_inquiry, pending_names)
