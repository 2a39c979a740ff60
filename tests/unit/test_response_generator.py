"""Tests for reply generation."""

import random
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.intelligence.completion import CompletionChain
from app.core.intelligence.extraction.types import ExtractedData
from app.core.intelligence.response import (
    EMPATHY_OPENERS,
    FIELD_QUESTIONS,
    GREETINGS,
    SEARCH_ANNOUNCEMENTS,
    ResponseGenerator,
)
from app.core.records.types import InquiryRecord


def make_inquiry(**fields) -> InquiryRecord:
    return InquiryRecord(id="inq-1", patient_identifier="anon-1").fill(**fields)


class TestFallbackReply:
    """Test template replies."""

    @pytest.fixture
    def generator(self):
        return ResponseGenerator(completion=MagicMock(), rng=random.Random(7))

    def test_greeting_when_nothing_known(self, generator):
        reply = generator.fallback_reply("hi", make_inquiry(), ExtractedData())

        assert reply in GREETINGS

    def test_empathy_then_next_question(self, generator):
        inquiry = make_inquiry(problem="anxiety")
        reply = generator.fallback_reply(
            "I've been so anxious", inquiry, ExtractedData(problem="anxiety")
        )

        assert any(reply.startswith(opener) for opener in EMPATHY_OPENERS["anxiety"])
        assert any(reply.endswith(question) for question in FIELD_QUESTIONS["schedule"])

    def test_asks_for_insurance_last(self, generator):
        inquiry = make_inquiry(problem="anxiety", schedule="weekday mornings")
        reply = generator.fallback_reply(
            "weekday mornings", inquiry, ExtractedData(schedule="weekday mornings")
        )

        assert any(reply.endswith(question) for question in FIELD_QUESTIONS["insurance"])

    def test_announces_search_when_complete(self, generator):
        inquiry = make_inquiry(problem="anxiety", schedule="mornings", insurance="Aetna")
        reply = generator.fallback_reply("Aetna", inquiry, ExtractedData(insurance="Aetna"))

        assert reply in SEARCH_ANNOUNCEMENTS


class TestGenerateReply:
    """Test LLM path with fallback."""

    @pytest.fixture
    def mock_completion(self):
        chain = MagicMock(spec=CompletionChain)
        chain.complete = AsyncMock()
        return chain

    @pytest.mark.asyncio
    async def test_uses_llm_reply(self, mock_completion):
        mock_completion.complete.return_value = "That sounds hard. When are you free?"
        generator = ResponseGenerator(completion=mock_completion)

        reply = await generator.generate_reply(
            "I feel anxious",
            [{"role": "user", "content": "hello"}],
            make_inquiry(problem="anxiety"),
            ExtractedData(problem="anxiety"),
        )

        assert reply == "That sounds hard. When are you free?"
        prompt = mock_completion.complete.call_args.kwargs["prompt"]
        assert "which days and times" in prompt
        assert "- user: hello" in prompt

    @pytest.mark.asyncio
    async def test_falls_back_on_failure(self, mock_completion):
        mock_completion.complete.return_value = None
        generator = ResponseGenerator(completion=mock_completion)

        reply = await generator.generate_reply(
            "I feel anxious", [], make_inquiry(problem="anxiety"), ExtractedData(problem="anxiety")
        )

        assert any(reply.endswith(question) for question in FIELD_QUESTIONS["schedule"])

    @pytest.mark.asyncio
    async def test_falls_back_on_exception(self, mock_completion):
        mock_completion.complete.side_effect = RuntimeError("boom")
        generator = ResponseGenerator(completion=mock_completion)

        reply = await generator.generate_reply("hi", [], make_inquiry(), ExtractedData())

        assert reply in GREETINGS


class TestBranchTexts:
    """Test fixed selection and booking texts."""

    def test_selected_mentions_name(self):
        assert "Dr. Anita Rao" in ResponseGenerator.therapist_selected("Dr. Anita Rao")

    def test_booking_directive_formats_time(self):
        text = ResponseGenerator.booking_directive("Dr. Anita Rao", datetime(2025, 12, 10, 10, 0))

        assert "Wednesday, December 10 at 10:00 AM" in text

    def test_booking_failures(self):
        assert "another time" in ResponseGenerator.booking_failed("slot_conflict")
        assert "already passed" in ResponseGenerator.booking_failed("past_time")
        assert ResponseGenerator.booking_failed("something_else")
