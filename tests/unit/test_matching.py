"""Tests for therapist matching and availability."""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.records.types import InquiryRecord
from app.core.scheduling.availability import AvailabilityChecker
from app.core.scheduling.matcher import TherapistMatcher, to_matches


class TestTherapistMatcher:
    """Test search filters and the fallback."""

    @pytest.fixture
    def matcher(self, store):
        return TherapistMatcher(store=store)

    @pytest.mark.asyncio
    async def test_specialty_and_insurance(self, matcher, therapists):
        results = await matcher.search(specialty="anxiety", insurance="Aetna")

        assert [t.name for t in results] == ["Dr. Anita Rao"]

    @pytest.mark.asyncio
    async def test_case_insensitive_substring(self, matcher, therapists):
        results = await matcher.search(insurance="blue cross blue shield")

        assert [t.name for t in results] == ["Dr. Carla Mendes"]

    @pytest.mark.asyncio
    async def test_free_text_query(self, matcher, therapists):
        results = await matcher.search(query="bereavement")

        assert [t.name for t in results] == ["Dr. Brian Chen"]

    @pytest.mark.asyncio
    async def test_no_match_offers_everyone_active(self, matcher, therapists):
        results = await matcher.search(specialty="astrology", insurance="Medicare")

        assert {t.name for t in results} == {"Dr. Anita Rao", "Dr. Brian Chen", "Dr. Carla Mendes"}

    @pytest.mark.asyncio
    async def test_inactive_never_returned(self, matcher, therapists):
        results = await matcher.search(specialty="anxiety")

        assert therapists["retired"].id not in [t.id for t in results]

    @pytest.mark.asyncio
    async def test_result_cap(self, store, therapists):
        results = await TherapistMatcher(store=store, limit=2).search()

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_empty_directory(self, matcher):
        assert await matcher.search(specialty="anxiety") == []

    @pytest.mark.asyncio
    async def test_to_matches_hides_credentials(self, matcher, therapists):
        results = await matcher.search(query="couples")

        matches = to_matches(results)

        assert matches[0]["therapist"]["name"] == "Dr. Carla Mendes"
        assert "google_refresh_token" not in matches[0]["therapist"]
        assert matches[0]["therapist"]["acceptedInsurance"] == ["Aetna", "Blue Cross"]


class TestAvailabilityChecker:
    """Test hourly slot generation."""

    @pytest.fixture
    def checker(self, store, clock):
        return AvailabilityChecker(store=store, clock=clock)

    @pytest.mark.asyncio
    async def test_full_free_day(self, checker, therapists):
        slots = await checker.available_slots(therapists["anita"].id, date(2025, 12, 2), "Asia/Kolkata")

        assert [s.start.hour for s in slots] == list(range(9, 17))
        assert slots[0].display == "9:00 AM"
        assert slots[0].to_dict()["startTime"] == "2025-12-02T09:00:00+05:30"

    @pytest.mark.asyncio
    async def test_skips_past_slots_today(self, checker, therapists):
        """Test it is 10:00 locally, so the 9:00 slot is gone."""
        slots = await checker.available_slots(therapists["anita"].id, date(2025, 12, 1), "Asia/Kolkata")

        assert slots[0].start.hour == 10

    @pytest.mark.asyncio
    async def test_skips_booked_slots(self, checker, store, therapists):
        inquiry = await store.save_inquiry(InquiryRecord(id=str(uuid.uuid4()), patient_identifier="p"))
        # 11:00 to 12:00 IST
        start = datetime(2025, 12, 2, 5, 30)
        await store.create_appointment(inquiry.id, therapists["anita"].id, start, start + timedelta(hours=1))

        slots = await checker.available_slots(therapists["anita"].id, date(2025, 12, 2), "Asia/Kolkata")

        hours = [s.start.hour for s in slots]
        assert 11 not in hours
        assert 10 in hours and 12 in hours

    @pytest.mark.asyncio
    async def test_other_zone(self, checker, therapists):
        slots = await checker.available_slots(therapists["anita"].id, date(2025, 12, 2), "America/New_York")

        assert slots[0].start.tzinfo.key == "America/New_York"
        assert slots[0].start.hour == 9

    @pytest.mark.asyncio
    async def test_unknown_therapist(self, checker, therapists):
        assert await checker.available_slots(str(uuid.uuid4()), date(2025, 12, 2)) is None
        assert await checker.available_slots(therapists["retired"].id, date(2025, 12, 2)) is None

    @pytest.mark.asyncio
    async def test_past_day_is_empty(self, store, therapists):
        checker = AvailabilityChecker(store=store, clock=lambda: datetime(2025, 12, 5, tzinfo=timezone.utc))

        assert await checker.available_slots(therapists["anita"].id, date(2025, 12, 2)) == []
