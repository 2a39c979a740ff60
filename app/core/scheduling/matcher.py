"""
Therapist Matcher.

Filters active therapists by specialty, insurance and free text. Always
offers something: when the filters match nobody, the unfiltered active
list is returned instead.
"""

import logging
from typing import Optional

from app.config import settings
from app.core.records.store import SQLRecordStore, get_record_store
from app.core.records.types import TherapistRecord

logger = logging.getLogger(__name__)


def _matches_any(term: str, values: list[str]) -> bool:
    term = term.lower().strip()
    for value in values:
        value = (value or "").lower()
        if term in value or (value and value in term):
            return True
    return False


def to_matches(therapists: list[TherapistRecord]) -> list[dict]:
    """Search response shape: [{"therapist": {...}}]."""
    return [{"therapist": t.to_summary()} for t in therapists]


class TherapistMatcher:
    """Substring matching over active therapists."""

    def __init__(self, store: Optional[SQLRecordStore] = None, limit: Optional[int] = None):
        self._store = store or get_record_store()
        self._limit = limit or settings.max_search_results

    async def search(
        self,
        specialty: Optional[str] = None,
        insurance: Optional[str] = None,
        query: Optional[str] = None,
    ) -> list[TherapistRecord]:
        """
        Find therapists.

        Args:
            specialty: Presenting problem or specialty
            insurance: Insurance provider name
            query: Free text matched against name, bio and specialties

        Returns:
            Up to the configured cap, in store order
        """
        therapists = await self._store.list_active_therapists()

        filtered = therapists
        if specialty:
            filtered = [t for t in filtered if _matches_any(specialty, t.specialties)]
        if insurance:
            filtered = [t for t in filtered if _matches_any(insurance, t.accepted_insurance)]
        if query:
            filtered = [
                t for t in filtered
                if _matches_any(query, [t.name, t.bio or "", *t.specialties])
            ]

        if not filtered and therapists:
            logger.info(
                f"No therapists matched specialty={specialty!r} insurance={insurance!r} "
                f"query={query!r}; offering all active therapists"
            )
            filtered = therapists

        return filtered[:self._limit]


# Singleton
_matcher: Optional[TherapistMatcher] = None


def get_therapist_matcher() -> TherapistMatcher:
    """Get singleton TherapistMatcher."""
    global _matcher
    if _matcher is None:
        _matcher = TherapistMatcher()
    return _matcher
