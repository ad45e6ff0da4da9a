"""Search history with a fixed cap of active entries per user"""

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import SearchHistoryEntry
from utils.datetime_helpers import get_naive_utc_now, to_iso
from utils.exception_handler import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def normalize_term(term: Optional[str]) -> str:
    return (term or "").strip().lower()


def serialize_entry(entry: SearchHistoryEntry) -> Dict:
    return {
        "id": entry.id,
        "term": entry.term,
        "isActive": entry.is_active,
        "searchedAt": to_iso(entry.searched_at),
    }


class SearchHistoryService:
    """
    record() reactivates an existing term or inserts a new one, then trims the
    user's active entries back to the cap by deactivating the oldest.
    """

    def __init__(self, max_active: Optional[int] = None):
        self.max_active = max_active or Config.SEARCH_HISTORY_MAX_ACTIVE

    async def record(self, session: AsyncSession, user_id: int, term: str) -> Tuple[SearchHistoryEntry, bool]:
        """Returns (entry, created)"""
        normalized = normalize_term(term)
        if not normalized:
            raise ValidationError("Search term is required")
        if len(normalized) > 200:
            raise ValidationError("Search term is too long")

        result = await session.execute(
            select(SearchHistoryEntry).where(
                SearchHistoryEntry.user_id == user_id,
                SearchHistoryEntry.term == normalized,
            )
        )
        existing = result.scalar_one_or_none()
        now = get_naive_utc_now()

        if existing is not None:
            existing.is_active = True
            existing.searched_at = now
            await session.flush()
            created = False
            entry = existing
        else:
            entry = SearchHistoryEntry(user_id=user_id, term=normalized, is_active=True, searched_at=now)
            session.add(entry)
            await session.flush()
            created = True

        # A reactivation can push the count over the cap as well
        await self._trim(session, user_id)
        return entry, created

    async def _trim(self, session: AsyncSession, user_id: int) -> int:
        count_result = await session.execute(
            select(func.count(SearchHistoryEntry.id)).where(
                SearchHistoryEntry.user_id == user_id,
                SearchHistoryEntry.is_active.is_(True),
            )
        )
        total_active = count_result.scalar() or 0
        excess = total_active - self.max_active
        if excess <= 0:
            return 0

        oldest = await session.execute(
            select(SearchHistoryEntry.id)
            .where(SearchHistoryEntry.user_id == user_id, SearchHistoryEntry.is_active.is_(True))
            .order_by(SearchHistoryEntry.searched_at.asc(), SearchHistoryEntry.id.asc())
            .limit(excess)
        )
        ids = list(oldest.scalars().all())
        await session.execute(
            update(SearchHistoryEntry)
            .where(SearchHistoryEntry.id.in_(ids))
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )
        logger.debug(f"Search history for user {user_id} trimmed by {len(ids)} entries")
        return len(ids)

    async def recent(self, session: AsyncSession, user_id: int, limit: int = 5) -> List[SearchHistoryEntry]:
        result = await session.execute(
            select(SearchHistoryEntry)
            .where(SearchHistoryEntry.user_id == user_id, SearchHistoryEntry.is_active.is_(True))
            .order_by(SearchHistoryEntry.searched_at.desc(), SearchHistoryEntry.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def popular(self, session: AsyncSession, limit: int = 5) -> List[Dict]:
        """Most searched active terms across all users"""
        count_col = func.count(SearchHistoryEntry.id).label("count")
        result = await session.execute(
            select(SearchHistoryEntry.term, count_col)
            .where(SearchHistoryEntry.is_active.is_(True))
            .group_by(SearchHistoryEntry.term)
            .order_by(count_col.desc(), SearchHistoryEntry.term.asc())
            .limit(limit)
        )
        return [{"term": row.term, "count": row.count} for row in result.all()]

    async def deactivate(self, session: AsyncSession, user_id: int, entry_id: int):
        result = await session.execute(
            select(SearchHistoryEntry).where(
                SearchHistoryEntry.id == entry_id,
                SearchHistoryEntry.user_id == user_id,
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundError("Search entry not found")
        entry.is_active = False
        await session.flush()

    async def clear(self, session: AsyncSession, user_id: int) -> int:
        result = await session.execute(
            update(SearchHistoryEntry)
            .where(SearchHistoryEntry.user_id == user_id, SearchHistoryEntry.is_active.is_(True))
            .values(is_active=False)
        )
        return result.rowcount or 0

    async def active_count(self, session: AsyncSession, user_id: int) -> int:
        result = await session.execute(
            select(func.count(SearchHistoryEntry.id)).where(
                SearchHistoryEntry.user_id == user_id,
                SearchHistoryEntry.is_active.is_(True),
            )
        )
        return result.scalar() or 0


search_history_service = SearchHistoryService()
