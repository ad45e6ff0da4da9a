"""
Search history tests
Term normalization, reactivation and the cap on active entries
"""

import pytest

from services.search_history_service import SearchHistoryService, normalize_term
from utils.exception_handler import NotFoundError, ValidationError


@pytest.fixture
def history():
    return SearchHistoryService(max_active=50)


class TestRecord:

    def test_normalize_term(self):
        assert normalize_term("  Álgebra Lineal ") == "álgebra lineal"
        assert normalize_term(None) == ""

    async def test_repeated_term_keeps_one_active_row(self, session, make_user, history):
        user = await make_user()
        first, created_first = await history.record(session, user.id, "algebra")
        first_seen = first.searched_at
        second, created_second = await history.record(session, user.id, "Algebra ")

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert second.searched_at >= first_seen
        assert await history.active_count(session, user.id) == 1

    async def test_fifty_first_term_deactivates_oldest(self, session, make_user, history):
        user = await make_user()
        for i in range(50):
            await history.record(session, user.id, f"termino {i}")
        assert await history.active_count(session, user.id) == 50

        await history.record(session, user.id, "termino nuevo")

        assert await history.active_count(session, user.id) == 50
        recent = await history.recent(session, user.id, limit=50)
        terms = {entry.term for entry in recent}
        assert "termino 0" not in terms
        assert "termino 1" in terms
        assert "termino nuevo" in terms

    async def test_reactivating_an_old_term_trims_again(self, session, make_user):
        history = SearchHistoryService(max_active=2)
        user = await make_user()
        await history.record(session, user.id, "a")
        await history.record(session, user.id, "b")
        await history.record(session, user.id, "c")  # deactivates "a"

        entry, created = await history.record(session, user.id, "a")

        assert created is False
        assert entry.is_active is True
        assert await history.active_count(session, user.id) == 2
        assert [e.term for e in await history.recent(session, user.id)] == ["a", "c"]

    async def test_blank_term_rejected(self, session, make_user, history):
        user = await make_user()
        with pytest.raises(ValidationError):
            await history.record(session, user.id, "   ")

    async def test_cap_is_per_user(self, session, make_user):
        history = SearchHistoryService(max_active=1)
        alice = await make_user()
        bob = await make_user()
        await history.record(session, alice.id, "redes")
        await history.record(session, bob.id, "redes")

        assert await history.active_count(session, alice.id) == 1
        assert await history.active_count(session, bob.id) == 1


class TestQueries:

    async def test_popular_counts_active_entries_across_users(self, session, make_user, history):
        users = [await make_user() for _ in range(3)]
        for user in users:
            await history.record(session, user.id, "python")
        await history.record(session, users[0].id, "java")
        await history.record(session, users[1].id, "java")
        await history.record(session, users[2].id, "cobol")

        popular = await history.popular(session, limit=2)
        assert popular == [{"term": "python", "count": 3}, {"term": "java", "count": 2}]

    async def test_deactivate_and_clear(self, session, make_user, history):
        user = await make_user()
        entry, _ = await history.record(session, user.id, "fisica")
        await history.record(session, user.id, "quimica")

        await history.deactivate(session, user.id, entry.id)
        assert await history.active_count(session, user.id) == 1

        assert await history.clear(session, user.id) == 1
        assert await history.active_count(session, user.id) == 0

    async def test_cannot_deactivate_someone_elses_entry(self, session, make_user, history):
        owner = await make_user()
        other = await make_user()
        entry, _ = await history.record(session, owner.id, "calculo")

        with pytest.raises(NotFoundError):
            await history.deactivate(session, other.id, entry.id)
