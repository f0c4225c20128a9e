"""
Unit tests for SessionRepository.
"""

import uuid
import pytest
from datetime import timedelta

from lopilot.core.session_repository import SessionRepository
from lopilot.models import ChatSession, Message


def _sessions_with_ages(*names):
    """Sessions whose timestamps decrease in argument order (first is newest)."""
    base = ChatSession.new(name="base").timestamp
    sessions = []
    for i, name in enumerate(names):
        session = ChatSession.new(name=name)
        session.timestamp = base - timedelta(minutes=i)
        sessions.append(session)
    return sessions


class TestSessionRepository:
    """Tests for SessionRepository."""

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, repository):
        session = ChatSession.new(name="Chat")
        await repository.upsert(session)
        await repository.upsert(session)

        matches = [s for s in repository.list() if s.id == session.id]
        assert len(matches) == 1
        assert matches[0] == session

    @pytest.mark.asyncio
    async def test_insert_sorts_newest_first(self, repository):
        newest, middle, oldest = _sessions_with_ages("newest", "middle", "oldest")
        for session in (middle, oldest, newest):
            await repository.upsert(session)
        assert [s.name for s in repository.list()] == ["newest", "middle", "oldest"]

    @pytest.mark.asyncio
    async def test_replace_keeps_position(self, repository):
        newest, oldest = _sessions_with_ages("newest", "oldest")
        await repository.upsert(newest)
        await repository.upsert(oldest)

        # A later timestamp on replace does not move the session
        replacement = oldest.model_copy(update={"timestamp": newest.timestamp + timedelta(hours=1)})
        await repository.upsert(replacement)
        assert [s.name for s in repository.list()] == ["newest", "oldest"]
        assert repository.list()[1] is replacement

    @pytest.mark.asyncio
    async def test_delete_unknown_is_noop(self, repository):
        await repository.upsert(ChatSession.new(name="Chat"))
        await repository.delete(uuid.uuid4())
        assert len(repository.list()) == 1

    @pytest.mark.asyncio
    async def test_delete_persists(self, repository, session_store):
        first, second = _sessions_with_ages("first", "second")
        await repository.upsert(first)
        await repository.upsert(second)
        await repository.delete(first.id)

        assert [s.id for s in repository.list()] == [second.id]
        assert [s.id for s in await session_store.load()] == [second.id]
        assert repository.get(first.id) is None
        assert repository.get(second.id) is second

    @pytest.mark.asyncio
    async def test_clear_all(self, repository, session_store):
        await repository.upsert(ChatSession.new(name="Chat"))
        await repository.clear_all()
        assert repository.list() == ()
        assert await session_store.load() == []

    @pytest.mark.asyncio
    async def test_update_appends_and_persists(self, repository, session_store):
        session = ChatSession.new(name="Chat")
        await repository.upsert(session)

        updated = await repository.update(session.id, lambda s: s.messages.append(Message.user("hi")))
        assert updated is not None
        assert [m.text for m in updated.messages][-1] == "hi"

        stored = await session_store.load()
        assert len(stored[0].messages) == 2

    @pytest.mark.asyncio
    async def test_update_unknown_returns_none(self, repository):
        assert await repository.update(uuid.uuid4(), lambda s: None) is None

    @pytest.mark.asyncio
    async def test_load_restores_previous_run(self, repository, session_store):
        session = ChatSession.new(name="Persisted")
        await repository.upsert(session)

        restored = SessionRepository(session_store)
        await restored.load()
        assert [s.name for s in restored.list()] == ["Persisted"]
        assert restored.get(session.id) is not None

    def test_list_is_read_only_snapshot(self, repository):
        snapshot = repository.list()
        assert isinstance(snapshot, tuple)


class TestChatSession:
    """Tests for the session model itself."""

    def test_new_session_has_only_directive(self):
        session = ChatSession.new(name="Chat")
        assert session.is_empty
        assert session.messages[0].role.value == "system"
        assert session.messages[0].model_label == "NONE"

    def test_not_empty_after_user_message(self):
        session = ChatSession.new(name="Chat")
        session.messages.append(Message.user("hi"))
        assert not session.is_empty
        assert session.user_message_count == 1

    def test_message_id_is_immutable(self):
        message = Message.user("hi")
        with pytest.raises(Exception):
            message.id = uuid.uuid4()
