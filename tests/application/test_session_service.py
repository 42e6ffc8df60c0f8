"""Tests for the session service."""

import pytest

from chatcart.application.retry import RetryPolicy
from chatcart.application.session_service import SessionService
from chatcart.domain import Role
from chatcart.domain.exceptions import (
    ConversationNotFoundError,
    InvalidSessionTokenError,
    StoreUnavailableError,
)
from chatcart.domain.value_objects import ConversationId
from chatcart.infrastructure.repositories import InMemoryConversationRepository

FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.001, max_delay=0.005)


class DownConversationRepository(InMemoryConversationRepository):
    """Every append fails as if the store were unreachable."""

    def __init__(self) -> None:
        super().__init__()
        self.append_calls = 0

    async def append(self, conversation_id, entry) -> None:
        self.append_calls += 1
        raise StoreUnavailableError("conversation.append", "connection reset")


class UnacknowledgedCreateConversationRepository(InMemoryConversationRepository):
    """The first create commits, then reports StoreUnavailable."""

    def __init__(self) -> None:
        super().__init__()
        self.create_calls = 0

    async def create(self, conversation):
        self.create_calls += 1
        created = await super().create(conversation)
        if self.create_calls == 1:
            raise StoreUnavailableError("conversation.create", "connection reset after commit")
        return created


@pytest.fixture
def service() -> SessionService:
    """Create session service backed by an in-memory store."""
    return SessionService(
        conversation_repo=InMemoryConversationRepository(),
        retry_policy=FAST_RETRY,
    )


class TestResolveConversation:
    """Tests for resolve_or_create_conversation."""

    @pytest.mark.asyncio
    async def test_empty_token_creates(self, service: SessionService) -> None:
        """No token starts a new conversation."""
        result = await service.resolve_or_create_conversation(None, "owner-1")

        assert result.created is True
        assert result.conversation.owner_id == "owner-1"
        assert ConversationId.is_valid(result.session_token)

    @pytest.mark.asyncio
    async def test_two_empty_tokens_differ(self, service: SessionService) -> None:
        """Each tokenless call gets its own conversation."""
        first = await service.resolve_or_create_conversation("", "owner-1")
        second = await service.resolve_or_create_conversation("", "owner-1")

        assert first.session_token != second.session_token

    @pytest.mark.asyncio
    async def test_known_token_is_idempotent(self, service: SessionService) -> None:
        """Presenting the returned token resolves to the same conversation."""
        first = await service.resolve_or_create_conversation(None, "owner-1")

        again = await service.resolve_or_create_conversation(first.session_token, "owner-1")

        assert again.created is False
        assert again.conversation.id == first.conversation.id

    @pytest.mark.asyncio
    async def test_unknown_wellformed_token_creates_new(self, service: SessionService) -> None:
        """A stale token yields a fresh conversation with a new id."""
        stale = str(ConversationId.generate())

        result = await service.resolve_or_create_conversation(stale, "owner-1")

        assert result.created is True
        assert result.session_token != stale

    @pytest.mark.asyncio
    async def test_malformed_token_rejected(self, service: SessionService) -> None:
        """Tokens that are not identifiers are refused."""
        with pytest.raises(InvalidSessionTokenError):
            await service.resolve_or_create_conversation("not a token", "owner-1")

    @pytest.mark.asyncio
    async def test_create_retried_after_lost_acknowledgement(self) -> None:
        """Re-creating the same conversation after an outage succeeds."""
        repo = UnacknowledgedCreateConversationRepository()
        service = SessionService(conversation_repo=repo, retry_policy=FAST_RETRY)

        result = await service.resolve_or_create_conversation(None, "owner-1")

        assert repo.create_calls == 2
        assert result.created is True
        assert await repo.get(result.session_token) is not None


class TestHistory:
    """Tests for message history."""

    @pytest.mark.asyncio
    async def test_append_and_read_in_order(self, service: SessionService) -> None:
        """History reads back oldest first."""
        token = (await service.resolve_or_create_conversation(None, "owner-1")).session_token

        await service.append_message(token, Role.USER, "add two hoodies")
        await service.append_message(token, "assistant", "Added 2 x Zen Hoodie")

        history = await service.get_recent_history(token)
        assert [entry.content for entry in history] == [
            "add two hoodies",
            "Added 2 x Zen Hoodie",
        ]
        assert history[1].role is Role.ASSISTANT

    @pytest.mark.asyncio
    async def test_window_keeps_latest(self, service: SessionService) -> None:
        """Only the trailing window is returned."""
        token = (await service.resolve_or_create_conversation(None, "owner-1")).session_token
        for i in range(5):
            await service.append_message(token, Role.USER, f"message {i}")

        history = await service.get_recent_history(token, limit=2)

        assert [entry.content for entry in history] == ["message 3", "message 4"]

    @pytest.mark.asyncio
    async def test_metadata_kept(self, service: SessionService) -> None:
        """Structured metadata travels with the entry."""
        token = (await service.resolve_or_create_conversation(None, "owner-1")).session_token

        await service.append_message(token, Role.ASSISTANT, "done", {"intents": ["add_item"]})

        (entry,) = await service.get_recent_history(token)
        assert entry.metadata == {"intents": ["add_item"]}

    @pytest.mark.asyncio
    async def test_unknown_conversation_history_is_empty(self, service: SessionService) -> None:
        """Reading an unknown conversation yields nothing."""
        assert await service.get_recent_history(str(ConversationId.generate())) == []

    @pytest.mark.asyncio
    async def test_append_to_unknown_conversation(self, service: SessionService) -> None:
        """Appending requires an existing conversation."""
        with pytest.raises(ConversationNotFoundError):
            await service.append_message(str(ConversationId.generate()), Role.USER, "hi")

    @pytest.mark.asyncio
    async def test_append_outage_surfaces_without_retry(self) -> None:
        """A failed append is reported, not retried into a duplicate message."""
        repo = DownConversationRepository()
        service = SessionService(conversation_repo=repo, retry_policy=FAST_RETRY)
        token = (await service.resolve_or_create_conversation(None, "owner-1")).session_token

        with pytest.raises(StoreUnavailableError):
            await service.append_message(token, Role.USER, "hi")

        assert repo.append_calls == 1


class TestConversationLifecycle:
    """Tests for reading and deleting conversations."""

    @pytest.mark.asyncio
    async def test_get_conversation(self, service: SessionService) -> None:
        """Full history is available through get_conversation."""
        token = (await service.resolve_or_create_conversation(None, "owner-1")).session_token
        await service.append_message(token, Role.USER, "hello")

        conversation = await service.get_conversation(token)

        assert len(conversation.history) == 1
        assert conversation.updated_at >= conversation.created_at

    @pytest.mark.asyncio
    async def test_delete_conversation(self, service: SessionService) -> None:
        """Deleted conversations are gone; deleting again fails."""
        token = (await service.resolve_or_create_conversation(None, "owner-1")).session_token

        await service.delete_conversation(token)

        with pytest.raises(ConversationNotFoundError):
            await service.get_conversation(token)
        with pytest.raises(ConversationNotFoundError):
            await service.delete_conversation(token)
