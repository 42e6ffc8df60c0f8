"""Session application service.

Maps client session tokens to conversations and manages their
append-only history. The session token is the conversation id.
"""

from dataclasses import dataclass
from typing import Any

import structlog

from chatcart.application.retry import RetryPolicy, retry_store_operation
from chatcart.domain.entities import Conversation, HistoryEntry
from chatcart.domain.exceptions import ConversationNotFoundError, StoreUnavailableError
from chatcart.domain.value_objects import ConversationId, Role
from chatcart.infrastructure.config import settings
from chatcart.infrastructure.repositories import (
    ConversationRepository,
    get_conversation_repository,
)

logger = structlog.get_logger()


@dataclass
class ResolveConversationResult:
    """Result of resolving a session token."""

    conversation: Conversation
    created: bool

    @property
    def session_token(self) -> str:
        return str(self.conversation.id)


class SessionService:
    """Application service for conversation identity and history."""

    def __init__(
        self,
        conversation_repo: ConversationRepository | None = None,
        retry_policy: RetryPolicy | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize service.

        Args:
            conversation_repo: Conversation repository.
            retry_policy: Retry policy for store outages.
            request_id: Request ID for correlation.
        """
        self.conversation_repo = conversation_repo or get_conversation_repository()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.request_id = request_id

    async def _call(self, name: str, operation: Any) -> Any:
        return await retry_store_operation(
            operation,
            self.retry_policy,
            name,
            retry_on=(StoreUnavailableError,),
            request_id=self.request_id,
        )

    async def resolve_or_create_conversation(
        self, session_token: str | None, owner_id: str
    ) -> ResolveConversationResult:
        """Resolve a session token, creating a conversation when needed.

        An empty token, or a well-formed token naming no conversation,
        creates a new conversation with a fresh id. A token naming an
        existing conversation returns it unchanged.

        Args:
            session_token: Token presented by the client, possibly empty.
            owner_id: Owner for a newly created conversation.

        Returns:
            ResolveConversationResult with the conversation and whether
            it was created.

        Raises:
            InvalidSessionTokenError: If the token is not an identifier.
        """
        if session_token:
            conversation_id = ConversationId.parse_token(session_token)
            existing = await self._call(
                "conversation.get",
                lambda: self.conversation_repo.get(str(conversation_id)),
            )
            if existing is not None:
                return ResolveConversationResult(conversation=existing, created=False)
            logger.info(
                "Unknown session token, starting new conversation",
                session_token=session_token,
                request_id=self.request_id,
            )

        conversation = Conversation.create(owner_id=owner_id)
        await self._call(
            "conversation.create",
            lambda: self.conversation_repo.create(conversation),
        )

        logger.info(
            "Conversation created",
            conversation_id=str(conversation.id),
            owner_id=owner_id,
            request_id=self.request_id,
        )
        return ResolveConversationResult(conversation=conversation, created=True)

    async def append_message(
        self,
        conversation_id: str,
        role: Role | str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> HistoryEntry:
        """Append one history entry.

        The append is attempted once: after a lost acknowledgement a retry
        could record the message twice.

        Raises:
            ConversationNotFoundError: If the conversation does not exist.
            StoreUnavailableError: If the store could not be reached.
        """
        entry = HistoryEntry(role=Role(role), content=content, metadata=metadata)
        await self.conversation_repo.append(conversation_id, entry)

        logger.debug(
            "Message appended",
            conversation_id=conversation_id,
            role=entry.role.value,
            request_id=self.request_id,
        )
        return entry

    async def get_recent_history(
        self, conversation_id: str, limit: int | None = None
    ) -> list[HistoryEntry]:
        """Last ``limit`` entries, oldest of the window first.

        Unknown conversations have an empty history.
        """
        window = settings.history_window if limit is None else limit
        return await self._call(
            "conversation.recent",
            lambda: self.conversation_repo.recent(conversation_id, window),
        )

    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Get a conversation with its full history.

        Raises:
            ConversationNotFoundError: If the conversation does not exist.
        """
        conversation = await self._call(
            "conversation.get",
            lambda: self.conversation_repo.get(conversation_id),
        )
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation and its history.

        Raises:
            ConversationNotFoundError: If the conversation does not exist.
        """
        deleted = await self._call(
            "conversation.delete",
            lambda: self.conversation_repo.delete(conversation_id),
        )
        if not deleted:
            raise ConversationNotFoundError(conversation_id)
        logger.info(
            "Conversation deleted",
            conversation_id=conversation_id,
            request_id=self.request_id,
        )


# ============================================================================
# Service Factory
# ============================================================================


def get_session_service(request_id: str | None = None) -> SessionService:
    """Get session service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        SessionService bound to the configured conversation repository.
    """
    return SessionService(request_id=request_id)
