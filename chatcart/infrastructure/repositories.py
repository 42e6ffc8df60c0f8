"""Repositories for carts and conversations.

Defines the async store interface the application layer talks to and
the in-memory backend. The in-memory backend keeps plain documents and
hands out fresh aggregates on every read, so callers never share state
through it; every read and write is a suspension point, like a real
store round trip.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from chatcart.domain.entities import Cart, Conversation, HistoryEntry
from chatcart.domain.exceptions import (
    ActiveCartExistsError,
    CartNotFoundError,
    ConcurrencyConflictError,
    ConversationNotFoundError,
)
from chatcart.domain.state_machines import CartStatus
from chatcart.domain.value_objects import ConversationId
from chatcart.infrastructure.config import settings


# ============================================================================
# Repository Interfaces
# ============================================================================


class CartRepository(ABC):
    """Store interface for cart documents."""

    @abstractmethod
    async def get(self, cart_id: str) -> Cart | None:
        """Get cart by ID."""

    @abstractmethod
    async def get_active_by_owner(self, owner_id: str) -> Cart | None:
        """Get the owner's active cart, if any."""

    @abstractmethod
    async def list_by_owner(
        self, owner_id: str, status: CartStatus | None = None
    ) -> list[Cart]:
        """List the owner's carts, newest first."""

    @abstractmethod
    async def create(self, cart: Cart) -> Cart:
        """Insert a new cart.

        Raises:
            ActiveCartExistsError: If the owner already has an active cart.
        """

    @abstractmethod
    async def save(self, cart: Cart, expected_version: int) -> Cart:
        """Write a cart if its stored version still equals ``expected_version``.

        On success the cart's version becomes ``expected_version + 1``.

        Raises:
            CartNotFoundError: If the cart no longer exists.
            ConcurrencyConflictError: If another writer got there first.
        """

    @abstractmethod
    async def delete(self, cart_id: str) -> bool:
        """Delete a cart. Returns whether it existed."""


class ConversationRepository(ABC):
    """Store interface for conversations."""

    @abstractmethod
    async def get(self, conversation_id: str) -> Conversation | None:
        """Get conversation with its full history."""

    @abstractmethod
    async def create(self, conversation: Conversation) -> Conversation:
        """Insert a new, empty conversation.

        Creating an id that already exists for the same owner succeeds, so
        the call can be retried after a lost acknowledgement.
        """

    @abstractmethod
    async def append(self, conversation_id: str, entry: HistoryEntry) -> None:
        """Atomically append one history entry and bump updated_at.

        Raises:
            ConversationNotFoundError: If the conversation does not exist.
        """

    @abstractmethod
    async def recent(self, conversation_id: str, limit: int) -> list[HistoryEntry]:
        """Last ``limit`` entries, oldest first. Empty for unknown ids."""

    @abstractmethod
    async def delete(self, conversation_id: str) -> bool:
        """Delete a conversation. Returns whether it existed."""


# ============================================================================
# In-Memory Repositories
# ============================================================================


class InMemoryCartRepository(CartRepository):
    """In-memory cart store holding serialized cart documents."""

    def __init__(self, latency: float = 0.0) -> None:
        """Initialize store.

        Args:
            latency: Simulated round-trip delay in seconds.
        """
        self._carts: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self.latency = latency

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    async def get(self, cart_id: str) -> Cart | None:
        await self._round_trip()
        document = self._carts.get(cart_id)
        return Cart.from_dict(document) if document else None

    async def get_active_by_owner(self, owner_id: str) -> Cart | None:
        await self._round_trip()
        for document in self._carts.values():
            if (
                document["owner_id"] == owner_id
                and document["status"] == CartStatus.ACTIVE.value
            ):
                return Cart.from_dict(document)
        return None

    async def list_by_owner(
        self, owner_id: str, status: CartStatus | None = None
    ) -> list[Cart]:
        await self._round_trip()
        carts = [
            Cart.from_dict(document)
            for document in self._carts.values()
            if document["owner_id"] == owner_id
            and (status is None or document["status"] == status.value)
        ]
        carts.sort(key=lambda c: c.created_at, reverse=True)
        return carts

    async def create(self, cart: Cart) -> Cart:
        await self._round_trip()
        async with self._lock:
            if cart.status is CartStatus.ACTIVE:
                for document in self._carts.values():
                    if (
                        document["owner_id"] == cart.owner_id
                        and document["status"] == CartStatus.ACTIVE.value
                    ):
                        raise ActiveCartExistsError(cart.owner_id)
            self._carts[str(cart.id)] = cart.to_dict()
        return cart

    async def save(self, cart: Cart, expected_version: int) -> Cart:
        await self._round_trip()
        cart_id = str(cart.id)
        async with self._lock:
            current = self._carts.get(cart_id)
            if current is None:
                raise CartNotFoundError(cart_id)
            if current["version"] != expected_version:
                raise ConcurrencyConflictError(cart_id, expected_version)
            cart.version = expected_version + 1
            self._carts[cart_id] = cart.to_dict()
        return cart

    async def delete(self, cart_id: str) -> bool:
        await self._round_trip()
        async with self._lock:
            return self._carts.pop(cart_id, None) is not None


class InMemoryConversationRepository(ConversationRepository):
    """In-memory conversation store."""

    def __init__(self, latency: float = 0.0) -> None:
        self._conversations: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self.latency = latency

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    def _load(self, document: dict[str, Any]) -> Conversation:
        conversation = Conversation.create(
            owner_id=document["owner_id"],
            conversation_id=ConversationId.from_string(document["id"]),
        )
        conversation.history = [HistoryEntry.from_dict(e) for e in document["history"]]
        conversation.created_at = datetime.fromisoformat(document["created_at"])
        conversation.updated_at = datetime.fromisoformat(document["updated_at"])
        return conversation

    async def get(self, conversation_id: str) -> Conversation | None:
        await self._round_trip()
        document = self._conversations.get(conversation_id)
        return self._load(document) if document else None

    async def create(self, conversation: Conversation) -> Conversation:
        await self._round_trip()
        async with self._lock:
            if str(conversation.id) in self._conversations:
                return conversation
            self._conversations[str(conversation.id)] = {
                "id": str(conversation.id),
                "owner_id": conversation.owner_id,
                "history": [entry.to_dict() for entry in conversation.history],
                "created_at": conversation.created_at.isoformat(),
                "updated_at": conversation.updated_at.isoformat(),
            }
        return conversation

    async def append(self, conversation_id: str, entry: HistoryEntry) -> None:
        await self._round_trip()
        async with self._lock:
            document = self._conversations.get(conversation_id)
            if document is None:
                raise ConversationNotFoundError(conversation_id)
            document["history"].append(entry.to_dict())
            document["updated_at"] = max(
                entry.timestamp,
                datetime.fromisoformat(document["updated_at"]),
            ).isoformat()

    async def recent(self, conversation_id: str, limit: int) -> list[HistoryEntry]:
        await self._round_trip()
        document = self._conversations.get(conversation_id)
        if document is None or limit <= 0:
            return []
        return [HistoryEntry.from_dict(e) for e in document["history"][-limit:]]

    async def delete(self, conversation_id: str) -> bool:
        await self._round_trip()
        async with self._lock:
            return self._conversations.pop(conversation_id, None) is not None


# ============================================================================
# Repository Factory
# ============================================================================


_cart_repo: CartRepository | None = None
_conversation_repo: ConversationRepository | None = None


def get_cart_repository() -> CartRepository:
    """Get cart repository singleton for the configured backend."""
    global _cart_repo
    if _cart_repo is None:
        if settings.store_backend == "sql":
            from chatcart.infrastructure.sql_repositories import SqlCartRepository

            _cart_repo = SqlCartRepository()
        else:
            _cart_repo = InMemoryCartRepository()
    return _cart_repo


def get_conversation_repository() -> ConversationRepository:
    """Get conversation repository singleton for the configured backend."""
    global _conversation_repo
    if _conversation_repo is None:
        if settings.store_backend == "sql":
            from chatcart.infrastructure.sql_repositories import (
                SqlConversationRepository,
            )

            _conversation_repo = SqlConversationRepository()
        else:
            _conversation_repo = InMemoryConversationRepository()
    return _conversation_repo


def reset_repositories() -> None:
    """Drop repository singletons (for testing)."""
    global _cart_repo, _conversation_repo
    _cart_repo = None
    _conversation_repo = None
