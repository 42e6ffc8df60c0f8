"""SQLAlchemy repositories for carts and conversations.

Each repository method opens its own short-lived session and commits
before returning, so one method call is one atomic store operation.
Driver and connection failures surface as ``StoreUnavailableError``.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatcart.domain.entities import Cart, Conversation, HistoryEntry
from chatcart.domain.exceptions import (
    ActiveCartExistsError,
    CartNotFoundError,
    ConcurrencyConflictError,
    ConversationNotFoundError,
    StoreUnavailableError,
)
from chatcart.domain.state_machines import CartStatus
from chatcart.domain.value_objects import ConversationId
from chatcart.infrastructure.database import get_session_factory
from chatcart.infrastructure.models import (
    CartModel,
    ConversationMessageModel,
    ConversationModel,
)
from chatcart.infrastructure.repositories import (
    CartRepository,
    ConversationRepository,
)

logger = structlog.get_logger()


@asynccontextmanager
async def _store_operation(
    factory: async_sessionmaker[AsyncSession], operation: str
) -> AsyncIterator[AsyncSession]:
    """Open a session for one store operation and translate driver failures."""
    try:
        async with factory() as session:
            yield session
    except (OperationalError, InterfaceError) as e:
        logger.warning("Store operation failed", operation=operation, error=str(e))
        raise StoreUnavailableError(operation, str(e.orig or e)) from e
    except DBAPIError as e:
        if e.connection_invalidated:
            logger.warning("Store connection lost", operation=operation, error=str(e))
            raise StoreUnavailableError(operation, "connection invalidated") from e
        raise
    except (ConnectionError, TimeoutError) as e:
        logger.warning("Store unreachable", operation=operation, error=str(e))
        raise StoreUnavailableError(operation, str(e)) from e


def _cart_from_row(row: CartModel) -> Cart:
    return Cart.from_dict(row.to_dict())


# ============================================================================
# Cart Repository
# ============================================================================


class SqlCartRepository(CartRepository):
    """Repository for cart rows.

    Example usage:
        repo = SqlCartRepository()
        cart = await repo.get_active_by_owner("628123456789")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        """Initialize repository.

        Args:
            session_factory: Async session factory; defaults to the
                process-wide factory from settings.
        """
        self.session_factory = session_factory or get_session_factory()

    async def get(self, cart_id: str) -> Cart | None:
        async with _store_operation(self.session_factory, "cart.get") as session:
            row = await session.get(CartModel, cart_id)
            return _cart_from_row(row) if row else None

    async def get_active_by_owner(self, owner_id: str) -> Cart | None:
        async with _store_operation(self.session_factory, "cart.get_active") as session:
            result = await session.execute(
                select(CartModel).where(
                    CartModel.owner_id == owner_id,
                    CartModel.status == CartStatus.ACTIVE.value,
                )
            )
            row = result.scalar_one_or_none()
            return _cart_from_row(row) if row else None

    async def list_by_owner(
        self, owner_id: str, status: CartStatus | None = None
    ) -> list[Cart]:
        query = select(CartModel).where(CartModel.owner_id == owner_id)
        if status is not None:
            query = query.where(CartModel.status == status.value)
        query = query.order_by(CartModel.created_at.desc())

        async with _store_operation(self.session_factory, "cart.list") as session:
            result = await session.execute(query)
            return [_cart_from_row(row) for row in result.scalars()]

    async def create(self, cart: Cart) -> Cart:
        document = cart.to_dict()
        async with _store_operation(self.session_factory, "cart.create") as session:
            session.add(
                CartModel(
                    id=document["id"],
                    owner_id=cart.owner_id,
                    status=cart.status.value,
                    items=document["items"],
                    write_log=document["write_log"],
                    version=cart.version,
                    created_at=cart.created_at,
                    updated_at=cart.updated_at,
                )
            )
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ActiveCartExistsError(cart.owner_id) from e
        return cart

    async def save(self, cart: Cart, expected_version: int) -> Cart:
        cart_id = str(cart.id)
        document = cart.to_dict()

        async with _store_operation(self.session_factory, "cart.save") as session:
            result = await session.execute(
                update(CartModel)
                .where(
                    CartModel.id == cart_id,
                    CartModel.version == expected_version,
                )
                .values(
                    status=cart.status.value,
                    items=document["items"],
                    write_log=document["write_log"],
                    version=expected_version + 1,
                    updated_at=cart.updated_at,
                )
            )
            if result.rowcount == 0:
                await session.rollback()
                exists = await session.get(CartModel, cart_id)
                if exists is None:
                    raise CartNotFoundError(cart_id)
                raise ConcurrencyConflictError(cart_id, expected_version)
            await session.commit()

        cart.version = expected_version + 1
        return cart

    async def delete(self, cart_id: str) -> bool:
        async with _store_operation(self.session_factory, "cart.delete") as session:
            result = await session.execute(delete(CartModel).where(CartModel.id == cart_id))
            await session.commit()
            return result.rowcount > 0


# ============================================================================
# Conversation Repository
# ============================================================================


class SqlConversationRepository(ConversationRepository):
    """Repository for conversations and their append-only message rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self.session_factory = session_factory or get_session_factory()

    async def get(self, conversation_id: str) -> Conversation | None:
        async with _store_operation(self.session_factory, "conversation.get") as session:
            header = await session.get(ConversationModel, conversation_id)
            if header is None:
                return None
            result = await session.execute(
                select(ConversationMessageModel)
                .where(ConversationMessageModel.conversation_id == conversation_id)
                .order_by(ConversationMessageModel.seq)
            )
            messages = [HistoryEntry.from_dict(row.to_dict()) for row in result.scalars()]

        conversation = Conversation.create(
            owner_id=header.owner_id,
            conversation_id=ConversationId.from_string(header.id),
        )
        conversation.history = messages
        conversation.created_at = _aware(header.created_at)
        conversation.updated_at = _aware(header.updated_at)
        return conversation

    async def create(self, conversation: Conversation) -> Conversation:
        conversation_id = str(conversation.id)
        async with _store_operation(self.session_factory, "conversation.create") as session:
            session.add(
                ConversationModel(
                    id=conversation_id,
                    owner_id=conversation.owner_id,
                    created_at=conversation.created_at,
                    updated_at=conversation.updated_at,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await session.get(ConversationModel, conversation_id)
                if existing is None or existing.owner_id != conversation.owner_id:
                    raise
                # An earlier attempt committed; its acknowledgement was lost.
                logger.info("Conversation already created", conversation_id=conversation_id)
        return conversation

    async def append(self, conversation_id: str, entry: HistoryEntry) -> None:
        async with _store_operation(self.session_factory, "conversation.append") as session:
            result = await session.execute(
                update(ConversationModel)
                .where(ConversationModel.id == conversation_id)
                .values(updated_at=entry.timestamp)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise ConversationNotFoundError(conversation_id)
            session.add(
                ConversationMessageModel(
                    conversation_id=conversation_id,
                    role=entry.role.value,
                    content=entry.content,
                    metadata_=entry.metadata,
                    created_at=entry.timestamp,
                )
            )
            await session.commit()

    async def recent(self, conversation_id: str, limit: int) -> list[HistoryEntry]:
        if limit <= 0:
            return []
        async with _store_operation(self.session_factory, "conversation.recent") as session:
            result = await session.execute(
                select(ConversationMessageModel)
                .where(ConversationMessageModel.conversation_id == conversation_id)
                .order_by(ConversationMessageModel.seq.desc())
                .limit(limit)
            )
            rows = list(result.scalars())
        return [HistoryEntry.from_dict(row.to_dict()) for row in reversed(rows)]

    async def delete(self, conversation_id: str) -> bool:
        async with _store_operation(self.session_factory, "conversation.delete") as session:
            await session.execute(
                delete(ConversationMessageModel).where(
                    ConversationMessageModel.conversation_id == conversation_id
                )
            )
            result = await session.execute(
                delete(ConversationModel).where(ConversationModel.id == conversation_id)
            )
            await session.commit()
            return result.rowcount > 0


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
