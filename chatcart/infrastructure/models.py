"""SQLAlchemy models for database tables.

Provides ORM models for carts, conversations and conversation messages.
A cart is one row holding its lines as a JSON document plus a version
column for optimistic locking. Conversation history is stored as
append-only message rows.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB

from chatcart.infrastructure.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Cart Models
# ============================================================================


class CartModel(Base):
    """Cart model for database persistence.

    ``items`` holds the ordered cart lines. Writes are conditioned on
    ``version`` so that concurrent read-modify-write cycles cannot
    overwrite each other.
    """

    __tablename__ = "carts"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="active", index=True)
    items = Column(JSONDocument, nullable=False, default=list)
    write_log = Column(JSONDocument, nullable=False, default=list)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        # At most one active cart per owner.
        Index(
            "uq_carts_owner_active",
            "owner_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the cart document shape."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "status": self.status,
            "items": list(self.items or []),
            "write_log": list(self.write_log or []),
            "version": self.version,
            "created_at": _as_utc(self.created_at).isoformat(),
            "updated_at": _as_utc(self.updated_at).isoformat(),
        }


# ============================================================================
# Conversation Models
# ============================================================================


class ConversationModel(Base):
    """Conversation header row; messages live in conversation_messages."""

    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ConversationMessageModel(Base):
    """One appended history entry.

    Rows are never updated; ``seq`` orders them within the conversation.
    """

    __tablename__ = "conversation_messages"

    seq = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    conversation_id = Column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    metadata_ = Column("metadata", JSONDocument, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the history entry shape."""
        data: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": _as_utc(self.created_at).isoformat(),
        }
        if self.metadata_:
            data["metadata"] = self.metadata_
        return data


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
