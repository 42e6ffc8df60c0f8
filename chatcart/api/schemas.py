"""API schemas for ChatCart API.

Pydantic models for request/response validation and serialization.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from chatcart.domain.state_machines import CartStatus
from chatcart.domain.value_objects import Role


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | list[Any] = Field(
        default_factory=dict, description="Additional error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


# ============================================================================
# Cart Schemas
# ============================================================================


class SummaryLineSchema(BaseModel):
    """One cart line as displayed."""

    id: str = Field(..., description="Cart item identifier")
    type: str = Field(..., description="product, service or custom")
    name: str = Field(..., description="Display name")
    quantity: int | None = Field(default=None, description="Quantity, absent for most services")
    price: int | float = Field(..., description="Unit price (flat price for services)")
    total_price: int | float = Field(..., description="Line total")


class CartSummarySchema(BaseModel):
    """Display-ready cart summary with currency-free totals."""

    cart_id: str | None = Field(default=None, description="Cart identifier")
    status: str | None = Field(default=None, description="Cart status")
    items: list[SummaryLineSchema] = Field(default_factory=list)
    total_items: int = Field(default=0, description="Sum of quantities")
    total_price: int | float = Field(default=0, description="Sum of line totals")


class OwnerSummaryResponse(BaseModel):
    """Summary of an owner's active cart, null when there is none."""

    owner_id: str
    summary: CartSummarySchema | None = None


class CartResponse(BaseModel):
    """Full cart representation."""

    id: str = Field(..., description="Cart identifier")
    owner_id: str = Field(..., description="Cart owner")
    status: CartStatus = Field(..., description="Cart lifecycle status")
    items: list[SummaryLineSchema] = Field(default_factory=list)
    total_items: int = Field(default=0)
    total_price: int | float = Field(default=0)
    version: int = Field(..., description="Optimistic concurrency version")
    created_at: datetime
    updated_at: datetime


class CartsListResponse(BaseModel):
    """List of an owner's carts, newest first."""

    items: list[CartResponse]
    total: int


class CartStatusUpdateRequest(BaseModel):
    """Request to move a cart to a new status."""

    status: CartStatus = Field(..., description="Target status: checked_out or abandoned")


# ============================================================================
# Intent Schemas
# ============================================================================


class IntentRequest(BaseModel):
    """One structured intent from the agent runtime."""

    owner_id: str = Field(..., min_length=1, max_length=255, description="Cart owner")
    session_token: str | None = Field(
        default=None, description="Session token; omitted to start a new conversation"
    )
    intent_name: str = Field(..., min_length=1, description="Intent to execute")
    args: dict[str, Any] = Field(default_factory=dict, description="Intent arguments")


class IntentEnvelopeResponse(BaseModel):
    """Uniform intent result envelope."""

    ok: bool
    data: dict[str, Any] | None = None
    error_kind: str | None = None
    error_message: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    session_token: str | None = Field(default=None, description="Token to continue the session")
    cart_id: str | None = Field(default=None, description="Cart the intent ran against")


# ============================================================================
# Session and Conversation Schemas
# ============================================================================


class SessionRequest(BaseModel):
    """Resolve a session token or start a new conversation."""

    owner_id: str = Field(..., min_length=1, max_length=255)
    session_token: str | None = Field(default=None)


class SessionResponse(BaseModel):
    """Resolved session."""

    session_token: str = Field(..., description="Conversation id, used as session token")
    owner_id: str
    created: bool = Field(..., description="Whether a new conversation was started")
    created_at: datetime


class HistoryEntrySchema(BaseModel):
    """One conversation message."""

    role: Role
    content: str
    timestamp: datetime
    metadata: dict[str, Any] | None = None


class MessageCreateRequest(BaseModel):
    """Request to append a message to a conversation."""

    role: Role
    content: str = Field(..., min_length=1)
    metadata: dict[str, Any] | None = None


class ConversationResponse(BaseModel):
    """Conversation with a window of its history."""

    id: str
    owner_id: str
    messages: list[HistoryEntrySchema] = Field(default_factory=list)
    message_count: int = Field(..., description="Total messages in the conversation")
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Chat Turn Schemas
# ============================================================================


class IntentCallSchema(BaseModel):
    """An intent proposed during a chat turn."""

    intent_name: str = Field(..., min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)


class ChatTurnRequest(BaseModel):
    """A complete chat turn: user message, proposed intents, assistant reply."""

    owner_id: str = Field(..., min_length=1, max_length=255)
    session_token: str | None = None
    message: str = Field(..., min_length=1)
    intents: list[IntentCallSchema] = Field(default_factory=list, max_length=20)
    reply: str = Field(..., min_length=1, description="Assistant reply composed by the runtime")


class IntentResultSchema(BaseModel):
    """Envelope for one intent executed in a turn."""

    intent_name: str
    ok: bool
    data: dict[str, Any] | None = None
    error_kind: str | None = None
    error_message: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ChatTurnResponse(BaseModel):
    """Outcome of a chat turn."""

    turn_id: str
    session_token: str
    cart_id: str
    conversation_created: bool
    phase: str
    steps: int
    results: list[IntentResultSchema] = Field(default_factory=list)
    history: list[HistoryEntrySchema] = Field(default_factory=list)
    summary: CartSummarySchema
