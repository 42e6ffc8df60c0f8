"""Conversation API endpoints.

Provides history retrieval, message append and administrative deletion.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status

from chatcart.api.schemas import (
    ConversationResponse,
    ErrorResponse,
    HistoryEntrySchema,
    MessageCreateRequest,
)
from chatcart.application.session_service import SessionService, get_session_service
from chatcart.domain.entities import HistoryEntry

router = APIRouter(prefix="/conversations", tags=["Conversations"])


def get_service(request: Request) -> SessionService:
    """Get session service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_session_service(request_id=request_id)


def entry_to_schema(entry: HistoryEntry) -> HistoryEntrySchema:
    """Convert HistoryEntry to response schema."""
    return HistoryEntrySchema(
        role=entry.role,
        content=entry.content,
        timestamp=entry.timestamp,
        metadata=entry.metadata,
    )


@router.get(
    "/{conversation_id}",
    response_model=ConversationResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get conversation",
    description="Conversation with its most recent messages, oldest first.",
)
async def get_conversation(
    conversation_id: str,
    service: Annotated[SessionService, Depends(get_service)],
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
) -> ConversationResponse:
    """Get a conversation and a window of its history."""
    conversation = await service.get_conversation(conversation_id)
    messages = await service.get_recent_history(conversation_id, limit)

    return ConversationResponse(
        id=str(conversation.id),
        owner_id=conversation.owner_id,
        messages=[entry_to_schema(entry) for entry in messages],
        message_count=len(conversation.history),
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


@router.post(
    "/{conversation_id}/messages",
    response_model=HistoryEntrySchema,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}},
    summary="Append message",
)
async def append_message(
    conversation_id: str,
    body: MessageCreateRequest,
    service: Annotated[SessionService, Depends(get_service)],
) -> HistoryEntrySchema:
    """Append one message to a conversation."""
    entry = await service.append_message(
        conversation_id, body.role, body.content, body.metadata
    )
    return entry_to_schema(entry)


@router.delete(
    "/{conversation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Delete conversation",
)
async def delete_conversation(
    conversation_id: str,
    service: Annotated[SessionService, Depends(get_service)],
) -> Response:
    """Delete a conversation (administrative)."""
    await service.delete_conversation(conversation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
