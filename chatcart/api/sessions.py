"""Session API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from chatcart.api.schemas import ErrorResponse, SessionRequest, SessionResponse
from chatcart.application.session_service import SessionService, get_session_service

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def get_service(request: Request) -> SessionService:
    """Get session service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_session_service(request_id=request_id)


@router.post(
    "",
    response_model=SessionResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Resolve session",
    description=(
        "Return the conversation named by the session token, or start a new "
        "one when the token is absent or unknown."
    ),
)
async def resolve_session(
    body: SessionRequest,
    response: Response,
    service: Annotated[SessionService, Depends(get_service)],
) -> SessionResponse:
    """Resolve or create a conversation.

    Responds 201 when a conversation was created, 200 otherwise.
    """
    result = await service.resolve_or_create_conversation(body.session_token, body.owner_id)
    if result.created:
        response.status_code = status.HTTP_201_CREATED

    return SessionResponse(
        session_token=result.session_token,
        owner_id=result.conversation.owner_id,
        created=result.created,
        created_at=result.conversation.created_at,
    )
