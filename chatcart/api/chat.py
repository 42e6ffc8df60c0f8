"""Chat turn API endpoint.

Runs one complete chat turn: records the user message, executes the
intents the agent runtime proposed in order and records the reply.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from chatcart.api.carts import summary_to_schema
from chatcart.api.conversations import entry_to_schema
from chatcart.api.schemas import (
    ChatTurnRequest,
    ChatTurnResponse,
    ErrorResponse,
    IntentResultSchema,
)
from chatcart.application.dispatcher import Intent
from chatcart.application.turn_service import ChatTurnService, get_chat_turn_service

router = APIRouter(prefix="/chat", tags=["Chat"])


def get_service(request: Request) -> ChatTurnService:
    """Get chat turn service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_chat_turn_service(request_id=request_id)


@router.post(
    "/turns",
    response_model=ChatTurnResponse,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Run chat turn",
)
async def run_turn(
    body: ChatTurnRequest,
    service: Annotated[ChatTurnService, Depends(get_service)],
) -> ChatTurnResponse:
    """Run one chat turn.

    Intents past the step ceiling, and any cart change after the first,
    are answered with ``StepLimitExceeded`` instead of being executed.
    """
    turn = await service.begin_turn(body.owner_id, body.session_token, body.message)

    results = []
    for call in body.intents:
        response = await service.dispatch(
            turn, Intent(intent_name=call.intent_name, args=call.args)
        )
        results.append(
            IntentResultSchema(
                intent_name=call.intent_name,
                ok=response.ok,
                data=response.data,
                error_kind=response.error_kind,
                error_message=response.error_message,
                details=response.details,
            )
        )

    outcome = await service.finish_turn(turn, body.reply)

    return ChatTurnResponse(
        turn_id=turn.id,
        session_token=turn.session_token,
        cart_id=turn.cart_id,
        conversation_created=turn.conversation_created,
        phase=turn.phase.value,
        steps=turn.steps,
        results=results,
        history=[entry_to_schema(entry) for entry in turn.history],
        summary=summary_to_schema(outcome.summary),
    )
