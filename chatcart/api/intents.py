"""Intent API endpoint.

Executes one structured intent from the agent runtime against the
owner's active cart and returns the response envelope.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from chatcart.api.schemas import ErrorResponse, IntentEnvelopeResponse, IntentRequest
from chatcart.application.cart_service import CartService, get_cart_service
from chatcart.application.dispatcher import (
    DispatchContext,
    Intent,
    IntentDispatcher,
)
from chatcart.application.session_service import SessionService, get_session_service

router = APIRouter(prefix="/intents", tags=["Intents"])


# ============================================================================
# Dependencies
# ============================================================================


def get_services(
    request: Request,
) -> tuple[CartService, SessionService, IntentDispatcher]:
    """Get cart service, session service and dispatcher with request ID."""
    request_id = getattr(request.state, "request_id", None)
    cart_service = get_cart_service(request_id=request_id)
    session_service = get_session_service(request_id=request_id)
    dispatcher = IntentDispatcher(
        cart_service=cart_service,
        session_service=session_service,
        request_id=request_id,
    )
    return cart_service, session_service, dispatcher


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=IntentEnvelopeResponse,
    responses={
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Dispatch intent",
    description="Validate and execute one intent against the owner's active cart.",
)
async def dispatch_intent(
    body: IntentRequest,
    services: Annotated[
        tuple[CartService, SessionService, IntentDispatcher], Depends(get_services)
    ],
) -> IntentEnvelopeResponse:
    """Dispatch one intent.

    The envelope is returned with status 200 whether or not the intent
    succeeded; ``ok`` and ``error_kind`` carry the outcome. Only failures
    that happen before dispatch, such as a malformed session token,
    produce an error status.

    Args:
        body: Intent request.
        services: Cart service, session service and dispatcher.

    Returns:
        Intent response envelope.
    """
    cart_service, session_service, dispatcher = services

    conversation_id = None
    if body.session_token:
        resolved = await session_service.resolve_or_create_conversation(
            body.session_token, body.owner_id
        )
        conversation_id = resolved.session_token

    cart = await cart_service.get_or_create_active_cart(body.owner_id)
    context = DispatchContext(
        owner_id=body.owner_id,
        cart_id=str(cart.id),
        conversation_id=conversation_id,
    )

    response = await dispatcher.dispatch(
        Intent(intent_name=body.intent_name, args=body.args), context
    )

    return IntentEnvelopeResponse(
        ok=response.ok,
        data=response.data,
        error_kind=response.error_kind,
        error_message=response.error_message,
        details=response.details,
        session_token=conversation_id,
        cart_id=context.cart_id,
    )
