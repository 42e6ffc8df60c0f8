"""Cart API endpoints.

Provides cart retrieval independent of chat, status transitions and
administrative deletion.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status

from chatcart.api.schemas import (
    CartResponse,
    CartsListResponse,
    CartStatusUpdateRequest,
    CartSummarySchema,
    ErrorResponse,
    OwnerSummaryResponse,
    SummaryLineSchema,
)
from chatcart.application.cart_service import CartService, get_cart_service
from chatcart.domain.entities import Cart
from chatcart.domain.state_machines import CartStatus
from chatcart.domain.summary import CartSummary, display_number, project

router = APIRouter(prefix="/carts", tags=["Carts"])


# ============================================================================
# Dependencies
# ============================================================================


def get_service(request: Request) -> CartService:
    """Get cart service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_cart_service(request_id=request_id)


# ============================================================================
# Converters
# ============================================================================


def summary_to_schema(summary: CartSummary) -> CartSummarySchema:
    """Convert CartSummary to response schema."""
    return CartSummarySchema.model_validate(summary.to_dict())


def cart_to_response(cart: Cart) -> CartResponse:
    """Convert Cart entity to response schema."""
    summary = project(cart)
    return CartResponse(
        id=str(cart.id),
        owner_id=cart.owner_id,
        status=cart.status,
        items=[SummaryLineSchema.model_validate(line.to_dict()) for line in summary.items],
        total_items=summary.total_items,
        total_price=display_number(summary.total_price),
        version=cart.version,
        created_at=cart.created_at,
        updated_at=cart.updated_at,
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/{owner_id}/summary",
    response_model=OwnerSummaryResponse,
    responses={503: {"model": ErrorResponse}},
    summary="Get cart summary",
    description="Summary of the owner's active cart; null when there is none.",
)
async def get_summary(
    owner_id: str,
    service: Annotated[CartService, Depends(get_service)],
) -> OwnerSummaryResponse:
    """Get the summary of an owner's active cart."""
    summary = await service.get_summary_for_owner(owner_id)
    return OwnerSummaryResponse(
        owner_id=owner_id,
        summary=summary_to_schema(summary) if summary is not None else None,
    )


@router.get(
    "/{owner_id}",
    response_model=CartsListResponse,
    summary="List carts",
    description="List an owner's carts, newest first.",
)
async def list_carts(
    owner_id: str,
    service: Annotated[CartService, Depends(get_service)],
    status_filter: Annotated[CartStatus | None, Query(alias="status")] = None,
) -> CartsListResponse:
    """List an owner's carts."""
    carts = await service.list_carts(owner_id, status_filter)
    return CartsListResponse(
        items=[cart_to_response(cart) for cart in carts],
        total=len(carts),
    )


@router.post(
    "/{cart_id}/status",
    response_model=CartResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Update cart status",
    description="Check out or abandon an active cart.",
)
async def update_cart_status(
    cart_id: str,
    body: CartStatusUpdateRequest,
    service: Annotated[CartService, Depends(get_service)],
) -> CartResponse:
    """Move a cart to a new status."""
    cart = await service.update_status(cart_id, body.status)
    return cart_to_response(cart)


@router.delete(
    "/{cart_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Delete cart",
)
async def delete_cart(
    cart_id: str,
    service: Annotated[CartService, Depends(get_service)],
) -> Response:
    """Delete a cart (administrative)."""
    await service.delete_cart(cart_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
