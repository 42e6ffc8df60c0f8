"""Cart summary projection.

``project`` is a pure function from cart state to a display-ready
summary. It is shared by the chat reply path and the cart retrieval
endpoint. Totals are currency-free numbers; formatting belongs to the
presentation layer.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from chatcart.domain.entities import Cart


def display_number(value: Decimal) -> int | float:
    """Render a Decimal as a JSON-friendly number.

    Integral values become ``int`` so that 640000 stays 640000.
    """
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass(frozen=True)
class SummaryLine:
    """Display projection of one cart line."""

    item_id: str
    item_type: str
    name: str
    quantity: int | None
    price: Decimal
    total_price: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.item_id,
            "type": self.item_type,
            "name": self.name,
            "quantity": self.quantity,
            "price": display_number(self.price),
            "total_price": display_number(self.total_price),
        }


@dataclass(frozen=True)
class CartSummary:
    """Derived, non-persisted view of a cart.

    Attributes:
        items: Line projections in cart order.
        total_items: Sum of quantities, counting a quantity-less line as 1.
        total_price: Sum of line totals.
        cart_id: Cart the summary was taken from, if any.
        status: Cart status, if any.
    """

    items: tuple[SummaryLine, ...] = field(default_factory=tuple)
    total_items: int = 0
    total_price: Decimal = Decimal("0")
    cart_id: str | None = None
    status: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self) -> dict[str, Any]:
        return {
            "cart_id": self.cart_id,
            "status": self.status,
            "items": [line.to_dict() for line in self.items],
            "total_items": self.total_items,
            "total_price": display_number(self.total_price),
        }


EMPTY_SUMMARY = CartSummary()


def project(cart: Cart | None) -> CartSummary:
    """Project a cart into its summary.

    A missing cart, a cart whose item list is absent and a cart with no
    items all project to an empty summary.

    Args:
        cart: Cart to summarize, or None.

    Returns:
        CartSummary for the cart.
    """
    if cart is None:
        return EMPTY_SUMMARY

    lines = tuple(
        SummaryLine(
            item_id=str(item.id),
            item_type=item.item_type.value,
            name=item.name,
            quantity=item.quantity_value,
            price=item.price,
            total_price=item.total_price,
        )
        for item in cart.items or ()
    )
    return CartSummary(
        items=lines,
        total_items=sum(item.counted_quantity for item in cart.items or ()),
        total_price=sum((line.total_price for line in lines), Decimal("0")),
        cart_id=str(cart.id),
        status=cart.status.value,
    )
