"""Domain layer module.

Contains the cart and conversation aggregates, value objects,
state machines, the exception taxonomy and the summary projection.
"""

from chatcart.domain.base import AggregateRoot, Entity, ValueObject
from chatcart.domain.entities import (
    Cart,
    CartItem,
    Conversation,
    CustomItem,
    HistoryEntry,
    ProductItem,
    ServiceItem,
)
from chatcart.domain.state_machines import CartStatus, TurnPhase
from chatcart.domain.summary import CartSummary, SummaryLine, project
from chatcart.domain.value_objects import (
    CartId,
    CartItemId,
    ConversationId,
    ItemType,
    MergeMode,
    Role,
)

__all__ = [
    "AggregateRoot",
    "Cart",
    "CartId",
    "CartItem",
    "CartItemId",
    "CartStatus",
    "CartSummary",
    "Conversation",
    "ConversationId",
    "CustomItem",
    "Entity",
    "HistoryEntry",
    "ItemType",
    "MergeMode",
    "ProductItem",
    "Role",
    "ServiceItem",
    "SummaryLine",
    "TurnPhase",
    "ValueObject",
    "project",
]
