"""Domain entities for ChatCart.

Entities are domain objects with identity that persists across state changes.
This module contains the two aggregates, Cart and Conversation, and the
closed set of cart line variants.
"""

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar

from chatcart.domain.base import AggregateRoot, Entity, ValueObject, utcnow
from chatcart.domain.exceptions import (
    CartNotEditableError,
    ItemNotFoundError,
    NotAProductError,
)
from chatcart.domain.state_machines import CartStatus, validate_cart_transition
from chatcart.domain.value_objects import (
    CartId,
    CartItemId,
    ConversationId,
    ItemType,
    MergeMode,
    Role,
    normalize_name,
    to_price,
    validate_quantity,
)


# ============================================================================
# Cart Item Variants
# ============================================================================


@dataclass(eq=False)
class CartItem(Entity[CartItemId]):
    """A line in a shopping cart.

    CartItem is an entity that belongs to the Cart aggregate. The concrete
    variants (ProductItem, ServiceItem, CustomItem) each enforce their own
    field rules in ``__post_init__``; ``total_price`` is always derived, so
    the line total can never drift from price and quantity.

    Attributes:
        id: Unique identifier within the cart.
        name: Display name, matched case-insensitively.
        price: Unit price for products, flat amount for services.
        added_at: Timestamp when the line was created.
    """

    item_type: ClassVar[ItemType]

    id: CartItemId
    name: str
    price: Decimal
    added_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Item name cannot be empty")
        self.name = self.name.strip()
        self.price = to_price(self.price)

    @classmethod
    def create(
        cls,
        item_type: ItemType | str,
        name: str,
        price: Any,
        quantity: int | None = None,
    ) -> "CartItem":
        """Create a cart line of the variant named by ``item_type``.

        Args:
            item_type: One of product, service or custom.
            name: Display name.
            price: Unit or flat price.
            quantity: Optional quantity; products default to 1.

        Returns:
            New CartItem variant with a fresh id.
        """
        variant = _ITEM_VARIANTS[ItemType(item_type)]
        return variant.build(CartItemId.generate(), name, price, quantity)

    @classmethod
    @abstractmethod
    def build(
        cls,
        item_id: CartItemId,
        name: str,
        price: Any,
        quantity: int | None,
    ) -> "CartItem":
        """Construct this variant from raw field values."""

    @property
    def key(self) -> tuple[str, ItemType]:
        """Deduplication key: case-insensitive name plus type."""
        return normalize_name(self.name), self.item_type

    @property
    def quantity_value(self) -> int | None:
        return None

    @property
    def counted_quantity(self) -> int:
        """Quantity as counted in cart totals (1 when absent)."""
        quantity = self.quantity_value
        return 1 if quantity is None else quantity

    @property
    @abstractmethod
    def total_price(self) -> Decimal:
        """Line total derived from price and quantity."""

    def matches_name(self, name: str) -> bool:
        """Check exact case-insensitive name equality."""
        return normalize_name(self.name) == normalize_name(name)

    @abstractmethod
    def absorb(self, incoming: "CartItem") -> None:
        """Fold another line with the same key into this one."""

    @abstractmethod
    def replace_with(self, incoming: "CartItem") -> None:
        """Overwrite price and quantity from another line with the same key."""

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted document shape."""
        return {
            "id": str(self.id),
            "type": self.item_type.value,
            "name": self.name,
            "quantity": self.quantity_value,
            "price": str(self.price),
            "total_price": str(self.total_price),
            "added_at": self.added_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartItem":
        """Rebuild a cart line from its persisted document shape."""
        variant = _ITEM_VARIANTS[ItemType(data["type"])]
        item = variant.build(
            CartItemId.from_string(data["id"]),
            data["name"],
            data["price"],
            data.get("quantity"),
        )
        if data.get("added_at"):
            item.added_at = datetime.fromisoformat(data["added_at"])
        return item


@dataclass(eq=False)
class ProductItem(CartItem):
    """A product line: unit price times an integer quantity of at least 1.

    A product never rests at quantity zero; dropping to zero removes
    the line from the cart.
    """

    item_type: ClassVar[ItemType] = ItemType.PRODUCT

    quantity: int = 1

    def __post_init__(self) -> None:
        super().__post_init__()
        self.quantity = validate_quantity(self.quantity)

    @classmethod
    def build(cls, item_id, name, price, quantity):
        return cls(
            id=item_id,
            name=name,
            price=price,
            quantity=1 if quantity is None else quantity,
        )

    @property
    def quantity_value(self) -> int:
        return self.quantity

    @property
    def total_price(self) -> Decimal:
        return self.price * self.quantity

    def absorb(self, incoming: CartItem) -> None:
        # Latest caller-supplied unit price wins.
        self.quantity += incoming.counted_quantity
        self.price = incoming.price

    def replace_with(self, incoming: CartItem) -> None:
        self.quantity = incoming.counted_quantity
        self.price = incoming.price

    def change_quantity(self, quantity: int) -> int:
        """Set a new positive quantity.

        Returns:
            Previous quantity.
        """
        old_quantity = self.quantity
        self.quantity = validate_quantity(quantity)
        return old_quantity


@dataclass(eq=False)
class ServiceItem(CartItem):
    """A service line: a flat price, total equals price.

    Quantity is informational only and usually absent.
    """

    item_type: ClassVar[ItemType] = ItemType.SERVICE

    quantity: int | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.quantity is not None:
            self.quantity = validate_quantity(self.quantity, allow_zero=True)

    @classmethod
    def build(cls, item_id, name, price, quantity):
        return cls(id=item_id, name=name, price=price, quantity=quantity)

    @property
    def quantity_value(self) -> int | None:
        return self.quantity

    @property
    def total_price(self) -> Decimal:
        return self.price

    def absorb(self, incoming: CartItem) -> None:
        self.price += incoming.price
        incoming_quantity = incoming.quantity_value
        if incoming_quantity is not None:
            self.quantity = (self.quantity or 0) + incoming_quantity

    def replace_with(self, incoming: CartItem) -> None:
        self.price = incoming.price
        self.quantity = incoming.quantity_value


@dataclass(eq=False)
class CustomItem(CartItem):
    """A free-form line.

    With a quantity it prices like a product; without one it is a flat
    amount like a service.
    """

    item_type: ClassVar[ItemType] = ItemType.CUSTOM

    quantity: int | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.quantity is not None:
            self.quantity = validate_quantity(self.quantity)

    @classmethod
    def build(cls, item_id, name, price, quantity):
        return cls(id=item_id, name=name, price=price, quantity=quantity)

    @property
    def quantity_value(self) -> int | None:
        return self.quantity

    @property
    def total_price(self) -> Decimal:
        if self.quantity is None:
            return self.price
        return self.price * self.quantity

    def absorb(self, incoming: CartItem) -> None:
        incoming_quantity = incoming.quantity_value
        if self.quantity is None and incoming_quantity is None:
            self.price += incoming.price
            return
        self.quantity = self.counted_quantity + incoming.counted_quantity
        self.price = incoming.price

    def replace_with(self, incoming: CartItem) -> None:
        self.price = incoming.price
        self.quantity = incoming.quantity_value


_ITEM_VARIANTS: dict[ItemType, type[CartItem]] = {
    ItemType.PRODUCT: ProductItem,
    ItemType.SERVICE: ServiceItem,
    ItemType.CUSTOM: CustomItem,
}


# ============================================================================
# Cart Aggregate Root
# ============================================================================


@dataclass(kw_only=True, eq=False)
class Cart(AggregateRoot[CartId]):
    """Shopping cart aggregate root.

    Holds an ordered list of lines in which no two lines share the same
    (case-insensitive name, type) pair. Every mutating method checks that
    the cart is still active and advances ``version`` and ``updated_at``.

    Attributes:
        id: Unique cart identifier.
        owner_id: Owner of the cart; at most one active cart per owner.
        status: Current cart status (state machine).
        items: Ordered cart lines.
        write_log: Tokens of the most recent writes, newest last.
    """

    id: CartId
    owner_id: str
    status: CartStatus = CartStatus.ACTIVE
    items: list[CartItem] = field(default_factory=list)
    write_log: list[str] = field(default_factory=list)

    WRITE_LOG_SIZE: ClassVar[int] = 32

    @classmethod
    def create(cls, owner_id: str, cart_id: CartId | None = None) -> "Cart":
        """Create a new active cart.

        Args:
            owner_id: Owner of the cart.
            cart_id: Optional pre-generated cart ID.

        Returns:
            New Cart instance.
        """
        if not owner_id or not owner_id.strip():
            raise ValueError("Owner ID cannot be empty")
        return cls(id=cart_id or CartId.generate(), owner_id=owner_id)

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def is_empty(self) -> bool:
        return len(self.items) == 0

    def get_item(self, item_id: CartItemId | str) -> CartItem | None:
        """Find item by ID.

        Args:
            item_id: Cart item identifier or its string form.

        Returns:
            CartItem if found, None otherwise.
        """
        wanted = str(item_id)
        for item in self.items:
            if str(item.id) == wanted:
                return item
        return None

    def find_same_line(self, item: CartItem) -> CartItem | None:
        """Find the existing line sharing ``item``'s name and type."""
        for existing in self.items:
            if existing.key == item.key:
                return existing
        return None

    def items_named(self, name: str) -> list[CartItem]:
        """All lines whose name equals ``name`` case-insensitively."""
        return [item for item in self.items if item.matches_name(name)]

    def select(self, name: str | None = None, item_id: str | None = None) -> list[CartItem]:
        """Resolve an item selector to candidate lines.

        An id narrows to at most one line; a name alone may match several
        lines of different types.

        Args:
            name: Item name, matched case-insensitively.
            item_id: Item identifier.

        Returns:
            Matching lines in cart order.
        """
        if item_id:
            item = self.get_item(item_id)
            if item is None or (name and not item.matches_name(name)):
                return []
            return [item]
        if name:
            return self.items_named(name)
        return []

    # -------------------------------------------------------------------------
    # Cart Item Operations
    # -------------------------------------------------------------------------

    def _ensure_editable(self) -> None:
        if not self.status.is_editable():
            raise CartNotEditableError(str(self.id), self.status.value)

    def add_item(self, item: CartItem, mode: MergeMode = MergeMode.MERGE) -> tuple[CartItem, bool]:
        """Add a line, merging into an existing line with the same key.

        Args:
            item: Proposed line.
            mode: MERGE folds quantity/price into the existing line,
                REPLACE overwrites them.

        Returns:
            Tuple of (resulting line, whether an existing line was updated).

        Raises:
            CartNotEditableError: If cart is not active.
        """
        self._ensure_editable()

        existing = self.find_same_line(item)
        if existing is not None:
            if mode is MergeMode.REPLACE:
                existing.replace_with(item)
            else:
                existing.absorb(item)
            self._touch()
            return existing, True

        self.items.append(item)
        self._touch()
        return item, False

    def remove_matching(self, name_or_id: str) -> list[CartItem]:
        """Remove every line whose id equals, or name case-insensitively equals, the selector.

        Returns:
            Removed lines (empty when nothing matched).
        """
        self._ensure_editable()

        removed = [
            item
            for item in self.items
            if str(item.id) == name_or_id or item.matches_name(name_or_id)
        ]
        if removed:
            self.items = [item for item in self.items if item not in removed]
            self._touch()
        return removed

    def remove_item(self, item: CartItem) -> None:
        self._ensure_editable()
        self.items.remove(item)
        self._touch()

    def set_quantity(self, item: CartItem, quantity: int) -> CartItem | None:
        """Set an exact product quantity; zero removes the line.

        Returns:
            The updated line, or None if it was removed.

        Raises:
            NotAProductError: If the line is not a product.
            InvalidQuantityError: If quantity is negative or not an integer.
        """
        self._ensure_editable()
        product = self._as_product(item)
        quantity = validate_quantity(quantity, allow_zero=True)

        if quantity == 0:
            self.remove_item(product)
            return None

        product.change_quantity(quantity)
        self._touch()
        return product

    def decrease_quantity(self, item: CartItem, amount: int) -> CartItem | None:
        """Decrease a product quantity; reaching zero or below removes the line.

        The total is recomputed from the unit price, never scaled.

        Returns:
            The updated line, or None if it was removed.

        Raises:
            NotAProductError: If the line is not a product.
            InvalidQuantityError: If amount is not a positive integer.
        """
        self._ensure_editable()
        product = self._as_product(item)
        amount = validate_quantity(amount)

        remaining = product.quantity - amount
        if remaining <= 0:
            self.remove_item(product)
            return None

        product.change_quantity(remaining)
        self._touch()
        return product

    def clear(self) -> int:
        """Remove all items from cart.

        Returns:
            Number of lines removed.
        """
        self._ensure_editable()
        count = len(self.items)
        self.items.clear()
        self._touch()
        return count

    def _as_product(self, item: CartItem) -> ProductItem:
        if item not in self.items:
            raise ItemNotFoundError(str(self.id), str(item.id))
        if not isinstance(item, ProductItem):
            raise NotAProductError(str(item.id), item.name, item.item_type.value)
        return item

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def transition_to(self, status: CartStatus) -> None:
        """Move the cart to a new lifecycle status.

        Raises:
            InvalidStateTransitionError: If not in valid state.
        """
        validate_cart_transition(str(self.id), self.status, status)
        self.status = status
        self._touch()

    # -------------------------------------------------------------------------
    # Write Log
    # -------------------------------------------------------------------------

    def record_write(self, token: str) -> None:
        """Stamp a write token so the write can be recognized after a lost acknowledgement."""
        self.write_log = [*self.write_log, token][-self.WRITE_LOG_SIZE :]

    def has_write(self, token: str) -> bool:
        return token in self.write_log

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "owner_id": self.owner_id,
            "status": self.status.value,
            "items": [item.to_dict() for item in self.items],
            "write_log": list(self.write_log),
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cart":
        return cls(
            id=CartId.from_string(data["id"]),
            owner_id=data["owner_id"],
            status=CartStatus(data["status"]),
            items=[CartItem.from_dict(item) for item in data.get("items") or []],
            write_log=list(data.get("write_log") or []),
            version=data["version"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


# ============================================================================
# Conversation Aggregate Root
# ============================================================================


@dataclass(frozen=True)
class HistoryEntry(ValueObject):
    """One message in a conversation history.

    Attributes:
        role: Who wrote the message.
        content: Message text.
        timestamp: When the message was appended.
        metadata: Optional structured data (e.g. intents executed).
    """

    role: Role
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] | None = field(default=None, hash=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            role=Role(data["role"]),
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            metadata=data.get("metadata"),
        )


@dataclass(kw_only=True, eq=False)
class Conversation(AggregateRoot[ConversationId]):
    """Conversation aggregate root.

    History is append-only and unbounded; callers read a trailing window.

    Attributes:
        id: Conversation id, also the client's session token.
        owner_id: Owner of the conversation.
        history: Ordered messages, oldest first.
    """

    id: ConversationId
    owner_id: str
    history: list[HistoryEntry] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        owner_id: str,
        conversation_id: ConversationId | None = None,
    ) -> "Conversation":
        return cls(id=conversation_id or ConversationId.generate(), owner_id=owner_id)

    def append(self, entry: HistoryEntry) -> None:
        self.history.append(entry)
        self._touch()

    def recent(self, limit: int) -> list[HistoryEntry]:
        """Return the last ``limit`` entries, oldest of the window first."""
        if limit <= 0:
            return []
        return list(self.history[-limit:])
