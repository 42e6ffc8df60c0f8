"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Self
from uuid import UUID, uuid4

from chatcart.domain.base import ValueObject
from chatcart.domain.exceptions import (
    InvalidPriceError,
    InvalidQuantityError,
    InvalidSessionTokenError,
)


# ============================================================================
# Typed Identifiers
# ============================================================================


@dataclass(frozen=True)
class UuidIdentifier(ValueObject):
    """Strongly-typed UUID-backed identifier.

    Using typed IDs prevents accidentally mixing up cart, item and
    conversation identifiers. Subclasses only add their own parsing rules.
    """

    value: UUID

    @classmethod
    def generate(cls) -> Self:
        """Generate a new random identifier."""
        return cls(value=uuid4())

    @classmethod
    def from_string(cls, value: str) -> Self:
        """Create identifier from string representation.

        Args:
            value: String UUID representation.

        Returns:
            Identifier instance.

        Raises:
            ValueError: If value is not a UUID.
        """
        return cls(value=UUID(str(value)))

    @classmethod
    def is_valid(cls, value: str | None) -> bool:
        """Check whether a string parses as this identifier."""
        if not value:
            return False
        try:
            UUID(str(value))
        except ValueError:
            return False
        return True

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class CartId(UuidIdentifier):
    """Strongly-typed cart identifier."""


@dataclass(frozen=True)
class CartItemId(UuidIdentifier):
    """Strongly-typed cart item identifier, unique within its cart."""


@dataclass(frozen=True)
class ConversationId(UuidIdentifier):
    """Strongly-typed conversation identifier.

    The conversation id doubles as the client-visible session token.
    """

    @classmethod
    def parse_token(cls, token: str) -> Self:
        """Parse a client-supplied session token.

        Args:
            token: Session token presented by the client.

        Returns:
            ConversationId for the token.

        Raises:
            InvalidSessionTokenError: If the token is not an identifier at all.
        """
        try:
            return cls.from_string(token)
        except ValueError as e:
            raise InvalidSessionTokenError(token) from e


# ============================================================================
# Enumerations
# ============================================================================


class ItemType(str, Enum):
    """Kinds of cart line.

    Products carry a unit price and a quantity. Services carry a flat
    price and normally no quantity. Custom lines are free-form.
    """

    PRODUCT = "product"
    SERVICE = "service"
    CUSTOM = "custom"


class Role(str, Enum):
    """Author of a conversation history entry."""

    USER = "user"
    ASSISTANT = "assistant"


class MergeMode(str, Enum):
    """How an added item combines with an existing line of the same name and type."""

    MERGE = "merge"
    REPLACE = "replace"


# ============================================================================
# Numeric Validation
# ============================================================================


def to_price(value: Any) -> Decimal:
    """Convert a caller-supplied price into a non-negative Decimal.

    Floats go through ``str`` so that 29.99 stays 29.99.

    Args:
        value: Price as int, float, str or Decimal.

    Returns:
        The price as a Decimal.

    Raises:
        InvalidPriceError: If the value is not a finite non-negative number.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidPriceError(value)
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidPriceError(value) from e
    if not price.is_finite() or price < 0:
        raise InvalidPriceError(value)
    return price


def validate_quantity(value: Any, allow_zero: bool = False) -> int:
    """Validate a quantity value.

    Args:
        value: Quantity supplied by the caller.
        allow_zero: Whether zero is an acceptable quantity.

    Returns:
        The quantity as int.

    Raises:
        InvalidQuantityError: If the value is negative, not an integer,
            or zero when zero is not allowed.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        else:
            raise InvalidQuantityError(value, "Quantity must be an integer")
    if value < 0:
        raise InvalidQuantityError(value, "Quantity cannot be negative")
    if value == 0 and not allow_zero:
        raise InvalidQuantityError(value, "Quantity must be at least 1")
    return value


def normalize_name(name: str) -> str:
    """Return the case-insensitive matching key for an item name."""
    return name.strip().casefold()
