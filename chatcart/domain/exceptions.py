"""Domain exceptions.

All domain-level errors that represent business rule violations or
store-level failures. Each error carries a stable ``error_kind`` that
the intent dispatcher and the HTTP layer expose to callers.
"""

from typing import Any, ClassVar


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    error_kind: ClassVar[str] = "DomainError"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when an invalid state transition is attempted."""

    error_kind = "InvalidStateTransition"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "Cart", "Turn").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


# ============================================================================
# Cart Errors
# ============================================================================


class CartError(DomainError):
    """Base class for cart-related errors."""

    pass


class CartNotFoundError(CartError):
    """Raised when a cart id does not resolve."""

    error_kind = "CartNotFound"

    def __init__(self, cart_id: str) -> None:
        super().__init__(
            f"Cart {cart_id} not found",
            details={"cart_id": cart_id},
        )


class CartNotEditableError(CartError):
    """Raised when trying to modify a cart that is not active."""

    error_kind = "InvalidStateTransition"

    def __init__(self, cart_id: str, current_status: str) -> None:
        super().__init__(
            f"Cart {cart_id} is not editable in status '{current_status}'",
            details={"cart_id": cart_id, "current_status": current_status},
        )


class ActiveCartExistsError(CartError):
    """Raised when creating a second active cart for one owner."""

    error_kind = "Conflict"

    def __init__(self, owner_id: str) -> None:
        super().__init__(
            f"Owner {owner_id} already has an active cart",
            details={"owner_id": owner_id},
        )


class ItemNotFoundError(CartError):
    """Raised when no cart item matches a name or id selector."""

    error_kind = "ItemNotFound"

    def __init__(self, cart_id: str, selector: str) -> None:
        """Initialize item not found error.

        Args:
            cart_id: ID of the cart.
            selector: Item name or id that matched nothing.
        """
        super().__init__(
            f"No item matching '{selector}' in cart {cart_id}",
            details={"cart_id": cart_id, "selector": selector},
        )


class NotAProductError(CartError):
    """Raised when a quantity operation targets a non-product item."""

    error_kind = "NotAProduct"

    def __init__(self, item_id: str, item_name: str, item_type: str) -> None:
        super().__init__(
            f"Cannot change quantity of {item_type} '{item_name}'",
            details={"item_id": item_id, "name": item_name, "type": item_type},
        )


class InvalidQuantityError(CartError):
    """Raised when an invalid quantity is provided."""

    error_kind = "InvalidQuantity"

    def __init__(
        self, quantity: Any, reason: str = "Quantity must be a positive integer"
    ) -> None:
        """Initialize invalid quantity error.

        Args:
            quantity: The invalid quantity value.
            reason: Explanation of why the quantity is invalid.
        """
        super().__init__(
            f"Invalid quantity {quantity!r}: {reason}",
            details={"quantity": quantity, "reason": reason},
        )


class InvalidPriceError(CartError):
    """Raised when a negative or non-numeric price is provided."""

    error_kind = "InvalidIntent"

    def __init__(self, price: Any) -> None:
        super().__init__(
            f"Invalid price {price!r}: price must be a non-negative number",
            details={"price": str(price)},
        )


# ============================================================================
# Conversation Errors
# ============================================================================


class ConversationError(DomainError):
    """Base class for conversation-related errors."""

    pass


class ConversationNotFoundError(ConversationError):
    """Raised when an operation requires an existing conversation."""

    error_kind = "ConversationNotFound"

    def __init__(self, conversation_id: str) -> None:
        super().__init__(
            f"Conversation {conversation_id} not found",
            details={"conversation_id": conversation_id},
        )


class InvalidSessionTokenError(ConversationError):
    """Raised when a session token does not parse as an identifier."""

    error_kind = "InvalidSessionToken"

    def __init__(self, token: str) -> None:
        super().__init__(
            f"Session token {token!r} is not a valid identifier",
            details={"session_token": token},
        )


# ============================================================================
# Intent Errors
# ============================================================================


class InvalidIntentError(DomainError):
    """Raised when an intent name is unknown or its arguments are malformed."""

    error_kind = "InvalidIntent"


class StepLimitExceededError(DomainError):
    """Raised when a turn exceeds its step ceiling or mutation allowance."""

    error_kind = "StepLimitExceeded"

    def __init__(self, turn_id: str, limit: int, reason: str) -> None:
        super().__init__(
            f"Turn {turn_id} exceeded its limit of {limit}: {reason}",
            details={"turn_id": turn_id, "limit": limit, "reason": reason},
        )


class IntentTimeoutError(DomainError):
    """Raised when an intent does not complete within its deadline."""

    error_kind = "Timeout"

    def __init__(self, intent_name: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Intent '{intent_name}' did not complete within {timeout_seconds}s",
            details={"intent_name": intent_name, "timeout_seconds": timeout_seconds},
        )


# ============================================================================
# Store Errors
# ============================================================================


class StoreError(DomainError):
    """Base class for persistence store failures."""

    pass


class StoreUnavailableError(StoreError):
    """Raised when the persistence store cannot be reached."""

    error_kind = "StoreUnavailable"

    def __init__(self, operation: str, reason: str = "") -> None:
        message = f"Store unavailable during {operation}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={"operation": operation, "reason": reason},
        )


class ConcurrencyConflictError(StoreError):
    """Raised by a repository when a versioned write loses a race.

    A single stale write is retried by the cart service; only once its
    retries run out does the caller see ``ConflictError``.
    """

    error_kind = "Conflict"

    def __init__(self, entity_id: str, expected_version: int) -> None:
        super().__init__(
            f"Version {expected_version} of {entity_id} is stale",
            details={"entity_id": entity_id, "expected_version": expected_version},
        )


class ConflictError(StoreError):
    """Raised when optimistic concurrency retries are exhausted."""

    error_kind = "Conflict"

    def __init__(self, entity_id: str, attempts: int) -> None:
        super().__init__(
            f"Gave up updating {entity_id} after {attempts} conflicting attempts",
            details={"entity_id": entity_id, "attempts": attempts},
        )
