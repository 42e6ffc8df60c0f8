"""Cart application service.

Owns cart mutation semantics: merge-on-add, removal by name or id,
quantity adjustment, clearing, lifecycle transitions and the summary
projection. Every mutation is one read-modify-write cycle against the
cart repository, written back with a version check and retried when
another writer got there first.
"""

import asyncio
import uuid
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from chatcart.application.retry import RetryPolicy, retry_store_operation
from chatcart.domain.entities import Cart, CartItem
from chatcart.domain.exceptions import (
    ActiveCartExistsError,
    CartNotFoundError,
    ConcurrencyConflictError,
    ConflictError,
    ItemNotFoundError,
    StoreUnavailableError,
)
from chatcart.domain.state_machines import CartStatus
from chatcart.domain.summary import EMPTY_SUMMARY, CartSummary, project
from chatcart.domain.value_objects import MergeMode, validate_quantity
from chatcart.infrastructure.repositories import CartRepository, get_cart_repository

logger = structlog.get_logger()

R = TypeVar("R")

# One lock per cart id while any writer in this process holds it.
_cart_write_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
    weakref.WeakValueDictionary()
)


def _cart_write_lock(cart_id: str) -> asyncio.Lock:
    lock = _cart_write_locks.get(cart_id)
    if lock is None:
        lock = asyncio.Lock()
        _cart_write_locks[cart_id] = lock
    return lock


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class AddItemResult:
    """Result of adding an item to a cart."""

    cart: Cart
    item: CartItem
    merged: bool


@dataclass
class RemoveItemResult:
    """Result of removing items by name or id."""

    cart: Cart
    removed: list[CartItem] = field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return len(self.removed)


@dataclass
class QuantityResult:
    """Result of a set or decrease quantity operation.

    ``item`` is None when the operation removed the line.
    """

    cart: Cart
    item_id: str
    name: str
    item: CartItem | None = None

    @property
    def removed(self) -> bool:
        return self.item is None


@dataclass
class Disambiguation:
    """Several lines matched a name-only selector; nothing was changed.

    The caller must repeat the request with one of the candidate ids.
    """

    candidates: list[CartItem]

    def to_dict(self) -> dict[str, Any]:
        return {
            "disambiguation": True,
            "candidates": [
                {
                    "id": str(item.id),
                    "type": item.item_type.value,
                    "name": item.name,
                    "quantity": item.quantity_value,
                }
                for item in self.candidates
            ],
        }


# ============================================================================
# Cart Service
# ============================================================================


class CartService:
    """Application service for cart mutations and queries.

    The service holds no cart state between calls; the repository is the
    single source of truth.
    """

    def __init__(
        self,
        cart_repo: CartRepository | None = None,
        retry_policy: RetryPolicy | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize service.

        Args:
            cart_repo: Cart repository.
            retry_policy: Retry policy for store conflicts and outages.
            request_id: Request ID for correlation.
        """
        self.cart_repo = cart_repo or get_cart_repository()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.request_id = request_id

    # -------------------------------------------------------------------------
    # Store Access
    # -------------------------------------------------------------------------

    async def _read(self, name: str, operation: Callable[[], Any]) -> Any:
        return await retry_store_operation(
            operation,
            self.retry_policy,
            name,
            retry_on=(StoreUnavailableError,),
            request_id=self.request_id,
        )

    async def _mutate(self, cart_id: str, name: str, mutation: Callable[[Cart], R]) -> R:
        """Apply ``mutation`` to a fresh copy of the cart and write it back.

        Writers in this process take the cart's lock for each
        read-modify-write, so they queue instead of colliding; the
        versioned write still guards against other processes. The
        mutation runs again on a re-read cart whenever that write loses
        a race. If the mutation leaves the cart untouched, nothing is
        written.

        Every write stamps a token into the cart's write log. When a
        write fails with StoreUnavailable it may still have committed,
        so the next attempt looks for the token before applying the
        mutation again.

        Raises:
            CartNotFoundError: If the cart does not exist.
            ConflictError: If every attempt lost a race.
            StoreUnavailableError: If the store stays unreachable.
        """
        unacknowledged: dict[str, R] = {}

        async def attempt() -> R:
            async with _cart_write_lock(cart_id):
                cart = await self.cart_repo.get(cart_id)
                if cart is None:
                    raise CartNotFoundError(cart_id)
                for token, result in unacknowledged.items():
                    if cart.has_write(token):
                        logger.info(
                            "Unacknowledged write found committed",
                            operation=name,
                            cart_id=cart_id,
                            request_id=self.request_id,
                        )
                        return result

                read_version = cart.version
                result = mutation(cart)
                if cart.version == read_version:
                    return result

                token = uuid.uuid4().hex
                cart.record_write(token)
                try:
                    await self.cart_repo.save(cart, expected_version=read_version)
                except StoreUnavailableError:
                    unacknowledged[token] = result
                    raise
                return result

        try:
            return await retry_store_operation(
                attempt,
                self.retry_policy,
                name,
                cart_id=cart_id,
                request_id=self.request_id,
            )
        except ConcurrencyConflictError as e:
            raise ConflictError(cart_id, self.retry_policy.max_attempts) from e

    async def get_cart(self, cart_id: str) -> Cart:
        """Get a cart by ID.

        Raises:
            CartNotFoundError: If the cart does not exist.
        """
        cart = await self._read("cart.get", lambda: self.cart_repo.get(cart_id))
        if cart is None:
            raise CartNotFoundError(cart_id)
        return cart

    # -------------------------------------------------------------------------
    # Item Operations
    # -------------------------------------------------------------------------

    async def add_or_merge_item(
        self,
        cart_id: str,
        item: CartItem,
        mode: MergeMode = MergeMode.MERGE,
    ) -> AddItemResult:
        """Add an item or fold it into the line with the same name and type.

        Args:
            cart_id: Cart to modify.
            item: Proposed line.
            mode: MERGE sums into the existing line, REPLACE overwrites it.

        Returns:
            AddItemResult telling whether an existing line was updated.
        """

        def mutation(cart: Cart) -> AddItemResult:
            line, merged = cart.add_item(item, mode)
            return AddItemResult(cart=cart, item=line, merged=merged)

        result = await self._mutate(cart_id, "cart.add_item", mutation)

        logger.info(
            "Item merged" if result.merged else "Item added",
            cart_id=cart_id,
            item_id=str(result.item.id),
            item_type=result.item.item_type.value,
            name=result.item.name,
            quantity=result.item.quantity_value,
            mode=mode.value,
            request_id=self.request_id,
        )
        return result

    async def remove_item(self, cart_id: str, name_or_id: str) -> RemoveItemResult:
        """Remove every line whose id or case-insensitive name equals ``name_or_id``.

        Raises:
            ItemNotFoundError: If nothing matched.
        """

        def mutation(cart: Cart) -> RemoveItemResult:
            removed = cart.remove_matching(name_or_id)
            if not removed:
                raise ItemNotFoundError(cart_id, name_or_id)
            return RemoveItemResult(cart=cart, removed=removed)

        result = await self._mutate(cart_id, "cart.remove_item", mutation)

        logger.info(
            "Items removed",
            cart_id=cart_id,
            selector=name_or_id,
            removed_count=result.removed_count,
            request_id=self.request_id,
        )
        return result

    async def set_quantity(
        self,
        cart_id: str,
        quantity: int,
        name: str | None = None,
        item_id: str | None = None,
    ) -> QuantityResult | Disambiguation:
        """Set the exact quantity of a product line; zero removes it.

        Args:
            cart_id: Cart to modify.
            quantity: New quantity, a non-negative integer.
            name: Item name, matched case-insensitively.
            item_id: Item ID; required when a name matches several lines.

        Returns:
            QuantityResult, or Disambiguation when the name is ambiguous.

        Raises:
            InvalidQuantityError: If quantity is negative or not an integer.
            ItemNotFoundError: If the selector matches nothing.
            NotAProductError: If the line is not a product.
        """
        quantity = validate_quantity(quantity, allow_zero=True)

        def mutation(cart: Cart) -> QuantityResult | Disambiguation:
            target = self._resolve_selector(cart, name, item_id)
            if isinstance(target, Disambiguation):
                return target
            line = cart.set_quantity(target, quantity)
            return QuantityResult(
                cart=cart, item_id=str(target.id), name=target.name, item=line
            )

        result = await self._mutate(cart_id, "cart.set_quantity", mutation)
        self._log_quantity_result("Quantity set", cart_id, result, quantity=quantity)
        return result

    async def decrease_quantity(
        self,
        cart_id: str,
        amount: int = 1,
        name: str | None = None,
        item_id: str | None = None,
    ) -> QuantityResult | Disambiguation:
        """Decrease the quantity of a product line.

        Reaching zero or below removes the line.

        Raises:
            InvalidQuantityError: If amount is not a positive integer.
            ItemNotFoundError: If the selector matches nothing.
            NotAProductError: If the line is not a product.
        """
        amount = validate_quantity(amount)

        def mutation(cart: Cart) -> QuantityResult | Disambiguation:
            target = self._resolve_selector(cart, name, item_id)
            if isinstance(target, Disambiguation):
                return target
            line = cart.decrease_quantity(target, amount)
            return QuantityResult(
                cart=cart, item_id=str(target.id), name=target.name, item=line
            )

        result = await self._mutate(cart_id, "cart.decrease_quantity", mutation)
        self._log_quantity_result("Quantity decreased", cart_id, result, amount=amount)
        return result

    async def clear_cart(self, cart_id: str) -> Cart:
        """Remove every line. Clearing an empty cart succeeds."""

        def mutation(cart: Cart) -> tuple[Cart, int]:
            return cart, cart.clear()

        cart, cleared = await self._mutate(cart_id, "cart.clear", mutation)
        logger.info(
            "Cart cleared",
            cart_id=cart_id,
            removed_count=cleared,
            request_id=self.request_id,
        )
        return cart

    def _resolve_selector(
        self, cart: Cart, name: str | None, item_id: str | None
    ) -> CartItem | Disambiguation:
        candidates = cart.select(name=name, item_id=item_id)
        if not candidates:
            raise ItemNotFoundError(str(cart.id), item_id or name or "")
        if len(candidates) > 1:
            return Disambiguation(candidates=candidates)
        return candidates[0]

    def _log_quantity_result(
        self,
        event: str,
        cart_id: str,
        result: QuantityResult | Disambiguation,
        **fields: Any,
    ) -> None:
        if isinstance(result, Disambiguation):
            logger.info(
                "Item selector is ambiguous",
                cart_id=cart_id,
                candidate_count=len(result.candidates),
                request_id=self.request_id,
            )
            return
        logger.info(
            event,
            cart_id=cart_id,
            item_id=result.item_id,
            removed=result.removed,
            request_id=self.request_id,
            **fields,
        )

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    async def compute_summary(self, cart_id: str) -> CartSummary:
        """Project a cart into its summary.

        A nonexistent cart yields the empty summary, not an error.
        """
        cart = await self._read("cart.get", lambda: self.cart_repo.get(cart_id))
        if cart is None:
            return EMPTY_SUMMARY
        return project(cart)

    async def get_summary_for_owner(self, owner_id: str) -> CartSummary | None:
        """Summary of the owner's active cart, or None if there is none."""
        cart = await self._read(
            "cart.get_active", lambda: self.cart_repo.get_active_by_owner(owner_id)
        )
        if cart is None:
            return None
        return project(cart)

    # -------------------------------------------------------------------------
    # Cart Lifecycle
    # -------------------------------------------------------------------------

    async def get_or_create_active_cart(self, owner_id: str) -> Cart:
        """Return the owner's active cart, creating it when absent.

        Concurrent callers converge on the same cart: whoever loses the
        creation race reads the winner's cart.
        """

        async def attempt() -> Cart:
            cart = await self.cart_repo.get_active_by_owner(owner_id)
            if cart is not None:
                return cart
            try:
                cart = await self.cart_repo.create(Cart.create(owner_id=owner_id))
            except ActiveCartExistsError:
                existing = await self.cart_repo.get_active_by_owner(owner_id)
                if existing is None:
                    # Winner already left the active state; try again.
                    raise ConcurrencyConflictError(owner_id, 0)
                return existing
            logger.info(
                "Cart created",
                cart_id=str(cart.id),
                owner_id=owner_id,
                request_id=self.request_id,
            )
            return cart

        try:
            return await retry_store_operation(
                attempt,
                self.retry_policy,
                "cart.get_or_create",
                owner_id=owner_id,
                request_id=self.request_id,
            )
        except ConcurrencyConflictError as e:
            raise ConflictError(owner_id, self.retry_policy.max_attempts) from e

    async def update_status(self, cart_id: str, status: CartStatus) -> Cart:
        """Move a cart to a new lifecycle status.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed.
        """
        def mutation(cart: Cart) -> tuple[Cart, CartStatus]:
            old_status = cart.status
            cart.transition_to(status)
            return cart, old_status

        cart, old_status = await self._mutate(cart_id, "cart.update_status", mutation)
        logger.info(
            "Cart status changed",
            cart_id=cart_id,
            old_status=old_status.value,
            new_status=status.value,
            request_id=self.request_id,
        )
        return cart

    async def list_carts(
        self, owner_id: str, status: CartStatus | None = None
    ) -> list[Cart]:
        """List the owner's carts, newest first."""
        return await self._read(
            "cart.list", lambda: self.cart_repo.list_by_owner(owner_id, status)
        )

    async def delete_cart(self, cart_id: str) -> None:
        """Delete a cart.

        Raises:
            CartNotFoundError: If the cart does not exist.
        """
        deleted = await self._read("cart.delete", lambda: self.cart_repo.delete(cart_id))
        if not deleted:
            raise CartNotFoundError(cart_id)
        logger.info("Cart deleted", cart_id=cart_id, request_id=self.request_id)


# ============================================================================
# Service Factory
# ============================================================================


def get_cart_service(request_id: str | None = None) -> CartService:
    """Get cart service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        CartService bound to the configured cart repository.
    """
    return CartService(request_id=request_id)
