"""Tests for domain entities."""

from decimal import Decimal

import pytest

from chatcart.domain import (
    Cart,
    CartItem,
    CartStatus,
    Conversation,
    CustomItem,
    HistoryEntry,
    ItemType,
    MergeMode,
    ProductItem,
    Role,
    ServiceItem,
)
from chatcart.domain.exceptions import (
    CartNotEditableError,
    InvalidPriceError,
    InvalidQuantityError,
    InvalidStateTransitionError,
    ItemNotFoundError,
    NotAProductError,
)
from chatcart.domain.value_objects import CartItemId


# ============================================================================
# Test Fixtures
# ============================================================================


def make_product(name: str = "Zen Hoodie", price=320000, quantity: int | None = 1) -> CartItem:
    """Create a product line."""
    return CartItem.create(ItemType.PRODUCT, name, price, quantity)


def make_service(name: str = "Gift Wrapping", price=15000, quantity: int | None = None) -> CartItem:
    """Create a service line."""
    return CartItem.create(ItemType.SERVICE, name, price, quantity)


def assert_line_invariant(item: CartItem) -> None:
    """Line total must follow from price and quantity."""
    if isinstance(item, ServiceItem):
        assert item.total_price == item.price
    elif isinstance(item, ProductItem):
        assert item.total_price == item.price * item.quantity
    elif item.quantity_value is None:
        assert item.total_price == item.price
    else:
        assert item.total_price == item.price * item.quantity_value


# ============================================================================
# Cart Item Tests
# ============================================================================


class TestCartItemCreation:
    """Tests for cart line variants."""

    def test_create_dispatches_on_type(self) -> None:
        """create() returns the variant named by the type."""
        assert isinstance(make_product(), ProductItem)
        assert isinstance(make_service(), ServiceItem)
        assert isinstance(CartItem.create("custom", "Engraving", 5000), CustomItem)

    def test_base_line_is_abstract(self) -> None:
        """Only the concrete variants can be instantiated."""
        with pytest.raises(TypeError):
            CartItem(id=CartItemId.generate(), name="Zen Hoodie", price=Decimal("1"))

    def test_product_quantity_defaults_to_one(self) -> None:
        """Omitted product quantity is 1."""
        item = make_product(quantity=None)
        assert item.quantity_value == 1
        assert item.total_price == Decimal("320000")

    def test_product_total_is_price_times_quantity(self) -> None:
        """Product total is derived from unit price."""
        item = make_product(price="29.99", quantity=3)
        assert item.total_price == Decimal("89.97")

    def test_float_price_keeps_decimal_digits(self) -> None:
        """Float prices are converted without binary noise."""
        item = make_product(price=29.99)
        assert item.price == Decimal("29.99")

    def test_service_total_is_flat_price(self) -> None:
        """Service total equals its price regardless of quantity."""
        item = make_service(price=15000, quantity=3)
        assert item.total_price == Decimal("15000")
        assert item.quantity_value == 3

    def test_service_has_no_quantity_by_default(self) -> None:
        """Services normally carry no quantity."""
        item = make_service()
        assert item.quantity_value is None
        assert item.counted_quantity == 1

    def test_custom_prices_like_product_with_quantity(self) -> None:
        """Custom line with a quantity multiplies."""
        item = CartItem.create(ItemType.CUSTOM, "Engraving", 5000, 2)
        assert item.total_price == Decimal("10000")

    def test_custom_is_flat_without_quantity(self) -> None:
        """Custom line without a quantity is a flat amount."""
        item = CartItem.create(ItemType.CUSTOM, "Engraving", 5000)
        assert item.total_price == Decimal("5000")

    def test_name_is_stripped(self) -> None:
        """Surrounding whitespace is not part of the name."""
        assert make_product(name="  Zen Hoodie ").name == "Zen Hoodie"

    def test_empty_name_rejected(self) -> None:
        """Item name cannot be blank."""
        with pytest.raises(ValueError):
            make_product(name="   ")

    @pytest.mark.parametrize("price", [-1, "abc", None, float("nan"), True])
    def test_invalid_price_rejected(self, price) -> None:
        """Price must be a finite non-negative number."""
        with pytest.raises(InvalidPriceError):
            make_product(price=price)

    @pytest.mark.parametrize("quantity", [0, -2, 1.5])
    def test_invalid_product_quantity_rejected(self, quantity) -> None:
        """Products need a positive integer quantity."""
        with pytest.raises(InvalidQuantityError):
            make_product(quantity=quantity)

    def test_service_accepts_zero_quantity(self) -> None:
        """Service quantity may be zero."""
        assert make_service(quantity=0).quantity_value == 0

    def test_round_trip_through_document(self) -> None:
        """Lines survive serialization with type and values intact."""
        item = make_product(price="19.50", quantity=4)
        restored = CartItem.from_dict(item.to_dict())

        assert isinstance(restored, ProductItem)
        assert restored.id == item.id
        assert restored.price == Decimal("19.50")
        assert restored.quantity_value == 4


# ============================================================================
# Cart Tests
# ============================================================================


class TestCartCreation:
    """Tests for cart creation."""

    def test_create_cart(self) -> None:
        """Cart starts active and empty."""
        cart = Cart.create("owner-1")

        assert cart.owner_id == "owner-1"
        assert cart.status == CartStatus.ACTIVE
        assert cart.is_empty
        assert cart.version == 1

    def test_owner_required(self) -> None:
        """Owner ID cannot be empty."""
        with pytest.raises(ValueError):
            Cart.create("  ")

    def test_equality_is_by_identity(self) -> None:
        """Two loads of the same cart are equal even after changes."""
        cart = Cart.create("owner-1")
        copy = Cart.from_dict(cart.to_dict())
        copy.add_item(make_product())

        assert cart == copy
        assert hash(cart) == hash(copy)


class TestCartAddItem:
    """Tests for adding and merging items."""

    def test_add_new_item(self) -> None:
        """A new (name, type) pair becomes a new line."""
        cart = Cart.create("owner-1")
        item, merged = cart.add_item(make_product(quantity=2))

        assert merged is False
        assert cart.items == [item]

    def test_merge_sums_quantities(self) -> None:
        """Same name and type merges into one line."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product(quantity=2))
        item, merged = cart.add_item(make_product(quantity=3))

        assert merged is True
        assert len(cart.items) == 1
        assert item.quantity_value == 5
        assert item.total_price == Decimal("320000") * 5

    def test_merge_is_case_insensitive(self) -> None:
        """Name matching ignores case."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product(name="Zen Hoodie"))
        cart.add_item(make_product(name="ZEN HOODIE"))

        assert len(cart.items) == 1
        assert cart.items[0].quantity_value == 2

    def test_merge_order_independent_of_unrelated_items(self) -> None:
        """Unrelated lines do not affect merging."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product(quantity=2))
        cart.add_item(make_product(name="Socks", price=50000))
        cart.add_item(make_service())
        cart.add_item(make_product(quantity=3))

        hoodies = cart.items_named("zen hoodie")
        assert len(hoodies) == 1
        assert hoodies[0].quantity_value == 5

    def test_merge_takes_latest_unit_price(self) -> None:
        """Merging a product keeps the latest unit price."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product(price=300000, quantity=1))
        item, _ = cart.add_item(make_product(price=320000, quantity=1))

        assert item.price == Decimal("320000")
        assert item.total_price == Decimal("640000")

    def test_same_name_different_type_kept_apart(self) -> None:
        """Type is part of the deduplication key."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product(name="Assembly"))
        cart.add_item(make_service(name="Assembly"))

        assert len(cart.items) == 2

    def test_service_merge_sums_prices(self) -> None:
        """Merging services sums their flat prices."""
        cart = Cart.create("owner-1")
        cart.add_item(make_service(price=15000))
        item, merged = cart.add_item(make_service(price=5000))

        assert merged is True
        assert item.price == Decimal("20000")
        assert item.total_price == item.price

    def test_replace_overwrites_quantity_and_price(self) -> None:
        """REPLACE mode overwrites instead of summing."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product(quantity=4))
        item, merged = cart.add_item(make_product(price=300000, quantity=1), MergeMode.REPLACE)

        assert merged is True
        assert item.quantity_value == 1
        assert item.total_price == Decimal("300000")

    def test_add_advances_version_and_timestamp(self) -> None:
        """Every mutation bumps version and updated_at."""
        cart = Cart.create("owner-1")
        before = cart.updated_at

        cart.add_item(make_product())

        assert cart.version == 2
        assert cart.updated_at > before

    def test_add_to_checked_out_cart_rejected(self) -> None:
        """Only active carts accept items."""
        cart = Cart.create("owner-1")
        cart.transition_to(CartStatus.CHECKED_OUT)

        with pytest.raises(CartNotEditableError):
            cart.add_item(make_product())


class TestCartRemoveItem:
    """Tests for removal by name or id."""

    def test_remove_by_name_exact_case_insensitive(self) -> None:
        """All lines with that name are removed, of any type."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product(name="Assembly"))
        cart.add_item(make_service(name="assembly"))
        cart.add_item(make_product(name="Socks"))

        removed = cart.remove_matching("ASSEMBLY")

        assert len(removed) == 2
        assert [item.name for item in cart.items] == ["Socks"]

    def test_substring_does_not_match(self) -> None:
        """Partial names do not remove anything."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product(name="Zen Hoodie"))

        assert cart.remove_matching("Hoodie") == []
        assert len(cart.items) == 1

    def test_remove_by_id(self) -> None:
        """An item id selects exactly that line."""
        cart = Cart.create("owner-1")
        item, _ = cart.add_item(make_product())

        removed = cart.remove_matching(str(item.id))

        assert removed == [item]
        assert cart.is_empty

    def test_nothing_matched_leaves_version(self) -> None:
        """A miss is not a mutation."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product())
        version = cart.version

        cart.remove_matching("nothing")

        assert cart.version == version


class TestCartQuantity:
    """Tests for set and decrease quantity."""

    def test_set_quantity_recomputes_total(self) -> None:
        """Set quantity keeps price * quantity."""
        cart = Cart.create("owner-1")
        item, _ = cart.add_item(make_product(quantity=1))

        updated = cart.set_quantity(item, 4)

        assert updated is item
        assert item.total_price == Decimal("1280000")

    def test_set_quantity_zero_removes(self) -> None:
        """Zero removes the line."""
        cart = Cart.create("owner-1")
        item, _ = cart.add_item(make_product())

        assert cart.set_quantity(item, 0) is None
        assert cart.is_empty

    def test_set_quantity_negative_rejected(self) -> None:
        """Negative quantity is invalid."""
        cart = Cart.create("owner-1")
        item, _ = cart.add_item(make_product())

        with pytest.raises(InvalidQuantityError):
            cart.set_quantity(item, -1)

    def test_set_quantity_on_service_rejected(self) -> None:
        """Quantity operations need a product."""
        cart = Cart.create("owner-1")
        item, _ = cart.add_item(make_service())

        with pytest.raises(NotAProductError):
            cart.set_quantity(item, 2)

    def test_decrease_recomputes_from_unit_price(self) -> None:
        """Decrease uses the unit price, not proportional scaling."""
        cart = Cart.create("owner-1")
        item, _ = cart.add_item(make_product(price="33.33", quantity=7))

        for _ in range(5):
            cart.decrease_quantity(item, 1)

        assert item.quantity_value == 2
        assert item.total_price == Decimal("66.66")

    @pytest.mark.parametrize("amount", [3, 4, 100])
    def test_decrease_to_floor_removes(self, amount: int) -> None:
        """Decreasing by at least the quantity removes the line."""
        cart = Cart.create("owner-1")
        item, _ = cart.add_item(make_product(quantity=3))

        assert cart.decrease_quantity(item, amount) is None
        assert cart.items_named("Zen Hoodie") == []

    def test_decrease_amount_must_be_positive(self) -> None:
        """Amount of zero is invalid."""
        cart = Cart.create("owner-1")
        item, _ = cart.add_item(make_product(quantity=3))

        with pytest.raises(InvalidQuantityError):
            cart.decrease_quantity(item, 0)

    def test_item_from_other_cart_rejected(self) -> None:
        """Lines must belong to the cart."""
        cart = Cart.create("owner-1")

        with pytest.raises(ItemNotFoundError):
            cart.set_quantity(make_product(), 2)

    def test_invariant_after_operation_sequence(self) -> None:
        """Every line keeps its total invariant through mixed operations."""
        cart = Cart.create("owner-1")
        hoodie, _ = cart.add_item(make_product(quantity=2))
        cart.add_item(make_service())
        cart.add_item(CartItem.create(ItemType.CUSTOM, "Engraving", 5000, 2))
        cart.add_item(make_product(quantity=3))
        cart.set_quantity(hoodie, 7)
        cart.decrease_quantity(hoodie, 2)
        cart.add_item(make_service(price=1000))
        cart.add_item(CartItem.create(ItemType.CUSTOM, "Engraving", 4000, 1))

        for item in cart.items:
            assert_line_invariant(item)


class TestCartLifecycle:
    """Tests for clear, status and serialization."""

    def test_clear_empty_cart_succeeds(self) -> None:
        """Clearing is idempotent."""
        cart = Cart.create("owner-1")
        assert cart.clear() == 0
        assert cart.clear() == 0

    def test_clear_removes_everything(self) -> None:
        """Clear empties the item list."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product())
        cart.add_item(make_service())

        assert cart.clear() == 2
        assert cart.is_empty

    def test_abandon(self) -> None:
        """Active carts can be abandoned."""
        cart = Cart.create("owner-1")
        cart.transition_to(CartStatus.ABANDONED)
        assert cart.status == CartStatus.ABANDONED

    def test_terminal_status_is_final(self) -> None:
        """Checked-out carts cannot change status."""
        cart = Cart.create("owner-1")
        cart.transition_to(CartStatus.CHECKED_OUT)

        with pytest.raises(InvalidStateTransitionError):
            cart.transition_to(CartStatus.ACTIVE)

    def test_document_round_trip(self) -> None:
        """Cart survives serialization."""
        cart = Cart.create("owner-1")
        cart.add_item(make_product(quantity=2))
        cart.add_item(make_service())

        restored = Cart.from_dict(cart.to_dict())

        assert restored.id == cart.id
        assert restored.version == cart.version
        assert [i.name for i in restored.items] == ["Zen Hoodie", "Gift Wrapping"]

    def test_missing_item_list_loads_as_empty(self) -> None:
        """A document with a null item list is an empty cart."""
        document = Cart.create("owner-1").to_dict()
        document["items"] = None

        assert Cart.from_dict(document).is_empty


class TestCartWriteLog:
    """Tests for write tokens stamped on each save."""

    def test_record_and_lookup(self) -> None:
        cart = Cart.create("owner-1")
        version = cart.version

        cart.record_write("token-1")

        assert cart.has_write("token-1")
        assert not cart.has_write("token-2")
        assert cart.version == version

    def test_log_keeps_most_recent_tokens(self) -> None:
        """Older tokens fall off once the log is full."""
        cart = Cart.create("owner-1")
        for i in range(Cart.WRITE_LOG_SIZE + 3):
            cart.record_write(f"token-{i}")

        assert len(cart.write_log) == Cart.WRITE_LOG_SIZE
        assert not cart.has_write("token-0")
        assert cart.write_log[-1] == f"token-{Cart.WRITE_LOG_SIZE + 2}"

    def test_log_survives_serialization(self) -> None:
        cart = Cart.create("owner-1")
        cart.record_write("token-1")

        assert Cart.from_dict(cart.to_dict()).has_write("token-1")

    def test_document_without_log_loads(self) -> None:
        document = Cart.create("owner-1").to_dict()
        del document["write_log"]

        assert Cart.from_dict(document).write_log == []


# ============================================================================
# Conversation Tests
# ============================================================================


class TestConversation:
    """Tests for conversation history."""

    def test_append_and_recent_window(self) -> None:
        """recent() returns the tail, oldest first."""
        conversation = Conversation.create("owner-1")
        for i in range(5):
            conversation.append(HistoryEntry(role=Role.USER, content=f"m{i}"))

        assert [e.content for e in conversation.recent(3)] == ["m2", "m3", "m4"]
        assert conversation.recent(0) == []

    def test_history_entry_round_trip(self) -> None:
        """Metadata is kept through serialization."""
        entry = HistoryEntry(role=Role.ASSISTANT, content="done", metadata={"intents": []})
        restored = HistoryEntry.from_dict(entry.to_dict())

        assert restored.role == Role.ASSISTANT
        assert restored.content == "done"
        assert restored.timestamp == entry.timestamp
