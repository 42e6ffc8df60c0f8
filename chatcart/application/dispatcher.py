"""Intent dispatcher.

Receives a structured intent from the agent runtime, validates its
arguments, routes it to exactly one cart or session operation and
returns a uniform response envelope. Failures are data, never free text.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    ValidationError,
    field_validator,
    model_validator,
)

from chatcart.application.cart_service import (
    CartService,
    Disambiguation,
    QuantityResult,
    get_cart_service,
)
from chatcart.application.session_service import SessionService, get_session_service
from chatcart.domain.entities import CartItem
from chatcart.domain.exceptions import (
    DomainError,
    IntentTimeoutError,
    InvalidIntentError,
    InvalidQuantityError,
)
from chatcart.domain.summary import CartSummary, project
from chatcart.domain.value_objects import ItemType, MergeMode
from chatcart.infrastructure.config import settings

logger = structlog.get_logger()


# ============================================================================
# Intent Types
# ============================================================================


@dataclass(frozen=True)
class Intent:
    """A named operation request from the agent runtime.

    Attributes:
        intent_name: One of the names in ``INTENT_NAMES``.
        args: Raw argument payload, validated per intent.
    """

    intent_name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchContext:
    """Identity the intent executes under.

    Attributes:
        owner_id: Owner of the cart and conversation.
        cart_id: Active cart the cart intents apply to.
        conversation_id: Conversation for history intents.
    """

    owner_id: str
    cart_id: str | None = None
    conversation_id: str | None = None


@dataclass
class IntentResponse:
    """Uniform response envelope returned to the agent runtime."""

    ok: bool
    data: dict[str, Any] | None = None
    error_kind: str | None = None
    error_message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, data: dict[str, Any]) -> "IntentResponse":
        return cls(ok=True, data=data)

    @classmethod
    def failure(
        cls,
        error_kind: str,
        error_message: str,
        details: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> "IntentResponse":
        return cls(
            ok=False,
            data=data,
            error_kind=error_kind,
            error_message=error_message,
            details=details or {},
        )

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "data": self.data}
        payload: dict[str, Any] = {
            "ok": False,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "details": self.details,
        }
        if self.data is not None:
            payload["data"] = self.data
        return payload


# ============================================================================
# Intent Arguments
# ============================================================================


def _whole_number(value: Any) -> Any:
    # Integral floats such as 2.0 count as integers; bools and strings do not.
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class IntentArgs(BaseModel):
    """Base class for intent argument payloads."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class ItemSelectorArgs(IntentArgs):
    """Arguments that pick one line by name or id."""

    name: str | None = Field(default=None, min_length=1)
    item_id: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def require_selector(self) -> "ItemSelectorArgs":
        if not self.name and not self.item_id:
            raise ValueError("Either name or item_id is required")
        return self


class AddItemArgs(IntentArgs):
    name: str = Field(..., min_length=1, max_length=255)
    item_type: ItemType = Field(default=ItemType.PRODUCT, alias="type")
    price: Decimal = Field(..., ge=0)
    quantity: StrictInt | None = Field(default=None, ge=0)
    mode: MergeMode = MergeMode.MERGE

    @field_validator("quantity", mode="before")
    @classmethod
    def whole_quantity(cls, value: Any) -> Any:
        return _whole_number(value)


class RemoveItemArgs(ItemSelectorArgs):
    pass


class SetQuantityArgs(ItemSelectorArgs):
    quantity: StrictInt = Field(..., ge=0)

    @field_validator("quantity", mode="before")
    @classmethod
    def whole_quantity(cls, value: Any) -> Any:
        return _whole_number(value)


class DecreaseQuantityArgs(ItemSelectorArgs):
    amount: StrictInt = Field(default=1, ge=1)

    @field_validator("amount", mode="before")
    @classmethod
    def whole_amount(cls, value: Any) -> Any:
        return _whole_number(value)


class NoArgs(IntentArgs):
    pass


class GetHistoryArgs(IntentArgs):
    limit: int | None = Field(default=None, ge=1, le=100)


# Argument fields whose violations are reported as InvalidQuantity.
_QUANTITY_FIELDS = {"quantity", "amount"}


def _validation_failure(intent_name: str, args: dict[str, Any], error: ValidationError) -> DomainError:
    errors = error.errors(include_url=False, include_context=False)
    fields = {str(e["loc"][0]) for e in errors if e["loc"]}
    if fields and fields <= _QUANTITY_FIELDS:
        name = next(iter(fields))
        return InvalidQuantityError(args.get(name), errors[0]["msg"])
    return InvalidIntentError(
        f"Invalid arguments for intent '{intent_name}'",
        details={
            "intent_name": intent_name,
            "errors": [
                {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
                for e in errors
            ],
        },
    )


# ============================================================================
# Intent Dispatcher
# ============================================================================


Handler = Callable[[Any, DispatchContext], Awaitable[dict[str, Any] | IntentResponse]]


@dataclass(frozen=True)
class IntentRoute:
    """Argument model and handler for one intent name."""

    args_model: type[IntentArgs]
    handler_name: str
    mutating: bool


INTENT_ROUTES: dict[str, IntentRoute] = {
    "add_item": IntentRoute(AddItemArgs, "_add_item", mutating=True),
    "remove_item": IntentRoute(RemoveItemArgs, "_remove_item", mutating=True),
    "set_quantity": IntentRoute(SetQuantityArgs, "_set_quantity", mutating=True),
    "decrease_quantity": IntentRoute(DecreaseQuantityArgs, "_decrease_quantity", mutating=True),
    "clear_cart": IntentRoute(NoArgs, "_clear_cart", mutating=True),
    "view_cart": IntentRoute(NoArgs, "_view_cart", mutating=False),
    "get_history": IntentRoute(GetHistoryArgs, "_get_history", mutating=False),
}

INTENT_NAMES = tuple(INTENT_ROUTES)
MUTATING_INTENTS = frozenset(name for name, route in INTENT_ROUTES.items() if route.mutating)


def is_mutating(intent_name: str) -> bool:
    return intent_name in MUTATING_INTENTS


class IntentDispatcher:
    """Routes one validated intent to one service operation.

    Validation happens before any store access. Each intent runs under
    a deadline; when it passes, the caller gets ``Timeout`` while the
    in-flight store operation is left to finish on its own.
    """

    def __init__(
        self,
        cart_service: CartService | None = None,
        session_service: SessionService | None = None,
        timeout_seconds: float | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize dispatcher.

        Args:
            cart_service: Cart service.
            session_service: Session service.
            timeout_seconds: Per-intent deadline.
            request_id: Request ID for correlation.
        """
        self.cart_service = cart_service or get_cart_service(request_id=request_id)
        self.session_service = session_service or get_session_service(request_id=request_id)
        self.timeout_seconds = timeout_seconds or settings.intent_timeout_seconds
        self.request_id = request_id

    async def dispatch(self, intent: Intent, context: DispatchContext) -> IntentResponse:
        """Validate and execute one intent.

        Args:
            intent: Intent to execute.
            context: Owner, cart and conversation to execute against.

        Returns:
            IntentResponse envelope; never raises for domain failures.
        """
        log = logger.bind(
            intent=intent.intent_name,
            owner_id=context.owner_id,
            cart_id=context.cart_id,
            request_id=self.request_id,
        )

        try:
            route, args = self.validate(intent)
            payload = await self._run_with_deadline(route, args, context, intent.intent_name)
        except DomainError as e:
            log.info("Intent failed", error_kind=e.error_kind, error=e.message)
            return IntentResponse.failure(e.error_kind, e.message, e.details)
        except Exception as e:
            log.exception("Intent raised unexpectedly", error=str(e))
            return IntentResponse.failure("InternalError", "An internal error occurred")

        if isinstance(payload, IntentResponse):
            log.info("Intent needs more information", error_kind=payload.error_kind)
            return payload

        log.info("Intent executed")
        return IntentResponse.success(payload)

    def validate(self, intent: Intent) -> tuple[IntentRoute, IntentArgs]:
        """Resolve the route and parse the arguments of an intent.

        Raises:
            InvalidIntentError: If the name is unknown or the arguments malformed.
            InvalidQuantityError: If a quantity argument is out of range.
        """
        route = INTENT_ROUTES.get(intent.intent_name)
        if route is None:
            raise InvalidIntentError(
                f"Unknown intent '{intent.intent_name}'",
                details={"intent_name": intent.intent_name, "known_intents": list(INTENT_NAMES)},
            )
        if not isinstance(intent.args, dict):
            raise InvalidIntentError(
                "Intent arguments must be an object",
                details={"intent_name": intent.intent_name},
            )
        try:
            args = route.args_model.model_validate(intent.args)
        except ValidationError as e:
            raise _validation_failure(intent.intent_name, intent.args, e) from e
        return route, args

    async def _run_with_deadline(
        self,
        route: IntentRoute,
        args: IntentArgs,
        context: DispatchContext,
        intent_name: str,
    ) -> dict[str, Any] | IntentResponse:
        handler: Handler = getattr(self, route.handler_name)
        task = asyncio.ensure_future(handler(args, context))
        task.add_done_callback(_consume_late_result)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning(
                "Intent deadline passed",
                intent=intent_name,
                timeout_seconds=self.timeout_seconds,
                request_id=self.request_id,
            )
            raise IntentTimeoutError(intent_name, self.timeout_seconds) from e

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _require_cart(self, context: DispatchContext) -> str:
        if not context.cart_id:
            raise InvalidIntentError(
                "Intent requires an active cart",
                details={"owner_id": context.owner_id},
            )
        return context.cart_id

    async def _add_item(self, args: AddItemArgs, context: DispatchContext) -> dict[str, Any]:
        cart_id = self._require_cart(context)
        item = CartItem.create(
            item_type=args.item_type,
            name=args.name,
            price=args.price,
            quantity=args.quantity,
        )
        result = await self.cart_service.add_or_merge_item(cart_id, item, args.mode)
        summary = project(result.cart)
        return {
            "merged": result.merged,
            "item": _line_for(summary, str(result.item.id)),
            "summary": summary.to_dict(),
        }

    async def _remove_item(self, args: RemoveItemArgs, context: DispatchContext) -> dict[str, Any]:
        cart_id = self._require_cart(context)
        result = await self.cart_service.remove_item(cart_id, args.item_id or args.name or "")
        return {
            "removed_count": result.removed_count,
            "removed": [
                {"id": str(item.id), "type": item.item_type.value, "name": item.name}
                for item in result.removed
            ],
            "summary": project(result.cart).to_dict(),
        }

    async def _set_quantity(
        self, args: SetQuantityArgs, context: DispatchContext
    ) -> dict[str, Any] | IntentResponse:
        cart_id = self._require_cart(context)
        result = await self.cart_service.set_quantity(
            cart_id, args.quantity, name=args.name, item_id=args.item_id
        )
        return _quantity_payload(result)

    async def _decrease_quantity(
        self, args: DecreaseQuantityArgs, context: DispatchContext
    ) -> dict[str, Any] | IntentResponse:
        cart_id = self._require_cart(context)
        result = await self.cart_service.decrease_quantity(
            cart_id, args.amount, name=args.name, item_id=args.item_id
        )
        return _quantity_payload(result)

    async def _clear_cart(self, args: NoArgs, context: DispatchContext) -> dict[str, Any]:
        cart = await self.cart_service.clear_cart(self._require_cart(context))
        return {"summary": project(cart).to_dict()}

    async def _view_cart(self, args: NoArgs, context: DispatchContext) -> dict[str, Any]:
        summary = await self.cart_service.compute_summary(self._require_cart(context))
        return {"summary": summary.to_dict()}

    async def _get_history(self, args: GetHistoryArgs, context: DispatchContext) -> dict[str, Any]:
        if not context.conversation_id:
            return {"conversation_id": None, "messages": []}
        entries = await self.session_service.get_recent_history(
            context.conversation_id, args.limit
        )
        return {
            "conversation_id": context.conversation_id,
            "messages": [entry.to_dict() for entry in entries],
        }


def _line_for(summary: CartSummary, item_id: str) -> dict[str, Any] | None:
    for line in summary.items:
        if line.item_id == item_id:
            return line.to_dict()
    return None


def _quantity_payload(result: QuantityResult | Disambiguation) -> dict[str, Any] | IntentResponse:
    if isinstance(result, Disambiguation):
        return IntentResponse.failure(
            "Disambiguation",
            "Several items match that name; repeat with an item_id",
            data=result.to_dict(),
        )
    summary = project(result.cart)
    return {
        "item_id": result.item_id,
        "name": result.name,
        "removed": result.removed,
        "item": None if result.removed else _line_for(summary, result.item_id),
        "summary": summary.to_dict(),
    }


def _consume_late_result(task: "asyncio.Future[Any]") -> None:
    # Retrieve the outcome of a task whose caller may have stopped waiting.
    if task.cancelled():
        return
    error = task.exception()
    if error is not None and not isinstance(error, DomainError):
        logger.error("Intent failed after its caller stopped waiting", error=str(error))


def get_intent_dispatcher(request_id: str | None = None) -> IntentDispatcher:
    """Get intent dispatcher instance.

    Args:
        request_id: Request ID for correlation.
    """
    return IntentDispatcher(request_id=request_id)


__all__ = [
    "DispatchContext",
    "INTENT_NAMES",
    "Intent",
    "IntentDispatcher",
    "IntentResponse",
    "MUTATING_INTENTS",
    "get_intent_dispatcher",
    "is_mutating",
]
