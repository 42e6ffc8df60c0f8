"""Chat turn orchestration.

A turn starts when a user message arrives and ends when the assistant
reply is recorded. In between, the external agent runtime proposes
intents which the turn executes one at a time:

    ROUTING -> EXECUTING -> ROUTING -> ... -> RESPONDING

Each turn has a hard step ceiling and accepts at most one mutating
intent. History appends around the turn are best-effort; cart
mutations inside it are not.
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import structlog

from chatcart.application.cart_service import CartService, get_cart_service
from chatcart.application.dispatcher import (
    DispatchContext,
    Intent,
    IntentDispatcher,
    IntentResponse,
    is_mutating,
)
from chatcart.application.session_service import SessionService, get_session_service
from chatcart.domain.entities import HistoryEntry
from chatcart.domain.exceptions import DomainError, StepLimitExceededError
from chatcart.domain.state_machines import TurnPhase, validate_turn_transition
from chatcart.domain.summary import CartSummary
from chatcart.domain.value_objects import Role
from chatcart.infrastructure.config import settings

logger = structlog.get_logger()

# Outcomes after which a mutating intent may have changed the cart.
_MUTATION_ATTEMPTED = {"Timeout"}


@dataclass
class Turn:
    """State of one chat turn.

    Attributes:
        id: Turn identifier for logs and history metadata.
        owner_id: Owner the turn runs for.
        cart_id: Owner's active cart.
        conversation_id: Conversation the turn belongs to.
        max_steps: Step ceiling for intent dispatches.
        phase: Current phase (state machine).
        steps: Intents dispatched so far.
        mutations: Mutating intents executed so far.
        executed: Per-intent outcome records.
        history: Recent history window handed to the agent runtime.
        conversation_created: Whether the turn started a new conversation.
    """

    id: str
    owner_id: str
    cart_id: str
    conversation_id: str
    max_steps: int
    phase: TurnPhase = TurnPhase.ROUTING
    steps: int = 0
    mutations: int = 0
    executed: list[dict[str, Any]] = field(default_factory=list)
    history: list[HistoryEntry] = field(default_factory=list)
    conversation_created: bool = False

    @property
    def session_token(self) -> str:
        return self.conversation_id

    @property
    def context(self) -> DispatchContext:
        return DispatchContext(
            owner_id=self.owner_id,
            cart_id=self.cart_id,
            conversation_id=self.conversation_id,
        )

    @property
    def is_finished(self) -> bool:
        return self.phase.is_terminal()

    def transition_to(self, phase: TurnPhase) -> None:
        validate_turn_transition(self.id, self.phase, phase)
        self.phase = phase


@dataclass
class TurnOutcome:
    """Final state of a finished turn."""

    turn: Turn
    reply: HistoryEntry
    summary: CartSummary


class ChatTurnService:
    """Runs chat turns around the intent dispatcher."""

    def __init__(
        self,
        cart_service: CartService | None = None,
        session_service: SessionService | None = None,
        dispatcher: IntentDispatcher | None = None,
        max_turn_steps: int | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize service.

        Args:
            cart_service: Cart service.
            session_service: Session service.
            dispatcher: Intent dispatcher.
            max_turn_steps: Step ceiling per turn.
            request_id: Request ID for correlation.
        """
        self.cart_service = cart_service or get_cart_service(request_id=request_id)
        self.session_service = session_service or get_session_service(request_id=request_id)
        self.dispatcher = dispatcher or IntentDispatcher(
            cart_service=self.cart_service,
            session_service=self.session_service,
            request_id=request_id,
        )
        self.max_turn_steps = max_turn_steps or settings.max_turn_steps
        self.request_id = request_id

    async def begin_turn(
        self,
        owner_id: str,
        session_token: str | None,
        message: str | None = None,
        history_limit: int | None = None,
    ) -> Turn:
        """Start a turn for an incoming user message.

        Resolves or creates the conversation, ensures the owner has an
        active cart, records the user message and loads the history
        window for the agent runtime.

        Raises:
            InvalidSessionTokenError: If the session token is malformed.
        """
        resolved = await self.session_service.resolve_or_create_conversation(
            session_token, owner_id
        )
        cart = await self.cart_service.get_or_create_active_cart(owner_id)

        turn = Turn(
            id=str(uuid4()),
            owner_id=owner_id,
            cart_id=str(cart.id),
            conversation_id=resolved.session_token,
            max_steps=self.max_turn_steps,
            conversation_created=resolved.created,
        )

        if message:
            await self._append_best_effort(turn, Role.USER, message)
        try:
            turn.history = await self.session_service.get_recent_history(
                turn.conversation_id, history_limit
            )
        except DomainError as e:
            logger.warning(
                "History unavailable for turn",
                turn_id=turn.id,
                error_kind=e.error_kind,
                request_id=self.request_id,
            )

        logger.info(
            "Turn started",
            turn_id=turn.id,
            owner_id=owner_id,
            cart_id=turn.cart_id,
            conversation_id=turn.conversation_id,
            conversation_created=resolved.created,
            request_id=self.request_id,
        )
        return turn

    async def dispatch(self, turn: Turn, intent: Intent) -> IntentResponse:
        """Execute one intent within a turn.

        Breaching the step ceiling ends the turn; a second mutating
        intent is rejected. Both come back as ``StepLimitExceeded``.
        """
        try:
            self._admit(turn, intent)
        except DomainError as e:
            logger.warning(
                "Intent rejected by turn",
                turn_id=turn.id,
                intent=intent.intent_name,
                error_kind=e.error_kind,
                steps=turn.steps,
                request_id=self.request_id,
            )
            turn.executed.append(_record(intent, e.error_kind))
            return IntentResponse.failure(e.error_kind, e.message, e.details)

        turn.transition_to(TurnPhase.EXECUTING)
        turn.steps += 1
        try:
            response = await self.dispatcher.dispatch(intent, turn.context)
        finally:
            turn.transition_to(TurnPhase.ROUTING)

        if is_mutating(intent.intent_name) and (
            response.ok or response.error_kind in _MUTATION_ATTEMPTED
        ):
            turn.mutations += 1
        turn.executed.append(_record(intent, None if response.ok else response.error_kind))
        return response

    def _admit(self, turn: Turn, intent: Intent) -> None:
        if turn.phase is not TurnPhase.ROUTING:
            validate_turn_transition(turn.id, turn.phase, TurnPhase.EXECUTING)
        if turn.steps >= turn.max_steps:
            turn.transition_to(TurnPhase.RESPONDING)
            raise StepLimitExceededError(
                turn.id, turn.max_steps, "step ceiling reached"
            )
        if is_mutating(intent.intent_name) and turn.mutations >= 1:
            turn.steps += 1
            raise StepLimitExceededError(
                turn.id, 1, "only one cart change is allowed per turn"
            )

    async def finish_turn(
        self,
        turn: Turn,
        reply: str,
        metadata: dict[str, Any] | None = None,
    ) -> TurnOutcome:
        """Finish a turn and record the assistant reply.

        Returns:
            TurnOutcome with the recorded reply and the cart summary.
        """
        if turn.phase is not TurnPhase.RESPONDING:
            turn.transition_to(TurnPhase.RESPONDING)

        entry_metadata = {"turn_id": turn.id, "intents": list(turn.executed)}
        if metadata:
            entry_metadata.update(metadata)
        entry = await self._append_best_effort(
            turn, Role.ASSISTANT, reply, metadata=entry_metadata
        )
        summary = await self.cart_service.compute_summary(turn.cart_id)

        logger.info(
            "Turn finished",
            turn_id=turn.id,
            steps=turn.steps,
            mutations=turn.mutations,
            request_id=self.request_id,
        )
        return TurnOutcome(turn=turn, reply=entry, summary=summary)

    async def _append_best_effort(
        self,
        turn: Turn,
        role: Role,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> HistoryEntry:
        try:
            return await self.session_service.append_message(
                turn.conversation_id, role, content, metadata
            )
        except DomainError as e:
            logger.warning(
                "History append dropped",
                turn_id=turn.id,
                conversation_id=turn.conversation_id,
                role=role.value,
                error_kind=e.error_kind,
                request_id=self.request_id,
            )
            return HistoryEntry(role=role, content=content, metadata=metadata)


def _record(intent: Intent, error_kind: str | None) -> dict[str, Any]:
    return {
        "intent": intent.intent_name,
        "ok": error_kind is None,
        "error_kind": error_kind,
    }


def get_chat_turn_service(request_id: str | None = None) -> ChatTurnService:
    """Get chat turn service instance.

    Args:
        request_id: Request ID for correlation.
    """
    return ChatTurnService(request_id=request_id)
