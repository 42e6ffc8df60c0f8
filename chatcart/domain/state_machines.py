"""State machines for domain entities.

Deterministic state machines that define valid state transitions
for carts and chat turns.
"""

from enum import Enum

from chatcart.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Cart State Machine
# ============================================================================


class CartStatus(str, Enum):
    """Cart lifecycle states.

    State diagram:
        ACTIVE ──────── checkout ───────► CHECKED_OUT
          │
          └──────────── abandon ────────► ABANDONED
    """

    ACTIVE = "active"
    CHECKED_OUT = "checked_out"
    ABANDONED = "abandoned"

    def can_transition_to(self, target: "CartStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _CART_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["CartStatus"]:
        """Get list of valid target states."""
        return sorted(_CART_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_editable(self) -> bool:
        """Check if items can be added, removed or changed."""
        return self is CartStatus.ACTIVE

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return len(_CART_TRANSITIONS.get(self, set())) == 0


_CART_TRANSITIONS: dict[CartStatus, set[CartStatus]] = {
    CartStatus.ACTIVE: {CartStatus.CHECKED_OUT, CartStatus.ABANDONED},
    CartStatus.CHECKED_OUT: set(),
    CartStatus.ABANDONED: set(),
}


# ============================================================================
# Turn State Machine
# ============================================================================


class TurnPhase(str, Enum):
    """Phases of one chat turn.

    State diagram:
        ROUTING ──── dispatch ────► EXECUTING
          ▲                            │
          └──────── result ────────────┤
                                       │
        ROUTING ──── respond ──────────┴──► RESPONDING

    A turn alternates between ROUTING and EXECUTING while the external
    runtime proposes intents, and ends in RESPONDING.
    """

    ROUTING = "routing"
    EXECUTING = "executing"
    RESPONDING = "responding"

    def can_transition_to(self, target: "TurnPhase") -> bool:
        return target in _TURN_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["TurnPhase"]:
        return sorted(_TURN_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_terminal(self) -> bool:
        return len(_TURN_TRANSITIONS.get(self, set())) == 0


_TURN_TRANSITIONS: dict[TurnPhase, set[TurnPhase]] = {
    TurnPhase.ROUTING: {TurnPhase.EXECUTING, TurnPhase.RESPONDING},
    TurnPhase.EXECUTING: {TurnPhase.ROUTING, TurnPhase.RESPONDING},
    TurnPhase.RESPONDING: set(),
}


# ============================================================================
# Transition Validators
# ============================================================================


def validate_cart_transition(
    cart_id: str,
    current_status: CartStatus,
    target_status: CartStatus,
) -> None:
    """Validate and raise if cart state transition is invalid.

    Args:
        cart_id: Cart identifier for error message.
        current_status: Current cart status.
        target_status: Target cart status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Cart",
            entity_id=cart_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def validate_turn_transition(
    turn_id: str,
    current_phase: TurnPhase,
    target_phase: TurnPhase,
) -> None:
    """Validate and raise if turn phase transition is invalid.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_phase.can_transition_to(target_phase):
        raise InvalidStateTransitionError(
            entity_type="Turn",
            entity_id=turn_id,
            current_state=current_phase.value,
            target_state=target_phase.value,
            allowed_transitions=[s.value for s in current_phase.allowed_transitions()],
        )
