"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from chatcart.application.cart_service import (
    CartService,
    get_cart_service,
)
from chatcart.application.dispatcher import (
    IntentDispatcher,
    get_intent_dispatcher,
)
from chatcart.application.session_service import (
    SessionService,
    get_session_service,
)
from chatcart.application.turn_service import (
    ChatTurnService,
    get_chat_turn_service,
)

__all__ = [
    "CartService",
    "get_cart_service",
    "ChatTurnService",
    "get_chat_turn_service",
    "IntentDispatcher",
    "get_intent_dispatcher",
    "SessionService",
    "get_session_service",
]
