"""API layer module.

Contains FastAPI routers and request/response schemas.
"""

from chatcart.api.carts import router as carts_router
from chatcart.api.chat import router as chat_router
from chatcart.api.conversations import router as conversations_router
from chatcart.api.health import router as health_router
from chatcart.api.intents import router as intents_router
from chatcart.api.sessions import router as sessions_router

__all__ = [
    "carts_router",
    "chat_router",
    "conversations_router",
    "health_router",
    "intents_router",
    "sessions_router",
]
