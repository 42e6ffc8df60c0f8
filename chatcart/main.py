"""ChatCart API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatcart.api.carts import router as carts_router
from chatcart.api.chat import router as chat_router
from chatcart.api.conversations import router as conversations_router
from chatcart.api.health import router as health_router
from chatcart.api.intents import router as intents_router
from chatcart.api.middleware import setup_middleware
from chatcart.api.sessions import router as sessions_router
from chatcart.infrastructure.config import settings
from chatcart.infrastructure.logging_config import configure_logging

configure_logging(settings)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    logger.info(
        "Starting ChatCart API",
        version=settings.api_version,
        debug=settings.debug,
        store_backend=settings.store_backend,
    )

    yield

    if settings.store_backend == "sql":
        from chatcart.infrastructure.database import get_engine

        await get_engine().dispose()

    logger.info("Shutting down ChatCart API")


app = FastAPI(
    title="ChatCart API",
    description="Cart and conversation state behind a chat shopping assistant",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware and exception handlers (request ID, error handling)
setup_middleware(app)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(intents_router)
app.include_router(chat_router)
app.include_router(carts_router)
app.include_router(sessions_router)
app.include_router(conversations_router)
