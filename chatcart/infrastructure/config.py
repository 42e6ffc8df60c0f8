"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CHATCART_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Store
    store_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "postgresql+asyncpg://chatcart:chatcart_dev_password@db:5432/chatcart"
    store_max_attempts: int = Field(default=8, ge=1)
    store_retry_base_delay: float = Field(default=0.05, ge=0)
    store_retry_max_delay: float = Field(default=1.0, ge=0)

    # Conversations
    history_window: int = Field(default=10, ge=1)

    # Intent dispatch
    intent_timeout_seconds: float = Field(default=10.0, gt=0)
    max_turn_steps: int = Field(default=5, ge=1)

    # Logging
    log_level: str = "INFO"
    log_json: bool = True


settings = Settings()
