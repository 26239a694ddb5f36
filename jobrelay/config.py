"""jobrelay configuration."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-driven settings for the job relay service."""

    # Shared secret for callback authentication (required, no default)
    shared_secret: str = Field(min_length=1)

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Jobs
    processing_timeout_seconds: float = 300.0
    callback_providers: list[str] = ["fireworks"]
    public_base_url: str = ""

    # Realtime
    outbound_queue_size: int = 500

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def timeout_message(self) -> str:
        minutes = self.processing_timeout_seconds / 60
        return f"Processing exceeded the time limit ({minutes:g} minutes)"


@lru_cache
def get_settings() -> Settings:
    return Settings()
