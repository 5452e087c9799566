"""Application settings read from the environment."""

import os
from typing import Literal

from pydantic import BaseModel, Field

from lorekeeper.utils.logging import env_log_level

ModelTier = Literal["fast", "balanced", "quality"]

MODEL_TIERS: dict[str, str] = {
    "fast": "claude-haiku-4-5-20251001",
    "balanced": "claude-sonnet-4-5-20250929",
    "quality": "claude-sonnet-4-5-20250929",
}


class Settings(BaseModel):
    """Runtime settings for the API service."""

    anthropic_api_key: str | None = None
    model_tier: ModelTier = "balanced"
    max_iterations: int = Field(default=20, ge=1)
    backend_url: str | None = None
    log_level: str = "INFO"
    session_timeout_minutes: int = 60

    @property
    def model(self) -> str:
        return MODEL_TIERS[self.model_tier]


def load_settings() -> Settings:
    """Build settings from LOREKEEPER_* environment variables."""
    return Settings(
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
        model_tier=os.getenv("LOREKEEPER_MODEL_TIER", "balanced"),
        max_iterations=int(os.getenv("LOREKEEPER_MAX_ITERATIONS", "20")),
        backend_url=os.getenv("LOREKEEPER_BACKEND_URL") or None,
        log_level=env_log_level(),
        session_timeout_minutes=int(os.getenv("LOREKEEPER_SESSION_TIMEOUT_MINUTES", "60")),
    )
