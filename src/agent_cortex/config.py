"""Configuration settings, loaded from CORTEX_* environment variables."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CortexSettings(BaseSettings):
    """Settings for one brain. Every field has a working default."""

    model_config = SettingsConfigDict(
        env_prefix="CORTEX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    db_path: str = "brain.db"

    # Memory retrieval
    embedding_dims: int = Field(default=384, ge=1)
    match_threshold: float = Field(default=0.1, ge=0.0, le=1.0)

    # Planner
    planner_max_depth: int = Field(default=3, ge=1)
    planner_branch_factor: int = Field(default=3, ge=1)

    # think() fan-out
    max_workers: int = Field(default=5, ge=1)


@lru_cache
def get_settings() -> CortexSettings:
    """Get cached settings instance."""
    return CortexSettings()
