"""
Serenity Core Settings.

Everything tunable about the labeling backend lives here:
  - Database connection (PostgreSQL in production, SQLite for local runs)
  - Labeler endpoint token
  - Resolver cache TTL and fail-open timeout
  - Vote weighting and consensus threshold
  - Locations of the override document and the bundled fallback dataset
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8",
        env_prefix="SERENITY_", case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "Serenity"
    app_version: str = "1.2.0"
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api/v1"

    # Shared secret for the labeler endpoints. Empty rejects every request.
    labeler_token: str = ""

    # ── PostgreSQL ───────────────────────────────────────────────────────
    db_host: str = "postgres"
    db_port: int = 5432
    db_user: str = "serenity"
    db_password: str = "serenity_secret"
    db_name: str = "serenity"
    db_url: Optional[str] = None
    db_echo: bool = False
    db_timeout_seconds: float = 5.0

    @property
    def database_url(self) -> str:
        if self.db_url:
            return self.db_url
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Classification Resolver ──────────────────────────────────────────
    classification_cache_ttl_seconds: float = 300.0
    classification_cache_max_entries: int = 10_000

    # ── Voting / Consensus ───────────────────────────────────────────────
    vote_weight_floor: float = 0.1
    vote_weight_decay: float = 0.2
    consensus_ai_threshold: float = 0.6
    consensus_model_version: str = "consensus-v1"
    candidate_batch_size: int = 50

    # ── Paths ────────────────────────────────────────────────────────────
    overrides_file: str = "data_runtime/manual_overrides.json"
    channel_data_file: str = str(PACKAGE_DIR / "data" / "channel_data.json")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
