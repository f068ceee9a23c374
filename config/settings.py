"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. Pipeline settings
use the ``SARKARI_PULSE_`` prefix; credentials issued by the upstream site
use their canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DATA_DIR = Path(__file__).resolve().parents[1] / "src" / "data"


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class TransportKind(StrEnum):
    PLAYWRIGHT = "playwright"
    HTTP = "http"


class Settings(BaseSettings):
    """Central configuration for the SarkariPulse extraction pipeline.

    Environment variables are loaded from a ``.env`` file when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="SARKARI_PULSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Transport ──────────────────────────────────────────────────────
    transport: TransportKind = TransportKind.PLAYWRIGHT
    headless: bool = True
    myscheme_site_url: str = "https://www.myscheme.gov.in"
    myscheme_api_url: str = "https://api.myscheme.gov.in/search/v5/schemes"
    myscheme_api_key: str | None = Field(default=None, validation_alias="MYSCHEME_API_KEY")
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    navigation_timeout_ms: int = Field(default=30_000, ge=1)

    # ── Extraction run defaults ────────────────────────────────────────
    inter_request_delay_ms: int = Field(default=1_000, ge=0)
    page_size: int = Field(default=50, ge=1)
    ingest_batch_size: int = Field(default=50, ge=1)
    max_pages_per_strategy: int | None = Field(default=None, ge=1)

    # ── Storage ────────────────────────────────────────────────────────
    store_path: Path = _DATA_DIR / "schemes" / "extracted_schemes.json"
    seed_path: Path = _DATA_DIR / "schemes" / "seed_schemes.json"

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
