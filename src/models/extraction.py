from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, Field

from src.models.enums import ExtractionEvent


class ExtractionOptions(BaseModel):
    """Caller-supplied knobs for one extraction run.

    ``max_pages_per_strategy`` of ``None`` lets every strategy use its own
    default budget (500 pages for the paginated API, the full target list
    for sweeps).
    """

    max_pages_per_strategy: int | None = Field(default=None, ge=1)
    page_size: int = Field(default=50, ge=1, le=500)
    inter_request_delay_ms: int = Field(default=1_000, ge=0)
    enrich_details: bool = False
    persist: bool = True
    max_detail_records: int = Field(default=5, ge=0)
    ingest_batch_size: int = Field(default=50, ge=1)
    navigation_timeout_ms: int = Field(default=30_000, ge=1)

    @classmethod
    def from_settings(cls, settings: object, **overrides: Any) -> ExtractionOptions:
        """Build options from the application settings, then apply *overrides*."""
        values: dict[str, Any] = {
            "max_pages_per_strategy": getattr(settings, "max_pages_per_strategy", None),
            "page_size": getattr(settings, "page_size", 50),
            "inter_request_delay_ms": getattr(settings, "inter_request_delay_ms", 1_000),
            "ingest_batch_size": getattr(settings, "ingest_batch_size", 50),
            "navigation_timeout_ms": getattr(settings, "navigation_timeout_ms", 30_000),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class RunResult:
    """Report produced by one extraction run. Immutable once built."""

    discovered: int = 0
    unique_extracted: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    strategy_source: Mapping[str, int] = field(default_factory=dict)
    skipped_no_name: int = 0
    cancelled: bool = False
    used_seed_fallback: bool = False
    seed_version: str | None = None
    duration_seconds: float = 0.0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    errors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "strategy_source", MappingProxyType(dict(self.strategy_source)))
        object.__setattr__(self, "errors", tuple(self.errors))

    def to_dict(self) -> dict:
        """Serialise to a JSON-compatible dictionary."""
        return {
            "discovered": self.discovered,
            "unique_extracted": self.unique_extracted,
            "created": self.created,
            "updated": self.updated,
            "failed": self.failed,
            "strategy_source": dict(self.strategy_source),
            "skipped_no_name": self.skipped_no_name,
            "cancelled": self.cancelled,
            "used_seed_fallback": self.used_seed_fallback,
            "seed_version": self.seed_version,
            "duration_seconds": round(self.duration_seconds, 2),
            "started_at": self.started_at.isoformat(),
            "errors": list(self.errors),
        }


class ProgressEvent(BaseModel):
    """One message on the progress push channel."""

    event: ExtractionEvent
    strategy: str | None = None
    count_so_far: int | None = None
    result: dict | None = None
    message: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
