from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, NamedTuple

from pydantic import BaseModel, Field, field_validator

from src.models.enums import IdentityKind, SchemeLevel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RawCapture:
    """A structured response body observed by a transport session."""

    source_url: str
    payload: Any
    captured_at: datetime = field(default_factory=_utcnow)


class IdentityKey(NamedTuple):
    kind: IdentityKind
    value: str

    def __str__(self) -> str:
        return f"{self.kind}:{self.value}"


class CanonicalRecord(BaseModel):
    """One government scheme in the pipeline's normalised shape."""

    model_config = {"populate_by_name": True, "validate_assignment": True}

    external_id: str | None = None
    name: str
    description: str = ""
    ministry: str = ""
    department: str = ""
    category: str = ""
    sub_category: str = ""
    target_audience: str = ""
    level: SchemeLevel = SchemeLevel.UNKNOWN
    region_scope: str = ""  # comma-joined, source order
    launch_date: date | None = None
    source_label: str = ""
    source_url: str = ""
    extracted_at: datetime = Field(default_factory=_utcnow)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("scheme name must not be empty")
        return value

    @field_validator("external_id")
    @classmethod
    def _blank_id_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


# Fields that carry business content; used for field-level merges and upserts.
CONTENT_FIELDS: tuple[str, ...] = (
    "external_id",
    "name",
    "description",
    "ministry",
    "department",
    "category",
    "sub_category",
    "target_audience",
    "level",
    "region_scope",
    "launch_date",
    "source_label",
    "source_url",
)


def identity_key(record: CanonicalRecord) -> IdentityKey:
    """Return the deduplication / matching key for *record*.

    ``external_id`` is authoritative when present; otherwise the trimmed,
    lower-cased name is used.
    """
    if record.external_id:
        return IdentityKey(IdentityKind.EXTERNAL_ID, record.external_id)
    return IdentityKey(IdentityKind.NAME, record.name.strip().lower())


class PersistedRecord(CanonicalRecord):
    """A CanonicalRecord as held by the store, plus storage metadata."""

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    is_active: bool = True
