"""Run-scoped deduplication of canonical records.

A :class:`Deduplicator` lives for exactly one extraction run.  Records are
keyed by :func:`~src.models.scheme.identity_key`; when the same key is seen
again the records are merged field by field so that later strategies can
fill in detail the first one left blank.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.models.enums import SchemeLevel
from src.models.scheme import CONTENT_FIELDS, CanonicalRecord, IdentityKey, identity_key

logger = structlog.get_logger(__name__)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if value is SchemeLevel.UNKNOWN:
        return True
    return False


def merge_records(base: CanonicalRecord, override: CanonicalRecord) -> CanonicalRecord:
    """Layer *override*'s non-empty fields over *base*.

    A non-empty value in *override* always wins (later observation wins on
    conflict); an empty value never erases a non-empty one.  The later
    ``extracted_at`` is kept.
    """
    merged: dict[str, Any] = base.model_dump()
    for name in CONTENT_FIELDS:
        value = getattr(override, name)
        if not _is_empty(value):
            merged[name] = value
    merged["extracted_at"] = max(base.extracted_at, override.extracted_at)
    return CanonicalRecord(**merged)


class Deduplicator:
    """Map from identity key to the merged record seen so far in this run."""

    def __init__(self) -> None:
        self._records: dict[IdentityKey, CanonicalRecord] = {}
        self._observed = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    @property
    def unique_count(self) -> int:
        return len(self._records)

    @property
    def observed_count(self) -> int:
        """Total records passed to :meth:`observe`, duplicates included."""
        return self._observed

    def get(self, key: IdentityKey) -> CanonicalRecord | None:
        return self._records.get(key)

    def records(self) -> list[CanonicalRecord]:
        """Snapshot of the current unique records in first-seen order."""
        return list(self._records.values())

    def observe(self, record: CanonicalRecord) -> bool:
        """Record *record*; return ``True`` if its identity was new this run."""
        self._observed += 1
        key = identity_key(record)
        existing = self._records.get(key)
        if existing is None:
            self._records[key] = record
            return True

        # Re-assigning an existing key keeps its first-seen position.
        self._records[key] = merge_records(existing, record)
        return False

    def finalize(self) -> list[CanonicalRecord]:
        """Return the unique records and clear the map."""
        records = list(self._records.values())
        logger.debug(
            "deduplicator.finalized",
            unique=len(records),
            observed=self._observed,
        )
        self._records.clear()
        self._observed = 0
        return records
