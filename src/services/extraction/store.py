"""Persistent scheme store contract and the bundled implementations.

The production document store is an external collaborator; the pipeline
only relies on the :class:`SchemeStore` protocol.  Two implementations ship
with the package:

* :class:`InMemorySchemeStore` -- process-local, used by tests and dry runs.
* :class:`JsonFileSchemeStore` -- the in-memory store persisted to a JSON
  file, used for local runs and as a hand-off format.

Matching follows the identity rules of the pipeline: an ``external_id``
key matches on ``external_id``; a name key matches case-insensitively on
the trimmed ``name``.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import orjson
import structlog
from pydantic import ValidationError

from src.models.enums import IdentityKind, SchemeLevel
from src.models.scheme import IdentityKey, PersistedRecord

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UpsertOutcome:
    created: bool
    record: PersistedRecord | None = None


@runtime_checkable
class SchemeStore(Protocol):
    """Document store keyed by business identity."""

    async def find_by_identity(self, key: IdentityKey) -> PersistedRecord | None: ...

    async def upsert(self, key: IdentityKey, fields: dict[str, Any]) -> UpsertOutcome: ...


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return value is SchemeLevel.UNKNOWN


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemorySchemeStore:
    """Dict-backed store with external-id and name indexes.

    Each upsert runs under an :class:`asyncio.Lock`, so concurrent upserts
    of the same key resolve to last-write-wins.
    """

    def __init__(self) -> None:
        self._docs: dict[str, PersistedRecord] = {}
        self._by_external_id: dict[str, str] = {}
        self._by_name: dict[str, list[str]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._docs)

    def all(self) -> list[PersistedRecord]:
        return list(self._docs.values())

    # -- SchemeStore interface -------------------------------------------------

    async def find_by_identity(self, key: IdentityKey) -> PersistedRecord | None:
        doc_id = self._lookup(key)
        return self._docs.get(doc_id) if doc_id is not None else None

    async def upsert(self, key: IdentityKey, fields: dict[str, Any]) -> UpsertOutcome:
        async with self._lock:
            now = datetime.now(timezone.utc)
            doc_id = self._lookup(key)

            if doc_id is None:
                record = PersistedRecord(**fields, created_at=now, updated_at=now)
                doc_id = uuid.uuid4().hex
                self._put(doc_id, record)
                return UpsertOutcome(created=True, record=record)

            existing = self._docs[doc_id]
            merged = existing.model_dump()
            for name, value in fields.items():
                # An upsert never erases stored content with a blank value.
                if not _is_blank(value):
                    merged[name] = value
            merged["updated_at"] = now
            record = PersistedRecord(**merged)
            self._unindex(doc_id, existing)
            self._put(doc_id, record)
            return UpsertOutcome(created=False, record=record)

    # -- Indexing helpers ------------------------------------------------------

    def _lookup(self, key: IdentityKey) -> str | None:
        if key.kind == IdentityKind.EXTERNAL_ID:
            return self._by_external_id.get(key.value)
        ids = self._by_name.get(key.value.strip().lower())
        return ids[0] if ids else None

    def _put(self, doc_id: str, record: PersistedRecord) -> None:
        self._docs[doc_id] = record
        if record.external_id:
            self._by_external_id[record.external_id] = doc_id
        self._by_name.setdefault(record.name.strip().lower(), []).append(doc_id)

    def _unindex(self, doc_id: str, record: PersistedRecord) -> None:
        if record.external_id and self._by_external_id.get(record.external_id) == doc_id:
            del self._by_external_id[record.external_id]
        name_key = record.name.strip().lower()
        ids = self._by_name.get(name_key, [])
        if doc_id in ids:
            ids.remove(doc_id)
        if not ids:
            self._by_name.pop(name_key, None)


# ---------------------------------------------------------------------------
# JSON file store
# ---------------------------------------------------------------------------


class JsonFileSchemeStore(InMemorySchemeStore):
    """:class:`InMemorySchemeStore` persisted to a JSON file.

    The file is loaded lazily on first access and rewritten atomically by
    :meth:`flush`.  Records are written sorted by identity so that repeated
    runs over the same data produce byte-identical output.  Documents that
    fail validation on load are kept verbatim and written back after the
    valid records; a file that is not a JSON list is never overwritten.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)
        self._loaded = False
        self._dirty = False
        self._unreadable: list[Any] = []

    @property
    def path(self) -> Path:
        return self._path

    async def find_by_identity(self, key: IdentityKey) -> PersistedRecord | None:
        self._ensure_loaded()
        return await super().find_by_identity(key)

    async def upsert(self, key: IdentityKey, fields: dict[str, Any]) -> UpsertOutcome:
        self._ensure_loaded()
        outcome = await super().upsert(key, fields)
        self._dirty = True
        return outcome

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if not self._path.exists():
            logger.debug("store.no_existing_file", path=str(self._path))
            self._loaded = True
            return

        # Parse the whole file before touching the index so a malformed
        # file leaves the store unloaded and never gets overwritten.
        raw = orjson.loads(self._path.read_bytes())
        if not isinstance(raw, list):
            raise ValueError(f"Store file {self._path} does not hold a list of records")

        records: list[PersistedRecord] = []
        unreadable: list[Any] = []
        for doc in raw:
            try:
                records.append(PersistedRecord(**doc))
            except (TypeError, ValidationError):
                logger.warning(
                    "store.parse_error",
                    path=str(self._path),
                    external_id=doc.get("external_id", "unknown") if isinstance(doc, dict) else "unknown",
                    exc_info=True,
                )
                unreadable.append(doc)

        for record in records:
            self._put(uuid.uuid4().hex, record)
        self._unreadable = unreadable
        self._loaded = True
        logger.info(
            "store.loaded",
            path=str(self._path),
            count=len(records),
            unreadable=len(unreadable),
        )

    async def flush(self) -> None:
        """Write all records to disk if anything changed since the last flush."""
        if not self._dirty:
            return

        records = sorted(
            self.all(),
            key=lambda r: (r.external_id or "", r.name.strip().lower()),
        )
        payload = orjson.dumps(
            [r.model_dump(mode="json") for r in records] + self._unreadable,
            option=orjson.OPT_INDENT_2,
        )

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_bytes(payload)
        os.replace(tmp_path, self._path)
        self._dirty = False
        logger.info("store.flushed", path=str(self._path), count=len(records))
