"""Best-effort batch upsert of finalised records into the scheme store."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from src.models.scheme import CONTENT_FIELDS, CanonicalRecord, identity_key
from src.services.extraction.errors import IngestionError
from src.services.extraction.store import SchemeStore

logger = structlog.get_logger(__name__)

BatchCallback = Callable[[int, int], Awaitable[None]]

DEFAULT_BATCH_SIZE = 50


@dataclass
class IngestionOutcome:
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.failed


class Ingestor:
    """Upserts canonical records, classifying each as created/updated/failed.

    Parameters
    ----------
    store:
        Any :class:`SchemeStore` implementation.
    batch_size:
        Records per batch.  Batches only bound resource usage and pace the
        progress callback; they carry no transactional meaning.
    """

    def __init__(self, store: SchemeStore, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._store = store
        self._batch_size = batch_size

    async def ingest(
        self,
        records: list[CanonicalRecord],
        on_batch: BatchCallback | None = None,
    ) -> IngestionOutcome:
        """Upsert every record; per-record failures never abort the batch.

        Parameters
        ----------
        records:
            The finalised, de-duplicated records.
        on_batch:
            Optional coroutine called after each batch with
            ``(processed_so_far, total)``.
        """
        outcome = IngestionOutcome()
        total = len(records)
        total_batches = (total + self._batch_size - 1) // self._batch_size

        logger.info("ingestor.start", total=total, batches=total_batches)

        for start in range(0, total, self._batch_size):
            batch = records[start : start + self._batch_size]
            for record in batch:
                try:
                    created = await self._upsert_one(record)
                except IngestionError as exc:
                    outcome.failed += 1
                    outcome.errors.append(str(exc))
                    logger.warning(
                        "ingestor.record_failed",
                        key=exc.key,
                        reason=exc.reason,
                    )
                    continue

                if created:
                    outcome.created += 1
                else:
                    outcome.updated += 1

            logger.debug(
                "ingestor.batch_done",
                batch=start // self._batch_size + 1,
                batches=total_batches,
                created=outcome.created,
                updated=outcome.updated,
                failed=outcome.failed,
            )
            if on_batch is not None:
                await on_batch(outcome.processed, total)

        logger.info(
            "ingestor.complete",
            created=outcome.created,
            updated=outcome.updated,
            failed=outcome.failed,
        )
        return outcome

    async def _upsert_one(self, record: CanonicalRecord) -> bool:
        """Upsert one record and return whether it was newly created."""
        key = identity_key(record)
        fields = {name: getattr(record, name) for name in CONTENT_FIELDS}
        fields["extracted_at"] = record.extracted_at
        try:
            existing = await self._store.find_by_identity(key)
            result = await self._store.upsert(key, fields)
        except Exception as exc:
            raise IngestionError(str(key), str(exc) or type(exc).__name__) from exc

        if existing is None and not result.created:
            # Another run created the key between find and upsert.
            logger.debug("ingestor.concurrent_create", key=str(key))
        return result.created
