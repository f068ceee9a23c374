"""Extraction pipeline entry points.

:class:`ExtractionPipeline` runs one full extraction:

1. Emit ``extraction-started``.
2. Open a transport session (closed again on every exit path).
3. Run every strategy through :class:`StrategyRunner`, de-duplicating as
   records stream in.
4. Finalise the de-duplicated set and, when ``persist`` is set, upsert it
   through the :class:`Ingestor`.
5. Emit ``extraction-completed`` with the :class:`RunResult`.

Usage::

    from src.services.extraction import ExtractionPipeline, InMemorySchemeStore

    pipeline = ExtractionPipeline(store=InMemorySchemeStore())
    result = await pipeline.run()
    print(result.to_dict())

Only :class:`TransportInitError` propagates to the caller; every other
failure is logged and shrinks the result instead.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial

import structlog

from config.settings import Settings, settings as default_settings
from src.data.seed import load_seed_bundle
from src.models.enums import ExtractionEvent
from src.models.extraction import ExtractionOptions, ProgressEvent, RunResult
from src.models.scheme import CanonicalRecord
from src.services.extraction.deduplicator import Deduplicator
from src.services.extraction.errors import TransportInitError
from src.services.extraction.ingestor import Ingestor, IngestionOutcome
from src.services.extraction.progress import (
    LoggingProgressNotifier,
    ProgressNotifier,
    safe_publish,
)
from src.services.extraction.runner import StrategyRunner
from src.services.extraction.store import InMemorySchemeStore, SchemeStore
from src.services.extraction.strategies import DEFAULT_STRATEGIES, StrategySpec
from src.services.extraction.transport import TransportFactory, build_transport

logger = structlog.get_logger(__name__)

INGESTION_LABEL = "ingestion"


@dataclass
class ExtractionHandle:
    """Handle on a background run started by :meth:`ExtractionPipeline.start_background`."""

    task: asyncio.Task[RunResult]
    cancel_event: asyncio.Event

    def cancel(self) -> None:
        """Request cooperative cancellation; the run still returns a result."""
        self.cancel_event.set()

    @property
    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> RunResult:
        return await self.task


class ExtractionPipeline:
    """Orchestrates transport, strategies, de-duplication and ingestion.

    Parameters
    ----------
    store:
        Destination :class:`SchemeStore`.
    notifier:
        Progress push channel.  Defaults to structured logging.
    transport_factory:
        Zero-argument callable returning a fresh :class:`TransportSession`.
        Defaults to :func:`build_transport` over *settings*.
    settings:
        Application settings; the module singleton when omitted.
    strategies:
        Ordered strategy specs.
    """

    def __init__(
        self,
        store: SchemeStore,
        notifier: ProgressNotifier | None = None,
        transport_factory: TransportFactory | None = None,
        settings: Settings | None = None,
        strategies: tuple[StrategySpec, ...] = DEFAULT_STRATEGIES,
    ) -> None:
        self._settings = settings or default_settings
        self._store = store
        self._notifier: ProgressNotifier = notifier or LoggingProgressNotifier()
        self._transport_factory = transport_factory or partial(build_transport, self._settings)
        self._strategies = strategies
        self._last_result: RunResult | None = None
        self._background: ExtractionHandle | None = None

    @property
    def last_result(self) -> RunResult | None:
        return self._last_result

    async def run(
        self,
        options: ExtractionOptions | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """Execute one extraction run and return its :class:`RunResult`.

        Raises
        ------
        TransportInitError
            If the transport session cannot be opened.
        """
        options = options or ExtractionOptions.from_settings(self._settings)
        cancel_event = cancel_event or asyncio.Event()
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()

        logger.info(
            "extraction.run_start",
            persist=options.persist,
            page_size=options.page_size,
            max_pages_per_strategy=options.max_pages_per_strategy,
            enrich_details=options.enrich_details,
        )
        await self._emit(ProgressEvent(event=ExtractionEvent.STARTED))

        dedup = Deduplicator()
        try:
            async with self._transport_factory() as transport:
                runner = StrategyRunner(
                    transport,
                    dedup,
                    options,
                    notifier=self._notifier,
                    api_url=self._settings.myscheme_api_url,
                    site_url=self._settings.myscheme_site_url,
                    strategies=self._strategies,
                    seed_loader=partial(load_seed_bundle, self._settings.seed_path),
                )
                report = await runner.run(cancel_event)
        except TransportInitError as exc:
            logger.error("extraction.transport_init_failed", error=str(exc))
            await self._emit(ProgressEvent(event=ExtractionEvent.ERROR, message=str(exc)))
            raise

        # -- Finalise and ingest ------------------------------------------
        records = dedup.finalize()
        outcome = IngestionOutcome()
        if options.persist and records:
            outcome = await self._ingest(records, options)
            await self._flush_store()

        result = RunResult(
            discovered=report.discovered,
            unique_extracted=len(records),
            created=outcome.created,
            updated=outcome.updated,
            failed=outcome.failed,
            strategy_source=dict(report.strategy_source),
            skipped_no_name=report.skipped_no_name,
            cancelled=report.cancelled,
            used_seed_fallback=report.used_seed_fallback,
            seed_version=report.seed_version,
            duration_seconds=time.monotonic() - start,
            started_at=started_at,
            errors=tuple(report.errors + outcome.errors),
        )
        self._last_result = result

        logger.info(
            "extraction.run_complete",
            discovered=result.discovered,
            unique=result.unique_extracted,
            created=result.created,
            updated=result.updated,
            failed=result.failed,
            cancelled=result.cancelled,
            used_seed_fallback=result.used_seed_fallback,
            duration_s=round(result.duration_seconds, 2),
        )
        await self._emit(ProgressEvent(event=ExtractionEvent.COMPLETED, result=result.to_dict()))
        return result

    def start_background(self, options: ExtractionOptions | None = None) -> ExtractionHandle:
        """Start :meth:`run` as a detached task and return a handle to it.

        Completion is observable through the notifier and the task result.
        Must be called from within a running event loop.
        """
        if self._background is not None and not self._background.done:
            raise RuntimeError("An extraction run is already in progress")

        cancel_event = asyncio.Event()
        task = asyncio.create_task(self.run(options, cancel_event), name="extraction-run")
        task.add_done_callback(self._on_background_done)
        self._background = ExtractionHandle(task=task, cancel_event=cancel_event)
        logger.info("extraction.background_started")
        return self._background

    # -- Internal helpers ----------------------------------------------------

    async def _ingest(
        self, records: list[CanonicalRecord], options: ExtractionOptions
    ) -> IngestionOutcome:
        ingestor = Ingestor(self._store, batch_size=options.ingest_batch_size)

        async def on_batch(processed: int, total: int) -> None:
            await self._emit(
                ProgressEvent(
                    event=ExtractionEvent.PROGRESS,
                    strategy=INGESTION_LABEL,
                    count_so_far=processed,
                    message=f"{processed}/{total}",
                )
            )

        return await ingestor.ingest(records, on_batch=on_batch)

    async def _flush_store(self) -> None:
        flush = getattr(self._store, "flush", None)
        if flush is None:
            return
        try:
            await flush()
        except OSError:
            logger.error("extraction.store_flush_failed", exc_info=True)

    async def _emit(self, event: ProgressEvent) -> None:
        await safe_publish(self._notifier, event)

    @staticmethod
    def _on_background_done(task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("extraction.background_task_cancelled")
        elif task.exception() is not None:
            logger.error("extraction.background_failed", error=str(task.exception()))


async def run_extraction(
    options: ExtractionOptions | None = None,
    *,
    store: SchemeStore | None = None,
    notifier: ProgressNotifier | None = None,
    transport_factory: TransportFactory | None = None,
    cancel_event: asyncio.Event | None = None,
    settings: Settings | None = None,
) -> RunResult:
    """Run one extraction with an ad-hoc :class:`ExtractionPipeline`.

    The store defaults to an :class:`InMemorySchemeStore`, which is only
    useful with ``persist=False`` or for inspection in tests.
    """
    pipeline = ExtractionPipeline(
        store=store or InMemorySchemeStore(),
        notifier=notifier,
        transport_factory=transport_factory,
        settings=settings,
    )
    return await pipeline.run(options, cancel_event)
