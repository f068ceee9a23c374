"""Strategy runner: drives every extraction strategy against one session.

The runner walks :data:`DEFAULT_STRATEGIES` in order.  After every
sub-request (one API page, one keyword search, one filter value) it drains
the session's capture buffer, normalises what was captured and feeds the
records straight into the run's :class:`Deduplicator`, then publishes a
progress event.  Nothing is buffered across sub-requests, so a run that is
cancelled or crashes mid-way has already de-duplicated everything it saw.

Cancellation is cooperative: the cancel event is checked between
sub-requests and between strategies.  A sub-request that is already in
flight always completes.

If every live strategy finishes with zero unique records (cancelled runs
included) the bundled seed data is loaded as the last-resort strategy.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from src.data.seed import SeedBundle, load_seed_bundle
from src.models.enums import ExtractionEvent, RunnerState, StrategyKind
from src.models.extraction import ExtractionOptions, ProgressEvent
from src.models.scheme import RawCapture, identity_key
from src.services.extraction.deduplicator import Deduplicator
from src.services.extraction.errors import AllStrategiesEmptyError
from src.services.extraction.normalizer import normalize_capture
from src.services.extraction.progress import ProgressNotifier, safe_publish
from src.services.extraction.strategies import (
    DEFAULT_MAX_PAGES,
    DEFAULT_STRATEGIES,
    ENRICHMENT_LABEL,
    StrategySpec,
    build_detail_page_url,
    build_search_api_url,
    build_search_page_url,
)
from src.services.extraction.transport import TransportSession

logger = structlog.get_logger(__name__)

SeedLoader = Callable[[], SeedBundle]


@dataclass
class RunnerReport:
    """What the runner observed; the pipeline turns it into a RunResult."""

    strategy_source: dict[str, int] = field(default_factory=dict)
    discovered: int = 0
    skipped_no_name: int = 0
    cancelled: bool = False
    used_seed_fallback: bool = False
    seed_version: str | None = None
    errors: list[str] = field(default_factory=list)


class StrategyRunner:
    """Runs the ordered strategy list against an open transport session.

    Parameters
    ----------
    transport:
        An opened :class:`TransportSession`.
    deduplicator:
        Run-scoped deduplicator that receives every normalised record.
    options:
        Per-run knobs (page size, page budget, delays, enrichment).
    notifier:
        Receives one ``extraction-progress`` event per sub-request.
    api_url / site_url:
        Base URLs of the search API and the public site.
    strategies:
        Ordered strategy specs.  Defaults to :data:`DEFAULT_STRATEGIES`.
    seed_loader:
        Returns the seed bundle for the last-resort strategy.
    """

    def __init__(
        self,
        transport: TransportSession,
        deduplicator: Deduplicator,
        options: ExtractionOptions,
        *,
        notifier: ProgressNotifier | None = None,
        api_url: str = "https://api.myscheme.gov.in/search/v5/schemes",
        site_url: str = "https://www.myscheme.gov.in",
        strategies: tuple[StrategySpec, ...] = DEFAULT_STRATEGIES,
        seed_loader: SeedLoader = load_seed_bundle,
    ) -> None:
        self._transport = transport
        self._dedup = deduplicator
        self._options = options
        self._notifier = notifier
        self._api_url = api_url
        self._site_url = site_url
        self._strategies = strategies
        self._seed_loader = seed_loader
        self._cancel_event = asyncio.Event()

        self._state = RunnerState.PENDING
        self._current_strategy: str | None = None
        self._report = RunnerReport()

    # -- Public state ------------------------------------------------------

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def current_strategy(self) -> str | None:
        return self._current_strategy

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # -- Run ---------------------------------------------------------------

    async def run(self, cancel_event: asyncio.Event | None = None) -> RunnerReport:
        """Run every strategy once and return the run's report."""
        if self._state is not RunnerState.PENDING:
            raise RuntimeError("StrategyRunner instances are single-use")
        if cancel_event is not None:
            self._cancel_event = cancel_event

        self._state = RunnerState.RUNNING
        live = [s for s in self._strategies if not s.is_fallback]
        fallback = next((s for s in self._strategies if s.is_fallback), None)

        try:
            for spec in live:
                if self.cancelled:
                    logger.info("runner.cancelled_before_strategy", strategy=spec.name)
                    break
                await self._run_strategy(spec)

            if self._options.enrich_details and not self.cancelled and self._dedup.unique_count:
                await self._enrich_details()

            try:
                self._ensure_not_empty()
            except AllStrategiesEmptyError as exc:
                logger.warning("runner.all_strategies_empty", cancelled=self.cancelled)
                self._report.errors.append(str(exc))
                if fallback is not None:
                    await self._run_seed_fallback(fallback)
        finally:
            self._report.cancelled = self.cancelled
            self._current_strategy = None
            self._state = RunnerState.COMPLETED

        return self._report

    def _ensure_not_empty(self) -> None:
        if self._dedup.unique_count == 0:
            raise AllStrategiesEmptyError("No strategy produced any scheme records")

    async def _run_strategy(self, spec: StrategySpec) -> None:
        self._current_strategy = spec.name
        self._report.strategy_source.setdefault(spec.name, 0)
        before = self._dedup.unique_count
        start = time.monotonic()
        logger.info("runner.strategy_start", strategy=spec.name, kind=str(spec.kind))

        try:
            if spec.kind is StrategyKind.PAGINATED_API:
                await self._run_paginated(spec)
            elif spec.kind is StrategyKind.KEYWORD_SEARCH:
                await self._run_keyword_search(spec)
            elif spec.kind is StrategyKind.FILTER_SWEEP:
                await self._run_filter_sweep(spec)
            elif spec.kind is StrategyKind.DOM_FALLBACK:
                await self._run_dom_fallback(spec)
            else:
                logger.warning("runner.unknown_strategy_kind", strategy=spec.name, kind=str(spec.kind))
        except Exception as exc:
            self._report.errors.append(f"{spec.name}: {exc}")
            logger.error("runner.strategy_failed", strategy=spec.name, error=str(exc), exc_info=True)

        logger.info(
            "runner.strategy_complete",
            strategy=spec.name,
            records=self._report.strategy_source[spec.name],
            new_unique=self._dedup.unique_count - before,
            unique_total=self._dedup.unique_count,
            elapsed_s=round(time.monotonic() - start, 2),
        )

    # -- Strategy kinds ----------------------------------------------------

    async def _run_paginated(self, spec: StrategySpec) -> None:
        max_pages = self._options.max_pages_per_strategy or spec.max_pages or DEFAULT_MAX_PAGES
        size = self._options.page_size
        base = spec.url_template or self._api_url

        for page in range(max_pages):
            if not await self._before_sub_request(first=page == 0):
                return
            url = build_search_api_url(base, from_=page * size, size=size)
            direct = await self._transport.fetch_direct(url)
            located = await self._absorb(spec.name, await self._collect(direct))
            if located == 0:
                logger.info("runner.pagination_exhausted", strategy=spec.name, page=page + 1)
                return

    async def _run_keyword_search(self, spec: StrategySpec) -> None:
        base = spec.url_template or self._site_url
        for i, keyword in enumerate(self._limit(spec.targets)):
            if not await self._before_sub_request(first=i == 0):
                return
            await self._transport.goto(
                build_search_page_url(base, keyword),
                self._options.navigation_timeout_ms,
            )
            await self._transport.trigger_load()
            await self._absorb(spec.name, await self._collect())

    async def _run_filter_sweep(self, spec: StrategySpec) -> None:
        if not spec.filter_field:
            logger.warning("runner.sweep_without_filter_field", strategy=spec.name)
            return
        base = spec.url_template or self._api_url
        for i, value in enumerate(self._limit(spec.targets)):
            if not await self._before_sub_request(first=i == 0):
                return
            url = build_search_api_url(
                base,
                from_=0,
                size=self._options.page_size,
                filters={spec.filter_field: value},
            )
            direct = await self._transport.fetch_direct(url)
            await self._absorb(spec.name, await self._collect(direct))

    async def _run_dom_fallback(self, spec: StrategySpec) -> None:
        if not await self._before_sub_request(first=True):
            return
        base = spec.url_template or self._site_url
        await self._transport.goto(
            build_search_page_url(base),
            self._options.navigation_timeout_ms,
        )
        await self._transport.trigger_load()
        scraped = await self._transport.scrape_dom()
        await self._absorb(spec.name, await self._collect(scraped))

    async def _run_seed_fallback(self, spec: StrategySpec) -> None:
        self._current_strategy = spec.name
        try:
            bundle = self._seed_loader()
        except (OSError, ValueError) as exc:
            self._report.errors.append(f"{spec.name}: {exc}")
            logger.error("runner.seed_load_failed", error=str(exc))
            return

        count = 0
        for record in bundle.records:
            self._dedup.observe(record)
            count += 1
        self._report.strategy_source[spec.name] = count
        self._report.discovered += count
        self._report.used_seed_fallback = True
        self._report.seed_version = bundle.version
        logger.warning("runner.seed_fallback_used", version=bundle.version, records=count)
        await self._publish_progress(spec.name)

    async def _enrich_details(self) -> None:
        """Visit detail pages of the first records and merge what they reveal."""
        self._current_strategy = ENRICHMENT_LABEL
        targets = [r for r in self._dedup.records() if r.external_id]
        targets = targets[: self._options.max_detail_records]
        merged = 0

        for i, record in enumerate(targets):
            if not await self._before_sub_request(first=i == 0):
                break
            await self._transport.goto(
                build_detail_page_url(self._site_url, record.external_id or ""),
                self._options.navigation_timeout_ms,
            )
            for capture in await self._transport.drain_captures():
                result = normalize_capture(capture, ENRICHMENT_LABEL)
                for detail in result.records:
                    # Detail pages only refine records already found.
                    if identity_key(detail) not in self._dedup:
                        continue
                    self._dedup.observe(detail.model_copy(update={"source_label": ""}))
                    merged += 1

        self._report.strategy_source[ENRICHMENT_LABEL] = merged
        logger.info("runner.enrichment_complete", visited=len(targets), merged=merged)

    # -- Sub-request plumbing ----------------------------------------------

    def _limit(self, targets: tuple[str, ...]) -> tuple[str, ...]:
        cap = self._options.max_pages_per_strategy
        return targets[:cap] if cap else targets

    async def _before_sub_request(self, *, first: bool) -> bool:
        """Courtesy delay, then report whether the run may continue."""
        if self.cancelled:
            return False
        if not first:
            await self._pause()
        return not self.cancelled

    async def _pause(self) -> None:
        delay = self._options.inter_request_delay_ms / 1000
        if delay <= 0:
            return
        # Wake early on cancellation.
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _collect(self, extra: RawCapture | None = None) -> list[RawCapture]:
        captures = await self._transport.drain_captures()
        if extra is not None:
            captures.insert(0, extra)
        return captures

    async def _absorb(self, strategy: str, captures: list[RawCapture]) -> int:
        """Normalise *captures* into the deduplicator; return items located."""
        located = 0
        for capture in captures:
            result = normalize_capture(capture, strategy)
            located += result.located
            self._report.skipped_no_name += result.skipped_no_name
            for record in result.records:
                self._dedup.observe(record)
            self._report.strategy_source[strategy] = (
                self._report.strategy_source.get(strategy, 0) + len(result.records)
            )
            self._report.discovered += len(result.records)

        await self._publish_progress(strategy)
        return located

    async def _publish_progress(self, strategy: str) -> None:
        if self._notifier is None:
            return
        await safe_publish(
            self._notifier,
            ProgressEvent(
                event=ExtractionEvent.PROGRESS,
                strategy=strategy,
                count_so_far=self._dedup.unique_count,
            ),
        )
