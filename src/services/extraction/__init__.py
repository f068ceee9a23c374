"""Resilient multi-strategy extraction of myScheme.gov.in scheme listings.

Runs an ordered list of strategies (paginated search API, keyword search,
category and ministry sweeps, DOM scraping) against one transport session,
normalises every captured payload, de-duplicates across strategies and
upserts the result into a scheme store.  A bundled seed set guarantees a
non-empty run.

Public API::

    from src.services.extraction import (
        ExtractionPipeline,
        run_extraction,
        JsonFileSchemeStore,
        PlaywrightTransportSession,
        HttpTransportSession,
    )
"""

from __future__ import annotations

from src.services.extraction.deduplicator import Deduplicator, merge_records
from src.services.extraction.errors import (
    AllStrategiesEmptyError,
    CaptureParseError,
    ExtractionError,
    IngestionError,
    NavigationTimeout,
    TransportInitError,
)
from src.services.extraction.ingestor import IngestionOutcome, Ingestor
from src.services.extraction.normalizer import (
    NormalizationResult,
    locate_collection,
    normalize_capture,
    normalize_element,
)
from src.services.extraction.pipeline import (
    ExtractionHandle,
    ExtractionPipeline,
    run_extraction,
)
from src.services.extraction.progress import (
    CompositeNotifier,
    LoggingProgressNotifier,
    ProgressNotifier,
    QueueProgressNotifier,
)
from src.services.extraction.runner import RunnerReport, StrategyRunner
from src.services.extraction.store import (
    InMemorySchemeStore,
    JsonFileSchemeStore,
    SchemeStore,
    UpsertOutcome,
)
from src.services.extraction.strategies import DEFAULT_STRATEGIES, StrategySpec
from src.services.extraction.transport import (
    CapturePredicate,
    HttpTransportSession,
    PlaywrightTransportSession,
    TransportSession,
    build_transport,
)

__all__ = [
    "AllStrategiesEmptyError",
    "CapturePredicate",
    "CaptureParseError",
    "CompositeNotifier",
    "DEFAULT_STRATEGIES",
    "Deduplicator",
    "ExtractionError",
    "ExtractionHandle",
    "ExtractionPipeline",
    "HttpTransportSession",
    "InMemorySchemeStore",
    "IngestionError",
    "IngestionOutcome",
    "Ingestor",
    "JsonFileSchemeStore",
    "LoggingProgressNotifier",
    "NavigationTimeout",
    "NormalizationResult",
    "PlaywrightTransportSession",
    "ProgressNotifier",
    "QueueProgressNotifier",
    "RunnerReport",
    "SchemeStore",
    "StrategyRunner",
    "StrategySpec",
    "TransportInitError",
    "TransportSession",
    "UpsertOutcome",
    "build_transport",
    "locate_collection",
    "merge_records",
    "normalize_capture",
    "normalize_element",
    "run_extraction",
]
