"""SarkariPulse command-line entry point.

Runs one extraction and prints the :class:`RunResult` as JSON::

    python -m src.main --transport http --max-pages 5 --no-persist
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

import orjson
import structlog

from config.settings import Settings, TransportKind, settings as default_settings
from src.logging_config import configure_logging
from src.models.extraction import ExtractionOptions, RunResult
from src.services.extraction import (
    ExtractionPipeline,
    InMemorySchemeStore,
    JsonFileSchemeStore,
    TransportInitError,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sarkari-pulse",
        description="Extract government scheme listings from myScheme.gov.in.",
    )
    parser.add_argument(
        "--transport",
        choices=[k.value for k in TransportKind],
        help="Transport session to use (default: from settings).",
    )
    parser.add_argument("--headed", action="store_true", help="Show the browser window.")
    parser.add_argument("--max-pages", type=int, help="Page / target budget per strategy.")
    parser.add_argument("--page-size", type=int, help="Search API page size.")
    parser.add_argument("--delay-ms", type=int, help="Courtesy delay between requests.")
    parser.add_argument("--enrich", action="store_true", help="Visit detail pages of top records.")
    parser.add_argument("--max-details", type=int, help="Detail pages to visit with --enrich.")
    parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Extract and de-duplicate only; skip the store.",
    )
    parser.add_argument("--store", type=Path, help="JSON store path (default: from settings).")
    return parser


def _settings_from_args(args: argparse.Namespace, base: Settings) -> Settings:
    overrides: dict = {}
    if args.transport:
        overrides["transport"] = TransportKind(args.transport)
    if args.headed:
        overrides["headless"] = False
    if args.store:
        overrides["store_path"] = args.store
    return base.model_copy(update=overrides) if overrides else base


def _options_from_args(args: argparse.Namespace, cfg: Settings) -> ExtractionOptions:
    return ExtractionOptions.from_settings(
        cfg,
        max_pages_per_strategy=args.max_pages,
        page_size=args.page_size,
        inter_request_delay_ms=args.delay_ms,
        enrich_details=args.enrich or None,
        max_detail_records=args.max_details,
        persist=False if args.no_persist else None,
    )


async def _run(args: argparse.Namespace) -> RunResult:
    cfg = _settings_from_args(args, default_settings)
    options = _options_from_args(args, cfg)
    store = InMemorySchemeStore() if args.no_persist else JsonFileSchemeStore(cfg.store_path)
    pipeline = ExtractionPipeline(store=store, settings=cfg)

    handle = pipeline.start_background(options)
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, handle.cancel)
    except NotImplementedError:  # pragma: no cover - Windows event loops
        logger.debug("cli.signal_handler_unavailable")
    return await handle.wait()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        result = asyncio.run(_run(args))
    except TransportInitError as exc:
        logger.error("cli.transport_init_failed", error=str(exc))
        return 2

    sys.stdout.write(orjson.dumps(result.to_dict(), option=orjson.OPT_INDENT_2).decode() + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
