"""Error taxonomy for the extraction pipeline.

Only :class:`TransportInitError` is ever propagated to a caller of
``run_extraction``.  Every other condition is recoverable: it is logged and
degrades the run to a smaller result.
"""

from __future__ import annotations


class ExtractionError(Exception):
    """Base class for all extraction pipeline errors."""


class TransportInitError(ExtractionError):
    """The browser or HTTP client backing a transport session could not start."""


class NavigationTimeout(ExtractionError):
    """A navigation or request did not settle within its time budget."""

    def __init__(self, url: str, timeout_ms: int) -> None:
        super().__init__(f"Timed out after {timeout_ms} ms loading {url}")
        self.url = url
        self.timeout_ms = timeout_ms


class CaptureParseError(ExtractionError):
    """A response that looked structured could not be decoded."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Could not parse response from {url}: {reason}")
        self.url = url
        self.reason = reason


class IngestionError(ExtractionError):
    """Upserting a single record into the store failed."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Failed to ingest {key}: {reason}")
        self.key = key
        self.reason = reason


class AllStrategiesEmptyError(ExtractionError):
    """Every strategy finished without a single unique record.

    Raised and caught inside the runner to switch to the seed fallback.
    """
