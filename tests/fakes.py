"""In-memory stand-ins for the transport, store and notifier used in tests."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs, urlparse

from src.models.extraction import ProgressEvent
from src.models.scheme import IdentityKey, RawCapture
from src.services.extraction.errors import TransportInitError
from src.services.extraction.probes import DomSelectors, ProbeOutcome
from src.services.extraction.progress import BaseProgressNotifier
from src.services.extraction.store import InMemorySchemeStore, UpsertOutcome
from src.services.extraction.transport import BaseTransportSession


def query_of(url: str) -> dict[str, str]:
    """Flatten a URL's query string into a plain dict."""
    return {k: v[0] for k, v in parse_qs(urlparse(url).query, keep_blank_values=True).items()}


def hits_payload(*elements: dict) -> dict:
    """Wrap elements the way the myScheme search API does."""
    return {"data": {"hits": {"items": list(elements)}, "summary": {"total": len(elements)}}}


def api_item(external_id: str, name: str, **fields: Any) -> dict:
    return {"id": external_id, "fields": {"schemeName": name, **fields}}


class FakeTransport(BaseTransportSession):
    """Scripted transport session.

    Parameters
    ----------
    direct:
        ``url -> payload | None`` answering :meth:`fetch_direct`.
    pages:
        ``url -> list[payload]`` of responses "observed" while visiting a page.
    dom:
        Payload returned by :meth:`scrape_dom`, if any.
    fail_open:
        Make :meth:`open` raise :class:`TransportInitError`.
    """

    def __init__(
        self,
        *,
        direct: Callable[[str], Any] | None = None,
        pages: Callable[[str], list] | None = None,
        dom: list | None = None,
        fail_open: bool = False,
    ) -> None:
        super().__init__()
        self._direct = direct or (lambda url: None)
        self._pages = pages or (lambda url: [])
        self._dom = dom
        self._fail_open = fail_open
        self.opened = False
        self.closed = False
        self.fetched: list[str] = []
        self.fetched_at: list[float] = []
        self.visited: list[str] = []

    async def open(self) -> None:
        if self._fail_open:
            raise TransportInitError("Chromium executable not found")
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def goto(self, url: str, timeout_ms: int | None = None) -> bool:
        self.visited.append(url)
        for payload in self._pages(url):
            self._captures.append(RawCapture(source_url=url, payload=payload))
        return True

    async def fetch_direct(self, url: str) -> RawCapture | None:
        self.fetched.append(url)
        self.fetched_at.append(time.monotonic())
        payload = self._direct(url)
        if payload is None:
            return None
        return RawCapture(source_url=url, payload=payload)

    async def trigger_load(self) -> list[ProbeOutcome]:
        return []

    async def scrape_dom(self, selectors: DomSelectors | None = None) -> RawCapture | None:
        if not self._dom:
            return None
        return RawCapture(source_url=self.visited[-1] if self.visited else "", payload=self._dom)


class BlockingTransport(FakeTransport):
    """Transport whose direct fetch never returns until cancelled."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()

    async def fetch_direct(self, url: str) -> RawCapture | None:
        self.entered.set()
        await asyncio.sleep(3600)
        return None


class RecordingNotifier(BaseProgressNotifier):
    def __init__(self, on_event: Callable[[ProgressEvent], None] | None = None) -> None:
        self.events: list[ProgressEvent] = []
        self._on_event = on_event

    async def publish(self, event: ProgressEvent) -> None:
        self.events.append(event)
        if self._on_event is not None:
            self._on_event(event)

    def names(self) -> list[str]:
        return [str(e.event) for e in self.events]


class FlakyStore(InMemorySchemeStore):
    """In-memory store that rejects upserts for the given key values."""

    def __init__(self, reject: set[str]) -> None:
        super().__init__()
        self._reject = reject

    async def upsert(self, key: IdentityKey, fields: dict[str, Any]) -> UpsertOutcome:
        if key.value in self._reject:
            raise ConnectionError("write concern timeout")
        return await super().upsert(key, fields)
