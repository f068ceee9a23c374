"""Transport sessions: the only code that talks to myscheme.gov.in.

A transport session owns one browser (or HTTP client) for the lifetime of
an extraction run and offers two ways of getting structured data:

* **Passive capture** -- every response whose URL matches the capture
  predicate (``api`` + ``scheme`` or ``api`` + ``search``) and whose
  content type is JSON is decoded and appended to a buffer.  Callers drain
  the buffer after each sub-request so strategies never see each other's
  captures.
* **Direct fetch** -- a request to the search API carrying the headers a
  real browser on the site would send (User-Agent, Referer, Origin and,
  when configured, the site-issued ``x-api-key``).

Failure semantics
-----------------
``open()`` raises :class:`TransportInitError` when the underlying resource
cannot be acquired.  Every other method degrades to an empty result and
logs why; a single broken navigation must never abort a run.

Two implementations are provided:

* :class:`PlaywrightTransportSession` -- headless Chromium via Playwright,
  needed when listings are only loaded by client-side JavaScript.
* :class:`HttpTransportSession` -- plain ``httpx``; no script execution,
  but it still captures JSON endpoints and the Next.js ``__NEXT_DATA__``
  block embedded in server-rendered pages.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
import structlog
from bs4 import BeautifulSoup

from src.models.scheme import RawCapture
from src.services.extraction.errors import (
    CaptureParseError,
    NavigationTimeout,
    TransportInitError,
)
from src.services.extraction.probes import (
    DEFAULT_DOM_SELECTORS,
    DEFAULT_PROBES,
    DomSelectors,
    ProbeAction,
    ProbeOutcome,
    TriggerProbe,
)

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright, Response

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_NEXT_DATA_RE = re.compile(
    r'<script\s+id="__NEXT_DATA__"\s+type="application/json"[^>]*>\s*(.*?)\s*</script>',
    re.DOTALL,
)

_MINISTRY_RE = re.compile(r"ministry[:\s]+([^,\n]+)", re.IGNORECASE)
_CATEGORY_RE = re.compile(r"category[:\s]+([^,\n]+)", re.IGNORECASE)

_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Runs in the page; mirrors HttpTransportSession._extract_cards.
_DOM_EXTRACT_JS = """
(sel) => {
  const firstText = (root, selectors, exclude) => {
    for (const s of selectors) {
      let el = null;
      try { el = root.querySelector(s); } catch (e) { continue; }
      const text = el && el.textContent ? el.textContent.trim() : '';
      if (text && text !== exclude) return text;
    }
    return '';
  };
  let elements = [];
  for (const s of sel.containers) {
    let found = [];
    try { found = document.querySelectorAll(s); } catch (e) { continue; }
    if (found.length > 0) { elements = Array.from(found); break; }
  }
  return elements.map((el) => {
    const name = firstText(el, sel.names, null);
    return {
      name: name,
      description: firstText(el, sel.descriptions, name),
      text: (el.textContent || '').trim(),
    };
  });
}
"""


# ---------------------------------------------------------------------------
# Capture predicate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CapturePredicate:
    """Decides which observed responses are worth decoding.

    A URL matches when it contains every token of at least one group
    (case-insensitive).
    """

    token_groups: tuple[tuple[str, ...], ...] = (("api", "scheme"), ("api", "search"))

    def matches_url(self, url: str) -> bool:
        lowered = url.lower()
        return any(all(token in lowered for token in group) for group in self.token_groups)

    def accepts(self, url: str, status: int, content_type: str) -> bool:
        return status == 200 and "json" in content_type.lower() and self.matches_url(url)


DEFAULT_PREDICATE = CapturePredicate()


# ---------------------------------------------------------------------------
# Session protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class TransportSession(Protocol):
    """Navigable session with passive response capture."""

    async def open(self) -> None: ...

    async def goto(self, url: str, timeout_ms: int | None = None) -> bool: ...

    async def fetch_direct(self, url: str) -> RawCapture | None: ...

    async def trigger_load(self) -> list[ProbeOutcome]: ...

    async def scrape_dom(self, selectors: DomSelectors | None = None) -> RawCapture | None: ...

    async def drain_captures(self) -> list[RawCapture]: ...

    async def close(self) -> None: ...

    async def __aenter__(self) -> TransportSession: ...

    async def __aexit__(self, *exc_info: object) -> None: ...


TransportFactory = Callable[[], TransportSession]


def _cards_to_records(cards: list[dict], min_name_length: int) -> list[dict]:
    """Turn raw DOM cards into normaliser-friendly dicts."""
    records: list[dict] = []
    for card in cards:
        name = (card.get("name") or "").strip()
        if len(name) < min_name_length:
            continue
        text = card.get("text") or ""
        record: dict[str, Any] = {"name": name, "description": card.get("description") or ""}
        if match := _MINISTRY_RE.search(text):
            record["ministry"] = match.group(1).strip()
        if match := _CATEGORY_RE.search(text):
            record["category"] = match.group(1).strip()
        records.append(record)
    return records


class BaseTransportSession:
    """Shared capture buffer, header set and lifecycle plumbing."""

    def __init__(
        self,
        *,
        site_url: str = "https://www.myscheme.gov.in",
        user_agent: str = DEFAULT_USER_AGENT,
        api_key: str | None = None,
        navigation_timeout_ms: int = 30_000,
        predicate: CapturePredicate = DEFAULT_PREDICATE,
        probes: tuple[TriggerProbe, ...] = DEFAULT_PROBES,
    ) -> None:
        self._site_url = site_url.rstrip("/")
        self._user_agent = user_agent
        self._api_key = api_key
        self._navigation_timeout_ms = navigation_timeout_ms
        self._predicate = predicate
        self._probes = probes
        self._captures: list[RawCapture] = []

    # -- Context manager ---------------------------------------------------

    async def __aenter__(self) -> BaseTransportSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def open(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    # -- Capture buffer ----------------------------------------------------

    @property
    def predicate(self) -> CapturePredicate:
        return self._predicate

    async def drain_captures(self) -> list[RawCapture]:
        """Return and clear everything captured since the last drain."""
        captures, self._captures = self._captures, []
        return captures

    # -- Headers -----------------------------------------------------------

    def api_headers(self) -> dict[str, str]:
        """Headers a browser on the search page sends to the search API."""
        headers = {
            "User-Agent": self._user_agent,
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": "en-US,en;q=0.9",
            "Referer": f"{self._site_url}/search",
            "Origin": self._site_url,
        }
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    def _decode_json(self, url: str, text: str) -> Any:
        try:
            return json.loads(text)
        except (json.JSONDecodeError, ValueError) as exc:
            raise CaptureParseError(url, str(exc)) from exc


# ---------------------------------------------------------------------------
# Playwright implementation
# ---------------------------------------------------------------------------


class PlaywrightTransportSession(BaseTransportSession):
    """Headless Chromium session with network interception.

    Parameters
    ----------
    headless:
        Run Chromium without a window.  Defaults to ``True``.
    **kwargs:
        Forwarded to :class:`BaseTransportSession`.
    """

    def __init__(self, *, headless: bool = True, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._headless = headless
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._pending: set[asyncio.Task] = set()  # type: ignore[type-arg]

    # -- Lifecycle ---------------------------------------------------------

    async def open(self) -> None:
        if self._page is not None:
            return

        from playwright.async_api import async_playwright

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=_BROWSER_ARGS,
            )
            self._context = await self._browser.new_context(
                user_agent=self._user_agent,
                viewport={"width": 1920, "height": 1080},
                extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
            )
            self._page = await self._context.new_page()
        except Exception as exc:
            await self.close()
            raise TransportInitError(f"Could not start Chromium: {exc}") from exc

        self._page.on("response", self._on_response)
        logger.info("transport.browser_opened", headless=self._headless)

    async def close(self) -> None:
        from playwright.async_api import Error as PlaywrightError

        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

        for name, resource in (("context", self._context), ("browser", self._browser)):
            if resource is None:
                continue
            try:
                await resource.close()
            except PlaywrightError:
                logger.warning("transport.close_failed", resource=name, exc_info=True)

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError:
                logger.warning("transport.close_failed", resource="playwright", exc_info=True)

        was_open = self._page is not None
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
        if was_open:
            logger.info("transport.browser_closed")

    # -- Passive capture ---------------------------------------------------

    def _on_response(self, response: Response) -> None:
        content_type = response.headers.get("content-type", "")
        if not self._predicate.accepts(response.url, response.status, content_type):
            return
        task = asyncio.ensure_future(self._capture_response(response))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _capture_response(self, response: Response) -> None:
        try:
            body = self._decode_json(response.url, await response.text())
        except CaptureParseError as exc:
            logger.warning("transport.capture_parse_failed", url=exc.url, reason=exc.reason)
            return
        except Exception:
            # Body unavailable (redirect, page navigated away mid-read).
            logger.debug("transport.capture_body_unavailable", url=response.url, exc_info=True)
            return
        self._captures.append(RawCapture(source_url=response.url, payload=body))
        logger.debug("transport.captured", url=response.url)

    async def drain_captures(self) -> list[RawCapture]:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        return await super().drain_captures()

    # -- Navigation --------------------------------------------------------

    async def goto(self, url: str, timeout_ms: int | None = None) -> bool:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        if self._page is None:
            logger.warning("transport.not_open", url=url)
            return False

        timeout = timeout_ms or self._navigation_timeout_ms
        try:
            await self._page.goto(url, wait_until="networkidle", timeout=timeout)
            return True
        except PlaywrightTimeoutError:
            exc = NavigationTimeout(url, timeout)
            logger.warning("transport.navigation_timeout", url=url, timeout_ms=exc.timeout_ms)
            return False
        except PlaywrightError:
            logger.warning("transport.navigation_failed", url=url, exc_info=True)
            return False

    async def fetch_direct(self, url: str) -> RawCapture | None:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        if self._context is None:
            logger.warning("transport.not_open", url=url)
            return None

        try:
            response = await self._context.request.get(
                url,
                headers=self.api_headers(),
                timeout=self._navigation_timeout_ms,
            )
            if not response.ok:
                logger.warning("transport.direct_fetch_status", url=url, status=response.status)
                return None
            body = self._decode_json(url, await response.text())
        except PlaywrightTimeoutError:
            logger.warning(
                "transport.navigation_timeout", url=url, timeout_ms=self._navigation_timeout_ms
            )
            return None
        except CaptureParseError as exc:
            logger.warning("transport.capture_parse_failed", url=exc.url, reason=exc.reason)
            return None
        except PlaywrightError:
            logger.warning("transport.direct_fetch_failed", url=url, exc_info=True)
            return None

        return RawCapture(source_url=url, payload=body)

    # -- Trigger probes ----------------------------------------------------

    async def trigger_load(self) -> list[ProbeOutcome]:
        from playwright.async_api import Error as PlaywrightError

        outcomes: list[ProbeOutcome] = []
        if self._page is None:
            return outcomes

        for probe in self._probes:
            try:
                fired = await self._run_probe(probe)
            except PlaywrightError as exc:
                logger.debug("transport.probe_failed", probe=probe.name, error=str(exc))
                outcomes.append(ProbeOutcome(probe.name, fired=False, error=str(exc)))
                continue
            outcomes.append(ProbeOutcome(probe.name, fired=fired))

        logger.debug(
            "transport.probes_run",
            fired=[o.name for o in outcomes if o.fired],
            failed=[o.name for o in outcomes if o.error],
        )
        return outcomes

    async def _run_probe(self, probe: TriggerProbe) -> bool:
        page = self._page
        if page is None:
            return False

        if probe.action is ProbeAction.SCROLL:
            await page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
            await page.wait_for_timeout(probe.wait_ms)
            return True

        for selector in probe.selectors:
            locator = page.locator(selector).first
            if not await locator.is_visible():
                continue
            if probe.action is ProbeAction.CLICK:
                await locator.click(timeout=2_000)
            else:
                await locator.press("Enter", timeout=2_000)
            await page.wait_for_timeout(probe.wait_ms)
            return True
        return False

    # -- DOM fallback ------------------------------------------------------

    async def scrape_dom(self, selectors: DomSelectors | None = None) -> RawCapture | None:
        from playwright.async_api import Error as PlaywrightError

        if self._page is None:
            return None

        sel = selectors or DEFAULT_DOM_SELECTORS
        try:
            cards = await self._page.evaluate(
                _DOM_EXTRACT_JS,
                {
                    "containers": list(sel.containers),
                    "names": list(sel.names),
                    "descriptions": list(sel.descriptions),
                },
            )
        except PlaywrightError:
            logger.warning("transport.dom_scrape_failed", url=self._page.url, exc_info=True)
            return None

        records = _cards_to_records(cards or [], sel.min_name_length)
        if not records:
            return None
        return RawCapture(source_url=self._page.url, payload=records)


# ---------------------------------------------------------------------------
# httpx implementation
# ---------------------------------------------------------------------------


class HttpTransportSession(BaseTransportSession):
    """Browserless session built on ``httpx.AsyncClient``.

    Parameters
    ----------
    transport:
        Optional ``httpx`` transport, e.g. ``httpx.MockTransport`` in tests.
    **kwargs:
        Forwarded to :class:`BaseTransportSession`.
    """

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._last_html: str | None = None
        self._last_url: str | None = None

    async def open(self) -> None:
        if self._client is not None:
            return
        try:
            self._client = httpx.AsyncClient(
                timeout=self._navigation_timeout_ms / 1000,
                headers={
                    "User-Agent": self._user_agent,
                    "Accept": "text/html,application/json;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                },
                follow_redirects=True,
                limits=httpx.Limits(max_connections=5, max_keepalive_connections=2),
                transport=self._transport,
            )
        except Exception as exc:
            raise TransportInitError(f"Could not create HTTP client: {exc}") from exc
        logger.info("transport.http_client_opened")

    async def close(self) -> None:
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None
        logger.info("transport.http_client_closed")

    async def goto(self, url: str, timeout_ms: int | None = None) -> bool:
        if self._client is None:
            logger.warning("transport.not_open", url=url)
            return False

        timeout = timeout_ms or self._navigation_timeout_ms
        try:
            response = await self._client.get(url, timeout=timeout / 1000)
        except httpx.TimeoutException:
            exc = NavigationTimeout(url, timeout)
            logger.warning("transport.navigation_timeout", url=url, timeout_ms=exc.timeout_ms)
            return False
        except httpx.HTTPError:
            logger.warning("transport.navigation_failed", url=url, exc_info=True)
            return False

        content_type = response.headers.get("content-type", "")
        final_url = str(response.url)

        if "json" in content_type.lower():
            self._last_html = None
            if self._predicate.accepts(final_url, response.status_code, content_type):
                try:
                    body = self._decode_json(final_url, response.text)
                except CaptureParseError as exc:
                    logger.warning("transport.capture_parse_failed", url=exc.url, reason=exc.reason)
                else:
                    self._captures.append(RawCapture(source_url=final_url, payload=body))
        elif "html" in content_type.lower():
            self._last_html = response.text
            self._last_url = final_url
            self._capture_next_data(final_url, response.text)

        return response.status_code < 400

    def _capture_next_data(self, url: str, html: str) -> None:
        """Capture the page props of a server-rendered Next.js page."""
        match = _NEXT_DATA_RE.search(html)
        if match is None:
            return
        try:
            next_data = self._decode_json(url, match.group(1))
        except CaptureParseError as exc:
            logger.warning("transport.next_data_parse_error", url=exc.url, reason=exc.reason)
            return

        page_props = next_data.get("props", {}).get("pageProps") if isinstance(next_data, dict) else None
        if page_props:
            self._captures.append(RawCapture(source_url=url, payload=page_props))

    async def fetch_direct(self, url: str) -> RawCapture | None:
        if self._client is None:
            logger.warning("transport.not_open", url=url)
            return None

        try:
            response = await self._client.get(url, headers=self.api_headers())
        except httpx.TimeoutException:
            logger.warning(
                "transport.navigation_timeout", url=url, timeout_ms=self._navigation_timeout_ms
            )
            return None
        except httpx.HTTPError:
            logger.warning("transport.direct_fetch_failed", url=url, exc_info=True)
            return None

        if response.status_code != 200:
            logger.warning("transport.direct_fetch_status", url=url, status=response.status_code)
            return None

        try:
            body = self._decode_json(url, response.text)
        except CaptureParseError as exc:
            logger.warning("transport.capture_parse_failed", url=exc.url, reason=exc.reason)
            return None
        return RawCapture(source_url=url, payload=body)

    async def trigger_load(self) -> list[ProbeOutcome]:
        # No script runtime: every probe is reported as skipped.
        return [ProbeOutcome(p.name, fired=False, error="unsupported") for p in self._probes]

    async def scrape_dom(self, selectors: DomSelectors | None = None) -> RawCapture | None:
        if not self._last_html:
            return None
        sel = selectors or DEFAULT_DOM_SELECTORS
        cards = self._extract_cards(self._last_html, sel)
        records = _cards_to_records(cards, sel.min_name_length)
        if not records:
            return None
        return RawCapture(source_url=self._last_url or self._site_url, payload=records)

    @staticmethod
    def _extract_cards(html: str, sel: DomSelectors) -> list[dict]:
        soup = BeautifulSoup(html, "html.parser")

        elements = []
        for selector in sel.containers:
            elements = soup.select(selector)
            if elements:
                break

        def first_text(root: Any, selectors: tuple[str, ...], exclude: str | None) -> str:
            for selector in selectors:
                found = root.select_one(selector)
                text = found.get_text(" ", strip=True) if found is not None else ""
                if text and text != exclude:
                    return text
            return ""

        cards: list[dict] = []
        for element in elements:
            name = first_text(element, sel.names, None)
            cards.append(
                {
                    "name": name,
                    "description": first_text(element, sel.descriptions, name),
                    "text": element.get_text("\n", strip=True),
                }
            )
        return cards


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_transport(settings: object) -> TransportSession:
    """Create the transport session selected by ``settings.transport``."""
    common: dict[str, Any] = {
        "site_url": getattr(settings, "myscheme_site_url", "https://www.myscheme.gov.in"),
        "user_agent": getattr(settings, "user_agent", DEFAULT_USER_AGENT),
        "api_key": getattr(settings, "myscheme_api_key", None),
        "navigation_timeout_ms": getattr(settings, "navigation_timeout_ms", 30_000),
    }
    kind = str(getattr(settings, "transport", "playwright"))
    if kind == "http":
        return HttpTransportSession(**common)
    return PlaywrightTransportSession(headless=getattr(settings, "headless", True), **common)
