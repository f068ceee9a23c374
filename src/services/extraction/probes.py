"""Declarative "trigger probes" used to coax more data out of a page.

The search page loads scheme listings lazily.  Whether a given probe does
anything depends on markup the site changes without notice, so each probe
is independent, best-effort and reported through a :class:`ProbeOutcome`
instead of influencing run correctness.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.models.enums import ProbeAction


@dataclass(frozen=True)
class TriggerProbe:
    name: str
    action: ProbeAction
    selectors: tuple[str, ...] = ()
    wait_ms: int = 2_000


@dataclass(frozen=True)
class ProbeOutcome:
    name: str
    fired: bool
    error: str | None = None


DEFAULT_PROBES: tuple[TriggerProbe, ...] = (
    TriggerProbe("scroll-to-bottom", ProbeAction.SCROLL, wait_ms=1_000),
    TriggerProbe(
        "load-more-button",
        ProbeAction.CLICK,
        (
            'button:has-text("Load More")',
            'button:has-text("Show More")',
            ".load-more",
            ".show-more",
        ),
    ),
    TriggerProbe(
        "next-page-button",
        ProbeAction.CLICK,
        (
            'button:has-text("Next")',
            'a:has-text("Next")',
            '[aria-label="Next page"]',
            "li.next a",
        ),
    ),
    TriggerProbe(
        "search-submit",
        ProbeAction.CLICK,
        ('button:has-text("Search")', 'button[type="submit"]', ".search-button"),
        wait_ms=3_000,
    ),
    TriggerProbe(
        "search-enter",
        ProbeAction.PRESS_ENTER,
        ('input[type="search"]', 'input[placeholder*="search" i]', ".search-input"),
        wait_ms=3_000,
    ),
)


# DOM fallback selector lists, most specific first.
@dataclass(frozen=True)
class DomSelectors:
    containers: tuple[str, ...] = (
        ".scheme-card",
        ".scheme-item",
        ".result-item",
        ".search-result",
        ".scheme-container",
        '[class*="scheme"]',
        ".card",
        '[class*="card"]',
        ".list-item",
    )
    names: tuple[str, ...] = (
        ".scheme-name",
        ".card-title",
        ".title",
        ".name",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        '[class*="name"]',
        '[class*="title"]',
        "strong",
        "b",
    )
    descriptions: tuple[str, ...] = (
        ".scheme-description",
        ".card-text",
        ".description",
        ".summary",
        "p",
        ".content",
        '[class*="desc"]',
        ".text",
    )
    min_name_length: int = 4


DEFAULT_DOM_SELECTORS = DomSelectors()
