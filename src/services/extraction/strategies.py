"""Declarative extraction strategies and myScheme URL builders.

Strategies are data: the runner interprets a :class:`StrategySpec` by its
``kind``.  Reordering, disabling or adding a sweep is a change to
:data:`DEFAULT_STRATEGIES`, not to runner code.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from urllib.parse import urlencode

from src.models.enums import StrategyKind

# ---------------------------------------------------------------------------
# Strategy targets
# ---------------------------------------------------------------------------

SEARCH_KEYWORDS: tuple[str, ...] = (
    "pradhan mantri",
    "pm",
    "yojana",
    "scheme",
    "scholarship",
    "pension",
    "health",
    "education",
    "agriculture",
    "employment",
    "housing",
    "insurance",
    "loan",
    "subsidy",
    "welfare",
    "development",
    "rural",
    "urban",
    "women",
    "child",
    "elderly",
    "disability",
    "minority",
    "tribal",
    "farmer",
)

# Category labels exactly as the search API spells them.
SCHEME_CATEGORIES: tuple[str, ...] = (
    "Agriculture,Rural & Environment",
    "Banking,Financial Services and Insurance",
    "Business & Entrepreneurship",
    "Education & Learning",
    "Health & Wellness",
    "Housing & Shelter",
    "Public Safety,Law & Justice",
    "Science, IT & Communications",
    "Skills & Employment",
    "Social welfare & Empowerment",
    "Sports & Culture",
    "Transport & Infrastructure",
    "Travel & Tourism",
    "Utility & Sanitation",
    "Women and Child",
)

NODAL_MINISTRIES: tuple[str, ...] = (
    "Ministry of Agriculture and Farmers Welfare",
    "Ministry of Education",
    "Ministry of Health and Family Welfare",
    "Ministry of Finance",
    "Ministry of Rural Development",
    "Ministry of Social Justice and Empowerment",
    "Ministry of Women and Child Development",
    "Ministry of Labour and Employment",
    "Ministry of Housing and Urban Affairs",
    "Ministry of Skill Development and Entrepreneurship",
    "Ministry of Micro, Small and Medium Enterprises",
    "Ministry of Electronics and Information Technology",
)

DEFAULT_MAX_PAGES = 500
SEED_STRATEGY_NAME = "sample-data-fallback"
ENRICHMENT_LABEL = "detail-enrichment"


@dataclass(frozen=True)
class StrategySpec:
    """One extraction strategy.

    ``targets`` are keywords for searches and filter values for sweeps.
    ``max_pages`` only applies to :attr:`StrategyKind.PAGINATED_API`.
    ``url_template`` overrides the configured base URL: the API endpoint for
    API-driven kinds, the site root for page-driven kinds.
    """

    name: str
    kind: StrategyKind
    targets: tuple[str, ...] = ()
    max_pages: int | None = None
    filter_field: str | None = None
    url_template: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.kind is StrategyKind.SEED_FALLBACK


DEFAULT_STRATEGIES: tuple[StrategySpec, ...] = (
    StrategySpec(
        "direct-paginated-api",
        StrategyKind.PAGINATED_API,
        max_pages=DEFAULT_MAX_PAGES,
    ),
    StrategySpec(
        "filtered-keyword-search",
        StrategyKind.KEYWORD_SEARCH,
        targets=SEARCH_KEYWORDS,
    ),
    StrategySpec(
        "category-sweep",
        StrategyKind.FILTER_SWEEP,
        targets=SCHEME_CATEGORIES,
        filter_field="schemeCategory",
    ),
    StrategySpec(
        "ministry-sweep",
        StrategyKind.FILTER_SWEEP,
        targets=NODAL_MINISTRIES,
        filter_field="nodalMinistryName",
    ),
    StrategySpec("dom-fallback", StrategyKind.DOM_FALLBACK),
    StrategySpec(SEED_STRATEGY_NAME, StrategyKind.SEED_FALLBACK),
)


# ---------------------------------------------------------------------------
# URL builders
# ---------------------------------------------------------------------------


def build_search_api_url(
    base: str,
    from_: int = 0,
    size: int = 50,
    keyword: str = "",
    filters: dict[str, str] | None = None,
    lang: str = "en",
) -> str:
    """Build a ``search/v5/schemes`` query URL.

    Parameters
    ----------
    base:
        API endpoint, e.g. ``https://api.myscheme.gov.in/search/v5/schemes``.
    from_:
        Zero-based offset of the first hit.
    size:
        Page size.
    keyword:
        Free-text keyword.
    filters:
        Mapping of facet identifier to value, encoded as the ``q`` array
        the site's own search page sends.

    Returns
    -------
    str
        The fully encoded URL.
    """
    q = [{"identifier": field, "value": value} for field, value in (filters or {}).items()]
    query = {
        "lang": lang,
        "q": json.dumps(q, separators=(",", ":")),
        "keyword": keyword,
        "sort": "",
        "from": from_,
        "size": size,
    }
    return f"{base}?{urlencode(query)}"


def build_search_page_url(base: str, keyword: str = "") -> str:
    """URL of the public search page, optionally pre-filled with *keyword*."""
    url = f"{base.rstrip('/')}/search"
    if keyword:
        url = f"{url}?{urlencode({'keyword': keyword})}"
    return url


def build_detail_page_url(base: str, external_id: str) -> str:
    return f"{base.rstrip('/')}/schemes/{external_id}"
