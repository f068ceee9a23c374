"""Tests for the strategy table and URL builders."""

from __future__ import annotations

import json

from src.models.enums import StrategyKind
from src.services.extraction.strategies import (
    DEFAULT_STRATEGIES,
    build_detail_page_url,
    build_search_api_url,
    build_search_page_url,
)
from tests.fakes import query_of

_API = "https://api.myscheme.gov.in/search/v5/schemes"


class TestDefaultStrategies:
    def test_order(self):
        assert [s.name for s in DEFAULT_STRATEGIES] == [
            "direct-paginated-api",
            "filtered-keyword-search",
            "category-sweep",
            "ministry-sweep",
            "dom-fallback",
            "sample-data-fallback",
        ]

    def test_only_last_is_fallback(self):
        assert [s.is_fallback for s in DEFAULT_STRATEGIES] == [False] * 5 + [True]

    def test_sweeps_have_filter_fields(self):
        sweeps = {s.name: s for s in DEFAULT_STRATEGIES if s.kind is StrategyKind.FILTER_SWEEP}
        assert sweeps["category-sweep"].filter_field == "schemeCategory"
        assert sweeps["ministry-sweep"].filter_field == "nodalMinistryName"
        assert "Health & Wellness" in sweeps["category-sweep"].targets
        assert "Ministry of Education" in sweeps["ministry-sweep"].targets


class TestUrlBuilders:
    def test_paginated_query(self):
        url = build_search_api_url(_API, from_=100, size=50)
        query = query_of(url)

        assert url.startswith(_API + "?")
        assert query["lang"] == "en"
        assert query["from"] == "100"
        assert query["size"] == "50"
        assert query["keyword"] == ""
        assert json.loads(query["q"]) == []

    def test_filter_query(self):
        url = build_search_api_url(_API, filters={"schemeCategory": "Health & Wellness"})
        q = json.loads(query_of(url)["q"])
        assert q == [{"identifier": "schemeCategory", "value": "Health & Wellness"}]

    def test_search_page_url(self):
        assert build_search_page_url("https://www.myscheme.gov.in/") == "https://www.myscheme.gov.in/search"
        assert (
            build_search_page_url("https://www.myscheme.gov.in", "pradhan mantri")
            == "https://www.myscheme.gov.in/search?keyword=pradhan+mantri"
        )

    def test_detail_page_url(self):
        assert (
            build_detail_page_url("https://www.myscheme.gov.in", "pm-kisan")
            == "https://www.myscheme.gov.in/schemes/pm-kisan"
        )
