"""Normalise heterogeneous myScheme payloads into :class:`CanonicalRecord`.

The upstream site has no stable public contract.  Over time its search API,
Next.js data routes and detail endpoints have returned scheme lists under
at least half a dozen different nesting patterns, and the same logical
field appears under several names.  This module locates the record-bearing
collection by trying a fixed list of known paths in priority order, then
reads each logical field from a prioritised alias list.

Everything here is a pure function of its input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from src.models.enums import SchemeLevel
from src.models.scheme import CanonicalRecord, RawCapture

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Known collection locations, highest priority first.  ``()`` is the root.
COLLECTION_PATHS: tuple[tuple[str, ...], ...] = (
    ("data", "hits", "items"),
    ("data", "results"),
    ("results",),
    (),
    ("data",),
    ("schemes",),
    ("hits",),
    ("items",),
    ("hits", "hits"),
)

# Places where a single scheme object (detail pages) may sit.
SINGLE_RECORD_PATHS: tuple[tuple[str, ...], ...] = (
    ("pageProps", "schemeData"),
    ("schemeData",),
    ("_source",),
)

# Generic envelopes that only count as a scheme object when they also
# carry an identifier; a bare ``title`` on a response wrapper is not one.
IDENTIFIED_RECORD_PATHS: tuple[tuple[str, ...], ...] = (
    ("data",),
    ("pageProps",),
    (),
)

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("schemeName", "schemeShortTitle", "name", "title", "scheme_name"),
    "description": (
        "schemeDescription",
        "description",
        "briefDescription",
        "scheme_description",
        "summary",
        "brief",
    ),
    "ministry": (
        "nodalMinistryName",
        "sponsoringMinistry",
        "ministry",
        "ministryName",
        "sponsoring_ministry",
    ),
    "department": (
        "sponsoringDepartment",
        "department",
        "departmentName",
        "nodalDepartmentName",
        "sponsoring_department",
    ),
    "category": ("schemeCategory", "category", "categoryName", "scheme_category", "sector"),
    "sub_category": ("schemeSubCategory", "subCategory", "sub_category", "subCategoryName"),
    "target_audience": (
        "schemeFor",
        "beneficiaryType",
        "targetAudience",
        "target_audience",
        "beneficiary_type",
    ),
    "level": ("level", "schemeLevel"),
    "region_scope": ("beneficiaryState", "state", "stateName", "states"),
    "launch_date": ("launchDate", "launch_date", "createdDate", "created_date"),
}

_ELEMENT_ID_KEYS: tuple[str, ...] = ("id", "_id")
_FIELD_ID_KEYS: tuple[str, ...] = ("schemeId", "scheme_id", "id", "slug")

JOIN_SEPARATOR = ", "

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")

_LEVEL_MAP: dict[str, SchemeLevel] = {
    "central": SchemeLevel.CENTRAL,
    "centre": SchemeLevel.CENTRAL,
    "center": SchemeLevel.CENTRAL,
    "state": SchemeLevel.STATE,
    "state/ut": SchemeLevel.STATE,
    "ut": SchemeLevel.STATE,
}

_DATE_FORMATS: tuple[str, ...] = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d")


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


@dataclass
class NormalizationResult:
    """Records produced from one capture plus observability counters."""

    records: list[CanonicalRecord] = field(default_factory=list)
    located: int = 0
    skipped_no_name: int = 0
    path: str | None = None


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _clean_text(value: str) -> str:
    """Strip HTML tags and collapse whitespace."""
    return _WHITESPACE_RE.sub(" ", _HTML_TAG_RE.sub(" ", value)).strip()


def _to_text(value: Any) -> str:
    """Render a source value as display text.

    Lists are joined with ``", "`` in source order; dicts contribute their
    ``name`` / ``label`` / ``value`` entry.
    """
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return _clean_text(value)
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        for key in ("name", "label", "value", "title"):
            if value.get(key):
                return _to_text(value[key])
        return ""
    if isinstance(value, (list, tuple)):
        parts = [_to_text(item) for item in value]
        return JOIN_SEPARATOR.join(part for part in parts if part)
    return ""


def _first_alias(fields: dict, aliases: tuple[str, ...]) -> str:
    for alias in aliases:
        text = _to_text(fields.get(alias))
        if text:
            return text
    return ""


def _parse_level(raw: str) -> SchemeLevel:
    if not raw:
        return SchemeLevel.UNKNOWN
    return _LEVEL_MAP.get(raw.strip().lower(), SchemeLevel.UNKNOWN)


def _parse_date(raw: Any) -> date | None:
    """Parse the assorted date formats the source emits; ``None`` if unknown."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        # Epoch milliseconds
        try:
            return datetime.fromtimestamp(raw / 1000).date()
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(raw, str) or not raw.strip():
        return None

    text = raw.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _resolve(payload: Any, path: tuple[str, ...]) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _element_fields(element: dict) -> dict:
    inner = element.get("fields")
    if isinstance(inner, dict):
        return inner
    inner = element.get("_source")
    if isinstance(inner, dict):
        return inner
    return element


def _has_name(candidate: Any) -> bool:
    return isinstance(candidate, dict) and bool(
        _first_alias(_element_fields(candidate), FIELD_ALIASES["name"])
    )


# ---------------------------------------------------------------------------
# Collection location
# ---------------------------------------------------------------------------


def locate_collection(payload: Any) -> tuple[list, str | None]:
    """Find the record-bearing list inside *payload*.

    Returns the list and a dotted description of the path that matched
    (``"<root>"`` for a top-level array).  The first path yielding a
    non-empty list wins; a lone scheme object is wrapped in a one-element
    list as the last resort.
    """
    for path in COLLECTION_PATHS:
        node = _resolve(payload, path)
        if isinstance(node, list) and node:
            return node, ".".join(path) or "<root>"

    for path in SINGLE_RECORD_PATHS:
        node = _resolve(payload, path)
        if _has_name(node):
            return [node], ".".join(path) + "[single]"

    for path in IDENTIFIED_RECORD_PATHS:
        node = _resolve(payload, path)
        if _has_name(node) and _external_id(node, _element_fields(node)):
            return [node], (".".join(path) or "<root>") + "[single]"

    return [], None


# ---------------------------------------------------------------------------
# Element mapping
# ---------------------------------------------------------------------------


def _external_id(element: dict, fields: dict) -> str | None:
    for key in _ELEMENT_ID_KEYS:
        value = element.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
            return str(value).strip()
    for key in _FIELD_ID_KEYS:
        value = fields.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
            return str(value).strip()
    return None


def normalize_element(
    element: Any,
    *,
    source_label: str,
    source_url: str,
    extracted_at: datetime | None = None,
) -> CanonicalRecord | None:
    """Map one raw element to a :class:`CanonicalRecord`.

    Returns ``None`` when no name alias resolves to a non-empty string.
    """
    if not isinstance(element, dict):
        return None

    fields = _element_fields(element)
    name = _first_alias(fields, FIELD_ALIASES["name"])
    if not name:
        return None

    values: dict[str, Any] = {
        "external_id": _external_id(element, fields),
        "name": name,
        "source_label": source_label,
        "source_url": source_url,
    }
    for logical in (
        "description",
        "ministry",
        "department",
        "category",
        "sub_category",
        "target_audience",
        "region_scope",
    ):
        values[logical] = _first_alias(fields, FIELD_ALIASES[logical])

    values["level"] = _parse_level(_first_alias(fields, FIELD_ALIASES["level"]))

    raw_date = None
    for alias in FIELD_ALIASES["launch_date"]:
        if fields.get(alias):
            raw_date = fields[alias]
            break
    values["launch_date"] = _parse_date(raw_date)

    if extracted_at is not None:
        values["extracted_at"] = extracted_at

    try:
        return CanonicalRecord(**values)
    except ValidationError:
        logger.debug("normalizer.element_rejected", name=name, exc_info=True)
        return None


def normalize_capture(capture: RawCapture, source_label: str) -> NormalizationResult:
    """Convert one capture into zero or more canonical records.

    Parameters
    ----------
    capture:
        The raw capture to normalise.
    source_label:
        Strategy or endpoint name recorded on every produced record.

    Returns
    -------
    NormalizationResult
        Records in source order, the number of elements located, and the
        number dropped because no name could be resolved.
    """
    collection, path = locate_collection(capture.payload)
    result = NormalizationResult(located=len(collection), path=path)

    for element in collection:
        record = normalize_element(
            element,
            source_label=source_label,
            source_url=capture.source_url,
            extracted_at=capture.captured_at,
        )
        if record is None:
            result.skipped_no_name += 1
            continue
        result.records.append(record)

    if result.skipped_no_name:
        logger.debug(
            "normalizer.skipped_no_name",
            url=capture.source_url,
            skipped=result.skipped_no_name,
            located=result.located,
        )
    return result
