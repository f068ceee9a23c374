"""Bundled seed data: the extraction fallback of last resort.

The bundle is a static, versioned JSON document::

    {"version": "2024.1", "schemes": [{...CanonicalRecord fields...}, ...]}

It is loaded verbatim when every live strategy of a run comes back empty,
so a run never ends with zero records.  Its content is only as fresh as
its ``version``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from pydantic import ValidationError

from src.models.scheme import CanonicalRecord

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_DATA_DIR: Path = Path(__file__).resolve().parent / "schemes"
SEED_BUNDLE_PATH: Path = _DATA_DIR / "seed_schemes.json"

SEED_SOURCE_LABEL = "sample-data-fallback"


@dataclass(frozen=True)
class SeedBundle:
    version: str
    records: list[CanonicalRecord] = field(default_factory=list)


def load_seed_bundle(path: Path | None = None) -> SeedBundle:
    """Load the seed bundle from disk.

    Parameters
    ----------
    path:
        Path to the JSON bundle.  Defaults to the bundled
        ``seed_schemes.json``.

    Returns
    -------
    SeedBundle
        The bundle version and its records, each tagged with the
        ``sample-data-fallback`` source label.

    Raises
    ------
    FileNotFoundError
        If the bundle does not exist.
    json.JSONDecodeError
        If the JSON is malformed.
    """
    file_path = path or SEED_BUNDLE_PATH

    if not file_path.exists():
        raise FileNotFoundError(f"Seed bundle not found: {file_path}")

    with file_path.open("r", encoding="utf-8") as f:
        raw: dict = json.load(f)

    version = str(raw.get("version", "unversioned"))
    records: list[CanonicalRecord] = []
    for entry in raw.get("schemes", []):
        try:
            record = CanonicalRecord(**entry)
        except ValidationError:
            logger.warning(
                "seed.parse_error",
                external_id=entry.get("external_id", "unknown"),
                exc_info=True,
            )
            continue
        records.append(record.model_copy(update={"source_label": SEED_SOURCE_LABEL}))

    logger.info("seed.loaded", version=version, count=len(records), source=str(file_path))
    return SeedBundle(version=version, records=records)
