from __future__ import annotations

from enum import StrEnum


class SchemeLevel(StrEnum):
    __slots__ = ()

    CENTRAL = "Central"
    STATE = "State"
    UNKNOWN = "Unknown"


class IdentityKind(StrEnum):
    __slots__ = ()

    EXTERNAL_ID = "external_id"
    NAME = "name"


class ExtractionEvent(StrEnum):
    """Named events pushed to the progress channel."""

    __slots__ = ()

    STARTED = "extraction-started"
    PROGRESS = "extraction-progress"
    COMPLETED = "extraction-completed"
    ERROR = "extraction-error"


class RunnerState(StrEnum):
    __slots__ = ()

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


class StrategyKind(StrEnum):
    __slots__ = ()

    PAGINATED_API = "paginated_api"
    KEYWORD_SEARCH = "keyword_search"
    FILTER_SWEEP = "filter_sweep"
    DOM_FALLBACK = "dom_fallback"
    SEED_FALLBACK = "seed_fallback"


class ProbeAction(StrEnum):
    __slots__ = ()

    SCROLL = "scroll"
    CLICK = "click"
    PRESS_ENTER = "press_enter"
