from src.models.enums import (
    ExtractionEvent,
    IdentityKind,
    ProbeAction,
    RunnerState,
    SchemeLevel,
    StrategyKind,
)
from src.models.extraction import ExtractionOptions, ProgressEvent, RunResult
from src.models.scheme import (
    CONTENT_FIELDS,
    CanonicalRecord,
    IdentityKey,
    PersistedRecord,
    RawCapture,
    identity_key,
)

__all__ = [
    "CONTENT_FIELDS",
    "CanonicalRecord",
    "ExtractionEvent",
    "ExtractionOptions",
    "IdentityKey",
    "IdentityKind",
    "PersistedRecord",
    "ProbeAction",
    "ProgressEvent",
    "RawCapture",
    "RunResult",
    "RunnerState",
    "SchemeLevel",
    "StrategyKind",
    "identity_key",
]
