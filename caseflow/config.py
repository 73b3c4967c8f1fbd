# caseflow Configuration Module
# Runtime settings read from environment variables

import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse a boolean-like environment variable value."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_positive_float(value: Optional[str], default: float) -> float:
    """Parse a positive number of seconds, falling back to the default."""
    if value is None:
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid numeric setting {value!r}")
        return default
    return parsed if parsed > 0 else default


def _as_positive_int(value: Optional[str], default: int) -> int:
    """Parse a positive count, falling back to the default."""
    if value is None:
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid count setting {value!r}")
        return default
    return parsed if parsed > 0 else default


def _as_list(value: Optional[str]) -> List[str]:
    """Parse a comma-separated list, dropping blanks and repeats."""
    items: List[str] = []
    for item in (value or "").split(","):
        item = item.strip()
        if item and item not in items:
            items.append(item)
    return items


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost",
    "http://127.0.0.1",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the engine and the API layer."""

    storage_path: str = "data/caseflow_rdf"
    task_timeout_seconds: float = 30.0
    script_timeout_seconds: float = 120.0
    lookup_timeout_seconds: float = 10.0
    child_timeout_seconds: float = 86400.0
    timer_event_interval_seconds: float = 30.0
    event_name_filter: bool = False
    handler_modules: List[str] = field(default_factory=list)
    log_level: str = "INFO"
    finished_case_retention: int = 1000
    auth_enabled: bool = False
    api_keys: List[str] = field(default_factory=list)
    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            storage_path=os.getenv("CASEFLOW_STORAGE_PATH", "data/caseflow_rdf"),
            task_timeout_seconds=_as_positive_float(
                os.getenv("CASEFLOW_TASK_TIMEOUT_SECONDS"), 30.0
            ),
            script_timeout_seconds=_as_positive_float(
                os.getenv("CASEFLOW_SCRIPT_TIMEOUT_SECONDS"), 120.0
            ),
            lookup_timeout_seconds=_as_positive_float(
                os.getenv("CASEFLOW_LOOKUP_TIMEOUT_SECONDS"), 10.0
            ),
            child_timeout_seconds=_as_positive_float(
                os.getenv("CASEFLOW_CHILD_TIMEOUT_SECONDS"), 86400.0
            ),
            timer_event_interval_seconds=_as_positive_float(
                os.getenv("CASEFLOW_TIMER_EVENT_INTERVAL_SECONDS"), 30.0
            ),
            event_name_filter=_as_bool(os.getenv("CASEFLOW_EVENT_NAME_FILTER")),
            handler_modules=_as_list(os.getenv("CASEFLOW_HANDLER_MODULES")),
            log_level=os.getenv("CASEFLOW_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            finished_case_retention=_as_positive_int(
                os.getenv("CASEFLOW_FINISHED_CASE_RETENTION"), 1000
            ),
            auth_enabled=_as_bool(os.getenv("CASEFLOW_AUTH_ENABLED")),
            api_keys=_as_list(os.getenv("CASEFLOW_API_KEYS")),
            allowed_origins=(
                _as_list(os.getenv("CASEFLOW_ALLOWED_ORIGINS", ",".join(DEFAULT_ALLOWED_ORIGINS)))
                or ["http://localhost", "http://127.0.0.1"]
            ),
        )
