"""cron-spine core primitives.

Architecture::

    errors.py          Structured error hierarchy (CronSpineError, TransientStoreError)
    logging.py         structlog configuration + context helpers
    hashing.py         Deterministic hashing (job ids)
    settings.py        CRONSPINE_* environment settings (pydantic-settings)
    scheduling/        Cron evaluation, registry, dedup, window, enqueue, store, loop
"""

from cronspine.core.errors import (
    ConfigError,
    CronSpineError,
    PermanentStoreError,
    ScheduleLoadError,
    TransientStoreError,
)
from cronspine.core.hashing import compute_hash
from cronspine.core.logging import configure_logging, get_logger
from cronspine.core.settings import CronSpineSettings, get_settings, reset_settings

__all__ = [
    "CronSpineError",
    "ConfigError",
    "ScheduleLoadError",
    "TransientStoreError",
    "PermanentStoreError",
    "compute_hash",
    "configure_logging",
    "get_logger",
    "CronSpineSettings",
    "get_settings",
    "reset_settings",
]
