"""
Structured error types for cron-spine.

Every failure the enqueuer can hit falls into one of four buckets, and the
bucket decides what the process does next:

- **Load-time errors:** bad cron syntax, unknown timezone, duplicate
  schedule name. Fatal, raised before the scheduler loop starts.
- **Transient store errors:** network timeout, primary failover in
  progress. Retried on the next tick, bounded by the missed-jobs window.
- **Permanent store errors:** bad credentials, misconfigured store. Fatal,
  the process exits.
- **Race losses:** another replica claimed the instant first. Not an error
  at all; reported as an ``ALREADY_CLAIMED`` outcome, never raised.

Manifesto:
    - **Typed Error Hierarchy:** The type says whether to retry or die
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry schedule / key metadata for logging
    - **Error Chaining:** Preserve the redis-py exception as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      CronSpineError                              │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError        ConfigError          StoreError          │
        │  (retryable=True)      (CONFIG)             (DATABASE)          │
        │       │                    │                    │                │
        │  TransientStoreError   MissingConfigError   PermanentStoreError │
        │                        InvalidConfigError                        │
        │                                                                  │
        │  ScheduleLoadError     OrchestrationError                       │
        │  (CONFIG)              (ORCHESTRATION)                          │
        │       │                    │                                     │
        │  InvalidCronError      SchedulerShutdownError                   │
        │  UnknownTimezoneError                                           │
        │  DuplicateScheduleError                                         │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = TransientStoreError("primary re-election in progress")
    >>> error.retryable
    True
    >>> InvalidCronError("bad cron").with_context(schedule="nightly").context.schedule
    'nightly'

Guardrails:
    ❌ DON'T: Raise TransientStoreError for authentication failures
    ✅ DO: Raise PermanentStoreError so the process exits

    ❌ DON'T: Raise anything for a lost claim race
    ✅ DO: Return ``EnqueueOutcome.ALREADY_CLAIMED``

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    cron-spine, enqueuer

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        NETWORK: Connection, timeout, DNS errors
        DATABASE: Store (Redis) errors
        CONFIG: Missing config, invalid settings, bad schedule definitions
        AUTH: Authentication, authorization
        ORCHESTRATION: Scheduler loop errors
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    NETWORK = "NETWORK"
    DATABASE = "DATABASE"

    CONFIG = "CONFIG"
    AUTH = "AUTH"

    ORCHESTRATION = "ORCHESTRATION"

    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields cover what the enqueuer knows when something fails (which
    schedule, which claim key, which queue, which store endpoint). Anything
    else goes in ``metadata``.

    Examples:
        >>> ctx = ErrorContext(schedule="nightly-report", queue="reports")
        >>> ctx.to_dict()
        {'schedule': 'nightly-report', 'queue': 'reports'}
    """

    schedule: str | None = None
    dedup_key: str | None = None
    queue: str | None = None
    tick: int | None = None

    endpoint: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["schedule", "dedup_key", "queue", "tick", "endpoint"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CronSpineError(Exception):
    """
    Base exception for all cron-spine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so raising
    code rarely has to pass them explicitly.

    Examples:
        >>> error = CronSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CronSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise TransientStoreError("timeout").with_context(
                schedule="nightly", dedup_key=str(key)
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }

        if self.retry_after is not None:
            result["retry_after"] = self.retry_after

        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict

        if self.cause is not None:
            result["cause"] = str(self.cause)

        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Retryable)
# =============================================================================


class TransientError(CronSpineError):
    """
    Temporary error that may succeed on retry.

    Inside the enqueuer the retry is never a tight loop: a transient failure
    leaves the scheduled instant unclaimed, and the next tick's window walk
    offers it again.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class TransientStoreError(TransientError):
    """Store unreachable, timed out, or failing over."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(CronSpineError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None, **kwargs: Any):
        message = message or f"Missing required configuration: {key}"
        super().__init__(message, **kwargs)
        self.key = key


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None, **kwargs: Any):
        message = message or f"Invalid configuration for {key}: {value!r}"
        super().__init__(message, **kwargs)
        self.key = key
        self.value = value


class ScheduleLoadError(ConfigError):
    """A schedule definition could not be loaded."""

    def __init__(self, message: str, *, schedule: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.schedule = schedule
        if schedule is not None:
            self.context.schedule = schedule


class InvalidCronError(ScheduleLoadError):
    """Cron expression does not parse."""

    def __init__(self, expression: str, *, schedule: str | None = None, **kwargs: Any):
        super().__init__(f"Invalid cron expression: {expression!r}", schedule=schedule, **kwargs)
        self.expression = expression


class UnknownTimezoneError(ScheduleLoadError):
    """Timezone is not a known IANA identifier."""

    def __init__(self, timezone: str, *, schedule: str | None = None, **kwargs: Any):
        super().__init__(f"Unknown timezone: {timezone!r}", schedule=schedule, **kwargs)
        self.timezone = timezone


class DuplicateScheduleError(ScheduleLoadError):
    """Two schedules share a name."""

    def __init__(self, name: str, **kwargs: Any):
        super().__init__(f"Duplicate schedule name: {name!r}", schedule=name, **kwargs)


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(CronSpineError):
    """Base for store errors that are not transient."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class PermanentStoreError(StoreError):
    """
    Store failure that will not fix itself (credentials, ACLs, bad script).

    A scheduler that is wrong about what it already claimed is worse than
    one that is down, so this error terminates the process.
    """


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(CronSpineError):
    """Scheduler loop error."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class SchedulerShutdownError(OrchestrationError):
    """A tick was requested after shutdown began."""


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable.

    Non-cron-spine exceptions are never considered retryable: the store
    client translates every redis-py failure it expects before it gets here.
    """
    if isinstance(error, CronSpineError):
        return error.retryable
    return False


def is_fatal(error: Exception) -> bool:
    """Check if an error must terminate the scheduler process."""
    return isinstance(error, (PermanentStoreError, ConfigError))


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CronSpineError",
    "TransientError",
    "TransientStoreError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "ScheduleLoadError",
    "InvalidCronError",
    "UnknownTimezoneError",
    "DuplicateScheduleError",
    "StoreError",
    "PermanentStoreError",
    "OrchestrationError",
    "SchedulerShutdownError",
    "is_retryable",
    "is_fatal",
]
