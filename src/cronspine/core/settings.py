"""Process settings for a cron-spine replica.

Every value a replica needs besides the schedule file comes from the
environment (``CRONSPINE_*``) or a ``.env`` file, validated once at startup.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    A replica with an invalid window or an unreachable store definition
    must refuse to start rather than enqueue with wrong assumptions.

    - **Pydantic validation:** Type-checked at startup, not at tick time
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** In-memory store and a one-hour window for dev

Features:
    - **CronSpineSettings:** store selection, timing, retry and logging knobs
    - **get_settings() / reset_settings():** cached process-wide instance

Examples:
    >>> import os
    >>> os.environ["CRONSPINE_STORE_BACKEND"] = "redis"
    >>> settings = CronSpineSettings()
    >>> settings.missed_jobs_window_seconds
    3600

Tags:
    settings, configuration, pydantic, environment, cron-spine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreBackend(str, Enum):
    """Which store implementation a replica connects to."""

    MEMORY = "memory"
    REDIS = "redis"
    SENTINEL = "sentinel"


class CronSpineSettings(BaseSettings):
    """cron-spine configuration.

    All fields can be set via ``CRONSPINE_*`` environment variables (e.g.
    ``CRONSPINE_REDIS_URL=redis://cache:6379/0``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CRONSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Store ────────────────────────────────────────────────────
    store_backend: StoreBackend = Field(default=StoreBackend.MEMORY)
    redis_url: str = Field(default="redis://localhost:6379/0")
    sentinels: str = Field(
        default="",
        description="Comma-separated sentinel addresses, e.g. 'sentinel-a:26379,sentinel-b:26379'",
    )
    sentinel_service: str = Field(default="mymaster")
    redis_password: str | None = Field(default=None)
    redis_db: int = Field(default=0, ge=0)
    namespace: str = Field(default="cronspine", min_length=1)

    # ── Timing ───────────────────────────────────────────────────
    tick_seconds: float = Field(default=10.0, gt=0)
    missed_jobs_window_seconds: int = Field(default=3600, gt=0)
    claim_ttl_seconds: int | None = Field(
        default=None,
        description="Claim record retention; defaults to twice the missed-jobs window",
    )
    max_concurrency: int = Field(default=8, ge=1)
    shutdown_timeout: float = Field(default=30.0, gt=0)

    # ── Store client behavior ────────────────────────────────────
    socket_timeout: float = Field(default=5.0, gt=0)
    socket_connect_timeout: float = Field(default=5.0, gt=0)
    retry_attempts: int = Field(default=3, ge=0)
    retry_backoff_base: float = Field(default=0.1, gt=0)
    retry_backoff_cap: float = Field(default=2.0, gt=0)

    # ── Schedules ────────────────────────────────────────────────
    schedules_file: Path | None = Field(default=None)

    # ── Observability ────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console", "auto"] = "auto"
    replica_id: str | None = Field(default=None)

    @model_validator(mode="after")
    def _check_claim_ttl(self) -> CronSpineSettings:
        if self.claim_ttl_seconds is None:
            self.claim_ttl_seconds = self.missed_jobs_window_seconds * 2
        if self.claim_ttl_seconds < self.missed_jobs_window_seconds:
            raise ValueError(
                "claim_ttl_seconds must be >= missed_jobs_window_seconds "
                f"({self.claim_ttl_seconds} < {self.missed_jobs_window_seconds})"
            )
        if self.store_backend is StoreBackend.SENTINEL and not self.sentinel_addresses:
            raise ValueError("store_backend=sentinel requires CRONSPINE_SENTINELS")
        return self

    @property
    def missed_jobs_window(self) -> timedelta:
        return timedelta(seconds=self.missed_jobs_window_seconds)

    @property
    def sentinel_addresses(self) -> list[tuple[str, int]]:
        """Parse ``sentinels`` into ``(host, port)`` pairs."""
        addresses = []
        for item in self.sentinels.split(","):
            item = item.strip()
            if not item:
                continue
            host, _, port = item.rpartition(":")
            if not host:
                host, port = port, "26379"
            addresses.append((host, int(port)))
        return addresses

    @property
    def json_logs(self) -> bool | None:
        if self.log_format == "auto":
            return None
        return self.log_format == "json"


_settings: CronSpineSettings | None = None


def get_settings() -> CronSpineSettings:
    """Get or create the process settings instance."""
    global _settings
    if _settings is None:
        _settings = CronSpineSettings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (tests, reload)."""
    global _settings
    _settings = None


__all__ = [
    "StoreBackend",
    "CronSpineSettings",
    "get_settings",
    "reset_settings",
]
