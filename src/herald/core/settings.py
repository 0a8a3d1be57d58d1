"""Runtime settings for the herald dispatch engine.

Every tunable the worker reads (batch size, visibility timeout, lease
length, webhook timeout) lives on one pydantic-settings model, so a
deployment configures the engine with ``HERALD_*`` environment variables
or a ``.env`` file and nothing else.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-cycle
    - **Environment-driven:** ``HERALD_`` prefix, ``.env`` file support
    - **Sensible defaults:** Works out of the box against a local SQLite file
    - **Extra ignore:** Unknown env vars don't cause startup failures

Examples:
    >>> from herald.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.queue_batch_size
    25

Tags:
    settings, configuration, pydantic, environment, herald-core

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HeraldSettings(BaseSettings):
    """Engine settings, read from ``HERALD_*`` environment variables.

    Fields
    ──────
    database_path              : SQLite file shared by every worker
    log_level / log_json       : Structlog configuration
    queue_batch_size           : Items claimed per drain (1..200)
    queue_autodrain            : ``emit()`` drains one batch after enqueueing
    visibility_timeout_seconds : Age after which a processing claim is stale
    scheduler_enabled          : Global switch for recurring jobs
    schedule_lease_seconds     : How long a claimed schedule stays leased
    webhook_timeout_seconds    : Per-request timeout for outbound webhooks
    poll_interval_seconds      : Sleep between worker cycles
    error_max_length           : Truncation bound for persisted error text
    """

    model_config = SettingsConfigDict(
        env_prefix="HERALD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".herald" / "herald.db",
        description="SQLite database shared by all workers",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Queue ────────────────────────────────────────────────────
    queue_batch_size: int = Field(default=25, ge=1, le=200)
    queue_autodrain: bool = False
    visibility_timeout_seconds: int = Field(default=900, ge=1)

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_enabled: bool = True
    schedule_lease_seconds: int = Field(default=300, ge=1)

    # ── Webhooks ─────────────────────────────────────────────────
    webhook_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── Worker ───────────────────────────────────────────────────
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    error_max_length: int = Field(default=2000, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> HeraldSettings:
    """Return the process-wide settings instance."""
    return HeraldSettings()


__all__ = ["HeraldSettings", "get_settings"]
