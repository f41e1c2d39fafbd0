"""Unified configuration schema for kanban_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the remote authority, the sync queue, local storage, merge
policy and logging. Includes an adapter to the flat runtime ``Config``
dataclass consumed by the rest of the package.

Usage:
    from kanban_sync.config_schema import build_config, to_runtime_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_runtime_config(unified, cli_overrides={"url": "https://..."})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RemoteConfig(BaseModel):
    """Remote authority connection settings."""

    url: str | None = Field(
        default=None, description="Base URL of the board API"
    )
    timeout: float = Field(
        default=10.0,
        gt=0,
        le=300,
        description="Per-request timeout in seconds",
    )

    model_config = {"frozen": True}


class QueueConfig(BaseModel):
    """Sync queue retry and scheduling settings.

    Attributes:
        max_retries: Delivery attempts before an entry is abandoned.
        retry_delays: Backoff schedule in seconds, saturating at the last value.
        throttle: Minimum seconds between two queue passes.
        interval_min: Lower bound of the randomized background interval.
        interval_max: Upper bound of the randomized background interval.
        auto_sync: Run the background timer.
    """

    max_retries: int = Field(default=4, ge=1, le=100)
    retry_delays: list[float] = Field(
        default_factory=lambda: [0.0, 1.0, 5.0, 15.0], min_length=1
    )
    throttle: float = Field(default=0.5, ge=0)
    interval_min: float = Field(default=30.0, gt=0)
    interval_max: float = Field(default=60.0, gt=0)
    auto_sync: bool = True

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_interval(self) -> QueueConfig:
        if self.interval_min > self.interval_max:
            raise ValueError(
                "queue.interval_min must not exceed queue.interval_max"
            )
        if any(delay < 0 for delay in self.retry_delays):
            raise ValueError("queue.retry_delays must be non-negative")
        return self


class StorageConfig(BaseModel):
    """Local persistence settings."""

    directory: str = Field(
        default=".kanban_sync/data",
        description="Directory holding the persisted key-value files",
    )
    persist_debounce: float = Field(
        default=0.5,
        ge=0,
        description="Quiet period before a board snapshot is written",
    )

    model_config = {"frozen": True}


class MergeConfig(BaseModel):
    """Conflict resolution policy."""

    strategy: Literal[
        "auto_merge", "local_wins", "server_wins", "manual"
    ] = "auto_merge"

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    merge: MergeConfig = Field(default_factory=MergeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully: anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> runtime Config dataclass
# ---------------------------------------------------------------------------


def to_runtime_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the flat ``Config`` dataclass,
    applying explicit overrides on top.

    The precedence applied here is:
        override > unified config value > built-in default

    Override keys: url, storage_dir, strategy, debug.

    Args:
        unified: The unified config produced by ``build_config()``.
        cli_overrides: Optional dict of explicit values.

    Returns:
        ``Config`` dataclass instance (NOT validated: caller should run
        ``validate_config()`` separately if needed).
    """
    # Import here to avoid circular imports (config.py imports config_schema)
    from .config import DEFAULT_API_URL, Config

    overrides = cli_overrides or {}

    return Config(
        api_url=overrides.get("url") or unified.remote.url or DEFAULT_API_URL,
        request_timeout=unified.remote.timeout,
        storage_dir=overrides.get("storage_dir")
        or unified.storage.directory,
        persist_debounce=unified.storage.persist_debounce,
        max_retries=unified.queue.max_retries,
        retry_delays=tuple(unified.queue.retry_delays),
        sync_throttle=unified.queue.throttle,
        sync_interval_min=unified.queue.interval_min,
        sync_interval_max=unified.queue.interval_max,
        auto_sync=unified.queue.auto_sync,
        merge_strategy=overrides.get("strategy") or unified.merge.strategy,
        debug=bool(overrides.get("debug", False)),
    )
