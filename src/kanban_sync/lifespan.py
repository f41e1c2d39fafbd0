"""Lifespan management for sync startup and shutdown."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .board.conflicts import MergeStrategy
from .board.store import BoardStore
from .config import load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .logger import setup_logging
from .remote.client import RemoteClient
from .storage import JsonFileStore
from .sync.engine import SyncEngine
from .sync.events import EventBus
from .sync.queue import SyncQueue
from .sync.resolver import ConflictResolver

logger = logging.getLogger(__name__)


@asynccontextmanager
async def sync_lifespan(
    overrides: dict[str, Any] | None = None,
) -> AsyncIterator[SyncEngine]:
    """
    Manage the sync stack's startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): explicit > env vars > .env > YAML > defaults
    - Restore board, queue and confirmed board from storage
    - Start the queue's background timer

    On shutdown:
    - Stop the queue and any running reconciliation
    - Flush a pending board write

    Args:
        overrides: Optional dict with explicit values (url, storage_dir, strategy, debug)

    Yields:
        The ready ``SyncEngine``

    Raises:
        RuntimeError: If configuration is invalid.
    """
    overrides = overrides or {}

    try:
        # 1. Load .env early (before YAML, so ${VAR} interpolation can use .env values)
        load_dotenv()

        # 2. YAML config as fallbacks
        unified = UnifiedConfig()
        sources = []
        config_files = discover_config_files()
        if config_files:
            unified = build_config(load_hierarchical_config())
            sources.append(f"config file: {config_files[0]}")

        # 3. Single call to load_config with all sources merged
        config = load_config(
            url=overrides.get("url"),
            storage_dir=overrides.get("storage_dir"),
            strategy=overrides.get("strategy"),
            debug=overrides.get("debug", False),
            unified=unified,
        )
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise RuntimeError(f"Configuration error: {e}") from e

    setup_logging(
        mode=overrides.get("log_mode", "cli"),
        debug=config.debug,
        log_file=unified.logging.file,
        level=(
            unified.logging.level
            if "level" in unified.logging.model_fields_set
            else None
        ),
    )

    if overrides:
        sources.append("explicit overrides")
    sources.append("environment variables")
    logger.info("Configuration loaded from: %s", ", ".join(sources))
    logger.info("Board API: %s", config.api_url)

    storage = JsonFileStore(Path(config.storage_dir))
    client = RemoteClient(config)
    events = EventBus()
    store = BoardStore(storage, debounce=config.persist_debounce)
    queue = SyncQueue.from_config(config, client, storage, events)
    strategy = MergeStrategy(config.merge_strategy)
    resolver = ConflictResolver(storage, strategy)
    engine = SyncEngine(store, queue, client, resolver, strategy)

    engine.restore()
    await engine.recover_base()
    queue.start()
    logger.info(
        "Sync ready: board v%d, %d queued change(s)",
        store.board.version,
        len(queue.entries),
    )

    try:
        yield engine
    finally:
        logger.info("Sync shutting down")
        await engine.stop()
        store.flush()
