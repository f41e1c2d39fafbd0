"""Runtime configuration for the sync core.

Reads settings from explicit arguments, environment variables, .env files,
and YAML config file fallbacks.

Precedence (highest to lowest):
    Explicit args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    KANBAN_API_URL: Base URL of the board API (optional, default: http://localhost:3000/api)
    KANBAN_REQUEST_TIMEOUT: Request timeout in seconds (optional, default: 10)
    KANBAN_STORAGE_DIR: Directory for persisted state (optional)
    KANBAN_MAX_RETRIES: Delivery attempts per queue entry (optional, default: 4)
    KANBAN_MERGE_STRATEGY: auto_merge, local_wins, server_wins or manual
    KANBAN_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass, replace
from urllib.parse import urlparse

from .config_schema import UnifiedConfig, to_runtime_config

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:3000/api"
MERGE_STRATEGIES = ("auto_merge", "local_wins", "server_wins", "manual")


@dataclass
class Config:
    api_url: str = DEFAULT_API_URL
    request_timeout: float = 10.0
    storage_dir: str = ".kanban_sync/data"
    persist_debounce: float = 0.5
    max_retries: int = 4
    retry_delays: tuple[float, ...] = (0.0, 1.0, 5.0, 15.0)
    sync_throttle: float = 0.5
    sync_interval_min: float = 30.0
    sync_interval_max: float = 60.0
    auto_sync: bool = True
    merge_strategy: str = "auto_merge"
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the URL format is invalid or a numeric setting is
            out of range.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    if config.request_timeout <= 0:
        raise ValueError(
            f"Invalid request timeout {config.request_timeout}: must be positive"
        )

    if config.max_retries < 1:
        raise ValueError(
            f"Invalid max_retries {config.max_retries}: must be at least 1"
        )

    if not config.retry_delays:
        raise ValueError("retry_delays cannot be empty")

    if config.sync_interval_min > config.sync_interval_max:
        raise ValueError(
            "sync_interval_min must not exceed sync_interval_max"
        )

    if config.merge_strategy not in MERGE_STRATEGIES:
        raise ValueError(
            f"Unknown merge strategy '{config.merge_strategy}'. "
            f"Valid strategies: {list(MERGE_STRATEGIES)}"
        )


def load_config(
    url: str | None = None,
    storage_dir: str | None = None,
    strategy: str | None = None,
    debug: bool = False,
    unified: UnifiedConfig | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        explicit arg > env var / .env > unified (YAML) config > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override API base URL.
        storage_dir: Override the persistence directory.
        strategy: Override the merge strategy.
        debug: Enable debug logging.
        unified: Values from the YAML config file, used as fallbacks.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value from any source is invalid.
    """
    config = to_runtime_config(unified or UnifiedConfig())

    # --- Environment layer ---

    env_url = os.getenv("KANBAN_API_URL")
    if env_url:
        config = replace(config, api_url=env_url)

    timeout_raw = os.getenv("KANBAN_REQUEST_TIMEOUT")
    if timeout_raw is not None:
        try:
            config = replace(config, request_timeout=float(timeout_raw))
        except ValueError:
            raise ValueError(
                f"Invalid KANBAN_REQUEST_TIMEOUT '{timeout_raw}': must be a number"
            ) from None

    env_storage = os.getenv("KANBAN_STORAGE_DIR")
    if env_storage:
        config = replace(config, storage_dir=env_storage)

    retries_raw = os.getenv("KANBAN_MAX_RETRIES")
    if retries_raw is not None:
        try:
            config = replace(config, max_retries=int(retries_raw))
        except ValueError:
            raise ValueError(
                f"Invalid KANBAN_MAX_RETRIES '{retries_raw}': must be an integer"
            ) from None

    env_strategy = os.getenv("KANBAN_MERGE_STRATEGY")
    if env_strategy:
        config = replace(config, merge_strategy=env_strategy.strip())

    def get_bool_env(key: str) -> bool | None:
        """Return True/False from env var, or None if unset."""
        val = os.getenv(key)
        if val is None:
            return None
        return val.lower() in ("true", "1", "yes", "on")

    env_debug = get_bool_env("KANBAN_DEBUG")
    if env_debug is not None:
        config = replace(config, debug=env_debug)

    # --- Explicit arguments ---

    if url:
        config = replace(config, api_url=url)
    if storage_dir:
        config = replace(config, storage_dir=storage_dir)
    if strategy:
        config = replace(config, merge_strategy=strategy)
    if debug:
        config = replace(config, debug=True)

    validate_config(config)

    return config
