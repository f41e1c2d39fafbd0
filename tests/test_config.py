"""Tests for kanban_sync.config: env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests the runtime
bootstrap path: validate_config() and load_config().
"""

import pytest

from kanban_sync.config import Config, load_config, validate_config
from kanban_sync.config_schema import (
    MergeConfig,
    QueueConfig,
    RemoteConfig,
    UnifiedConfig,
)

_ENV_VARS = (
    "KANBAN_API_URL",
    "KANBAN_REQUEST_TIMEOUT",
    "KANBAN_STORAGE_DIR",
    "KANBAN_MAX_RETRIES",
    "KANBAN_MERGE_STRATEGY",
    "KANBAN_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config(): URL format and numeric ranges."""

    def test_defaults_are_valid(self):
        validate_config(Config())  # should not raise

    def test_http_url_valid(self):
        validate_config(Config(api_url="http://localhost:3000/api"))

    def test_invalid_url_no_scheme(self):
        with pytest.raises(
            ValueError, match="must start with http:// or https://"
        ):
            validate_config(Config(api_url="example.com/api"))

    def test_invalid_url_ftp_scheme(self):
        with pytest.raises(
            ValueError, match="must start with http:// or https://"
        ):
            validate_config(Config(api_url="ftp://example.com"))

    def test_empty_host_url(self):
        """URL with scheme but no hostname should be rejected."""
        with pytest.raises(ValueError, match="must include a hostname"):
            validate_config(Config(api_url="https://"))

    def test_trailing_slash_stripped(self):
        config = Config(api_url="https://board.example.com/api/")
        validate_config(config)
        assert config.api_url == "https://board.example.com/api"

    def test_whitespace_url_stripped_before_scheme_check(self):
        config = Config(api_url="  https://board.example.com  ")
        validate_config(config)
        assert config.api_url == "https://board.example.com"

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError, match="must be positive"):
            validate_config(Config(request_timeout=0))

    def test_max_retries_at_least_one(self):
        with pytest.raises(ValueError, match="must be at least 1"):
            validate_config(Config(max_retries=0))

    def test_retry_delays_not_empty(self):
        with pytest.raises(ValueError, match="retry_delays cannot be empty"):
            validate_config(Config(retry_delays=()))

    def test_interval_bounds(self):
        with pytest.raises(ValueError, match="must not exceed"):
            validate_config(Config(sync_interval_min=90, sync_interval_max=60))

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown merge strategy"):
            validate_config(Config(merge_strategy="coin_flip"))


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config(): env vars, explicit overrides, YAML fallbacks."""

    def test_zero_config(self):
        config = load_config()

        assert config.api_url == "http://localhost:3000/api"
        assert config.max_retries == 4
        assert config.retry_delays == (0.0, 1.0, 5.0, 15.0)
        assert config.merge_strategy == "auto_merge"
        assert config.debug is False

    def test_load_from_env_vars(self, monkeypatch):
        monkeypatch.setenv("KANBAN_API_URL", "https://board.example.com/api")
        monkeypatch.setenv("KANBAN_REQUEST_TIMEOUT", "2.5")
        monkeypatch.setenv("KANBAN_STORAGE_DIR", "/tmp/kanban")
        monkeypatch.setenv("KANBAN_MAX_RETRIES", "6")
        monkeypatch.setenv("KANBAN_MERGE_STRATEGY", " server_wins ")

        config = load_config()

        assert config.api_url == "https://board.example.com/api"
        assert config.request_timeout == 2.5
        assert config.storage_dir == "/tmp/kanban"
        assert config.max_retries == 6
        assert config.merge_strategy == "server_wins"

    def test_explicit_args_override_env(self, monkeypatch):
        monkeypatch.setenv("KANBAN_API_URL", "https://env.example.com")
        monkeypatch.setenv("KANBAN_MERGE_STRATEGY", "server_wins")

        config = load_config(
            url="https://cli.example.com",
            storage_dir="/data",
            strategy="local_wins",
        )

        assert config.api_url == "https://cli.example.com"
        assert config.storage_dir == "/data"
        assert config.merge_strategy == "local_wins"

    def test_env_overrides_unified(self, monkeypatch):
        monkeypatch.setenv("KANBAN_MAX_RETRIES", "2")
        unified = UnifiedConfig(
            remote=RemoteConfig(url="https://yaml.example.com", timeout=3),
            queue=QueueConfig(max_retries=8, retry_delays=[1.0]),
        )

        config = load_config(unified=unified)

        assert config.api_url == "https://yaml.example.com"
        assert config.request_timeout == 3
        assert config.max_retries == 2
        assert config.retry_delays == (1.0,)

    def test_unified_strategy_used(self):
        unified = UnifiedConfig(merge=MergeConfig(strategy="manual"))
        assert load_config(unified=unified).merge_strategy == "manual"

    @pytest.mark.parametrize("value", ["true", "1", "yes", "on", "TRUE"])
    def test_debug_truthy_values(self, monkeypatch, value):
        monkeypatch.setenv("KANBAN_DEBUG", value)
        assert load_config().debug is True

    @pytest.mark.parametrize("value", ["false", "0", "no", "off", ""])
    def test_debug_falsy_values(self, monkeypatch, value):
        monkeypatch.setenv("KANBAN_DEBUG", value)
        assert load_config().debug is False

    def test_debug_arg(self):
        assert load_config(debug=True).debug is True

    def test_timeout_non_numeric(self, monkeypatch):
        monkeypatch.setenv("KANBAN_REQUEST_TIMEOUT", "soon")
        with pytest.raises(ValueError, match="must be a number"):
            load_config()

    def test_max_retries_non_numeric(self, monkeypatch):
        monkeypatch.setenv("KANBAN_MAX_RETRIES", "abc")
        with pytest.raises(ValueError, match="must be an integer"):
            load_config()

    def test_max_retries_zero(self, monkeypatch):
        monkeypatch.setenv("KANBAN_MAX_RETRIES", "0")
        with pytest.raises(ValueError, match="must be at least 1"):
            load_config()

    def test_invalid_env_url(self, monkeypatch):
        monkeypatch.setenv("KANBAN_API_URL", "board.example.com")
        with pytest.raises(ValueError, match="must start with"):
            load_config()
