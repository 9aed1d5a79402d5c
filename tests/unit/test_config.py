"""
Unit tests for ConfigManager.

Tests verify:
- TOML loading
- Environment variable overrides
- Programmatic overrides
- Type-specific getters
- The shipped default configuration
"""
from decimal import Decimal
from pathlib import Path

import pytest

from swipebatch.core.config import ConfigManager

DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config" / "default.toml"


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "test.toml"
    path.write_text("""
[swipebatch]
log_level = "DEBUG"
dry_run = true

[batching]
max_batch_size = 3
inactivity_timeout_seconds = 0.5

[stake]
default_usdc = 2.5
""")
    return path


class TestConfigBasics:
    """Tests for basic ConfigManager functionality."""

    def test_empty_config(self):
        """Verify ConfigManager works without a config file."""
        config = ConfigManager()
        assert config.get("any.key") is None
        assert config.get("any.key", "default") == "default"

    def test_load_toml_file(self, config_file):
        config = ConfigManager(config_path=config_file)

        assert config.get("swipebatch.log_level") == "DEBUG"
        assert config.get_bool("swipebatch.dry_run") is True
        assert config.get_int("batching.max_batch_size") == 3
        assert config.get_float("batching.inactivity_timeout_seconds") == 0.5

    def test_missing_file_is_ignored(self, tmp_path):
        config = ConfigManager(config_path=tmp_path / "missing.toml")
        assert config.raw_data == {}

    def test_get_decimal(self, config_file):
        config = ConfigManager(config_path=config_file)

        assert config.get_decimal("stake.default_usdc") == Decimal("2.5")
        assert config.get_decimal("stake.missing", Decimal("1")) == Decimal("1")

    def test_get_section(self, config_file):
        config = ConfigManager(config_path=config_file)

        assert config.get_section("batching") == {
            "max_batch_size": 3,
            "inactivity_timeout_seconds": 0.5,
        }
        assert config.get_section("nope") == {}


class TestOverrides:
    """Tests for environment and programmatic overrides."""

    def test_env_overrides_toml(self, config_file, monkeypatch):
        monkeypatch.setenv("SWIPEBATCH_BATCHING_MAX_BATCH_SIZE", "7")

        config = ConfigManager(config_path=config_file)

        assert config.get_int("batching.max_batch_size") == 7

    def test_env_boolean_parsing(self, monkeypatch):
        monkeypatch.setenv("SWIPEBATCH_SWIPEBATCH_DRY_RUN", "false")

        assert ConfigManager().get_bool("swipebatch.dry_run", True) is False

    def test_env_numeric_one_is_not_bool(self, monkeypatch):
        monkeypatch.setenv("SWIPEBATCH_BATCHING_MAX_BATCH_SIZE", "1")

        assert ConfigManager().get("batching.max_batch_size") == 1

    def test_constructor_overrides(self, config_file):
        config = ConfigManager(
            config_path=config_file,
            overrides={"database.path": ":memory:", "batching.max_batch_size": 9},
        )

        assert config.get("database.path") == ":memory:"
        assert config.get_int("batching.max_batch_size") == 9
        assert config.get("swipebatch.log_level") == "DEBUG"

    def test_reload_rereads_file(self, config_file):
        config = ConfigManager(config_path=config_file)
        config_file.write_text("[batching]\nmax_batch_size = 4\n")

        config.reload()

        assert config.get_int("batching.max_batch_size") == 4


class TestDefaultConfig:
    """The shipped config/default.toml carries the documented defaults."""

    def test_defaults(self):
        config = ConfigManager(config_path=DEFAULT_CONFIG)

        assert config.get_int("batching.max_batch_size") == 5
        assert config.get_float("batching.inactivity_timeout_seconds") == 8.0
        assert config.get_float("submission.release_cooldown_seconds") == 1.0
        assert config.get_decimal("stake.default_usdc") == Decimal("1")
        assert config.get_int("stake.asset_decimals") == 6
        assert config.get_decimal("allowance.daily_limit_usdc") == Decimal("100")
        assert config.get_float("relay.failure_rate") == 0.05
