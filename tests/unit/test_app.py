"""
Tests for application wiring and the command-line entry point.
"""
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from swipebatch import __version__
from swipebatch.__main__ import (
    find_config_file,
    load_config,
    main,
    parse_args,
    print_market_stats,
    print_stats,
)
from swipebatch.app import SwipeBatchApp
from swipebatch.core.config import ConfigManager
from swipebatch.core.lifecycle import HealthStatus
from swipebatch.domain.intent import Side
from swipebatch.integrations.relay import DryRunRelay

FAST_SETTINGS = {
    "SWIPEBATCH_RELAY_CONFIRM_DELAY_SECONDS": "0.0",
    "SWIPEBATCH_RELAY_FAILURE_RATE": "0.0",
    "SWIPEBATCH_SUBMISSION_RELEASE_COOLDOWN_SECONDS": "0.0",
    "SWIPEBATCH_BATCHING_INACTIVITY_TIMEOUT_SECONDS": "0.05",
}


@pytest.fixture
def fast_env(monkeypatch):
    for key, value in FAST_SETTINGS.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setattr(
        "swipebatch.core.events.EventBus.connect",
        AsyncMock(side_effect=ConnectionError("redis unavailable")),
    )


@pytest.fixture
def app_config(tmp_path, fast_env):
    return ConfigManager(overrides={"database.path": str(tmp_path / "app.db")})


class TestSwipeBatchApp:
    """Test component wiring."""

    def test_defaults_to_dry_run_relay(self, app_config):
        app = SwipeBatchApp(app_config)

        assert app.dry_run
        assert isinstance(app.relay, DryRunRelay)

    def test_live_mode_requires_relay(self, app_config):
        app_config.set("swipebatch.dry_run", False)

        with pytest.raises(ValueError, match="no relay"):
            SwipeBatchApp(app_config)

    def test_sessions_unavailable_before_start(self, app_config):
        with pytest.raises(RuntimeError, match="not started"):
            SwipeBatchApp(app_config).sessions

    @pytest.mark.asyncio
    async def test_start_swipe_stop_without_event_bus(self, app_config, market_factory):
        app = SwipeBatchApp(app_config)
        await app.start()
        try:
            await app.store.save_market(market_factory("m1"))
            await app.allowance.approve("u1")
            await app.sessions.swipe("u1", "m1", "right", stake=Decimal("2"))

            health = await app.health_check()
            assert health.status is HealthStatus.DEGRADED
            assert "event_bus_disconnected" in health.message
        finally:
            await app.stop()

        await app.store.connect()
        try:
            stats = await app.store.get_user_stats("u1")
        finally:
            await app.store.close()
        assert stats == {"total_invested": Decimal("2"), "total_predictions": 1}


class TestCli:
    """Test argument parsing and commands."""

    def test_parse_demo_args(self):
        args = parse_args(["--db", "x.db", "demo", "--swipes", "3", "--seed", "4"])

        assert args.command == "demo"
        assert args.swipes == 3
        assert args.seed == 4
        assert args.db == "x.db"

    def test_version_command(self, capsys):
        assert main(["version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_find_config_prefers_existing_path(self, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text("[batching]\nmax_batch_size = 2\n")

        assert find_config_file(path) == path

    def test_load_config_applies_overrides(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        args = parse_args(["--log-level", "DEBUG", "--db", str(tmp_path / "o.db"), "run"])

        config = load_config(args)

        assert config.get("swipebatch.log_level") == "DEBUG"
        assert config.get("database.path") == str(tmp_path / "o.db")

    def test_demo_then_stats(self, tmp_path, fast_env, capsys):
        db = str(tmp_path / "demo.db")

        assert main(["--db", db, "demo", "--swipes", "4", "--markets", "3", "--seed", "1"]) == 0
        demo_out = capsys.readouterr().out
        assert "User: demo-user" in demo_out

        assert main(["--db", db, "stats", "--user", "demo-user"]) == 0
        assert "Predictions:" in capsys.readouterr().out

        assert main(["--db", db, "stats", "--market", "demo-1"]) == 0
        market_out = capsys.readouterr().out
        assert "Market: demo-1" in market_out
        assert "YES:" in market_out

    def test_stats_requires_user_or_market(self):
        with pytest.raises(SystemExit):
            parse_args(["stats"])
        with pytest.raises(SystemExit):
            parse_args(["stats", "--user", "u1", "--market", "m1"])

    @pytest.mark.asyncio
    async def test_print_stats_lists_recent_predictions(self, state_store, capsys):
        await state_store.create_prediction_record("u1", "m1", Side.YES, Decimal("2"), "0xabcdef123456", "b1")
        await state_store.create_prediction_record("u1", "m2", Side.NO, Decimal("1"), "0x9876543210ab", "b1")

        await print_stats(state_store, "u1")
        await print_market_stats(state_store, "m1")

        out = capsys.readouterr().out
        assert "Recent predictions:" in out
        assert "m1 YES 2 (0xabcdef12)" in out
        assert "YES: 2 USDC (100.0%)" in out
