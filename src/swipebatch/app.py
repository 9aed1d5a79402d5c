"""
swipebatch application lifecycle and component wiring.

Startup order:
1. Connect the state store
2. Connect the event bus (optional; runs without it)
3. Start the session manager

Shutdown runs in reverse: sessions drain their pending batches and wait for
in-flight submissions before the bus and store are closed.
"""
import asyncio
import signal
from pathlib import Path
from typing import Optional

import structlog

from swipebatch import __version__
from swipebatch.core.config import ConfigManager
from swipebatch.core.events import EventBus
from swipebatch.core.lifecycle import BaseComponent, HealthCheckResult, HealthStatus
from swipebatch.core.logging import setup_logging
from swipebatch.domain.boundaries import SubmissionBoundary
from swipebatch.integrations.relay import DryRunRelay
from swipebatch.services.allowance import StoreAllowanceGate
from swipebatch.services.metrics import MetricsEmitter
from swipebatch.services.session import SessionManager
from swipebatch.services.state_store import StateStore


class SwipeBatchApp(BaseComponent):
    """Main swipebatch application.

    Usage:
        app = SwipeBatchApp(config)
        await app.start()
        await app.sessions.swipe("user-1", "market-1", "right")
        await app.stop()
    """

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        relay: Optional[SubmissionBoundary] = None,
        config_path: Optional[Path] = None,
    ) -> None:
        """Initialize the application.

        Args:
            config: Configuration manager (loaded from config_path if absent)
            relay: Submission boundary; the dry-run relay is used when omitted
            config_path: Path to TOML configuration file
        """
        super().__init__(name="SwipeBatchApp")

        if config is None:
            if config_path is None:
                config_path = Path("config/default.toml")
                if not config_path.exists():
                    config_path = None
            config = ConfigManager(config_path)
        self._config = config
        self._dry_run = self._config.get_bool("swipebatch.dry_run", True)

        log_level = self._config.get("swipebatch.log_level", "INFO")
        log_json = self._config.get_bool("swipebatch.log_json", False)
        setup_logging(level=log_level, json_output=log_json)
        self._log = structlog.get_logger("swipebatch.app")

        if relay is None:
            if not self._dry_run:
                raise ValueError("swipebatch.dry_run is false but no relay was provided")
            relay = DryRunRelay.from_config(self._config)
        self._relay = relay

        redis_url = self._config.get("redis.url", "redis://localhost:6379")
        self._event_bus = EventBus(redis_url=redis_url)
        self._metrics = MetricsEmitter()
        self._store = StateStore(config=self._config)
        self._allowance = StoreAllowanceGate(self._store, self._config)
        self._sessions: Optional[SessionManager] = None
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> ConfigManager:
        return self._config

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def metrics(self) -> MetricsEmitter:
        return self._metrics

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def allowance(self) -> StoreAllowanceGate:
        return self._allowance

    @property
    def relay(self) -> SubmissionBoundary:
        return self._relay

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @property
    def sessions(self) -> SessionManager:
        """Session manager (available once started)."""
        if self._sessions is None:
            raise RuntimeError("SwipeBatchApp is not started")
        return self._sessions

    async def _do_start(self) -> None:
        """Start all components."""
        self._log.info("starting_swipebatch", dry_run=self._dry_run, version=__version__)

        await self._store.connect()

        try:
            await self._event_bus.connect()
            self._log.info("event_bus_connected")
        except Exception as e:
            self._log.warning(
                "event_bus_connection_failed",
                error=str(e),
                message="Running without event bus",
            )

        self._sessions = SessionManager(
            self._config,
            self._store,
            self._relay,
            allowance=self._allowance,
            event_bus=self._event_bus if self._event_bus.is_connected else None,
            metrics=self._metrics,
        )
        await self._sessions.start()

        self._log.info("swipebatch_started", dry_run=self._dry_run)

    async def _do_stop(self) -> None:
        """Drain sessions, then close connections."""
        self._log.info("stopping_swipebatch")

        if self._sessions is not None:
            await self._sessions.stop()

        self._metrics.update_uptime(self.uptime_seconds)

        if self._event_bus.is_connected:
            await self._event_bus.disconnect()
            self._log.info("event_bus_disconnected")

        await self._store.close()
        self._log.info("swipebatch_stopped")

    async def _do_health_check(self) -> HealthCheckResult:
        """Check health of all components."""
        issues = []

        if not self._store.is_connected:
            return HealthCheckResult.unhealthy("State store disconnected")

        if not self._event_bus.is_connected:
            issues.append("event_bus_disconnected")

        if self._sessions is not None:
            session_health = await self._sessions.health_check()
            if session_health.status == HealthStatus.UNHEALTHY:
                issues.append("sessions_unhealthy")

        if issues:
            return HealthCheckResult.degraded(
                message=f"Issues: {', '.join(issues)}",
                uptime_seconds=self.uptime_seconds,
            )

        return HealthCheckResult.healthy(
            uptime_seconds=self.uptime_seconds,
            dry_run=self._dry_run,
        )

    def request_shutdown(self) -> None:
        self._log.info("shutdown_requested")
        self._shutdown_event.set()

    async def run_forever(self) -> None:
        """Run until SIGTERM/SIGINT, then shut down gracefully."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                self._log.debug("signal_handler_unsupported", signal=sig.name)

        await self.start()
        try:
            while not self._shutdown_event.is_set():
                self._metrics.update_uptime(self.uptime_seconds)
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=1.0)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.stop()
