"""
Component lifecycle.

The application, and the session manager it owns, are started and stopped in
order and report health through the same result type.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class HealthStatus(str, Enum):
    """Component health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    """Result of a health check."""
    status: HealthStatus
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def healthy(cls, message: str = "OK", **details: Any) -> "HealthCheckResult":
        return cls(status=HealthStatus.HEALTHY, message=message, details=details)

    @classmethod
    def degraded(cls, message: str, **details: Any) -> "HealthCheckResult":
        return cls(status=HealthStatus.DEGRADED, message=message, details=details)

    @classmethod
    def unhealthy(cls, message: str, **details: Any) -> "HealthCheckResult":
        return cls(status=HealthStatus.UNHEALTHY, message=message, details=details)


class BaseComponent:
    """Start/stop bookkeeping shared by long-lived components.

    Subclasses override ``_do_start``, ``_do_stop`` and ``_do_health_check``.
    ``start`` and ``stop`` are idempotent; a component that is not running
    reports itself unhealthy without calling ``_do_health_check``.
    """

    def __init__(self, name: Optional[str] = None) -> None:
        self._name = name or self.__class__.__name__
        self._running = False
        self._started_at: Optional[datetime] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def uptime_seconds(self) -> float:
        if not self._started_at:
            return 0.0
        return (datetime.now(timezone.utc) - self._started_at).total_seconds()

    async def start(self) -> None:
        if self._running:
            return
        await self._do_start()
        self._running = True
        self._started_at = datetime.now(timezone.utc)

    async def stop(self) -> None:
        if not self._running:
            return
        await self._do_stop()
        self._running = False

    async def health_check(self) -> HealthCheckResult:
        if not self._running:
            return HealthCheckResult.unhealthy(f"{self._name} not running")
        return await self._do_health_check()

    async def _do_start(self) -> None:
        pass

    async def _do_stop(self) -> None:
        pass

    async def _do_health_check(self) -> HealthCheckResult:
        return HealthCheckResult.healthy(uptime_seconds=self.uptime_seconds)
