"""
Swipe sessions - per-user wiring of the batching pipeline.

Each SwipeSession owns its user's pending batches, submission gate and
processed receipts; nothing is shared across users. SessionManager creates
sessions on demand and drains them on shutdown.

Validation and allowance errors raise from ``swipe`` directly. Everything
after a batch is flushed is reported through ``batch.*`` notifications.
"""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from swipebatch.core.config import ConfigManager
from swipebatch.core.events import EventBus
from swipebatch.core.lifecycle import BaseComponent, HealthCheckResult
from swipebatch.domain.boundaries import AllowanceGate, SubmissionBoundary
from swipebatch.domain.errors import InsufficientAllowanceError, InvalidIntentError, InvalidMarketError
from swipebatch.domain.events import BATCH_FLUSHED, BATCH_QUEUED, BatchFlushedEvent, BatchQueuedEvent
from swipebatch.domain.intent import Batch, FlushTrigger, Intent, Side, validate_stake
from swipebatch.services.batching import (
    DEFAULT_INACTIVITY_TIMEOUT,
    DEFAULT_MAX_BATCH_SIZE,
    BatchAccumulator,
)
from swipebatch.services.call_builder import USDC_DECIMALS, CallBuilder
from swipebatch.services.lifecycle_monitor import LifecycleMonitor, ProcessedReceipts
from swipebatch.services.market_validator import MarketValidator
from swipebatch.services.metrics import MetricsEmitter
from swipebatch.services.notifier import Notifier
from swipebatch.services.persistence_sync import PersistenceSync
from swipebatch.services.state_store import StateStore
from swipebatch.services.submission_gate import (
    DEFAULT_ESCALATION_AFTER,
    DEFAULT_RELEASE_COOLDOWN,
    SubmissionGate,
)

log = structlog.get_logger()

SKIP = "up"
DEFAULT_STAKE = Decimal("1")
DEFAULT_SHUTDOWN_TIMEOUT = 30.0
SWIPE_LOG_LIMIT = 200


@dataclass(frozen=True)
class SwipeRecord:
    """One swipe as the user made it, including skips."""
    market_id: str
    direction: str
    intent_id: Optional[str] = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SwipeSession:
    """The batching pipeline for one user."""

    def __init__(
        self,
        user_id: str,
        store: StateStore,
        boundary: SubmissionBoundary,
        allowance: Optional[AllowanceGate] = None,
        notifier: Optional[Notifier] = None,
        metrics: Optional[MetricsEmitter] = None,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
        release_cooldown: float = DEFAULT_RELEASE_COOLDOWN,
        escalation_after: Optional[float] = DEFAULT_ESCALATION_AFTER,
        default_stake: Decimal = DEFAULT_STAKE,
        asset_decimals: int = USDC_DECIMALS,
    ):
        self._user_id = user_id
        self._allowance = allowance
        self._notifier = notifier or Notifier()
        self._metrics = metrics
        self._default_stake = default_stake
        self._decimals = asset_decimals
        self._log = log.bind(component="swipe_session", user_id=user_id)
        self._swipes: deque[SwipeRecord] = deque(maxlen=SWIPE_LOG_LIMIT)
        self._swipe_count = 0
        self._admission = asyncio.Lock()

        self._validator = MarketValidator(store)
        self._builder = CallBuilder(asset_decimals)
        self._monitor = LifecycleMonitor(
            PersistenceSync(store, store, metrics),
            receipts=ProcessedReceipts(),
            notifier=self._notifier,
            history=store,
            metrics=metrics,
        )
        self._gate = SubmissionGate(
            user_id,
            boundary,
            self._monitor,
            validator=self._validator,
            allowance=allowance,
            release_cooldown=release_cooldown,
            escalation_after=escalation_after,
            on_release=self._on_gate_release,
            notifier=self._notifier,
            metrics=metrics,
        )
        self._accumulator = BatchAccumulator(
            user_id,
            self._gate.try_submit,
            max_batch_size=max_batch_size,
            inactivity_timeout=inactivity_timeout,
            on_flushed=self._on_flushed,
            metrics=metrics,
        )

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def accumulator(self) -> BatchAccumulator:
        return self._accumulator

    @property
    def gate(self) -> SubmissionGate:
        return self._gate

    @property
    def monitor(self) -> LifecycleMonitor:
        return self._monitor

    @property
    def swipes(self) -> tuple[SwipeRecord, ...]:
        """The most recent swipes, oldest first."""
        return tuple(self._swipes)

    @property
    def swipe_count(self) -> int:
        return self._swipe_count

    def _record_swipe(self, record: SwipeRecord) -> None:
        self._swipes.append(record)
        self._swipe_count += 1

    @property
    def committed_stake(self) -> Decimal:
        """Stake queued locally plus stake in the submission holding the gate.

        The in-flight batch counts until the gate is released, which on the
        confirmed path happens only after its prediction rows are written.
        """
        stake = self._accumulator.pending_stake
        record = self._gate.in_flight
        if record is not None and not record.released:
            stake += record.batch.total_stake
        return stake

    async def swipe(self, market_id: str, direction: str, stake: Optional[Decimal] = None) -> Optional[Intent]:
        """Turn one swipe into a queued intent.

        "right" backs YES, "left" backs NO, "up" skips the card.

        Returns:
            The queued intent, or None for a skip.

        Raises:
            ValueError: Unknown direction.
            InvalidIntentError: Stake not positive or too precise.
            InvalidMarketError: Market absent, resolved, ended or undeployed.
            InsufficientAllowanceError: Approval does not cover the stake.
        """
        direction = direction.lower()
        if direction == SKIP:
            self._record_swipe(SwipeRecord(market_id=market_id, direction=direction))
            if self._metrics:
                self._metrics.record_intent("skipped")
            self._log.debug("card_skipped", market_id=market_id)
            return None

        side = Side.from_swipe(direction)

        # Checks and append run under one lock so concurrent swipes cannot
        # both be admitted against the same committed stake.
        async with self._admission:
            try:
                amount = validate_stake(stake if stake is not None else self._default_stake, self._decimals)
                target = await self._validator.validate(market_id)
                if self._allowance is not None:
                    required = self.committed_stake + amount
                    if not await self._allowance.is_sufficient(self._user_id, required):
                        raise InsufficientAllowanceError(self._user_id, required)
            except (InvalidIntentError, InvalidMarketError, InsufficientAllowanceError) as e:
                if self._metrics:
                    self._metrics.record_intent("rejected")
                self._log.info("intent_rejected", market_id=market_id, reason=str(e))
                raise

            intent = Intent(
                user_id=self._user_id,
                market_id=market_id,
                side=side,
                stake=amount,
                call=self._builder.build(target, side, amount),
            )
            self._record_swipe(
                SwipeRecord(market_id=market_id, direction=direction, intent_id=intent.intent_id)
            )
            batch = self._accumulator.append(intent)

        if self._metrics:
            self._metrics.record_intent("queued")
        self._log.info(
            "intent_queued",
            batch_id=batch.batch_id,
            market_id=market_id,
            side=side.value,
            stake=str(amount),
            count=len(batch),
        )
        self._notifier.publish_soon(
            BATCH_QUEUED,
            BatchQueuedEvent.create(
                user_id=self._user_id,
                batch_id=batch.batch_id,
                count=len(batch),
                market_id=market_id,
                side=side.value,
            ),
        )
        return intent

    def flush(self, trigger: FlushTrigger = FlushTrigger.CLOSE):
        """Flush the oldest pending batch now."""
        return self._accumulator.flush(trigger)

    def _on_flushed(self, batch: Batch, trigger: FlushTrigger) -> None:
        self._notifier.publish_soon(
            BATCH_FLUSHED,
            BatchFlushedEvent.create(
                user_id=self._user_id,
                batch_id=batch.batch_id,
                trigger=trigger.value,
                count=len(batch),
                total_stake=batch.total_stake,
            ),
        )

    def _on_gate_release(self) -> None:
        self._accumulator.kick()

    async def close(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
        """Flush everything pending and wait for submissions to resolve."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        self._accumulator.drain()
        while self._accumulator.pending_count or self._gate.is_in_flight:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await self._gate.wait_idle(remaining)
            await asyncio.sleep(min(0.05, max(deadline - loop.time(), 0)))

        self._accumulator.cancel()
        if self._accumulator.pending_count:
            self._log.warning("intents_abandoned", count=self._accumulator.pending_count)
        await self._gate.close(timeout=0)
        await self._notifier.drain()
        self._log.info("session_closed", swipes=self._swipe_count, receipts=len(self._monitor.receipts))


class SessionManager(BaseComponent):
    """Owns one SwipeSession per user for the life of the service."""

    def __init__(
        self,
        config: ConfigManager,
        store: StateStore,
        boundary: SubmissionBoundary,
        allowance: Optional[AllowanceGate] = None,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsEmitter] = None,
    ):
        super().__init__(name="SessionManager")
        self._config = config
        self._store = store
        self._boundary = boundary
        self._allowance = allowance
        self._notifier = Notifier(event_bus)
        self._metrics = metrics
        self._log = log.bind(component="session_manager")
        self._sessions: dict[str, SwipeSession] = {}

        self._max_batch_size = config.get_int("batching.max_batch_size", DEFAULT_MAX_BATCH_SIZE)
        self._inactivity_timeout = config.get_float(
            "batching.inactivity_timeout_seconds", DEFAULT_INACTIVITY_TIMEOUT
        )
        self._release_cooldown = config.get_float(
            "submission.release_cooldown_seconds", DEFAULT_RELEASE_COOLDOWN
        )
        self._escalation_after = config.get_float(
            "submission.escalation_after_seconds", DEFAULT_ESCALATION_AFTER
        )
        self._shutdown_timeout = config.get_float(
            "submission.shutdown_timeout_seconds", DEFAULT_SHUTDOWN_TIMEOUT
        )
        self._default_stake = config.get_decimal("stake.default_usdc", DEFAULT_STAKE)
        self._decimals = config.get_int("stake.asset_decimals", USDC_DECIMALS)

    @property
    def sessions(self) -> dict[str, SwipeSession]:
        return dict(self._sessions)

    def get_session(self, user_id: str) -> SwipeSession:
        """Return the user's session, creating it on first use."""
        session = self._sessions.get(user_id)
        if session is None:
            session = SwipeSession(
                user_id,
                self._store,
                self._boundary,
                allowance=self._allowance,
                notifier=self._notifier,
                metrics=self._metrics,
                max_batch_size=self._max_batch_size,
                inactivity_timeout=self._inactivity_timeout,
                release_cooldown=self._release_cooldown,
                escalation_after=self._escalation_after,
                default_stake=self._default_stake,
                asset_decimals=self._decimals,
            )
            self._sessions[user_id] = session
            self._log.info("session_opened", user_id=user_id)
        return session

    async def swipe(
        self,
        user_id: str,
        market_id: str,
        direction: str,
        stake: Optional[Decimal] = None,
    ) -> Optional[Intent]:
        if not self._running:
            raise RuntimeError("SessionManager is not running")
        return await self.get_session(user_id).swipe(market_id, direction, stake)

    async def close_session(self, user_id: str) -> None:
        session = self._sessions.pop(user_id, None)
        if session is not None:
            await session.close(self._shutdown_timeout)

    async def _do_start(self) -> None:
        self._log.info(
            "session_manager_started",
            max_batch_size=self._max_batch_size,
            inactivity_timeout=self._inactivity_timeout,
        )

    async def _do_stop(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        await asyncio.gather(*(s.close(self._shutdown_timeout) for s in sessions))
        self._log.info("session_manager_stopped", sessions=len(sessions))

    async def _do_health_check(self) -> HealthCheckResult:
        in_flight = sum(1 for s in self._sessions.values() if s.gate.is_in_flight)
        pending = sum(s.accumulator.pending_count for s in self._sessions.values())
        return HealthCheckResult.healthy(
            "Sessions active",
            sessions=len(self._sessions),
            in_flight=in_flight,
            pending_intents=pending,
        )
