"""
Submission Gate - one in-flight submission per user.

``try_submit`` is synchronous: the in-flight slot is checked and taken before
any await, so two flushes racing through the event loop cannot both submit.
An accepted batch then goes through its pre-submit checks and to the relay
in a background task, and the LifecycleMonitor takes over its status stream.

The slot is cleared a short cooldown after the record turns terminal, which
absorbs a trailing duplicate event before a new batch can take the slot.
"""
import asyncio
from collections import deque
from decimal import Decimal
from typing import Callable, Optional

import structlog

from swipebatch.domain.boundaries import AllowanceGate, SubmissionBoundary
from swipebatch.domain.events import BATCH_STALLED, BatchStalledEvent
from swipebatch.domain.intent import Batch, Intent
from swipebatch.domain.submission import SubmissionDecision, SubmissionRecord, SubmissionState
from swipebatch.services.lifecycle_monitor import LifecycleMonitor
from swipebatch.services.market_validator import MarketValidator
from swipebatch.services.metrics import MetricsEmitter
from swipebatch.services.notifier import Notifier

log = structlog.get_logger()

DEFAULT_RELEASE_COOLDOWN = 1.0
DEFAULT_ESCALATION_AFTER = 300.0
HISTORY_LIMIT = 50

INSUFFICIENT_ALLOWANCE = "insufficient_allowance"


class SubmissionGate:
    """Serializes batch submissions for one user."""

    def __init__(
        self,
        user_id: str,
        boundary: SubmissionBoundary,
        monitor: LifecycleMonitor,
        validator: Optional[MarketValidator] = None,
        allowance: Optional[AllowanceGate] = None,
        release_cooldown: float = DEFAULT_RELEASE_COOLDOWN,
        escalation_after: Optional[float] = DEFAULT_ESCALATION_AFTER,
        on_release: Optional[Callable[[], None]] = None,
        notifier: Optional[Notifier] = None,
        metrics: Optional[MetricsEmitter] = None,
    ):
        self._user_id = user_id
        self._boundary = boundary
        self._monitor = monitor
        self._validator = validator
        self._allowance = allowance
        self._release_cooldown = release_cooldown
        self._escalation_after = escalation_after
        self._on_release = on_release
        self._notifier = notifier or Notifier()
        self._metrics = metrics
        self._log = log.bind(component="submission_gate", user_id=user_id)

        self._in_flight: Optional[SubmissionRecord] = None
        self._escalation: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self._history: deque[SubmissionRecord] = deque(maxlen=HISTORY_LIMIT)

    @property
    def in_flight(self) -> Optional[SubmissionRecord]:
        return self._in_flight

    @property
    def is_in_flight(self) -> bool:
        return self._in_flight is not None

    @property
    def history(self) -> tuple[SubmissionRecord, ...]:
        """The most recent records this gate has accepted, oldest first."""
        return tuple(self._history)

    def try_submit(self, batch: Batch) -> SubmissionDecision:
        """Take the in-flight slot for ``batch`` or reject it.

        Raises:
            ValueError: If the batch is not frozen.
        """
        if not batch.is_frozen:
            raise ValueError(f"batch {batch.batch_id} must be frozen before submission")

        if self._in_flight is not None:
            if self._metrics:
                self._metrics.record_submission_decision("rejected")
            self._log.debug(
                "submission_rejected",
                batch_id=batch.batch_id,
                in_flight=self._in_flight.batch_id,
            )
            return SubmissionDecision.reject_in_flight()

        record = SubmissionRecord(batch=batch)
        self._in_flight = record
        self._history.append(record)
        if self._metrics:
            self._metrics.record_submission_decision("accepted")
            self._metrics.submission_started()

        loop = asyncio.get_running_loop()
        if self._escalation_after:
            self._escalation = loop.call_later(self._escalation_after, self._escalate, record)

        task = loop.create_task(self._submit(record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return SubmissionDecision.accept(record)

    async def _submit(self, record: SubmissionRecord) -> None:
        dropped: list[tuple[Intent, str]] = []
        try:
            if self._validator is not None:
                kept, dropped = await self._validator.filter_live(record.batch)
                if dropped:
                    self._monitor.log_dropped(record, [(i, f"market_{r}") for i, r in dropped])
                if not kept:
                    await self._monitor.resolve_dropped(record, dropped, self.release)
                    return
                if dropped:
                    record.batch = record.batch.narrowed(kept)

            if self._allowance is not None:
                kept, unaffordable = await self._affordable(record)
                if not kept:
                    await self._monitor.fail(
                        record, SubmissionState.ERRORED, INSUFFICIENT_ALLOWANCE, self.release, dropped
                    )
                    return
                if unaffordable:
                    over = [(i, INSUFFICIENT_ALLOWANCE) for i in unaffordable]
                    self._monitor.log_dropped(record, over)
                    dropped = [*dropped, *over]
                    record.batch = record.batch.narrowed(kept)

            self._log.info(
                "batch_submitted",
                batch_id=record.batch_id,
                count=len(record.batch),
                total_stake=str(record.batch.total_stake),
            )
            events = self._boundary.submit(record.user_id, record.batch.calls)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.error("submission_failed", batch_id=record.batch_id, error=str(e))
            await self._monitor.fail(
                record, SubmissionState.ERRORED, f"submission failed: {e}", self.release, dropped
            )
            return

        await self._monitor.track(record, events, self.release, dropped)

    async def _affordable(self, record: SubmissionRecord) -> tuple[list[Intent], list[Intent]]:
        """Split the batch into the longest prefix the allowance covers and the rest."""
        intents = list(record.batch.intents)
        for count in range(len(intents), 0, -1):
            required = sum((i.stake for i in intents[:count]), Decimal("0"))
            if await self._allowance.is_sufficient(record.user_id, required):
                return intents[:count], intents[count:]
        return [], intents

    def release(self, record: SubmissionRecord) -> None:
        """Schedule the slot to clear after the cooldown. Idempotent per record."""
        if record.released:
            return
        record.released = True

        if self._escalation is not None and self._in_flight is record:
            self._escalation.cancel()
            self._escalation = None

        asyncio.get_running_loop().call_later(self._release_cooldown, self._clear, record)

    def _clear(self, record: SubmissionRecord) -> None:
        if self._in_flight is not record:
            return
        self._in_flight = None
        if self._metrics:
            self._metrics.submission_released()
        self._log.debug("submission_gate_released", batch_id=record.batch_id, state=record.state.value)
        if self._on_release:
            self._on_release()

    def _escalate(self, record: SubmissionRecord) -> None:
        self._escalation = None
        if record.is_terminal:
            return
        pending = record.pending_seconds
        self._log.warning(
            "submission_stalled",
            batch_id=record.batch_id,
            pending_seconds=round(pending, 1),
            count=len(record.batch),
        )
        if self._metrics:
            self._metrics.record_stalled_submission()
        self._notifier.publish_soon(
            BATCH_STALLED,
            BatchStalledEvent.create(record.user_id, record.batch_id, pending),
        )

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for submission tasks to finish. Returns False on timeout."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(deadline - loop.time(), 0)
            _, pending = await asyncio.wait(list(self._tasks), timeout=remaining)
            if pending:
                return False
        return True

    async def close(self, timeout: Optional[float] = None) -> None:
        """Stop timers and wait for running submissions; cancel what is left."""
        if self._escalation is not None:
            self._escalation.cancel()
            self._escalation = None
        if await self.wait_idle(timeout):
            return
        for task in list(self._tasks):
            task.cancel()
        if self._in_flight is not None:
            self._log.warning(
                "submission_abandoned",
                batch_id=self._in_flight.batch_id,
                state=self._in_flight.state.value,
            )
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
