"""
Batch Accumulator - queues a user's intents and decides when to flush.

A batch flushes when it reaches ``max_batch_size`` (checked synchronously on
every append) or when the inactivity timer fires. Whichever trigger freezes
the batch first owns the handoff; the other finds it frozen and does nothing.

Pending batches are kept in order. New intents go to the newest batch; a new
one is opened when it is full or already holds the same market. A flush always
hands off the oldest batch, so submission order equals append order.
"""
import asyncio
from collections import deque
from decimal import Decimal
from typing import Callable, Iterable, Optional

import structlog

from swipebatch.domain.errors import BatchFrozenError, DuplicateMarketError
from swipebatch.domain.intent import Batch, FlushTrigger, Intent
from swipebatch.domain.submission import SubmissionDecision
from swipebatch.services.metrics import MetricsEmitter

log = structlog.get_logger()

DEFAULT_MAX_BATCH_SIZE = 5
DEFAULT_INACTIVITY_TIMEOUT = 8.0

Handoff = Callable[[Batch], SubmissionDecision]
FlushListener = Callable[[Batch, FlushTrigger], None]


class BatchAccumulator:
    """Owns the pending batches for one user session.

    Args:
        user_id: Session owner.
        handoff: Synchronous gate call; returns the submission decision.
        max_batch_size: Intents per batch before a size flush.
        inactivity_timeout: Seconds after the last append before a flush.
        on_flushed: Called after a batch is accepted for submission.
        metrics: Optional metrics emitter.
    """

    def __init__(
        self,
        user_id: str,
        handoff: Handoff,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
        on_flushed: Optional[FlushListener] = None,
        metrics: Optional[MetricsEmitter] = None,
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")

        self._user_id = user_id
        self._handoff = handoff
        self._max_batch_size = max_batch_size
        self._inactivity_timeout = inactivity_timeout
        self._on_flushed = on_flushed
        self._metrics = metrics
        self._log = log.bind(component="batch_accumulator", user_id=user_id)

        self._batches: deque[Batch] = deque()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._draining = False

    @property
    def max_batch_size(self) -> int:
        return self._max_batch_size

    @property
    def pending(self) -> tuple[Batch, ...]:
        """Unflushed batches, oldest first."""
        return tuple(self._batches)

    @property
    def current(self) -> Optional[Batch]:
        """The batch new intents are appended to."""
        return self._batches[-1] if self._batches else None

    @property
    def pending_count(self) -> int:
        return sum(len(b) for b in self._batches)

    @property
    def pending_stake(self) -> Decimal:
        return sum((b.total_stake for b in self._batches), Decimal("0"))

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def _open_batch(self) -> Batch:
        batch = Batch(self._user_id)
        self._batches.append(batch)
        return batch

    def append(self, intent: Intent) -> Batch:
        """Queue an intent and return the batch it joined.

        Re-arms the inactivity timer and flushes synchronously once a batch
        is full.
        """
        if intent.user_id != self._user_id:
            raise ValueError(f"intent for {intent.user_id} appended to session {self._user_id}")

        batch = self.current
        if batch is None or len(batch) >= self._max_batch_size:
            batch = self._open_batch()

        try:
            size = batch.append(intent)
        except (BatchFrozenError, DuplicateMarketError) as e:
            self._log.debug("batch_rolled_over", batch_id=batch.batch_id, reason=type(e).__name__)
            batch = self._open_batch()
            size = batch.append(intent)

        self._log.debug(
            "intent_appended",
            batch_id=batch.batch_id,
            market_id=intent.market_id,
            size=size,
        )

        self._arm_timer()
        if size >= self._max_batch_size:
            self.flush(FlushTrigger.SIZE)
        return batch

    def flush(self, trigger: FlushTrigger) -> Optional[SubmissionDecision]:
        """Freeze the oldest pending batch and hand it to submission.

        Returns None when there was nothing to flush. A batch rejected because
        another submission is in flight is re-queued at the front.
        """
        if not self._batches:
            self._cancel_timer()
            return None

        batch = self._batches[0]
        if batch.is_empty:
            self._batches.popleft()
            self._rearm_if_pending()
            return None

        if not batch.freeze(trigger):
            return None

        self._batches.popleft()
        self._cancel_timer()

        decision = self._handoff(batch)
        if decision.accepted:
            self._log.info(
                "batch_flushed",
                batch_id=batch.batch_id,
                trigger=trigger.value,
                count=len(batch),
                total_stake=str(batch.total_stake),
            )
            if self._metrics:
                self._metrics.record_flush(trigger.value, len(batch))
            if self._on_flushed:
                self._on_flushed(batch, trigger)
        else:
            self._log.info(
                "submission_rejected_in_flight",
                batch_id=batch.batch_id,
                trigger=trigger.value,
                count=len(batch),
            )
            self.requeue(batch.intents)

        self._rearm_if_pending()
        return decision

    def requeue(self, intents: Iterable[Intent]) -> None:
        """Put intents back at the front of the queue, order preserved.

        Never flushes synchronously; the timer or a gate release picks them up.
        """
        chunks: list[Batch] = []
        for intent in intents:
            chunk = chunks[-1] if chunks else None
            if (
                chunk is None
                or len(chunk) >= self._max_batch_size
                or chunk.contains_market(intent.market_id)
            ):
                chunk = Batch(self._user_id)
                chunks.append(chunk)
            chunk.append(intent)

        if not chunks:
            return

        self._batches.extendleft(reversed(chunks))
        if self._metrics:
            self._metrics.record_intents("requeued", sum(len(c) for c in chunks))
        self._log.debug("intents_requeued", batches=len(chunks), pending=self.pending_count)
        self._arm_timer()

    def kick(self) -> Optional[SubmissionDecision]:
        """Flush backlog after the gate frees up.

        Only a full batch, or one with more batches queued behind it, goes
        straight away; a lone partial batch waits for its timer unless the
        session is draining.
        """
        if not self._batches or self._batches[0].is_empty:
            return None
        if self._draining:
            return self.flush(FlushTrigger.CLOSE)
        head = self._batches[0]
        if len(head) >= self._max_batch_size or len(self._batches) > 1:
            return self.flush(FlushTrigger.BACKLOG)
        return None

    def drain(self) -> Optional[SubmissionDecision]:
        """Flush everything pending, one batch per gate release."""
        self._draining = True
        return self.flush(FlushTrigger.CLOSE)

    def cancel(self) -> None:
        """Stop the inactivity timer (pending intents stay queued)."""
        self._cancel_timer()

    def _arm_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._inactivity_timeout, self._on_timeout)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _rearm_if_pending(self) -> None:
        if any(not b.is_empty for b in self._batches):
            self._arm_timer()

    def _on_timeout(self) -> None:
        self._timer = None
        self.flush(FlushTrigger.INACTIVITY)
