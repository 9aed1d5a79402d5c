"""
Lifecycle Monitor - drives a submission record to its terminal state.

States: Pending -> Confirmed | Reverted | Errored. Terminal states never
change. Confirmations are deduplicated by receipt: the first event carrying
an unseen receipt wins and every repeat is ignored, so persistence runs at
most once per receipt.

Receipt membership is checked and claimed before any await, so two
interleaved deliveries of the same confirmation cannot both proceed.
"""
import asyncio
from typing import AsyncIterator, Callable, Iterable, Optional

import structlog

from swipebatch.domain.events import BATCH_RESOLVED, BatchResolvedEvent
from swipebatch.domain.intent import Intent
from swipebatch.domain.submission import (
    BatchOutcome,
    StatusEvent,
    StatusKind,
    SubmissionRecord,
    SubmissionState,
)
from swipebatch.services.metrics import MetricsEmitter
from swipebatch.services.notifier import Notifier
from swipebatch.services.persistence_sync import PersistenceReport, PersistenceSync
from swipebatch.services.state_store import StateStore

log = structlog.get_logger()

Release = Callable[[SubmissionRecord], None]
Dropped = Iterable[tuple[Intent, str]]


class ProcessedReceipts:
    """Receipts already reconciled in this session. Grows, never evicts."""

    def __init__(self) -> None:
        self._receipts: set[str] = set()

    def __contains__(self, receipt_id: object) -> bool:
        return receipt_id in self._receipts

    def __len__(self) -> int:
        return len(self._receipts)

    def claim(self, receipt_id: str) -> bool:
        """Add a receipt. Returns False if it was already present."""
        if receipt_id in self._receipts:
            return False
        self._receipts.add(receipt_id)
        return True


class LifecycleMonitor:
    """Consumes a status stream per submission record for one user session."""

    def __init__(
        self,
        persistence: PersistenceSync,
        receipts: Optional[ProcessedReceipts] = None,
        notifier: Optional[Notifier] = None,
        history: Optional[StateStore] = None,
        metrics: Optional[MetricsEmitter] = None,
    ):
        self._persistence = persistence
        self._receipts = receipts if receipts is not None else ProcessedReceipts()
        self._notifier = notifier or Notifier()
        self._history = history
        self._metrics = metrics
        self._log = log.bind(component="lifecycle_monitor")

    @property
    def receipts(self) -> ProcessedReceipts:
        return self._receipts

    async def track(
        self,
        record: SubmissionRecord,
        events: AsyncIterator[StatusEvent],
        release: Release,
        dropped: Dropped = (),
    ) -> SubmissionRecord:
        """Consume ``events`` until the stream ends.

        The stream is read to the end even after a terminal event so trailing
        duplicates are absorbed here. A stream that ends, or fails, without a
        terminal event resolves the record as errored.
        """
        dropped = list(dropped)
        await self._save_history(record)

        try:
            async for event in events:
                await self.handle(record, event, release, dropped)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.error(
                "status_stream_failed",
                user_id=record.user_id,
                batch_id=record.batch_id,
                error=str(e),
            )
            await self.fail(record, SubmissionState.ERRORED, f"status stream failed: {e}", release, dropped)
        else:
            if not record.is_terminal:
                await self.fail(
                    record,
                    SubmissionState.ERRORED,
                    "status stream ended without a terminal status",
                    release,
                    dropped,
                )
        return record

    async def handle(
        self,
        record: SubmissionRecord,
        event: StatusEvent,
        release: Release,
        dropped: Dropped = (),
    ) -> None:
        """Apply one status event to a record."""
        if event.receipt_id is not None and event.receipt_id in self._receipts:
            self._log.info(
                "duplicate_receipt_ignored",
                user_id=record.user_id,
                batch_id=record.batch_id,
                receipt_id=event.receipt_id,
                kind=event.kind.value,
            )
            if self._metrics:
                self._metrics.record_duplicate_receipt()
            return

        if event.kind is StatusKind.PENDING:
            self._log.debug("submission_pending", user_id=record.user_id, batch_id=record.batch_id)
            return

        if record.is_terminal:
            self._log.warning(
                "status_after_terminal_ignored",
                user_id=record.user_id,
                batch_id=record.batch_id,
                state=record.state.value,
                kind=event.kind.value,
                receipt_id=event.receipt_id,
            )
            return

        if event.kind is StatusKind.CONFIRMED:
            if not event.receipt_id:
                await self.fail(
                    record, SubmissionState.ERRORED, "confirmation without receipt", release, dropped
                )
                return
            # Claim and transition before the first await.
            self._receipts.claim(event.receipt_id)
            record.transition(SubmissionState.CONFIRMED, receipt_id=event.receipt_id)
            await self._confirm(record, release, dropped)
        elif event.kind is StatusKind.REVERTED:
            await self.fail(record, SubmissionState.REVERTED, event.reason or "reverted", release, dropped)
        else:
            await self.fail(record, SubmissionState.ERRORED, event.reason or "errored", release, dropped)

    async def _confirm(self, record: SubmissionRecord, release: Release, dropped: list) -> None:
        self._log.info(
            "batch_confirmed",
            user_id=record.user_id,
            batch_id=record.batch_id,
            receipt_id=record.receipt_id,
            count=len(record.batch),
        )
        try:
            report = await self._persistence.sync(record)
        finally:
            release(record)
        await self._finish(record, BatchOutcome.CONFIRMED, dropped, report=report)

    async def fail(
        self,
        record: SubmissionRecord,
        state: SubmissionState,
        reason: str,
        release: Release,
        dropped: Dropped = (),
    ) -> None:
        """Resolve a record as reverted or errored and drop its intents."""
        if not record.transition(state, reason=reason):
            return

        self._log.warning(
            "batch_failed",
            user_id=record.user_id,
            batch_id=record.batch_id,
            state=state.value,
            reason=reason,
            count=len(record.batch),
        )
        self.log_dropped(record, [(i, reason) for i in record.batch.intents])
        release(record)

        outcome = BatchOutcome.REVERTED if state is SubmissionState.REVERTED else BatchOutcome.ERRORED
        await self._finish(record, outcome, list(dropped), failed_intents=len(record.batch))

    async def resolve_dropped(self, record: SubmissionRecord, dropped: Dropped, release: Release) -> None:
        """Resolve a record whose every intent was removed before submission."""
        dropped = list(dropped)
        if not record.transition(SubmissionState.ERRORED, reason="all_intents_dropped"):
            return
        release(record)
        await self._finish(record, BatchOutcome.DROPPED, dropped)

    def log_dropped(self, record: SubmissionRecord, dropped: list[tuple[Intent, str]]) -> None:
        for intent, reason in dropped:
            self._log.warning(
                "intent_dropped",
                user_id=record.user_id,
                batch_id=record.batch_id,
                intent_id=intent.intent_id,
                market_id=intent.market_id,
                side=intent.side.value,
                stake=str(intent.stake),
                reason=reason,
            )
        if self._metrics:
            self._metrics.record_intents("dropped", len(dropped))

    async def _finish(
        self,
        record: SubmissionRecord,
        outcome: BatchOutcome,
        dropped: list[tuple[Intent, str]],
        report: Optional[PersistenceReport] = None,
        failed_intents: int = 0,
    ) -> None:
        if self._metrics:
            self._metrics.record_batch_resolved(
                outcome.value,
                latency_seconds=None if outcome is BatchOutcome.DROPPED else record.pending_seconds,
            )

        await self._save_history(record)

        reason = record.reason
        if outcome is BatchOutcome.DROPPED and dropped:
            reason = ", ".join(sorted({r for _, r in dropped}))

        await self._notifier.publish(
            BATCH_RESOLVED,
            BatchResolvedEvent.create(
                user_id=record.user_id,
                batch_id=record.batch_id,
                outcome=outcome.value,
                receipt_id=record.receipt_id,
                reason=reason,
                persisted=report.persisted if report else 0,
                skipped=report.skipped if report else 0,
                failed=report.failed if report else 0,
                dropped=len(dropped) + failed_intents,
            ),
        )

    async def _save_history(self, record: SubmissionRecord) -> None:
        if self._history is None:
            return
        try:
            await self._history.record_submission(record)
        except Exception as e:
            self._log.warning(
                "submission_history_failed",
                user_id=record.user_id,
                batch_id=record.batch_id,
                error=str(e),
            )
