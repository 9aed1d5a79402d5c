"""
Persistence Sync - commits a confirmed batch to durable storage.

Each intent is processed on its own:
1. Re-check the market still exists
2. Skip if (user, market, receipt) is already persisted
3. Write the prediction record, then read-merge-write the position

One intent failing is logged and counted; the rest of the batch still runs.
Failures are not retried here, so every one is logged with enough context
to reconcile by hand.
"""
from dataclasses import dataclass, field
from typing import Optional

import structlog

from swipebatch.domain.boundaries import MarketStore, PredictionStorage
from swipebatch.domain.errors import PersistenceItemError
from swipebatch.domain.intent import Intent
from swipebatch.domain.market import Position
from swipebatch.domain.submission import SubmissionRecord
from swipebatch.services.metrics import MetricsEmitter

log = structlog.get_logger()

PERSISTED = "persisted"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class PersistenceReport:
    """Per-batch persistence counts."""
    batch_id: str
    receipt_id: str
    persisted: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[PersistenceItemError] = field(default_factory=list)


class PersistenceSync:
    """Writes confirmed intents as prediction records and positions."""

    def __init__(
        self,
        storage: PredictionStorage,
        markets: MarketStore,
        metrics: Optional[MetricsEmitter] = None,
    ):
        self._storage = storage
        self._markets = markets
        self._metrics = metrics
        self._log = log.bind(component="persistence_sync")

    async def sync(self, record: SubmissionRecord) -> PersistenceReport:
        """Persist every intent of a confirmed record.

        Never raises for a single intent's failure.
        """
        if record.receipt_id is None:
            raise ValueError(f"record {record.batch_id} has no receipt")

        report = PersistenceReport(batch_id=record.batch_id, receipt_id=record.receipt_id)

        for intent in record.batch.intents:
            try:
                status = await self._persist(intent, record)
            except Exception as e:
                error = e if isinstance(e, PersistenceItemError) else PersistenceItemError(
                    intent.market_id, record.receipt_id, str(e), cause=e
                )
                report.failed += 1
                report.failures.append(error)
                self._log.error(
                    "persistence_item_failed",
                    user_id=record.user_id,
                    batch_id=record.batch_id,
                    receipt_id=record.receipt_id,
                    market_id=intent.market_id,
                    intent_id=intent.intent_id,
                    side=intent.side.value,
                    stake=str(intent.stake),
                    reason=str(error),
                )
                status = FAILED
            else:
                if status == PERSISTED:
                    report.persisted += 1
                else:
                    report.skipped += 1

            if self._metrics:
                self._metrics.record_persistence_item(status)

        self._log.info(
            "batch_persisted",
            user_id=record.user_id,
            batch_id=record.batch_id,
            receipt_id=record.receipt_id,
            persisted=report.persisted,
            skipped=report.skipped,
            failed=report.failed,
        )
        return report

    async def _persist(self, intent: Intent, record: SubmissionRecord) -> str:
        receipt_id = record.receipt_id

        market = await self._markets.get_market(intent.market_id)
        if market is None:
            raise PersistenceItemError(intent.market_id, receipt_id, "market no longer exists")

        if await self._storage.has_prediction(intent.user_id, intent.market_id, receipt_id):
            self._log.debug(
                "prediction_already_persisted",
                batch_id=record.batch_id,
                market_id=intent.market_id,
                receipt_id=receipt_id,
            )
            return SKIPPED

        created = await self._storage.create_prediction_record(
            user_id=intent.user_id,
            market_id=intent.market_id,
            side=intent.side,
            amount=intent.stake,
            receipt_id=receipt_id,
            batch_id=record.batch_id,
        )
        if not created:
            return SKIPPED

        position = await self._storage.get_position(intent.user_id, intent.market_id)
        if position is None:
            position = Position(user_id=intent.user_id, market_id=intent.market_id)
        await self._storage.upsert_position(position.merged(intent.side, intent.stake))
        return PERSISTED
