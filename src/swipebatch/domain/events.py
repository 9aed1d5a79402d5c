"""Event payload dataclasses for UI-facing notifications.

Event Channel Naming Convention:
- batch.queued   - An intent was added to the user's pending batch
- batch.flushed  - A batch was frozen and handed to submission
- batch.resolved - A flushed batch reached its final outcome
- batch.stalled  - A submission has been pending longer than the escalation window

These are informational only. Decimal values are carried as strings so the
payloads serialize to JSON without loss.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

BATCH_QUEUED = "batch.queued"
BATCH_FLUSHED = "batch.flushed"
BATCH_RESOLVED = "batch.resolved"
BATCH_STALLED = "batch.stalled"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class BatchQueuedEvent:
    """Published to: batch.queued (onBatchQueued)."""

    user_id: str
    batch_id: str
    count: int
    market_id: str
    side: str
    timestamp: str

    @classmethod
    def create(
        cls,
        user_id: str,
        batch_id: str,
        count: int,
        market_id: str,
        side: str,
    ) -> "BatchQueuedEvent":
        return cls(
            user_id=user_id,
            batch_id=batch_id,
            count=count,
            market_id=market_id,
            side=side,
            timestamp=_now(),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BatchFlushedEvent:
    """Published to: batch.flushed (onBatchFlushed).

    Attributes:
        trigger: "size", "inactivity", "backlog" or "close".
        total_stake: Aggregate stake of the batch (string for Decimal).
    """

    user_id: str
    batch_id: str
    trigger: str
    count: int
    total_stake: str
    timestamp: str

    @classmethod
    def create(
        cls,
        user_id: str,
        batch_id: str,
        trigger: str,
        count: int,
        total_stake: Decimal,
    ) -> "BatchFlushedEvent":
        return cls(
            user_id=user_id,
            batch_id=batch_id,
            trigger=trigger,
            count=count,
            total_stake=str(total_stake),
            timestamp=_now(),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BatchResolvedEvent:
    """Published to: batch.resolved (onBatchResolved).

    Emitted once per flushed batch. Failures are reported here as a single
    batch-level outcome; per-item persistence failures only appear in the
    ``failed`` count and the logs.

    Attributes:
        outcome: "confirmed", "reverted", "errored" or "dropped".
        receipt_id: Relay receipt for confirmed batches.
        reason: Failure or drop reason, if any.
        persisted: Intents written to storage.
        skipped: Intents already present for this receipt.
        failed: Intents whose persistence failed.
        dropped: Intents removed before submission (dead market).
    """

    user_id: str
    batch_id: str
    outcome: str
    timestamp: str
    receipt_id: Optional[str] = None
    reason: Optional[str] = None
    persisted: int = 0
    skipped: int = 0
    failed: int = 0
    dropped: int = 0

    @classmethod
    def create(
        cls,
        user_id: str,
        batch_id: str,
        outcome: str,
        receipt_id: Optional[str] = None,
        reason: Optional[str] = None,
        persisted: int = 0,
        skipped: int = 0,
        failed: int = 0,
        dropped: int = 0,
    ) -> "BatchResolvedEvent":
        return cls(
            user_id=user_id,
            batch_id=batch_id,
            outcome=outcome,
            timestamp=_now(),
            receipt_id=receipt_id,
            reason=reason,
            persisted=persisted,
            skipped=skipped,
            failed=failed,
            dropped=dropped,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BatchStalledEvent:
    """Published to: batch.stalled when a submission exceeds the escalation window."""

    user_id: str
    batch_id: str
    pending_seconds: float
    timestamp: str

    @classmethod
    def create(cls, user_id: str, batch_id: str, pending_seconds: float) -> "BatchStalledEvent":
        return cls(
            user_id=user_id,
            batch_id=batch_id,
            pending_seconds=round(pending_seconds, 3),
            timestamp=_now(),
        )

    def to_dict(self) -> dict:
        return asdict(self)
