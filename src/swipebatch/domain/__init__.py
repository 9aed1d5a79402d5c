"""Domain models - pure data structures with no I/O dependencies."""

from swipebatch.domain.errors import (
    BatchFrozenError,
    DuplicateMarketError,
    InsufficientAllowanceError,
    InvalidIntentError,
    InvalidMarketError,
    PersistenceItemError,
)
from swipebatch.domain.events import (
    BatchFlushedEvent,
    BatchQueuedEvent,
    BatchResolvedEvent,
    BatchStalledEvent,
)
from swipebatch.domain.intent import Batch, CallDescriptor, FlushTrigger, Intent, Side, validate_stake
from swipebatch.domain.market import Approval, Market, Position, PredictionRecord, SettlementTarget
from swipebatch.domain.submission import (
    BatchOutcome,
    StatusEvent,
    StatusKind,
    SubmissionDecision,
    SubmissionRecord,
    SubmissionState,
)

__all__ = [
    # Errors
    "BatchFrozenError",
    "DuplicateMarketError",
    "InsufficientAllowanceError",
    "InvalidIntentError",
    "InvalidMarketError",
    "PersistenceItemError",
    # Event payloads
    "BatchQueuedEvent",
    "BatchFlushedEvent",
    "BatchResolvedEvent",
    "BatchStalledEvent",
    # Intents and batches
    "Batch",
    "CallDescriptor",
    "FlushTrigger",
    "Intent",
    "Side",
    "validate_stake",
    # Markets and durable state
    "Approval",
    "Market",
    "Position",
    "PredictionRecord",
    "SettlementTarget",
    # Submission lifecycle
    "BatchOutcome",
    "StatusEvent",
    "StatusKind",
    "SubmissionDecision",
    "SubmissionRecord",
    "SubmissionState",
]
