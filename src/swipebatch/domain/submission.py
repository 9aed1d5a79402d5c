"""
Submission lifecycle models.

A SubmissionRecord tracks one frozen batch through the relay:
Pending -> Confirmed | Reverted | Errored. Terminal states never change.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from swipebatch.domain.intent import Batch


class SubmissionState(str, Enum):
    """Lifecycle state of a submitted batch."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self is not SubmissionState.PENDING


class StatusKind(str, Enum):
    """Status signals the submission boundary can deliver."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    ERRORED = "errored"


class BatchOutcome(str, Enum):
    """How a flushed batch was finally resolved, as reported to the UI."""
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    ERRORED = "errored"
    DROPPED = "dropped"


@dataclass(frozen=True)
class StatusEvent:
    """One notification from the submission boundary's status stream."""
    kind: StatusKind
    receipt_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def pending(cls) -> "StatusEvent":
        return cls(StatusKind.PENDING)

    @classmethod
    def confirmed(cls, receipt_id: str) -> "StatusEvent":
        return cls(StatusKind.CONFIRMED, receipt_id=receipt_id)

    @classmethod
    def reverted(cls, receipt_id: Optional[str] = None, reason: str = "reverted") -> "StatusEvent":
        return cls(StatusKind.REVERTED, receipt_id=receipt_id, reason=reason)

    @classmethod
    def errored(cls, reason: str) -> "StatusEvent":
        return cls(StatusKind.ERRORED, reason=reason)


@dataclass
class SubmissionRecord:
    """Exactly one per flushed batch while it is in the pipeline."""
    batch: Batch
    state: SubmissionState = SubmissionState.PENDING
    receipt_id: Optional[str] = None
    reason: Optional[str] = None
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None
    released: bool = False

    @property
    def batch_id(self) -> str:
        return self.batch.batch_id

    @property
    def user_id(self) -> str:
        return self.batch.user_id

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def pending_seconds(self) -> float:
        end = self.resolved_at or datetime.now(timezone.utc)
        return (end - self.submitted_at).total_seconds()

    def transition(
        self,
        state: SubmissionState,
        receipt_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """Move Pending -> terminal. Returns False if already terminal."""
        if self.is_terminal or not state.is_terminal:
            return False
        self.state = state
        if receipt_id is not None:
            self.receipt_id = receipt_id
        self.reason = reason
        self.resolved_at = datetime.now(timezone.utc)
        return True


@dataclass(frozen=True)
class SubmissionDecision:
    """Result of SubmissionGate.try_submit."""
    accepted: bool
    record: Optional[SubmissionRecord] = None
    reason: Optional[str] = None

    ALREADY_IN_FLIGHT = "already_in_flight"

    @classmethod
    def accept(cls, record: SubmissionRecord) -> "SubmissionDecision":
        return cls(accepted=True, record=record)

    @classmethod
    def reject_in_flight(cls) -> "SubmissionDecision":
        return cls(accepted=False, reason=cls.ALREADY_IN_FLIGHT)
