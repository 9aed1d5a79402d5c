"""
Intent and batch domain models.

An Intent is one swipe. A Batch is the ordered group of intents that will be
submitted together as one relay call. Batches are append-only until frozen
and read-only afterwards; ``freeze`` is the single check-and-set that decides
which flush trigger wins.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
import uuid

from swipebatch.domain.errors import BatchFrozenError, DuplicateMarketError, InvalidIntentError


class Side(str, Enum):
    """Which outcome the user backed."""
    YES = "YES"
    NO = "NO"

    @classmethod
    def from_swipe(cls, direction: str) -> "Side":
        """Map a swipe direction ("right"/"left") to a side."""
        direction = direction.lower()
        if direction == "right":
            return cls.YES
        if direction == "left":
            return cls.NO
        raise ValueError(f"direction must be left or right, got {direction}")


class FlushTrigger(str, Enum):
    """Why a batch was frozen and handed to submission."""
    SIZE = "size"
    INACTIVITY = "inactivity"
    BACKLOG = "backlog"
    CLOSE = "close"


def validate_stake(stake: Decimal, decimals: int) -> Decimal:
    """Check a stake is positive and representable in the asset's precision.

    Raises:
        InvalidIntentError: If the stake is non-positive or too precise.
    """
    if not isinstance(stake, Decimal):
        stake = Decimal(str(stake))
    if not stake.is_finite() or stake <= 0:
        raise InvalidIntentError(f"stake must be positive, got {stake}")
    if stake.as_tuple().exponent < -decimals:
        raise InvalidIntentError(
            f"stake {stake} has more than {decimals} decimal places"
        )
    return stake


@dataclass(frozen=True)
class CallDescriptor:
    """Opaque execution call consumed only by the submission boundary."""
    to: str
    data: str
    value: int = 0

    def to_dict(self) -> dict:
        return {"to": self.to, "data": self.data, "value": self.value}


@dataclass(frozen=True)
class Intent:
    """One user decision awaiting batching."""
    user_id: str
    market_id: str
    side: Side
    stake: Decimal
    call: CallDescriptor
    intent_id: str = field(default_factory=lambda: f"int_{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Batch:
    """Ordered intents for one user, submitted as a single call sequence."""

    def __init__(
        self,
        user_id: str,
        batch_id: Optional[str] = None,
        intents: Optional[list[Intent]] = None,
    ) -> None:
        self.batch_id = batch_id or f"batch_{uuid.uuid4().hex[:12]}"
        self.user_id = user_id
        self._intents: list[Intent] = list(intents or [])
        self._frozen = False
        self.trigger: Optional[FlushTrigger] = None
        self.created_at = datetime.now(timezone.utc)
        self.frozen_at: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self._intents)

    def __repr__(self) -> str:
        state = "frozen" if self._frozen else "open"
        return f"Batch({self.batch_id}, {len(self._intents)} intents, {state})"

    @property
    def intents(self) -> tuple[Intent, ...]:
        return tuple(self._intents)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def is_empty(self) -> bool:
        return not self._intents

    @property
    def total_stake(self) -> Decimal:
        return sum((i.stake for i in self._intents), Decimal("0"))

    @property
    def calls(self) -> list[CallDescriptor]:
        """Call descriptors in append order."""
        return [i.call for i in self._intents]

    def contains_market(self, market_id: str) -> bool:
        return any(i.market_id == market_id for i in self._intents)

    def append(self, intent: Intent) -> int:
        """Append an intent and return the new size.

        Raises:
            BatchFrozenError: If the batch was already handed off.
            DuplicateMarketError: If the batch already holds this market.
        """
        if self._frozen:
            raise BatchFrozenError(self.batch_id)
        if self.contains_market(intent.market_id):
            raise DuplicateMarketError(self.batch_id, intent.market_id)
        self._intents.append(intent)
        return len(self._intents)

    def freeze(self, trigger: FlushTrigger) -> bool:
        """Freeze the batch. Returns False if it was already frozen.

        Must be called before any await in a flush path; the caller that gets
        True owns the handoff.
        """
        if self._frozen:
            return False
        self._frozen = True
        self.trigger = trigger
        self.frozen_at = datetime.now(timezone.utc)
        return True

    def narrowed(self, keep: list[Intent]) -> "Batch":
        """Frozen copy with the same id holding only ``keep`` (order preserved)."""
        kept_ids = {i.intent_id for i in keep}
        batch = Batch(
            self.user_id,
            batch_id=self.batch_id,
            intents=[i for i in self._intents if i.intent_id in kept_ids],
        )
        batch.freeze(self.trigger or FlushTrigger.SIZE)
        batch.created_at = self.created_at
        return batch
