"""
Market and durable-state domain models.

These are plain records; the state store maps them to and from SQLite rows.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from swipebatch.domain.intent import Side


@dataclass
class Market:
    """A prediction market as held by the authoritative market store."""
    market_id: str
    question: str
    category: str = "crypto"
    contract_address: Optional[str] = None
    end_time: Optional[datetime] = None
    resolved: bool = False
    outcome: Optional[bool] = None
    yes_pool: Decimal = Decimal("0")
    no_pool: Decimal = Decimal("0")
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def has_ended(self, now: Optional[datetime] = None) -> bool:
        """Check if the market's trading window has closed."""
        if self.end_time is None:
            return False
        now = now or datetime.now(timezone.utc)
        end_time = self.end_time
        if end_time.tzinfo is None:
            end_time = end_time.replace(tzinfo=timezone.utc)
        return end_time <= now


@dataclass(frozen=True)
class SettlementTarget:
    """Where a validated market's stake settles on chain."""
    market_id: str
    contract_address: str


@dataclass
class Position:
    """Accumulated stake for one (user, market) pair across confirmed intents."""
    user_id: str
    market_id: str
    yes_stake: Decimal = Decimal("0")
    no_stake: Decimal = Decimal("0")
    total_invested: Decimal = Decimal("0")
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def merged(self, side: Side, stake: Decimal) -> "Position":
        """Return a copy with ``stake`` accumulated into ``side``."""
        if side is Side.YES:
            yes_stake, no_stake = self.yes_stake + stake, self.no_stake
        else:
            yes_stake, no_stake = self.yes_stake, self.no_stake + stake
        return replace(
            self,
            yes_stake=yes_stake,
            no_stake=no_stake,
            total_invested=self.total_invested + stake,
            updated_at=datetime.now(timezone.utc),
        )


@dataclass
class PredictionRecord:
    """A persisted, confirmed prediction. Unique per (user, market, receipt)."""
    prediction_id: str
    user_id: str
    market_id: str
    side: Side
    amount: Decimal
    receipt_id: str
    batch_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Approval:
    """A recorded spend approval for the settlement asset."""
    user_id: str
    amount: Decimal
    approved: bool = True
    transaction_hash: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
