"""
External collaborator protocols.

The batching core only talks to these interfaces. ``StateStore`` implements
the market and storage protocols, ``StoreAllowanceGate`` the allowance one,
and ``DryRunRelay`` the submission boundary.
"""
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

from swipebatch.domain.intent import CallDescriptor, Side
from swipebatch.domain.market import Market, Position
from swipebatch.domain.submission import StatusEvent


@runtime_checkable
class MarketStore(Protocol):
    """Authoritative market lookup."""

    async def get_market(self, market_id: str) -> Optional[Market]:
        ...

    async def list_active_markets(self, now: Optional[datetime] = None) -> list[Market]:
        ...


@runtime_checkable
class PredictionStorage(Protocol):
    """Durable storage used by PersistenceSync.

    Every call is idempotent keyed by (user, market, receipt).
    """

    async def has_prediction(self, user_id: str, market_id: str, receipt_id: str) -> bool:
        ...

    async def create_prediction_record(
        self,
        user_id: str,
        market_id: str,
        side: Side,
        amount: Decimal,
        receipt_id: str,
        batch_id: str,
    ) -> bool:
        ...

    async def get_position(self, user_id: str, market_id: str) -> Optional[Position]:
        ...

    async def upsert_position(self, position: Position) -> None:
        ...


@runtime_checkable
class AllowanceGate(Protocol):
    """Approval/allowance sufficiency check."""

    async def is_sufficient(self, user_id: str, required_stake: Decimal) -> bool:
        ...


@runtime_checkable
class SubmissionBoundary(Protocol):
    """Relay that executes an ordered call list for one user.

    ``submit`` returns an async stream of status events. The stream may repeat
    a confirmation for the same receipt.
    """

    def submit(self, user_id: str, calls: list[CallDescriptor]) -> AsyncIterator[StatusEvent]:
        ...
