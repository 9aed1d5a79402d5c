"""
Allowance gate backed by recorded spend approvals.

A user's approval covers the settlement asset up to a daily limit. Stake that
has already been confirmed since UTC midnight counts against it.
"""
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Optional

import structlog

from swipebatch.core.config import ConfigManager
from swipebatch.domain.market import Approval
from swipebatch.services.state_store import StateStore

log = structlog.get_logger()

DEFAULT_DAILY_LIMIT = Decimal("100")


class StoreAllowanceGate:
    """Answers ``is_sufficient(user, required_stake)`` from the state store."""

    def __init__(self, store: StateStore, config: Optional[ConfigManager] = None):
        self._store = store
        self._log = log.bind(component="allowance_gate")
        if config is not None:
            self._daily_limit = config.get_decimal("allowance.daily_limit_usdc", DEFAULT_DAILY_LIMIT)
        else:
            self._daily_limit = DEFAULT_DAILY_LIMIT

    @property
    def daily_limit(self) -> Decimal:
        return self._daily_limit

    async def approve(self, user_id: str, transaction_hash: Optional[str] = None) -> Approval:
        """Record an approval for the daily limit."""
        approval = Approval(
            user_id=user_id,
            amount=self._daily_limit,
            approved=True,
            transaction_hash=transaction_hash,
        )
        await self._store.record_approval(approval)
        return approval

    async def available(self, user_id: str, now: Optional[datetime] = None) -> Decimal:
        """Approved amount left for today (zero without an approval)."""
        approval = await self._store.get_approval(user_id)
        if approval is None or not approval.approved:
            return Decimal("0")

        now = now or datetime.now(timezone.utc)
        midnight = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
        spent = await self._store.get_stake_since(user_id, midnight)
        return max(approval.amount - spent, Decimal("0"))

    async def is_sufficient(self, user_id: str, required_stake: Decimal) -> bool:
        available = await self.available(user_id)
        sufficient = available >= required_stake
        if not sufficient:
            self._log.info(
                "allowance_insufficient",
                user_id=user_id,
                required=str(required_stake),
                available=str(available),
            )
        return sufficient
