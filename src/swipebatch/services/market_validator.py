"""
Market Validator - confirms a market is live before an intent is built.

Every lookup goes to the authoritative market store; a market list the UI
cached earlier is never trusted.
"""
from datetime import datetime, timezone
from typing import Optional

import structlog
from web3 import Web3

from swipebatch.domain.boundaries import MarketStore
from swipebatch.domain.errors import InvalidMarketError
from swipebatch.domain.intent import Batch, Intent
from swipebatch.domain.market import Market, SettlementTarget

log = structlog.get_logger()

REASON_NOT_FOUND = "not_found"
REASON_RESOLVED = "resolved"
REASON_ENDED = "ended"
REASON_NOT_DEPLOYED = "not_deployed"


class MarketValidator:
    """Resolves market IDs to settlement targets, rejecting dead markets."""

    def __init__(self, store: MarketStore):
        self._store = store
        self._log = log.bind(component="market_validator")

    @staticmethod
    def check(market: Optional[Market], market_id: str, now: Optional[datetime] = None) -> SettlementTarget:
        """Validate an already-fetched market.

        Raises:
            InvalidMarketError: With reason not_found, resolved, ended or not_deployed.
        """
        if market is None:
            raise InvalidMarketError(market_id, REASON_NOT_FOUND)
        if market.resolved:
            raise InvalidMarketError(market_id, REASON_RESOLVED)
        if market.has_ended(now or datetime.now(timezone.utc)):
            raise InvalidMarketError(market_id, REASON_ENDED)
        if not market.contract_address or not Web3.is_address(market.contract_address):
            raise InvalidMarketError(market_id, REASON_NOT_DEPLOYED)
        return SettlementTarget(market_id=market.market_id, contract_address=market.contract_address)

    async def validate(self, market_id: str) -> SettlementTarget:
        """Look up a market and return where its stake settles.

        Raises:
            InvalidMarketError: If the market is absent, resolved, ended or
                has no deployed contract.
        """
        market = await self._store.get_market(market_id)
        try:
            return self.check(market, market_id)
        except InvalidMarketError as e:
            self._log.info("market_rejected", market_id=market_id, reason=e.reason)
            raise

    async def filter_live(self, batch: Batch) -> tuple[list[Intent], list[tuple[Intent, str]]]:
        """Split a batch into intents whose market is still live and dropped ones.

        Returns:
            (kept, dropped) where dropped pairs each intent with its reason.
        """
        kept: list[Intent] = []
        dropped: list[tuple[Intent, str]] = []
        for intent in batch.intents:
            try:
                await self.validate(intent.market_id)
            except InvalidMarketError as e:
                dropped.append((intent, e.reason))
            else:
                kept.append(intent)
        return kept, dropped
