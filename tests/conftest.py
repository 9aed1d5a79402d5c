"""
Shared pytest fixtures for swipebatch tests.
"""
import asyncio
from collections import deque
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from swipebatch.domain.intent import CallDescriptor, Intent, Side
from swipebatch.domain.market import Market
from swipebatch.domain.submission import StatusEvent
from swipebatch.services.state_store import StateStore

CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


@pytest.fixture
def mock_config():
    """Mock ConfigManager for unit tests."""
    config = MagicMock()
    config.get.side_effect = lambda key, default=None: default
    config.get_int.side_effect = lambda key, default=0: default
    config.get_float.side_effect = lambda key, default=0.0: default
    config.get_bool.side_effect = lambda key, default=False: default
    config.get_decimal.side_effect = lambda key, default=Decimal("0"): default
    return config


@pytest.fixture
def mock_event_bus():
    """Mock EventBus for unit tests."""
    bus = MagicMock()
    bus.publish = AsyncMock()
    bus.subscribe = AsyncMock()
    bus.is_connected = True
    return bus


@pytest.fixture
def mock_redis():
    """Mock Redis connection for unit tests."""
    redis = MagicMock()
    redis.ping = AsyncMock(return_value=True)
    redis.publish = AsyncMock()
    redis.pubsub = MagicMock()
    redis.close = AsyncMock()
    return redis


def make_market(market_id: str = "m1", **overrides) -> Market:
    """A live market: deployed, unresolved, ending tomorrow."""
    values = {
        "market_id": market_id,
        "question": f"Will {market_id} resolve YES?",
        "contract_address": CONTRACT,
        "end_time": datetime.now(timezone.utc) + timedelta(days=1),
    }
    values.update(overrides)
    return Market(**values)


def make_intent(
    market_id: str = "m1",
    user_id: str = "user-1",
    side: Side = Side.YES,
    stake: Decimal = Decimal("1"),
) -> Intent:
    return Intent(
        user_id=user_id,
        market_id=market_id,
        side=side,
        stake=stake,
        call=CallDescriptor(to=CONTRACT, data=f"0x{market_id}"),
    )


@pytest.fixture
def market_factory():
    return make_market


@pytest.fixture
def intent_factory():
    return make_intent


@pytest_asyncio.fixture
async def state_store(tmp_path):
    """Connected StateStore on a temporary database."""
    store = StateStore(db_path=str(tmp_path / "swipebatch.db"))
    await store.connect()
    yield store
    await store.close()


class ScriptedRelay:
    """Submission boundary that plays back queued status scripts.

    Each ``script`` call queues one submission's events. If ``hold`` is given
    the stream yields its first event and then waits for the event to be set.
    Unscripted submissions confirm with a fresh receipt.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[CallDescriptor]]] = []
        self._scripts: deque = deque()

    def script(self, *events: StatusEvent, hold: Optional[asyncio.Event] = None) -> None:
        self._scripts.append((list(events), hold))

    def submit(self, user_id, calls):
        self.calls.append((user_id, list(calls)))
        if self._scripts:
            events, hold = self._scripts.popleft()
        else:
            events = [StatusEvent.pending(), StatusEvent.confirmed(f"0xreceipt{len(self.calls)}")]
            hold = None
        return self._stream(events, hold)

    async def _stream(self, events, hold):
        for index, event in enumerate(events):
            if index == 1 and hold is not None:
                await hold.wait()
            yield event


@pytest.fixture
def relay():
    return ScriptedRelay()
