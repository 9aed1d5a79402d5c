"""
Unit tests for the dry-run relay.
"""
import pytest

from swipebatch.domain.intent import CallDescriptor
from swipebatch.domain.submission import StatusKind
from swipebatch.integrations.relay import DryRunRelay

CALLS = [CallDescriptor(to="0x5FbDB2315678afecb367f032d93F642f64180aa3", data="0x01")]


async def collect(stream):
    return [event async for event in stream]


class TestDryRunRelay:
    """Test simulated submission streams."""

    @pytest.mark.asyncio
    async def test_confirms_with_receipt(self):
        relay = DryRunRelay(confirm_delay=0, failure_rate=0.0, seed=7)

        events = await collect(relay.submit("u1", CALLS))

        assert [e.kind for e in events] == [StatusKind.PENDING, StatusKind.CONFIRMED]
        receipt = events[1].receipt_id
        assert receipt.startswith("0x") and len(receipt) == 66
        assert relay.submissions[0].receipt_id == receipt

    @pytest.mark.asyncio
    async def test_reverts_at_full_failure_rate(self):
        relay = DryRunRelay(confirm_delay=0, failure_rate=1.0)

        events = await collect(relay.submit("u1", CALLS))

        assert [e.kind for e in events] == [StatusKind.PENDING, StatusKind.REVERTED]
        assert events[1].reason == "simulated revert"

    @pytest.mark.asyncio
    async def test_duplicate_confirmations_share_receipt(self):
        relay = DryRunRelay(confirm_delay=0, failure_rate=0.0, duplicate_confirmations=2)

        events = await collect(relay.submit("u1", CALLS))

        confirmed = [e for e in events if e.kind is StatusKind.CONFIRMED]
        assert len(confirmed) == 3
        assert len({e.receipt_id for e in confirmed}) == 1

    @pytest.mark.asyncio
    async def test_seeded_receipts_are_reproducible(self):
        first = await collect(DryRunRelay(confirm_delay=0, failure_rate=0.0, seed=1).submit("u1", CALLS))
        second = await collect(DryRunRelay(confirm_delay=0, failure_rate=0.0, seed=1).submit("u1", CALLS))

        assert first[1].receipt_id == second[1].receipt_id

    def test_empty_calls_rejected(self):
        with pytest.raises(ValueError, match="empty"):
            DryRunRelay().submit("u1", [])

    def test_invalid_failure_rate(self):
        with pytest.raises(ValueError):
            DryRunRelay(failure_rate=1.5)

    def test_from_config(self, mock_config):
        relay = DryRunRelay.from_config(mock_config)

        assert relay._confirm_delay == 1.5
        assert relay._failure_rate == 0.05
        assert relay._duplicates == 0

    def test_submission_log_keeps_most_recent(self, monkeypatch):
        monkeypatch.setattr("swipebatch.integrations.relay.SUBMISSION_LOG_LIMIT", 3)
        relay = DryRunRelay()

        for user_id in ("u1", "u2", "u3", "u4"):
            relay.submit(user_id, CALLS)

        assert [s.user_id for s in relay.submissions] == ["u2", "u3", "u4"]
