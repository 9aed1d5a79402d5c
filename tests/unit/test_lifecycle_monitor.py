"""
Unit tests for LifecycleMonitor.

Tests cover:
- Confirmed -> persistence runs once, gate released once
- Duplicate confirmations (sequential and interleaved) are ignored
- Revert/error drop the batch's intents and release the gate
- Streams that end or fail without a terminal status resolve as errored
- batch.resolved is published once per batch with its outcome
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from swipebatch.domain.events import BATCH_RESOLVED
from swipebatch.domain.intent import Batch, FlushTrigger
from swipebatch.domain.submission import StatusEvent, StatusKind, SubmissionRecord, SubmissionState
from swipebatch.services.lifecycle_monitor import LifecycleMonitor, ProcessedReceipts
from swipebatch.services.notifier import Notifier
from swipebatch.services.persistence_sync import PersistenceReport


async def stream(*events):
    for event in events:
        yield event


@pytest.fixture
def persistence():
    persistence = MagicMock()

    async def sync(record):
        return PersistenceReport(
            batch_id=record.batch_id,
            receipt_id=record.receipt_id,
            persisted=len(record.batch),
        )

    persistence.sync = AsyncMock(side_effect=sync)
    return persistence


@pytest.fixture
def record(intent_factory):
    batch = Batch("user-1")
    for market_id in ("m1", "m2", "m3"):
        batch.append(intent_factory(market_id))
    batch.freeze(FlushTrigger.SIZE)
    return SubmissionRecord(batch=batch)


@pytest.fixture
def monitor(persistence, mock_event_bus):
    return LifecycleMonitor(persistence, notifier=Notifier(mock_event_bus), metrics=MagicMock())


def resolved_events(bus):
    return [c.args[1] for c in bus.publish.await_args_list if c.args[0] == BATCH_RESOLVED]


class TestProcessedReceipts:
    """Test the receipt set."""

    def test_claim_is_check_and_add(self):
        receipts = ProcessedReceipts()

        assert receipts.claim("0x1")
        assert not receipts.claim("0x1")
        assert "0x1" in receipts
        assert len(receipts) == 1


class TestConfirmation:
    """Test the success path."""

    @pytest.mark.asyncio
    async def test_confirmed_persists_and_releases(self, monitor, persistence, record, mock_event_bus):
        release = MagicMock()

        await monitor.track(record, stream(StatusEvent.pending(), StatusEvent.confirmed("0xR")), release)

        assert record.state is SubmissionState.CONFIRMED
        assert record.receipt_id == "0xR"
        assert "0xR" in monitor.receipts
        persistence.sync.assert_awaited_once_with(record)
        release.assert_called_once_with(record)
        [event] = resolved_events(mock_event_bus)
        assert event["outcome"] == "confirmed"
        assert event["receipt_id"] == "0xR"
        assert event["persisted"] == 3

    @pytest.mark.asyncio
    async def test_duplicate_confirmation_persists_once(self, monitor, persistence, record, mock_event_bus):
        release = MagicMock()

        await monitor.track(
            record,
            stream(
                StatusEvent.pending(),
                StatusEvent.confirmed("0xR"),
                StatusEvent.confirmed("0xR"),
            ),
            release,
        )

        persistence.sync.assert_awaited_once()
        release.assert_called_once()
        assert len(resolved_events(mock_event_bus)) == 1
        monitor._metrics.record_duplicate_receipt.assert_called_once()

    @pytest.mark.asyncio
    async def test_interleaved_duplicates_persist_once(self, monitor, persistence, record):
        """Two deliveries racing through the loop: only the first proceeds."""
        release = MagicMock()
        event = StatusEvent.confirmed("0xR")

        await asyncio.gather(
            monitor.handle(record, event, release),
            monitor.handle(record, event, release),
        )

        persistence.sync.assert_awaited_once()
        release.assert_called_once()

    @pytest.mark.asyncio
    async def test_receipt_from_earlier_batch_ignored(self, persistence, record):
        receipts = ProcessedReceipts()
        receipts.claim("0xOLD")
        monitor = LifecycleMonitor(persistence, receipts=receipts)
        release = MagicMock()

        await monitor.track(record, stream(StatusEvent.confirmed("0xOLD")), release)

        persistence.sync.assert_not_awaited()
        assert record.state is SubmissionState.ERRORED
        release.assert_called_once()

    @pytest.mark.asyncio
    async def test_confirmation_without_receipt_errors(self, monitor, persistence, record):
        release = MagicMock()

        await monitor.track(record, stream(StatusEvent(kind=StatusKind.CONFIRMED)), release)

        assert record.state is SubmissionState.ERRORED
        persistence.sync.assert_not_awaited()


class TestFailure:
    """Test revert and error paths."""

    @pytest.mark.asyncio
    async def test_revert_drops_intents_and_releases(self, monitor, persistence, record, mock_event_bus):
        release = MagicMock()

        await monitor.track(
            record,
            stream(StatusEvent.pending(), StatusEvent.reverted(reason="out of gas")),
            release,
        )

        assert record.state is SubmissionState.REVERTED
        assert record.reason == "out of gas"
        persistence.sync.assert_not_awaited()
        release.assert_called_once_with(record)
        [event] = resolved_events(mock_event_bus)
        assert event["outcome"] == "reverted"
        assert event["dropped"] == 3
        monitor._metrics.record_intents.assert_called_with("dropped", 3)

    @pytest.mark.asyncio
    async def test_errored_event(self, monitor, record, mock_event_bus):
        await monitor.track(record, stream(StatusEvent.errored("paymaster rejected")), MagicMock())

        assert record.state is SubmissionState.ERRORED
        assert resolved_events(mock_event_bus)[0]["reason"] == "paymaster rejected"

    @pytest.mark.asyncio
    async def test_terminal_state_is_final(self, monitor, persistence, record):
        release = MagicMock()

        await monitor.track(
            record,
            stream(StatusEvent.reverted(), StatusEvent.confirmed("0xLATE")),
            release,
        )

        assert record.state is SubmissionState.REVERTED
        persistence.sync.assert_not_awaited()
        release.assert_called_once()

    @pytest.mark.asyncio
    async def test_stream_ending_without_terminal_errors(self, monitor, record):
        release = MagicMock()

        await monitor.track(record, stream(StatusEvent.pending()), release)

        assert record.state is SubmissionState.ERRORED
        assert "without a terminal status" in record.reason
        release.assert_called_once()

    @pytest.mark.asyncio
    async def test_stream_raising_errors(self, monitor, record):
        async def broken():
            yield StatusEvent.pending()
            raise ConnectionError("socket closed")

        release = MagicMock()
        await monitor.track(record, broken(), release)

        assert record.state is SubmissionState.ERRORED
        assert "socket closed" in record.reason
        release.assert_called_once()


class TestDropped:
    """Test records resolved before reaching the relay."""

    @pytest.mark.asyncio
    async def test_resolve_dropped(self, monitor, record, mock_event_bus):
        release = MagicMock()
        dropped = [(i, "resolved") for i in record.batch.intents]

        await monitor.resolve_dropped(record, dropped, release)

        assert record.is_terminal
        release.assert_called_once()
        [event] = resolved_events(mock_event_bus)
        assert event["outcome"] == "dropped"
        assert event["reason"] == "resolved"
        assert event["dropped"] == 3


class TestHistory:
    """Test submission history writes."""

    @pytest.mark.asyncio
    async def test_history_failure_does_not_block_resolution(self, persistence, record):
        history = MagicMock()
        history.record_submission = AsyncMock(side_effect=RuntimeError("disk full"))
        monitor = LifecycleMonitor(persistence, history=history)
        release = MagicMock()

        await monitor.track(record, stream(StatusEvent.confirmed("0xR")), release)

        assert record.state is SubmissionState.CONFIRMED
        release.assert_called_once()
        assert history.record_submission.await_count == 2
