"""
Unit tests for the intent and batch domain models.

Tests cover:
- Swipe direction to side mapping
- Stake validation against asset precision
- Append-only batches with one intent per market
- Freeze as a single check-and-set
- Narrowed copies keep id and order
- Submission record transitions never leave a terminal state
"""
import pytest
from decimal import Decimal

from swipebatch.domain.errors import BatchFrozenError, DuplicateMarketError, InvalidIntentError
from swipebatch.domain.intent import Batch, FlushTrigger, Side, validate_stake
from swipebatch.domain.market import Position
from swipebatch.domain.submission import (
    StatusEvent,
    StatusKind,
    SubmissionDecision,
    SubmissionRecord,
    SubmissionState,
)


class TestSide:
    """Test swipe direction mapping."""

    def test_right_is_yes_left_is_no(self):
        assert Side.from_swipe("right") is Side.YES
        assert Side.from_swipe("LEFT") is Side.NO

    def test_unknown_direction_raises(self):
        with pytest.raises(ValueError, match="left or right"):
            Side.from_swipe("down")


class TestValidateStake:
    """Test stake validation."""

    def test_accepts_six_decimal_stake(self):
        assert validate_stake(Decimal("1.000001"), 6) == Decimal("1.000001")

    def test_converts_non_decimal(self):
        assert validate_stake(2, 6) == Decimal("2")

    @pytest.mark.parametrize("stake", [Decimal("0"), Decimal("-1"), Decimal("NaN")])
    def test_rejects_non_positive(self, stake):
        with pytest.raises(InvalidIntentError):
            validate_stake(stake, 6)

    def test_rejects_excess_precision(self):
        with pytest.raises(InvalidIntentError, match="decimal places"):
            validate_stake(Decimal("0.0000001"), 6)


class TestBatch:
    """Test batch append/freeze behaviour."""

    def test_append_preserves_order_and_sums_stake(self, intent_factory):
        batch = Batch("user-1")
        for n, stake in enumerate(["1", "2.5", "0.5"]):
            batch.append(intent_factory(f"m{n}", stake=Decimal(stake)))

        assert [i.market_id for i in batch.intents] == ["m0", "m1", "m2"]
        assert [c.data for c in batch.calls] == ["0xm0", "0xm1", "0xm2"]
        assert batch.total_stake == Decimal("4")
        assert len(batch) == 3

    def test_duplicate_market_rejected(self, intent_factory):
        batch = Batch("user-1")
        batch.append(intent_factory("m1"))

        with pytest.raises(DuplicateMarketError):
            batch.append(intent_factory("m1", side=Side.NO))

    def test_freeze_is_check_and_set(self, intent_factory):
        batch = Batch("user-1")
        batch.append(intent_factory("m1"))

        assert batch.freeze(FlushTrigger.SIZE) is True
        assert batch.freeze(FlushTrigger.INACTIVITY) is False
        assert batch.trigger is FlushTrigger.SIZE
        assert batch.frozen_at is not None

    def test_append_after_freeze_raises(self, intent_factory):
        batch = Batch("user-1")
        batch.freeze(FlushTrigger.INACTIVITY)

        with pytest.raises(BatchFrozenError):
            batch.append(intent_factory("m1"))

    def test_narrowed_keeps_id_and_order(self, intent_factory):
        batch = Batch("user-1")
        intents = [intent_factory(f"m{n}") for n in range(4)]
        for intent in intents:
            batch.append(intent)
        batch.freeze(FlushTrigger.SIZE)

        narrowed = batch.narrowed([intents[3], intents[1]])

        assert narrowed.batch_id == batch.batch_id
        assert narrowed.is_frozen
        assert [i.market_id for i in narrowed.intents] == ["m1", "m3"]


class TestPosition:
    """Test position merge."""

    def test_merge_accumulates_into_side(self):
        position = Position(user_id="u", market_id="m")
        position = position.merged(Side.YES, Decimal("2"))
        position = position.merged(Side.NO, Decimal("1"))

        assert position.yes_stake == Decimal("2")
        assert position.no_stake == Decimal("1")
        assert position.total_invested == Decimal("3")


class TestSubmissionRecord:
    """Test record state machine."""

    def test_transition_only_from_pending(self, intent_factory):
        batch = Batch("user-1")
        batch.append(intent_factory())
        record = SubmissionRecord(batch=batch)

        assert record.transition(SubmissionState.CONFIRMED, receipt_id="0xabc")
        assert not record.transition(SubmissionState.REVERTED)
        assert record.state is SubmissionState.CONFIRMED
        assert record.receipt_id == "0xabc"
        assert record.resolved_at is not None

    def test_cannot_transition_to_pending(self, intent_factory):
        record = SubmissionRecord(batch=Batch("user-1"))

        assert not record.transition(SubmissionState.PENDING)
        assert record.state is SubmissionState.PENDING

    def test_status_event_constructors(self):
        assert StatusEvent.pending().kind is StatusKind.PENDING
        assert StatusEvent.confirmed("0x1").receipt_id == "0x1"
        assert StatusEvent.errored("boom").reason == "boom"

    def test_reject_decision(self):
        decision = SubmissionDecision.reject_in_flight()
        assert not decision.accepted
        assert decision.reason == SubmissionDecision.ALREADY_IN_FLIGHT
