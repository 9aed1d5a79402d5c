"""Domain errors raised at the edges of the batching pipeline.

Validation and allowance errors reach the caller of ``SwipeSession.swipe``
directly. Batch-level failures are reported through ``batch.resolved``
notifications instead, and persistence failures never leave the session.
"""
from decimal import Decimal
from typing import Optional

from swipebatch.core.retry import PermanentError, SwipeBatchError, ValidationError


class InvalidMarketError(PermanentError):
    """Market is absent, resolved, ended, or has no deployed contract."""

    def __init__(self, market_id: str, reason: str):
        super().__init__(f"Market {market_id} is not tradable: {reason}")
        self.market_id = market_id
        self.reason = reason


class InsufficientAllowanceError(PermanentError):
    """The user's approved spend does not cover the stake being queued."""

    def __init__(self, user_id: str, required: Decimal, available: Optional[Decimal] = None):
        message = f"Insufficient allowance for {user_id}: requires {required}"
        if available is not None:
            message += f", available {available}"
        super().__init__(message)
        self.user_id = user_id
        self.required = required
        self.available = available


class InvalidIntentError(ValidationError):
    """Stake is not positive or is finer than the settlement asset's precision."""

    pass


class BatchFrozenError(PermanentError):
    """Append attempted on a batch that was already handed off for flush."""

    def __init__(self, batch_id: str):
        super().__init__(f"Batch {batch_id} is frozen")
        self.batch_id = batch_id


class DuplicateMarketError(PermanentError):
    """A batch already holds an intent for this market."""

    def __init__(self, batch_id: str, market_id: str):
        super().__init__(f"Batch {batch_id} already contains market {market_id}")
        self.batch_id = batch_id
        self.market_id = market_id


class PersistenceItemError(SwipeBatchError):
    """One confirmed intent could not be written to durable storage."""

    def __init__(self, market_id: str, receipt_id: str, message: str, cause: Optional[Exception] = None):
        super().__init__(f"{market_id}@{receipt_id}: {message}", cause=cause)
        self.market_id = market_id
        self.receipt_id = receipt_id
