"""Dry-run relay implementing the submission boundary.

Stands in for the sponsored-transaction relay: every submission yields
``pending`` and then either ``confirmed(receipt)`` or ``reverted``. Nothing
leaves the process.
"""
import asyncio
from collections import deque
import random
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import structlog

from swipebatch.core.config import ConfigManager
from swipebatch.domain.intent import CallDescriptor
from swipebatch.domain.submission import StatusEvent

log = structlog.get_logger()

SUBMISSION_LOG_LIMIT = 100


@dataclass
class RelayCall:
    """One submission as seen by the relay."""
    user_id: str
    calls: list[CallDescriptor]
    receipt_id: Optional[str] = None
    events: list[StatusEvent] = field(default_factory=list)


class DryRunRelay:
    """Simulated relay with configurable latency and failure rate.

    Args:
        confirm_delay: Seconds between ``pending`` and the terminal event.
        failure_rate: Probability a submission reverts.
        duplicate_confirmations: Extra copies of ``confirmed`` to deliver.
        seed: Seed for the random source (receipts and failures).
    """

    def __init__(
        self,
        confirm_delay: float = 1.5,
        failure_rate: float = 0.05,
        duplicate_confirmations: int = 0,
        seed: Optional[int] = None,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self._confirm_delay = confirm_delay
        self._failure_rate = failure_rate
        self._duplicates = duplicate_confirmations
        self._random = random.Random(seed)
        self._submissions: deque[RelayCall] = deque(maxlen=SUBMISSION_LOG_LIMIT)
        self._log = log.bind(component="dry_run_relay")

    @classmethod
    def from_config(cls, config: ConfigManager) -> "DryRunRelay":
        return cls(
            confirm_delay=config.get_float("relay.confirm_delay_seconds", 1.5),
            failure_rate=config.get_float("relay.failure_rate", 0.05),
            duplicate_confirmations=config.get_int("relay.duplicate_confirmations", 0),
        )

    @property
    def submissions(self) -> tuple[RelayCall, ...]:
        """The most recent submissions, oldest first."""
        return tuple(self._submissions)

    def _receipt(self) -> str:
        return f"0x{self._random.getrandbits(256):064x}"

    def submit(self, user_id: str, calls: list[CallDescriptor]) -> AsyncIterator[StatusEvent]:
        if not calls:
            raise ValueError("cannot submit an empty call list")
        entry = RelayCall(user_id=user_id, calls=list(calls))
        self._submissions.append(entry)
        self._log.info("relay_submission", user_id=user_id, calls=len(calls))
        return self._stream(entry)

    async def _stream(self, entry: RelayCall) -> AsyncIterator[StatusEvent]:
        event = StatusEvent.pending()
        entry.events.append(event)
        yield event

        await asyncio.sleep(self._confirm_delay)

        if self._random.random() < self._failure_rate:
            event = StatusEvent.reverted(reason="simulated revert")
            entry.events.append(event)
            self._log.info("relay_reverted", user_id=entry.user_id)
            yield event
            return

        entry.receipt_id = self._receipt()
        for _ in range(1 + self._duplicates):
            event = StatusEvent.confirmed(entry.receipt_id)
            entry.events.append(event)
            yield event
        self._log.info("relay_confirmed", user_id=entry.user_id, receipt_id=entry.receipt_id)
