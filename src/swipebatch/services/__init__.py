"""Services - batching pipeline components and their storage."""

from swipebatch.services.allowance import StoreAllowanceGate
from swipebatch.services.batching import BatchAccumulator
from swipebatch.services.call_builder import CallBuilder
from swipebatch.services.lifecycle_monitor import LifecycleMonitor, ProcessedReceipts
from swipebatch.services.market_validator import MarketValidator
from swipebatch.services.metrics import MetricsEmitter
from swipebatch.services.notifier import Notifier
from swipebatch.services.persistence_sync import PersistenceReport, PersistenceSync
from swipebatch.services.session import SessionManager, SwipeSession
from swipebatch.services.state_store import StateStore
from swipebatch.services.submission_gate import SubmissionGate

__all__ = [
    "BatchAccumulator",
    "CallBuilder",
    "LifecycleMonitor",
    "MarketValidator",
    "MetricsEmitter",
    "Notifier",
    "PersistenceReport",
    "PersistenceSync",
    "ProcessedReceipts",
    "SessionManager",
    "StateStore",
    "StoreAllowanceGate",
    "SubmissionGate",
    "SwipeSession",
]
