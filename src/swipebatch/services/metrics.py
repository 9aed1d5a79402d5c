"""
Prometheus metrics emission for swipebatch.

Provides observability through standardized metrics collection.
All metrics use the 'swipebatch_' prefix.
"""
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from swipebatch import __version__


class MetricsEmitter:
    """Prometheus metrics emission (emit only, no reading).

    Usage:
        emitter = MetricsEmitter()
        emitter.record_intent("queued")
        emitter.record_flush("size", 5)
        metrics_output = emitter.get_metrics()
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        """Initialize MetricsEmitter.

        Args:
            registry: Optional custom registry (a private one if not provided)
        """
        self._registry = registry or CollectorRegistry()

        self._info = Info(
            "swipebatch",
            "Swipe prediction batching service information",
            registry=self._registry,
        )
        self._info.info({
            "version": __version__,
            "component": "swipebatch",
        })

        self._uptime = Gauge(
            "swipebatch_uptime_seconds",
            "Process uptime in seconds",
            registry=self._registry,
        )

        # Intake
        self._intents_total = Counter(
            "swipebatch_intents_total",
            "Swipe intents by intake status",
            ["status"],
            registry=self._registry,
        )

        # Batching
        self._batches_flushed = Counter(
            "swipebatch_batches_flushed_total",
            "Batches frozen and handed to submission",
            ["trigger"],
            registry=self._registry,
        )

        self._batch_size = Histogram(
            "swipebatch_batch_size",
            "Intents per flushed batch",
            buckets=[1, 2, 3, 4, 5, 8, 10, 20],
            registry=self._registry,
        )

        # Submission
        self._submissions_total = Counter(
            "swipebatch_submissions_total",
            "Submission gate decisions",
            ["decision"],
            registry=self._registry,
        )

        self._in_flight = Gauge(
            "swipebatch_submissions_in_flight",
            "Users with a submission currently in flight",
            registry=self._registry,
        )

        self._batches_resolved = Counter(
            "swipebatch_batches_resolved_total",
            "Flushed batches by final outcome",
            ["outcome"],
            registry=self._registry,
        )

        self._duplicate_receipts = Counter(
            "swipebatch_duplicate_receipts_total",
            "Confirmation events ignored because the receipt was already processed",
            registry=self._registry,
        )

        self._stalled_submissions = Counter(
            "swipebatch_stalled_submissions_total",
            "Submissions pending longer than the escalation window",
            registry=self._registry,
        )

        # Submission latency: seconds to minutes
        self._submission_latency = Histogram(
            "swipebatch_submission_latency_seconds",
            "Time from handoff to terminal status",
            buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
            registry=self._registry,
        )

        # Persistence
        self._persistence_items = Counter(
            "swipebatch_persistence_items_total",
            "Per-intent persistence results after confirmation",
            ["status"],
            registry=self._registry,
        )

    def record_intent(self, status: str) -> None:
        """Record an intent intake result.

        Args:
            status: queued, rejected, skipped, requeued or dropped
        """
        self._intents_total.labels(status=status).inc()

    def record_intents(self, status: str, count: int) -> None:
        """Record several intents with the same status."""
        if count > 0:
            self._intents_total.labels(status=status).inc(count)

    def record_flush(self, trigger: str, size: int) -> None:
        """Record a batch flush.

        Args:
            trigger: size, inactivity, backlog or close
            size: Number of intents in the batch
        """
        self._batches_flushed.labels(trigger=trigger).inc()
        self._batch_size.observe(size)

    def record_submission_decision(self, decision: str) -> None:
        """Record an accepted/rejected gate decision."""
        self._submissions_total.labels(decision=decision).inc()

    def submission_started(self) -> None:
        self._in_flight.inc()

    def submission_released(self) -> None:
        self._in_flight.dec()

    def record_batch_resolved(self, outcome: str, latency_seconds: Optional[float] = None) -> None:
        """Record a batch reaching its final outcome.

        Args:
            outcome: confirmed, reverted, errored or dropped
            latency_seconds: Handoff-to-terminal time, when a relay call was made
        """
        self._batches_resolved.labels(outcome=outcome).inc()
        if latency_seconds is not None:
            self._submission_latency.observe(latency_seconds)

    def record_duplicate_receipt(self) -> None:
        self._duplicate_receipts.inc()

    def record_stalled_submission(self) -> None:
        self._stalled_submissions.inc()

    def record_persistence_item(self, status: str) -> None:
        """Record one persistence result (persisted, skipped or failed)."""
        self._persistence_items.labels(status=status).inc()

    def update_uptime(self, seconds: float) -> None:
        self._uptime.set(seconds)

    def get_metrics(self) -> str:
        """Get Prometheus metrics output.

        Returns:
            Metrics in Prometheus text format
        """
        return generate_latest(self._registry).decode("utf-8")

    @property
    def registry(self) -> CollectorRegistry:
        """Get the metrics registry."""
        return self._registry
