"""Unit tests for MetricsEmitter."""
import pytest
from prometheus_client import CollectorRegistry

from swipebatch.services.metrics import MetricsEmitter


@pytest.fixture
def metrics_emitter():
    """Create a MetricsEmitter with isolated registry."""
    registry = CollectorRegistry()
    return MetricsEmitter(registry=registry)


class TestMetricsEmitter:
    """Test MetricsEmitter functionality."""

    def test_init_creates_metrics(self, metrics_emitter):
        output = metrics_emitter.get_metrics()

        assert "swipebatch_uptime_seconds" in output
        assert "swipebatch_submissions_in_flight" in output
        assert 'swipebatch_info{component="swipebatch"' in output

    def test_record_intent(self, metrics_emitter):
        metrics_emitter.record_intent("queued")
        metrics_emitter.record_intents("dropped", 3)
        metrics_emitter.record_intents("requeued", 0)

        output = metrics_emitter.get_metrics()
        assert 'swipebatch_intents_total{status="queued"} 1.0' in output
        assert 'swipebatch_intents_total{status="dropped"} 3.0' in output
        assert 'status="requeued"' not in output

    def test_record_flush(self, metrics_emitter):
        metrics_emitter.record_flush("inactivity", 3)

        output = metrics_emitter.get_metrics()
        assert 'swipebatch_batches_flushed_total{trigger="inactivity"} 1.0' in output
        assert "swipebatch_batch_size_count 1.0" in output

    def test_in_flight_gauge(self, metrics_emitter):
        metrics_emitter.submission_started()
        metrics_emitter.submission_started()
        metrics_emitter.submission_released()

        assert "swipebatch_submissions_in_flight 1.0" in metrics_emitter.get_metrics()

    def test_record_batch_resolved(self, metrics_emitter):
        metrics_emitter.record_batch_resolved("confirmed", latency_seconds=2.0)
        metrics_emitter.record_batch_resolved("dropped")

        output = metrics_emitter.get_metrics()
        assert 'swipebatch_batches_resolved_total{outcome="confirmed"} 1.0' in output
        assert 'swipebatch_batches_resolved_total{outcome="dropped"} 1.0' in output
        assert "swipebatch_submission_latency_seconds_count 1.0" in output

    def test_receipt_and_stall_counters(self, metrics_emitter):
        metrics_emitter.record_duplicate_receipt()
        metrics_emitter.record_stalled_submission()
        metrics_emitter.record_persistence_item("skipped")

        output = metrics_emitter.get_metrics()
        assert "swipebatch_duplicate_receipts_total 1.0" in output
        assert "swipebatch_stalled_submissions_total 1.0" in output
        assert 'swipebatch_persistence_items_total{status="skipped"} 1.0' in output

    def test_separate_registries_do_not_collide(self):
        MetricsEmitter()
        MetricsEmitter()
