"""
Tests for Prometheus metrics and OpenTelemetry tracing wiring.
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest
from prometheus_client import REGISTRY
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from config import get_config, to_units
from credit.batch import BatchExecutor
from credit.ledger import ShardLedger
from crypto import hash_secret
from errors import InsufficientCreditError
from observability import metrics_collector, setup_tracing, shutdown_tracing, create_span
from sharding import ShardRouter

OPERATOR = "operator"
MESSAGE_FEE = to_units("0.01")
IDENTITY = hash_secret("metrics-secret")


def sample(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0


class TestMetrics:
    """Test counters recorded by ledger operations"""

    def test_message_counters(self):
        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0, label="metrics-a")
        before = sample("relay_messages_sent_total", {"shard": "metrics-a"})

        ledger.deposit_credit(IDENTITY, MESSAGE_FEE)
        ledger.send_message(IDENTITY, b"hi", sender="s")

        assert sample("relay_messages_sent_total", {"shard": "metrics-a"}) == before + 1
        assert sample("relay_message_fees_units_total", {"shard": "metrics-a"}) == MESSAGE_FEE
        assert sample("relay_credit_deposited_units_total", {"shard": "metrics-a"}) == MESSAGE_FEE

    def test_failures_counted_by_kind(self):
        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0, label="metrics-b")
        labels = {"operation": "send_message", "kind": "InsufficientCredit"}
        before = sample("relay_operation_failures_total", labels)

        with pytest.raises(InsufficientCreditError):
            ledger.send_message(IDENTITY, b"hi", sender="s")

        assert sample("relay_operation_failures_total", labels) == before + 1

    def test_rolled_back_operation_not_counted(self):
        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0, label="metrics-c")

        with pytest.raises(RuntimeError):
            with ledger.transaction():
                ledger.deposit_credit(IDENTITY, 10)
                raise RuntimeError("abort")

        assert sample("relay_credit_deposited_units_total", {"shard": "metrics-c"}) == 0

    def test_active_shards_gauge(self):
        router = ShardRouter(OPERATOR, get_config("local"))
        router.add_shard(caller=OPERATOR)

        assert sample("relay_active_shards", {}) == 4

    def test_exposition_format(self):
        output = metrics_collector.get_metrics()

        assert b"relay_messages_sent_total" in output


class TestTracing:
    """Test spans opened by routing and batch execution"""

    @pytest.fixture
    def exporter(self):
        exporter = InMemorySpanExporter()
        setup_tracing("relay-test", exporter=exporter)
        yield exporter
        shutdown_tracing()

    def test_route_identity_span(self, exporter):
        router = ShardRouter(OPERATOR, get_config("local"))

        _, index = router.route_identity(IDENTITY)

        spans = [s for s in exporter.get_finished_spans() if s.name == "route_identity"]
        assert len(spans) == 1
        assert spans[0].attributes["relay.shard_index"] == index
        assert spans[0].attributes["relay.shard_count"] == 3

    def test_batch_span_records_failure(self, exporter):
        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0)

        with pytest.raises(InsufficientCreditError):
            BatchExecutor().batch_send_message(ledger, [IDENTITY], [b"hi"], sender="s")

        span = [s for s in exporter.get_finished_spans() if s.name == "batch_send_message"][0]
        assert span.status.status_code == StatusCode.ERROR
        assert span.events[0].name == "exception"

    def test_create_span_without_setup(self):
        with create_span("untraced", {"relay.key": "value"}) as span:
            assert span is not None
