"""Prometheus metrics for the credit relay.

Counters track value flowing through the shard ledgers and the registry;
failures are counted by operation and error kind.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    REGISTRY,
)
import time
from functools import wraps

from errors import RelayError


# ============================================================================
# CORE METRICS
# ============================================================================

# Credit flow
credit_deposited_units_total = Counter(
    "relay_credit_deposited_units_total",
    "Total value units deposited into identity balances",
    ["shard"],
)

messages_sent_total = Counter(
    "relay_messages_sent_total",
    "Total number of messages accepted by a shard",
    ["shard"],
)

message_fees_units_total = Counter(
    "relay_message_fees_units_total",
    "Total value units charged as message fees",
    ["shard"],
)

withdrawals_total = Counter(
    "relay_withdrawals_total",
    "Total number of completed credit withdrawals",
    ["shard"],
)

withdrawn_units_total = Counter(
    "relay_withdrawn_units_total",
    "Total net value units paid out to withdrawers",
    ["shard"],
)

fees_withdrawn_units_total = Counter(
    "relay_fees_withdrawn_units_total",
    "Total retained fee units extracted by the operator",
    ["component"],
)

# Registry
registrations_total = Counter(
    "relay_registrations_total",
    "Total number of identity registrations",
    ["visibility"],  # 'public' or 'private'
)

# Failures and latency
operation_failures_total = Counter(
    "relay_operation_failures_total",
    "Total number of rejected operations",
    ["operation", "kind"],
)

operation_latency = Histogram(
    "relay_operation_latency_seconds",
    "Time to apply a relay operation",
    ["operation"],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0],
)

# Topology
active_shards = Gauge("relay_active_shards", "Number of live shard ledgers")

system_info = Info("relay_system", "Relay build information")


# ============================================================================
# HELPER DECORATORS
# ============================================================================


def track_operation(operation: str):
    """
    Decorator that times an operation and counts its failures by kind.

    Example:
        @track_operation("send_message")
        def send_message(self, identity, payload, *, sender):
            ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            except RelayError as e:
                operation_failures_total.labels(operation=operation, kind=e.kind).inc()
                raise
            finally:
                operation_latency.labels(operation=operation).observe(
                    time.time() - start_time
                )

        return wrapper

    return decorator


# ============================================================================
# METRICS COLLECTOR
# ============================================================================


class MetricsCollector:
    """
    Centralized metrics recording and export.

    Components call the record_* methods after an operation commits.
    """

    def __init__(self):
        self.start_time = time.time()
        self._update_system_info()

    def _update_system_info(self):
        """Update system information metric."""
        import platform

        system_info.info(
            {
                "version": "0.1.0",
                "platform": platform.system(),
                "python_version": platform.python_version(),
            }
        )

    def record_deposit(self, shard: str, amount: int):
        credit_deposited_units_total.labels(shard=shard).inc(amount)

    def record_message(self, shard: str, fee: int):
        messages_sent_total.labels(shard=shard).inc()
        message_fees_units_total.labels(shard=shard).inc(fee)

    def record_withdrawal(self, shard: str, net_amount: int):
        withdrawals_total.labels(shard=shard).inc()
        withdrawn_units_total.labels(shard=shard).inc(net_amount)

    def record_fees_withdrawn(self, component: str, amount: int):
        fees_withdrawn_units_total.labels(component=component).inc(amount)

    def record_registration(self, is_public: bool):
        registrations_total.labels(visibility="public" if is_public else "private").inc()

    def set_active_shards(self, count: int):
        active_shards.set(count)

    def get_metrics(self) -> bytes:
        """
        Get metrics in Prometheus format.

        Returns:
            Metrics as bytes in Prometheus exposition format
        """
        return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
