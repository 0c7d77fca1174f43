"""
Write proxy metrics, registered in the Prometheus global REGISTRY on import.
"""

from prometheus_client import Counter, Histogram

WRITES_TOTAL = Counter(
    "rtdb_writes_total",
    "Write calls handled by the proxy",
    ["operation", "outcome"],  # outcome: committed | deferred | failed
)

ADMISSION_CHECKS_TOTAL = Counter(
    "rtdb_admission_checks_total",
    "Rate gate admission decisions",
    ["decision"],  # admitted | limited
)

RECOVERY_TOTAL = Counter(
    "rtdb_recovery_total",
    "Recovery chain verdicts for failed direct writes",
    ["verdict"],  # recoverable | dead_lettered | unhandled
)

REPLAY_TOTAL = Counter(
    "rtdb_replay_total",
    "Deferred writes replayed against the engine",
    ["outcome"],  # applied | failed | dead_lettered
)

WRITE_LATENCY = Histogram(
    "rtdb_write_latency_seconds",
    "Latency of direct (admitted) writes",
    ["operation"],
    buckets=[0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5],
)


class MetricsRegistry:
    """Centralized access to the proxy metrics."""

    writes_total = WRITES_TOTAL
    admission_checks_total = ADMISSION_CHECKS_TOTAL
    recovery_total = RECOVERY_TOTAL
    replay_total = REPLAY_TOTAL
    write_latency = WRITE_LATENCY


# Singleton instance
metrics_registry = MetricsRegistry()
