"""Prometheus-compatible metrics for the pairing server.

Tracks, in memory:
- Session lifecycle (connects, disconnects, online and available sessions)
- Matchmaking (pairings created, misses, rollbacks, pairing duration)
- Relay traffic (messages forwarded and dropped, per message type)
- Protocol health (malformed and unknown frames)

Exposed through the /metrics endpoint in Prometheus text exposition format
and summarized as JSON on /metrics/summary.

Architecture:
    PairingEngine → MetricsCollector → /metrics, /metrics/summary
"""

import bisect
import logging
import threading
from dataclasses import dataclass, field
from typing import ClassVar

logger = logging.getLogger(__name__)

# Conversations last seconds to hours
DURATION_BUCKETS_S: tuple[float, ...] = (
    1.0,
    5.0,
    15.0,
    30.0,
    60.0,
    300.0,
    900.0,
    1800.0,
    3600.0,
    7200.0,
)


def format_labels(labels: dict[str, str]) -> str:
    """Render a label set as ``{k="v",...}`` (empty string for no labels)."""
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in sorted(labels.items())) + "}"


@dataclass
class Counter:
    """Monotonically increasing value."""

    kind: ClassVar[str] = "counter"

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def samples(self) -> list[str]:
        return [f"{self.name}{format_labels(self.labels)} {self.value}"]


@dataclass
class Gauge:
    """Value that can go up and down."""

    kind: ClassVar[str] = "gauge"

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def samples(self) -> list[str]:
        return [f"{self.name}{format_labels(self.labels)} {self.value}"]


@dataclass
class Histogram:
    """Fixed-bucket distribution of durations in seconds.

    ``counts`` holds per-bucket (non-cumulative) observation counts; the last
    slot collects everything above the largest bound.
    """

    kind: ClassVar[str] = "histogram"

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    bounds: tuple[float, ...] = DURATION_BUCKETS_S
    counts: list[int] = field(init=False)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self) -> None:
        self.counts = [0] * (len(self.bounds) + 1)

    def observe(self, value: float) -> None:
        self.counts[bisect.bisect_left(self.bounds, value)] += 1
        self.sum += value
        self.count += 1

    def cumulative(self) -> list[tuple[float, int]]:
        """(upper bound, observations <= bound) pairs, ending with +Inf."""
        result = []
        running = 0
        for upper, n in zip((*self.bounds, float("inf")), self.counts):
            running += n
            result.append((upper, running))
        return result

    def quantile(self, q: float) -> float | None:
        """Approximate quantile by linear interpolation inside its bucket.

        Observations above the largest bound are reported as that bound.

        Args:
            q: Quantile between 0.0 and 1.0

        Returns:
            Estimated value, or None without observations
        """
        if self.count == 0:
            return None

        rank = q * self.count
        running = 0
        lower = 0.0
        for upper, n in zip(self.bounds, self.counts):
            if n and running + n >= rank:
                return lower + (upper - lower) * (rank - running) / n
            running += n
            lower = upper
        return self.bounds[-1]

    def samples(self) -> list[str]:
        lines = []
        for upper, cumulative in self.cumulative():
            le = "+Inf" if upper == float("inf") else str(upper)
            lines.append(
                f"{self.name}_bucket{format_labels({**self.labels, 'le': le})} {cumulative}"
            )
        labels = format_labels(self.labels)
        lines.append(f"{self.name}_sum{labels} {self.sum}")
        lines.append(f"{self.name}_count{labels} {self.count}")
        return lines


Metric = Counter | Gauge | Histogram


class MetricsCollector:
    """Named metric registry with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        # Keyed by metric name, or "name:label" for per-type relay counters
        self._metrics: dict[str, Metric] = {}

        for name, help_text in (
            ("connections_total", "Total number of sessions registered"),
            ("disconnects_total", "Total number of sessions removed"),
            ("pairings_total", "Total number of pairings created"),
            ("global_pairings_total", "Pairings created through the cross-region fallback"),
            ("match_misses_total", "find_partner requests that found nobody available"),
            (
                "match_rollbacks_total",
                "Pairings undone because the partner vanished before notification",
            ),
            ("malformed_messages_total", "Inbound frames that could not be decoded"),
            ("unknown_messages_total", "Inbound frames with an unhandled message type"),
        ):
            self._metrics[name] = Counter(name=name, help=help_text)

        for name, help_text in (
            ("sessions_online", "Number of sessions with an open connection"),
            ("sessions_available", "Number of sessions waiting to be paired"),
            ("pairings_active", "Number of active pairings"),
        ):
            self._metrics[name] = Gauge(name=name, help=help_text)

        for name, help_text in (
            ("session_duration_seconds", "Session duration in seconds (connect to disconnect)"),
            ("pairing_duration_seconds", "Pairing duration in seconds (connected to teardown)"),
        ):
            self._metrics[name] = Histogram(name=name, help=help_text)

        logger.debug("MetricsCollector initialized", extra={"metrics": len(self._metrics)})

    def _counter(self, name: str) -> Counter:
        metric = self._metrics[name]
        assert isinstance(metric, Counter)
        return metric

    def _gauge(self, name: str) -> Gauge:
        metric = self._metrics[name]
        assert isinstance(metric, Gauge)
        return metric

    def _histogram(self, name: str) -> Histogram:
        metric = self._metrics[name]
        assert isinstance(metric, Histogram)
        return metric

    def _typed_counter(self, name: str, message_type: str, help_text: str) -> Counter:
        key = f"{name}:{message_type}"
        metric = self._metrics.get(key)
        if metric is None:
            metric = Counter(name=name, help=help_text, labels={"type": message_type})
            self._metrics[key] = metric
        assert isinstance(metric, Counter)
        return metric

    def _total(self, name: str) -> float:
        return sum(
            m.value for m in self._metrics.values() if isinstance(m, Counter) and m.name == name
        )

    # === Sessions ===

    def record_connect(self) -> None:
        with self._lock:
            self._counter("connections_total").inc()

    def record_disconnect(self, duration_seconds: float) -> None:
        """Record session removal.

        Args:
            duration_seconds: Time the session was connected
        """
        with self._lock:
            self._counter("disconnects_total").inc()
            self._histogram("session_duration_seconds").observe(duration_seconds)

    def update_presence(self, online: int, available: int, pairings: int) -> None:
        """Set the live session gauges."""
        with self._lock:
            self._gauge("sessions_online").set(float(online))
            self._gauge("sessions_available").set(float(available))
            self._gauge("pairings_active").set(float(pairings))

    # === Matchmaking ===

    def record_pairing(self, global_match: bool = False) -> None:
        with self._lock:
            self._counter("pairings_total").inc()
            if global_match:
                self._counter("global_pairings_total").inc()

    def record_match_miss(self) -> None:
        with self._lock:
            self._counter("match_misses_total").inc()

    def record_match_rollback(self) -> None:
        with self._lock:
            self._counter("match_rollbacks_total").inc()

    def record_pairing_end(self, duration_seconds: float) -> None:
        with self._lock:
            self._histogram("pairing_duration_seconds").observe(duration_seconds)

    # === Relay ===

    def record_relayed(self, message_type: str) -> None:
        with self._lock:
            self._typed_counter(
                "messages_relayed_total", message_type, "Messages forwarded to a partner"
            ).inc()

    def record_dropped(self, message_type: str) -> None:
        with self._lock:
            self._typed_counter(
                "messages_dropped_total", message_type, "Messages dropped before delivery"
            ).inc()

    def record_malformed(self) -> None:
        with self._lock:
            self._counter("malformed_messages_total").inc()

    def record_unknown(self) -> None:
        with self._lock:
            self._counter("unknown_messages_total").inc()

    # === Export ===

    def export_prometheus(self) -> str:
        """Render every metric in Prometheus text exposition format.

        HELP and TYPE lines are written once per metric name, before its
        first sample, so labelled series share one header.
        """
        with self._lock:
            lines: list[str] = []
            described: set[str] = set()
            for metric in self._metrics.values():
                if metric.name not in described:
                    described.add(metric.name)
                    lines.append(f"# HELP {metric.name} {metric.help}")
                    lines.append(f"# TYPE {metric.name} {metric.kind}")
                lines.extend(metric.samples())
            return "\n".join(lines) + "\n"

    def get_summary(self) -> dict[str, float | None]:
        """Key numbers for the JSON summary endpoint."""
        with self._lock:
            pairing_durations = self._histogram("pairing_duration_seconds")
            return {
                "connections_total": self._counter("connections_total").value,
                "disconnects_total": self._counter("disconnects_total").value,
                "sessions_online": self._gauge("sessions_online").value,
                "sessions_available": self._gauge("sessions_available").value,
                "pairings_total": self._counter("pairings_total").value,
                "pairings_active": self._gauge("pairings_active").value,
                "match_misses": self._counter("match_misses_total").value,
                "match_rollbacks": self._counter("match_rollbacks_total").value,
                "pairing_duration_p50_s": pairing_durations.quantile(0.50),
                "pairing_duration_p95_s": pairing_durations.quantile(0.95),
                "messages_relayed": self._total("messages_relayed_total"),
                "messages_dropped": self._total("messages_dropped_total"),
                "malformed_messages": self._counter("malformed_messages_total").value,
                "unknown_messages": self._counter("unknown_messages_total").value,
            }


_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Process-wide collector, created on first use.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector


def reset_metrics_collector() -> MetricsCollector:
    """Replace the process-wide collector with a fresh one."""
    global _metrics_collector

    with _collector_lock:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
