"""Lightweight in-process metrics for catalog refreshes and queries.

This is intentionally dependency-light (no Prometheus client required).
"""

from __future__ import annotations

from collections import defaultdict, deque
from threading import Lock


def _percentile(sorted_values: list[float], p: float) -> float:
    if not sorted_values:
        return 0.0
    idx = int((len(sorted_values) - 1) * p)
    return round(sorted_values[idx], 2)


class InMemoryMetrics:
    def __init__(self, latency_window: int = 2000) -> None:
        self._lock = Lock()
        self._refreshes_total = 0
        self._refresh_failures: dict[str, int] = defaultdict(int)
        self._refresh_counts: dict[str, int] = defaultdict(int)
        self._queries_total = 0
        self._query_counts: dict[str, int] = defaultdict(int)
        self._query_failures: dict[str, int] = defaultdict(int)
        self._refresh_latencies_ms = deque(maxlen=latency_window)
        self._query_latencies_ms = deque(maxlen=latency_window)

    def observe_refresh(self, origin: str, ok: bool, duration_ms: float) -> None:
        with self._lock:
            self._refreshes_total += 1
            self._refresh_counts[origin] += 1
            if not ok:
                self._refresh_failures[origin] += 1
            self._refresh_latencies_ms.append(float(duration_ms))

    def observe_query(self, kind: str, ok: bool, duration_ms: float) -> None:
        with self._lock:
            self._queries_total += 1
            self._query_counts[kind] += 1
            if not ok:
                self._query_failures[kind] += 1
            self._query_latencies_ms.append(float(duration_ms))

    def snapshot(self) -> dict:
        with self._lock:
            refresh_latencies = sorted(self._refresh_latencies_ms)
            query_latencies = sorted(self._query_latencies_ms)

            return {
                "refreshes_total": self._refreshes_total,
                "refresh_counts": dict(self._refresh_counts),
                "refresh_failures": dict(self._refresh_failures),
                "queries_total": self._queries_total,
                "query_counts": dict(self._query_counts),
                "query_failures": dict(self._query_failures),
                "refresh_latency_ms": {
                    "samples": len(refresh_latencies),
                    "p50": _percentile(refresh_latencies, 0.50),
                    "p95": _percentile(refresh_latencies, 0.95),
                    "p99": _percentile(refresh_latencies, 0.99),
                },
                "query_latency_ms": {
                    "samples": len(query_latencies),
                    "p50": _percentile(query_latencies, 0.50),
                    "p95": _percentile(query_latencies, 0.95),
                    "p99": _percentile(query_latencies, 0.99),
                },
            }


metrics = InMemoryMetrics()
