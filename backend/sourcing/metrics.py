"""
In-process metrics for the search pipeline.

MetricsCollector holds named counters, gauges and windowed histograms;
SearchMetrics is the thin facade the orchestrator records into and the API
reads a dashboard snapshot from.
"""

import math
import threading
from collections import deque
from typing import Deque, Dict, Optional


class Histogram:
    """Rolling window of observations."""

    def __init__(self, window: int = 50):
        self.window = max(1, window)
        self._values: Deque[float] = deque(maxlen=self.window)

    def observe(self, value: float):
        self._values.append(float(value))

    @property
    def count(self) -> int:
        return len(self._values)

    def avg(self) -> Optional[float]:
        if not self._values:
            return None
        return sum(self._values) / len(self._values)

    def p95(self) -> Optional[float]:
        if not self._values:
            return None
        ordered = sorted(self._values)
        n = len(ordered)
        return ordered[min(n - 1, math.floor(n * 0.95))]


class MetricsCollector:
    """Thread-safe registry of counters, gauges and histograms."""

    def __init__(self, window: int = 50):
        self.window = window
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, Histogram] = {}

    def inc(self, name: str, amount: int = 1):
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    def gauge(self, name: str, value: float):
        with self._lock:
            self._gauges[name] = value

    def observe(self, name: str, value: float):
        with self._lock:
            hist = self._histograms.get(name)
            if hist is None:
                hist = self._histograms[name] = Histogram(self.window)
            hist.observe(value)

    def counter_value(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def gauge_value(self, name: str) -> Optional[float]:
        with self._lock:
            return self._gauges.get(name)

    def histogram(self, name: str) -> Histogram:
        with self._lock:
            hist = self._histograms.get(name)
            if hist is None:
                hist = self._histograms[name] = Histogram(self.window)
            return hist


class SearchMetrics:
    """Named metrics recorded around every search call."""

    COUNT = 'search.count'
    DURATION = 'search.duration_ms'
    LAST_DURATION = 'search.last_duration_ms'
    LAST_RESULT = 'search.last_result'
    HEADLESS_PROMOTIONS = 'search.headless_promotions'
    SPARSE_PROMOTIONS = 'search.sparse_promotions'

    def __init__(self, collector: Optional[MetricsCollector] = None):
        self.collector = collector or MetricsCollector()

    def record_search(self, duration_ms: float, result_count: int):
        self.collector.gauge(self.LAST_DURATION, duration_ms)
        self.collector.gauge(self.LAST_RESULT, result_count)
        self.collector.inc(self.COUNT)
        self.collector.observe(self.DURATION, duration_ms)

    def record_escalation(self, promoted: bool, sparse: bool):
        """Count a headless attempt: whether it replaced the static batch, and whether static was sparse."""
        if promoted:
            self.collector.inc(self.HEADLESS_PROMOTIONS)
        if sparse:
            self.collector.inc(self.SPARSE_PROMOTIONS)

    def snapshot(self) -> Dict:
        c = self.collector
        hist = c.histogram(self.DURATION)
        avg = hist.avg()
        p95 = hist.p95()
        return {
            'total_searches': c.counter_value(self.COUNT),
            'last_duration_ms': c.gauge_value(self.LAST_DURATION),
            'last_result_count': c.gauge_value(self.LAST_RESULT),
            'avg_duration_ms': round(avg, 1) if avg is not None else None,
            'p95_duration_ms': round(p95, 1) if p95 is not None else None,
            'window': hist.count,
            'headless_promotions': c.counter_value(self.HEADLESS_PROMOTIONS),
            'sparse_promotions': c.counter_value(self.SPARSE_PROMOTIONS),
        }
