# src/polyorm/monitoring.py
"""
Per-operation timing for entity calls routed through a connection
"""
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, List, Optional
import logging
import time


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QueryMetrics:
    """One adapter call: which operation, on which model, how long, how it ended"""
    operation: str
    model: str
    duration_ms: float
    success: bool
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    rows_affected: Optional[int] = None


@dataclass
class AggregatedMetrics:
    total_queries: int = 0
    successful_queries: int = 0
    failed_queries: int = 0
    avg_duration_ms: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    total_duration_ms: float = 0.0
    queries_by_operation: Dict[str, int] = field(default_factory=dict)
    queries_by_model: Dict[str, int] = field(default_factory=dict)
    slow_queries: List[QueryMetrics] = field(default_factory=list)


MetricsHook = Callable[[QueryMetrics], None]


class MetricsCollector:
    """
    Bounded in-memory history of adapter calls for one connection.

    Only the most recent ``max_entries`` calls are kept; calls slower than
    ``slow_query_threshold_ms`` are logged as they are recorded.
    """

    def __init__(self, slow_query_threshold_ms: float = 1000.0, max_entries: int = 10000):
        self.slow_query_threshold = slow_query_threshold_ms
        self._metrics: Deque[QueryMetrics] = deque(maxlen=max_entries)
        self._hooks: List[MetricsHook] = []
        self.logger = logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self._metrics)

    def register_hook(self, hook: MetricsHook):
        """Call ``hook(metric)`` for every recorded call"""
        self._hooks.append(hook)

    def record(self, metric: QueryMetrics):
        self._metrics.append(metric)

        if metric.duration_ms > self.slow_query_threshold:
            self.logger.warning(
                f"Slow {metric.operation} on {metric.model}: {metric.duration_ms:.2f}ms"
            )

        for hook in self._hooks:
            try:
                hook(metric)
            except Exception as e:
                self.logger.error(f"Metrics hook failed: {e}")

    def get_metrics(
        self,
        since: Optional[datetime] = None,
        model: Optional[str] = None,
        operation: Optional[str] = None
    ) -> List[QueryMetrics]:
        return [
            m for m in self._metrics
            if (since is None or m.timestamp >= since)
            and (model is None or m.model == model)
            and (operation is None or m.operation == operation)
        ]

    def aggregate(
        self,
        since: Optional[datetime] = None,
        model: Optional[str] = None
    ) -> AggregatedMetrics:
        metrics = self.get_metrics(since=since, model=model)
        if not metrics:
            return AggregatedMetrics()

        durations = [m.duration_ms for m in metrics]
        succeeded = sum(1 for m in metrics if m.success)
        total = sum(durations)

        return AggregatedMetrics(
            total_queries=len(metrics),
            successful_queries=succeeded,
            failed_queries=len(metrics) - succeeded,
            avg_duration_ms=total / len(metrics),
            min_duration_ms=min(durations),
            max_duration_ms=max(durations),
            total_duration_ms=total,
            queries_by_operation=dict(Counter(m.operation for m in metrics)),
            queries_by_model=dict(Counter(m.model for m in metrics)),
            slow_queries=[m for m in metrics if m.duration_ms > self.slow_query_threshold],
        )

    def clear_old_metrics(self, older_than: timedelta):
        cutoff = _utcnow() - older_than
        while self._metrics and self._metrics[0].timestamp < cutoff:
            self._metrics.popleft()


class PerformanceMonitor:
    """
    Times one adapter call and records it on exit.

    Usage:
        with PerformanceMonitor(collector, "find", "User") as monitor:
            rows = await adapter.find("User", condition)
            monitor.rows_affected = len(rows)
    """

    def __init__(self, collector: MetricsCollector, operation: str, model: str):
        self.collector = collector
        self.operation = operation
        self.model = model
        self.rows_affected: Optional[int] = None
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.collector.record(QueryMetrics(
            operation=self.operation,
            model=self.model,
            duration_ms=(time.perf_counter() - self._started) * 1000,
            success=exc_type is None,
            error=None if exc_val is None else str(exc_val),
            rows_affected=self.rows_affected,
        ))
        return False
