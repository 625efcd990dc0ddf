"""
In-process metrics for the audit assistant.

Counters and timers keyed by name, a global collector and a
``track_performance`` decorator used around message processing, intent
recognition and remote pagination. Nothing here is exported to an external
backend; ``get_summary()`` returns a snapshot of everything recorded.
"""

import asyncio
import logging
import time
from contextlib import contextmanager, asynccontextmanager
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, List, Optional


class Counter:
    """A counter metric that only increases."""

    def __init__(self, name: str, description: str = "", tags: Optional[Dict[str, str]] = None):
        self.name = name
        self.description = description
        self.tags = tags or {}
        self._value = 0
        self._created_at = datetime.now(timezone.utc)

    def increment(self, amount: int = 1) -> None:
        """Increment the counter."""
        if amount < 0:
            raise ValueError("Counter can only be incremented by positive values")
        self._value += amount

    def get_value(self) -> int:
        return self._value

    def reset(self) -> None:
        self._value = 0


class Timer:
    """A timer metric for measuring durations."""

    def __init__(self, name: str, description: str = "", tags: Optional[Dict[str, str]] = None):
        self.name = name
        self.description = description
        self.tags = tags or {}
        self._durations: List[float] = []

    def observe(self, duration: float) -> None:
        self._durations.append(duration)
        # Bounded so long-running services do not grow without limit
        del self._durations[:-1000]

    @contextmanager
    def time_context(self):
        """Context manager for timing operations."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - start_time)

    @asynccontextmanager
    async def time_async_context(self):
        """Async context manager for timing operations."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - start_time)

    def get_statistics(self) -> Dict[str, Any]:
        """Get timer statistics."""
        count = len(self._durations)
        total = sum(self._durations)
        return {
            'count': count,
            'sum': total,
            'mean': total / count if count else 0.0,
            'max': max(self._durations) if count else 0.0
        }

    def reset(self) -> None:
        self._durations.clear()


class MetricsCollector:
    """Central metrics registry."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._counters: Dict[str, Counter] = {}
        self._timers: Dict[str, Timer] = {}

    def counter(self, name: str, description: str = "", tags: Optional[Dict[str, str]] = None) -> Counter:
        """Get or create a counter metric."""
        if name not in self._counters:
            self._counters[name] = Counter(name, description, tags)
        return self._counters[name]

    def timer(self, name: str, description: str = "", tags: Optional[Dict[str, str]] = None) -> Timer:
        """Get or create a timer metric."""
        if name not in self._timers:
            self._timers[name] = Timer(name, description, tags)
        return self._timers[name]

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary."""
        return {
            'counters': {name: c.get_value() for name, c in self._counters.items()},
            'timers': {name: t.get_statistics() for name, t in self._timers.items()}
        }

    def reset_all(self) -> None:
        """Reset all metrics."""
        for metric in list(self._counters.values()) + list(self._timers.values()):
            metric.reset()


# Global metrics collector
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def counter(name: str, description: str = "", tags: Optional[Dict[str, str]] = None) -> Counter:
    """Get or create a counter metric."""
    return get_metrics_collector().counter(name, description, tags)


def timer(name: str, description: str = "", tags: Optional[Dict[str, str]] = None) -> Timer:
    """Get or create a timer metric."""
    return get_metrics_collector().timer(name, description, tags)


def track_performance(metric_name: Optional[str] = None, tags: Optional[Dict[str, str]] = None):
    """
    Decorator to track call count, error count and duration.

    Usage:
        @track_performance("nlp.recognize")
        def recognize(self, text):
            ...
    """
    def decorator(func: Callable) -> Callable:
        name = metric_name or f"{func.__module__}.{func.__name__}"

        # Looked up per call so a reset or replaced collector is respected
        def _metrics():
            return (
                timer(f"{name}_duration", f"Execution time for {name}", tags),
                counter(f"{name}_calls", f"Call count for {name}", tags),
                counter(f"{name}_errors", f"Error count for {name}", tags)
            )

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            perf_timer, perf_counter, error_counter = _metrics()
            perf_counter.increment()
            async with perf_timer.time_async_context():
                try:
                    return await func(*args, **kwargs)
                except Exception:
                    error_counter.increment()
                    raise

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            perf_timer, perf_counter, error_counter = _metrics()
            perf_counter.increment()
            with perf_timer.time_context():
                try:
                    return func(*args, **kwargs)
                except Exception:
                    error_counter.increment()
                    raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
