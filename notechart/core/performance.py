"""
Performance monitoring and metrics collection.
"""
import inspect
import time
import logging
from typing import Dict, Optional, Any
from functools import wraps
from collections import defaultdict
import threading

logger = logging.getLogger(__name__)

# Thread-safe metrics storage
_metrics_lock = threading.Lock()
_metrics: Dict[str, list] = defaultdict(list)

# Keep only the most recent entries per metric
MAX_ENTRIES_PER_METRIC = 1000


class PerformanceMonitor:
    """Monitor and track performance metrics."""

    @staticmethod
    def record_metric(name: str, value: float, metadata: Optional[Dict[str, Any]] = None):
        """
        Record a performance metric.

        Args:
            name: Metric name (e.g., 'analysis.gates', 'inference.recommend')
            value: Metric value (usually duration in seconds)
            metadata: Optional metadata (correlation_id, status, etc.)
        """
        with _metrics_lock:
            _metrics[name].append({
                'value': value,
                'timestamp': time.time(),
                'metadata': metadata or {}
            })

            if len(_metrics[name]) > MAX_ENTRIES_PER_METRIC:
                _metrics[name] = _metrics[name][-MAX_ENTRIES_PER_METRIC:]

    @staticmethod
    def _stats_locked(metric_name: str) -> Optional[Dict[str, float]]:
        entries = _metrics.get(metric_name)
        if not entries:
            return None

        values = sorted(m['value'] for m in entries)
        return {
            'count': len(values),
            'min': values[0],
            'max': values[-1],
            'mean': sum(values) / len(values),
            'p50': values[len(values) // 2],
            'p95': values[min(int(len(values) * 0.95), len(values) - 1)],
            'p99': values[min(int(len(values) * 0.99), len(values) - 1)],
        }

    @staticmethod
    def get_stats(metric_name: str) -> Optional[Dict[str, float]]:
        """
        Get statistics for a metric.

        Returns:
            Dict with min, max, mean, count and percentiles, or None if no data
        """
        with _metrics_lock:
            return PerformanceMonitor._stats_locked(metric_name)

    @staticmethod
    def get_all_metrics() -> Dict[str, Dict[str, float]]:
        """Get statistics for all metrics."""
        with _metrics_lock:
            return {
                name: PerformanceMonitor._stats_locked(name)
                for name in list(_metrics.keys())
            }

    @staticmethod
    def clear_metrics():
        """Clear all metrics (useful for testing)."""
        with _metrics_lock:
            _metrics.clear()


def track_performance(metric_name: str):
    """
    Decorator to track function execution time.

    Usage:
        @track_performance("analysis.compile")
        def compile_chart(...):
            ...
    """
    def decorator(func):
        def _record(start_time: float, status: str, error: Optional[Exception] = None):
            duration = time.time() - start_time
            metadata = {'status': status}
            if error is not None:
                metadata['error'] = str(error)
            PerformanceMonitor.record_metric(metric_name, duration, metadata)
            if error is None:
                logger.debug(
                    f"{metric_name} completed in {duration:.3f}s",
                    extra={'metric': metric_name, 'duration': duration}
                )
            else:
                logger.error(
                    f"{metric_name} failed after {duration:.3f}s: {error}",
                    extra={'metric': metric_name, 'duration': duration},
                    exc_info=True
                )

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _record(start_time, 'error', e)
                raise
            _record(start_time, 'success')
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _record(start_time, 'error', e)
                raise
            _record(start_time, 'success')
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
