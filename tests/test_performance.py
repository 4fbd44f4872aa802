"""
Tests for performance monitoring.
"""
import pytest
import asyncio
import time
from notechart.core.performance import PerformanceMonitor, track_performance


def test_performance_monitor_record():
    """Test recording performance metrics."""
    PerformanceMonitor.clear_metrics()

    PerformanceMonitor.record_metric("inference.recommend", 1.5, {"status": "success"})
    PerformanceMonitor.record_metric("inference.recommend", 2.0)
    PerformanceMonitor.record_metric("inference.recommend", 0.5)

    stats = PerformanceMonitor.get_stats("inference.recommend")

    assert stats is not None
    assert stats["count"] == 3
    assert stats["min"] == 0.5
    assert stats["max"] == 2.0
    assert stats["mean"] == pytest.approx(1.333, rel=0.01)


def test_performance_decorator_sync():
    """Test performance tracking decorator on sync function."""
    PerformanceMonitor.clear_metrics()

    @track_performance("analysis.compile")
    def compile_stub(x: int) -> int:
        time.sleep(0.01)
        return x * 2

    assert compile_stub(5) == 10

    stats = PerformanceMonitor.get_stats("analysis.compile")
    assert stats is not None
    assert stats["count"] == 1
    assert stats["mean"] > 0


def test_performance_decorator_records_failures():
    """A raising call is still timed and the exception propagates."""
    PerformanceMonitor.clear_metrics()

    @track_performance("analysis.gates")
    def failing():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        failing()

    assert PerformanceMonitor.get_stats("analysis.gates")["count"] == 1


@pytest.mark.asyncio
async def test_performance_decorator_async():
    """Test performance tracking decorator on async function."""
    PerformanceMonitor.clear_metrics()

    @track_performance("test_async_function")
    async def test_async_func(x: int) -> int:
        await asyncio.sleep(0.01)
        return x * 2

    assert await test_async_func(5) == 10

    stats = PerformanceMonitor.get_stats("test_async_function")
    assert stats is not None
    assert stats["count"] == 1


def test_performance_monitor_clear():
    """Test clearing metrics."""
    PerformanceMonitor.record_metric("test", 1.0)
    assert PerformanceMonitor.get_stats("test") is not None

    PerformanceMonitor.clear_metrics()
    assert PerformanceMonitor.get_stats("test") is None
