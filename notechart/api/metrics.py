"""
Metrics endpoint for performance monitoring.
"""
from fastapi import APIRouter
from notechart.core.performance import PerformanceMonitor
from notechart.core.cache import get_analysis_cache, get_debug_cache

router = APIRouter()


@router.get("/metrics")
async def get_metrics():
    """
    Get performance metrics and cache statistics.

    Covers request durations, pipeline stages (analysis.*), inference
    stages (inference.*) and the analysis/debug caches.
    """
    metrics = PerformanceMonitor.get_all_metrics()
    cache_stats = {
        'analysis_cache': get_analysis_cache().get_stats(),
        'debug_cache': get_debug_cache().get_stats()
    }

    return {
        'performance': metrics,
        'cache': cache_stats
    }
