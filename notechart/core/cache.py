"""
Simple in-memory caching layer for analysis results and debug payloads.
"""
import hashlib
import json
import logging
import time
from typing import Optional, Dict, Any, List
from dataclasses import dataclass
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cache entry with expiration."""
    data: Any
    timestamp: float
    ttl: float  # Time to live in seconds


class SimpleCache:
    """Thread-safe in-memory cache with TTL."""

    def __init__(self, default_ttl: float = 900, cleanup_interval: int = 100):  # 15 minutes default
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = Lock()
        self.default_ttl = default_ttl
        # Expired entries are swept every `cleanup_interval` writes
        self.cleanup_interval = cleanup_interval
        self._sets_since_cleanup = 0
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        with self._lock:
            if key not in self._cache:
                self._misses += 1
                return None

            entry = self._cache[key]

            # Check if expired
            if time.time() - entry.timestamp > entry.ttl:
                del self._cache[key]
                self._misses += 1
                logger.debug(f"Cache entry expired: {key[:16]}...")
                return None

            self._hits += 1
            logger.debug(f"Cache hit: {key[:16]}...")
            return entry.data

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        """Set value in cache with optional TTL. Last writer wins."""
        with self._lock:
            self._cache[key] = CacheEntry(
                data=value,
                timestamp=time.time(),
                ttl=ttl or self.default_ttl
            )
            logger.debug(f"Cache set: {key[:16]}... (TTL: {ttl or self.default_ttl}s)")

            self._sets_since_cleanup += 1
            if self._sets_since_cleanup >= self.cleanup_interval:
                self._cleanup_locked()

    def clear(self):
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
            logger.info("Cache cleared")

    def cleanup_expired(self):
        """Remove expired entries."""
        with self._lock:
            self._cleanup_locked()

    def _cleanup_locked(self):
        self._sets_since_cleanup = 0
        now = time.time()
        expired_keys = [
            key for key, entry in self._cache.items()
            if now - entry.timestamp > entry.ttl
        ]
        for key in expired_keys:
            del self._cache[key]

        if expired_keys:
            logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            self._cleanup_locked()
            return {
                'size': len(self._cache),
                'default_ttl': self.default_ttl,
                'hits': self._hits,
                'misses': self._misses,
            }


# Global cache instances
_analysis_cache = SimpleCache(default_ttl=900)  # compiled analysis results
_debug_cache = SimpleCache(default_ttl=900)  # debug payloads by analysis id


def get_analysis_cache() -> SimpleCache:
    """Get analysis result cache instance."""
    return _analysis_cache


def get_debug_cache() -> SimpleCache:
    """Get analysis debug cache instance."""
    return _debug_cache


def analysis_fingerprint(
    notebook_id: str,
    note_ids: Optional[List[str]],
    time_range: Optional[Dict[str, Any]],
    policy_fingerprint: str,
    mode: str,
    selected_chart_type: Optional[str] = None,
    missing_fields: Optional[List[Dict[str, Any]]] = None,
    content_digest: str = "",
) -> str:
    """
    Generate the cache key for one analysis.

    Note ids are order-insensitive; missing field declarations are
    compared by name so reordering them does not split the cache.

    Args:
        notebook_id: Notebook being analyzed
        note_ids: Explicit note selection, if any
        time_range: Time range selection, if any
        policy_fingerprint: Fingerprint of the active PolicyOverrides
        mode: 'recommend' or 'config'
        selected_chart_type: User-selected chart type (config mode)
        missing_fields: Declared missing fields (config mode)
        content_digest: Digest of the note contents in the snapshot

    Returns:
        Hex sha256 digest
    """
    key_data = {
        "notebook_id": notebook_id,
        "note_ids": sorted(note_ids) if note_ids else None,
        "time_range": time_range,
        "policy": policy_fingerprint,
        "mode": mode,
        "selected_chart_type": selected_chart_type,
        "missing_fields": sorted(missing_fields or [], key=lambda f: str(f.get("name", ""))),
        "content": content_digest,
    }
    encoded = json.dumps(key_data, sort_keys=True, default=str).encode()
    return hashlib.sha256(encoded).hexdigest()
