"""
Reference feature cache for the VoiceMatch analysis service.

Keeps extracted reference FeatureSequences in memory so repeated
attempts against the same clip skip decoding and extraction.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

from voicematch.core.models import FeatureSequence

# (clip_id, reference content hash, params_version)
CacheKey = Tuple[str, str, str]


class ReferenceFeatureCache:
    """
    Thread-safe in-memory LRU cache of reference features.

    Features:
    - LRU (Least Recently Used) eviction
    - Time-to-live (TTL) expiration
    - At most one computation per key (per-key lock)
    - Keys include the extractor params_version, so a parameter change
      never serves stale features
    """

    def __init__(
        self,
        max_size: int = 256,
        ttl: int = 3600
    ):
        """
        Initialize cache.

        Args:
            max_size: Maximum number of cached sequences
            ttl: Time to live in seconds (default 1 hour)
        """
        self.max_size = max_size
        self.ttl = ttl
        self._cache: "OrderedDict[CacheKey, Tuple[FeatureSequence, float]]" = OrderedDict()
        self._lock = threading.RLock()
        self._key_locks: Dict[CacheKey, threading.Lock] = {}
        self.logger = logging.getLogger("cache")

        # Statistics
        self._hits = 0
        self._misses = 0
        self._computations = 0

    def get(self, key: CacheKey) -> Optional[FeatureSequence]:
        """
        Get cached features by key.

        Returns:
            FeatureSequence if found and not expired, None otherwise
        """
        with self._lock:
            if key not in self._cache:
                self._misses += 1
                return None

            value, timestamp = self._cache[key]

            if time.time() - timestamp > self.ttl:
                del self._cache[key]
                self._misses += 1
                self.logger.debug(f"Cache expired: {key[0]}")
                return None

            # Move to end (most recently used)
            self._cache.move_to_end(key)
            self._hits += 1
            self.logger.debug(f"Cache hit: {key[0]}")
            return value

    def set(self, key: CacheKey, value: FeatureSequence) -> None:
        if value.params_version != key[2]:
            raise ValueError("Cached features must match the key's params_version")

        with self._lock:
            if key in self._cache:
                del self._cache[key]

            while len(self._cache) >= self.max_size:
                oldest_key = next(iter(self._cache))
                del self._cache[oldest_key]
                self.logger.debug(f"Evicted: {oldest_key[0]}")

            self._cache[key] = (value, time.time())
            self.logger.debug(f"Cached: {key[0]}")

    def get_or_compute(
        self, key: CacheKey, compute: Callable[[], FeatureSequence]
    ) -> FeatureSequence:
        """
        Return cached features or compute and store them.

        Concurrent callers for the same key wait for the first computation
        instead of repeating it. A failing computation stores nothing and
        propagates its exception.
        """
        value = self.get(key)
        if value is not None:
            return value

        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        try:
            with key_lock:
                # Another thread may have filled the entry while we waited
                with self._lock:
                    entry = self._cache.get(key)
                    if entry is not None and time.time() - entry[1] <= self.ttl:
                        self._cache.move_to_end(key)
                        self._hits += 1
                        return entry[0]

                value = compute()
                with self._lock:
                    self._computations += 1
                self.set(key, value)
        finally:
            with self._lock:
                if self._key_locks.get(key) is key_lock and not key_lock.locked():
                    del self._key_locks[key]
        return value

    def invalidate_params(self, params_version: str) -> int:
        """
        Drop every entry extracted with ``params_version``.

        Returns:
            Number of entries removed
        """
        with self._lock:
            stale = [key for key in self._cache if key[2] == params_version]
            for key in stale:
                del self._cache[key]

        if stale:
            self.logger.info(f"Invalidated {len(stale)} entries for params {params_version}")
        return len(stale)

    def delete(self, key: CacheKey) -> bool:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    def clear(self) -> None:
        """Clear all cached items."""
        with self._lock:
            self._cache.clear()
            self.logger.info("Cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with hits, misses, computations, size and hit ratio
        """
        with self._lock:
            total = self._hits + self._misses
            hit_ratio = self._hits / total if total > 0 else 0.0

            return {
                'hits': self._hits,
                'misses': self._misses,
                'computations': self._computations,
                'size': len(self._cache),
                'max_size': self.max_size,
                'hit_ratio': hit_ratio,
                'ttl': self.ttl
            }

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        current_time = time.time()

        with self._lock:
            expired = [
                key for key, (_, timestamp) in self._cache.items()
                if current_time - timestamp > self.ttl
            ]
            for key in expired:
                del self._cache[key]

        if expired:
            self.logger.info(f"Cleaned up {len(expired)} expired entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: CacheKey) -> bool:
        """Check if key is cached (doesn't update LRU order)."""
        with self._lock:
            if key not in self._cache:
                return False
            _, timestamp = self._cache[key]
            return time.time() - timestamp <= self.ttl


def create_feature_cache(config: Optional[Dict[str, Any]] = None) -> Optional[ReferenceFeatureCache]:
    """
    Factory function to create ReferenceFeatureCache from the ``cache`` config section.

    Returns:
        ReferenceFeatureCache, or None when caching is disabled
    """
    if config is None:
        config = {}

    if not config.get('enabled', True):
        return None

    return ReferenceFeatureCache(
        max_size=config.get('max_size', 256),
        ttl=config.get('ttl', 3600)
    )
