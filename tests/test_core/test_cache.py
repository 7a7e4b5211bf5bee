"""Tests for the reference feature cache."""

import threading
import time

import numpy as np
import pytest

from voicematch.core.cache import ReferenceFeatureCache, create_feature_cache
from voicematch.core.models import FeatureSequence


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _features(params_version="p1", n=5):
    return FeatureSequence(
        f0=np.full(n, 150.0),
        energy=np.full(n, 0.1),
        energy_db=np.full(n, -20.0),
        labels=np.ones(n, dtype=np.int64),
        confidence=np.ones(n),
        mfcc=np.zeros((n, 13)),
        hop_seconds=0.01,
        window_seconds=0.025,
        params_version=params_version,
    )


def _key(clip_id="clip_001", digest="abc", params_version="p1"):
    return (clip_id, digest, params_version)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestGetSet:
    def test_miss_then_hit(self):
        cache = ReferenceFeatureCache()
        assert cache.get(_key()) is None
        value = _features()
        cache.set(_key(), value)
        assert cache.get(_key()) is value
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1

    def test_params_version_must_match_key(self):
        cache = ReferenceFeatureCache()
        with pytest.raises(ValueError, match="params_version"):
            cache.set(_key(params_version="p2"), _features("p1"))

    def test_changed_content_is_different_key(self):
        cache = ReferenceFeatureCache()
        cache.set(_key(digest="old"), _features())
        assert cache.get(_key(digest="new")) is None

    def test_lru_eviction(self):
        cache = ReferenceFeatureCache(max_size=2)
        cache.set(_key("a"), _features())
        cache.set(_key("b"), _features())
        cache.get(_key("a"))
        cache.set(_key("c"), _features())
        assert _key("a") in cache
        assert _key("b") not in cache
        assert len(cache) == 2

    def test_ttl_expiry(self):
        cache = ReferenceFeatureCache(ttl=0)
        cache.set(_key(), _features())
        time.sleep(0.01)
        assert cache.get(_key()) is None
        assert cache.cleanup_expired() == 0


class TestGetOrCompute:
    def test_computes_once(self):
        cache = ReferenceFeatureCache()
        calls = []

        def compute():
            calls.append(1)
            return _features()

        first = cache.get_or_compute(_key(), compute)
        second = cache.get_or_compute(_key(), compute)
        assert first is second
        assert len(calls) == 1
        assert cache.get_stats()["computations"] == 1

    def test_concurrent_callers_share_computation(self):
        cache = ReferenceFeatureCache()
        calls = []
        started = threading.Event()
        release = threading.Event()

        def compute():
            calls.append(1)
            started.set()
            release.wait(5)
            return _features()

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(cache.get_or_compute(_key(), compute)))
            for _ in range(4)
        ]
        threads[0].start()
        started.wait(5)
        for t in threads[1:]:
            t.start()
        time.sleep(0.2)
        release.set()
        for t in threads:
            t.join(5)

        assert len(calls) == 1
        assert len(results) == 4
        assert all(r is results[0] for r in results)

    def test_failure_stores_nothing(self):
        cache = ReferenceFeatureCache()

        def compute():
            raise RuntimeError("decode failed")

        with pytest.raises(RuntimeError):
            cache.get_or_compute(_key(), compute)
        assert _key() not in cache
        assert cache.get_or_compute(_key(), _features) is not None


class TestInvalidation:
    def test_invalidate_params(self):
        cache = ReferenceFeatureCache()
        cache.set(_key("a", params_version="old"), _features("old"))
        cache.set(_key("b", params_version="old"), _features("old"))
        cache.set(_key("a", params_version="new"), _features("new"))
        assert cache.invalidate_params("old") == 2
        assert len(cache) == 1

    def test_delete_and_clear(self):
        cache = ReferenceFeatureCache()
        cache.set(_key(), _features())
        assert cache.delete(_key()) is True
        assert cache.delete(_key()) is False
        cache.set(_key(), _features())
        cache.clear()
        assert len(cache) == 0


class TestFactory:
    def test_enabled_by_default(self):
        cache = create_feature_cache({})
        assert isinstance(cache, ReferenceFeatureCache)

    def test_disabled(self):
        assert create_feature_cache({"enabled": False}) is None

    def test_settings(self):
        cache = create_feature_cache({"max_size": 3, "ttl": 10})
        assert cache.max_size == 3
        assert cache.ttl == 10
