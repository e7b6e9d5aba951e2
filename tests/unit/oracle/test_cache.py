"""Unit tests for the analysis cache."""

from __future__ import annotations

from pathlib import Path

from spec_reconciler.oracle.cache import AnalysisCache


def test_memory_cache_tracks_hits_and_misses() -> None:
    cache = AnalysisCache()
    key = AnalysisCache.make_key("node", "hash-1")

    assert cache.get(key) is None
    cache.put(key, {"verdict": "ok"})
    assert cache.get(key) == {"verdict": "ok"}
    assert key in cache
    assert (cache.stats.hits, cache.stats.misses, cache.stats.stores) == (1, 1, 1)


def test_keys_are_order_sensitive_and_stable() -> None:
    assert AnalysisCache.make_key("a", "b") == AnalysisCache.make_key("a", "b")
    assert AnalysisCache.make_key("a", "b") != AnalysisCache.make_key("b", "a")


def test_persisted_entries_survive_a_new_instance(tmp_path: Path) -> None:
    key = AnalysisCache.make_key("x")
    AnalysisCache(tmp_path).put(key, {"links": []})

    reloaded = AnalysisCache(tmp_path)
    assert reloaded.get(key) == {"links": []}


def test_clear_removes_files(tmp_path: Path) -> None:
    cache = AnalysisCache(tmp_path, namespace="trace")
    cache.put("k1", 1)
    cache.put("k2", 2)

    cache.clear()
    assert len(cache) == 0
    assert list((tmp_path / "trace").glob("*.json")) == []


def test_corrupt_file_is_a_miss(tmp_path: Path) -> None:
    cache = AnalysisCache(tmp_path)
    cache.put("k", {"v": 1})
    for path in (tmp_path / "analysis").glob("*.json"):
        path.write_text("{not json", encoding="utf-8")

    assert AnalysisCache(tmp_path).get("k") is None
