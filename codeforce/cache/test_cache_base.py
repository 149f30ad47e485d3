"""
Pytest tests for the disk-backed LRU store (codeforce/cache/cache_base.py).

Run from the repo root:
    pytest codeforce/cache/test_cache_base.py -v
"""

import json
import math

import pytest

from codeforce.cache.cache_base import BaseDiskCache, make_entry
from codeforce.cache.cache_responses import ResponseCache
from codeforce.common import CacheConfig


class _Clock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now


def _write_snapshot(path, data) -> None:
    path.write_text(json.dumps(data))


# ============================================================================
# load()
# ============================================================================

def test_missing_snapshot_is_empty_cache(tmp_path):
    store = BaseDiskCache(cache_file=tmp_path / "cache.json")
    assert len(store) == 0
    assert store.get_cache_sizes()["initial_disk_count"] == 0


def test_empty_snapshot_is_empty_cache(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("")
    store = BaseDiskCache(cache_file=path)
    assert len(store) == 0


def test_corrupt_snapshot_starts_cold_and_is_left_on_disk(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("{not json")
    store = ResponseCache(cache_file=path)

    assert len(store) == 0
    assert path.read_text() == "{not json"

    # The next successful persist supersedes the corrupt content.
    store.set("k", [1, 2])
    store.flush()
    assert json.loads(path.read_text())["k"]["value"] == [1, 2]
    store.close()


def test_non_object_snapshot_starts_cold(tmp_path):
    path = tmp_path / "cache.json"
    _write_snapshot(path, [1, 2, 3])
    assert len(BaseDiskCache(cache_file=path)) == 0


def test_load_drops_expired_and_malformed_entries(tmp_path):
    clock = _Clock()
    path = tmp_path / "cache.json"
    _write_snapshot(path, {
        "fresh": {"value": {"a": 1}, "expires": clock.now + 1000, "extra": "ignored"},
        "expired": {"value": 1, "expires": clock.now - 1},
        "expires-now": {"value": 1, "expires": clock.now},
        "no-expiry": {"value": 1},
        "bool-expiry": {"value": 1, "expires": True},
        "not-a-record": "hello",
    })

    store = ResponseCache(cache_file=path, clock=clock)

    assert store.keys() == ["fresh"]
    assert store.get("fresh") == {"a": 1}
    assert store.get_cache_sizes()["initial_disk_count"] == 6
    store.close()


def test_load_keeps_file_order_as_recency(tmp_path):
    clock = _Clock()
    path = tmp_path / "cache.json"
    far = clock.now + 60_000
    _write_snapshot(path, {k: {"value": k, "expires": far} for k in ["a", "b", "c"]})

    store = BaseDiskCache(cache_file=path, max_entries=2, clock=clock)

    # Over the count ceiling at load: the least-recent (first) record goes.
    assert store.keys() == ["b", "c"]


def test_unreadable_snapshot_starts_cold(tmp_path):
    # A directory where the file should be: read_text() raises IsADirectoryError (OSError).
    path = tmp_path / "cache.json"
    path.mkdir()
    store = BaseDiskCache(cache_file=path)
    assert len(store) == 0


# ============================================================================
# persist()
# ============================================================================

def test_persist_writes_value_and_expires_records(tmp_path):
    clock = _Clock()
    path = tmp_path / "cache.json"
    store = ResponseCache(cache_file=path, config=CacheConfig(ttl_ms=5000), clock=clock)
    store.set("/projects?membership=true", [{"id": 1}])
    store.flush()

    data = json.loads(path.read_text())
    assert data == {"/projects?membership=true": {"value": [{"id": 1}], "expires": clock.now + 5000}}
    store.close()


def test_persist_is_noop_when_clean(tmp_path):
    store = BaseDiskCache(cache_file=tmp_path / "cache.json")
    assert store.persist() is False
    assert not (tmp_path / "cache.json").exists()


def test_persist_leaves_no_tmp_files(tmp_path):
    store = ResponseCache(cache_file=tmp_path / "cache.json")
    for i in range(5):
        store.set(f"k{i}", i)
    store.close()
    assert sorted(p.name for p in tmp_path.iterdir()) == ["cache.json"]


def test_persisting_same_state_twice_reloads_equivalently(tmp_path):
    clock = _Clock()
    path = tmp_path / "cache.json"
    store = ResponseCache(cache_file=path, config=CacheConfig(ttl_ms=10_000), clock=clock)
    store.set("a", {"x": 1})
    store.set("b", [1, 2, 3])
    store.flush()
    first = path.read_text()

    with store._mu:
        store._dirty = True
    store.flush()
    assert path.read_text() == first
    store.close()

    reloaded = ResponseCache(cache_file=path, clock=clock)
    assert reloaded.keys() == ["a", "b"]
    assert reloaded.get("a") == {"x": 1}
    assert reloaded.get("b") == [1, 2, 3]
    reloaded.close()


def test_persist_failure_keeps_memory_authoritative(tmp_path, monkeypatch, caplog):
    store = ResponseCache(cache_file=tmp_path / "cache.json")

    def _boom(snapshot):
        raise OSError("disk full")

    monkeypatch.setattr(store, "_write_snapshot", _boom)
    store.set("k", {"v": 1})
    store.flush()

    assert store.get("k") == {"v": 1}
    assert store.stats.persist_errors >= 1
    assert "disk full" in caplog.text

    # Once the disk recovers, the next persist writes the pending state.
    monkeypatch.undo()
    assert store.persist() is True
    assert json.loads((tmp_path / "cache.json").read_text())["k"]["value"] == {"v": 1}
    store.close()


def test_close_flushes_and_later_sets_stay_in_memory(tmp_path):
    path = tmp_path / "cache.json"
    with ResponseCache(cache_file=path) as store:
        store.set("a", 1)
    assert "a" in json.loads(path.read_text())

    assert store.persist_async() is None
    store.set("b", 2)
    assert store.get("b") == 2


# ============================================================================
# Entry-count ceiling
# ============================================================================

def test_count_ceiling_evicts_least_recently_used(tmp_path):
    store = ResponseCache(cache_file=tmp_path / "cache.json", config=CacheConfig(max_entries=500))
    for i in range(501):
        store.set(f"key-{i}", i)

    assert len(store) == 500
    assert store.get("key-0") is None
    assert store.get("key-1") == 1
    assert store.get("key-500") == 500
    assert store.stats.evicted == 1
    store.close()


def test_read_refreshes_recency(tmp_path):
    store = ResponseCache(cache_file=tmp_path / "cache.json", config=CacheConfig(max_entries=3))
    for k in ["a", "b", "c"]:
        store.set(k, k)
    assert store.get("a") == "a"  # "b" is now least recent
    store.set("d", "d")

    assert store.keys() == ["c", "a", "d"]
    store.close()


# ============================================================================
# enforce_size_budget()
# ============================================================================

def _filled_store(tmp_path, n: int, max_bytes: int) -> ResponseCache:
    store = ResponseCache(
        cache_file=tmp_path / "cache.json",
        config=CacheConfig(max_snapshot_bytes=max_bytes),
    )
    with store._mu:
        for i in range(n):
            store._set_item(f"key-{i:02d}", make_entry(value="x" * 100, expires=store._now() + 60_000))
    return store


def test_size_budget_evicts_lru_fraction_and_shrinks_snapshot(tmp_path):
    store = _filled_store(tmp_path, n=10, max_bytes=10 * 1024 * 1024)
    store.persist()
    size_before = store.cache_file.stat().st_size

    store._max_snapshot_bytes = size_before - 1
    evicted = store.enforce_size_budget()

    assert 1 <= evicted <= math.ceil(10 * 0.2)
    assert evicted == 2
    assert store.keys()[0] == "key-02"
    assert "key-00" not in store and "key-01" not in store
    assert store.cache_file.stat().st_size < size_before
    assert set(json.loads(store.cache_file.read_text())) == set(store.keys())
    store.close()


def test_size_budget_is_single_pass(tmp_path):
    # Budget so small that even after one pass the snapshot is still too big.
    store = _filled_store(tmp_path, n=10, max_bytes=1)
    store.persist()

    # persist() ran exactly one eviction pass: 10 -> 8, not a loop down to 0.
    assert len(store) == 8
    store.close()


def test_size_budget_removes_at_least_one_entry(tmp_path):
    store = _filled_store(tmp_path, n=1, max_bytes=1)
    store.persist()
    assert len(store) == 0
    store.close()


def test_size_budget_noop_under_limit(tmp_path):
    store = _filled_store(tmp_path, n=3, max_bytes=10 * 1024 * 1024)
    store.persist()
    assert store.enforce_size_budget() == 0
    assert len(store) == 3
    store.close()


def test_persist_dropped_while_eviction_in_flight(tmp_path):
    store = _filled_store(tmp_path, n=3, max_bytes=10 * 1024 * 1024)
    store._evicting = True
    try:
        assert store.persist() is False
        assert not store.cache_file.exists()
        assert store.enforce_size_budget() == 0
    finally:
        store._evicting = False
    assert store.persist() is True
    store.close()


@pytest.mark.parametrize("fraction,n,expected", [(0.2, 10, 2), (0.2, 11, 3), (0.2, 3, 1), (0.5, 5, 3), (1.0, 4, 4)])
def test_eviction_count_rounds_up(tmp_path, fraction, n, expected):
    store = ResponseCache(
        cache_file=tmp_path / "cache.json",
        config=CacheConfig(max_snapshot_bytes=1, eviction_fraction=fraction),
    )
    with store._mu:
        for i in range(n):
            store._set_item(f"k{i}", make_entry(value=i, expires=store._now() + 60_000))
    store._write_snapshot(dict(store._entries))

    assert store.enforce_size_budget() == expected
    assert len(store) == n - expected
    store.close()


def test_unexpected_persist_error_keeps_changes_pending(tmp_path, monkeypatch):
    store = ResponseCache(cache_file=tmp_path / "cache.json")
    store.flush()

    def _boom(snapshot):
        raise RuntimeError("dictionary changed size during iteration")

    monkeypatch.setattr(store, "_write_snapshot", _boom)
    with store._mu:
        store._set_item("k", make_entry(value=[1], expires=store._now() + 60_000))
    with pytest.raises(RuntimeError):
        store.persist()
    assert store.stats.persist_errors == 1

    monkeypatch.undo()
    assert store.persist() is True
    assert json.loads(store.cache_file.read_text())["k"]["value"] == [1]
    store.close()
