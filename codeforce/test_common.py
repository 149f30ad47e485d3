"""
Pytest tests for cache location and cache settings (codeforce/common.py).
"""

from pathlib import Path

import pytest

from codeforce.common import CacheConfig, codeforce_cache_dir, resolve_cache_path


def test_cache_dir_precedence(monkeypatch, tmp_path):
    monkeypatch.delenv("CODEFORCE_CACHE_DIR", raising=False)
    monkeypatch.delenv("CACHE_DIR", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert codeforce_cache_dir() == tmp_path / ".cache" / "codeforce"

    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "legacy"))
    assert codeforce_cache_dir() == tmp_path / "legacy"

    monkeypatch.setenv("CODEFORCE_CACHE_DIR", str(tmp_path / "new"))
    assert codeforce_cache_dir() == tmp_path / "new"


def test_resolve_cache_path(monkeypatch, tmp_path):
    monkeypatch.setenv("CODEFORCE_CACHE_DIR", str(tmp_path))
    assert resolve_cache_path() == tmp_path / "cache.json"
    assert resolve_cache_path("./other.json") == tmp_path / "other.json"
    assert resolve_cache_path("/abs/cache.json") == Path("/abs/cache.json")


@pytest.mark.parametrize("kwargs", [
    {"ttl_ms": -1},
    {"max_entries": 0},
    {"max_snapshot_bytes": -5},
    {"eviction_fraction": 0.0},
    {"eviction_fraction": 1.5},
])
def test_cache_config_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        CacheConfig(**kwargs)


def test_cache_config_from_env(monkeypatch):
    monkeypatch.setenv("CODEFORCE_CACHE_TTL_MS", "60000")
    monkeypatch.setenv("CODEFORCE_CACHE_MAX_BYTES", "2048")
    monkeypatch.setenv("CODEFORCE_CACHE_EVICTION_FRACTION", "0.5")
    monkeypatch.setenv("CODEFORCE_CACHE_MAX_ENTRIES", "")

    cfg = CacheConfig.from_env()
    assert cfg == CacheConfig(ttl_ms=60000, max_entries=500, max_snapshot_bytes=2048, eviction_fraction=0.5)


@pytest.mark.parametrize("name,raw,field", [
    ("CODEFORCE_CACHE_MAX_ENTRIES", "0", "max_entries"),
    ("CODEFORCE_CACHE_MAX_ENTRIES", "-3", "max_entries"),
    ("CODEFORCE_CACHE_TTL_MS", "-1", "ttl_ms"),
    ("CODEFORCE_CACHE_MAX_BYTES", "-1", "max_snapshot_bytes"),
    ("CODEFORCE_CACHE_EVICTION_FRACTION", "nan", "eviction_fraction"),
    ("CODEFORCE_CACHE_EVICTION_FRACTION", "0", "eviction_fraction"),
    ("CODEFORCE_CACHE_EVICTION_FRACTION", "1.5", "eviction_fraction"),
    ("CODEFORCE_CACHE_TTL_MS", "soon", "ttl_ms"),
])
def test_cache_config_from_env_out_of_range_falls_back(monkeypatch, caplog, name, raw, field):
    monkeypatch.setenv(name, raw)

    cfg = CacheConfig.from_env()

    assert getattr(cfg, field) == getattr(CacheConfig(), field)
    assert name in caplog.text


def test_response_cache_from_env_survives_out_of_range_env(monkeypatch, tmp_path):
    from codeforce.cache.cache_responses import ResponseCache

    monkeypatch.setenv("CODEFORCE_CACHE_DIR", str(tmp_path))
    monkeypatch.setenv("CODEFORCE_CACHE_MAX_ENTRIES", "0")
    cache = ResponseCache.from_env()
    assert cache.config.max_entries == 500
    cache.close()
