#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
GitLab Response Cache

Caches upstream GitLab API responses (single objects and fully concatenated
paginated listings) for a fixed TTL.

Cache file: ~/.cache/codeforce/cache.json (see codeforce.common.resolve_cache_path)

Cache key format:
- The un-paginated request path + query, e.g. "/projects/42/merge_requests?state=merged"

TTL:
- Fixed per instance (default 1h). Staleness is decided by the entry's absolute
  expiry, never by its LRU position, and reads do not extend it.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from ..common import CacheConfig, resolve_cache_path
from .cache_base import ENTRY_VALUE_KEY, BaseDiskCache, make_entry, now_ms

T = TypeVar("T")


@dataclass(frozen=True)
class CacheLookupResult(Generic[T]):
    """Normalized lookup result: `entry` is None when the key is absent or expired."""

    entry: Optional[Dict[str, Any]]
    is_fresh: bool

    @property
    def value(self) -> Optional[T]:
        if self.entry is None:
            return None
        return self.entry.get(ENTRY_VALUE_KEY)


_ABSENT = CacheLookupResult(entry=None, is_fresh=False)


class ResponseCache(BaseDiskCache):
    """Typed get/set facade used by every cached GitLab resource.

    Stats (hit/miss/write/evicted) are tracked automatically by BaseDiskCache.
    """

    def __init__(
        self,
        *,
        cache_file: Optional[Path] = None,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], int] = now_ms,
    ):
        cfg = config or CacheConfig()
        super().__init__(
            cache_file=Path(cache_file) if cache_file is not None else resolve_cache_path(None),
            max_entries=cfg.max_entries,
            max_snapshot_bytes=cfg.max_snapshot_bytes,
            eviction_fraction=cfg.eviction_fraction,
            clock=clock,
        )
        self.config = cfg
        self.ttl_ms = int(cfg.ttl_ms)

    @classmethod
    def from_env(cls, cache_file: Optional[str] = None) -> "ResponseCache":
        """Cache at resolve_cache_path(cache_file) configured from CODEFORCE_CACHE_* variables."""
        return cls(cache_file=resolve_cache_path(cache_file), config=CacheConfig.from_env())

    def lookup(self, key: str) -> CacheLookupResult[Any]:
        """Fresh entry for key; the value is a private copy the caller may mutate."""
        with self._mu:
            entry = self._check_item(str(key))
            if entry is None:
                return _ABSENT
            entry = copy.deepcopy(entry)
        return CacheLookupResult(entry=entry, is_fresh=True)

    def get(self, key: str, default: Optional[Any] = None) -> Optional[Any]:
        """
        Return the cached value for key, or `default` when absent or expired.

        Note: an empty list is a real cached value, not an absence.
        """
        result = self.lookup(key)
        if not result.is_fresh:
            return default
        return result.value

    def set(self, key: str, value: Any) -> None:
        """
        Record value in memory with expiry now + ttl, then persist in the background.

        Returns as soon as memory is updated; persistence failures are only logged.
        The cache keeps its own copy, so later changes to value are not recorded.
        """
        entry = make_entry(value=copy.deepcopy(value), expires=self._now() + self.ttl_ms)
        with self._mu:
            self._set_item(str(key), entry)
        self.persist_async()
