#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Base class for the disk-backed, size-bounded LRU cache.

Snapshot format (one JSON object, not versioned):
    {"<key>": {"value": <any JSON>, "expires": <unix epoch ms>}, ...}

Provides:
- Thread-safe in-memory map (Lock) ordered by recency (least-recent first)
- Load-once at construction; expired entries are dropped at load
- Atomic persistence (tmp file + os.replace) on a single background worker
- Entry-count ceiling (immediate LRU eviction in memory)
- On-disk byte ceiling (one LRU-fraction eviction pass after a persist)

Disk errors never escape: memory stays the source of truth until a persist succeeds.
"""

from __future__ import annotations

import json
import logging
import math
import os
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..common import DEFAULT_EVICTION_FRACTION, DEFAULT_MAX_ENTRIES, DEFAULT_MAX_SNAPSHOT_BYTES

_logger = logging.getLogger(__name__)

ENTRY_VALUE_KEY = "value"
ENTRY_EXPIRES_KEY = "expires"


def now_ms() -> int:
    return int(time.time() * 1000)


def make_entry(*, value: Any, expires: int) -> Dict[str, Any]:
    return {ENTRY_VALUE_KEY: value, ENTRY_EXPIRES_KEY: int(expires)}


def entry_expires(entry: Any) -> Optional[int]:
    """Expiry (epoch ms) of a snapshot record, or None when the record is malformed."""
    if not isinstance(entry, dict):
        return None
    v = entry.get(ENTRY_EXPIRES_KEY)
    # bool is an int subclass; a record with "expires": true is not a timestamp.
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return int(v)


@dataclass
class BaseCacheStats:
    """Cache statistics tracked automatically by BaseDiskCache."""
    hit: int = 0
    miss: int = 0
    write: int = 0
    evicted: int = 0
    persist_errors: int = 0


class BaseDiskCache:
    """Base class for thread-safe disk-backed LRU caches.

    Subclasses add the typed get/set surface; this class owns the map, the
    snapshot file and both eviction rules.
    """

    def __init__(
        self,
        *,
        cache_file: Path,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_snapshot_bytes: int = DEFAULT_MAX_SNAPSHOT_BYTES,
        eviction_fraction: float = DEFAULT_EVICTION_FRACTION,
        clock: Callable[[], int] = now_ms,
    ):
        self._mu = threading.Lock()
        self._io_mu = threading.Lock()
        self._cache_file = Path(cache_file)
        self._max_entries = max(1, int(max_entries))
        self._max_snapshot_bytes = int(max_snapshot_bytes)
        self._eviction_fraction = float(eviction_fraction)
        self._clock = clock
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._loaded = False
        self._dirty = False
        self._evicting = False
        self._closed = False
        self._initial_disk_count: Optional[int] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self.stats = BaseCacheStats()  # Track hits/misses/writes automatically

        self._load_once()

    @property
    def cache_file(self) -> Path:
        return self._cache_file

    def _now(self) -> int:
        return int(self._clock())

    # ----------------------------------------------------------------------------------
    # Load
    # ----------------------------------------------------------------------------------

    def _load_once(self) -> None:
        """Load the snapshot from disk (once per instance).

        Missing, empty, unreadable or malformed files all mean a cold start. A corrupt
        file is left in place; the next successful persist replaces it.
        """
        if self._loaded:
            return
        self._loaded = True
        self._initial_disk_count = 0

        try:
            text = self._cache_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except (OSError, UnicodeDecodeError) as e:
            _logger.warning("Cannot read cache snapshot %s (%s); starting cold", self._cache_file, e)
            return

        if not text.strip():
            return

        try:
            raw = json.loads(text)
        except ValueError as e:
            _logger.warning("Corrupt cache snapshot %s (%s); starting cold", self._cache_file, e)
            return

        if not isinstance(raw, dict):
            _logger.warning("Cache snapshot %s is not a JSON object; starting cold", self._cache_file)
            return

        now = self._now()
        loaded: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for key, record in raw.items():
            expires = entry_expires(record)
            if expires is None or expires <= now:
                continue
            loaded[str(key)] = make_entry(value=record.get(ENTRY_VALUE_KEY), expires=expires)

        # Load order becomes recency order; trim to the count ceiling from the front.
        while len(loaded) > self._max_entries:
            loaded.popitem(last=False)

        self._entries = loaded
        self._initial_disk_count = len(raw)
        _logger.debug("Loaded %d/%d cache entries from %s", len(loaded), len(raw), self._cache_file)

    # ----------------------------------------------------------------------------------
    # In-memory map (callers hold self._mu)
    # ----------------------------------------------------------------------------------

    def _check_item(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Return the live (unexpired) entry for key and track hit/miss stats.

        A hit also marks the key most-recently-used. Expiry is never extended here.
        """
        entry = self._entries.get(key)
        if entry is None:
            self.stats.miss += 1
            return None

        expires = entry_expires(entry)
        if expires is None or self._now() >= expires:
            self.stats.miss += 1
            return None

        self._entries.move_to_end(key)
        self.stats.hit += 1
        return entry

    def _set_item(self, key: str, entry: Dict[str, Any]) -> None:
        """
        Insert/overwrite an entry as most-recently-used and mark dirty.

        Enforces the entry-count ceiling immediately by dropping LRU entries.
        """
        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._dirty = True
        self.stats.write += 1

        while len(self._entries) > self._max_entries:
            old_key, _ = self._entries.popitem(last=False)
            self.stats.evicted += 1
            _logger.debug("Evicted LRU cache entry %s (max_entries=%d)", old_key, self._max_entries)

    def _evict_lru(self, count: int) -> List[str]:
        victims = list(self._entries.keys())[: max(0, int(count))]
        for key in victims:
            del self._entries[key]
        if victims:
            self._dirty = True
            self.stats.evicted += len(victims)
        return victims

    # ----------------------------------------------------------------------------------
    # Persistence
    # ----------------------------------------------------------------------------------

    def _write_snapshot(self, snapshot: Dict[str, Dict[str, Any]]) -> None:
        """Replace the snapshot file atomically (tmp file + rename)."""
        with self._io_mu:
            self._cache_file.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._cache_file.with_name(f"{self._cache_file.name}.tmp.{os.getpid()}")
            try:
                tmp.write_text(json.dumps(snapshot, separators=(",", ":")), encoding="utf-8")
                os.replace(str(tmp), str(self._cache_file))
            except (OSError, TypeError, ValueError):
                try:
                    tmp.unlink()
                except OSError:
                    pass
                raise

    def _persist(self, *, check_budget: bool = True) -> bool:
        """Write the in-memory map to disk; returns True if a snapshot was written.

        check_budget=False is used by the eviction pass for its single re-persist.
        """
        if check_budget and self._evicting:
            _logger.debug("Dropping cache persist request: eviction pass in flight")
            return False

        with self._mu:
            if not self._dirty:
                return False
            snapshot = dict(self._entries)
            self._dirty = False

        try:
            self._write_snapshot(snapshot)
        except Exception as e:
            # Any failed write leaves the changes pending for the next persist.
            with self._mu:
                self._dirty = True
                self.stats.persist_errors += 1
            if not isinstance(e, (OSError, TypeError, ValueError)):
                raise
            _logger.warning("Failed to persist cache snapshot %s: %s", self._cache_file, e)
            return False

        if check_budget:
            self.enforce_size_budget()
        return True

    def persist(self) -> bool:
        """Persist synchronously (including the size-budget check)."""
        return self._persist(check_budget=True)

    def _persist_in_background(self) -> None:
        try:
            self._persist(check_budget=True)
        except Exception:
            # Background saves must never take the worker down.
            _logger.exception("Unexpected error while persisting cache snapshot %s", self._cache_file)

    def persist_async(self) -> Optional[Future]:
        """Schedule a persist on the background worker; returns its Future (None once closed)."""
        with self._mu:
            if self._closed:
                return None
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="codeforce-cache")
            executor = self._executor
        return executor.submit(self._persist_in_background)

    def enforce_size_budget(self) -> int:
        """Run one eviction pass if the snapshot exceeds the byte ceiling.

        Drops the least-recently-used ceil(count * eviction_fraction) entries (at least
        one when any exist) and persists once more without re-checking the budget.
        Returns the number of evicted entries.
        """
        try:
            size = self._cache_file.stat().st_size
        except OSError:
            return 0
        if size <= self._max_snapshot_bytes:
            return 0

        with self._mu:
            if self._evicting:
                return 0
            self._evicting = True

        try:
            with self._mu:
                count = len(self._entries)
                # round() first: 15 * 0.2 is 3.0000000000000004 in binary floating point.
                remove_count = min(count, max(1, math.ceil(round(count * self._eviction_fraction, 9)))) if count else 0
                victims = self._evict_lru(remove_count)
            _logger.info(
                "Cache snapshot %s is %d bytes (limit %d); evicted %d of %d entries",
                self._cache_file, size, self._max_snapshot_bytes, len(victims), count,
            )
            self._persist(check_budget=False)
            return len(victims)
        finally:
            with self._mu:
                self._evicting = False

    def flush(self) -> None:
        """Wait for queued background saves, then persist any remaining changes."""
        with self._mu:
            executor = self._executor
        if executor is not None:
            executor.submit(lambda: None).result()
        self.persist()

    def close(self) -> None:
        """Flush and stop the background worker. Later writes stay memory-only."""
        self.flush()
        with self._mu:
            self._closed = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> "BaseDiskCache":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False  # Don't suppress exceptions

    # ----------------------------------------------------------------------------------
    # Introspection
    # ----------------------------------------------------------------------------------

    def __len__(self) -> int:
        with self._mu:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._mu:
            return key in self._entries

    def keys(self) -> List[str]:
        """Keys ordered least-recently-used first (does not touch recency)."""
        with self._mu:
            return list(self._entries.keys())

    def get_cache_sizes(self) -> Dict[str, int]:
        """Return entry counts (memory now vs. snapshot at start) and snapshot bytes."""
        with self._mu:
            mem_count = len(self._entries)
        try:
            disk_bytes = self._cache_file.stat().st_size
        except OSError:
            disk_bytes = 0
        return {
            "mem_count": mem_count,
            "initial_disk_count": int(self._initial_disk_count or 0),
            "disk_bytes": int(disk_bytes),
        }
