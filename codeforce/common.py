# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Shared constants, paths and configuration for codeforce.

Everything here is environment-driven so the CLI and library callers resolve the
same cache location and cache limits without passing them around explicitly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

_logger = logging.getLogger(__name__)

N = TypeVar("N", int, float)

#
# Cache policy defaults (single source of truth)
#
DEFAULT_CACHE_FILE: str = "cache.json"
# ^ Snapshot file name inside the cache directory.
DEFAULT_TTL_MS: int = 3600 * 1000
# ^ Validity window of a cached response.
#   Example: a project's merge request list fetched at 10:00 is served from cache until 11:00.
DEFAULT_MAX_ENTRIES: int = 500
# ^ In-memory entry ceiling. Inserting entry #501 drops the least-recently-used one.
DEFAULT_MAX_SNAPSHOT_BYTES: int = 100 * 1024 * 1024
# ^ On-disk ceiling for cache.json. Above it, one eviction pass drops the LRU fraction below.
DEFAULT_EVICTION_FRACTION: float = 0.20
# ^ Share of entries (rounded up, at least 1) dropped by one size-budget eviction pass.

DEFAULT_GITLAB_BASE_URL: str = "https://gitlab.com/api/v4"


# ======================================================================================
# Cache location policy
#
# The persistent response cache lives under:
#   - $CODEFORCE_CACHE_DIR   (explicit override), else
#   - $CACHE_DIR             (legacy name used by older deployments), else
#   - ~/.cache/codeforce     (default)
# ======================================================================================

def codeforce_cache_dir() -> Path:
    """Return the cache directory for codeforce."""
    for var in ("CODEFORCE_CACHE_DIR", "CACHE_DIR"):
        override = os.environ.get(var)
        if override:
            return Path(override).expanduser()

    return Path.home() / ".cache" / "codeforce"


def resolve_cache_path(cache_file: Optional[str] = None) -> Path:
    """Resolve a cache file path into the codeforce cache directory.

    - Absolute paths are used as-is.
    - Relative paths are rooted under `codeforce_cache_dir()`.
    - None means the default snapshot file (`cache.json`).
    """
    p = Path(cache_file or DEFAULT_CACHE_FILE).expanduser()
    if p.is_absolute():
        return p

    # Normalize any leading "./"
    rel = Path(*p.parts[1:]) if p.parts[:1] == (".",) else p
    return codeforce_cache_dir() / rel


def _env_number(name: str, default: N, cast: Callable[[str], N], valid: Callable[[N], bool]) -> N:
    """Parse a numeric env var; unparsable or out-of-range values fall back to default."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        value = None
    # NaN fails every comparison, so it lands here too.
    if value is None or not valid(value):
        _logger.warning("Ignoring invalid %s=%r (using %r)", name, raw, default)
        return default
    return value


def _valid_ttl_ms(v: int) -> bool:
    return v >= 0


def _valid_max_entries(v: int) -> bool:
    return v >= 1


def _valid_max_snapshot_bytes(v: int) -> bool:
    return v >= 0


def _valid_eviction_fraction(v: float) -> bool:
    return 0.0 < v <= 1.0


@dataclass(frozen=True)
class CacheConfig:
    """Tunables for the persistent response cache."""

    ttl_ms: int = DEFAULT_TTL_MS
    max_entries: int = DEFAULT_MAX_ENTRIES
    max_snapshot_bytes: int = DEFAULT_MAX_SNAPSHOT_BYTES
    eviction_fraction: float = DEFAULT_EVICTION_FRACTION

    def __post_init__(self) -> None:
        if not _valid_ttl_ms(self.ttl_ms):
            raise ValueError(f"ttl_ms must be >= 0, got {self.ttl_ms}")
        if not _valid_max_entries(self.max_entries):
            raise ValueError(f"max_entries must be >= 1, got {self.max_entries}")
        if not _valid_max_snapshot_bytes(self.max_snapshot_bytes):
            raise ValueError(f"max_snapshot_bytes must be >= 0, got {self.max_snapshot_bytes}")
        if not _valid_eviction_fraction(self.eviction_fraction):
            raise ValueError(f"eviction_fraction must be in (0, 1], got {self.eviction_fraction}")

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Build a config from CODEFORCE_CACHE_* environment variables (defaults otherwise)."""
        return cls(
            ttl_ms=_env_number("CODEFORCE_CACHE_TTL_MS", DEFAULT_TTL_MS, int, _valid_ttl_ms),
            max_entries=_env_number("CODEFORCE_CACHE_MAX_ENTRIES", DEFAULT_MAX_ENTRIES, int, _valid_max_entries),
            max_snapshot_bytes=_env_number(
                "CODEFORCE_CACHE_MAX_BYTES", DEFAULT_MAX_SNAPSHOT_BYTES, int, _valid_max_snapshot_bytes
            ),
            eviction_fraction=_env_number(
                "CODEFORCE_CACHE_EVICTION_FRACTION", DEFAULT_EVICTION_FRACTION, float, _valid_eviction_fraction
            ),
        )
