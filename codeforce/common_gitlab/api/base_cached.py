# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Base class for cached GitLab API resources.

Every resource follows the same cache-aside flow against the shared ResponseCache:
    lookup -> (hit: return) -> in-flight lock -> re-check -> fetch -> write-through

Subclasses define the cache key format, the API call "display format" and the
actual fetch. Nothing is written when fetch() raises.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar, TYPE_CHECKING

from ...cache.cache_responses import CacheLookupResult, ResponseCache

if TYPE_CHECKING:  # pragma: no cover
    from .. import GitLabAPIClient

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class CachedResourceBase(ABC, Generic[T]):
    """Shared get() flow: cache lookup -> optional fetch -> cache write."""

    def __init__(self, api: "GitLabAPIClient", cache: ResponseCache):
        self.api = api
        self.cache = cache

    @property
    @abstractmethod
    def cache_name(self) -> str:
        """Short name used for stats keys (e.g. 'paginated_list')."""

    @abstractmethod
    def api_call_format(self) -> str:
        """Human-readable description of the API call(s) this resource performs."""

    @abstractmethod
    def cache_key(self, **kwargs: Any) -> str:
        """Return a stable cache key for this resource."""

    @abstractmethod
    def fetch(self, **kwargs: Any) -> T:
        """Perform the upstream call(s); raise GitLabAPIError on failure."""

    def cache_read(self, *, key: str) -> CacheLookupResult[T]:
        return self.cache.lookup(key)

    def cache_write(self, *, key: str, value: T) -> None:
        self.cache.set(key, value)
        self.api._cache_write(self.cache_name, entries=1)

    def _fresh_value(self, key: str) -> Optional[CacheLookupResult[T]]:
        hit = self.cache_read(key=key)
        if hit.is_fresh:
            self.api._cache_hit(self.cache_name)
            _logger.debug("%s cache hit: %s", self.cache_name, key)
            return hit
        return None

    def get(self, *, force_refresh: bool = False, **kwargs: Any) -> T:
        key = self.cache_key(**kwargs)

        if not force_refresh:
            hit = self._fresh_value(key)
            if hit is not None:
                return hit.value  # type: ignore[return-value]
            self.api._cache_miss(self.cache_name)
            _logger.debug("%s cache miss: %s", self.cache_name, key)

        # Collapse concurrent misses for the same key into one upstream fetch.
        with self.api._inflight_lock(key):
            if not force_refresh:
                hit = self._fresh_value(key)
                if hit is not None:
                    return hit.value  # type: ignore[return-value]
            val = self.fetch(**kwargs)
            self.cache_write(key=key, value=val)
            return val
