# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""GitLab API client and cached API resources for codeforce.

- `common_gitlab/` defines the API client (transport, errors, REST/cache stats)
- `common_gitlab/api/*_cached.py` contains the cache-aside fetch logic

All reads go through one injected ResponseCache:
- `fetch_all(base_query)` walks every page of a listing (cached as one list)
- `fetch_one(key)` fetches one object
"""

from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote, urlencode

import requests

from ..cache.cache_responses import ResponseCache
from ..common import DEFAULT_GITLAB_BASE_URL
from .api.paginated_list_cached import PaginatedListCached
from .api.single_object_cached import SingleObjectCached
from .exceptions import (
    GitLabAPIError,
    GitLabAuthError,
    GitLabForbiddenError,
    GitLabNotFoundError,
    GitLabRequestError,
    error_for_status,
)

_logger = logging.getLogger(__name__)

MR_STATES = ("opened", "merged", "closed", "locked", "all")
MR_SCOPES = ("all", "created_by_me", "assigned_to_me")


def _project_selector(project_id: Any) -> str:
    """GitLab expects /projects/:id with a numeric ID or a URL-encoded path ("group%2Frepo")."""
    return quote(str(project_id), safe="")


class _InflightSlot:
    """Per-key fetch lock plus the number of threads holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


def contributed_projects_from_events(events: List[Any]) -> List[Dict[str, Any]]:
    """Unique projects referenced by events, in first-seen order.

    Events only carry a project_id (sometimes an embedded project); missing names
    fall back to "Project <id>" rather than fetching every project.
    """
    contributed: Dict[str, Dict[str, Any]] = {}
    for event in events or []:
        if not isinstance(event, dict):
            continue
        project_id: Optional[str] = None
        name: Optional[str] = None
        web_url: Optional[str] = None
        if event.get("project_id") is not None:
            project_id = str(event["project_id"])
        project = event.get("project")
        if isinstance(project, dict) and project.get("id") is not None:
            project_id = str(project["id"])
            name = project.get("name")
            web_url = project.get("web_url")
        if project_id and project_id not in contributed:
            contributed[project_id] = {
                "id": project_id,
                "name": name or f"Project {project_id}",
                "web_url": web_url or "",
            }
    return list(contributed.values())


def _with_query(path: str, params: Dict[str, Any]) -> str:
    """Append non-empty params to path in the given order (stable cache keys)."""
    kept = [(k, v) for k, v in params.items() if v is not None and v != ""]
    if not kept:
        return path
    return f"{path}?{urlencode(kept)}"


class GitLabAPIClient:
    """GitLab REST API client (transport + cached resources over one ResponseCache)."""

    @staticmethod
    def get_gitlab_token_from_file() -> Optional[str]:
        """Get GitLab token from `~/.config/gitlab-token` (best-effort)."""
        try:
            token_file = Path.home() / ".config" / "gitlab-token"
            if token_file.exists():
                return token_file.read_text().strip() or None
        except OSError:
            pass
        return None

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        cache: Optional[ResponseCache] = None,
    ):
        # Token priority: 1) provided token, 2) GITLAB_TOKEN / GITLAB_PAT, 3) config file
        self.token = (
            token
            or os.environ.get("GITLAB_TOKEN")
            or os.environ.get("GITLAB_PAT")
            or self.get_gitlab_token_from_file()
        )
        self.base_url = str(base_url or os.environ.get("GITLAB_BASE_URL") or DEFAULT_GITLAB_BASE_URL).rstrip("/")
        self.headers: Dict[str, str] = {}
        if self.token:
            self.headers["PRIVATE-TOKEN"] = self.token

        self.cache = cache if cache is not None else ResponseCache.from_env()
        self._paginated = PaginatedListCached(self, self.cache)
        self._single = SingleObjectCached(self, self.cache)

        # Per-run REST stats (label-based).
        self._stats_mu = threading.Lock()
        self._rest_calls_total: int = 0
        self._rest_calls_by_label: Dict[str, int] = {}
        self._rest_success_total: int = 0
        self._rest_errors_total: int = 0
        self._rest_time_total_s: float = 0.0
        self._rest_time_by_label_s: Dict[str, float] = {}
        self._rest_errors_by_status: Dict[int, int] = {}
        self.rest_last_error: Dict[str, Any] = {}

        # Per-run cache stats (operations-level, by resource name).
        self._cache_hits: Dict[str, int] = {}
        self._cache_misses: Dict[str, int] = {}
        self._cache_writes_ops: Dict[str, int] = {}
        self._cache_writes_entries: Dict[str, int] = {}

        # Inflight request deduplication.
        self._inflight_locks_mu = threading.Lock()
        self._inflight_locks: Dict[str, _InflightSlot] = {}

    def has_token(self) -> bool:
        return self.token is not None

    def close(self) -> None:
        """Flush and close the response cache."""
        self.cache.close()

    @contextmanager
    def _inflight_lock(self, key: str) -> Iterator[None]:
        """Hold the per-key lock that dedupes concurrent network fetches across threads.

        The lock is dropped from the registry once its last holder or waiter leaves.
        """
        k = str(key or "") or "__default__"
        with self._inflight_locks_mu:
            slot = self._inflight_locks.get(k)
            if slot is None:
                slot = _InflightSlot()
                self._inflight_locks[k] = slot
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._inflight_locks_mu:
                slot.users -= 1
                if slot.users == 0:
                    self._inflight_locks.pop(k, None)

    def _url(self, endpoint: str) -> str:
        ep = str(endpoint or "")
        if ep.startswith(("http://", "https://")):
            # Pagination "next" links are absolute and already carry every parameter.
            return ep
        return f"{self.base_url}{ep}" if ep.startswith("/") else f"{self.base_url}/{ep}"

    def _rest_record(self, *, label: str, endpoint: str, status_code: Optional[int], dt_s: float) -> None:
        """Record one REST call in the per-run stats."""
        lbl = str(label or "").strip() or "unknown"
        dt = max(0.0, float(dt_s or 0.0))

        with self._stats_mu:
            self._rest_calls_total += 1
            self._rest_calls_by_label[lbl] = self._rest_calls_by_label.get(lbl, 0) + 1
            self._rest_time_total_s += dt
            self._rest_time_by_label_s[lbl] = self._rest_time_by_label_s.get(lbl, 0.0) + dt

            if status_code is None:
                return
            sc = int(status_code)
            if 200 <= sc < 300:
                self._rest_success_total += 1
            elif sc >= 400 or sc == 0:
                self._rest_errors_total += 1
                self._rest_errors_by_status[sc] = self._rest_errors_by_status.get(sc, 0) + 1
                self.rest_last_error = {"status": sc, "endpoint": str(endpoint or ""), "label": lbl}

    def get_response(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: int = 10,
        *,
        label: Optional[str] = None,
    ) -> requests.Response:
        """GET an API path (or absolute URL) and return the 2xx response, or raise GitLabAPIError."""
        ep = str(endpoint or "")
        t0 = time.monotonic()
        status_code: Optional[int] = None
        lbl = str(label or "").strip() or "unknown"
        url = self._url(ep)

        try:
            try:
                response = requests.get(url, headers=self.headers, params=params, timeout=timeout)
            except requests.exceptions.RequestException as e:
                status_code = 0
                raise error_for_status(0, ep, str(e))

            status_code = int(response.status_code)
            try:
                response.raise_for_status()
            except requests.exceptions.HTTPError as e:
                raise error_for_status(status_code, ep, str(e))
            return response
        finally:
            dt = max(0.0, time.monotonic() - t0)
            self._rest_record(label=lbl, endpoint=ep, status_code=status_code, dt_s=dt)

    def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: int = 10,
        *,
        label: Optional[str] = None,
    ) -> Any:
        """Make a GET request to the GitLab API and return JSON (dict/list) or raise."""
        response = self.get_response(endpoint, params=params, timeout=timeout, label=label)
        try:
            return response.json()
        except ValueError as e:
            raise GitLabRequestError(
                status_code=response.status_code,
                endpoint=str(endpoint or ""),
                message=f"GitLab API returned a non-JSON body for {endpoint}: {e}",
            )

    def get_rest_call_stats(self) -> Dict[str, Any]:
        """Return REST call stats for the current process/run."""
        with self._stats_mu:
            return {
                "total": int(self._rest_calls_total),
                "success_total": int(self._rest_success_total),
                "error_total": int(self._rest_errors_total),
                "time_total_s": float(self._rest_time_total_s),
                "by_label": dict(sorted(self._rest_calls_by_label.items(), key=lambda kv: (-kv[1], kv[0]))),
                "time_by_label_s": dict(sorted(self._rest_time_by_label_s.items(), key=lambda kv: (-kv[1], kv[0]))),
                "errors_by_status": dict(sorted(self._rest_errors_by_status.items(), key=lambda kv: (-kv[1], kv[0]))),
            }

    def _cache_hit(self, name: str) -> None:
        k = str(name or "").strip() or "unknown"
        with self._stats_mu:
            self._cache_hits[k] = self._cache_hits.get(k, 0) + 1

    def _cache_miss(self, name: str) -> None:
        k = str(name or "").strip() or "unknown"
        with self._stats_mu:
            self._cache_misses[k] = self._cache_misses.get(k, 0) + 1

    def _cache_write(self, name: str, *, entries: int = 0) -> None:
        k = str(name or "").strip() or "unknown"
        with self._stats_mu:
            self._cache_writes_ops[k] = self._cache_writes_ops.get(k, 0) + 1
            if int(entries or 0) > 0:
                self._cache_writes_entries[k] = self._cache_writes_entries.get(k, 0) + int(entries)

    def get_cache_stats(self) -> Dict[str, Any]:
        """Return per-run cache hit/miss stats plus the store's own counters and sizes."""
        with self._stats_mu:
            hits_by = dict(self._cache_hits)
            misses_by = dict(self._cache_misses)
            writes_ops_by = dict(self._cache_writes_ops)
            writes_entries_by = dict(self._cache_writes_entries)
        store = self.cache.stats
        return {
            "hits_total": sum(hits_by.values()),
            "misses_total": sum(misses_by.values()),
            "writes_ops_total": sum(writes_ops_by.values()),
            "writes_entries_total": sum(writes_entries_by.values()),
            "hits_by": hits_by,
            "misses_by": misses_by,
            "writes_ops_by": writes_ops_by,
            "writes_entries_by": writes_entries_by,
            "store": {
                "hit": store.hit,
                "miss": store.miss,
                "write": store.write,
                "evicted": store.evicted,
                "persist_errors": store.persist_errors,
                **self.cache.get_cache_sizes(),
            },
        }

    # -----------------------------------------------------------------------------
    # Consumed query interface (delegated to common_gitlab/api/*_cached.py)
    # -----------------------------------------------------------------------------

    def fetch_all(self, base_query: str, force_refresh: bool = False) -> List[Dict[str, Any]]:
        """Every page of a listing, concatenated and cached under base_query."""
        return self._paginated.get(base_query=base_query, force_refresh=force_refresh)

    def fetch_one(self, key: str, force_refresh: bool = False) -> Any:
        """One object, cached under key."""
        return self._single.get(key=key, force_refresh=force_refresh)

    # -----------------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------------

    def list_projects(self, refresh: bool = False) -> List[Dict[str, Any]]:
        """Projects the authenticated user is a member of."""
        return self.fetch_all(_with_query("/projects", {"membership": "true"}), refresh)

    def get_user_events(self, user_id: Any, refresh: bool = False) -> List[Dict[str, Any]]:
        return self.fetch_all(f"/users/{_project_selector(user_id)}/events", refresh)

    def get_project_events(self, project_id: Any, refresh: bool = False) -> List[Dict[str, Any]]:
        return self.fetch_all(f"/projects/{_project_selector(project_id)}/events", refresh)

    def get_user_merge_requests(self, user_id: Any, state: str = "all", refresh: bool = False) -> List[Dict[str, Any]]:
        """Merge requests authored by user_id (state: opened/merged/closed/locked/all)."""
        if state not in MR_STATES:
            raise ValueError(f"Unknown merge request state {state!r} (expected one of {MR_STATES})")
        # scope=all: without it GitLab only lists MRs created by the token owner.
        params = {"author_id": user_id, "scope": "all", "state": None if state == "all" else state}
        return self.fetch_all(_with_query("/merge_requests", params), refresh)

    def get_user_projects(self, user_id: Any, refresh: bool = False) -> List[Dict[str, Any]]:
        params = {"archived": "false", "min_access_level": 10}
        return self.fetch_all(_with_query(f"/users/{_project_selector(user_id)}/projects", params), refresh)

    def get_merge_request_commits(self, project_id: Any, mr_iid: Any, refresh: bool = False) -> List[Dict[str, Any]]:
        return self.fetch_all(f"/projects/{_project_selector(project_id)}/merge_requests/{mr_iid}/commits", refresh)

    def get_merge_request_details(self, project_id: Any, mr_iid: Any, refresh: bool = False) -> Dict[str, Any]:
        """Single MR with `diff_stats` (additions/deletions/total)."""
        key = _with_query(f"/projects/{_project_selector(project_id)}/merge_requests/{mr_iid}", {"compute_metrics": "true"})
        return self.fetch_one(key, refresh)

    def get_user_contributed_projects(self, user_id: Any, refresh: bool = False) -> List[Dict[str, Any]]:
        """Unique projects referenced by the user's events (see contributed_projects_from_events)."""
        return contributed_projects_from_events(self.get_user_events(user_id, refresh))

    def get_project_merge_requests(
        self,
        project_id: Any,
        state: str = "all",
        scope: str = "all",
        refresh: bool = False,
    ) -> List[Dict[str, Any]]:
        if state not in MR_STATES:
            raise ValueError(f"Unknown merge request state {state!r} (expected one of {MR_STATES})")
        if scope not in MR_SCOPES:
            raise ValueError(f"Unknown merge request scope {scope!r} (expected one of {MR_SCOPES})")
        params = {
            "state": None if state == "all" else state,
            "scope": None if scope == "all" else scope,
        }
        return self.fetch_all(_with_query(f"/projects/{_project_selector(project_id)}/merge_requests", params), refresh)

    def get_project_commits(
        self,
        project_id: Any,
        since: Optional[str] = None,
        until: Optional[str] = None,
        refresh: bool = False,
    ) -> List[Dict[str, Any]]:
        """Repository commits (with line stats), optionally within [since, until] (ISO 8601)."""
        params = {"since": since, "until": until, "with_stats": "true"}
        return self.fetch_all(
            _with_query(f"/projects/{_project_selector(project_id)}/repository/commits", params), refresh
        )

    def get_project_members(self, project_id: Any, refresh: bool = False) -> List[Dict[str, Any]]:
        """Project members including inherited ones (/members/all)."""
        return self.fetch_all(f"/projects/{_project_selector(project_id)}/members/all", refresh)


__all__ = [
    "GitLabAPIClient",
    "GitLabAPIError",
    "GitLabAuthError",
    "GitLabForbiddenError",
    "GitLabNotFoundError",
    "GitLabRequestError",
    "contributed_projects_from_events",
]
