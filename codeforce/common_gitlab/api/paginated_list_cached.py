# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""GitLab paginated listing cached API.

Resource:
  GET {base_query}[?&]per_page=100, then every `link: <...>; rel="next"` target

Example API Response (one page; `link` header carries the next page):
  link: <https://gitlab.com/api/v4/projects/42/merge_requests?page=2&per_page=100&state=merged>; rel="next",
        <https://gitlab.com/api/v4/projects/42/merge_requests?page=1&per_page=100&state=merged>; rel="first"
  [
    {"id": 1001, "iid": 17, "title": "Add metrics endpoint", "state": "merged", ...},
    {"id": 1002, "iid": 18, "title": "Fix pagination", "state": "merged", ...}
  ]

Cached Fields:
  - The whole concatenated listing (all pages, upstream order) under the base query.
  - Individual pages are never cached.

TTL:
  ResponseCache TTL (default 1h)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import requests

from ..exceptions import GitLabRequestError
from .base_cached import CachedResourceBase

if TYPE_CHECKING:  # pragma: no cover
    from .. import GitLabAPIClient

_logger = logging.getLogger(__name__)

TTL_POLICY_DESCRIPTION = "ResponseCache TTL (default 1h)"

CACHE_NAME = "paginated_list"
API_CALL_FORMAT = "GET {base_query}&per_page=100 (+ follow link rel=\"next\")"
CACHE_KEY_FORMAT = "<base_query>"
PER_PAGE = 100  # GitLab's max per_page


def next_page_url(response: requests.Response) -> Optional[str]:
    """Target of the `rel="next"` entry of the response's `link` header, if any."""
    nxt = response.links.get("next") or {}
    url = str(nxt.get("url") or "").strip()
    return url or None


class PaginatedListCached(CachedResourceBase[List[Dict[str, Any]]]):
    """Walks every page of a listing and caches the concatenation as one value."""

    @property
    def cache_name(self) -> str:
        return CACHE_NAME

    def api_call_format(self) -> str:
        return API_CALL_FORMAT

    def cache_key(self, **kwargs: Any) -> str:
        return str(kwargs.get("base_query") or "")

    def fetch(self, **kwargs: Any) -> List[Dict[str, Any]]:
        base_query = str(kwargs.get("base_query") or "")
        items: List[Dict[str, Any]] = []

        # Only the first request gets per_page; "next" links already carry every parameter.
        next_url: Optional[str] = base_query
        params: Optional[Dict[str, Any]] = {"per_page": PER_PAGE}
        pages = 0
        while next_url:
            response = self.api.get_response(next_url, params=params, label=self.cache_name)
            pages += 1
            try:
                page = response.json()
            except ValueError as e:
                raise GitLabRequestError(
                    status_code=response.status_code,
                    endpoint=next_url,
                    message=f"GitLab API returned a non-JSON page for {next_url}: {e}",
                )
            if not isinstance(page, list):
                raise GitLabRequestError(
                    status_code=response.status_code,
                    endpoint=next_url,
                    message=f"GitLab API returned {type(page).__name__} instead of a list for {next_url}",
                )
            items.extend(page)
            next_url = next_page_url(response)
            params = None

        _logger.debug("Fetched %d items in %d page(s) for %s", len(items), pages, base_query)
        return items
