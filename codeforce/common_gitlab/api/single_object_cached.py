# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""GitLab single-object cached API.

Resource:
  GET {key}   (exactly one request; no pagination, no link header handling)

Example: GET /projects/42/merge_requests/17?compute_metrics=true
  {"id": 1001, "iid": 17, "diff_stats": {"additions": 120, "deletions": 30, "total": 150}, ...}

TTL:
  ResponseCache TTL (default 1h)
"""

from __future__ import annotations

from typing import Any

from .base_cached import CachedResourceBase

TTL_POLICY_DESCRIPTION = "ResponseCache TTL (default 1h)"

CACHE_NAME = "single_object"
API_CALL_FORMAT = "GET {key}"
CACHE_KEY_FORMAT = "<request path + query>"


class SingleObjectCached(CachedResourceBase[Any]):
    @property
    def cache_name(self) -> str:
        return CACHE_NAME

    def api_call_format(self) -> str:
        return API_CALL_FORMAT

    def cache_key(self, **kwargs: Any) -> str:
        return str(kwargs.get("key") or "")

    def fetch(self, **kwargs: Any) -> Any:
        key = str(kwargs.get("key") or "")
        return self.api.get(key, label=self.cache_name)
