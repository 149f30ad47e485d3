#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Print GitLab contribution metrics for a user or a project as JSON.

Responses are cached in ~/.cache/codeforce/cache.json (1h TTL by default), so a
second run within the hour makes no API calls unless --refresh is given.

Auth:
  - Export GITLAB_TOKEN (or GITLAB_PAT), or write it to ~/.config/gitlab-token

Examples:
  # Metrics for user 1234
  codeforce-metrics user 1234

  # Metrics for a project by path, bypassing the cache
  codeforce-metrics project group/sub/repo --refresh

  # Projects the token owner is a member of
  codeforce-metrics projects

  # Cache sizes and hit/miss counters
  codeforce-metrics cache-info
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Optional, Sequence

from .cache.cache_responses import ResponseCache
from .common import DEFAULT_GITLAB_BASE_URL, CacheConfig, resolve_cache_path
from .common_gitlab import GitLabAPIClient
from .common_gitlab.exceptions import GitLabAPIError
from .gitlab_metrics import MetricsService

_logger = logging.getLogger(__name__)


def _cache_config(args: argparse.Namespace) -> CacheConfig:
    cfg = CacheConfig.from_env()
    overrides: dict = {}
    if args.ttl_s is not None:
        overrides["ttl_ms"] = int(args.ttl_s) * 1000
    if args.max_entries is not None:
        overrides["max_entries"] = int(args.max_entries)
    if not overrides:
        return cfg
    return CacheConfig(
        ttl_ms=overrides.get("ttl_ms", cfg.ttl_ms),
        max_entries=overrides.get("max_entries", cfg.max_entries),
        max_snapshot_bytes=cfg.max_snapshot_bytes,
        eviction_fraction=cfg.eviction_fraction,
    )


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="GitLab contribution metrics (cached).")
    ap.add_argument("--base-url", default=None, help=f"GitLab API base URL (else GITLAB_BASE_URL, default: {DEFAULT_GITLAB_BASE_URL})")
    ap.add_argument("--token", default=None, help="GitLab token (else GITLAB_TOKEN / GITLAB_PAT or ~/.config/gitlab-token)")
    ap.add_argument("--cache-file", default=None, help="Cache snapshot path (relative paths live under the cache dir)")
    ap.add_argument("--ttl-s", type=int, default=None, help="Cache TTL in seconds (default: 3600)")
    ap.add_argument("--max-entries", type=int, default=None, help="In-memory cache entry ceiling (default: 500)")
    ap.add_argument("--refresh", action="store_true", help="Bypass cached responses (results are re-cached)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")

    sub = ap.add_subparsers(dest="command", required=True)
    p_user = sub.add_parser("user", help="Metrics for one user")
    p_user.add_argument("user_id", help="GitLab user ID")
    p_project = sub.add_parser("project", help="Metrics for one project")
    p_project.add_argument("project_id", help='GitLab project ID or path (e.g. "group/repo")')
    sub.add_parser("projects", help="Projects the token owner is a member of")
    sub.add_parser("cache-info", help="Cache location, sizes and counters")
    return ap


def _run(args: argparse.Namespace, client: GitLabAPIClient) -> Any:
    if args.command == "user":
        return MetricsService(client).get_user_metrics(args.user_id, refresh=args.refresh).to_dict()
    if args.command == "project":
        return MetricsService(client).get_project_metrics(args.project_id, refresh=args.refresh).to_dict()
    if args.command == "projects":
        return client.list_projects(refresh=args.refresh)
    return {"cache_file": str(client.cache.cache_file), **client.get_cache_stats()}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = _cache_config(args)
    except ValueError as e:
        _logger.error("Invalid cache settings: %s", e)
        return 2

    cache = ResponseCache(cache_file=resolve_cache_path(args.cache_file), config=config)
    client = GitLabAPIClient(token=args.token, base_url=args.base_url, cache=cache)
    if not client.has_token() and args.command != "cache-info":
        _logger.warning("No GitLab token configured; only public data will be visible")

    try:
        result = _run(args, client)
    except GitLabAPIError as e:
        _logger.error("GitLab API error (status %s, %s): %s", e.status_code, e.endpoint, e)
        return 1
    finally:
        client.close()

    print(json.dumps(result, indent=2))
    if args.verbose:
        _logger.debug("REST stats: %s", json.dumps(client.get_rest_call_stats()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
