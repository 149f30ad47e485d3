"""
Shared pytest fixtures: a fake GitLab REST endpoint and an isolated cache.

HTTP is faked by replacing `requests.get` with a router that returns real
`requests.Response` objects, so link-header parsing and raise_for_status()
behave exactly as in production.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlencode

import pytest
import requests

from codeforce.cache.cache_responses import ResponseCache
from codeforce.common import CacheConfig
from codeforce.common_gitlab import GitLabAPIClient

BASE_URL = "https://gitlab.example.com/api/v4"


def make_response(
    body: Any,
    *,
    status: int = 200,
    url: str = BASE_URL,
    link: Optional[str] = None,
) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp._content = json.dumps(body).encode("utf-8")
    resp.encoding = "utf-8"
    resp.url = url
    resp.headers["Content-Type"] = "application/json"
    if link is not None:
        resp.headers["link"] = link
    return resp


Route = Union[requests.Response, Exception, Callable[[], requests.Response]]


class FakeGitLab:
    """Routes GET requests by full URL (path + merged query params)."""

    def __init__(self):
        self.routes: Dict[str, Route] = {}
        self.calls: List[str] = []

    def add(self, url: str, route: Route) -> None:
        self.routes[url] = route

    def add_json(self, path: str, body: Any, **kwargs: Any) -> None:
        url = path if path.startswith("http") else f"{BASE_URL}{path}"
        self.add(url, make_response(body, url=url, **kwargs))

    def __call__(self, url: str, headers=None, params=None, timeout=None) -> requests.Response:
        full = url
        if params:
            full = f"{url}{'&' if '?' in url else '?'}{urlencode(params)}"
        self.calls.append(full)
        route = self.routes.get(full)
        if route is None:
            return make_response({"message": "404 Not Found"}, status=404, url=full)
        if isinstance(route, Exception):
            raise route
        if callable(route) and not isinstance(route, requests.Response):
            return route()
        return route


@pytest.fixture
def fake_gitlab(monkeypatch) -> FakeGitLab:
    fake = FakeGitLab()
    monkeypatch.setattr(requests, "get", fake)
    return fake


@pytest.fixture
def response_cache(tmp_path):
    cache = ResponseCache(cache_file=tmp_path / "cache.json", config=CacheConfig())
    yield cache
    cache.close()


@pytest.fixture
def client(fake_gitlab, response_cache) -> GitLabAPIClient:
    return GitLabAPIClient(token="glpat-test", base_url=BASE_URL, cache=response_cache)
