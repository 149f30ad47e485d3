"""Resource-specific GitLab API wrappers backed by the shared ResponseCache.

Each module in this package owns:
- the API calls for one resource shape (via GitLabAPIClient transport)
- the cache key format
- the TTL policy description for that resource
"""
