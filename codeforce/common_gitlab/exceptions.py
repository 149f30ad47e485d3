# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Errors raised for failed GitLab fetches.

Every upstream failure surfaces as a GitLabAPIError carrying the HTTP status
(0 when no response arrived) and the endpoint or next-page URL that failed.
Nothing is cached for a fetch that raised one of these.
"""

from __future__ import annotations

from typing import Dict, Type


class GitLabAPIError(Exception):
    def __init__(self, *, status_code: int, endpoint: str, message: str):
        super().__init__(message)
        self.status_code = int(status_code)
        self.endpoint = str(endpoint or "")

    @property
    def is_transport_error(self) -> bool:
        return self.status_code == 0


class GitLabAuthError(GitLabAPIError):
    """401: missing or rejected token."""


class GitLabForbiddenError(GitLabAPIError):
    """403: token lacks the scope or membership."""


class GitLabNotFoundError(GitLabAPIError):
    """404: unknown user/project/MR, or hidden from this token."""


class GitLabRequestError(GitLabAPIError):
    """Transport failure (status_code 0), any other non-2xx, or an unusable body."""


_STATUS_ERRORS: Dict[int, Type[GitLabAPIError]] = {
    401: GitLabAuthError,
    403: GitLabForbiddenError,
    404: GitLabNotFoundError,
}

_STATUS_HINTS: Dict[int, str] = {
    401: "401 Unauthorized. Check your token.",
    403: "403 Forbidden. Token may lack permissions.",
    404: "404 Not Found",
}


def error_for_status(status_code: int, endpoint: str, detail: str = "") -> GitLabAPIError:
    """Build the error for a non-2xx response (status 0 means transport failure)."""
    sc = int(status_code)
    hint = _STATUS_HINTS.get(sc)
    if hint is not None:
        message = f"GitLab API returned {hint} ({endpoint})"
    else:
        message = f"GitLab API request failed for {endpoint}"
    if detail:
        message = f"{message}: {detail}"
    return _STATUS_ERRORS.get(sc, GitLabRequestError)(status_code=sc, endpoint=endpoint, message=message)
