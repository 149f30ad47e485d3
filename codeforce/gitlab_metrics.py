# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Contribution metrics for a GitLab user or project.

All upstream data comes from GitLabAPIClient (cached listings / objects); this module
only counts and sums. Upstream errors propagate to the caller unchanged.

GitLab event shapes used here (from GET /users/:id/events, /projects/:id/events):
  {"action_name": "pushed to", "push_data": {"commit_count": 3}, "project_id": 42, "author_id": 7}
  {"action_name": "commented on", "target_type": "MergeRequest", "note": {"system": false}, ...}
  {"action_name": "approved", "target_type": "MergeRequest", ...}
  {"action_name": "opened" | "closed", "target_type": "Issue", ...}
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .common_gitlab import GitLabAPIClient, contributed_projects_from_events

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectRef:
    id: str
    name: str
    web_url: str


@dataclass(frozen=True)
class UserMetrics:
    commits: int
    merge_requests_opened: int
    merge_requests_merged: int
    code_reviews: int
    issues_opened: int
    issues_closed: int
    lines_added: int
    lines_deleted: int
    lines_net: int
    contributed_projects: List[ProjectRef] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MergeRequestInfo:
    id: Optional[int]
    iid: Optional[int]
    title: str
    author: Optional[Dict[str, Any]]
    state: str
    created_at: str
    updated_at: str
    web_url: str
    size: Optional[int] = None
    lines_added: Optional[int] = None
    lines_deleted: Optional[int] = None


@dataclass
class Contributor:
    name: str
    id: Optional[Union[int, str]] = None
    avatar_url: Optional[str] = None
    web_url: Optional[str] = None
    commits: int = 0
    merge_requests_created: int = 0
    code_reviews: int = 0
    issues_opened: int = 0
    issues_closed: int = 0


@dataclass(frozen=True)
class ProjectMetrics:
    project_id: str
    total_lines_added: int
    total_lines_deleted: int
    total_lines_net: int
    active_merge_requests: List[MergeRequestInfo] = field(default_factory=list)
    merged_merge_requests: List[MergeRequestInfo] = field(default_factory=list)
    contributors: List[Contributor] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (ValueError, TypeError):
        return 0


def _dicts(items: Iterable[Any]) -> List[Dict[str, Any]]:
    return [it for it in (items or []) if isinstance(it, dict)]


def _is_mr_comment(event: Dict[str, Any]) -> bool:
    note = event.get("note")
    return (
        event.get("action_name") == "commented on"
        and event.get("target_type") == "MergeRequest"
        and isinstance(note, dict)
        and not note.get("system")
    )


def _is_mr_approval(event: Dict[str, Any]) -> bool:
    return event.get("action_name") == "approved" and event.get("target_type") == "MergeRequest"


def _issue_action(event: Dict[str, Any]) -> Optional[str]:
    """'opened' / 'closed' for issue events, else None."""
    if event.get("target_type") != "Issue":
        return None
    action = event.get("action_name")
    return action if action in ("opened", "closed") else None


def _diff_stats(mr: Dict[str, Any]) -> Optional[Tuple[int, int, int]]:
    stats = mr.get("diff_stats")
    if not isinstance(stats, dict):
        return None
    added = _as_int(stats.get("additions"))
    deleted = _as_int(stats.get("deletions"))
    total = _as_int(stats.get("total")) if stats.get("total") is not None else added + deleted
    return added, deleted, total


def merge_request_info(mr: Dict[str, Any]) -> MergeRequestInfo:
    """Summarize one MR; `diff_stats` wins, a numeric `changes_count` only gives a size."""
    size: Optional[int] = None
    lines_added: Optional[int] = None
    lines_deleted: Optional[int] = None
    stats = _diff_stats(mr)
    if stats is not None:
        lines_added, lines_deleted, size = stats
    elif mr.get("changes_count") is not None:
        # changes_count is a string ("12", sometimes "1000+"); only plain integers are a size.
        try:
            size = int(str(mr["changes_count"]).strip())
        except ValueError:
            size = None

    author = mr.get("author")
    return MergeRequestInfo(
        id=mr.get("id"),
        iid=mr.get("iid"),
        title=str(mr.get("title") or ""),
        author=author if isinstance(author, dict) else None,
        state=str(mr.get("state") or ""),
        created_at=str(mr.get("created_at") or ""),
        updated_at=str(mr.get("updated_at") or ""),
        web_url=str(mr.get("web_url") or ""),
        size=size,
        lines_added=lines_added,
        lines_deleted=lines_deleted,
    )


class _ContributorBook:
    """Contributors keyed by GitLab user id when known, else by author e-mail/name."""

    def __init__(self, members: List[Dict[str, Any]]):
        self._members: Dict[str, Dict[str, Any]] = {}
        for m in members:
            if m.get("id") is not None:
                self._members[str(m["id"])] = m
        self._by_key: Dict[str, Contributor] = {}

    def member(self, user_id: Any) -> Optional[Dict[str, Any]]:
        if user_id is None:
            return None
        return self._members.get(str(user_id))

    def get(self, *, fallback_key: str, name: Optional[str], user_id: Any = None) -> Contributor:
        key = str(user_id) if user_id is not None else fallback_key
        c = self._by_key.get(key)
        if c is None:
            member = self.member(user_id) or {}
            c = Contributor(
                id=user_id,
                name=str(name or fallback_key),
                avatar_url=member.get("avatar_url"),
                web_url=member.get("web_url"),
            )
            self._by_key[key] = c
        return c

    def contributors(self) -> List[Contributor]:
        return list(self._by_key.values())


class MetricsService:
    """Derives user and project contribution metrics from cached GitLab data."""

    def __init__(self, gitlab: GitLabAPIClient, *, max_workers: int = 5):
        self.gitlab = gitlab
        self.max_workers = max(1, int(max_workers))

    def get_user_metrics(self, user_id: Any, refresh: bool = False) -> UserMetrics:
        user_id = str(user_id)
        with ThreadPoolExecutor(max_workers=self.max_workers) as ex:
            f_events = ex.submit(self.gitlab.get_user_events, user_id, refresh)
            f_opened = ex.submit(self.gitlab.get_user_merge_requests, user_id, "opened", refresh)
            f_merged = ex.submit(self.gitlab.get_user_merge_requests, user_id, "merged", refresh)
            events = _dicts(f_events.result())
            opened_mrs = _dicts(f_opened.result())
            merged_mrs = _dicts(f_merged.result())

        contributed = contributed_projects_from_events(events)

        commits = 0
        code_reviews = 0
        issues_opened = 0
        issues_closed = 0
        for event in events:
            push_data = event.get("push_data")
            if event.get("action_name") == "pushed to" and isinstance(push_data, dict):
                count = _as_int(push_data.get("commit_count"))
                if count > 0:
                    commits += count
            if _is_mr_comment(event) or _is_mr_approval(event):
                code_reviews += 1
            action = _issue_action(event)
            if action == "opened":
                issues_opened += 1
            elif action == "closed":
                issues_closed += 1

        lines_added = 0
        lines_deleted = 0
        for mr in merged_mrs:
            details = self.gitlab.get_merge_request_details(mr.get("project_id"), mr.get("iid"), refresh)
            stats = _diff_stats(details) if isinstance(details, dict) else None
            if stats is None:
                _logger.debug("No diff_stats for MR %s!%s", mr.get("project_id"), mr.get("iid"))
                continue
            lines_added += stats[0]
            lines_deleted += stats[1]

        return UserMetrics(
            commits=commits,
            merge_requests_opened=len(opened_mrs),
            merge_requests_merged=len(merged_mrs),
            code_reviews=code_reviews,
            issues_opened=issues_opened,
            issues_closed=issues_closed,
            lines_added=lines_added,
            lines_deleted=lines_deleted,
            lines_net=lines_added - lines_deleted,
            contributed_projects=[
                ProjectRef(id=str(p.get("id")), name=str(p.get("name") or ""), web_url=str(p.get("web_url") or ""))
                for p in _dicts(contributed)
            ],
        )

    def get_project_metrics(self, project_id: Any, refresh: bool = False) -> ProjectMetrics:
        project_id = str(project_id)
        with ThreadPoolExecutor(max_workers=self.max_workers) as ex:
            f_events = ex.submit(self.gitlab.get_project_events, project_id, refresh)
            f_commits = ex.submit(self.gitlab.get_project_commits, project_id, None, None, refresh)
            f_opened = ex.submit(self.gitlab.get_project_merge_requests, project_id, "opened", "all", refresh)
            f_merged = ex.submit(self.gitlab.get_project_merge_requests, project_id, "merged", "all", refresh)
            f_members = ex.submit(self.gitlab.get_project_members, project_id, refresh)
            events = _dicts(f_events.result())
            commits = _dicts(f_commits.result())
            opened_mrs = _dicts(f_opened.result())
            merged_mrs = _dicts(f_merged.result())
            members = _dicts(f_members.result())

        total_added = 0
        total_deleted = 0
        for commit in commits:
            stats = commit.get("stats")
            if isinstance(stats, dict):
                total_added += _as_int(stats.get("additions"))
                total_deleted += _as_int(stats.get("deletions"))

        book = _ContributorBook(members)

        # 1. Commits (commit payloads rarely carry a user id; e-mail is the fallback key)
        for commit in commits:
            author = commit.get("author") if isinstance(commit.get("author"), dict) else {}
            email = str(commit.get("author_email") or "")
            c = book.get(fallback_key=email, name=commit.get("author_name"), user_id=author.get("id"))
            c.commits += 1

        # 2. Merge requests authored
        for mr in opened_mrs + merged_mrs:
            author = mr.get("author")
            if not isinstance(author, dict):
                continue
            username = str(author.get("username") or "")
            c = book.get(fallback_key=username, name=username, user_id=author.get("id"))
            c.merge_requests_created += 1

        # 3. Reviews and issues from events attributed to an author
        for event in events:
            author_id = event.get("author_id")
            if not author_id:
                continue
            member = book.member(author_id) or {}
            c = book.get(
                fallback_key=str(member.get("email") or f"{author_id}@gitlab.user"),
                name=member.get("username") or f"User {author_id}",
                user_id=author_id,
            )
            if _is_mr_comment(event):
                note_project = event["note"].get("project_id")
                if str(event.get("project_id")) == project_id or (
                    note_project is not None and str(note_project) == project_id
                ):
                    c.code_reviews += 1
            if _is_mr_approval(event):
                c.code_reviews += 1
            action = _issue_action(event)
            if action == "opened":
                c.issues_opened += 1
            elif action == "closed":
                c.issues_closed += 1

        return ProjectMetrics(
            project_id=project_id,
            total_lines_added=total_added,
            total_lines_deleted=total_deleted,
            total_lines_net=total_added - total_deleted,
            active_merge_requests=[merge_request_info(mr) for mr in opened_mrs],
            merged_merge_requests=[merge_request_info(mr) for mr in merged_mrs],
            contributors=book.contributors(),
        )
