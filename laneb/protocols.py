"""Contracts for the external VCS/PR provider.

The engine never touches repository content itself. A provider opens pull
requests, reports their checks, and merges them, always returning a plain
result mapping with an `ok` flag instead of raising.
"""

from __future__ import annotations

from typing import Any, Protocol, TypedDict


class PullRequestResult(TypedDict, total=False):
    ok: bool
    pr_number: int
    url: str
    head_sha: str
    head_branch: str
    message: str


class ChecksResult(TypedDict, total=False):
    ok: bool
    head_sha: str
    checks: list[dict[str, Any]]
    message: str


class MergeResult(TypedDict, total=False):
    ok: bool
    merge_commit_sha: str
    message: str


class VcsProvider(Protocol):
    def create_pull_request(
        self,
        *,
        work_id: str,
        repo_id: str,
        base_branch: str,
        head_branch: str,
        patch_plan: dict[str, Any],
    ) -> PullRequestResult: ...

    def list_checks(self, *, repo_id: str, pr_number: int) -> ChecksResult: ...

    def merge_pull_request(self, *, repo_id: str, pr_number: int) -> MergeResult: ...

