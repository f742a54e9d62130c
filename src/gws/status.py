# ABOUTME: Working tree status parsing and risk classification for gws.
# ABOUTME: Turns porcelain v2 status into per-repo facts and workspace-level states.
"""Status and state derivation."""

from __future__ import annotations

import threading
from pathlib import Path

from gws import gitcmd
from gws.errors import GwsError
from gws.models import (
    ParsedStatus,
    RepoState,
    RepoStatus,
    StateKind,
    StatusResult,
    WorkspaceState,
)


def parse_status_porcelain_v2(output: str, fallback_branch: str = "") -> ParsedStatus:
    """
    Parse ``git status --porcelain=v2 -b`` output.

    Any line that is not understood marks the tree dirty, so unknown output is
    never reported as clean.

    Args:
        output: Raw status output.
        fallback_branch: Branch to report when the header has none.

    Returns:
        ParsedStatus with branch metadata and change counts.
    """
    status = ParsedStatus(branch=fallback_branch)

    for line in output.rstrip("\n").split("\n"):
        if not line.strip():
            continue

        if line.startswith("# "):
            fields = line.split()
            if len(fields) < 3:
                continue
            key, value = fields[1], fields[2]
            if key == "branch.oid":
                if value == "(initial)":
                    status.head_missing = True
                else:
                    status.head = value[:7]
            elif key == "branch.head":
                if value == "(detached)":
                    status.detached = True
                elif value != "(unknown)":
                    status.branch = value
            elif key == "branch.upstream":
                if value != "(unknown)":
                    status.upstream = value
            elif key == "branch.ab":
                for item in fields[2:]:
                    if item.startswith("+"):
                        status.ahead = _parse_count(item[1:])
                    elif item.startswith("-"):
                        status.behind = _parse_count(item[1:])
            continue

        if line.startswith("? "):
            status.untracked += 1
            status.dirty = True
            continue

        if line.startswith("u "):
            status.unmerged += 1
            status.dirty = True
            continue

        if line.startswith("1 ") or line.startswith("2 "):
            fields = line.split()
            if len(fields) >= 2 and len(fields[1]) >= 2:
                xy = fields[1]
                if xy[0] != ".":
                    status.staged += 1
                if xy[1] != ".":
                    status.unstaged += 1
                if xy[0] != "." or xy[1] != ".":
                    status.dirty = True
            continue

        status.dirty = True

    return status


def _parse_count(value: str) -> int:
    try:
        count = int(value)
    except ValueError:
        return 0
    return max(count, 0)


def repo_status(
    alias: str,
    worktree_path: Path,
    branch: str = "",
    *,
    cancel: threading.Event | None = None,
) -> RepoStatus:
    """Collect live status for one working tree; failures are captured, not raised."""
    result = RepoStatus(alias=alias, worktree_path=worktree_path, branch=branch)
    try:
        output = gitcmd.status_porcelain_v2(worktree_path, cancel=cancel)
    except (GwsError, OSError) as e:
        result.error = e
        return result

    parsed = parse_status_porcelain_v2(output, branch)
    result.raw_status = output
    result.branch = parsed.branch
    result.upstream = parsed.upstream
    result.head = parsed.head
    result.dirty = parsed.dirty
    result.untracked_count = parsed.untracked
    result.staged_count = parsed.staged
    result.unstaged_count = parsed.unstaged
    result.unmerged_count = parsed.unmerged
    result.ahead_count = parsed.ahead
    result.behind_count = parsed.behind
    return result


def classify_repo(status: RepoStatus) -> StateKind:
    """Classify one repo; the first matching rule wins."""
    if status.error is not None:
        return StateKind.UNKNOWN
    if status.dirty:
        return StateKind.DIRTY
    if not status.upstream.strip():
        return StateKind.DIVERGED
    if status.ahead_count > 0 and status.behind_count > 0:
        return StateKind.DIVERGED
    if status.ahead_count > 0:
        return StateKind.UNPUSHED
    if status.behind_count > 0:
        return StateKind.DIVERGED
    return StateKind.CLEAN


def repo_state_from_status(status: RepoStatus) -> RepoState:
    return RepoState(
        alias=status.alias,
        worktree_path=status.worktree_path,
        kind=classify_repo(status),
        upstream=status.upstream,
        ahead_count=status.ahead_count,
        behind_count=status.behind_count,
        staged_count=status.staged_count,
        unstaged_count=status.unstaged_count,
        untracked_count=status.untracked_count,
        unmerged_count=status.unmerged_count,
        error=status.error,
    )


def aggregate_kind(repos: list[RepoState]) -> StateKind:
    """Pick the worst state: dirty, unknown, diverged, unpushed, then clean."""
    kinds = {repo.kind for repo in repos}
    for kind in (StateKind.DIRTY, StateKind.UNKNOWN, StateKind.DIVERGED, StateKind.UNPUSHED):
        if kind in kinds:
            return kind
    return StateKind.CLEAN


def requires_confirmation(kind: StateKind) -> bool:
    """
    Check whether removing something in this state risks losing history.

    Dirty is deliberately excluded: uncommitted changes are gated by the
    allow-dirty flag of the removal itself.
    """
    return kind in (StateKind.UNPUSHED, StateKind.DIVERGED, StateKind.UNKNOWN)


def state_from_status(status: StatusResult) -> WorkspaceState:
    repos = [repo_state_from_status(repo) for repo in status.repos]
    return WorkspaceState(
        workspace_id=status.workspace_id,
        kind=aggregate_kind(repos),
        repos=repos,
        warnings=list(status.warnings),
    )
