# ABOUTME: Executes an externally computed plan against live workspaces.
# ABOUTME: Removes first, overlaps prefetch with removals, then adds.
"""Apply orchestrator for gws."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from gws import repospec, workspace, worktree
from gws.errors import NotFoundError
from gws.models import (
    Manifest,
    ManifestRepo,
    Plan,
    RepoChange,
    RepoChangeKind,
    RepoEntry,
    WorkspaceChange,
    WorkspaceChangeKind,
)
from gws.prefetch import Prefetcher

logger = logging.getLogger(__name__)


@dataclass
class ApplyOptions:
    """Options for one apply run."""

    allow_dirty: bool = False
    allow_status_error: bool = False
    prefetch_timeout: float | None = None
    step: Callable[[str], None] | None = None
    cancel: threading.Event | None = None


def _log_step(options: ApplyOptions, text: str) -> None:
    logger.debug("apply: %s", text)
    if options.step is not None:
        options.step(text)


def collect_repo_specs(plan: Plan) -> list[str]:
    """
    Get the locations every addition in the plan needs, one per identity.

    Returns:
        Locations in first-seen order.
    """
    seen: dict[str, str] = {}

    def remember(location: str) -> None:
        location = location.strip()
        if not location:
            return
        identity = repospec.try_normalize(location)
        key = identity.key if identity is not None else location
        seen.setdefault(key, location)

    for change in plan.changes:
        if change.kind is WorkspaceChangeKind.ADD:
            declared = plan.desired.workspaces.get(change.workspace_id)
            if declared is None:
                continue
            for entry in declared.repos:
                remember(entry.repo)
        elif change.kind is WorkspaceChangeKind.UPDATE:
            for repo_change in change.repos:
                if repo_change.kind in (RepoChangeKind.ADD, RepoChangeKind.UPDATE):
                    remember(repo_change.to_repo)

    return list(seen.values())


def apply_plan(root_dir: Path, plan: Plan, options: ApplyOptions | None = None) -> None:
    """
    Apply a plan.

    Order: start prefetching every store an addition needs; remove workspaces;
    remove the old side of repo updates and rename branches of branch-only
    updates in place; wait for prefetch; create workspaces; add the new side
    of repo updates. The first failure stops the run and
    earlier steps are not rolled back.

    Args:
        root_dir: gws root directory.
        plan: Desired state plus the ordered change list.
        options: Apply options.
    """
    options = options or ApplyOptions()
    prefetcher = Prefetcher(timeout=options.prefetch_timeout)
    locations = collect_repo_specs(plan)
    prefetcher.start_all(root_dir, locations, cancel=options.cancel)

    for change in plan.changes:
        if change.kind is not WorkspaceChangeKind.REMOVE:
            continue
        _log_step(options, f"remove workspace {change.workspace_id}")
        workspace.remove(
            root_dir,
            change.workspace_id,
            allow_dirty=options.allow_dirty,
            allow_status_error=options.allow_status_error,
            cancel=options.cancel,
        )

    for change in plan.changes:
        if change.kind is WorkspaceChangeKind.UPDATE:
            _apply_repo_removals(root_dir, change, options)
            _apply_branch_renames(root_dir, change, options)

    prefetcher.wait_all(locations, cancel=options.cancel)

    for change in plan.changes:
        if change.kind is WorkspaceChangeKind.ADD:
            _apply_workspace_add(root_dir, plan.desired, change, options)
        elif change.kind is WorkspaceChangeKind.UPDATE:
            _apply_repo_adds(root_dir, plan.desired, change, options)


def can_rename_in_place(repo_change: RepoChange) -> bool:
    """
    Check whether a repo update only changes the branch.

    Such updates rename the branch inside the existing working tree instead of
    removing and re-adding it, so local files survive.
    """
    if repo_change.kind is not RepoChangeKind.UPDATE:
        return False
    from_repo = repo_change.from_repo.strip()
    to_repo = repo_change.to_repo.strip()
    from_branch = repo_change.from_branch.strip()
    to_branch = repo_change.to_branch.strip()
    if not (from_repo and to_repo and from_branch and to_branch):
        return False
    return from_repo == to_repo and from_branch != to_branch


def _apply_repo_removals(root_dir: Path, change: WorkspaceChange, options: ApplyOptions) -> None:
    for repo_change in change.repos:
        if repo_change.kind not in (RepoChangeKind.REMOVE, RepoChangeKind.UPDATE):
            continue
        if can_rename_in_place(repo_change):
            continue
        _log_step(options, f"worktree remove {repo_change.alias}")
        worktree.remove_repo(
            root_dir,
            change.workspace_id,
            repo_change.alias,
            allow_dirty=options.allow_dirty,
            allow_status_error=options.allow_status_error,
            cancel=options.cancel,
        )


def _apply_branch_renames(root_dir: Path, change: WorkspaceChange, options: ApplyOptions) -> None:
    for repo_change in change.repos:
        if not can_rename_in_place(repo_change):
            continue
        _log_step(options, f"branch rename {repo_change.alias}")
        worktree.rename_branch(
            root_dir,
            change.workspace_id,
            repo_change.alias,
            repo_change.from_branch,
            repo_change.to_branch,
            cancel=options.cancel,
        )


def _add_member(
    root_dir: Path,
    workspace_id: str,
    mode: str,
    location: str,
    alias: str,
    branch: str,
    base_ref: str,
    options: ApplyOptions,
) -> RepoEntry:
    _log_step(options, f"worktree add {alias or repospec.display_name(location)}")
    if mode.strip().lower() == workspace.MODE_REVIEW:
        branch = branch.strip()
        return worktree.add_tracking(
            root_dir,
            workspace_id,
            location,
            alias,
            branch,
            f"refs/remotes/origin/{branch}",
            cancel=options.cancel,
        )
    return worktree.add(
        root_dir,
        workspace_id,
        location,
        alias=alias,
        branch=branch,
        base_ref=base_ref,
        cancel=options.cancel,
    )


def _first_created_base(entries: list[RepoEntry]) -> str:
    for entry in entries:
        if entry.base_ref:
            return entry.base_ref
    return ""


def _apply_workspace_add(
    root_dir: Path, desired: Manifest, change: WorkspaceChange, options: ApplyOptions
) -> None:
    declared = desired.workspaces.get(change.workspace_id)
    if declared is None:
        raise NotFoundError(f"workspace not found in manifest: {change.workspace_id}")

    _log_step(options, f"create workspace {change.workspace_id}")
    workspace.new(root_dir, change.workspace_id, declared.metadata())

    added: list[RepoEntry] = []
    for entry in declared.repos:
        added.append(
            _add_member(
                root_dir,
                change.workspace_id,
                declared.mode,
                entry.repo,
                entry.alias,
                entry.branch,
                entry.base_ref,
                options,
            )
        )
    _record_base_branch(root_dir, change.workspace_id, declared.mode, added)


def _desired_repo(desired: Manifest, workspace_id: str, alias: str) -> ManifestRepo | None:
    declared = desired.workspaces.get(workspace_id)
    if declared is None:
        return None
    entry = declared.find_repo(alias)
    if entry is not None:
        return entry
    # Entries without an explicit alias are named after the repo.
    for candidate in declared.repos:
        if not candidate.alias.strip() and repospec.display_name(candidate.repo) == alias:
            return candidate
    return None


def _apply_repo_adds(
    root_dir: Path, desired: Manifest, change: WorkspaceChange, options: ApplyOptions
) -> None:
    declared = desired.workspaces.get(change.workspace_id)
    mode = declared.mode if declared is not None else ""

    added: list[RepoEntry] = []
    for repo_change in change.repos:
        if repo_change.kind not in (RepoChangeKind.ADD, RepoChangeKind.UPDATE):
            continue
        if can_rename_in_place(repo_change):
            continue
        added.append(_add_repo_change(root_dir, desired, change, repo_change, mode, options))
    _record_base_branch(root_dir, change.workspace_id, mode, added)


def _add_repo_change(
    root_dir: Path,
    desired: Manifest,
    change: WorkspaceChange,
    repo_change: RepoChange,
    mode: str,
    options: ApplyOptions,
) -> RepoEntry:
    entry = _desired_repo(desired, change.workspace_id, repo_change.alias)
    base_ref = entry.base_ref.strip() if entry is not None else ""
    return _add_member(
        root_dir,
        change.workspace_id,
        mode,
        repo_change.to_repo,
        repo_change.alias,
        repo_change.to_branch,
        base_ref,
        options,
    )


def _record_base_branch(
    root_dir: Path, workspace_id: str, mode: str, added: list[RepoEntry]
) -> None:
    if mode.strip().lower() == workspace.MODE_REVIEW:
        return
    base = _first_created_base(added)
    if base.startswith("origin/"):
        workspace.record_base_branch(root_dir, workspace_id, base)
