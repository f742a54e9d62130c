# ABOUTME: Manages aliased working trees linked to shared repo stores.
# ABOUTME: Resolves branches and base refs when materializing a new working tree.
"""Worktree engine for gws."""

from __future__ import annotations

import logging
import threading
from pathlib import Path, PurePath

from gws import gitcmd, repospec, repostore, status, workspace
from gws.errors import (
    BaseRefNotFoundError,
    ConflictError,
    DirtyWorkingTreeError,
    GitError,
    NotFoundError,
    RefNotFoundError,
    StatusError,
    ValidationError,
)
from gws.models import RepoEntry, RepoIdentity, RepoStore

logger = logging.getLogger(__name__)

FALLBACK_BRANCHES = ("main", "master", "develop")


def validate_branch_name(branch: str) -> None:
    """
    Check a branch name against git's ref-name rules.

    Raises:
        ValidationError: If the name is empty or illegal.
    """
    if not branch.strip():
        raise ValidationError("branch is required")
    if not gitcmd.check_ref_format_branch(branch):
        raise ValidationError(f"invalid branch name: {branch!r}")


def validate_alias(alias: str) -> None:
    """
    Check that an alias names a single directory inside the workspace.

    Raises:
        ValidationError: If the alias is empty, contains separators, is a traversal
            component, or collides with the metadata directory.
    """
    if not alias:
        raise ValidationError("alias is required")
    if "/" in alias or "\\" in alias:
        raise ValidationError(f"invalid alias {alias!r}: must not contain path separators")
    if alias in (".", "..") or str(PurePath(alias)) != alias:
        raise ValidationError(f"invalid alias {alias!r}: must not contain path traversal")
    if alias == workspace.METADATA_DIR_NAME:
        raise ValidationError(f"invalid alias {alias!r}: reserved for workspace metadata")


def branch_exists(store: Path, branch: str, *, cancel: threading.Event | None = None) -> bool:
    """Check for a local branch in a store; lookup failures are raised."""
    lookup = gitcmd.show_ref(store, f"refs/heads/{branch}", cancel=cancel)
    if lookup.error is not None:
        raise lookup.error
    return lookup.found


def resolve_base_ref(store: Path, *, cancel: threading.Event | None = None) -> str:
    """
    Pick the ref a new branch starts from.

    Tried in order: origin/HEAD's target, the store's own HEAD, local main/master/develop,
    then origin/main, origin/master, origin/develop.

    Raises:
        BaseRefNotFoundError: If none of them exists.
    """
    remote_head = gitcmd.symbolic_ref(store, "refs/remotes/origin/HEAD", cancel=cancel)
    if remote_head.found and remote_head.value.startswith("refs/remotes/"):
        return remote_head.value.removeprefix("refs/remotes/")

    local_head = gitcmd.symbolic_ref(store, "HEAD", cancel=cancel)
    if local_head.found:
        return local_head.value

    for name in FALLBACK_BRANCHES:
        lookup = gitcmd.show_ref(store, f"refs/heads/{name}", cancel=cancel)
        if lookup.error is not None:
            raise lookup.error
        if lookup.found:
            return f"refs/heads/{name}"

    for name in FALLBACK_BRANCHES:
        lookup = gitcmd.show_ref(store, f"refs/remotes/origin/{name}", cancel=cancel)
        if lookup.error is not None:
            raise lookup.error
        if lookup.found:
            return f"origin/{name}"

    cause = remote_head.error or local_head.error
    raise BaseRefNotFoundError(str(store)) from cause


def _prepare(
    root_dir: Path,
    workspace_id: str,
    location: str,
    alias: str,
    branch: str,
    *,
    cancel: threading.Event | None,
) -> tuple[RepoIdentity, str, Path]:
    """Run every check that must pass before anything is touched."""
    workspace.validate_workspace_id(workspace_id)
    validate_branch_name(branch)

    ws_dir = workspace.workspace_dir(root_dir, workspace_id)
    if not ws_dir.is_dir():
        raise NotFoundError(f"workspace does not exist: {ws_dir}")

    identity = repospec.normalize(location)
    alias = alias.strip() or identity.repo
    validate_alias(alias)

    existing, _ = workspace.scan_repos(ws_dir, cancel=cancel)
    for entry in existing:
        if entry.alias == alias:
            raise ConflictError(f"alias already exists in {workspace_id}: {alias}")
        if entry.repo_key and entry.repo_key == identity.key:
            raise ConflictError(f"repo already exists in {workspace_id}: {identity.key}")

    target = ws_dir / alias
    if target.exists():
        raise ConflictError(f"worktree already exists: {target}")

    return identity, alias, target


def _resolve_store(
    root_dir: Path, location: str, fetch: bool, *, cancel: threading.Event | None
) -> RepoStore:
    _, present = repostore.exists(root_dir, location)
    if present:
        return repostore.open_store(root_dir, location, fetch=fetch, cancel=cancel)
    return repostore.get(root_dir, location, cancel=cancel)


def add(
    root_dir: Path,
    workspace_id: str,
    location: str,
    alias: str = "",
    branch: str = "",
    base_ref: str = "",
    fetch: bool = False,
    *,
    cancel: threading.Event | None = None,
) -> RepoEntry:
    """
    Add a working tree for a repo to a workspace.

    An existing local branch is checked out as is; otherwise a new branch is
    created from base_ref, or from the resolved default base ref.

    Args:
        root_dir: gws root directory.
        workspace_id: Target workspace.
        location: Repository location.
        alias: Directory name in the workspace; defaults to the repo name.
        branch: Branch to check out; defaults to the workspace ID.
        base_ref: Start point for a new branch.
        fetch: Force a fetch of the store first.
        cancel: Optional cancellation signal.

    Returns:
        RepoEntry for the new working tree.

    Raises:
        ValidationError: Illegal branch, alias or workspace ID, or malformed location.
        NotFoundError: Missing workspace.
        ConflictError: Duplicate alias or identity in the workspace.
        BaseRefNotFoundError: No base ref could be resolved.
    """
    branch = branch.strip() or workspace_id
    identity, alias, target = _prepare(root_dir, workspace_id, location, alias, branch, cancel=cancel)

    store = _resolve_store(root_dir, location, fetch, cancel=cancel)

    used_base: str | None = None
    if branch_exists(store.store_path, branch, cancel=cancel):
        gitcmd.log_command("worktree", "add", target, branch)
        gitcmd.run_git(
            ["worktree", "add", target, branch],
            cwd=store.store_path,
            show_output=True,
            cancel=cancel,
        )
    else:
        used_base = base_ref.strip() or resolve_base_ref(store.store_path, cancel=cancel)
        gitcmd.log_command("worktree", "add", "-b", branch, target, used_base)
        gitcmd.run_git(
            ["worktree", "add", "-b", branch, target, used_base],
            cwd=store.store_path,
            show_output=True,
            cancel=cancel,
        )

    return RepoEntry(
        alias=alias,
        worktree_path=target,
        repo_spec=location.strip(),
        repo_key=identity.key,
        store_path=store.store_path,
        branch=branch,
        base_ref=used_base,
    )


def add_tracking(
    root_dir: Path,
    workspace_id: str,
    location: str,
    alias: str,
    branch: str,
    remote_ref: str,
    fetch: bool = False,
    *,
    cancel: threading.Event | None = None,
) -> RepoEntry:
    """
    Add a working tree on a new branch that tracks a remote-tracking ref.

    The branch is fetched from origin first so the ref is current.

    Raises:
        RefNotFoundError: If remote_ref is not a remote-tracking ref or does not exist.
        GitCommandError: If the branch cannot be fetched from origin.
    """
    branch = branch.strip()
    remote_ref = remote_ref.strip()
    if not remote_ref.startswith("refs/remotes/"):
        raise RefNotFoundError(remote_ref, f"not a remote-tracking ref: {remote_ref!r}")
    identity, alias, target = _prepare(root_dir, workspace_id, location, alias, branch, cancel=cancel)

    store = _resolve_store(root_dir, location, fetch, cancel=cancel)
    remote_branch = remote_ref.removeprefix("refs/remotes/origin/")
    gitcmd.log_command("fetch", "origin", remote_branch)
    gitcmd.run_git(["fetch", "origin", remote_branch], cwd=store.store_path, cancel=cancel)

    lookup = gitcmd.show_ref(store.store_path, remote_ref, cancel=cancel)
    if lookup.error is not None:
        raise lookup.error
    if not lookup.found:
        raise RefNotFoundError(remote_ref)

    gitcmd.log_command("worktree", "add", "-b", branch, "--track", target, remote_ref)
    gitcmd.run_git(
        ["worktree", "add", "-b", branch, "--track", target, remote_ref],
        cwd=store.store_path,
        show_output=True,
        cancel=cancel,
    )
    return RepoEntry(
        alias=alias,
        worktree_path=target,
        repo_spec=location.strip(),
        repo_key=identity.key,
        store_path=store.store_path,
        branch=branch,
        base_ref=remote_ref,
    )


def remove_repo(
    root_dir: Path,
    workspace_id: str,
    alias: str,
    allow_dirty: bool = False,
    allow_status_error: bool = False,
    *,
    cancel: threading.Event | None = None,
) -> None:
    """
    Remove one alias's working tree from a workspace.

    Raises:
        NotFoundError: If the workspace or alias does not exist.
        StatusError: If status cannot be read and allow_status_error is False.
        DirtyWorkingTreeError: If the tree is dirty and allow_dirty is False.
    """
    entry = workspace.find_repo(root_dir, workspace_id, alias, cancel=cancel)
    if entry.store_path is None:
        raise ValidationError(f"{alias} is not a working tree of a repo store")

    current = status.repo_status(entry.alias, entry.worktree_path, entry.branch, cancel=cancel)
    if current.error is not None:
        if not allow_status_error:
            raise StatusError(alias, current.error)
        logger.warning("removing %s without status: %s", alias, current.error)
    elif current.dirty and not allow_dirty:
        raise DirtyWorkingTreeError(alias)

    try:
        gitcmd.worktree_remove(entry.store_path, entry.worktree_path, force=allow_dirty, cancel=cancel)
    except GitError as e:
        raise GitError(e.command, f"remove worktree {alias!r}: {e}") from e


def rename_branch(
    root_dir: Path,
    workspace_id: str,
    alias: str,
    from_branch: str,
    to_branch: str,
    *,
    cancel: threading.Event | None = None,
) -> None:
    """
    Rename the branch checked out in an alias's working tree, keeping the tree.

    Raises:
        NotFoundError: If the working tree does not exist.
        ValidationError: If to_branch is not a legal branch name.
        ConflictError: If the working tree is not on from_branch.
    """
    from_branch = from_branch.strip()
    to_branch = to_branch.strip()
    validate_branch_name(to_branch)

    target = workspace.worktree_path(root_dir, workspace_id, alias)
    if not target.is_dir():
        raise NotFoundError(f"worktree does not exist: {target}")

    current = gitcmd.rev_parse(target, "--abbrev-ref", "HEAD", cancel=cancel)
    if current != from_branch:
        raise ConflictError(f"cannot rename branch: {alias} is on {current!r}, want {from_branch!r}")

    gitcmd.branch_move(target, from_branch, to_branch, cancel=cancel)
