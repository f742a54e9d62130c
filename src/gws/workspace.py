# ABOUTME: Workspace directory and metadata management for gws.
# ABOUTME: Creates, scans, inspects and removes workspaces and their member worktrees.
"""Workspace operations for gws."""

from __future__ import annotations

import json
import logging
import shutil
import threading
from pathlib import Path, PurePath
from urllib.parse import urlparse

from gws import gitcmd, repospec, status
from gws.errors import (
    ConflictError,
    DirtyWorkingTreeError,
    GwsError,
    NotFoundError,
    StatusError,
    ValidationError,
)
from gws.models import (
    RepoEntry,
    StatusResult,
    WorkspaceEntry,
    WorkspaceMetadata,
    WorkspaceState,
)

logger = logging.getLogger(__name__)

METADATA_DIR_NAME = ".gws"
METADATA_FILE_NAME = "metadata.json"

MODE_PRESET = "preset"
MODE_REPO = "repo"
MODE_REVIEW = "review"
MODE_ISSUE = "issue"
MODE_RESUME = "resume"
MODE_ADD = "add"
METADATA_MODES = frozenset({MODE_PRESET, MODE_REPO, MODE_REVIEW, MODE_ISSUE, MODE_RESUME, MODE_ADD})


def workspaces_root(root_dir: Path) -> Path:
    """Get the directory holding every workspace."""
    return Path(root_dir) / "workspaces"


def workspace_dir(root_dir: Path, workspace_id: str) -> Path:
    """Get the directory of a workspace."""
    return workspaces_root(root_dir) / workspace_id


def worktree_path(root_dir: Path, workspace_id: str, alias: str) -> Path:
    """Get the working tree path of an alias inside a workspace."""
    return workspace_dir(root_dir, workspace_id) / alias


def validate_workspace_id(workspace_id: str) -> None:
    """
    Check a workspace ID.

    IDs double as branch names, so they must be legal git branch names, and they
    name a directory, so they must not contain separators or traversal.

    Raises:
        ValidationError: If the ID is not acceptable.
    """
    if not workspace_id:
        raise ValidationError("workspace id is required")
    if "/" in workspace_id or "\\" in workspace_id:
        raise ValidationError("invalid workspace id: must not contain path separators")
    if workspace_id in (".", "..") or str(PurePath(workspace_id)) != workspace_id:
        raise ValidationError("invalid workspace id: must not contain path traversal")
    if not gitcmd.check_ref_format_branch(workspace_id):
        raise ValidationError(f"invalid workspace id: {workspace_id!r} is not a valid branch name")


# Metadata


def metadata_path(ws_dir: Path) -> Path:
    return Path(ws_dir) / METADATA_DIR_NAME / METADATA_FILE_NAME


def _normalize_metadata(meta: WorkspaceMetadata) -> WorkspaceMetadata:
    return WorkspaceMetadata(
        description=meta.description.strip(),
        mode=meta.mode.strip(),
        preset_name=meta.preset_name.strip(),
        source_url=meta.source_url.strip(),
        base_branch=meta.base_branch.strip(),
    )


def validate_metadata(meta: WorkspaceMetadata) -> None:
    """
    Check metadata values.

    Raises:
        ValidationError: If a field has an unsupported value.
    """
    if meta.mode and meta.mode not in METADATA_MODES:
        raise ValidationError(f"unsupported metadata mode: {meta.mode}")
    if meta.mode == MODE_PRESET and not meta.preset_name:
        raise ValidationError("metadata preset_name is required for preset mode")
    if meta.source_url:
        parsed = urlparse(meta.source_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValidationError(f"invalid metadata source_url: {meta.source_url}")
    if meta.base_branch:
        if any(c.isspace() for c in meta.base_branch):
            raise ValidationError(f"invalid metadata base_branch: {meta.base_branch}")
        if not meta.base_branch.startswith("origin/") or meta.base_branch == "origin/":
            raise ValidationError(
                f"invalid metadata base_branch (must be origin/<branch>): {meta.base_branch}"
            )


def load_metadata(ws_dir: Path) -> WorkspaceMetadata:
    """
    Load workspace metadata.

    Returns:
        The metadata, empty if no metadata file exists.

    Raises:
        ValidationError: If the file cannot be parsed.
    """
    path = metadata_path(ws_dir)
    if not path.exists():
        return WorkspaceMetadata()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValidationError(f"parse metadata {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"parse metadata {path}: expected an object")
    return WorkspaceMetadata(
        description=str(data.get("description", "")),
        mode=str(data.get("mode", "")),
        preset_name=str(data.get("preset_name", "")),
        source_url=str(data.get("source_url", "")),
        base_branch=str(data.get("base_branch", "")),
    )


def save_metadata(ws_dir: Path, meta: WorkspaceMetadata) -> None:
    """
    Save workspace metadata; empty fields are omitted and empty metadata writes nothing.
    """
    meta = _normalize_metadata(meta)
    if meta.is_empty():
        return
    validate_metadata(meta)

    data = {
        key: value
        for key, value in (
            ("description", meta.description),
            ("mode", meta.mode),
            ("preset_name", meta.preset_name),
            ("source_url", meta.source_url),
            ("base_branch", meta.base_branch),
        )
        if value
    }
    path = metadata_path(ws_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")


def record_base_branch(root_dir: Path, workspace_id: str, base_branch: str) -> None:
    """Record the base branch in metadata unless one is already recorded."""
    base_branch = base_branch.strip()
    if not base_branch:
        return
    ws_dir = workspace_dir(root_dir, workspace_id)
    meta = load_metadata(ws_dir)
    if meta.base_branch.strip():
        return
    meta.base_branch = base_branch
    save_metadata(ws_dir, meta)


# Lifecycle


def new(root_dir: Path, workspace_id: str, metadata: WorkspaceMetadata | None = None) -> Path:
    """
    Create a workspace directory.

    Raises:
        ValidationError: If the ID or metadata is invalid.
        ConflictError: If the workspace already exists.
    """
    validate_workspace_id(workspace_id)
    if metadata is not None:
        validate_metadata(_normalize_metadata(metadata))

    ws_dir = workspace_dir(root_dir, workspace_id)
    if ws_dir.exists():
        raise ConflictError(f"workspace already exists: {ws_dir}")

    ws_dir.mkdir(parents=True)
    if metadata is not None:
        save_metadata(ws_dir, metadata)
    logger.debug("created workspace %s", ws_dir)
    return ws_dir


def list_workspaces(root_dir: Path) -> tuple[list[WorkspaceEntry], list[str]]:
    """
    List workspaces under the root.

    Returns:
        Tuple of (workspace entries sorted by ID, warning messages).
    """
    root = workspaces_root(root_dir)
    if not root.is_dir():
        return [], []

    entries: list[WorkspaceEntry] = []
    warnings: list[str] = []
    for item in sorted(root.iterdir()):
        if not item.is_dir():
            continue
        description = ""
        try:
            description = load_metadata(item).description.strip()
        except (ValidationError, OSError) as e:
            warnings.append(f"workspace {item.name} metadata: {e}")
        entries.append(WorkspaceEntry(workspace_id=item.name, path=item, description=description))

    return entries, warnings


def _resolve_git_path(repo_path: Path, value: str) -> Path | None:
    if not value.strip():
        return None
    path = Path(value)
    if not path.is_absolute():
        path = repo_path / path
    return path.resolve()


def inspect_repo(
    repo_path: Path, alias: str, *, cancel: threading.Event | None = None
) -> tuple[RepoEntry, str | None]:
    """
    Read the facts of one workspace member.

    Returns:
        Tuple of (RepoEntry, warning or None).

    Raises:
        GwsError: If the directory is not a usable git working tree.
    """
    git_dir = _resolve_git_path(repo_path, gitcmd.rev_parse(repo_path, "--git-dir", cancel=cancel))
    common_dir = _resolve_git_path(
        repo_path, gitcmd.rev_parse(repo_path, "--git-common-dir", cancel=cancel)
    )
    store = common_dir if common_dir is not None and common_dir != git_dir else None

    branch = ""
    head = gitcmd.symbolic_ref(repo_path, "HEAD", cancel=cancel)
    if head.found:
        branch = head.value.removeprefix("refs/heads/")

    entry = RepoEntry(alias=alias, worktree_path=repo_path, store_path=store, branch=branch)
    warning: str | None = None
    try:
        remote_url = gitcmd.remote_get_url(repo_path, "origin")
    except GwsError as e:
        return entry, f"{alias}: origin remote missing: {e}"
    entry.repo_spec = remote_url
    identity = repospec.try_normalize(remote_url)
    if identity is None:
        warning = f"{alias}: origin remote invalid: {remote_url}"
    else:
        entry.repo_key = identity.key
    return entry, warning


def scan_repos(
    ws_dir: Path, *, cancel: threading.Event | None = None
) -> tuple[list[RepoEntry], list[str]]:
    """
    Scan a workspace directory for member working trees.

    Returns:
        Tuple of (repo entries sorted by alias, warning messages).
    """
    repos: list[RepoEntry] = []
    warnings: list[str] = []
    for item in sorted(Path(ws_dir).iterdir()):
        if not item.is_dir() or item.name == METADATA_DIR_NAME:
            continue
        if not (item / ".git").exists():
            warnings.append(f"skip {item}: not a git repo")
            continue
        try:
            entry, warning = inspect_repo(item, item.name, cancel=cancel)
        except GwsError as e:
            warnings.append(f"skip {item}: {e}")
            continue
        if warning:
            warnings.append(warning)
        repos.append(entry)
    return repos, warnings


def find_repo(
    root_dir: Path, workspace_id: str, alias: str, *, cancel: threading.Event | None = None
) -> RepoEntry:
    """
    Resolve an alias to its RepoEntry.

    Raises:
        NotFoundError: If the workspace or alias does not exist.
    """
    ws_dir = workspace_dir(root_dir, workspace_id)
    if not ws_dir.is_dir():
        raise NotFoundError(f"workspace does not exist: {ws_dir}")
    repos, _ = scan_repos(ws_dir, cancel=cancel)
    for entry in repos:
        if entry.alias == alias:
            return entry
    raise NotFoundError(f"repo not found in workspace {workspace_id}: {alias}")


def workspace_status(
    root_dir: Path, workspace_id: str, *, cancel: threading.Event | None = None
) -> StatusResult:
    """
    Collect status for every member of a workspace.

    Raises:
        NotFoundError: If the workspace does not exist.
    """
    ws_dir = workspace_dir(root_dir, workspace_id)
    if not ws_dir.is_dir():
        raise NotFoundError(f"workspace does not exist: {ws_dir}")

    repos, warnings = scan_repos(ws_dir, cancel=cancel)
    result = StatusResult(workspace_id=workspace_id, warnings=warnings)
    for entry in repos:
        result.repos.append(
            status.repo_status(entry.alias, entry.worktree_path, entry.branch, cancel=cancel)
        )
    return result


def workspace_state(
    root_dir: Path, workspace_id: str, *, cancel: threading.Event | None = None
) -> WorkspaceState:
    return status.state_from_status(workspace_status(root_dir, workspace_id, cancel=cancel))


def remove(
    root_dir: Path,
    workspace_id: str,
    allow_dirty: bool = False,
    allow_status_error: bool = False,
    *,
    cancel: threading.Event | None = None,
) -> None:
    """
    Remove a workspace and every member working tree.

    Every member is checked before anything is removed.

    Raises:
        NotFoundError: If the workspace does not exist.
        StatusError: If a member's status cannot be read and allow_status_error is False.
        DirtyWorkingTreeError: If a member is dirty and allow_dirty is False.
    """
    validate_workspace_id(workspace_id)
    ws_dir = workspace_dir(root_dir, workspace_id)
    if not ws_dir.is_dir():
        raise NotFoundError(f"workspace does not exist: {ws_dir}")

    repos, warnings = scan_repos(ws_dir, cancel=cancel)
    for warning in warnings:
        logger.warning(warning)

    for entry in repos:
        current = status.repo_status(entry.alias, entry.worktree_path, entry.branch, cancel=cancel)
        if current.error is not None:
            if not allow_status_error:
                raise StatusError(entry.alias, current.error)
            continue
        if current.dirty and not allow_dirty:
            raise DirtyWorkingTreeError(
                entry.alias, f"workspace {workspace_id} has dirty changes: {entry.alias}"
            )

    for entry in repos:
        if entry.store_path is None:
            continue
        gitcmd.worktree_remove(entry.store_path, entry.worktree_path, force=allow_dirty, cancel=cancel)

    shutil.rmtree(ws_dir)
    logger.debug("removed workspace %s", ws_dir)
