# ABOUTME: Data models for gws workspaces, repo stores and apply plans.
# ABOUTME: Defines RepoIdentity, RepoEntry, status/state types and change records.
"""Data models for gws."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class RepoIdentity:
    """Canonical identity of a remote repository."""

    host: str
    owner: str
    repo: str

    @property
    def key(self) -> str:
        """Stable "host/owner/repo" key shared by every URL syntax."""
        return f"{self.host}/{self.owner}/{self.repo}"


@dataclass(frozen=True)
class RepoStore:
    """The single bare mirror for an identity."""

    identity: RepoIdentity
    store_path: Path
    remote_url: str

    @property
    def repo_key(self) -> str:
        return self.identity.key


@dataclass(frozen=True)
class StoreEntry:
    """A bare store found on disk."""

    repo_key: str
    store_path: Path


@dataclass
class WorkspaceMetadata:
    """Sidecar metadata stored with a workspace."""

    description: str = ""
    mode: str = ""
    preset_name: str = ""
    source_url: str = ""
    base_branch: str = ""

    def is_empty(self) -> bool:
        return not (
            self.description or self.mode or self.preset_name or self.source_url or self.base_branch
        )


@dataclass
class WorkspaceEntry:
    """A workspace directory found under the workspaces root."""

    workspace_id: str
    path: Path
    description: str = ""


@dataclass
class RepoEntry:
    """One alias's working tree inside a workspace."""

    alias: str
    worktree_path: Path
    repo_spec: str = ""
    repo_key: str = ""
    store_path: Path | None = None
    branch: str = ""
    base_ref: str | None = None  # set when the branch was created by gws


@dataclass
class ParsedStatus:
    """Facts extracted from ``git status --porcelain=v2 -b``."""

    branch: str = ""
    upstream: str = ""
    head: str = ""
    detached: bool = False
    head_missing: bool = False
    dirty: bool = False
    untracked: int = 0
    staged: int = 0
    unstaged: int = 0
    unmerged: int = 0
    ahead: int = 0
    behind: int = 0


@dataclass
class RepoStatus:
    """Live status of one working tree."""

    alias: str
    worktree_path: Path
    branch: str = ""
    upstream: str = ""
    head: str = ""
    dirty: bool = False
    untracked_count: int = 0
    staged_count: int = 0
    unstaged_count: int = 0
    unmerged_count: int = 0
    ahead_count: int = 0
    behind_count: int = 0
    raw_status: str = ""
    error: Exception | None = None


@dataclass
class StatusResult:
    """Status of every member of a workspace."""

    workspace_id: str
    repos: list[RepoStatus] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class StateKind(str, enum.Enum):
    """Risk classification shared by repos and workspaces."""

    CLEAN = "clean"
    DIRTY = "dirty"
    UNPUSHED = "unpushed"
    DIVERGED = "diverged"
    UNKNOWN = "unknown"


@dataclass
class RepoState:
    """Classified state of one working tree."""

    alias: str
    worktree_path: Path
    kind: StateKind
    upstream: str = ""
    ahead_count: int = 0
    behind_count: int = 0
    staged_count: int = 0
    unstaged_count: int = 0
    untracked_count: int = 0
    unmerged_count: int = 0
    error: Exception | None = None


@dataclass
class WorkspaceState:
    """Aggregate risk classification over all member repos."""

    workspace_id: str
    kind: StateKind
    repos: list[RepoState] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# Desired-state document


@dataclass
class ManifestRepo:
    """A member repo declared for a workspace."""

    repo: str  # location string (ssh, https or file URL)
    alias: str = ""
    branch: str = ""
    base_ref: str = ""


@dataclass
class ManifestWorkspace:
    """A workspace declared in the desired-state document."""

    description: str = ""
    mode: str = ""
    preset_name: str = ""
    source_url: str = ""
    repos: list[ManifestRepo] = field(default_factory=list)

    def metadata(self) -> WorkspaceMetadata:
        return WorkspaceMetadata(
            description=self.description,
            mode=self.mode,
            preset_name=self.preset_name,
            source_url=self.source_url,
        )

    def find_repo(self, alias: str) -> ManifestRepo | None:
        for entry in self.repos:
            if entry.alias.strip() == alias.strip():
                return entry
        return None


@dataclass
class Manifest:
    """Desired state: workspace ID to declared workspace."""

    workspaces: dict[str, ManifestWorkspace] = field(default_factory=dict)


# Change records


class WorkspaceChangeKind(str, enum.Enum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


class RepoChangeKind(str, enum.Enum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(frozen=True)
class RepoChange:
    """A planned mutation of one workspace member."""

    kind: RepoChangeKind
    alias: str
    from_repo: str = ""
    from_branch: str = ""
    to_repo: str = ""
    to_branch: str = ""


@dataclass(frozen=True)
class WorkspaceChange:
    """A planned mutation of one workspace."""

    kind: WorkspaceChangeKind
    workspace_id: str
    repos: tuple[RepoChange, ...] = ()


@dataclass
class Plan:
    """Externally computed change list plus the desired state it targets."""

    desired: Manifest
    changes: list[WorkspaceChange] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)
