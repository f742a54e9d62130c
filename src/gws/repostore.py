# ABOUTME: Bare repo store management for gws.
# ABOUTME: Clones, synchronizes and prunes the shared bare mirror for each repo identity.
"""Repo store operations for gws."""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path

from gws import gitcmd, repospec
from gws.errors import GitCommandError, NotFoundError
from gws.models import RepoIdentity, RepoStore, StoreEntry

logger = logging.getLogger(__name__)

FETCH_REFSPEC = "+refs/heads/*:refs/remotes/origin/*"
REMOTE_PREFIX = "refs/remotes/origin/"
HEADS_PREFIX = "refs/heads/"


def bare_root(root_dir: Path) -> Path:
    """Get the directory holding every bare store."""
    return Path(root_dir) / "bare"


def src_root(root_dir: Path) -> Path:
    """Get the directory holding the src convenience clones."""
    return Path(root_dir) / "src"


def store_path(root_dir: Path, identity: RepoIdentity) -> Path:
    """Get the bare store path for an identity: <root>/bare/<host>/<owner>/<repo>.git."""
    return bare_root(root_dir) / identity.host / identity.owner / f"{identity.repo}.git"


def src_path(root_dir: Path, identity: RepoIdentity) -> Path:
    """Get the src clone path for an identity: <root>/src/<host>/<owner>/<repo>."""
    return src_root(root_dir) / identity.host / identity.owner / identity.repo


def exists(root_dir: Path, location: str) -> tuple[Path, bool]:
    """
    Check whether the bare store for a location exists.

    Returns:
        Tuple of (store path, exists).
    """
    identity = repospec.normalize(location)
    path = store_path(root_dir, identity)
    return path, path.is_dir()


def get(root_dir: Path, location: str, *, cancel: threading.Event | None = None) -> RepoStore:
    """
    Get the repo store for a location, cloning a bare mirror if needed.

    The store is synchronized and the src convenience clone is ensured.

    Args:
        root_dir: gws root directory.
        location: Repository location (ssh, https or file URL).
        cancel: Optional cancellation signal.

    Returns:
        The RepoStore.
    """
    identity = repospec.normalize(location)
    remote_url = location.strip()
    path = store_path(root_dir, identity)

    if not path.is_dir():
        path.parent.mkdir(parents=True, exist_ok=True)
        gitcmd.log_command("clone", "--bare", remote_url, path)
        gitcmd.run_git(["clone", "--bare", remote_url, path], cancel=cancel)

    normalize_store(path, fetch=False, cancel=cancel)
    ensure_src(root_dir, identity, path, remote_url, fetch=False, cancel=cancel)

    return RepoStore(identity=identity, store_path=path, remote_url=remote_url)


def open_store(
    root_dir: Path,
    location: str,
    fetch: bool = False,
    *,
    cancel: threading.Event | None = None,
) -> RepoStore:
    """
    Open an existing repo store and synchronize it.

    Args:
        root_dir: gws root directory.
        location: Repository location.
        fetch: Force a network fetch.
        cancel: Optional cancellation signal.

    Raises:
        NotFoundError: If the store has not been created yet.
    """
    identity = repospec.normalize(location)
    remote_url = location.strip()
    path = store_path(root_dir, identity)
    if not path.is_dir():
        raise NotFoundError(f"repo store not found, run: gws repo get {location.strip()}")

    normalize_store(path, fetch=fetch, cancel=cancel)
    return RepoStore(identity=identity, store_path=path, remote_url=remote_url)


def ensure_src(
    root_dir: Path,
    identity: RepoIdentity,
    store: Path,
    remote_url: str,
    fetch: bool = False,
    *,
    cancel: threading.Event | None = None,
) -> Path:
    """
    Ensure the src working copy for an identity exists.

    The clone is made from the local bare store, then its origin is pointed back at
    the real remote.
    """
    path = src_path(root_dir, identity)
    if path.is_dir():
        if fetch:
            gitcmd.log_command("fetch", "--prune")
            gitcmd.run_git(["fetch", "--prune"], cwd=path, cancel=cancel)
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    gitcmd.log_command("clone", store, path)
    gitcmd.run_git(["clone", store, path], cancel=cancel)
    gitcmd.remote_set_url(path, "origin", remote_url, cancel=cancel)
    return path


def needs_fetch(
    requested: bool,
    has_local_tracking: bool,
    local_hash: str | None,
    remote_hash: str | None,
) -> bool:
    """
    Decide whether a store must be fetched.

    Args:
        requested: The caller asked for a fetch.
        has_local_tracking: A remote-tracking ref exists for the default branch.
        local_hash: Hash of the local remote-tracking ref.
        remote_hash: Hash the remote reports for its default branch, if known.
    """
    if requested:
        return True
    if not has_local_tracking:
        return True
    if remote_hash and local_hash != remote_hash:
        return True
    return False


def parse_symref_head(output: str) -> tuple[str | None, str | None]:
    """
    Parse ``git ls-remote --symref origin HEAD`` output.

    Returns:
        Tuple of (default branch name, its hash); either may be None.
    """
    branch: str | None = None
    head_hash: str | None = None
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("ref: ") and line.endswith("\tHEAD"):
            parts = line.split()
            if len(parts) >= 2:
                ref = parts[1].removeprefix(HEADS_PREFIX)
                if ref:
                    branch = ref
            continue
        if line.endswith("\tHEAD"):
            fields = line.split()
            if fields:
                head_hash = fields[0]
    return branch, head_hash


def default_branch_from_remote(
    store: Path, *, cancel: threading.Event | None = None
) -> tuple[str | None, str | None]:
    """Ask the remote for its default branch and that branch's hash."""
    result = gitcmd.run_git(["ls-remote", "--symref", "origin", "HEAD"], cwd=store, cancel=cancel)
    return parse_symref_head(result.stdout)


def local_default_branch(store: Path, *, cancel: threading.Event | None = None) -> str | None:
    """Read the default branch recorded by refs/remotes/origin/HEAD."""
    lookup = gitcmd.symbolic_ref(store, "refs/remotes/origin/HEAD", cancel=cancel)
    if lookup.error is not None:
        raise lookup.error
    if lookup.found and lookup.value.startswith(REMOTE_PREFIX):
        return lookup.value.removeprefix(REMOTE_PREFIX) or None
    return None


def fetch_grace_seconds() -> float:
    """Read GWS_FETCH_GRACE_SECONDS; 0 disables the grace period."""
    raw = os.environ.get("GWS_FETCH_GRACE_SECONDS", "").strip()
    if not raw:
        return 0.0
    try:
        value = float(raw)
    except ValueError:
        return 0.0
    return max(value, 0.0)


def recently_fetched(store: Path, grace: float) -> bool:
    """Check whether the store's FETCH_HEAD is younger than the grace period."""
    if grace <= 0:
        return False
    try:
        mtime = (store / "FETCH_HEAD").stat().st_mtime
    except OSError:
        return False
    return (time.time() - mtime) <= grace


def normalize_store(
    store: Path, fetch: bool = False, *, cancel: threading.Event | None = None
) -> None:
    """
    Synchronize a bare store with its remote.

    Tracks all remote heads, records origin/HEAD, fetches only when the store is stale
    or a fetch was requested, then prunes local branches nobody is using.
    """
    gitcmd.run_git(["config", "remote.origin.fetch", FETCH_REFSPEC], cwd=store, cancel=cancel)

    default_branch = local_default_branch(store, cancel=cancel)
    remote_hash: str | None = None
    if fetch or default_branch is None or not recently_fetched(store, fetch_grace_seconds()):
        remote_branch, remote_hash = default_branch_from_remote(store, cancel=cancel)
        if remote_branch:
            default_branch = remote_branch

    if default_branch:
        result = gitcmd.run_git(
            ["symbolic-ref", "refs/remotes/origin/HEAD", f"{REMOTE_PREFIX}{default_branch}"],
            cwd=store,
            check=False,
            cancel=cancel,
        )
        if not result.ok:
            logger.warning("could not set origin/HEAD in %s: %s", store, result.stderr.strip())

    local_hash: str | None = None
    if default_branch:
        lookup = gitcmd.show_ref(store, f"{REMOTE_PREFIX}{default_branch}", cancel=cancel)
        if lookup.error is not None:
            raise lookup.error
        if lookup.found:
            local_hash = lookup.value

    if needs_fetch(fetch, local_hash is not None, local_hash, remote_hash):
        gitcmd.log_command("fetch", "--prune")
        gitcmd.run_git(["fetch", "--prune"], cwd=store, cancel=cancel)
    else:
        logger.debug("store %s is up to date, skipping fetch", store)

    prune_local_heads(store, default_branch, cancel=cancel)


def worktree_branch_names(store: Path, *, cancel: threading.Event | None = None) -> set[str]:
    """Get the branches currently checked out by the store's working trees."""
    output = gitcmd.worktree_list_porcelain(store, cancel=cancel)
    branches: set[str] = set()
    for raw in output.splitlines():
        line = raw.strip()
        if not line.startswith("branch "):
            continue
        ref = line.removeprefix("branch ").strip()
        if ref.startswith(HEADS_PREFIX):
            name = ref.removeprefix(HEADS_PREFIX)
            if name:
                branches.add(name)
    return branches


def prune_local_heads(
    store: Path, keep_branch: str | None, *, cancel: threading.Event | None = None
) -> list[str]:
    """
    Delete local branches except the default branch and any worktree branch.

    Returns:
        Names of the deleted branches.
    """
    in_use = worktree_branch_names(store, cancel=cancel)
    result = gitcmd.run_git(["show-ref", "--heads"], cwd=store, check=False, cancel=cancel)
    if result.returncode not in (0, 1):
        raise GitCommandError(["git", *result.args], result.returncode, result.stderr)

    deleted: list[str] = []
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) != 2 or not parts[1].startswith(HEADS_PREFIX):
            continue
        ref = parts[1]
        name = ref.removeprefix(HEADS_PREFIX)
        if name == keep_branch or name in in_use:
            continue
        removed = gitcmd.run_git(["update-ref", "-d", ref], cwd=store, check=False, cancel=cancel)
        if removed.ok:
            deleted.append(name)
        else:
            logger.warning("could not prune %s in %s: %s", ref, store, removed.stderr.strip())
    if deleted:
        logger.debug("pruned %d local branches in %s", len(deleted), store)
    return deleted


def prefetch(
    root_dir: Path,
    location: str,
    *,
    cancel: threading.Event | None = None,
    timeout: float | None = None,
) -> None:
    """Fetch an existing store in the background; timeout bounds only the fetch."""
    identity = repospec.normalize(location)
    path = store_path(root_dir, identity)
    if not path.is_dir():
        raise NotFoundError(f"repo store not found: {identity.key}")
    gitcmd.run_git(["config", "remote.origin.fetch", FETCH_REFSPEC], cwd=path, cancel=cancel)
    gitcmd.log_command("fetch", "--prune", f"({identity.key})")
    gitcmd.run_git(["fetch", "--prune"], cwd=path, cancel=cancel, timeout=timeout)


def list_stores(root_dir: Path) -> tuple[list[StoreEntry], list[str]]:
    """
    Scan the bare root for repo stores.

    Returns:
        Tuple of (store entries sorted by key, warning messages).
    """
    root = bare_root(root_dir)
    if not root.is_dir():
        return [], []

    entries: list[StoreEntry] = []
    warnings: list[str] = []

    def on_error(err: OSError) -> None:
        warnings.append(f"cannot read {err.filename}: {err.strerror}")

    for dirpath, dirnames, _ in os.walk(root, onerror=on_error):
        current = Path(dirpath)
        if current != root and current.suffix == ".git":
            rel = current.relative_to(root)
            entries.append(StoreEntry(repo_key=rel.as_posix().removesuffix(".git"), store_path=current))
            dirnames[:] = []

    return sorted(entries, key=lambda e: e.repo_key), warnings


def list_src(root_dir: Path) -> tuple[list[Path], list[str]]:
    """
    Scan the src root for working copies.

    Returns:
        Tuple of (repo directories, warning messages).
    """
    root = src_root(root_dir)
    if not root.is_dir():
        return [], []

    repos: list[Path] = []
    warnings: list[str] = []

    def on_error(err: OSError) -> None:
        warnings.append(f"cannot read {err.filename}: {err.strerror}")

    for dirpath, dirnames, _ in os.walk(root, onerror=on_error):
        current = Path(dirpath)
        if current.name == ".git":
            dirnames[:] = []
            continue
        if current != root and (current / ".git").is_dir():
            repos.append(current)
            dirnames[:] = []

    return sorted(repos), warnings
