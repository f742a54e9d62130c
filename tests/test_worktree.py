# ABOUTME: Integration tests for adding and removing aliased working trees.
# ABOUTME: Tests base ref resolution, conflicts, tracking adds, branch renames and guarded removal.
"""Tests for gws.worktree."""

from pathlib import Path

import pytest

from conftest import Remote, git, make_remote
from gws import gitcmd, repostore, workspace, worktree
from gws.errors import (
    BaseRefNotFoundError,
    ConflictError,
    DirtyWorkingTreeError,
    GitCommandError,
    NotFoundError,
    RefNotFoundError,
    StatusError,
    ValidationError,
)


def bare_with_commit(tmp_path: Path, remote: Remote, name: str = "store.git") -> tuple[Path, str]:
    """Create an empty bare repo holding the remote's objects but no refs."""
    store = tmp_path / name
    git("init", "-q", "--bare", str(store))
    git("fetch", "-q", str(remote.path), "main:refs/heads/tmp", cwd=store)
    commit = git("rev-parse", "refs/heads/tmp", cwd=store)
    git("update-ref", "-d", "refs/heads/tmp", cwd=store)
    return store, commit


def detach_head(store: Path, commit: str) -> None:
    (store / "HEAD").write_text(f"{commit}\n")


def failing_status(cwd, *, cancel=None) -> str:
    raise GitCommandError(["git", "status", "--porcelain=v2", "-b"], 128, "fatal: not a git repository")


class TestResolveBaseRef:
    """Tests for resolve_base_ref function."""

    def test_remote_head(self, root: Path, remote: Remote) -> None:
        """origin/HEAD wins when it is recorded."""
        store = repostore.get(root, remote.location)
        assert worktree.resolve_base_ref(store.store_path) == "origin/main"

    def test_local_head_symref(self, tmp_path: Path, remote: Remote) -> None:
        """Without remote tracking info the store's own HEAD is used."""
        store, _ = bare_with_commit(tmp_path, remote)
        git("symbolic-ref", "HEAD", "refs/heads/trunk", cwd=store)
        assert worktree.resolve_base_ref(store) == "refs/heads/trunk"

    def test_local_fallback_branch(self, tmp_path: Path, remote: Remote) -> None:
        """A detached HEAD falls back to a local main/master/develop."""
        store, commit = bare_with_commit(tmp_path, remote)
        git("update-ref", "refs/heads/develop", commit, cwd=store)
        git("update-ref", "refs/heads/master", commit, cwd=store)
        detach_head(store, commit)
        assert worktree.resolve_base_ref(store) == "refs/heads/master"

    def test_remote_fallback_branch(self, tmp_path: Path, remote: Remote) -> None:
        """Remote-tracking fallbacks come after every local one."""
        store, commit = bare_with_commit(tmp_path, remote)
        git("update-ref", "refs/remotes/origin/develop", commit, cwd=store)
        detach_head(store, commit)
        assert worktree.resolve_base_ref(store) == "origin/develop"

    def test_nothing_found(self, tmp_path: Path, remote: Remote) -> None:
        store, commit = bare_with_commit(tmp_path, remote)
        detach_head(store, commit)
        with pytest.raises(BaseRefNotFoundError):
            worktree.resolve_base_ref(store)


class TestValidateBranchName:
    """Tests for validate_branch_name function."""

    def test_valid(self) -> None:
        worktree.validate_branch_name("feature/login")

    @pytest.mark.parametrize("name", ["", "  ", "bad..name", "ends.lock", "-flag", "has space"])
    def test_invalid(self, name: str) -> None:
        with pytest.raises(ValidationError):
            worktree.validate_branch_name(name)


class TestAdd:
    """Tests for add function."""

    def test_new_branch_from_default(self, root: Path, remote: Remote) -> None:
        """The branch defaults to the workspace ID and starts at origin/HEAD."""
        workspace.new(root, "task")
        entry = worktree.add(root, "task", remote.location)

        assert entry.alias == "repo"
        assert entry.branch == "task"
        assert entry.base_ref == "origin/main"
        assert entry.repo_key == "example.com/org/repo"
        assert entry.worktree_path == root / "workspaces" / "task" / "repo"
        assert git("rev-parse", "--abbrev-ref", "HEAD", cwd=entry.worktree_path) == "task"
        assert (entry.worktree_path / "README.md").exists()

    def test_alias_and_base(self, root: Path, remote: Remote) -> None:
        """An explicit base ref is used as the start point."""
        remote.create_branch("release")
        release_hash = remote.commit("release.txt", branch="release")
        workspace.new(root, "task")

        entry = worktree.add(root, "task", remote.location, alias="api", branch="fix", base_ref="origin/release")

        assert entry.worktree_path.name == "api"
        assert entry.base_ref == "origin/release"
        assert git("rev-parse", "HEAD", cwd=entry.worktree_path) == release_hash

    def test_existing_branch(self, root: Path, remote: Remote) -> None:
        """An existing local branch is checked out without creating a new one."""
        workspace.new(root, "task")
        entry = worktree.add(root, "task", remote.location, branch="main")
        assert entry.base_ref is None
        assert git("rev-parse", "--abbrev-ref", "HEAD", cwd=entry.worktree_path) == "main"

    def test_missing_workspace(self, root: Path, remote: Remote) -> None:
        with pytest.raises(NotFoundError):
            worktree.add(root, "nope", remote.location)

    def test_invalid_branch(self, root: Path, remote: Remote) -> None:
        workspace.new(root, "task")
        with pytest.raises(ValidationError):
            worktree.add(root, "task", remote.location, branch="bad..name")
        assert not (root / "bare").exists()

    @pytest.mark.parametrize("alias", ["../escape", "a/b", "a\\b", "..", ".gws"])
    def test_invalid_alias(self, root: Path, remote: Remote, alias: str) -> None:
        """Aliases must name one directory inside the workspace, outside the metadata dir."""
        workspace.new(root, "task")
        with pytest.raises(ValidationError):
            worktree.add(root, "task", remote.location, alias=alias)
        assert not (root / "bare").exists()
        assert not (root / "workspaces" / "escape").exists()
        assert not (root / "workspaces" / "task" / ".gws").exists()

    def test_dotted_alias_allowed(self, root: Path, remote: Remote) -> None:
        """A leading dot is fine when it is not the metadata directory."""
        workspace.new(root, "task")
        entry = worktree.add(root, "task", remote.location, alias=".github")
        assert entry.worktree_path == root / "workspaces" / "task" / ".github"
        assert (entry.worktree_path / "README.md").exists()

    def test_duplicate_alias(self, root: Path, tmp_path: Path, remote: Remote) -> None:
        """Reusing an alias fails before the other store is even cloned."""
        other = make_remote(tmp_path, owner="team", repo="tool")
        workspace.new(root, "task")
        worktree.add(root, "task", remote.location, alias="app")

        with pytest.raises(ConflictError):
            worktree.add(root, "task", other.location, alias="app")
        assert not (root / "bare" / "example.com" / "team").exists()

    def test_duplicate_identity(self, root: Path, remote: Remote) -> None:
        """A second alias for the same repo is rejected without touching disk."""
        workspace.new(root, "task")
        worktree.add(root, "task", remote.location)
        before = sorted(p.name for p in (root / "workspaces" / "task").iterdir())

        with pytest.raises(ConflictError):
            worktree.add(root, "task", "https://example.com/org/repo", alias="second")
        assert sorted(p.name for p in (root / "workspaces" / "task").iterdir()) == before

    def test_target_exists(self, root: Path, remote: Remote) -> None:
        workspace.new(root, "task")
        (root / "workspaces" / "task" / "repo").mkdir()
        with pytest.raises(ConflictError):
            worktree.add(root, "task", remote.location)


class TestAddTracking:
    """Tests for add_tracking function."""

    def test_tracks_remote_branch(self, root: Path, remote: Remote) -> None:
        remote.create_branch("review-me")
        workspace.new(root, "review")

        entry = worktree.add_tracking(
            root, "review", remote.location, "repo", "review-me", "refs/remotes/origin/review-me"
        )

        assert entry.branch == "review-me"
        upstream = git("rev-parse", "--abbrev-ref", "review-me@{upstream}", cwd=entry.worktree_path)
        assert upstream == "origin/review-me"

    def test_not_remote_ref(self, root: Path, remote: Remote) -> None:
        workspace.new(root, "review")
        with pytest.raises(RefNotFoundError):
            worktree.add_tracking(root, "review", remote.location, "repo", "x", "refs/heads/x")

    def test_missing_remote_branch(self, root: Path, remote: Remote) -> None:
        workspace.new(root, "review")
        with pytest.raises(GitCommandError):
            worktree.add_tracking(
                root, "review", remote.location, "repo", "gone", "refs/remotes/origin/gone"
            )

    def test_stale_remote_ref_is_not_used(self, root: Path, remote: Remote) -> None:
        """A branch deleted on the remote fails even if the store still has its tracking ref."""
        remote.create_branch("gone")
        store = repostore.get(root, remote.location).store_path
        git("fetch", "-q", "origin", "+refs/heads/gone:refs/remotes/origin/gone", cwd=store)
        git("show-ref", "--verify", "refs/remotes/origin/gone", cwd=store)
        git("branch", "-D", "gone", cwd=remote.path)
        workspace.new(root, "review")

        with pytest.raises(GitCommandError):
            worktree.add_tracking(
                root, "review", remote.location, "repo", "gone", "refs/remotes/origin/gone"
            )
        assert not (root / "workspaces" / "review" / "repo").exists()


class TestRemoveRepo:
    """Tests for remove_repo function."""

    @pytest.fixture
    def entry_path(self, root: Path, remote: Remote) -> Path:
        workspace.new(root, "task")
        return worktree.add(root, "task", remote.location).worktree_path

    def test_clean(self, root: Path, entry_path: Path) -> None:
        worktree.remove_repo(root, "task", "repo")
        assert not entry_path.exists()

    def test_dirty_refused(self, root: Path, entry_path: Path) -> None:
        (entry_path / "scratch.txt").write_text("wip\n")
        with pytest.raises(DirtyWorkingTreeError) as exc_info:
            worktree.remove_repo(root, "task", "repo")
        assert exc_info.value.alias == "repo"
        assert entry_path.exists()

    def test_dirty_allowed(self, root: Path, entry_path: Path) -> None:
        (entry_path / "scratch.txt").write_text("wip\n")
        worktree.remove_repo(root, "task", "repo", allow_dirty=True)
        assert not entry_path.exists()

    def test_missing_alias(self, root: Path, entry_path: Path) -> None:
        with pytest.raises(NotFoundError):
            worktree.remove_repo(root, "task", "other")

    def test_status_error_refused(
        self, root: Path, entry_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A tree whose status cannot be read is kept unless the error is allowed."""
        monkeypatch.setattr(gitcmd, "status_porcelain_v2", failing_status)
        with pytest.raises(StatusError) as exc_info:
            worktree.remove_repo(root, "task", "repo")
        assert exc_info.value.alias == "repo"
        assert entry_path.exists()

    def test_status_error_allowed(
        self, root: Path, entry_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(gitcmd, "status_porcelain_v2", failing_status)
        worktree.remove_repo(root, "task", "repo", allow_status_error=True)
        assert not entry_path.exists()

    def test_readd_after_remove(self, root: Path, remote: Remote, entry_path: Path) -> None:
        """An alias can be reused once its working tree is gone."""
        worktree.remove_repo(root, "task", "repo")
        entry = worktree.add(root, "task", remote.location, branch="again")
        assert entry.worktree_path == entry_path


class TestRenameBranch:
    """Tests for rename_branch function."""

    @pytest.fixture
    def entry_path(self, root: Path, remote: Remote) -> Path:
        workspace.new(root, "task")
        return worktree.add(root, "task", remote.location, branch="old-name").worktree_path

    def test_renames_in_place(self, root: Path, entry_path: Path) -> None:
        """The tree and its untracked files survive a branch rename."""
        (entry_path / "notes.txt").write_text("keep me\n")

        worktree.rename_branch(root, "task", "repo", "old-name", "new-name")

        assert git("rev-parse", "--abbrev-ref", "HEAD", cwd=entry_path) == "new-name"
        assert (entry_path / "notes.txt").read_text() == "keep me\n"

    def test_wrong_current_branch(self, root: Path, entry_path: Path) -> None:
        with pytest.raises(ConflictError):
            worktree.rename_branch(root, "task", "repo", "something-else", "new-name")
        assert git("rev-parse", "--abbrev-ref", "HEAD", cwd=entry_path) == "old-name"

    def test_invalid_new_name(self, root: Path, entry_path: Path) -> None:
        with pytest.raises(ValidationError):
            worktree.rename_branch(root, "task", "repo", "old-name", "bad..name")

    def test_missing_worktree(self, root: Path, entry_path: Path) -> None:
        with pytest.raises(NotFoundError):
            worktree.rename_branch(root, "task", "other", "old-name", "new-name")
