# ABOUTME: Shared pytest fixtures for gws tests.
# ABOUTME: Builds throwaway git remotes under file:// URLs and an isolated git environment.
"""Shared fixtures for gws tests."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

import pytest


def git(*args: str, cwd: Path | None = None) -> str:
    """Run git for test setup and return stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


@dataclass
class Remote:
    """A bare remote plus the seed clone used to push commits into it."""

    path: Path
    seed: Path

    @property
    def location(self) -> str:
        return f"file://{self.path}"

    def commit(self, name: str, content: str = "content\n", branch: str = "main") -> str:
        """Commit a file on the seed and push it; returns the new hash."""
        git("checkout", "-q", branch, cwd=self.seed)
        (self.seed / name).write_text(content)
        git("add", name, cwd=self.seed)
        git("commit", "-q", "-m", f"add {name}", cwd=self.seed)
        git("push", "-q", str(self.path), branch, cwd=self.seed)
        return git("rev-parse", "HEAD", cwd=self.seed)

    def create_branch(self, branch: str, start: str = "main") -> None:
        git("branch", branch, start, cwd=self.seed)
        git("push", "-q", str(self.path), branch, cwd=self.seed)


@pytest.fixture(autouse=True)
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate git from the user's config and give commits an identity."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    for name in ("GWS_ROOT", "GWS_PREFETCH_TIMEOUT", "GWS_FETCH_GRACE_SECONDS"):
        monkeypatch.delenv(name, raising=False)


def make_remote(base: Path, host: str = "example.com", owner: str = "org", repo: str = "repo") -> Remote:
    """Create a bare remote at <base>/remotes/<host>/<owner>/<repo>.git with one commit on main."""
    seed = base / "seeds" / host / owner / repo
    seed.mkdir(parents=True)
    git("init", "-q", cwd=seed)
    git("symbolic-ref", "HEAD", "refs/heads/main", cwd=seed)
    (seed / "README.md").write_text(f"# {repo}\n")
    git("add", "README.md", cwd=seed)
    git("commit", "-q", "-m", "initial", cwd=seed)

    path = base / "remotes" / host / owner / f"{repo}.git"
    path.parent.mkdir(parents=True, exist_ok=True)
    git("clone", "-q", "--bare", str(seed), str(path))
    return Remote(path=path, seed=seed)


@pytest.fixture
def remote(tmp_path: Path) -> Remote:
    """A bare remote for example.com/org/repo."""
    return make_remote(tmp_path)


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """An empty gws root directory."""
    path = tmp_path / "gws"
    path.mkdir()
    return path
