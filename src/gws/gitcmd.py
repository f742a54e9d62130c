# ABOUTME: Thin wrappers around the git CLI used by every gws component.
# ABOUTME: Provides cancellable execution and tri-state ref lookups.
"""Git execution primitive for gws."""

from __future__ import annotations

import enum
import logging
import subprocess
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from gws.errors import (
    GitCommandError,
    GitError,
    GitTimeoutError,
    OperationCancelled,
    ValidationError,
)

logger = logging.getLogger(__name__)

ALLOWED_SUBCOMMANDS = frozenset(
    {
        "branch",
        "check-ref-format",
        "clone",
        "config",
        "fetch",
        "init",
        "ls-remote",
        "remote",
        "rev-parse",
        "show-ref",
        "symbolic-ref",
        "status",
        "update-ref",
        "worktree",
    }
)

# How often a running git process is checked against cancel/timeout.
_POLL_INTERVAL = 0.1


@dataclass
class GitResult:
    """Captured output of one git invocation."""

    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Lookup(enum.Enum):
    FOUND = "found"
    ABSENT = "absent"
    ERROR = "error"


@dataclass(frozen=True)
class RefLookup:
    """Outcome of a side-effect-free ref query."""

    status: Lookup
    value: str = ""
    error: GitError | None = None

    @property
    def found(self) -> bool:
        return self.status is Lookup.FOUND

    @property
    def absent(self) -> bool:
        return self.status is Lookup.ABSENT


def log_command(*args: str | Path) -> None:
    """Announce a state-changing git command."""
    logger.info("$ git %s", " ".join(str(a) for a in args))


def run_git(
    args: Iterable[str | Path],
    *,
    cwd: Path | str | None = None,
    show_output: bool = False,
    check: bool = True,
    cancel: threading.Event | None = None,
    timeout: float | None = None,
) -> GitResult:
    """Execute a git command.

    Args:
        args: Arguments after ``git``; the first one must be an allowed subcommand.
        cwd: Working directory for the command.
        show_output: Echo stdout/stderr to the log at INFO level.
        check: Raise GitCommandError on a non-zero exit status.
        cancel: Event that aborts the running process when set.
        timeout: Seconds after which the process is killed.

    Returns:
        GitResult with captured stdout, stderr and exit code.

    Raises:
        ValidationError: If the subcommand is not allowed.
        GitCommandError: If check is True and git exits non-zero.
        GitTimeoutError: If the timeout expires.
        OperationCancelled: If cancel is set while git runs.
    """
    argv = [str(a) for a in args]
    if not argv:
        raise ValidationError("git command is required")
    if argv[0] not in ALLOWED_SUBCOMMANDS:
        raise ValidationError(f"git subcommand {argv[0]!r} is not allowed")

    cmd = ["git", *argv]
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"cancelled before running: {' '.join(cmd)}")

    proc = subprocess.Popen(
        cmd,
        cwd=str(cwd) if cwd is not None else None,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        text=True,
    )
    stdout, stderr = _communicate(proc, cmd, cancel, timeout)

    result = GitResult(args=argv, stdout=stdout or "", stderr=stderr or "", returncode=proc.returncode)
    logger.debug("git %s (cwd=%s) -> exit %d", " ".join(argv), cwd, result.returncode)
    if show_output:
        for stream in (result.stdout, result.stderr):
            for line in stream.splitlines():
                logger.info("  %s", line)
    if check and not result.ok:
        raise GitCommandError(cmd, result.returncode, result.stderr, result.stdout)
    return result


def _communicate(
    proc: subprocess.Popen[str],
    cmd: list[str],
    cancel: threading.Event | None,
    timeout: float | None,
) -> tuple[str, str]:
    if cancel is None and timeout is None:
        return proc.communicate()

    deadline = time.monotonic() + timeout if timeout is not None else None
    while True:
        try:
            return proc.communicate(timeout=_POLL_INTERVAL)
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                _kill(proc)
                raise OperationCancelled(f"cancelled: {' '.join(cmd)}") from None
            if deadline is not None and time.monotonic() >= deadline:
                _kill(proc)
                raise GitTimeoutError(cmd, timeout or 0) from None


def _kill(proc: subprocess.Popen[str]) -> None:
    proc.kill()
    proc.communicate()


def _is_absent(result: GitResult) -> bool:
    if result.returncode == 1:
        return True
    return result.returncode == 128 and "not a valid ref" in result.stderr


def show_ref(cwd: Path | str, ref: str, *, cancel: threading.Event | None = None) -> RefLookup:
    """Look up the hash of a fully qualified ref."""
    result = run_git(["show-ref", "--verify", ref], cwd=cwd, check=False, cancel=cancel)
    if result.ok:
        fields = result.stdout.split()
        return RefLookup(Lookup.FOUND, fields[0] if fields else "")
    if _is_absent(result):
        return RefLookup(Lookup.ABSENT)
    return RefLookup(
        Lookup.ERROR,
        error=GitCommandError(["git", *result.args], result.returncode, result.stderr),
    )


def symbolic_ref(cwd: Path | str, ref: str, *, cancel: threading.Event | None = None) -> RefLookup:
    """Read the target of a symbolic ref such as HEAD."""
    result = run_git(["symbolic-ref", "--quiet", ref], cwd=cwd, check=False, cancel=cancel)
    if result.ok:
        target = result.stdout.strip()
        if not target:
            return RefLookup(Lookup.ABSENT)
        return RefLookup(Lookup.FOUND, target)
    if _is_absent(result):
        return RefLookup(Lookup.ABSENT)
    return RefLookup(
        Lookup.ERROR,
        error=GitCommandError(["git", *result.args], result.returncode, result.stderr),
    )


def check_ref_format_branch(name: str) -> bool:
    """Return True if git accepts the name as a branch name."""
    result = run_git(["check-ref-format", "--branch", name], check=False)
    return result.ok


def rev_parse(cwd: Path | str, *args: str, cancel: threading.Event | None = None) -> str:
    return run_git(["rev-parse", *args], cwd=cwd, cancel=cancel).stdout.strip()


def remote_get_url(cwd: Path | str, remote: str = "origin") -> str:
    return run_git(["remote", "get-url", remote], cwd=cwd).stdout.strip()


def remote_set_url(
    cwd: Path | str, remote: str, url: str, *, cancel: threading.Event | None = None
) -> None:
    run_git(["remote", "set-url", remote, url], cwd=cwd, cancel=cancel)


def worktree_list_porcelain(cwd: Path | str, *, cancel: threading.Event | None = None) -> str:
    return run_git(["worktree", "list", "--porcelain"], cwd=cwd, cancel=cancel).stdout


def status_porcelain_v2(cwd: Path | str, *, cancel: threading.Event | None = None) -> str:
    return run_git(["status", "--porcelain=v2", "-b"], cwd=cwd, cancel=cancel).stdout


def worktree_remove(
    store_path: Path | str,
    worktree_path: Path | str,
    *,
    force: bool = False,
    cancel: threading.Event | None = None,
) -> None:
    args: list[str | Path] = ["worktree", "remove"]
    if force:
        args.append("--force")
    args.append(worktree_path)
    log_command(*args)
    run_git(args, cwd=store_path, cancel=cancel)


def branch_move(
    cwd: Path | str, old: str, new: str, *, cancel: threading.Event | None = None
) -> None:
    log_command("branch", "-m", old, new)
    run_git(["branch", "-m", old, new], cwd=cwd, cancel=cancel)
