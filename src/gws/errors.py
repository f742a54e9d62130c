# ABOUTME: Exception hierarchy shared by every gws component.
# ABOUTME: Each error carries the alias, identity or ref it concerns.
"""Errors raised by gws."""

from __future__ import annotations


class GwsError(Exception):
    """Base error for all gws failures."""


class ValidationError(GwsError):
    """Malformed input: bad repo location, illegal branch or workspace name."""


class NotFoundError(GwsError):
    """A store, workspace, alias or ref does not exist."""


class BaseRefNotFoundError(NotFoundError):
    """No base ref could be resolved for a new branch."""

    def __init__(self, store_path: str, message: str | None = None) -> None:
        super().__init__(message or f"cannot detect default base ref in {store_path}")
        self.store_path = store_path


class RefNotFoundError(NotFoundError):
    """A named ref is missing from a repo store."""

    def __init__(self, ref: str, message: str | None = None) -> None:
        super().__init__(message or f"ref not found: {ref}")
        self.ref = ref


class ConflictError(GwsError):
    """Duplicate alias or identity, or a target that already exists."""


class DirtyWorkingTreeError(GwsError):
    """A working tree has local changes and the caller did not allow dirty removal."""

    def __init__(self, alias: str, message: str | None = None) -> None:
        super().__init__(message or f"working tree has uncommitted changes: {alias}")
        self.alias = alias


class StatusError(GwsError):
    """Status could not be collected for a working tree."""

    def __init__(self, alias: str, cause: Exception) -> None:
        super().__init__(f"check status for {alias!r}: {cause}")
        self.alias = alias
        self.cause = cause


class GitError(GwsError):
    """Base error for failed git invocations."""

    def __init__(self, command: list[str], message: str) -> None:
        super().__init__(message)
        self.command = command


class GitCommandError(GitError):
    """A git invocation exited with a non-zero status."""

    def __init__(
        self,
        command: list[str],
        returncode: int,
        stderr: str | None = None,
        stdout: str | None = None,
    ) -> None:
        message = f"git command failed: {' '.join(command)} (exit {returncode})"
        detail = (stderr or "").strip()
        if detail:
            message = f"{message}: {detail}"
        super().__init__(command, message)
        self.returncode = returncode
        self.stderr = stderr or ""
        self.stdout = stdout or ""


class GitTimeoutError(GitError):
    """A git invocation exceeded its timeout and was killed."""

    def __init__(self, command: list[str], timeout: float) -> None:
        super().__init__(command, f"git command timed out after {timeout:g}s: {' '.join(command)}")
        self.timeout = timeout


class OperationCancelled(GwsError):
    """The caller's cancellation signal fired."""
