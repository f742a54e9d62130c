# ABOUTME: Repository location parsing for gws.
# ABOUTME: Normalizes ssh, https and file URLs into a canonical host/owner/repo identity.
"""Repo identity normalization."""

from __future__ import annotations

from urllib.parse import urlparse

from gws.errors import ValidationError
from gws.models import RepoIdentity


def normalize(location: str) -> RepoIdentity:
    """
    Parse a repository location into its canonical identity.

    Supported formats:
    - git@github.com:org/repo.git
    - https://github.com/org/repo(.git)
    - file:///any/prefix/<host>/<owner>/<repo>(.git)

    Args:
        location: The repository location.

    Returns:
        RepoIdentity whose key is "host/owner/repo".

    Raises:
        ValidationError: If the location is empty, scheme-less or malformed.
    """
    trimmed = location.strip()
    if not trimmed:
        raise ValidationError("repo spec is empty")

    if trimmed.startswith("git@"):
        at = trimmed.find("@")
        colon = trimmed.find(":")
        if colon < 0 or colon < at:
            raise ValidationError(f"invalid ssh repo spec: {location!r}")
        host = trimmed[at + 1 : colon]
        path = trimmed[colon + 1 :]
    elif trimmed.startswith("https://"):
        try:
            parsed = urlparse(trimmed)
            host = parsed.hostname or ""
        except ValueError as e:
            raise ValidationError(f"invalid https repo spec: {location!r}: {e}") from e
        path = parsed.path.lstrip("/")
    elif trimmed.startswith("file://"):
        try:
            parsed = urlparse(trimmed)
        except ValueError as e:
            raise ValidationError(f"invalid file repo spec: {location!r}: {e}") from e
        # The identity is inferred from the tail: .../<host>/<owner>/<repo>(.git)
        parts = [p for p in parsed.path.strip("/").split("/") if p]
        if len(parts) < 3:
            raise ValidationError(
                f"file repo spec must end with <host>/<owner>/<repo>: {location!r}"
            )
        host = parts[-3]
        path = f"{parts[-2]}/{parts[-1]}"
    else:
        raise ValidationError(f"repo spec must be ssh, https, or file: {location!r}")

    owner, repo = _split_owner_repo(path)
    if not host:
        raise ValidationError(f"host is required in repo spec: {location!r}")

    return RepoIdentity(host=host, owner=owner, repo=repo)


def _split_owner_repo(path: str) -> tuple[str, str]:
    trimmed = path.strip("/")
    if not trimmed:
        raise ValidationError("repo path is empty")

    parts = trimmed.split("/")
    if len(parts) != 2:
        raise ValidationError("repo path must be <owner>/<repo>")

    owner = parts[0]
    repo = parts[1][:-4] if parts[1].endswith(".git") else parts[1]
    if not owner or not repo:
        raise ValidationError("owner/repo cannot be empty")
    return owner, repo


def try_normalize(location: str) -> RepoIdentity | None:
    """Normalize a location, returning None instead of raising."""
    try:
        return normalize(location)
    except ValidationError:
        return None


def display_spec(location: str) -> str:
    """Render a location in ssh form for display."""
    identity = try_normalize(location)
    if identity is None:
        return location.strip()
    return f"git@{identity.host}:{identity.owner}/{identity.repo}.git"


def display_name(location: str) -> str:
    """Get the short repo name for display."""
    identity = try_normalize(location)
    if identity is None or not identity.repo:
        return location.strip()
    return identity.repo


def spec_from_key(key: str) -> str:
    """Turn a "host/owner/repo" key into an https location.

    Strings that already carry a scheme (or ssh form) are returned unchanged.
    """
    trimmed = key.strip()
    if "://" in trimmed or trimmed.startswith("git@"):
        return trimmed
    return f"https://{trimmed.removesuffix('.git')}.git"
