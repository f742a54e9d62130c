# ABOUTME: Settings and plan-file loading for gws.
# ABOUTME: Handles YAML parsing, environment overrides and path expansion.
"""Configuration management for gws."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from gws.models import (
    Manifest,
    ManifestRepo,
    ManifestWorkspace,
    Plan,
    RepoChange,
    RepoChangeKind,
    WorkspaceChange,
    WorkspaceChangeKind,
)

DEFAULT_ROOT = "~/gws"
DEFAULT_PREFETCH_TIMEOUT = 120.0

ROOT_ENV = "GWS_ROOT"
PREFETCH_TIMEOUT_ENV = "GWS_PREFETCH_TIMEOUT"


class ConfigError(Exception):
    """Error in a settings or plan file."""

    pass


@dataclass
class Settings:
    """Resolved gws settings."""

    root_dir: Path
    prefetch_timeout: float = DEFAULT_PREFETCH_TIMEOUT


def get_default_config_path() -> Path:
    """Get the default config file path."""
    return Path.home() / ".config" / "gws" / "config.yaml"


def expand_path(path: str | Path) -> Path:
    """Expand ~ and resolve path."""
    return Path(path).expanduser().resolve()


def _read_yaml(path: Path, what: str) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {what}: {e}") from e


def _parse_timeout(value: Any, source: str) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{source} must be a number of seconds, got {value!r}") from e
    if timeout < 0:
        raise ConfigError(f"{source} must not be negative, got {value!r}")
    return timeout


def load_settings(path: Path | None = None) -> Settings:
    """
    Load settings from the YAML config file and the environment.

    A missing config file is not an error; defaults apply. Environment
    variables override values from the file.

    Args:
        path: Path to config file. Uses default if None.

    Returns:
        Resolved Settings.

    Raises:
        ConfigError: If the file is invalid.
    """
    if path is None:
        path = get_default_config_path()

    data: Any = None
    if path.exists():
        data = _read_yaml(path, "config file")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {path}")

    return parse_settings(data, os.environ)


def parse_settings(data: dict[str, Any], environ: Mapping[str, str]) -> Settings:
    """
    Parse settings data, applying environment overrides.

    Args:
        data: Raw settings from YAML.
        environ: Environment mapping to read overrides from.

    Returns:
        Resolved Settings.

    Raises:
        ConfigError: If a value is invalid.
    """
    unknown = sorted(set(data) - {"root", "prefetch_timeout"})
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(map(str, unknown))}")

    root = data.get("root") or DEFAULT_ROOT
    if not isinstance(root, str):
        raise ConfigError(f"root must be a path, got {type(root).__name__}")
    timeout = _parse_timeout(data.get("prefetch_timeout", DEFAULT_PREFETCH_TIMEOUT), "prefetch_timeout")

    env_root = environ.get(ROOT_ENV, "").strip()
    if env_root:
        root = env_root
    env_timeout = environ.get(PREFETCH_TIMEOUT_ENV, "").strip()
    if env_timeout:
        timeout = _parse_timeout(env_timeout, PREFETCH_TIMEOUT_ENV)

    return Settings(root_dir=expand_path(root), prefetch_timeout=timeout)


# Plan files


def load_plan(path: Path) -> Plan:
    """
    Load a plan from a YAML file.

    Args:
        path: Path to the plan file.

    Returns:
        Parsed Plan.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if not path.exists():
        raise ConfigError(f"Plan file not found: {path}")

    data = _read_yaml(path, "plan file")
    if data is None:
        raise ConfigError("Plan file is empty")
    if not isinstance(data, dict):
        raise ConfigError("Plan file must be a mapping")

    return parse_plan(data)


def _str_field(data: dict[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"'{key}' in {where} must be a string, got {type(value).__name__}")
    return value.strip()


def _parse_manifest_repo(data: Any, where: str) -> ManifestRepo:
    if isinstance(data, str):
        return ManifestRepo(repo=data.strip())
    if not isinstance(data, dict):
        raise ConfigError(f"Repo entries in {where} must be strings or mappings")
    repo = _str_field(data, "repo", where)
    if not repo:
        raise ConfigError(f"Repo entry in {where} is missing 'repo'")
    return ManifestRepo(
        repo=repo,
        alias=_str_field(data, "alias", where),
        branch=_str_field(data, "branch", where),
        base_ref=_str_field(data, "base_ref", where),
    )


def parse_manifest(data: dict[str, Any]) -> Manifest:
    """
    Parse the desired-state document.

    Format::

        workspaces:
          feature-x:
            description: ...
            mode: repo
            repos:
              - repo: git@github.com:org/api.git
                alias: api
                branch: feature-x
                base_ref: origin/main

    Raises:
        ConfigError: If the structure is invalid.
    """
    workspaces_data = data.get("workspaces") or {}
    if not isinstance(workspaces_data, dict):
        raise ConfigError("'workspaces' must be a mapping")

    manifest = Manifest()
    for workspace_id, ws_data in workspaces_data.items():
        where = f"workspace '{workspace_id}'"
        if ws_data is None:
            ws_data = {}
        if not isinstance(ws_data, dict):
            raise ConfigError(f"Workspace '{workspace_id}' must be a mapping")

        repos_data = ws_data.get("repos") or []
        if not isinstance(repos_data, list):
            raise ConfigError(f"'repos' in {where} must be a list")

        manifest.workspaces[str(workspace_id)] = ManifestWorkspace(
            description=_str_field(ws_data, "description", where),
            mode=_str_field(ws_data, "mode", where),
            preset_name=_str_field(ws_data, "preset_name", where),
            source_url=_str_field(ws_data, "source_url", where),
            repos=[_parse_manifest_repo(item, where) for item in repos_data],
        )
    return manifest


def _parse_kind(value: Any, kinds: type[WorkspaceChangeKind] | type[RepoChangeKind], where: str):
    try:
        return kinds(str(value).strip().lower())
    except ValueError as e:
        allowed = ", ".join(kind.value for kind in kinds)
        raise ConfigError(f"Invalid kind {value!r} in {where} (expected one of: {allowed})") from e


def _parse_repo_change(data: Any, where: str) -> RepoChange:
    if not isinstance(data, dict):
        raise ConfigError(f"Repo changes in {where} must be mappings")
    alias = _str_field(data, "alias", where)
    if not alias:
        raise ConfigError(f"Repo change in {where} is missing 'alias'")
    return RepoChange(
        kind=_parse_kind(data.get("kind"), RepoChangeKind, where),
        alias=alias,
        from_repo=_str_field(data, "from_repo", where),
        from_branch=_str_field(data, "from_branch", where),
        to_repo=_str_field(data, "to_repo", where),
        to_branch=_str_field(data, "to_branch", where),
    )


def parse_plan(data: dict[str, Any]) -> Plan:
    """
    Parse plan data into a Plan.

    The plan holds the desired-state document under ``workspaces`` and the
    ordered change records under ``changes``::

        changes:
          - kind: update
            workspace: feature-x
            repos:
              - kind: add
                alias: web
                to_repo: git@github.com:org/web.git
                to_branch: feature-x

    Args:
        data: Raw plan data from YAML.

    Returns:
        Parsed Plan.

    Raises:
        ConfigError: If the structure is invalid.
    """
    manifest = parse_manifest(data)

    changes_data = data.get("changes") or []
    if not isinstance(changes_data, list):
        raise ConfigError("'changes' must be a list")

    changes: list[WorkspaceChange] = []
    for index, item in enumerate(changes_data):
        where = f"change #{index + 1}"
        if not isinstance(item, dict):
            raise ConfigError(f"{where} must be a mapping")
        workspace_id = _str_field(item, "workspace", where)
        if not workspace_id:
            raise ConfigError(f"{where} is missing 'workspace'")
        repos_data = item.get("repos") or []
        if not isinstance(repos_data, list):
            raise ConfigError(f"'repos' in {where} must be a list")
        changes.append(
            WorkspaceChange(
                kind=_parse_kind(item.get("kind"), WorkspaceChangeKind, where),
                workspace_id=workspace_id,
                repos=tuple(_parse_repo_change(repo, where) for repo in repos_data),
            )
        )

    return Plan(desired=manifest, changes=changes)
