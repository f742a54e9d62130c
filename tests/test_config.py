# ABOUTME: Unit tests for gws settings and plan-file handling.
# ABOUTME: Tests YAML loading, environment overrides and plan parsing.
"""Tests for gws.config."""

from pathlib import Path

import pytest

from gws.config import (
    ConfigError,
    expand_path,
    get_default_config_path,
    load_plan,
    load_settings,
    parse_plan,
    parse_settings,
)
from gws.models import RepoChangeKind, WorkspaceChangeKind


class TestExpandPath:
    """Tests for expand_path function."""

    def test_expands_tilde(self) -> None:
        """Tilde is expanded to home directory."""
        result = expand_path("~/foo")
        assert not str(result).startswith("~")
        assert result.is_absolute()

    def test_resolves_path(self) -> None:
        """Path is resolved to absolute."""
        assert expand_path("./foo").is_absolute()


class TestSettings:
    """Tests for load_settings and parse_settings."""

    def test_defaults_without_file(self, tmp_path: Path) -> None:
        """A missing config file yields defaults."""
        settings = load_settings(tmp_path / "missing.yaml")
        assert settings.root_dir == Path.home().resolve() / "gws"
        assert settings.prefetch_timeout == 120

    def test_default_path(self) -> None:
        assert get_default_config_path() == Path.home() / ".config" / "gws" / "config.yaml"

    def test_from_file(self, tmp_path: Path) -> None:
        config = tmp_path / "config.yaml"
        config.write_text(f"root: {tmp_path / 'work'}\nprefetch_timeout: 15\n")
        settings = load_settings(config)
        assert settings.root_dir == (tmp_path / "work").resolve()
        assert settings.prefetch_timeout == 15

    def test_empty_file(self, tmp_path: Path) -> None:
        config = tmp_path / "config.yaml"
        config.write_text("")
        assert load_settings(config).prefetch_timeout == 120

    def test_environment_overrides(self, tmp_path: Path) -> None:
        """Environment variables win over file values."""
        settings = parse_settings(
            {"root": "/from/file", "prefetch_timeout": 10},
            {"GWS_ROOT": str(tmp_path), "GWS_PREFETCH_TIMEOUT": "5"},
        )
        assert settings.root_dir == tmp_path.resolve()
        assert settings.prefetch_timeout == 5

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        config = tmp_path / "config.yaml"
        config.write_text("root: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(config)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        config = tmp_path / "config.yaml"
        config.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(config)

    @pytest.mark.parametrize(
        "data,environ",
        [
            ({"prefetch_timeout": "soon"}, {}),
            ({"prefetch_timeout": -1}, {}),
            ({}, {"GWS_PREFETCH_TIMEOUT": "never"}),
            ({"root": 42}, {}),
            ({"colour": "blue"}, {}),
        ],
    )
    def test_invalid_values(self, data: dict, environ: dict) -> None:
        with pytest.raises(ConfigError):
            parse_settings(data, environ)


PLAN_YAML = """\
workspaces:
  feature-x:
    description: Login fix
    mode: repo
    repos:
      - repo: git@github.com:org/api.git
        alias: api
        branch: feature-x
        base_ref: origin/main
      - git@github.com:org/web.git
changes:
  - kind: add
    workspace: feature-x
  - kind: update
    workspace: existing
    repos:
      - kind: remove
        alias: old
      - kind: update
        alias: web
        from_repo: git@github.com:org/web.git
        from_branch: existing
        to_repo: git@github.com:org/web-next.git
        to_branch: existing
  - kind: Remove
    workspace: stale
"""


class TestParsePlan:
    """Tests for load_plan and parse_plan."""

    def test_load_plan(self, tmp_path: Path) -> None:
        path = tmp_path / "plan.yaml"
        path.write_text(PLAN_YAML)
        plan = load_plan(path)

        ws = plan.desired.workspaces["feature-x"]
        assert ws.description == "Login fix"
        assert ws.mode == "repo"
        assert [r.repo for r in ws.repos] == ["git@github.com:org/api.git", "git@github.com:org/web.git"]
        assert ws.repos[0].alias == "api"
        assert ws.repos[0].base_ref == "origin/main"
        assert ws.repos[1].alias == ""

        assert [c.kind for c in plan.changes] == [
            WorkspaceChangeKind.ADD,
            WorkspaceChangeKind.UPDATE,
            WorkspaceChangeKind.REMOVE,
        ]
        update = plan.changes[1]
        assert update.workspace_id == "existing"
        assert [r.kind for r in update.repos] == [RepoChangeKind.REMOVE, RepoChangeKind.UPDATE]
        assert update.repos[1].to_repo == "git@github.com:org/web-next.git"
        assert plan.has_changes

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_plan(tmp_path / "plan.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "plan.yaml"
        path.write_text("")
        with pytest.raises(ConfigError, match="empty"):
            load_plan(path)

    def test_no_changes(self) -> None:
        plan = parse_plan({"workspaces": {"a": None}})
        assert list(plan.desired.workspaces) == ["a"]
        assert not plan.has_changes

    @pytest.mark.parametrize(
        "data",
        [
            {"workspaces": ["a"]},
            {"workspaces": {"a": {"repos": "git@github.com:org/api.git"}}},
            {"workspaces": {"a": {"repos": [{"alias": "x"}]}}},
            {"workspaces": {"a": {"description": 3}}},
            {"changes": {"kind": "add"}},
            {"changes": [{"kind": "add"}]},
            {"changes": [{"kind": "rename", "workspace": "a"}]},
            {"changes": [{"kind": "update", "workspace": "a", "repos": [{"kind": "add"}]}]},
        ],
    )
    def test_invalid(self, data: dict) -> None:
        with pytest.raises(ConfigError):
            parse_plan(data)
