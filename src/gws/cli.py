# ABOUTME: Command-line interface for the git workspace manager.
# ABOUTME: Implements repo, new, ls, add, status, rm, rm-repo, path and apply commands.
"""CLI for gws - Git Workspace manager."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from InquirerPy import inquirer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from gws import repostore, workspace, worktree
from gws.apply import ApplyOptions, apply_plan
from gws.config import ConfigError, Settings, get_default_config_path, load_plan, load_settings
from gws.errors import GwsError
from gws.models import RepoStatus, StateKind, WorkspaceChangeKind, WorkspaceMetadata
from gws.status import requires_confirmation, state_from_status

console = Console()

STATE_STYLES = {
    StateKind.CLEAN: "green",
    StateKind.DIRTY: "red",
    StateKind.UNPUSHED: "yellow",
    StateKind.DIVERGED: "yellow",
    StateKind.UNKNOWN: "magenta",
}


def setup_logging(verbose: bool) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, show_time=verbose)],
        force=True,
    )


class Context:
    """Shared context for CLI commands."""

    def __init__(
        self,
        root: Path | None = None,
        config_path: Path | None = None,
        non_interactive: bool = False,
    ) -> None:
        self.root_override = root
        self.config_path = config_path or get_default_config_path()
        self.non_interactive = non_interactive
        self._settings: Settings | None = None

    @property
    def settings(self) -> Settings:
        """Load settings lazily."""
        if self._settings is None:
            self._settings = load_settings(self.config_path)
        return self._settings

    @property
    def root(self) -> Path:
        if self.root_override is not None:
            return self.root_override.expanduser().resolve()
        return self.settings.root_dir


pass_context = click.make_pass_decorator(Context, ensure=True)


CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


def fail(message: str, error: Exception) -> NoReturn:
    """Print an error and exit with status 1."""
    console.print(f"[red]{message}:[/red] {escape(str(error))}")
    raise SystemExit(1)


def print_warnings(warnings: list[str]) -> None:
    for warning in warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--root",
    "-r",
    type=click.Path(path_type=Path),
    help="gws root directory (default: from config, then ~/gws)",
)
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    help="Path to config file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Log every git command",
)
@click.option(
    "--non-interactive",
    is_flag=True,
    help="Don't prompt, refuse risky operations instead",
)
@click.pass_context
def main(
    ctx: click.Context,
    root: Path | None,
    config: Path | None,
    verbose: bool,
    non_interactive: bool,
) -> None:
    """GWS - Git Workspace manager.

    Manage task workspaces built from worktrees of shared bare repo stores.
    """
    setup_logging(verbose)
    ctx.obj = Context(root=root, config_path=config, non_interactive=non_interactive)


# Repo stores


@main.group()
def repo() -> None:
    """Manage shared repo stores."""


@repo.command("get")
@click.argument("location")
@pass_context
def repo_get(ctx: Context, location: str) -> None:
    """Clone or refresh the store for LOCATION."""
    try:
        store = repostore.get(ctx.root, location)
    except (GwsError, ConfigError) as e:
        fail("Failed to get repo", e)
    console.print(f"[green]{store.repo_key}[/green] {store.store_path}")


@repo.command("ls")
@pass_context
def repo_ls(ctx: Context) -> None:
    """List repo stores."""
    try:
        stores, warnings = repostore.list_stores(ctx.root)
    except (GwsError, ConfigError) as e:
        fail("Failed to list repos", e)

    print_warnings(warnings)
    if not stores:
        console.print("[yellow]No repo stores.[/yellow]")
        return
    for entry in stores:
        console.print(f"[bold]{entry.repo_key}[/bold]")
        console.print(f"  [dim]{entry.store_path}[/dim]")


# Workspaces


@main.command()
@click.argument("workspace_id")
@click.option("--description", "-d", default="", help="Workspace description")
@pass_context
def new(ctx: Context, workspace_id: str, description: str) -> None:
    """Create an empty workspace."""
    try:
        ws_dir = workspace.new(ctx.root, workspace_id, WorkspaceMetadata(description=description))
    except (GwsError, ConfigError) as e:
        fail("Failed to create workspace", e)
    console.print(f"[green]Created:[/green] {ws_dir}")


@main.command("ls")
@pass_context
def ls(ctx: Context) -> None:
    """List workspaces."""
    try:
        entries, warnings = workspace.list_workspaces(ctx.root)
    except (GwsError, ConfigError) as e:
        fail("Failed to list workspaces", e)

    print_warnings(warnings)
    if not entries:
        console.print("[yellow]No workspaces.[/yellow]")
        return
    for entry in entries:
        if entry.description:
            console.print(f"[bold]{entry.workspace_id}[/bold]  {entry.description}")
        else:
            console.print(f"[bold]{entry.workspace_id}[/bold]")


@main.command()
@click.argument("workspace_id")
@click.argument("location")
@click.option("--alias", "-a", default="", help="Directory name (default: repo name)")
@click.option("--branch", "-b", default="", help="Branch (default: workspace id)")
@click.option("--base", "base_ref", default="", help="Start point for a new branch")
@click.option("--fetch", is_flag=True, help="Fetch the store before adding")
@pass_context
def add(
    ctx: Context,
    workspace_id: str,
    location: str,
    alias: str,
    branch: str,
    base_ref: str,
    fetch: bool,
) -> None:
    """Add a working tree for LOCATION to a workspace."""
    try:
        entry = worktree.add(
            ctx.root,
            workspace_id,
            location,
            alias=alias,
            branch=branch,
            base_ref=base_ref,
            fetch=fetch,
        )
    except (GwsError, ConfigError) as e:
        fail("Failed to add repo", e)

    console.print(f"[green]+[/green] {entry.alias} ({entry.branch}) {entry.worktree_path}")
    if entry.base_ref:
        console.print(f"  [dim]new branch from {entry.base_ref}[/dim]")


def format_repo_status(repo: RepoStatus, kind: StateKind) -> str:
    """Format one status line for display."""
    style = STATE_STYLES[kind]
    if repo.error is not None:
        return f"  [{style}]{kind.value:<9}[/{style}] {repo.alias}  [red]{escape(str(repo.error))}[/red]"
    upstream = repo.upstream or "(no upstream)"
    parts = [
        f"  [{style}]{kind.value:<9}[/{style}] [bold]{repo.alias}[/bold]",
        f"{repo.branch or '(detached)'} -> {upstream}",
        f"+{repo.ahead_count} -{repo.behind_count}",
    ]
    if repo.dirty:
        parts.append(
            f"staged {repo.staged_count}, unstaged {repo.unstaged_count}, "
            f"untracked {repo.untracked_count}, unmerged {repo.unmerged_count}"
        )
    return "  ".join(parts)


@main.command()
@click.argument("workspace_id")
@pass_context
def status(ctx: Context, workspace_id: str) -> None:
    """Show status and risk of every repo in a workspace."""
    try:
        result = workspace.workspace_status(ctx.root, workspace_id)
    except (GwsError, ConfigError) as e:
        fail("Failed to read status", e)

    state = state_from_status(result)
    style = STATE_STYLES[state.kind]
    console.print(f"[bold]{workspace_id}[/bold] [{style}]{state.kind.value}[/{style}]")
    for repo_status, repo_state in zip(result.repos, state.repos):
        console.print(format_repo_status(repo_status, repo_state.kind))
    print_warnings(result.warnings)


def confirm_removal(ctx: Context, workspace_id: str, kind: StateKind) -> bool:
    """Ask before removing a workspace whose commits may not be pushed."""
    if ctx.non_interactive:
        console.print(
            f"[red]Workspace {workspace_id} is {kind.value}; use --yes to remove it[/red]"
        )
        return False
    try:
        return bool(
            inquirer.confirm(
                message=f"Workspace {workspace_id} is {kind.value}. Remove anyway?",
                default=False,
            ).execute()
        )
    except KeyboardInterrupt:
        return False


@main.command()
@click.argument("workspace_id")
@click.option("--allow-dirty", is_flag=True, help="Discard uncommitted changes")
@click.option("--allow-status-error", is_flag=True, help="Remove repos whose status fails")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
@pass_context
def rm(
    ctx: Context,
    workspace_id: str,
    allow_dirty: bool,
    allow_status_error: bool,
    yes: bool,
) -> None:
    """Remove a workspace and all of its working trees."""
    try:
        state = workspace.workspace_state(ctx.root, workspace_id)
    except (GwsError, ConfigError) as e:
        fail("Failed to read status", e)

    if not yes and requires_confirmation(state.kind):
        if not confirm_removal(ctx, workspace_id, state.kind):
            console.print("[yellow]Aborted[/yellow]")
            raise SystemExit(1)

    try:
        workspace.remove(
            ctx.root,
            workspace_id,
            allow_dirty=allow_dirty,
            allow_status_error=allow_status_error,
        )
    except GwsError as e:
        fail("Failed to remove workspace", e)
    console.print(f"[green]Removed:[/green] {workspace_id}")


@main.command("rm-repo")
@click.argument("workspace_id")
@click.argument("alias")
@click.option("--allow-dirty", is_flag=True, help="Discard uncommitted changes")
@click.option("--allow-status-error", is_flag=True, help="Remove even if status fails")
@pass_context
def rm_repo(
    ctx: Context,
    workspace_id: str,
    alias: str,
    allow_dirty: bool,
    allow_status_error: bool,
) -> None:
    """Remove one repo's working tree from a workspace."""
    try:
        worktree.remove_repo(
            ctx.root,
            workspace_id,
            alias,
            allow_dirty=allow_dirty,
            allow_status_error=allow_status_error,
        )
    except (GwsError, ConfigError) as e:
        fail("Failed to remove repo", e)
    console.print(f"[red]-[/red] {workspace_id}/{alias}")


def get_workspace_choices(root: Path) -> list[dict[str, str]]:
    """
    Build list of workspace choices for fuzzy finder.

    Args:
        root: gws root directory.

    Returns:
        List of dicts with 'name' (display) and 'value' (path).
    """
    entries, _ = workspace.list_workspaces(root)
    choices: list[dict[str, str]] = []
    for entry in entries:
        name = entry.workspace_id
        if entry.description:
            name = f"{entry.workspace_id} ({entry.description})"
        choices.append({"name": name, "value": str(entry.path)})
    return choices


@main.command()
@click.argument("pattern", required=False)
@click.option(
    "--list", "-l",
    "list_mode",
    is_flag=True,
    help="List matching workspaces without interactive selection",
)
@pass_context
def path(ctx: Context, pattern: str | None, list_mode: bool) -> None:
    """Print the path of a workspace picked with fuzzy search.

    The picker renders on stderr so the output can be used with cd:

        cd "$(gws path)"
    """
    try:
        choices = get_workspace_choices(ctx.root)
    except (GwsError, ConfigError) as e:
        fail("Failed to list workspaces", e)

    if list_mode:
        for choice in choices:
            if pattern is None or pattern.lower() in choice["name"].lower():
                click.echo(choice["value"])
        return

    if not choices:
        console.print("[yellow]No workspaces.[/yellow]")
        raise SystemExit(1)

    from prompt_toolkit.output import create_output

    try:
        result = inquirer.fuzzy(
            message="Workspace:",
            choices=choices,
            default=pattern or "",
            match_exact=False,
            border=True,
            output=create_output(stdout=sys.stderr),
        ).execute()
    except KeyboardInterrupt:
        raise SystemExit(1)

    if not result:
        raise SystemExit(1)
    click.echo(result)


@main.command()
@click.argument("plan_file", type=click.Path(path_type=Path))
@click.option("--allow-dirty", is_flag=True, help="Discard uncommitted changes on removal")
@click.option("--allow-status-error", is_flag=True, help="Remove repos whose status fails")
@pass_context
def apply(ctx: Context, plan_file: Path, allow_dirty: bool, allow_status_error: bool) -> None:
    """Apply a plan file of workspace changes."""
    try:
        plan = load_plan(plan_file)
    except ConfigError as e:
        fail("Invalid plan", e)

    if not plan.has_changes:
        console.print("[green]Nothing to do - no changes in plan[/green]")
        return

    markers = {
        WorkspaceChangeKind.ADD: "[green]+[/green]",
        WorkspaceChangeKind.UPDATE: "[blue]~[/blue]",
        WorkspaceChangeKind.REMOVE: "[red]-[/red]",
    }
    console.print("[bold]Changes:[/bold]")
    for change in plan.changes:
        console.print(f"  {markers[change.kind]} {change.workspace_id}")

    try:
        options = ApplyOptions(
            allow_dirty=allow_dirty,
            allow_status_error=allow_status_error,
            prefetch_timeout=ctx.settings.prefetch_timeout,
            step=lambda text: console.print(f"[blue]>[/blue] {text}"),
        )
        apply_plan(ctx.root, plan, options)
    except (GwsError, ConfigError) as e:
        fail("Apply failed", e)
    console.print("[green]Plan applied[/green]")


if __name__ == "__main__":
    main()
