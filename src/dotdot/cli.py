"""
dotdot command line interface.

Every command is a thin caller of ``WorkspaceManager`` / ``WorkspaceService``;
output goes through ``OutputFormatter`` (tables or ``--json``).
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .config import (
    collect_member_configs,
    collect_package_declarations,
    default_max_parallel,
    find_workspace_root,
    load_root_config_with_sync_check,
)
from .core import (
    EXEC_STATUS_LABELS,
    PULL_STATUS_LABELS,
    SYNC_STATUS_LABELS,
    UPDATE_REVS_STATUS_LABELS,
    WorkspaceManager,
)
from .errors import ConfigError, CycleError, DotdotError
from .execution import ExecutionMode
from .formatters import OutputFormatter
from .symlinks import collect_package_mappings, get_symlink_status, remove_symlinks, sync_symlinks
from .workspace import WorkspaceService

# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="dotdot",
    help="Declarative multi-repository workspaces.",
    no_args_is_help=True,
)

link_app = typer.Typer(help="Manage package symlinks at the workspace root.", no_args_is_help=True)
app.add_typer(link_app, name="link")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"dotdot {__version__}")
        raise typer.Exit()


def setup_logging(verbose: bool):
    """Route dotdot's log records through rich on stderr."""
    logger = logging.getLogger("dotdot")
    logger.handlers = [
        RichHandler(console=Console(stderr=True), show_time=False, show_path=False)
    ]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging",
    ),
):
    """dotdot: declarative multi-repository workspaces."""
    setup_logging(verbose)


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(force_terminal=not json_output)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


def fail(console: Console, error: DotdotError | str):
    message = error if isinstance(error, str) else str(error)
    console.print(f"[red]Error: {escape(message)}[/]")
    raise typer.Exit(1)


def resolve_root(console: Console) -> Path:
    """Workspace root containing the current directory."""
    try:
        return find_workspace_root(Path.cwd())
    except ConfigError as e:
        fail(console, e.message)


def load_service(console: Console) -> WorkspaceService:
    try:
        return WorkspaceService.from_root(resolve_root(console))
    except DotdotError as e:
        fail(console, e)


def spinner(console: Console) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )


# =============================================================================
# Commands
# =============================================================================


@app.command()
def sync(
    path: Path = typer.Argument(
        None,
        help="Workspace root (default: enclosing workspace or current directory)",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would change without changing anything",
    ),
    mode: ExecutionMode = typer.Option(
        ExecutionMode.TOPO,
        "--mode",
        "-m",
        help="Execution mode",
    ),
    max_parallel: int = typer.Option(
        None,
        "--max-parallel",
        "-p",
        min=1,
        help="Maximum concurrent operations (default: $DOTDOT_MAX_PARALLEL or unbounded)",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Check out pinned revisions over local changes and replace existing link targets",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Don't ask for confirmation when --force would discard local changes",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Clone, pin and link every repo declared in the workspace."""
    console, formatter = get_console_and_formatter(json_output)

    if path is not None:
        root = path
    else:
        try:
            root = find_workspace_root(Path.cwd())
        except ConfigError:
            root = Path.cwd()

    if not root.is_dir():
        fail(console, f"Not a directory: {root}")

    manager = WorkspaceManager(root)
    try:
        state = manager.collect_sync_state()
    except DotdotError as e:
        fail(console, e)

    if dry_run:
        plan = manager.plan_sync(state)
        formatter.print_sync_plan(manager.root.name, mode.value, plan)
        return

    if force and not yes and not json_output:
        dirty = manager.find_dirty_repos(list(state.repos))
        if dirty:
            console.print(f"[yellow]Repos with local changes:[/] {', '.join(dirty)}")
            if not typer.confirm("Discard local changes when checking out pinned revisions?"):
                raise typer.Exit(1)

    limit = max_parallel or default_max_parallel()
    if not json_output:
        with spinner(console) as progress:
            task = progress.add_task(f"Syncing {len(state.repos)} repos...", total=None)
            report = manager.sync(
                mode,
                limit,
                force=force,
                state=state,
                on_result=lambda r: progress.update(task, description=f"Synced {r.name}"),
            )
    else:
        report = manager.sync(mode, limit, force=force, state=state)

    formatter.print_sync_report(report, SYNC_STATUS_LABELS)


@app.command()
def status(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Show every repo and package symlink in the workspace."""
    console, formatter = get_console_and_formatter(json_output)
    service = load_service(console)

    if not json_output:
        with spinner(console) as progress:
            progress.add_task("Scanning repositories...", total=None)
            repos = service.scan_repos()
    else:
        repos = service.scan_repos()

    mappings = collect_package_mappings(service.root, service.root_config.config.packages)
    packages = [(m, get_symlink_status(m, service.fs)) for m in mappings]
    formatter.print_status(service.root, repos, packages)


@app.command()
def pull(
    mode: ExecutionMode = typer.Option(
        ExecutionMode.PARALLEL,
        "--mode",
        "-m",
        help="Execution mode (sequential or parallel)",
    ),
    max_parallel: int = typer.Option(
        None,
        "--max-parallel",
        "-p",
        min=1,
        help="Maximum concurrent pulls (default: $DOTDOT_MAX_PARALLEL or unbounded)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Pull every repo that is on a branch with a clean working tree."""
    console, formatter = get_console_and_formatter(json_output)
    if mode.is_topological:
        fail(console, f"pull does not support --mode {mode.value}")

    service = load_service(console)
    manager = WorkspaceManager(service.root, fs=service.fs, git=service.git)
    limit = max_parallel or default_max_parallel()

    if not json_output:
        with spinner(console) as progress:
            progress.add_task("Pulling repositories...", total=None)
            results = manager.pull_all(mode, limit, repos=service.scan_repos())
    else:
        results = manager.pull_all(mode, limit, repos=service.scan_repos())

    formatter.print_operation_results(results, "pull", PULL_STATUS_LABELS)


@app.command("exec")
def exec_command(
    command: str = typer.Argument(..., help="Shell command to run in every repo"),
    mode: ExecutionMode = typer.Option(
        ExecutionMode.PARALLEL,
        "--mode",
        "-m",
        help="Execution mode",
    ),
    max_parallel: int = typer.Option(
        None,
        "--max-parallel",
        "-p",
        min=1,
        help="Maximum concurrent commands (default: $DOTDOT_MAX_PARALLEL or unbounded)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Run a shell command in every repo."""
    console, formatter = get_console_and_formatter(json_output)
    root = resolve_root(console)
    manager = WorkspaceManager(root)

    try:
        results = manager.exec_all(command, mode, max_parallel or default_max_parallel())
    except CycleError as e:
        formatter.print_cycle_error(e)
        return
    except DotdotError as e:
        fail(console, e)

    formatter.print_exec_output(results, command, EXEC_STATUS_LABELS)


@app.command()
def tree(
    conflicts: bool = typer.Option(
        False,
        "--conflicts",
        "-c",
        help="Only show repos declared with conflicting revisions",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Show which config declares which repos."""
    console, formatter = get_console_and_formatter(json_output)
    manager = WorkspaceManager(resolve_root(console))
    try:
        by_declarer, dependencies = manager.dependency_tree()
    except DotdotError as e:
        fail(console, e)
    formatter.print_tree(by_declarer, dependencies, conflicts_only=conflicts)


@app.command("update-revs")
def update_revs(
    repos: list[str] = typer.Argument(
        None,
        help="Repos to update (default: all repos in the root config)",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would be pinned without writing the config",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Pin the current HEAD of repos into dotdot-root.json."""
    console, formatter = get_console_and_formatter(json_output)
    manager = WorkspaceManager(resolve_root(console))
    try:
        results = manager.update_revs(repos or None, dry_run=dry_run)
    except DotdotError as e:
        fail(console, e)
    formatter.print_operation_results(results, "update-revs", UPDATE_REVS_STATUS_LABELS)


# =============================================================================
# Link Commands
# =============================================================================


@link_app.command("create")
def link_create(
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would be linked without touching the filesystem",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Replace existing targets and link the first of conflicting declarations",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Create package symlinks at the workspace root."""
    console, formatter = get_console_and_formatter(json_output)
    root = resolve_root(console)
    try:
        declarations = collect_package_declarations(collect_member_configs(root))
    except DotdotError as e:
        fail(console, e)

    result = sync_symlinks(root, declarations, dry_run=dry_run, force=force)
    formatter.print_link_result(result, force=force)
    if result.conflicts and not force:
        raise typer.Exit(1)


@link_app.command("remove")
def link_remove(
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would be removed",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Remove package symlinks from the workspace root."""
    console, formatter = get_console_and_formatter(json_output)
    root = resolve_root(console)
    try:
        packages = load_root_config_with_sync_check(root).config.packages
    except DotdotError as e:
        fail(console, e)
    removed = remove_symlinks(root, packages, dry_run=dry_run)
    formatter.print_removed_links(removed)


@link_app.command("status")
def link_status(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Show the symlink status of every package."""
    console, formatter = get_console_and_formatter(json_output)
    root = resolve_root(console)
    try:
        packages = load_root_config_with_sync_check(root).config.packages
    except DotdotError as e:
        fail(console, e)
    mappings = collect_package_mappings(root, packages)
    formatter.print_link_status(root, [(m, get_symlink_status(m)) for m in mappings])
