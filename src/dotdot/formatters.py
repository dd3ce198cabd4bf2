"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.table import Table

from .execution import build_summary
from .symlinks import SymlinkStatus
from .workspace import RepoFsState, TrackingKind, is_diverged

if TYPE_CHECKING:
    from .core import RepoDependency, SyncPlan, SyncReport
    from .errors import CycleError
    from .execution import OperationResult
    from .symlinks import PackageMapping, PruneSymlinksResult, SyncSymlinksResult
    from .workspace import RepoInfo


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def print_json(self, data: Any):
        self.console.print(
            json.dumps(data, indent=2, default=str), markup=False, highlight=False, soft_wrap=True
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def print_status(
        self,
        root_path: Path,
        repos: list[RepoInfo],
        packages: list[tuple[PackageMapping, SymlinkStatus]],
    ):
        """Print repo and package status."""
        if self.use_json:
            self.print_json(
                {
                    "root": str(root_path),
                    "repositories": [r.to_dict() for r in repos],
                    "packages": [
                        {**mapping.to_dict(), "status": status.value}
                        for mapping, status in packages
                    ],
                }
            )
            return

        if not repos:
            self.console.print(f"[bold]dotdot workspace:[/] {root_path}\n")
            self.console.print("[dim]No repos found.[/]")
            return

        table = Table(title=f"dotdot workspace: {root_path}")
        table.add_column("Repository", style="cyan", no_wrap=True)
        table.add_column("Tracking")
        table.add_column("Revision")
        table.add_column("Working Tree", justify="center")
        table.add_column("Pin", justify="center")

        for repo in repos:
            table.add_row(
                repo.name,
                self._get_tracking_display(repo),
                self._get_revision_display(repo),
                self._get_working_tree_display(repo),
                self._get_pin_display(repo),
            )

        self.console.print(table)

        if packages:
            self.console.print()
            pkg_table = Table(title="Packages")
            pkg_table.add_column("Package", style="cyan")
            pkg_table.add_column("Source")
            pkg_table.add_column("Link", justify="center")
            for mapping, status in packages:
                source = self._get_relative_path(mapping.source, root_path)
                pkg_table.add_row(mapping.target_name, source, self._get_link_display(status))
            self.console.print(pkg_table)

        self.console.print()
        self._print_status_summary(repos)

    def _get_relative_path(self, path: Path, root: Path) -> str:
        """Get relative path from root."""
        try:
            return str(path.relative_to(root))
        except ValueError:
            return str(path)

    def _get_tracking_display(self, repo: RepoInfo) -> str:
        match repo.tracking.kind:
            case TrackingKind.MEMBER:
                return "[green]member[/]"
            case TrackingKind.DEPENDENCY:
                if repo.tracking.declared_by:
                    return f"dependency [dim]({', '.join(repo.tracking.declared_by)})[/]"
                return "dependency [dim](root)[/]"
            case TrackingKind.DANGLING:
                return "[yellow]dangling[/]"

    def _get_revision_display(self, repo: RepoInfo) -> str:
        match repo.fs_state:
            case RepoFsState.MISSING:
                return "[red]missing[/]"
            case RepoFsState.NOT_GIT:
                return "[red]not a git repo[/]"
        if repo.git_state is None:
            return f"[red]✗ {(repo.error or 'unknown')[:30]}[/]"
        return f"[green]{repo.git_state.branch}[/]@{repo.git_state.short_rev}"

    def _get_working_tree_display(self, repo: RepoInfo) -> str:
        if repo.git_state is None:
            return "[dim]-[/]"
        if repo.git_state.is_dirty:
            return "[yellow]dirty[/]"
        return "[green]clean[/]"

    def _get_pin_display(self, repo: RepoInfo) -> str:
        if not repo.pinned_rev:
            return "[dim]no pin[/]"
        if is_diverged(repo):
            return f"[red]diverged from {repo.pinned_rev[:7]}[/]"
        if repo.git_state is None:
            return f"[dim]{repo.pinned_rev[:7]}[/]"
        return "[green]✓[/]"

    def _get_link_display(self, status: SymlinkStatus) -> str:
        match status:
            case SymlinkStatus.LINKED:
                return "[green]✓ linked[/]"
            case SymlinkStatus.NOT_LINKED:
                return "[yellow]not linked[/]"
            case SymlinkStatus.BLOCKED:
                return "[red]blocked[/]"
            case SymlinkStatus.SOURCE_MISSING:
                return "[red]source missing[/]"

    def _print_status_summary(self, repos: list[RepoInfo]):
        parts = [f"[bold]Total:[/] {len(repos)}"]
        missing = sum(1 for r in repos if r.fs_state != RepoFsState.EXISTS)
        dirty = sum(1 for r in repos if r.git_state and r.git_state.is_dirty)
        diverged = sum(1 for r in repos if is_diverged(r))
        dangling = sum(1 for r in repos if r.tracking.kind == TrackingKind.DANGLING)

        if missing > 0:
            parts.append(f"[red]✗ Missing:[/] {missing}")
        if dirty > 0:
            parts.append(f"[yellow]✎ Dirty:[/] {dirty}")
        if diverged > 0:
            parts.append(f"[red]⬆⬇ Diverged:[/] {diverged}")
        if dangling > 0:
            parts.append(f"[yellow]? Dangling:[/] {dangling}")

        self.console.print(" | ".join(parts))

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def print_operation_results(
        self,
        results: list[OperationResult],
        operation: str,
        status_labels: dict[str, str],
    ):
        """Print per-repo operation results."""
        if self.use_json:
            self.print_json(
                {
                    "results": [r.to_dict() for r in results],
                    "summary": {
                        "total": len(results),
                        "success": sum(1 for r in results if r.success),
                        "failed": sum(1 for r in results if not r.success),
                    },
                }
            )
            return
        self._print_operation_table(results, operation, status_labels)

    def _print_operation_table(
        self,
        results: list[OperationResult],
        operation: str,
        status_labels: dict[str, str],
    ):
        if not results:
            self.console.print(f"[dim]No repositories to {operation}[/]")
            return

        table = Table(title=f"{operation.title()} Results")
        table.add_column("Repository", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Message")

        for result in results:
            if not result.success:
                status = "[red]✗[/]"
                message = f"[red]{result.message[:60]}[/]" if result.message else "Failed"
            elif result.diverged:
                status = "[yellow]![/]"
                message = f"[yellow]{result.message[:60]}[/]"
            elif result.status in ("skipped", "unchanged"):
                status = "[dim]·[/]"
                message = f"[dim]{result.message[:60]}[/]"
            else:
                status = "[green]✓[/]"
                message = result.message[:60] if result.message else "OK"
            table.add_row(result.name, status, message)

        self.console.print(table)
        self.console.print(f"\n[bold]Done:[/] {build_summary(results, status_labels)}")

        diverged = sum(1 for r in results if r.diverged)
        if diverged > 0:
            self.console.print(
                f"\n[yellow]Warning: {diverged} repo(s) are now diverged from their pinned "
                "revisions.[/]\n[dim]Run `dotdot update-revs` to update pins, or `dotdot sync` "
                "to reset to pinned revisions.[/]"
            )

    def print_exec_output(
        self, results: list[OperationResult], command: str, status_labels: dict[str, str]
    ):
        """Print the output of a command run in every repo."""
        if self.use_json:
            self.print_operation_results(results, "exec", status_labels)
            return
        for result in results:
            icon = "[green]✓[/]" if result.success else "[red]✗[/]"
            self.console.print(f"{icon} [bold cyan]{result.name}[/] [dim]$ {command}[/]")
            if result.message:
                self.console.print(result.message, markup=False, highlight=False)
        self.console.print(
            f"\n[bold]Done:[/] {build_summary(results, status_labels)}"
        )

    def print_cycle_error(self, error: CycleError):
        if self.use_json:
            self.print_json(error.to_dict())
            return
        self.console.print(f"[red]✗ cycle detected[/] [dim]{error.message}[/]")
        self.console.print("[dim]Please resolve circular dependencies before continuing.[/]")

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    def print_sync_plan(self, workspace_name: str, mode: str, plan: SyncPlan):
        """Print a dry-run plan."""
        if self.use_json:
            self.print_json({"workspace": workspace_name, "mode": mode, "plan": plan.to_dict()})
            return

        self.console.print(f"[bold]{workspace_name}[/] [dim]dry run · {mode} mode[/]\n")

        if plan.dangling:
            self._print_dangling(plan.dangling)

        if plan.to_clone:
            self.console.print("[bold]Repos to clone[/]")
            for repo in plan.to_clone:
                install = f" [dim](then: {repo.install})[/]" if repo.install else ""
                self.console.print(f"  [green]+[/] {repo.name} [dim]{repo.url}[/]{install}")
        if plan.to_checkout:
            self.console.print("[bold]Repos to check out[/]")
            for repo in plan.to_checkout:
                self.console.print(
                    f"  [blue]↻[/] {repo.name} [dim]{repo.from_rev[:7]} → {repo.to_rev[:7]}[/]"
                )
        if plan.issues:
            self.console.print("[bold]Issues[/]")
            for issue in plan.issues:
                detail = f" [dim]{issue.detail}[/]" if issue.detail else ""
                self.console.print(f"  [red]✗[/] {issue.name}: {issue.kind}{detail}")

        if plan.packages_to_add:
            self.console.print("[bold]Packages to add[/]")
            for name, repo in plan.packages_to_add:
                self.console.print(f"  [green]+[/] {name} [dim](from {repo})[/]")
        if plan.packages_to_remove:
            self.console.print("[bold]Packages to remove[/]")
            for name in plan.packages_to_remove:
                self.console.print(f"  [red]-[/] {name}")
        if plan.packages_with_install:
            self.console.print("[bold]Package installs[/]")
            for name, install in plan.packages_with_install:
                self.console.print(f"  [dim]·[/] {name} [dim]$ {install}[/]")

        if not plan.has_changes and not plan.issues:
            self.console.print("[green]✓[/] Workspace is up to date")
        self.console.print(
            f"\n[dim]{plan.repos_unchanged} repo(s) unchanged · "
            f"{plan.packages_unchanged} package(s) unchanged[/]"
        )

    def _print_dangling(self, dangling: list[str]):
        self.console.print(f"[yellow]Found {len(dangling)} dangling repo(s):[/]")
        for name in dangling:
            self.console.print(f"  [yellow]•[/] {name} [dim](no config and not a dependency)[/]")
        self.console.print()

    def print_sync_report(self, report: SyncReport, status_labels: dict[str, str]):
        """Print the result of a sync run."""
        if self.use_json:
            self.print_json(report.to_dict())
            return

        if report.dangling:
            self._print_dangling(report.dangling)

        if report.cycle_error is not None:
            self.print_cycle_error(report.cycle_error)
            return

        self._print_operation_table(report.results, "sync", status_labels)

        failed_installs = [r for r in report.installs if not r.success]
        if report.installs:
            self.console.print(
                f"[dim]Ran {len(report.installs)} package install(s), "
                f"{len(failed_installs)} failed[/]"
            )
            for result in failed_installs:
                self.console.print(f"  [red]✗[/] {result.name} [dim]{result.message[:60]}[/]")

        if report.symlinks is not None:
            self.print_link_result(report.symlinks)
        if report.pruned is not None and report.pruned.removed:
            self.console.print(
                f"  [dim]✗ pruned {len(report.pruned.removed)} stale symlink(s)[/]"
            )

    # -------------------------------------------------------------------------
    # Links
    # -------------------------------------------------------------------------

    def print_link_result(self, result: SyncSymlinksResult, force: bool = False):
        """Print symlink sync outcome, including conflicts."""
        if self.use_json:
            self.print_json(result.to_dict())
            return

        if result.conflicts and not force:
            self.console.print("[yellow]Symlink conflicts detected:[/]")
            for target_name, mappings in result.conflicts.items():
                self.console.print(f"  [bold]{target_name}[/]")
                for mapping in mappings:
                    self.console.print(f"    • [dim]{mapping.source_repo}: {mapping.source}[/]")
            self.console.print("[dim]Use --force to link the first declaration.[/]")

        if result.created:
            self.console.print(f"  [green]✓[/] [dim]created {len(result.created)} symlink(s)[/]")
        if result.overwritten:
            self.console.print(
                f"  [yellow]✓[/] [dim]overwritten {len(result.overwritten)} symlink(s)[/]"
            )
        if result.skipped:
            self.console.print(
                f"  [dim]· skipped {len(result.skipped)} symlink(s): {', '.join(result.skipped)}[/]"
            )
        for error in result.errors:
            self.console.print(f"  [red]✗ {error}[/]")

    def print_link_status(
        self, root_path: Path, packages: list[tuple[PackageMapping, SymlinkStatus]]
    ):
        if self.use_json:
            self.print_json(
                [{**mapping.to_dict(), "status": status.value} for mapping, status in packages]
            )
            return
        if not packages:
            self.console.print("[dim]No packages declared[/]")
            return
        for mapping, status in packages:
            source = self._get_relative_path(mapping.source, root_path)
            self.console.print(
                f"{self._get_link_display(status)} [cyan]{mapping.target_name}[/] [dim]→ {source}[/]"
            )

    def print_removed_links(self, removed: list[str], action: str = "removed"):
        if self.use_json:
            self.print_json({action: removed})
            return
        if not removed:
            self.console.print(f"[dim]No symlinks {action}[/]")
            return
        for name in removed:
            self.console.print(f"  [red]-[/] {name}")
        self.console.print(f"\n[bold]{action.title()}:[/] {len(removed)}")

    def print_prune_result(self, result: PruneSymlinksResult):
        if self.use_json:
            self.print_json(result.to_dict())
            return
        self.print_removed_links(result.removed, "pruned")

    # -------------------------------------------------------------------------
    # Tree
    # -------------------------------------------------------------------------

    def print_tree(
        self,
        by_declarer: dict[str, list[str]],
        dependencies: dict[str, RepoDependency],
        conflicts_only: bool = False,
    ):
        """Print the dependency tree grouped by declaring config."""
        conflicts = [d for d in dependencies.values() if d.has_conflict]

        if self.use_json:
            self.print_json(
                {
                    "declared_by": by_declarer,
                    "repos": [d.to_dict() for d in dependencies.values()],
                    "conflicts": [d.name for d in conflicts],
                }
            )
            return

        if not dependencies:
            self.console.print("[dim]No repos declared in any config[/]")
            return

        if conflicts_only:
            if not conflicts:
                self.console.print("[green]No revision conflicts found[/]")
                return
            self.console.print(f"Found {len(conflicts)} repo(s) with revision conflicts:\n")
            for dep in conflicts:
                self.console.print(f"[bold]{dep.name}[/]")
                self.console.print(f"  Declared in: {', '.join(dep.declared_in)}")
                self.console.print("  Conflicting revisions:")
                for rev in dep.conflicting_revs:
                    self.console.print(f"    - {rev[:7]}")
            return

        for declarer, names in by_declarer.items():
            if not names:
                continue
            heading = "(root config)" if declarer == "(root)" else f"{declarer}/"
            self.console.print(f"[bold]{heading}[/]")
            for i, name in enumerate(names):
                dep = dependencies[name]
                prefix = "└── " if i == len(names) - 1 else "├── "
                rev = f" [dim]@ {dep.rev[:7]}[/]" if dep.rev else ""
                conflict = " [red]\\[CONFLICT][/]" if dep.has_conflict else ""
                self.console.print(f"{prefix}{name}{rev}{conflict}")
            self.console.print()

        multi = sum(1 for d in dependencies.values() if len(d.declared_in) > 1)
        if multi > 0:
            self.console.print(f"{multi} repo(s) declared in multiple configs")
        if conflicts:
            self.console.print(
                f"\n[yellow]Warning: {len(conflicts)} repo(s) have revision conflicts![/]\n"
                "[dim]Run `dotdot tree --conflicts` to see details[/]"
            )
