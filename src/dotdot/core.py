"""
dotdot: declarative multi-repository workspaces.

Workspace-level operations built on the graph, execution engine, workspace
scan and symlink layers: sync, pull, exec, update-revs and the dependency tree.
Each per-repo operation turns its own failure into a failed
``OperationResult`` so one bad repo never stops the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from . import graph as repo_graph
from .config import (
    MemberConfigSource,
    MergedConfig,
    PackageIndexEntry,
    RepoConfig,
    RootConfigSource,
    collect_member_configs,
    collect_package_declarations,
    load_root_config,
    merge_member_configs,
    write_generated_config,
)
from .errors import CycleError, DotdotError, GitError
from .execution import ExecutionMode, OperationResult, execute_for_all, execute_topo_for_all
from .fs import LocalFileSystem
from .git import Git, run_shell_command
from .graph import RepoGraph
from .symlinks import PruneSymlinksResult, SyncSymlinksResult, prune_stale_symlinks, sync_symlinks
from .workspace import RepoInfo, WorkspaceService, exists_as_git_repo, rev_matches

logger = logging.getLogger(__name__)

ShellRunner = Callable[[str, Path], str]

SYNC_STATUS_LABELS = {
    "cloned": "cloned",
    "checked-out": "checked out",
    "skipped": "skipped",
    "failed": "failed",
}
PULL_STATUS_LABELS = {"pulled": "pulled", "skipped": "skipped", "failed": "failed"}
EXEC_STATUS_LABELS = {"ok": "ok", "failed": "failed"}
UPDATE_REVS_STATUS_LABELS = {
    "updated": "updated",
    "unchanged": "unchanged",
    "skipped": "skipped",
}
INSTALL_STATUS_LABELS = {"installed": "installed", "failed": "failed"}


# =============================================================================
# Sync Models
# =============================================================================


@dataclass
class SyncState:
    """Everything sync needs, gathered before any repo is touched."""

    member_configs: list[MemberConfigSource]
    merged: MergedConfig
    existing_root: RootConfigSource
    repos: dict[str, RepoConfig]
    package_declarations: list[tuple[str, PackageIndexEntry]]
    dangling: list[str] = field(default_factory=list)


@dataclass
class RepoToClone:
    name: str
    url: str
    install: str | None = None


@dataclass
class RepoToCheckout:
    name: str
    from_rev: str
    to_rev: str


@dataclass
class RepoIssue:
    """A repo sync cannot handle as-is."""

    name: str
    kind: str  # missing-url | not-a-git-repo | dirty-working-tree
    detail: str = ""


@dataclass
class SyncPlan:
    """What a sync would do (dry run)."""

    to_clone: list[RepoToClone] = field(default_factory=list)
    to_checkout: list[RepoToCheckout] = field(default_factory=list)
    issues: list[RepoIssue] = field(default_factory=list)
    repos_unchanged: int = 0
    packages_to_add: list[tuple[str, str]] = field(default_factory=list)
    packages_to_remove: list[str] = field(default_factory=list)
    packages_with_install: list[tuple[str, str]] = field(default_factory=list)
    packages_unchanged: int = 0
    dangling: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(
            self.to_clone or self.to_checkout or self.packages_to_add or self.packages_to_remove
        )

    def to_dict(self) -> dict:
        return {
            "repos": {
                "to_clone": [vars(r) for r in self.to_clone],
                "to_checkout": [vars(r) for r in self.to_checkout],
                "issues": [vars(i) for i in self.issues],
                "unchanged": self.repos_unchanged,
            },
            "packages": {
                "to_add": [{"name": n, "repo": r} for n, r in self.packages_to_add],
                "to_remove": self.packages_to_remove,
                "with_install": [{"name": n, "install": i} for n, i in self.packages_with_install],
                "unchanged": self.packages_unchanged,
            },
            "dangling": self.dangling,
        }


@dataclass
class SyncReport:
    """Outcome of a sync run."""

    results: list[OperationResult] = field(default_factory=list)
    installs: list[OperationResult] = field(default_factory=list)
    symlinks: SyncSymlinksResult | None = None
    pruned: PruneSymlinksResult | None = None
    dangling: list[str] = field(default_factory=list)
    cycle_error: CycleError | None = None
    config_path: Path | None = None

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "installs": [r.to_dict() for r in self.installs],
            "symlinks": self.symlinks.to_dict() if self.symlinks else None,
            "pruned": self.pruned.to_dict() if self.pruned else None,
            "dangling": self.dangling,
            "cycle": self.cycle_error.to_dict() if self.cycle_error else None,
        }


@dataclass
class RepoDependency:
    """A repo as declared across configs, for the dependency tree."""

    name: str
    declared_in: list[str] = field(default_factory=list)
    rev: str | None = None
    conflicting_revs: list[str] = field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicting_revs)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "declared_in": self.declared_in,
            "rev": self.rev,
            "conflicting_revs": self.conflicting_revs,
        }


ROOT_DECLARER = "(root)"


# =============================================================================
# Workspace Manager
# =============================================================================


class WorkspaceManager:
    """Run workspace operations against one workspace root."""

    def __init__(
        self,
        root: Path,
        *,
        fs: LocalFileSystem | None = None,
        git: Git | None = None,
        shell: ShellRunner = run_shell_command,
    ):
        self.root = Path(root).resolve()
        self.fs = fs or LocalFileSystem()
        self.git = git or Git()
        self.shell = shell

    def service(self, check_sync: bool = True) -> WorkspaceService:
        return WorkspaceService.from_root(self.root, check_sync=check_sync, fs=self.fs, git=self.git)

    def _repo_graph(self, member_configs: list[MemberConfigSource], names: list[str]) -> RepoGraph:
        """Member dependency graph, extended so every name in ``names`` is a node."""
        graph = repo_graph.from_member_configs(member_configs)
        for name in names:
            if name not in graph:
                graph = repo_graph.add_repo(graph, name, RepoConfig(url=""))
        return graph

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    def collect_sync_state(self) -> SyncState:
        """Merge member configs with the existing root config.

        Repos already in the root config are kept; members that are not
        declared anywhere are tracked with their remote URL and current rev.
        """
        member_configs = collect_member_configs(self.root, self.fs)
        merged = merge_member_configs(member_configs)
        existing_root = load_root_config(self.root, self.fs)

        repos: dict[str, RepoConfig] = {**existing_root.config.repos, **merged.repos}

        for member_name in sorted(merged.members_with_config):
            if member_name in repos:
                continue
            member_path = self.root / member_name
            if not self.git.is_git_repo(member_path):
                continue
            try:
                url = self.git.get_remote_url(member_path)
            except GitError:
                logger.warning("Member %s has no 'origin' remote; tracking it without url", member_name)
                url = ""
            try:
                rev = self.git.get_current_rev(member_path)
            except GitError:
                rev = None
            repos[member_name] = RepoConfig(url=url, rev=rev)

        dangling = []
        for entry in sorted(self.fs.read_directory(self.root)):
            if entry.startswith("."):
                continue
            entry_path = self.root / entry
            if not self.fs.is_dir(entry_path) or not self.git.is_git_repo(entry_path):
                continue
            if entry not in merged.members_with_config and entry not in repos:
                dangling.append(entry)

        return SyncState(
            member_configs=member_configs,
            merged=merged,
            existing_root=existing_root,
            repos=repos,
            package_declarations=collect_package_declarations(member_configs),
            dangling=dangling,
        )

    def plan_sync(self, state: SyncState | None = None) -> SyncPlan:
        """Work out what ``sync`` would change, without changing anything."""
        state = state or self.collect_sync_state()
        plan = SyncPlan(dangling=list(state.dangling))

        declared_by: dict[str, str] = {}
        for source in state.member_configs:
            for dep_name in source.config.deps:
                declared_by.setdefault(dep_name, source.repo_name)

        for name, config in state.repos.items():
            repo_path = self.root / name
            if not config.url.strip() and not self.fs.exists(repo_path):
                plan.issues.append(
                    RepoIssue(name, "missing-url", f"declared by {declared_by.get(name, 'unknown')}")
                )
                continue
            if not self.fs.exists(repo_path):
                plan.to_clone.append(RepoToClone(name, config.url, config.install))
                continue
            if not self.git.is_git_repo(repo_path):
                plan.issues.append(RepoIssue(name, "not-a-git-repo"))
                continue
            if config.rev:
                try:
                    current_rev = self.git.get_current_rev(repo_path)
                    dirty = self.git.is_dirty(repo_path)
                except GitError as e:
                    plan.issues.append(RepoIssue(name, "git-error", str(e)))
                    continue
                if not rev_matches(current_rev, config.rev):
                    if dirty:
                        plan.issues.append(RepoIssue(name, "dirty-working-tree"))
                    else:
                        plan.to_checkout.append(RepoToCheckout(name, current_rev, config.rev))
                    continue
            plan.repos_unchanged += 1

        existing_packages = state.existing_root.config.packages
        for name, entry in state.merged.packages.items():
            if name in existing_packages:
                plan.packages_unchanged += 1
            else:
                plan.packages_to_add.append((name, entry.repo))
            if entry.install:
                plan.packages_with_install.append((name, entry.install))
        plan.packages_to_remove = [n for n in existing_packages if n not in state.merged.packages]

        return plan

    def find_dirty_repos(self, names: list[str]) -> list[str]:
        """Names among ``names`` whose git working tree has local changes."""
        dirty = []
        for name in names:
            repo_path = self.root / name
            if not self.fs.exists(repo_path) or not self.git.is_git_repo(repo_path):
                continue
            try:
                if self.git.is_dirty(repo_path):
                    dirty.append(name)
            except GitError as e:
                logger.warning("Could not check %s for local changes: %s", name, e)
        return dirty

    def sync_repo(self, name: str, config: RepoConfig, force: bool = False) -> OperationResult:
        """Clone a missing repo or move an existing one to its pinned rev."""
        repo_path = self.root / name
        try:
            if self.fs.exists(repo_path):
                if not self.git.is_git_repo(repo_path):
                    return OperationResult(name, "failed", "Directory exists but is not a git repo")
                if config.rev:
                    current_rev = self.git.get_current_rev(repo_path)
                    if not rev_matches(current_rev, config.rev):
                        dirty = self.git.is_dirty(repo_path)
                        if dirty and not force:
                            return OperationResult(
                                name,
                                "skipped",
                                "Working tree has uncommitted changes (use --force to override)",
                            )
                        self.git.checkout(repo_path, config.rev, force=force)
                        suffix = " (forced)" if force and dirty else ""
                        return OperationResult(
                            name, "checked-out", f"Checked out {config.rev[:7]}{suffix}"
                        )
                return OperationResult(name, "skipped", "Already exists")

            if not config.url:
                return OperationResult(name, "failed", "No url configured")

            self.git.clone(config.url, repo_path)
            if config.rev:
                self.git.checkout(repo_path, config.rev)
            if config.install:
                self.shell(config.install, repo_path)

            rev = self.git.get_current_rev(repo_path)
            suffix = " (installed)" if config.install else ""
            return OperationResult(name, "cloned", f"Cloned at {rev[:7]}{suffix}")
        except (DotdotError, OSError) as e:
            logger.debug("sync of %s failed", name, exc_info=True)
            return OperationResult(name, "failed", str(e))

    def run_package_installs(self, packages: dict[str, PackageIndexEntry]) -> list[OperationResult]:
        """Run each package's ``install`` command inside the package directory."""
        results = []
        for name, entry in packages.items():
            if not entry.install:
                continue
            package_path = self.root / entry.repo / entry.path
            try:
                self.shell(entry.install, package_path)
            except (DotdotError, OSError) as e:
                logger.warning("Install of package %s failed: %s", name, e)
                results.append(OperationResult(name, "failed", str(e)))
                continue
            results.append(OperationResult(name, "installed", entry.install))
        return results

    def sync(
        self,
        mode: ExecutionMode = ExecutionMode.TOPO,
        max_parallel: int | None = None,
        force: bool = False,
        state: SyncState | None = None,
        on_result: Callable[[OperationResult], None] | None = None,
    ) -> SyncReport:
        """Bring the workspace in line with its configs.

        Clones/checks out repos, runs install commands, writes the root
        config, then links and prunes package symlinks. A dependency cycle in
        a topological mode stops the repo phase before anything runs and is
        reported in ``cycle_error``.
        """
        state = state or self.collect_sync_state()
        report = SyncReport(dangling=list(state.dangling))

        def run(item: tuple[str, RepoConfig]) -> OperationResult:
            name, config = item
            logger.info("syncing %s", name)
            result = self.sync_repo(name, config, force=force)
            if on_result is not None:
                on_result(result)
            return result

        items = list(state.repos.items())
        mode = ExecutionMode(mode)
        if mode.is_topological:
            graph = self._repo_graph(state.member_configs, list(state.repos))
            try:
                report.results = execute_topo_for_all(items, run, graph, mode, max_parallel)
            except CycleError as e:
                logger.error("%s", e)
                report.cycle_error = e
                return report
        else:
            report.results = execute_for_all(items, run, mode, max_parallel)

        report.installs = self.run_package_installs(state.merged.packages)
        report.config_path = write_generated_config(
            self.root, state.repos, state.merged.packages, self.fs
        )

        if state.package_declarations:
            report.symlinks = sync_symlinks(
                self.root, state.package_declarations, dry_run=False, force=force, fs=self.fs
            )
        if state.merged.packages or state.existing_root.config.packages:
            report.pruned = prune_stale_symlinks(self.root, state.merged.packages, fs=self.fs)
        return report

    # -------------------------------------------------------------------------
    # Pull / Exec
    # -------------------------------------------------------------------------

    def pull_repo(self, repo: RepoInfo) -> OperationResult:
        """Pull one repo unless it is detached, dirty or has no remote."""
        git_state = repo.git_state
        if git_state is None:
            return OperationResult(repo.name, "skipped", repo.error or "Not a git repo")
        if git_state.is_detached:
            return OperationResult(repo.name, "skipped", "Detached HEAD")
        if git_state.is_dirty:
            return OperationResult(repo.name, "skipped", "Working tree has uncommitted changes")
        if git_state.remote_url is None:
            return OperationResult(repo.name, "skipped", "No remote configured")

        try:
            self.git.pull(repo.path)
            diverged = False
            if repo.pinned_rev:
                diverged = not rev_matches(self.git.get_current_rev(repo.path), repo.pinned_rev)
        except (DotdotError, OSError) as e:
            return OperationResult(repo.name, "failed", str(e))

        message = "Pulled (now diverged from pinned revision)" if diverged else "Pulled"
        return OperationResult(repo.name, "pulled", message, diverged=diverged)

    def pull_all(
        self,
        mode: ExecutionMode = ExecutionMode.PARALLEL,
        max_parallel: int | None = None,
        repos: list[RepoInfo] | None = None,
    ) -> list[OperationResult]:
        """Pull every repo that exists as a git repo."""
        if repos is None:
            repos = self.service().scan_repos()
        targets = [r for r in repos if exists_as_git_repo(r)]
        return execute_for_all(targets, self.pull_repo, mode, max_parallel)

    def exec_repo(self, repo: RepoInfo, command: str) -> OperationResult:
        try:
            output = self.shell(command, repo.path)
        except (DotdotError, OSError) as e:
            return OperationResult(repo.name, "failed", str(e))
        return OperationResult(repo.name, "ok", output)

    def exec_all(
        self,
        command: str,
        mode: ExecutionMode = ExecutionMode.PARALLEL,
        max_parallel: int | None = None,
    ) -> list[OperationResult]:
        """Run a shell command in every existing repo.

        Raises:
            CycleError: in a topological mode, before any command runs.
        """
        service = self.service()
        targets = [r for r in service.scan_repos() if exists_as_git_repo(r)]
        mode = ExecutionMode(mode)

        if mode.is_topological:
            graph = self._repo_graph(service.member_configs, [r.name for r in targets])
            return execute_topo_for_all(
                [(r.name, r) for r in targets],
                lambda item: self.exec_repo(item[1], command),
                graph,
                mode,
                max_parallel,
            )
        return execute_for_all(targets, lambda r: self.exec_repo(r, command), mode, max_parallel)

    # -------------------------------------------------------------------------
    # Update revs
    # -------------------------------------------------------------------------

    def update_revs(self, names: list[str] | None = None, dry_run: bool = False) -> list[OperationResult]:
        """Pin the current HEAD of repos into the root config.

        ``names`` limits the update to those repos (default: every repo in the
        root config). The config is only written when something changed.
        """
        root = load_root_config(self.root, self.fs)
        repos = dict(root.config.repos)
        targets = names or list(repos)
        results = []

        for name in targets:
            config = repos.get(name)
            repo_path = self.root / name
            if config is None:
                results.append(OperationResult(name, "skipped", "Not in root config"))
                continue
            if not self.fs.exists(repo_path) or not self.git.is_git_repo(repo_path):
                results.append(OperationResult(name, "skipped", "Repo does not exist"))
                continue
            try:
                current_rev = self.git.get_current_rev(repo_path)
            except GitError as e:
                results.append(OperationResult(name, "skipped", str(e)))
                continue

            if config.rev == current_rev:
                results.append(OperationResult(name, "unchanged", f"Already at {current_rev[:7]}"))
                continue

            old = config.rev[:7] if config.rev else "unpinned"
            repos[name] = RepoConfig(url=config.url, rev=current_rev, install=config.install)
            results.append(OperationResult(name, "updated", f"{old} -> {current_rev[:7]}"))

        if not dry_run and any(r.status == "updated" for r in results):
            write_generated_config(self.root, repos, dict(root.config.packages), self.fs)

        return results

    # -------------------------------------------------------------------------
    # Tree
    # -------------------------------------------------------------------------

    def dependency_tree(self) -> tuple[dict[str, list[str]], dict[str, RepoDependency]]:
        """Repos per declaring config, plus per-repo declaration info.

        Returns ``(by_declarer, dependencies)`` where ``by_declarer`` maps
        ``"(root)"`` and each member name to the repos it declares.
        """
        root = load_root_config(self.root, self.fs)
        member_configs = collect_member_configs(self.root, self.fs)

        sources: list[tuple[str, dict[str, RepoConfig]]] = [(ROOT_DECLARER, root.config.repos)]
        sources.extend((m.repo_name, m.config.deps) for m in member_configs)

        by_declarer: dict[str, list[str]] = {}
        dependencies: dict[str, RepoDependency] = {}

        for declarer, repos in sources:
            by_declarer[declarer] = list(repos)
            for name, config in repos.items():
                dep = dependencies.get(name)
                if dep is None:
                    dependencies[name] = RepoDependency(name, [declarer], config.rev)
                    continue
                dep.declared_in.append(declarer)
                if config.rev and dep.rev and config.rev != dep.rev:
                    if not dep.conflicting_revs:
                        dep.conflicting_revs.append(dep.rev)
                    if config.rev not in dep.conflicting_revs:
                        dep.conflicting_revs.append(config.rev)
                elif config.rev and not dep.rev:
                    dep.rev = config.rev

        return by_declarer, dependencies
