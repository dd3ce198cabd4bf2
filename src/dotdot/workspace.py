"""
Unified view of the repositories in a workspace.

Combines how a repo is tracked by config, whether it is on disk, and its live
git state into one ``RepoInfo`` per repository. Nothing is cached: every scan
probes the workspace again.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from .config import (
    MemberConfig,
    MemberConfigSource,
    RepoConfig,
    RootConfigSource,
    collect_member_configs,
    find_workspace_root,
    load_root_config,
    load_root_config_with_sync_check,
    merge_member_configs,
)
from .errors import GitError
from .fs import LocalFileSystem
from .git import Git

logger = logging.getLogger(__name__)


# =============================================================================
# Repo Model
# =============================================================================


class TrackingKind(StrEnum):
    """How a repo is tracked in the workspace."""

    MEMBER = "member"  # has its own dotdot.json
    DEPENDENCY = "dependency"  # declared by a member or the root config
    DANGLING = "dangling"  # git repo on disk that nothing references


@dataclass(frozen=True)
class RepoTracking:
    """Tracking tag plus the payload that belongs to it.

    ``config`` is the member's own config for ``MEMBER`` and the repo entry
    for ``DEPENDENCY``; ``declared_by`` is only meaningful for ``DEPENDENCY``.
    """

    kind: TrackingKind
    config: MemberConfig | RepoConfig | None = None
    declared_by: tuple[str, ...] = ()

    @classmethod
    def member(cls, config: MemberConfig) -> RepoTracking:
        return cls(TrackingKind.MEMBER, config=config)

    @classmethod
    def dependency(cls, declared_by: list[str], config: RepoConfig) -> RepoTracking:
        return cls(TrackingKind.DEPENDENCY, config=config, declared_by=tuple(declared_by))

    @classmethod
    def dangling(cls) -> RepoTracking:
        return cls(TrackingKind.DANGLING)

    def to_dict(self) -> dict:
        result: dict = {"kind": self.kind.value}
        if self.kind == TrackingKind.DEPENDENCY:
            result["declared_by"] = list(self.declared_by)
        return result


class RepoFsState(StrEnum):
    """Filesystem state of a repo directory."""

    MISSING = "missing"
    NOT_GIT = "not-git"
    EXISTS = "exists"


@dataclass(frozen=True)
class RepoGitState:
    """Live git state (only for repos that exist as git repos)."""

    rev: str
    short_rev: str
    branch: str
    is_dirty: bool
    remote_url: str | None = None

    @property
    def is_detached(self) -> bool:
        return self.branch == "HEAD"

    def to_dict(self) -> dict:
        return {
            "rev": self.rev,
            "short_rev": self.short_rev,
            "branch": self.branch,
            "is_dirty": self.is_dirty,
            "remote_url": self.remote_url,
        }


@dataclass(frozen=True)
class RepoInfo:
    """Everything known about one repo in the workspace."""

    name: str
    path: Path
    tracking: RepoTracking
    fs_state: RepoFsState
    git_state: RepoGitState | None = None
    pinned_rev: str | None = None
    # Set when the git state probe failed; git_state is then None.
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path),
            "tracking": self.tracking.to_dict(),
            "fs_state": self.fs_state.value,
            "git_state": self.git_state.to_dict() if self.git_state else None,
            "pinned_rev": self.pinned_rev,
            "diverged": is_diverged(self),
            "error": self.error,
        }


def is_member(repo: RepoInfo) -> bool:
    return repo.tracking.kind == TrackingKind.MEMBER


def is_dependency(repo: RepoInfo) -> bool:
    return repo.tracking.kind == TrackingKind.DEPENDENCY


def is_dangling(repo: RepoInfo) -> bool:
    return repo.tracking.kind == TrackingKind.DANGLING


def exists_as_git_repo(repo: RepoInfo) -> bool:
    return repo.fs_state == RepoFsState.EXISTS


def rev_matches(current_rev: str, pinned_rev: str) -> bool:
    """Check a revision against a pin, which may be abbreviated."""
    return current_rev == pinned_rev or current_rev.startswith(pinned_rev)


def is_diverged(repo: RepoInfo) -> bool:
    """Check if the repo's HEAD moved away from its pinned revision.

    Repos without a pin or without git state are never diverged.
    """
    if not repo.pinned_rev or repo.git_state is None:
        return False
    return not rev_matches(repo.git_state.rev, repo.pinned_rev)


# =============================================================================
# Workspace Service
# =============================================================================


@dataclass
class WorkspaceContext:
    """Workspace root with its loaded configs."""

    root: Path
    root_config: RootConfigSource
    member_configs: list[MemberConfigSource] = field(default_factory=list)


class WorkspaceService:
    """Scan and query the repositories of one workspace."""

    def __init__(
        self,
        ctx: WorkspaceContext,
        fs: LocalFileSystem | None = None,
        git: Git | None = None,
    ):
        self.ctx = ctx
        self.fs = fs or LocalFileSystem()
        self.git = git or Git()
        self._merged = merge_member_configs(ctx.member_configs)

    @property
    def root(self) -> Path:
        return self.ctx.root

    @property
    def root_config(self) -> RootConfigSource:
        return self.ctx.root_config

    @property
    def member_configs(self) -> list[MemberConfigSource]:
        return self.ctx.member_configs

    @classmethod
    def from_root(
        cls,
        root: Path,
        *,
        check_sync: bool = True,
        fs: LocalFileSystem | None = None,
        git: Git | None = None,
    ) -> WorkspaceService:
        """Load a workspace from an explicit root.

        With ``check_sync`` the root config must cover every member
        declaration (``ConfigOutOfSyncError`` otherwise); ``sync`` itself
        loads without the check.
        """
        fs = fs or LocalFileSystem()
        root = Path(root).resolve()
        if check_sync:
            root_config = load_root_config_with_sync_check(root, fs)
        else:
            root_config = load_root_config(root, fs)
        ctx = WorkspaceContext(
            root=root,
            root_config=root_config,
            member_configs=collect_member_configs(root, fs),
        )
        return cls(ctx, fs=fs, git=git)

    @classmethod
    def from_cwd(
        cls,
        cwd: Path | None = None,
        *,
        check_sync: bool = True,
        fs: LocalFileSystem | None = None,
        git: Git | None = None,
    ) -> WorkspaceService:
        """Find the workspace that contains ``cwd`` and load it."""
        fs = fs or LocalFileSystem()
        root = find_workspace_root(cwd or Path.cwd(), fs)
        return cls.from_root(root, check_sync=check_sync, fs=fs, git=git)

    # -------------------------------------------------------------------------
    # Per-repo probes
    # -------------------------------------------------------------------------

    def _build_tracking(self, name: str) -> RepoTracking:
        """Classify a repo: member > declared dependency > root-only > dangling."""
        for source in self.ctx.member_configs:
            if source.repo_name == name:
                return RepoTracking.member(source.config)

        if name in self._merged.declared_deps and name in self._merged.repos:
            declared_by = [
                source.repo_name for source in self.ctx.member_configs if name in source.config.deps
            ]
            return RepoTracking.dependency(declared_by, self._merged.repos[name])

        root_repo = self.ctx.root_config.config.repos.get(name)
        if root_repo is not None:
            return RepoTracking.dependency([], root_repo)

        return RepoTracking.dangling()

    def _pinned_rev(self, name: str, tracking: RepoTracking) -> str | None:
        match tracking.kind:
            case TrackingKind.DEPENDENCY:
                return tracking.config.rev if isinstance(tracking.config, RepoConfig) else None
            case TrackingKind.MEMBER | TrackingKind.DANGLING:
                # Members pin through the root config, not their own config.
                root_repo = self.ctx.root_config.config.repos.get(name)
                return root_repo.rev if root_repo else None

    def _fs_state(self, repo_path: Path) -> RepoFsState:
        if not self.fs.exists(repo_path):
            return RepoFsState.MISSING
        if not self.git.is_git_repo(repo_path):
            return RepoFsState.NOT_GIT
        return RepoFsState.EXISTS

    def _git_state(self, repo_path: Path) -> RepoGitState:
        try:
            remote_url = self.git.get_remote_url(repo_path) or None
        except GitError:
            remote_url = None
        return RepoGitState(
            rev=self.git.get_current_rev(repo_path),
            short_rev=self.git.get_short_rev(repo_path),
            branch=self.git.get_current_branch(repo_path),
            is_dirty=self.git.is_dirty(repo_path),
            remote_url=remote_url,
        )

    def _repo_info(self, name: str) -> RepoInfo:
        repo_path = self.ctx.root / name
        tracking = self._build_tracking(name)
        fs_state = self._fs_state(repo_path)
        git_state = None
        error = None

        if fs_state == RepoFsState.EXISTS:
            try:
                git_state = self._git_state(repo_path)
            except GitError as e:
                logger.warning("Could not read git state of %s: %s", name, e)
                error = str(e)

        return RepoInfo(
            name=name,
            path=repo_path,
            tracking=tracking,
            fs_state=fs_state,
            git_state=git_state,
            pinned_rev=self._pinned_rev(name, tracking),
            error=error,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _known_names(self) -> list[str]:
        """Config-declared names plus any git repo found directly under the root."""
        names: dict[str, None] = {}
        for name in sorted(self._merged.members_with_config):
            names[name] = None
        for name in sorted(self._merged.declared_deps):
            names[name] = None
        for name in self.ctx.root_config.config.repos:
            names[name] = None

        for entry in sorted(self.fs.read_directory(self.ctx.root)):
            if entry.startswith(".") or entry in names:
                continue
            entry_path = self.ctx.root / entry
            if self.fs.is_dir(entry_path) and self.git.is_git_repo(entry_path):
                names[entry] = None

        return list(names)

    def scan_repos(self) -> list[RepoInfo]:
        """Probe every known repo, all concurrently."""
        names = self._known_names()
        if not names:
            return []

        logger.debug("Scanning %d repos in %s", len(names), self.ctx.root)
        with ThreadPoolExecutor(max_workers=len(names)) as executor:
            return list(executor.map(self._repo_info, names))

    def get_repo(self, name: str) -> RepoInfo | None:
        return next((r for r in self.scan_repos() if r.name == name), None)

    def get_members(self) -> list[RepoInfo]:
        return [r for r in self.scan_repos() if is_member(r)]

    def get_dependencies(self) -> list[RepoInfo]:
        return [r for r in self.scan_repos() if is_dependency(r)]

    def get_dangling(self) -> list[RepoInfo]:
        return [r for r in self.scan_repos() if is_dangling(r)]
