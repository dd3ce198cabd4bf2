"""dotdot: declarative multi-repository workspaces."""

from ._version import __version__
from .config import (
    MemberConfig,
    PackageIndexEntry,
    RepoConfig,
    RootConfig,
    collect_member_configs,
    find_workspace_root,
    load_root_config,
    merge_member_configs,
    write_generated_config,
)
from .core import SyncPlan, SyncReport, WorkspaceManager
from .errors import (
    ConfigError,
    ConfigOutOfSyncError,
    CycleError,
    DotdotError,
    GitError,
    LinkError,
    ShellError,
)
from .execution import (
    ExecutionMode,
    OperationResult,
    execute_for_all,
    execute_parallel,
    execute_sequential,
    execute_topo_for_all,
)
from .fs import LocalFileSystem
from .git import Git, run_shell_command
from .graph import RepoGraph
from .symlinks import (
    PackageMapping,
    SymlinkStatus,
    prune_stale_symlinks,
    remove_symlinks,
    sync_symlinks,
)
from .workspace import (
    RepoFsState,
    RepoGitState,
    RepoInfo,
    RepoTracking,
    TrackingKind,
    WorkspaceService,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "MemberConfig",
    "PackageIndexEntry",
    "RepoConfig",
    "RootConfig",
    "collect_member_configs",
    "find_workspace_root",
    "load_root_config",
    "merge_member_configs",
    "write_generated_config",
    # Errors
    "ConfigError",
    "ConfigOutOfSyncError",
    "CycleError",
    "DotdotError",
    "GitError",
    "LinkError",
    "ShellError",
    # Models
    "ExecutionMode",
    "OperationResult",
    "PackageMapping",
    "RepoFsState",
    "RepoGitState",
    "RepoGraph",
    "RepoInfo",
    "RepoTracking",
    "SymlinkStatus",
    "SyncPlan",
    "SyncReport",
    "TrackingKind",
    # Operations
    "Git",
    "LocalFileSystem",
    "WorkspaceManager",
    "WorkspaceService",
    # Functions
    "execute_for_all",
    "execute_parallel",
    "execute_sequential",
    "execute_topo_for_all",
    "prune_stale_symlinks",
    "remove_symlinks",
    "run_shell_command",
    "sync_symlinks",
]
