"""
Workspace configuration: member configs (``dotdot.json``) and the generated
root config (``dotdot-root.json``).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError, ConfigOutOfSyncError
from .fs import LocalFileSystem

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "dotdot.json"
GENERATED_CONFIG_FILE_NAME = "dotdot-root.json"
MAX_PARALLEL_ENV = "DOTDOT_MAX_PARALLEL"


# =============================================================================
# Config Models
# =============================================================================


@dataclass(frozen=True)
class RepoConfig:
    """A repository entry: where to clone it from and what to pin it to."""

    url: str
    rev: str | None = None
    install: str | None = None

    @classmethod
    def from_dict(cls, data: Any, path: str = "") -> RepoConfig:
        data = _expect_mapping(data, path, "repo entry")
        url = data.get("url", "")
        if not isinstance(url, str):
            raise ConfigError(path, "Repo 'url' must be a string")
        return cls(
            url=url,
            rev=_optional_str(data, "rev", path),
            install=_optional_str(data, "install", path),
        )

    def to_dict(self) -> dict:
        result: dict[str, str] = {"url": self.url}
        if self.rev:
            result["rev"] = self.rev
        if self.install:
            result["install"] = self.install
        return result


# Dependency declarations in member configs share the repo entry shape.
DepConfig = RepoConfig


@dataclass(frozen=True)
class ExposeConfig:
    """A sub-path of a member repo to link at the workspace root."""

    path: str
    install: str | None = None

    @classmethod
    def from_dict(cls, data: Any, path: str = "") -> ExposeConfig:
        data = _expect_mapping(data, path, "expose entry")
        sub_path = data.get("path")
        if not isinstance(sub_path, str) or not sub_path:
            raise ConfigError(path, "Expose entry needs a non-empty 'path'")
        return cls(path=sub_path, install=_optional_str(data, "install", path))

    def to_dict(self) -> dict:
        result: dict[str, str] = {"path": self.path}
        if self.install:
            result["install"] = self.install
        return result


@dataclass(frozen=True)
class PackageIndexEntry:
    """A package in the root index, attributed to the repo that exposes it."""

    repo: str
    path: str
    install: str | None = None

    @classmethod
    def from_dict(cls, data: Any, path: str = "") -> PackageIndexEntry:
        data = _expect_mapping(data, path, "package entry")
        repo = data.get("repo")
        sub_path = data.get("path")
        if not isinstance(repo, str) or not isinstance(sub_path, str):
            raise ConfigError(path, "Package entry needs string 'repo' and 'path'")
        return cls(repo=repo, path=sub_path, install=_optional_str(data, "install", path))

    def to_dict(self) -> dict:
        result: dict[str, str] = {"repo": self.repo, "path": self.path}
        if self.install:
            result["install"] = self.install
        return result


@dataclass(frozen=True)
class MemberConfig:
    """Contents of a member repo's ``dotdot.json``."""

    deps: dict[str, DepConfig] = field(default_factory=dict)
    exposes: dict[str, ExposeConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any, path: str = "") -> MemberConfig:
        data = _expect_mapping(data, path, "member config")
        deps = _expect_mapping(data.get("deps", {}), path, "'deps'")
        exposes = _expect_mapping(data.get("exposes", {}), path, "'exposes'")
        return cls(
            deps={name: DepConfig.from_dict(v, path) for name, v in deps.items()},
            exposes={name: ExposeConfig.from_dict(v, path) for name, v in exposes.items()},
        )

    def to_dict(self) -> dict:
        result: dict[str, Any] = {}
        if self.exposes:
            result["exposes"] = {k: v.to_dict() for k, v in self.exposes.items()}
        if self.deps:
            result["deps"] = {k: v.to_dict() for k, v in self.deps.items()}
        return result


@dataclass(frozen=True)
class RootConfig:
    """Contents of the generated ``dotdot-root.json``."""

    repos: dict[str, RepoConfig] = field(default_factory=dict)
    packages: dict[str, PackageIndexEntry] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any, path: str = "") -> RootConfig:
        data = _expect_mapping(data, path, "root config")
        repos = _expect_mapping(data.get("repos", {}), path, "'repos'")
        packages = _expect_mapping(data.get("packages", {}), path, "'packages'")
        return cls(
            repos={name: RepoConfig.from_dict(v, path) for name, v in repos.items()},
            packages={name: PackageIndexEntry.from_dict(v, path) for name, v in packages.items()},
        )

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"repos": {k: v.to_dict() for k, v in self.repos.items()}}
        if self.packages:
            result["packages"] = {k: v.to_dict() for k, v in self.packages.items()}
        return result


@dataclass(frozen=True)
class RootConfigSource:
    """Root config together with where it was loaded from."""

    path: Path
    dir: Path
    config: RootConfig


@dataclass(frozen=True)
class MemberConfigSource:
    """Member config together with the repo that declares it."""

    path: Path
    dir: Path
    repo_name: str
    config: MemberConfig


@dataclass
class MergedConfig:
    """All member configs folded together (first declaration wins)."""

    repos: dict[str, RepoConfig] = field(default_factory=dict)
    packages: dict[str, PackageIndexEntry] = field(default_factory=dict)
    members_with_config: set[str] = field(default_factory=set)
    declared_deps: set[str] = field(default_factory=set)


def _expect_mapping(value: Any, path: str, what: str) -> dict:
    if not isinstance(value, dict):
        raise ConfigError(path, f"Invalid {what}: expected an object")
    return value


def _optional_str(data: dict, key: str, path: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ConfigError(path, f"'{key}' must be a string")
    return value or None


# =============================================================================
# Loading
# =============================================================================


def _load_json(config_path: Path, fs: LocalFileSystem) -> Any:
    try:
        content = fs.read_file_string(config_path)
    except OSError as e:
        raise ConfigError(str(config_path), f"Failed to read config file: {e}") from e
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigError(str(config_path), f"Failed to parse JSON: {e}") from e


def load_root_config(workspace_root: Path, fs: LocalFileSystem | None = None) -> RootConfigSource:
    """Load the generated root config; a missing file yields an empty config."""
    fs = fs or LocalFileSystem()
    config_path = Path(workspace_root) / GENERATED_CONFIG_FILE_NAME

    if not fs.exists(config_path):
        logger.debug("No %s in %s, using empty root config", GENERATED_CONFIG_FILE_NAME, workspace_root)
        return RootConfigSource(path=config_path, dir=Path(workspace_root), config=RootConfig())

    config = RootConfig.from_dict(_load_json(config_path, fs), str(config_path))
    return RootConfigSource(path=config_path, dir=Path(workspace_root), config=config)


def load_member_config(repo_dir: Path, fs: LocalFileSystem | None = None) -> MemberConfigSource | None:
    """Load ``dotdot.json`` from a repo directory, or None if it has none."""
    fs = fs or LocalFileSystem()
    repo_dir = Path(repo_dir)
    config_path = repo_dir / CONFIG_FILE_NAME

    if not fs.exists(config_path):
        return None

    config = MemberConfig.from_dict(_load_json(config_path, fs), str(config_path))
    return MemberConfigSource(path=config_path, dir=repo_dir, repo_name=repo_dir.name, config=config)


def collect_member_configs(
    workspace_root: Path, fs: LocalFileSystem | None = None
) -> list[MemberConfigSource]:
    """Collect member configs from the workspace's immediate subdirectories."""
    fs = fs or LocalFileSystem()
    configs = []
    for entry in sorted(fs.read_directory(workspace_root)):
        if entry.startswith("."):
            continue
        entry_path = Path(workspace_root) / entry
        if not fs.is_dir(entry_path):
            continue
        member = load_member_config(entry_path, fs)
        if member is not None:
            configs.append(member)
    return configs


def find_workspace_root(start_dir: Path, fs: LocalFileSystem | None = None) -> Path:
    """Walk up from ``start_dir`` to the directory holding the root config."""
    fs = fs or LocalFileSystem()
    current = Path(start_dir).resolve()

    for candidate in (current, *current.parents):
        if fs.exists(candidate / GENERATED_CONFIG_FILE_NAME):
            return candidate

    raise ConfigError(
        str(start_dir),
        f"Not a dotdot workspace (no {GENERATED_CONFIG_FILE_NAME} found). "
        "Run 'dotdot sync <path>' to initialize.",
    )


def merge_member_configs(configs: list[MemberConfigSource]) -> MergedConfig:
    """Fold member configs into one repo map and package index."""
    merged = MergedConfig()

    for source in configs:
        merged.members_with_config.add(source.repo_name)

        for name, dep in source.config.deps.items():
            merged.declared_deps.add(name)
            merged.repos.setdefault(name, RepoConfig(url=dep.url, rev=dep.rev, install=dep.install))

        for package_name, expose in source.config.exposes.items():
            merged.packages.setdefault(
                package_name,
                PackageIndexEntry(repo=source.repo_name, path=expose.path, install=expose.install),
            )

    return merged


def collect_package_declarations(
    configs: list[MemberConfigSource],
) -> list[tuple[str, PackageIndexEntry]]:
    """Every exposed package of every member, in declaration order.

    Unlike ``merge_member_configs`` nothing is dropped, so the same package
    name exposed by two repos shows up twice.
    """
    return [
        (package_name, PackageIndexEntry(repo=source.repo_name, path=expose.path, install=expose.install))
        for source in configs
        for package_name, expose in source.config.exposes.items()
    ]


def check_config_sync(workspace_root: Path, fs: LocalFileSystem | None = None) -> RootConfigSource:
    """Load the root config and verify it covers all member declarations.

    Repos may exist in the root config without being declared by any member;
    only the other direction is an error.
    """
    fs = fs or LocalFileSystem()
    root = load_root_config(workspace_root, fs)
    merged = merge_member_configs(collect_member_configs(workspace_root, fs))

    missing_repos = sorted(name for name in merged.declared_deps if name not in root.config.repos)
    if missing_repos:
        raise ConfigOutOfSyncError(
            "Config out of sync. Deps declared in member configs but not in root: "
            f"{', '.join(missing_repos)}. Run 'dotdot sync' to update."
        )

    missing_packages = [name for name in merged.packages if name not in root.config.packages]
    if missing_packages:
        raise ConfigOutOfSyncError(
            "Config out of sync. Packages exposed in member configs but not in root: "
            f"{', '.join(missing_packages)}. Run 'dotdot sync' to update."
        )

    return root


def load_root_config_with_sync_check(
    workspace_root: Path, fs: LocalFileSystem | None = None
) -> RootConfigSource:
    return check_config_sync(workspace_root, fs)


def write_generated_config(
    workspace_root: Path,
    repos: dict[str, RepoConfig],
    packages: dict[str, PackageIndexEntry],
    fs: LocalFileSystem | None = None,
) -> Path:
    """Write ``dotdot-root.json`` (pretty JSON, trailing newline)."""
    fs = fs or LocalFileSystem()
    config_path = Path(workspace_root) / GENERATED_CONFIG_FILE_NAME
    content = json.dumps(RootConfig(repos=repos, packages=packages).to_dict(), indent=2) + "\n"
    fs.write_file_string(config_path, content)
    logger.debug("Wrote %s (%d repos, %d packages)", config_path, len(repos), len(packages))
    return config_path


def default_max_parallel() -> int | None:
    """Default concurrency bound from ``$DOTDOT_MAX_PARALLEL`` (None = unbounded)."""
    value = os.environ.get(MAX_PARALLEL_ENV)
    if not value:
        return None
    try:
        parsed = int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", MAX_PARALLEL_ENV, value)
        return None
    return parsed if parsed > 0 else None
