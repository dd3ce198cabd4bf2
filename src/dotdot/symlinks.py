"""
Package symlinks at the workspace root.

Each package index entry ``name -> {repo, path}`` is linked as
``<root>/<name> -> <root>/<repo>/<path>`` using a relative link value.
Scoped names such as ``@org/utils`` live in a ``@org`` directory.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from .config import PackageIndexEntry
from .errors import LinkError
from .fs import LocalFileSystem

logger = logging.getLogger(__name__)

PackageSpec = Mapping[str, PackageIndexEntry] | Iterable[tuple[str, PackageIndexEntry]]


@dataclass(frozen=True)
class PackageMapping:
    """Where one package symlink comes from and goes to (absolute paths)."""

    source: Path
    target: Path
    target_name: str
    source_repo: str

    @property
    def link_value(self) -> str:
        """Relative path stored in the symlink."""
        return os.path.relpath(self.source, self.target.parent)

    def to_dict(self) -> dict:
        return {
            "source": str(self.source),
            "target": str(self.target),
            "target_name": self.target_name,
            "source_repo": self.source_repo,
        }


class SymlinkStatus(StrEnum):
    LINKED = "linked"
    NOT_LINKED = "not-linked"
    BLOCKED = "blocked"  # something other than a symlink sits at the target
    SOURCE_MISSING = "source-missing"


@dataclass
class SyncSymlinksResult:
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    overwritten: list[str] = field(default_factory=list)
    conflicts: dict[str, list[PackageMapping]] = field(default_factory=dict)
    errors: list[LinkError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "overwritten": self.overwritten,
            "conflicts": {
                name: [m.to_dict() for m in mappings] for name, mappings in self.conflicts.items()
            },
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class PruneSymlinksResult:
    removed: list[str] = field(default_factory=list)
    # Part of the result shape; pruning never skips anything today.
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"removed": self.removed, "skipped": self.skipped}


# =============================================================================
# Mappings
# =============================================================================


def collect_package_mappings(workspace_root: Path, packages: PackageSpec) -> list[PackageMapping]:
    """One mapping per package entry, in input order.

    ``packages`` is either the package index or a sequence of
    ``(name, entry)`` pairs, which may repeat a name.
    """
    workspace_root = Path(workspace_root)
    entries = packages.items() if isinstance(packages, Mapping) else packages
    return [
        PackageMapping(
            source=workspace_root / entry.repo / entry.path,
            target=workspace_root / name,
            target_name=name,
            source_repo=entry.repo,
        )
        for name, entry in entries
    ]


def find_conflicts(mappings: Iterable[PackageMapping]) -> dict[str, list[PackageMapping]]:
    """Target names claimed by two or more different source paths.

    Repeated entries with the same source are duplicates, not conflicts.
    """
    by_target: dict[str, list[PackageMapping]] = {}
    for mapping in mappings:
        by_target.setdefault(mapping.target_name, []).append(mapping)

    return {
        name: group
        for name, group in by_target.items()
        if len({m.source for m in group}) > 1
    }


def get_unique_mappings(mappings: Iterable[PackageMapping]) -> dict[str, PackageMapping]:
    """First mapping per target name wins."""
    unique: dict[str, PackageMapping] = {}
    for mapping in mappings:
        unique.setdefault(mapping.target_name, mapping)
    return unique


def _read_link(fs: LocalFileSystem, path: Path) -> str | None:
    try:
        return fs.read_link(path)
    except OSError:
        return None


def get_symlink_status(mapping: PackageMapping, fs: LocalFileSystem | None = None) -> SymlinkStatus:
    fs = fs or LocalFileSystem()
    if not fs.exists(mapping.source):
        return SymlinkStatus.SOURCE_MISSING
    if not fs.exists(mapping.target, follow_symlinks=False):
        return SymlinkStatus.NOT_LINKED
    if _read_link(fs, mapping.target) is None:
        return SymlinkStatus.BLOCKED
    return SymlinkStatus.LINKED


# =============================================================================
# Sync / Prune
# =============================================================================


def sync_symlinks(
    workspace_root: Path,
    packages: PackageSpec,
    dry_run: bool = False,
    force: bool = False,
    fs: LocalFileSystem | None = None,
) -> SyncSymlinksResult:
    """Create package symlinks at the workspace root.

    If any target name has conflicting sources and ``force`` is off, only the
    conflicts are reported and nothing is touched. Links that already point
    where they should are left alone and not reported. A failure on one
    mapping is recorded in ``errors`` and the rest carry on.
    """
    fs = fs or LocalFileSystem()
    workspace_root = Path(workspace_root)

    mappings = collect_package_mappings(workspace_root, packages)
    result = SyncSymlinksResult(conflicts=find_conflicts(mappings))

    if result.conflicts and not force:
        logger.debug("Symlink conflicts, not linking: %s", list(result.conflicts))
        return result

    for name, mapping in get_unique_mappings(mappings).items():
        if not fs.exists(mapping.source):
            result.skipped.append(name)
            continue

        parent_dir = mapping.target.parent
        relative_path = mapping.link_value
        overwritten = False

        if fs.exists(mapping.target, follow_symlinks=False):
            if force:
                try:
                    if not dry_run:
                        fs.remove(mapping.target)
                except OSError as e:
                    _record_link_error(result, mapping, f"Failed to remove existing target ({e})")
                    continue
                result.overwritten.append(name)
                overwritten = True
            elif _read_link(fs, mapping.target) == relative_path:
                continue
            else:
                result.skipped.append(name)
                continue

        try:
            if not dry_run:
                if parent_dir != workspace_root:
                    fs.make_directory(parent_dir, recursive=True)
                fs.symlink(relative_path, mapping.target)
        except OSError as e:
            _record_link_error(result, mapping, f"Failed to create symlink ({e})")
            continue

        if not overwritten:
            result.created.append(name)

    return result


def _record_link_error(result: SyncSymlinksResult, mapping: PackageMapping, message: str) -> None:
    error = LinkError(str(mapping.target), message)
    logger.warning("%s", error)
    result.errors.append(error)


def prune_stale_symlinks(
    workspace_root: Path,
    packages: Iterable[str],
    dry_run: bool = False,
    fs: LocalFileSystem | None = None,
) -> PruneSymlinksResult:
    """Remove root-level symlinks whose name is no longer a package.

    ``packages`` is the package index (only its names are used). Hidden
    entries are ignored. Inside ``@scope`` directories stale links are
    removed too, and a scope directory left empty is deleted.
    """
    fs = fs or LocalFileSystem()
    workspace_root = Path(workspace_root)
    current_targets = set(packages)
    result = PruneSymlinksResult()

    for entry in sorted(fs.read_directory(workspace_root)):
        if entry.startswith("."):
            continue
        entry_path = workspace_root / entry

        if _read_link(fs, entry_path) is not None:
            if entry not in current_targets:
                if not dry_run:
                    fs.remove(entry_path)
                result.removed.append(entry)
            continue

        if not entry.startswith("@"):
            continue

        try:
            scoped_entries = sorted(fs.read_directory(entry_path))
        except OSError:
            continue

        for scoped_entry in scoped_entries:
            scoped_path = entry_path / scoped_entry
            scoped_name = f"{entry}/{scoped_entry}"
            if _read_link(fs, scoped_path) is not None and scoped_name not in current_targets:
                if not dry_run:
                    fs.remove(scoped_path)
                result.removed.append(scoped_name)

        if not dry_run and not fs.read_directory(entry_path):
            fs.remove(entry_path)

    return result


def remove_symlinks(
    workspace_root: Path,
    packages: PackageSpec,
    dry_run: bool = False,
    fs: LocalFileSystem | None = None,
) -> list[str]:
    """Remove the symlinks of the given packages; other files are left alone."""
    fs = fs or LocalFileSystem()
    workspace_root = Path(workspace_root)
    removed = []

    for name, mapping in get_unique_mappings(collect_package_mappings(workspace_root, packages)).items():
        if _read_link(fs, mapping.target) is None:
            continue
        if not dry_run:
            fs.remove(mapping.target)
            parent_dir = mapping.target.parent
            if parent_dir != workspace_root and not fs.read_directory(parent_dir):
                fs.remove(parent_dir)
        removed.append(name)

    return removed
