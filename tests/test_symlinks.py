"""Tests for package symlink management."""

import os
from pathlib import Path

import pytest

from dotdot.config import PackageIndexEntry
from dotdot.fs import LocalFileSystem
from dotdot.symlinks import (
    SymlinkStatus,
    collect_package_mappings,
    find_conflicts,
    get_symlink_status,
    get_unique_mappings,
    prune_stale_symlinks,
    remove_symlinks,
    sync_symlinks,
)


class FailingSymlinkFileSystem(LocalFileSystem):
    """Refuses to create one particular link."""

    def __init__(self, fail_on: str):
        self.fail_on = fail_on

    def symlink(self, target, link_path):
        if Path(link_path).name == self.fail_on:
            raise PermissionError("operation not permitted")
        super().symlink(target, link_path)


@pytest.fixture
def root(tmp_path: Path) -> Path:
    (tmp_path / "ui-kit" / "packages" / "button").mkdir(parents=True)
    (tmp_path / "ui-kit" / "packages" / "utils").mkdir(parents=True)
    (tmp_path / "other" / "utils").mkdir(parents=True)
    return tmp_path


def entry(repo: str, path: str) -> PackageIndexEntry:
    return PackageIndexEntry(repo=repo, path=path)


def test_collect_package_mappings(root: Path):
    mappings = collect_package_mappings(root, {"button": entry("ui-kit", "packages/button")})
    assert len(mappings) == 1
    mapping = mappings[0]
    assert mapping.source == root / "ui-kit" / "packages" / "button"
    assert mapping.target == root / "button"
    assert mapping.source_repo == "ui-kit"
    assert mapping.link_value == os.path.join("ui-kit", "packages", "button")


def test_scoped_link_value(root: Path):
    (mapping,) = collect_package_mappings(root, {"@org/utils": entry("ui-kit", "packages/utils")})
    assert mapping.target == root / "@org" / "utils"
    assert mapping.link_value == os.path.join("..", "ui-kit", "packages", "utils")


def test_find_conflicts_ignores_identical_sources(root: Path):
    mappings = collect_package_mappings(
        root,
        [
            ("utils", entry("ui-kit", "packages/utils")),
            ("utils", entry("other", "utils")),
            ("button", entry("ui-kit", "packages/button")),
            ("button", entry("ui-kit", "packages/button")),
        ],
    )
    conflicts = find_conflicts(mappings)
    assert list(conflicts) == ["utils"]
    assert [m.source_repo for m in conflicts["utils"]] == ["ui-kit", "other"]
    assert get_unique_mappings(mappings)["utils"].source_repo == "ui-kit"


def test_sync_creates_relative_links(root: Path):
    packages = {
        "button": entry("ui-kit", "packages/button"),
        "@org/utils": entry("ui-kit", "packages/utils"),
    }
    result = sync_symlinks(root, packages)

    assert result.created == ["button", "@org/utils"]
    assert os.readlink(root / "button") == os.path.join("ui-kit", "packages", "button")
    assert (root / "@org" / "utils").resolve() == (root / "ui-kit" / "packages" / "utils").resolve()


def test_sync_is_idempotent(root: Path):
    packages = {"button": entry("ui-kit", "packages/button")}
    sync_symlinks(root, packages)
    result = sync_symlinks(root, packages)
    assert result.created == []
    assert result.skipped == []
    assert result.overwritten == []


def test_sync_dry_run_touches_nothing(root: Path):
    result = sync_symlinks(root, {"@org/button": entry("ui-kit", "packages/button")}, dry_run=True)
    assert result.created == ["@org/button"]
    assert not os.path.lexists(root / "@org")


def test_sync_skips_missing_source(root: Path):
    result = sync_symlinks(root, {"ghost": entry("ui-kit", "packages/ghost")})
    assert result.skipped == ["ghost"]
    assert not os.path.lexists(root / "ghost")


def test_sync_skips_existing_target_without_force(root: Path):
    (root / "button").write_text("mine")
    result = sync_symlinks(root, {"button": entry("ui-kit", "packages/button")})
    assert result.skipped == ["button"]
    assert (root / "button").read_text() == "mine"


def test_sync_force_overwrites_existing_target(root: Path):
    (root / "button").write_text("mine")
    result = sync_symlinks(root, {"button": entry("ui-kit", "packages/button")}, force=True)
    assert result.overwritten == ["button"]
    assert result.created == []
    assert os.path.islink(root / "button")


def test_sync_force_replaces_dangling_link(root: Path):
    os.symlink("nowhere", root / "button")
    result = sync_symlinks(root, {"button": entry("ui-kit", "packages/button")}, force=True)
    assert result.overwritten == ["button"]
    assert os.readlink(root / "button") == os.path.join("ui-kit", "packages", "button")


def test_conflicts_block_sync_without_force(root: Path):
    packages = [
        ("utils", entry("ui-kit", "packages/utils")),
        ("utils", entry("other", "utils")),
        ("button", entry("ui-kit", "packages/button")),
    ]
    result = sync_symlinks(root, packages)
    assert list(result.conflicts) == ["utils"]
    assert result.created == []
    assert not os.path.lexists(root / "button")


def test_conflicts_with_force_link_first_declaration(root: Path):
    packages = [
        ("utils", entry("ui-kit", "packages/utils")),
        ("utils", entry("other", "utils")),
    ]
    result = sync_symlinks(root, packages, force=True)
    assert list(result.conflicts) == ["utils"]
    assert result.created == ["utils"]
    assert os.readlink(root / "utils") == os.path.join("ui-kit", "packages", "utils")


def test_link_failure_is_recorded_and_others_continue(root: Path):
    packages = {
        "button": entry("ui-kit", "packages/button"),
        "utils": entry("ui-kit", "packages/utils"),
    }
    result = sync_symlinks(root, packages, fs=FailingSymlinkFileSystem("button"))

    assert result.created == ["utils"]
    assert len(result.errors) == 1
    assert result.errors[0].path == str(root / "button")


def test_symlink_status(root: Path):
    packages = {
        "button": entry("ui-kit", "packages/button"),
        "utils": entry("ui-kit", "packages/utils"),
        "ghost": entry("ui-kit", "packages/ghost"),
        "blocked": entry("other", "utils"),
    }
    sync_symlinks(root, {"button": packages["button"]})
    (root / "blocked").mkdir()

    statuses = {m.target_name: get_symlink_status(m) for m in collect_package_mappings(root, packages)}
    assert statuses == {
        "button": SymlinkStatus.LINKED,
        "utils": SymlinkStatus.NOT_LINKED,
        "ghost": SymlinkStatus.SOURCE_MISSING,
        "blocked": SymlinkStatus.BLOCKED,
    }


def test_prune_removes_stale_links(root: Path):
    sync_symlinks(
        root,
        {
            "button": entry("ui-kit", "packages/button"),
            "old": entry("ui-kit", "packages/utils"),
            "@org/stale": entry("other", "utils"),
        },
    )
    (root / "notes.txt").write_text("keep")
    os.symlink("ui-kit", root / ".hidden-link")

    result = prune_stale_symlinks(root, {"button": entry("ui-kit", "packages/button")})

    assert result.removed == ["@org/stale", "old"]
    assert result.skipped == []
    assert os.path.islink(root / "button")
    assert not os.path.lexists(root / "@org")
    assert (root / "notes.txt").exists()
    assert os.path.islink(root / ".hidden-link")


def test_prune_keeps_scope_dir_with_live_links(root: Path):
    sync_symlinks(
        root,
        {"@org/button": entry("ui-kit", "packages/button"), "@org/utils": entry("other", "utils")},
    )
    result = prune_stale_symlinks(root, ["@org/button"])
    assert result.removed == ["@org/utils"]
    assert os.path.islink(root / "@org" / "button")


def test_prune_dry_run(root: Path):
    sync_symlinks(root, {"old": entry("ui-kit", "packages/utils")})
    result = prune_stale_symlinks(root, [], dry_run=True)
    assert result.removed == ["old"]
    assert os.path.islink(root / "old")


def test_remove_symlinks(root: Path):
    packages = {
        "button": entry("ui-kit", "packages/button"),
        "@org/utils": entry("ui-kit", "packages/utils"),
        "plain": entry("other", "utils"),
    }
    sync_symlinks(root, {k: v for k, v in packages.items() if k != "plain"})
    (root / "plain").mkdir()

    removed = remove_symlinks(root, packages)

    assert removed == ["button", "@org/utils"]
    assert not os.path.lexists(root / "button")
    assert not os.path.lexists(root / "@org")
    assert (root / "plain").is_dir()
