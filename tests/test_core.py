"""End-to-end tests of workspace operations against real git repositories."""

import json
import os
from pathlib import Path

import pytest

from dotdot.config import GENERATED_CONFIG_FILE_NAME, load_root_config
from dotdot.core import WorkspaceManager
from dotdot.errors import CycleError
from dotdot.execution import ExecutionMode

from conftest import add_member, commit, git, init_repo, requires_git, write_json

pytestmark = requires_git


@pytest.fixture
def upstream_lib(remotes: Path) -> tuple[Path, str, str]:
    """Upstream ``lib`` with two commits; returns (path, first_rev, second_rev)."""
    path = remotes / "lib"
    first = init_repo(path, {"packages/ui/index.js": "export {}\n"})
    second = commit(path, "CHANGELOG.md", "v2\n")
    return path, first, second


def test_sync_clones_links_and_writes_config(workspace: Path, upstream_lib):
    lib_path, _, _ = upstream_lib
    head = commit(lib_path, "dotdot.json", json.dumps({"exposes": {"@org/ui": {"path": "packages/ui"}}}))
    app_rev = add_member(
        workspace,
        "app",
        {
            "deps": {"lib": {"url": str(lib_path), "install": "touch installed.txt"}},
            "exposes": {"app-pkg": {"path": "pkg"}},
        },
    )
    manager = WorkspaceManager(workspace)

    report = manager.sync()

    results = {r.name: r for r in report.results}
    assert results["lib"].status == "cloned"
    assert results["lib"].message == f"Cloned at {head[:7]} (installed)"
    assert results["app"].status == "skipped"
    assert (workspace / "lib" / "installed.txt").exists()

    root = load_root_config(workspace).config
    assert root.repos["lib"].url == str(lib_path)
    assert root.repos["app"].url == ""
    assert root.repos["app"].rev == app_rev
    assert list(root.packages) == ["app-pkg"]

    assert report.symlinks.created == ["app-pkg"]
    assert os.readlink(workspace / "app-pkg") == os.path.join("app", "pkg")

    # lib became a member once cloned; its package shows up on the next sync
    second_report = manager.sync()
    assert {r.name: r.status for r in second_report.results} == {"app": "skipped", "lib": "skipped"}
    assert second_report.symlinks.created == ["@org/ui"]
    assert (workspace / "@org" / "ui" / "index.js").exists()


def test_sync_checks_out_pinned_rev(workspace: Path, upstream_lib):
    lib_path, first, _ = upstream_lib
    add_member(workspace, "app", {"deps": {"lib": {"url": str(lib_path), "rev": first[:10]}}})

    report = WorkspaceManager(workspace).sync(mode=ExecutionMode.TOPO_PARALLEL)

    assert [r.status for r in report.results if r.name == "lib"] == ["cloned"]
    assert git(workspace / "lib", "rev-parse", "HEAD") == first


def test_sync_skips_dirty_repo_unless_forced(workspace: Path, upstream_lib):
    lib_path, first, second = upstream_lib
    add_member(workspace, "app", {"deps": {"lib": {"url": str(lib_path), "rev": first}}})
    manager = WorkspaceManager(workspace)
    manager.sync()

    # move the pin and leave local changes behind
    write_json(workspace / "app" / "dotdot.json", {"deps": {"lib": {"url": str(lib_path), "rev": second}}})
    (workspace / "lib" / "packages" / "ui" / "index.js").write_text("local edit\n")
    assert manager.find_dirty_repos(["lib", "app", "missing"]) == ["lib", "app"]

    report = manager.sync(mode=ExecutionMode.SEQUENTIAL)
    lib_result = next(r for r in report.results if r.name == "lib")
    assert lib_result.status == "skipped"
    assert "uncommitted changes" in lib_result.message

    report = manager.sync(force=True)
    lib_result = next(r for r in report.results if r.name == "lib")
    assert lib_result.status == "checked-out"
    assert lib_result.message == f"Checked out {second[:7]} (forced)"
    assert git(workspace / "lib", "rev-parse", "HEAD") == second


def test_sync_reports_failures_and_continues(workspace: Path, upstream_lib, tmp_path: Path):
    lib_path, _, _ = upstream_lib
    add_member(
        workspace,
        "app",
        {"deps": {"lib": {"url": str(lib_path)}, "gone": {"url": str(tmp_path / "does-not-exist")}}},
    )
    report = WorkspaceManager(workspace).sync(mode=ExecutionMode.PARALLEL)
    statuses = {r.name: r.status for r in report.results}
    assert statuses["gone"] == "failed"
    assert statuses["lib"] == "cloned"
    assert "gone" in load_root_config(workspace).config.repos


def test_sync_cycle_stops_before_any_repo(workspace: Path, remotes: Path):
    add_member(workspace, "a", {"deps": {"b": {"url": str(remotes / "b")}}})
    add_member(workspace, "b", {"deps": {"a": {"url": str(remotes / "a")}}})

    report = WorkspaceManager(workspace).sync()

    assert report.cycle_error is not None
    assert report.cycle_error.cycle == ["a", "b"]
    assert report.results == []
    assert not (workspace / GENERATED_CONFIG_FILE_NAME).exists()


def test_plan_sync_is_dry(workspace: Path, upstream_lib):
    lib_path, _, _ = upstream_lib
    add_member(
        workspace,
        "app",
        {"deps": {"lib": {"url": str(lib_path)}, "nourl": {"url": ""}}, "exposes": {"app-pkg": {"path": "pkg"}}},
    )
    init_repo(workspace / "stray")

    plan = WorkspaceManager(workspace).plan_sync()

    assert [r.name for r in plan.to_clone] == ["lib"]
    assert [(i.name, i.kind) for i in plan.issues] == [("nourl", "missing-url")]
    assert plan.packages_to_add == [("app-pkg", "app")]
    assert plan.dangling == ["stray"]
    assert plan.has_changes
    assert not (workspace / "lib").exists()
    assert not (workspace / GENERATED_CONFIG_FILE_NAME).exists()


def test_pull_and_divergence(workspace: Path, upstream_lib):
    lib_path, first, second = upstream_lib
    add_member(workspace, "app", {"deps": {"lib": {"url": str(lib_path), "rev": first}}})
    manager = WorkspaceManager(workspace)
    manager.sync()

    results = {r.name: r for r in manager.pull_all()}
    assert results["lib"].status == "skipped"
    assert results["lib"].message == "Detached HEAD"
    assert results["app"].message == "No remote configured"

    git(workspace / "lib", "checkout", "-q", "main")
    results = {r.name: r for r in manager.pull_all(ExecutionMode.SEQUENTIAL)}
    assert results["lib"].status == "pulled"
    assert results["lib"].diverged
    assert git(workspace / "lib", "rev-parse", "HEAD") == second


def test_exec_all(workspace: Path, upstream_lib):
    lib_path, _, _ = upstream_lib
    add_member(workspace, "app", {"deps": {"lib": {"url": str(lib_path)}}})
    manager = WorkspaceManager(workspace)
    manager.sync()

    results = manager.exec_all("basename \"$(pwd)\"", ExecutionMode.TOPO)
    assert [(r.name, r.status, r.message) for r in results] == [
        ("lib", "ok", "lib"),
        ("app", "ok", "app"),
    ]

    results = manager.exec_all("test -f pkg/main.py", ExecutionMode.SEQUENTIAL)
    assert {r.name: r.status for r in results} == {"app": "ok", "lib": "failed"}


def test_exec_all_cycle_raises(workspace: Path):
    add_member(workspace, "a", {"deps": {"b": {"url": ""}}})
    add_member(workspace, "b", {"deps": {"a": {"url": ""}}})
    manager = WorkspaceManager(workspace)
    manager.sync(mode=ExecutionMode.PARALLEL)

    with pytest.raises(CycleError):
        manager.exec_all("true", ExecutionMode.TOPO_PARALLEL)


def test_update_revs(workspace: Path, upstream_lib):
    lib_path, first, second = upstream_lib
    add_member(workspace, "app", {"deps": {"lib": {"url": str(lib_path), "rev": first}}})
    manager = WorkspaceManager(workspace)
    manager.sync()
    new_app_rev = commit(workspace / "app", "NEW.md", "new\n")

    dry = manager.update_revs(dry_run=True)
    assert {r.name: r.status for r in dry} == {"lib": "unchanged", "app": "updated"}
    assert load_root_config(workspace).config.repos["app"].rev != new_app_rev

    results = manager.update_revs(["app", "ghost"])
    assert [(r.name, r.status) for r in results] == [("app", "updated"), ("ghost", "skipped")]
    assert load_root_config(workspace).config.repos["app"].rev == new_app_rev
    assert load_root_config(workspace).config.repos["lib"].rev == first


def test_dependency_tree_conflicts(workspace: Path):
    add_member(workspace, "a", {"deps": {"lib": {"url": "u", "rev": "1111111"}}})
    add_member(workspace, "b", {"deps": {"lib": {"url": "u", "rev": "2222222"}, "core": {"url": "c"}}})

    by_declarer, dependencies = WorkspaceManager(workspace).dependency_tree()

    assert by_declarer == {"(root)": [], "a": ["lib"], "b": ["lib", "core"]}
    assert dependencies["lib"].declared_in == ["a", "b"]
    assert dependencies["lib"].conflicting_revs == ["1111111", "2222222"]
    assert not dependencies["core"].has_conflict
