"""Shared fixtures: on-disk workspaces with real git repositories."""

import json
import shutil
import subprocess
from pathlib import Path

import pytest

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not found")


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


def init_repo(path: Path, files: dict[str, str] | None = None) -> str:
    """Create a git repo with one commit and return its HEAD rev."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q", "-b", "main")
    git(path, "config", "user.email", "dev@example.com")
    git(path, "config", "user.name", "Dev")
    git(path, "config", "commit.gpgsign", "false")
    for name, content in (files or {"README.md": f"# {path.name}\n"}).items():
        file_path = path / name
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)
    git(path, "add", "-A")
    git(path, "commit", "-q", "-m", "initial")
    return git(path, "rev-parse", "HEAD")


def commit(path: Path, name: str, content: str) -> str:
    (path / name).write_text(content)
    git(path, "add", "-A")
    git(path, "commit", "-q", "-m", f"update {name}")
    return git(path, "rev-parse", "HEAD")


def write_json(path: Path, data: dict) -> None:
    path.write_text(json.dumps(data, indent=2) + "\n")


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "ws"
    root.mkdir()
    return root


@pytest.fixture
def remotes(tmp_path: Path) -> Path:
    """Directory holding upstream repositories to clone from."""
    path = tmp_path / "remotes"
    path.mkdir()
    return path


def add_member(workspace: Path, name: str, config: dict, remote: str | None = None) -> str:
    """Create a member repo with a committed ``dotdot.json``; returns its HEAD."""
    init_repo(workspace / name, {"pkg/main.py": "print('hi')\n"})
    write_json(workspace / name / "dotdot.json", config)
    git(workspace / name, "add", "-A")
    git(workspace / name, "commit", "-q", "-m", "add dotdot config")
    if remote is not None:
        git(workspace / name, "remote", "add", "origin", remote)
    return git(workspace / name, "rev-parse", "HEAD")
