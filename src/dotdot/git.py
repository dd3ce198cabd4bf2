"""
Git and shell process wrappers.

Every call runs a subprocess in the given working directory. Failures are
raised as ``GitError`` / ``ShellError`` carrying the command and directory.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from .errors import GitError, ShellError

logger = logging.getLogger(__name__)


class Git:
    """Low-level Git operations, one subprocess per call."""

    def __init__(self, executable: str = "git"):
        self.executable = executable

    def _run(self, cwd: Path | str, *args: str) -> str:
        """Run a git command and return its trimmed stdout."""
        command = shlex.join([self.executable, *args])
        logger.debug("%s (cwd=%s)", command, cwd)
        try:
            result = subprocess.run(
                [self.executable, *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise GitError(command, str(cwd), str(e)) from e

        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
            raise GitError(command, str(cwd), message)
        return result.stdout.strip()

    def is_git_repo(self, path: Path | str) -> bool:
        """Check if ``path`` is the top of a git working tree."""
        return (Path(path) / ".git").exists()

    def get_current_rev(self, repo_path: Path | str) -> str:
        return self._run(repo_path, "rev-parse", "HEAD")

    def get_short_rev(self, repo_path: Path | str) -> str:
        return self._run(repo_path, "rev-parse", "--short", "HEAD")

    def get_current_branch(self, repo_path: Path | str) -> str:
        """Current branch name, or ``HEAD`` when detached."""
        return self._run(repo_path, "rev-parse", "--abbrev-ref", "HEAD")

    def is_dirty(self, repo_path: Path | str) -> bool:
        """Check for staged, unstaged or untracked changes."""
        return bool(self._run(repo_path, "status", "--porcelain"))

    def get_remote_url(self, repo_path: Path | str, remote: str = "origin") -> str:
        return self._run(repo_path, "remote", "get-url", remote)

    def clone(self, url: str, target_path: Path | str) -> None:
        target_path = Path(target_path)
        self._run(target_path.parent, "clone", url, str(target_path))

    def checkout(self, repo_path: Path | str, rev: str, force: bool = False) -> None:
        args = ["checkout", "--force", rev] if force else ["checkout", rev]
        self._run(repo_path, *args)

    def fetch(self, repo_path: Path | str) -> None:
        self._run(repo_path, "fetch", "--all", "--prune")

    def pull(self, repo_path: Path | str) -> str:
        return self._run(repo_path, "pull")


def run_shell_command(command: str, cwd: Path | str) -> str:
    """Run ``command`` through the shell in ``cwd`` and return trimmed stdout."""
    logger.debug("$ %s (cwd=%s)", command, cwd)
    try:
        result = subprocess.run(
            command,
            shell=True,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise ShellError(command, str(cwd), str(e)) from e

    if result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
        raise ShellError(command, str(cwd), message)
    return result.stdout.strip()
