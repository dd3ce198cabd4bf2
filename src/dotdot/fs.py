"""Filesystem access used by workspace scanning and symlink management."""

from __future__ import annotations

import os
import shutil
from pathlib import Path


class LocalFileSystem:
    """Thin wrapper over the local filesystem.

    Passed explicitly to the functions that touch disk so tests can swap in a
    recording or failing implementation.
    """

    def exists(self, path: Path | str, follow_symlinks: bool = True) -> bool:
        """Check if a path exists. With ``follow_symlinks=False`` a dangling link counts."""
        if follow_symlinks:
            return os.path.exists(path)
        return os.path.lexists(path)

    def is_dir(self, path: Path | str) -> bool:
        return os.path.isdir(path)

    def is_symlink(self, path: Path | str) -> bool:
        return os.path.islink(path)

    def read_directory(self, path: Path | str) -> list[str]:
        return os.listdir(path)

    def read_link(self, path: Path | str) -> str:
        """Return the raw link value; raises OSError if ``path`` is not a symlink."""
        return os.readlink(path)

    def symlink(self, target: str, link_path: Path | str) -> None:
        os.symlink(target, link_path)

    def remove(self, path: Path | str, recursive: bool = False) -> None:
        """Remove a file, symlink or directory (directories must be empty unless recursive)."""
        if os.path.islink(path) or not os.path.isdir(path):
            os.unlink(path)
        elif recursive:
            shutil.rmtree(path)
        else:
            os.rmdir(path)

    def make_directory(self, path: Path | str, recursive: bool = False) -> None:
        if recursive:
            os.makedirs(path, exist_ok=True)
        else:
            os.mkdir(path)

    def read_file_string(self, path: Path | str) -> str:
        return Path(path).read_text(encoding="utf-8")

    def write_file_string(self, path: Path | str, content: str) -> None:
        Path(path).write_text(content, encoding="utf-8")
