"""Error types shared across dotdot."""

from __future__ import annotations


class DotdotError(Exception):
    """Base class for all dotdot errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message}


class CycleError(DotdotError):
    """A cycle was found in the repository dependency graph."""

    def __init__(self, cycle: list[str], message: str | None = None):
        self.cycle = list(cycle)
        super().__init__(message or f"Circular dependency detected: {' -> '.join(self.cycle)}")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "cycle": self.cycle}


class CommandError(DotdotError):
    """An external process (git or shell) failed."""

    def __init__(self, command: str, cwd: str, message: str):
        self.command = command
        self.cwd = cwd
        super().__init__(message)

    def __str__(self) -> str:
        return f"`{self.command}` failed in {self.cwd}: {self.message}"

    def to_dict(self) -> dict:
        return {**super().to_dict(), "command": self.command, "cwd": self.cwd}


class GitError(CommandError):
    """A git invocation exited non-zero."""


class ShellError(CommandError):
    """A shell command exited non-zero."""


class LinkError(DotdotError):
    """A package symlink could not be created or replaced."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.message}: {self.path}"

    def to_dict(self) -> dict:
        return {**super().to_dict(), "path": self.path}


class ConfigError(DotdotError):
    """A config file is missing, unreadable or malformed."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.message} ({self.path})"


class ConfigOutOfSyncError(DotdotError):
    """The generated root config does not cover every member declaration."""
