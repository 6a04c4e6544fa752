"""
Exceptions raised by restic-browser.

Process-level failures (LaunchFailure, CommandFailure) propagate to the
caller untouched; the filesystem layer decides which calls degrade to a
default and which ones surface the error.
"""


class ResticError(Exception):
    """Base class for all restic-browser errors."""


class LaunchFailure(ResticError):
    """The restic binary could not be started."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Could not execute command: {command} ({reason})")


class CommandFailure(ResticError):
    """restic exited with a non-zero status."""

    def __init__(self, command: str, stderr: str, returncode: int):
        self.command = command
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(
            f"Command failed: {command}. Stderr was: {stderr.strip()} "
            f"(return code: {returncode})"
        )


class PathResolutionError(ResticError, ValueError):
    """A virtual path does not start with a '<time> (<snapshot id>)' label."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Cannot resolve snapshot from path: {path!r}")


class StorageNotAvailableError(ResticError):
    """The storage refuses the requested operation (e.g. a full scan)."""
