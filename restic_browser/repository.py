"""
Repository protocol definition.

Defines the interface ResticFileSystem needs from a repository, so the
filesystem layer can run against ResticRepository or any stand-in with
the same shape.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from .restic_client import Node, Snapshot


@runtime_checkable
class Repository(Protocol):
    """Protocol defining the read-only repository interface.

    Any class implementing these members can back a ResticFileSystem.
    """

    @property
    def path(self) -> str:
        """Location of the repository on disk."""
        ...

    def snapshots(self) -> dict[str, Snapshot]:
        """List snapshots.

        Returns:
            Mapping of short snapshot id -> Snapshot.

        Raises:
            LaunchFailure: If the backup tool could not be started.
            CommandFailure: If the backup tool exited with an error.
        """
        ...

    def ls(self, snapshot_id: str, snapshot_path: str) -> dict[str, Node]:
        """List the nodes at a path inside a snapshot.

        Args:
            snapshot_id: Snapshot id.
            snapshot_path: Path inside the snapshot.

        Returns:
            Mapping of absolute node path -> Node.
        """
        ...

    def dump(self, snapshot_id: str, snapshot_path: str, target: str | Path) -> None:
        """Write a snapshot object's contents into target.

        Raises:
            CommandFailure: If the object cannot be dumped.
        """
        ...
