"""
Read-only filesystem view of a restic repository.

Virtual paths have the form "<snapshot time> (<short id>)/path/in/snapshot".
The root directory lists one such label per snapshot. Everything below a
label is resolved lazily with `restic ls`, one directory at a time; the
repository tree is never loaded as a whole.
"""

import logging
import re
import time
from collections.abc import Callable
from functools import wraps
from typing import IO, Any

from .cache import ResultCache
from .config import CacheConfig
from .errors import CommandFailure, PathResolutionError, StorageNotAvailableError
from .repository import Repository
from .restic_client import Node, Snapshot
from .tempfiles import TempFileManager, TempManager

logger = logging.getLogger(__name__)

FILETYPE_FILE = "file"
FILETYPE_DIR = "dir"
FILETYPE_UNKNOWN = "unknown"

READ_MODES = ("r", "rb")

ROOT_LISTING_KEY = ("opendir", "")

# "<anything> (<id>)", e.g. "2023-04-15T23:39:39.095734241+02:00 (52f058e0)"
_SNAPSHOT_LABEL_RE = re.compile(r"^.*\s\((?P<snapshot_id>[^()]+)\)$")


def normalize_path(path: str) -> str:
    """Use forward slashes and drop leading/trailing slashes ('' is the root)."""
    return path.replace("\\", "/").strip("/")


def parse_path(path: str) -> tuple[str, str]:
    """
    Split a virtual path into (snapshot id, path inside the snapshot).

    The path inside the snapshot is '' for the snapshot root and otherwise
    starts with '/' and has no trailing slash.

    Raises:
        PathResolutionError: If the first segment is not a snapshot label.
    """
    normalized = normalize_path(path)
    label, _, rest = normalized.partition("/")
    match = _SNAPSHOT_LABEL_RE.match(label)
    if match is None:
        raise PathResolutionError(path)

    snapshot_path = ""
    rest = rest.strip("/")
    if rest:
        snapshot_path = "/" + rest
    return match.group("snapshot_id"), snapshot_path


def build_path(snapshot: Snapshot, snapshot_path: str = "") -> str:
    """Inverse of parse_path: the virtual path of a node inside a snapshot."""
    snapshot_path = snapshot_path.strip("/")
    if not snapshot_path:
        return snapshot.label
    return f"{snapshot.label}/{snapshot_path}"


def operation(fn):
    """Decorator for filesystem operations - logs the outcome of each call."""
    name = fn.__name__

    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            result = fn(self, *args, **kwargs)
            self.log.debug("%s%r: OK", name, args)
            return result
        except Exception as exc:
            self.log.debug("%s%r: FAIL - %s", name, args, exc)
            raise

    return wrapper


class ResticFileSystem:
    """
    Filesystem capability surface over a restic repository.

    Listing, stat and type queries are answered from two caches owned by
    this class: directory names per virtual path, and node metadata per
    (snapshot id, node path). The node cache is filled as a side effect of
    every listing, so stat/type calls for entries that were just listed do
    not start another restic process.
    """

    def __init__(
        self,
        repository: Repository,
        cache_config: CacheConfig | None = None,
        temp_manager: TempManager | None = None,
        timer: Callable[[], float] = time.monotonic,
        log: logging.Logger | None = None,
    ):
        self.repository = repository
        self.log = log if log is not None else logger
        self.cache_config = cache_config or CacheConfig()
        self.temp_manager = temp_manager if temp_manager is not None else TempFileManager()
        self.dir_cache = ResultCache(
            max_entries=self.cache_config.max_entries,
            enabled=self.cache_config.enabled,
            timer=timer,
        )
        self.node_cache = ResultCache(
            max_entries=self.cache_config.max_entries,
            enabled=self.cache_config.enabled,
            timer=timer,
        )
        self.log.info("ResticFileSystem initialized for %s", repository.path)

    def get_id(self) -> str:
        """Storage id, unique per repository location."""
        return f"restic::{self.repository.path}"

    def test(self) -> bool:
        """Readiness check: True if the snapshot list can be read."""
        try:
            self.repository.snapshots()
        except Exception as e:
            self.log.error("ResticFileSystem.test() failed: %s", e, exc_info=True)
            return False
        return True

    @operation
    def opendir(self, path: str) -> list[str]:
        """
        List the names in a virtual directory.

        The root lists snapshot labels in restic's order. Any other path
        lists the immediate children of that directory inside its snapshot.

        Raises:
            PathResolutionError: If path does not start with a snapshot label.
            LaunchFailure, CommandFailure: If restic could not list the directory.
        """
        normalized = normalize_path(path)
        if not normalized:
            return self.dir_cache.get_or_compute(
                ROOT_LISTING_KEY,
                self._list_snapshot_labels,
                ttl_seconds=self.cache_config.snapshots_ttl_seconds,
            )

        snapshot_id, snapshot_path = parse_path(normalized)
        return self.dir_cache.get_or_compute(
            ("opendir", normalized),
            lambda: self._list_children(snapshot_id, snapshot_path),
            ttl_seconds=self.cache_config.listing_ttl_seconds,
        )

    @operation
    def stat(self, path: str) -> dict[str, Any]:
        """
        Return size, mtime and atime (epoch seconds) for a virtual path.

        The root and unknown nodes get a zero-size entry stamped "now"; a
        snapshot root is stamped with the snapshot's creation time.
        """
        normalized = normalize_path(path)
        if not normalized:
            return self._default_stat()

        snapshot_id, snapshot_path = parse_path(normalized)
        if not snapshot_path:
            snapshot = self._find_snapshot(snapshot_id)
            if snapshot is None or snapshot.created_at is None:
                return self._default_stat()
            created = int(snapshot.created_at.timestamp())
            return {"size": 0, "mtime": created, "atime": created}

        node = self._find_node(snapshot_id, snapshot_path)
        if node is None:
            return self._default_stat()

        now = int(time.time())
        return {
            "size": node.size or 0,
            "mtime": int(node.mtime.timestamp()) if node.mtime else now,
            "atime": int(node.atime.timestamp()) if node.atime else now,
        }

    @operation
    def filetype(self, path: str) -> str:
        """Return "file", "dir" or "unknown" for a virtual path."""
        normalized = normalize_path(path)
        if not normalized:
            return FILETYPE_DIR

        snapshot_id, snapshot_path = parse_path(normalized)
        # A snapshot root is always a directory
        if not snapshot_path:
            return FILETYPE_DIR

        node = self._find_node(snapshot_id, snapshot_path)
        if node is None:
            return FILETYPE_UNKNOWN
        if node.type == "dir":
            return FILETYPE_DIR
        if node.type == "file":
            return FILETYPE_FILE
        return FILETYPE_UNKNOWN

    def is_dir(self, path: str) -> bool:
        # Unknown nodes stay traversable
        return self.filetype(path) in (FILETYPE_DIR, FILETYPE_UNKNOWN)

    def is_file(self, path: str) -> bool:
        return self.filetype(path) == FILETYPE_FILE

    @operation
    def file_exists(self, path: str) -> bool:
        normalized = normalize_path(path)
        if not normalized:
            return True

        snapshot_id, snapshot_path = parse_path(normalized)
        if not snapshot_path:
            return self._find_snapshot(snapshot_id) is not None
        return self._find_node(snapshot_id, snapshot_path) is not None

    @operation
    def fopen(self, path: str, mode: str) -> IO[bytes] | bool:
        """
        Open a file from a snapshot for reading.

        The content is dumped into a temporary file from the temp manager and
        a binary handle positioned at offset 0 is returned. The temp manager
        owns the file and removes it.

        Returns:
            A readable binary file object, or False for any mode other than
            "r"/"rb" and for snapshot roots.

        Raises:
            PathResolutionError: If path does not start with a snapshot label.
            CommandFailure: If restic cannot dump the object.
        """
        if mode not in READ_MODES:
            self.log.debug("fopen: mode %r refused for %s (read-only storage)", mode, path)
            return False

        snapshot_id, snapshot_path = parse_path(path)
        if not snapshot_path:
            self.log.debug("fopen: %s is a snapshot root, not a file", path)
            return False

        tmp_file = self.temp_manager.get_temporary_file()
        self.repository.dump(snapshot_id, snapshot_path, tmp_file)
        handle = open(tmp_file, "rb")
        handle.seek(0)
        return handle

    # The archive is read-only: every mutation is refused.

    def mkdir(self, path: str) -> bool:
        return self._read_only("mkdir", path)

    def rmdir(self, path: str) -> bool:
        return self._read_only("rmdir", path)

    def unlink(self, path: str) -> bool:
        return self._read_only("unlink", path)

    def touch(self, path: str, mtime: float | None = None) -> bool:
        return self._read_only("touch", path)

    def rename(self, source: str, target: str) -> bool:
        return self._read_only("rename", source)

    def copy(self, source: str, target: str) -> bool:
        return self._read_only("copy", source)

    def file_put_contents(self, path: str, data: bytes) -> bool:
        return self._read_only("file_put_contents", path)

    def get_propagator(self, storage: Any = None):
        """
        Refuse full-tree propagation.

        Walking a whole repository is expensive and unbounded, so hosts must
        not scan this storage.
        """
        raise StorageNotAvailableError("Full scans are disabled for restic storages")

    def get_scanner(self, storage: Any = None):
        raise StorageNotAvailableError("Full scans are disabled for restic storages")

    def _list_snapshot_labels(self) -> list[str]:
        return [snapshot.label for snapshot in self.repository.snapshots().values()]

    def _list_children(self, snapshot_id: str, snapshot_path: str) -> list[str]:
        nodes = self.repository.ls(snapshot_id, snapshot_path)
        self._remember_nodes(snapshot_id, nodes)

        # restic may return nested entries; keep the component right after the prefix
        prefix = snapshot_path + "/"
        names: list[str] = []
        seen = set()
        for node_path in nodes:
            if not node_path.startswith(prefix):
                continue
            name = node_path[len(prefix) :].split("/", 1)[0]
            if name and name not in seen:
                seen.add(name)
                names.append(name)
        return names

    def _remember_nodes(self, snapshot_id: str, nodes: dict[str, Node]) -> None:
        """Side effect of every listing: cache each returned node for stat/type."""
        for node_path, node in nodes.items():
            self.node_cache.put(
                (snapshot_id, node_path), node, ttl_seconds=self.cache_config.listing_ttl_seconds
            )

    def _find_node(self, snapshot_id: str, snapshot_path: str) -> Node | None:
        """
        Look up a node, listing its path through restic on a cache miss.

        restic reports a missing path as a failed command, which is treated
        as "not found" here. Launch failures still propagate.
        """
        node = self.node_cache.get((snapshot_id, snapshot_path))
        if node is not None:
            return node

        try:
            nodes = self.repository.ls(snapshot_id, snapshot_path)
        except CommandFailure as e:
            self.log.debug("Node %s not found in snapshot %s: %s", snapshot_path, snapshot_id, e)
            return None
        self._remember_nodes(snapshot_id, nodes)
        return nodes.get(snapshot_path)

    def _find_snapshot(self, snapshot_id: str) -> Snapshot | None:
        try:
            snapshots = self.repository.snapshots()
        except CommandFailure as e:
            self.log.warning("Could not list snapshots: %s", e)
            return None
        return snapshots.get(snapshot_id)

    def _read_only(self, operation_name: str, path: str) -> bool:
        self.log.debug("%s: refused for %s (read-only storage)", operation_name, path)
        return False

    @staticmethod
    def _default_stat() -> dict[str, Any]:
        now = int(time.time())
        return {"size": 0, "mtime": now, "atime": now}
