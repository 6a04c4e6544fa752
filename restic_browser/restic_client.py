import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .cache import ResultCache
from .config import CacheConfig
from .errors import ResticError
from .process import CommandResult, ProcessRunner

logger = logging.getLogger(__name__)

SNAPSHOTS_CACHE_KEY = "snapshots"

# restic prints RFC 3339 times with nanoseconds, e.g. 2023-04-15T23:39:39.095734241+02:00
_RESTIC_TIME_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>Z|[+-]\d{2}:\d{2})?$"
)


def parse_restic_time(value: str | None) -> datetime | None:
    """Parse a restic timestamp into an aware datetime (microsecond precision)."""
    if not value:
        return None

    match = _RESTIC_TIME_RE.match(value.strip())
    if match is None:
        logger.warning("Failed to parse restic time: %s", value)
        return None

    text = match.group("base")
    if match.group("fraction"):
        text += "." + match.group("fraction")[:6].ljust(6, "0")
    offset = match.group("offset")
    if offset and offset != "Z":
        text += offset

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Snapshot:
    """A point-in-time backup as reported by `restic snapshots --json`."""

    short_id: str
    time: str  # raw restic timestamp, used verbatim in snapshot labels
    id: str = ""
    hostname: str = ""
    username: str = ""
    paths: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    tree: str = ""
    parent: str | None = None

    @property
    def created_at(self) -> datetime | None:
        return parse_restic_time(self.time)

    @property
    def label(self) -> str:
        """Directory name of this snapshot in the virtual tree."""
        return f"{self.time} ({self.short_id})"

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Snapshot":
        snapshot_id = data.get("id", "")
        return cls(
            short_id=data.get("short_id") or snapshot_id[:8],
            time=data.get("time", ""),
            id=snapshot_id,
            hostname=data.get("hostname", ""),
            username=data.get("username", ""),
            paths=list(data.get("paths") or []),
            tags=list(data.get("tags") or []),
            tree=data.get("tree", ""),
            parent=data.get("parent"),
        )


@dataclass
class Node:
    """A file, directory or other entry inside a snapshot (`restic ls --json`)."""

    name: str
    type: str
    path: str
    size: int = 0
    uid: int = 0
    gid: int = 0
    mode: int = 0
    permissions: str = ""
    mtime: datetime | None = None
    atime: datetime | None = None
    ctime: datetime | None = None
    struct_type: str = "node"

    @property
    def is_dir(self) -> bool:
        return self.type == "dir"

    @property
    def is_file(self) -> bool:
        return self.type == "file"

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Node":
        return cls(
            name=data.get("name", ""),
            type=data.get("type", ""),
            path=data["path"],
            size=int(data.get("size") or 0),
            uid=int(data.get("uid") or 0),
            gid=int(data.get("gid") or 0),
            mode=int(data.get("mode") or 0),
            permissions=data.get("permissions", ""),
            mtime=parse_restic_time(data.get("mtime")),
            atime=parse_restic_time(data.get("atime")),
            ctime=parse_restic_time(data.get("ctime")),
            struct_type=data.get("struct_type", "node"),
        )


def normalize_snapshot_path(path: str) -> str:
    """Empty path becomes '/', anything else gets a leading slash."""
    if not path:
        return "/"
    if not path.startswith("/"):
        return "/" + path
    return path


def parse_snapshots_output(output: str) -> dict[str, Snapshot]:
    """
    Decode `restic snapshots --json` output.

    Returns:
        Mapping of short id -> Snapshot, in restic's order. An empty
        repository yields an empty mapping.

    Raises:
        ResticError: If the output is not a JSON array.
    """
    if not output.strip():
        return {}
    try:
        records = json.loads(output)
    except json.JSONDecodeError as e:
        raise ResticError(f"Unparseable snapshot list from restic: {e}") from e
    if records is None:
        return {}
    if not isinstance(records, list):
        raise ResticError("Unexpected snapshot list from restic: not a JSON array")

    snapshots = {}
    for record in records:
        snapshot = Snapshot.from_json(record)
        snapshots[snapshot.short_id] = snapshot
    return snapshots


def parse_ls_output(output: str) -> dict[str, Node]:
    """
    Decode `restic ls --json` output.

    The first line is the snapshot summary and is skipped, as is every line
    that is empty or does not start with '{' (diagnostics restic may
    interleave with the data).

    Returns:
        Mapping of absolute node path -> Node.

    Raises:
        ResticError: If a JSON line cannot be decoded.
    """
    nodes = {}
    for line_number, line in enumerate(output.split("\n")):
        if line_number == 0 or not line or line[0] != "{":
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            raise ResticError(
                f"Unparseable node from restic at line {line_number + 1}: {e}"
            ) from e
        if "path" not in record:
            logger.warning("Skipping restic ls record without path: %s", line)
            continue
        node = Node.from_json(record)
        nodes[node.path] = node
    return nodes


class ResticRepository:
    """
    Query layer over a restic repository.

    Each operation builds a restic invocation, runs it through a
    ProcessRunner and parses the output. Snapshot lists are cached briefly
    because new snapshots can appear at any time; directory listings are
    cached for as long as configured (forever by default) because a
    snapshot never changes once written.
    """

    def __init__(
        self,
        path: str,
        password: str,
        runner: ProcessRunner | None = None,
        cache: ResultCache | None = None,
        cache_config: CacheConfig | None = None,
        binary: str = "restic",
    ):
        self._path = path
        self._password = password
        self.binary = binary
        self.runner = runner or ProcessRunner()
        self.cache_config = cache_config or CacheConfig()
        if cache is None:
            cache = ResultCache(
                max_entries=self.cache_config.max_entries,
                enabled=self.cache_config.enabled,
            )
        self.cache = cache
        logger.info(
            "ResticRepository initialized for %s with cache TTLs: snapshots=%d, ls=%d",
            path,
            self.cache_config.snapshots_ttl_seconds,
            self.cache_config.listing_ttl_seconds,
        )

    @property
    def path(self) -> str:
        """Location of the repository on disk."""
        return self._path

    def snapshots(self) -> dict[str, Snapshot]:
        """
        List the snapshots in the repository.

        Returns:
            Mapping of short id -> Snapshot.

        Raises:
            LaunchFailure, CommandFailure: If restic could not be run.
            ResticError: If restic's output cannot be parsed.
        """
        return self.cache.get_or_compute(
            SNAPSHOTS_CACHE_KEY,
            self._fetch_snapshots,
            ttl_seconds=self.cache_config.snapshots_ttl_seconds,
        )

    def ls(self, snapshot_id: str, snapshot_path: str) -> dict[str, Node]:
        """
        List the nodes restic reports for a path inside a snapshot.

        For a directory this is the directory itself plus its entries; for a
        file it is the file alone.

        Args:
            snapshot_id: restic snapshot id.
            snapshot_path: Path inside the snapshot; normalized to start with '/'.

        Returns:
            Mapping of absolute node path -> Node.
        """
        snapshot_path = normalize_snapshot_path(snapshot_path)
        return self.cache.get_or_compute(
            ("ls", snapshot_id, snapshot_path),
            lambda: self._fetch_listing(snapshot_id, snapshot_path),
            ttl_seconds=self.cache_config.listing_ttl_seconds,
        )

    def dump(self, snapshot_id: str, snapshot_path: str, target: str | Path) -> None:
        """
        Write the contents of a snapshot object to a file on disk.

        Never cached; content is streamed straight into target.

        Raises:
            CommandFailure: If restic fails, e.g. the path is not in the snapshot.
        """
        snapshot_path = normalize_snapshot_path(snapshot_path)
        logger.debug("Dumping %s:%s to %s", snapshot_id, snapshot_path, target)
        self._execute(["dump", snapshot_id, snapshot_path], stdout_path=target)

    def clear_cache(self) -> None:
        """Forget cached snapshot lists and directory listings."""
        self.cache.clear()

    def _fetch_snapshots(self) -> dict[str, Snapshot]:
        result = self._execute(["snapshots", "--json"])
        snapshots = parse_snapshots_output(self._decode(result))
        logger.debug("restic reported %d snapshots", len(snapshots))
        return snapshots

    def _fetch_listing(self, snapshot_id: str, snapshot_path: str) -> dict[str, Node]:
        result = self._execute(["ls", snapshot_id, snapshot_path, "--json"])
        nodes = parse_ls_output(self._decode(result))
        logger.debug("restic listed %d nodes in %s:%s", len(nodes), snapshot_id, snapshot_path)
        return nodes

    def _execute(self, args: list[str], stdout_path: str | Path | None = None) -> CommandResult:
        return self.runner.run(
            [self.binary, "-q", "-r", self._path, *args],
            self._password,
            stdout_path=stdout_path,
        )

    def _decode(self, result: CommandResult) -> str:
        return result.stdout.decode("utf-8", errors="replace")
