"""
Shared pytest fixtures for restic-browser tests.
"""

import json
from collections.abc import Generator
from pathlib import Path

import pytest

from restic_browser.cache import ResultCache
from restic_browser.config import CacheConfig
from restic_browser.errors import CommandFailure
from restic_browser.filesystem import ResticFileSystem
from restic_browser.process import CommandResult
from restic_browser.restic_client import ResticRepository
from restic_browser.tempfiles import TempFileManager

REPO_PATH = "/srv/backups/restic"
PASSWORD = "correct horse battery staple"

SNAP_TIME = "2023-04-15T23:39:39.095734241+02:00"
SNAP_ID = "52f058e0"
SNAP_LABEL = f"{SNAP_TIME} ({SNAP_ID})"

SNAP2_TIME = "2023-04-16T08:00:00.5+02:00"
SNAP2_ID = "a1b2c3d4"
SNAP2_LABEL = f"{SNAP2_TIME} ({SNAP2_ID})"

NODE_TIME = "2018-02-22T19:35:46+01:00"

NOTES_CONTENT = b"remember the milk\n"


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def snapshot_record(short_id: str, time: str) -> dict:
    return {
        "time": time,
        "tree": "f0e1d2c3" * 8,
        "paths": ["/home", "/etc"],
        "hostname": "backup-host",
        "username": "root",
        "id": short_id + "0" * 56,
        "short_id": short_id,
    }


def node_record(path: str, node_type: str = "file", size: int | None = None) -> dict:
    record = {
        "name": path.rsplit("/", 1)[-1],
        "type": node_type,
        "path": path,
        "uid": 1000,
        "gid": 1000,
        "mode": 436 if node_type == "file" else 2147484141,
        "permissions": "-rw-rw-r--" if node_type == "file" else "drwxr-xr-x",
        "mtime": NODE_TIME,
        "atime": NODE_TIME,
        "ctime": "2022-09-21T17:06:45.689362911+02:00",
        "struct_type": "node",
    }
    # restic leaves out the size of directories
    if size is not None:
        record["size"] = size
    return record


def ls_output(records: list[dict]) -> str:
    """Format records the way `restic ls --json` prints them, summary line first."""
    summary = {
        "time": SNAP_TIME,
        "tree": "f0e1d2c3" * 8,
        "paths": ["/home", "/etc"],
        "struct_type": "snapshot",
    }
    lines = [json.dumps(summary)] + [json.dumps(record) for record in records]
    return "\n".join(lines) + "\n"


def default_listings() -> dict[tuple[str, str], list[dict]]:
    alice = [
        node_record("/home/alice", "dir"),
        node_record("/home/alice/notes.txt", "file", 80),
        node_record("/home/alice/photos", "dir"),
        node_record("/home/alice/photos/cat.png", "file", 2048),
        node_record("/home/alice/link", "symlink"),
    ]
    return {
        (SNAP_ID, "/"): [node_record("/home", "dir"), node_record("/etc", "dir")],
        (SNAP_ID, "/home"): [node_record("/home", "dir"), node_record("/home/alice", "dir")],
        (SNAP_ID, "/home/alice"): alice,
        (SNAP_ID, "/home/alice/notes.txt"): [node_record("/home/alice/notes.txt", "file", 80)],
        (SNAP_ID, "/etc/hosts"): [node_record("/etc/hosts", "file", 12)],
        (SNAP2_ID, "/"): [node_record("/etc", "dir")],
    }


class FakeResticRunner:
    """
    Stands in for ProcessRunner and answers restic commands from canned data.

    Arguments arrive as [binary, "-q", "-r", repo, verb, ...]. Every call is
    recorded so tests can count restic invocations.
    """

    def __init__(self, snapshots=None, listings=None, files=None):
        self.snapshots = snapshots if snapshots is not None else []
        self.listings = listings if listings is not None else {}
        self.files = files if files is not None else {}
        self.calls: list[list[str]] = []
        self.secrets: list[str] = []
        self.encoding = "utf-8"

    def run(self, args, secret, stdout_path=None) -> CommandResult:
        args = list(args)
        self.calls.append(args)
        self.secrets.append(secret)
        command = " ".join(args)
        verb = args[4]

        if verb == "snapshots":
            return CommandResult(command, json.dumps(self.snapshots).encode(), "", 0)

        key = (args[5], args[6])
        if verb == "ls":
            if key not in self.listings:
                raise CommandFailure(command, f"Fatal: path {args[6]} not found\n", 1)
            return CommandResult(command, ls_output(self.listings[key]).encode(), "", 0)

        if verb == "dump":
            if key not in self.files:
                stderr = f"Fatal: cannot dump file: path {args[6]} not found\n"
                raise CommandFailure(command, stderr, 1)
            Path(stdout_path).write_bytes(self.files[key])
            return CommandResult(command, b"", "", 0)

        raise AssertionError(f"unexpected restic command: {command}")

    def count(self, verb: str) -> int:
        return sum(1 for call in self.calls if call[4] == verb)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_runner() -> FakeResticRunner:
    """A fake runner holding two snapshots and a small tree in the first one."""
    return FakeResticRunner(
        snapshots=[snapshot_record(SNAP_ID, SNAP_TIME), snapshot_record(SNAP2_ID, SNAP2_TIME)],
        listings=default_listings(),
        files={(SNAP_ID, "/home/alice/notes.txt"): NOTES_CONTENT},
    )


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(
        enabled=True,
        snapshots_ttl_seconds=10,
        listing_ttl_seconds=0,
        max_entries=128,
    )


@pytest.fixture
def repository(
    fake_runner: FakeResticRunner, cache_config: CacheConfig, clock: FakeClock
) -> ResticRepository:
    """ResticRepository wired to the fake runner and a controllable clock."""
    return ResticRepository(
        REPO_PATH,
        PASSWORD,
        runner=fake_runner,
        cache=ResultCache(max_entries=cache_config.max_entries, timer=clock),
        cache_config=cache_config,
    )


@pytest.fixture
def temp_manager(tmp_path: Path) -> Generator[TempFileManager, None, None]:
    manager = TempFileManager(str(tmp_path / "tmp"))
    yield manager
    manager.clean()


@pytest.fixture
def filesystem(
    repository: ResticRepository,
    cache_config: CacheConfig,
    temp_manager: TempFileManager,
    clock: FakeClock,
) -> ResticFileSystem:
    return ResticFileSystem(repository, cache_config, temp_manager=temp_manager, timer=clock)


@pytest.fixture
def tmp_config_file(tmp_path: Path) -> Generator[Path, None, None]:
    """
    Creates a temporary INI configuration file for config tests.

    Returns:
        Path to the temporary config file.
    """
    config_content = f"""[repository]
path = {REPO_PATH}
password = testpass
binary = /usr/local/bin/restic

[cache]
enabled = true
snapshots_ttl_seconds = 30
listing_ttl_seconds = 3600
max_entries = 512

[storage]
temp_dir = {tmp_path / "scratch"}

[logging]
level = DEBUG
file = test.log
console = false
"""
    config_path = tmp_path / "test_config.ini"
    config_path.write_text(config_content, encoding="utf-8")
    yield config_path


@pytest.fixture
def minimal_config_file(tmp_path: Path) -> Generator[Path, None, None]:
    """
    Creates a minimal INI configuration file with only required fields.

    Returns:
        Path to the temporary config file.
    """
    config_content = """[repository]
path = /mnt/usb/restic
password = minimal
"""
    config_path = tmp_path / "minimal_config.ini"
    config_path.write_text(config_content, encoding="utf-8")
    yield config_path
