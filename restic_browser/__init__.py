__version__ = "0.1.0"

# Public API exports
from .cache import NEVER_EXPIRES, ResultCache
from .config import (
    AppConfig,
    CacheConfig,
    LogConfig,
    RepositoryConfig,
    StorageConfig,
    load_config,
)
from .errors import (
    CommandFailure,
    LaunchFailure,
    PathResolutionError,
    ResticError,
    StorageNotAvailableError,
)
from .filesystem import ResticFileSystem, build_path, parse_path
from .process import CommandResult, ProcessRunner
from .repository import Repository
from .restic_client import Node, ResticRepository, Snapshot
from .tempfiles import TempFileManager, TempManager

__all__ = [
    "__version__",
    # Configuration
    "AppConfig",
    "RepositoryConfig",
    "CacheConfig",
    "StorageConfig",
    "LogConfig",
    "load_config",
    # Errors
    "ResticError",
    "LaunchFailure",
    "CommandFailure",
    "PathResolutionError",
    "StorageNotAvailableError",
    # Repository
    "ProcessRunner",
    "CommandResult",
    "Repository",
    "ResticRepository",
    "Snapshot",
    "Node",
    # Cache
    "ResultCache",
    "NEVER_EXPIRES",
    # Filesystem
    "ResticFileSystem",
    "TempManager",
    "TempFileManager",
    "build_path",
    "parse_path",
]
