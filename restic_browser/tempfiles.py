import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class TempManager(Protocol):
    """Hands out temporary files whose lifetime the host controls."""

    def get_temporary_file(self, postfix: str = "") -> str:
        """Create an empty temporary file and return its path."""
        ...


class TempFileManager:
    """
    Tracks temporary files and removes them on clean().

    Thread-safe; files are created in temp_dir, or the system temp
    directory when temp_dir is None.
    """

    def __init__(self, temp_dir: str | None = None, prefix: str = "restic-browser-"):
        self.temp_dir = temp_dir
        self.prefix = prefix
        self._files: list[str] = []
        self._lock = threading.Lock()
        if temp_dir is not None:
            Path(temp_dir).mkdir(parents=True, exist_ok=True)

    def get_temporary_file(self, postfix: str = "") -> str:
        fd, path = tempfile.mkstemp(suffix=postfix, prefix=self.prefix, dir=self.temp_dir)
        os.close(fd)
        with self._lock:
            self._files.append(path)
        logger.debug("Created temporary file %s", path)
        return path

    def clean(self) -> None:
        """Delete every file handed out so far."""
        with self._lock:
            files, self._files = self._files, []
        for path in files:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove temporary file %s: %s", path, e)

    def __enter__(self) -> "TempFileManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.clean()
