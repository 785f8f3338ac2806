"""Cross-process ownership of the repositories directory.

Only the process holding the lock may queue git operations or run the
restart recovery. The lock is an advisory flock() on a file in the data
directory and is released by the kernel if the process dies.

Platform Support: Linux, macOS, and other Unix-like systems.
"""

from __future__ import annotations

import fcntl
import threading
from pathlib import Path
from typing import IO

from .core import LOCK_FILE
from .logger import get_logger

logger = get_logger(__name__)


class ProcessLock:
    """Exclusive lock held for the lifetime of a dispatching process."""

    def __init__(self, path: Path = LOCK_FILE):
        self.path = Path(path)
        self._file: IO[str] | None = None
        self._guard = threading.Lock()

    @property
    def held(self) -> bool:
        return self._file is not None

    def acquire(self, wait: bool = True) -> bool:
        """Take the lock. With wait=False, returns False if another process has it."""
        with self._guard:
            if self._file is not None:
                return True

            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.path, "a+", encoding="utf-8")
            flags = fcntl.LOCK_EX if wait else fcntl.LOCK_EX | fcntl.LOCK_NB
            try:
                fcntl.flock(handle.fileno(), flags)
            except BlockingIOError:
                handle.close()
                return False
            except OSError:
                handle.close()
                raise

            self._file = handle
            logger.debug("Acquired %s", self.path)
            return True

    def release(self) -> None:
        with self._guard:
            if self._file is None:
                return
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
            self._file.close()
            self._file = None
            logger.debug("Released %s", self.path)
