"""Last error trace, kept on disk so 'gitt trace' can show it later."""

from __future__ import annotations

import threading
import time
from pathlib import Path

from .core import TRACE_FILE
from .logger import get_logger

logger = get_logger(__name__)


class TraceRecorder:
    """Stores the details of the most recent git failure."""

    def __init__(self, path: Path = TRACE_FILE):
        self.path = Path(path)
        self._lock = threading.Lock()

    def save(self, operation: str, folder: str, kind: str, detail: str) -> str:
        stamp = time.strftime("%Y-%m-%d %H:%M:%S")
        trace = f"{stamp} {operation} {folder}: {kind}\n\n{detail.strip()}\n"
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text(trace, encoding="utf-8")
            except OSError as e:
                logger.warning("Could not write error trace to %s: %s", self.path, e)
        return trace

    def last(self) -> str | None:
        with self._lock:
            if not self.path.exists():
                return None
            return self.path.read_text(encoding="utf-8")
