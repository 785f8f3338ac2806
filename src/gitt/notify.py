"""Notifications from the dispatcher to the presentation layer.

Listeners run on the notifier's own thread, never on the git worker, so a
slow or failing listener cannot stall a clone.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from .logger import get_logger
from .models import ProgressEvent

logger = get_logger(__name__)


class Notifier:
    """Fan-out of refresh, progress and transient message events."""

    def __init__(self):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gitt-notify")
        self._refresh: list[Callable[[], None]] = []
        self._progress: list[Callable[[ProgressEvent], None]] = []
        self._message: list[Callable[[str], None]] = []

    def on_refresh(self, callback: Callable[[], None]) -> None:
        self._refresh.append(callback)

    def on_progress(self, callback: Callable[[ProgressEvent], None]) -> None:
        self._progress.append(callback)

    def on_message(self, callback: Callable[[str], None]) -> None:
        self._message.append(callback)

    def refresh(self) -> None:
        """The repository list changed; listeners should re-read it."""
        self._post(self._refresh)

    def progress(self, event: ProgressEvent) -> None:
        self._post(self._progress, event)

    def message(self, text: str) -> None:
        """Short-lived message for the user, not persisted anywhere."""
        self._post(self._message, text)

    def flush(self) -> None:
        """Block until everything posted so far has been delivered."""
        self._executor.submit(lambda: None).result()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def _post(self, callbacks: list[Callable], *args) -> None:
        for callback in list(callbacks):
            self._executor.submit(self._deliver, callback, *args)

    @staticmethod
    def _deliver(callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("Notification listener %r failed", callback)
