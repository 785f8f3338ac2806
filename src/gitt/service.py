"""Repository commands as issued by the user.

RepoService validates requests, applies the state transitions that must
be persisted before work is queued, and hands the work to the
dispatcher. It also runs the restart recovery.
"""

from __future__ import annotations

from concurrent.futures import Future
from pathlib import Path

from .core import (
    DuplicateRepoError,
    InvalidRequestError,
    OperationLockedError,
    RepoNotFoundError,
    is_supported_address,
    make_folder_name,
)
from .dispatcher import OperationDispatcher
from .git import GitCapability, GitCli
from .lock import ProcessLock
from .logger import get_logger
from .messages import Messages
from .models import RepoRecord, RepoState
from .notify import Notifier
from .progress import SequenceCounter
from .storage import RepoStore
from .trace import TraceRecorder

logger = get_logger(__name__)


class RepoService:
    """Entry point for clone, pull, checkout and remove requests."""

    def __init__(
        self,
        store: RepoStore,
        dispatcher: OperationDispatcher,
        lock: ProcessLock | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.lock = lock

    @classmethod
    def create(
        cls,
        store: RepoStore,
        repos_dir: Path,
        git: GitCapability | None = None,
        trace: TraceRecorder | None = None,
        messages: Messages | None = None,
        timeout: int = 30,
        lock: ProcessLock | None = None,
    ) -> RepoService:
        """Wire a service with its own notifier and sequence counter."""
        dispatcher = OperationDispatcher(
            store=store,
            git=git or GitCli(timeout=timeout),
            notifier=Notifier(),
            sequence=SequenceCounter(),
            repos_dir=repos_dir,
            trace=trace,
            messages=messages,
        )
        return cls(store, dispatcher, lock)

    @property
    def notifier(self) -> Notifier:
        return self.dispatcher.notifier

    def repo_path(self, record: RepoRecord) -> Path:
        return self.dispatcher.repo_path(record)

    def acquire_lock(self, wait: bool = True) -> bool:
        """Become the process that runs git operations on these repositories."""
        return self.lock is None or self.lock.acquire(wait)

    def _require_lock(self) -> None:
        if not self.acquire_lock(wait=False):
            raise OperationLockedError(
                "Another gitt process is running git operations, try again later"
            )

    def get(self, name: str) -> RepoRecord:
        record = self.store.find_by_name(name)
        if record is None:
            raise RepoNotFoundError(f"Repository '{name}' not found")
        return record

    def clone(
        self,
        name: str,
        address: str,
        user_name: str | None = None,
        password: str | None = None,
    ) -> tuple[RepoRecord, Future]:
        """Add a New record and queue its clone.

        Raises InvalidRequestError for bad input and DuplicateRepoError
        when the derived folder is already tracked; nothing is queued then.
        """
        name, address, user_name, password = _validate_clone_request(
            name, address, user_name, password
        )

        self._require_lock()
        folder = make_folder_name(name)
        if self.store.exists(folder):
            raise DuplicateRepoError(f"A repository named '{name}' already exists")

        record = self.store.add(
            RepoRecord(
                folder=folder,
                name=name,
                address=address,
                user_name=user_name,
                state=RepoState.NEW,
            )
        )
        return record, self.dispatcher.submit_clone(record, password)

    def edit(
        self,
        name: str,
        address: str | None = None,
        user_name: str | None = None,
        password: str | None = None,
    ) -> tuple[RepoRecord, Future]:
        """Retry a failed clone, optionally with a corrected address or credentials."""
        self._require_lock()
        current = self.get(name)
        if current.state is not RepoState.ERROR:
            raise InvalidRequestError(f"Repository '{name}' did not fail, nothing to edit")

        address = address or current.address
        user_name = user_name if user_name is not None else current.user_name
        _validate_clone_request(name, address, user_name, password)

        self.store.delete(current.folder)
        self.dispatcher.submit_delete(current).result()
        return self.clone(name, address, user_name, password)

    def pull(self, name: str, password: str | None = None) -> tuple[RepoRecord, Future]:
        record = self._mark_busy(name)
        return record, self.dispatcher.submit_pull(record, password)

    def checkout(self, name: str, ref: str) -> tuple[RepoRecord, Future]:
        record = self._mark_busy(name)
        return record, self.dispatcher.submit_checkout(record, ref)

    def _mark_busy(self, name: str) -> RepoRecord:
        """Persist Busy before queuing, so a restart can release the record."""
        self._require_lock()
        record = self.get(name)
        if record.state is not RepoState.LOCAL:
            raise InvalidRequestError(
                f"Repository '{name}' is {record.state.value}, it must be Local"
            )
        record.state = RepoState.BUSY
        self.store.update(record)
        return record

    def remove(self, name: str) -> tuple[RepoRecord, Future]:
        self._require_lock()
        record = self.get(name)
        self.store.delete(record.folder)
        return record, self.dispatcher.submit_delete(record)

    def recover(self) -> list[tuple[RepoRecord, Future]]:
        """Resume clones interrupted by a restart and release Busy records.

        Busy records go back to Local without any git call, even if the
        interrupted pull or checkout left the working copy half updated.
        Only the process holding the lock recovers, so records that another
        process is working on are left alone. Returns the resubmitted clones.
        """
        if not self.acquire_lock(wait=False):
            logger.info("Another gitt process owns the repositories, skipping recovery")
            return []

        jobs = []
        for record in self.store.list_all():
            if record.state is RepoState.NEW:
                logger.info("Resuming clone of %s", record.name)
                jobs.append((record, self.dispatcher.submit_clone(record)))
            elif record.state is RepoState.BUSY:
                logger.info("Releasing %s", record.name)
                record.state = RepoState.LOCAL
                self.store.update(record)
        return jobs

    def shutdown(self) -> None:
        self.dispatcher.shutdown(wait=True)
        self.notifier.shutdown()
        if self.lock is not None:
            self.lock.release()


def _validate_clone_request(
    name: str, address: str, user_name: str | None, password: str | None
) -> tuple[str, str, str | None, str | None]:
    name = name.strip()
    address = address.strip()
    user_name = user_name or None
    password = password or None

    if not name:
        raise InvalidRequestError("Name must not be empty")
    if not address:
        raise InvalidRequestError("Address must not be empty")
    if bool(user_name) != bool(password):
        raise InvalidRequestError("User name and password must be given together")
    if not is_supported_address(address):
        raise InvalidRequestError("Only http:// and https:// addresses are supported")

    return name, address, user_name, password
