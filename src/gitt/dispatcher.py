"""Background execution of git operations.

All clone, pull, checkout and delete requests go through one worker
thread, so no two git processes ever touch the same working copy. Each
operation reconciles the repository record when git returns and then
asks the presentation layer to refresh.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from .core import REPOS_DIR
from .git import GitCapability
from .logger import get_logger
from .messages import Messages
from .models import GitErrorKind, GitOutcome, RepoRecord, RepoState
from .notify import Notifier
from .progress import ProgressReporter, SequenceCounter
from .storage import RepoStore
from .trace import TraceRecorder

logger = get_logger(__name__)


class OperationDispatcher:
    """Single-worker queue for repository operations."""

    def __init__(
        self,
        store: RepoStore,
        git: GitCapability,
        notifier: Notifier,
        sequence: SequenceCounter,
        repos_dir: Path = REPOS_DIR,
        trace: TraceRecorder | None = None,
        messages: Messages | None = None,
    ):
        self.store = store
        self.git = git
        self.notifier = notifier
        self.sequence = sequence
        self.repos_dir = Path(repos_dir)
        self.trace = trace
        self.messages = messages or Messages()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gitt-worker")

    def repo_path(self, record: RepoRecord) -> Path:
        return self.repos_dir / record.folder

    def submit_clone(self, record: RepoRecord, password: str | None = None) -> Future:
        return self._executor.submit(self.clone, record, password)

    def submit_pull(self, record: RepoRecord, password: str | None = None) -> Future:
        return self._executor.submit(self.pull, record, password)

    def submit_checkout(self, record: RepoRecord, ref: str) -> Future:
        return self._executor.submit(self.checkout, record, ref)

    def submit_delete(self, record: RepoRecord) -> Future:
        return self._executor.submit(self.delete, record)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        if wait:
            self.notifier.flush()

    def _reporter(self, record: RepoRecord) -> ProgressReporter:
        return ProgressReporter(record.folder, self.notifier.progress, self.sequence)

    def _record_failure(self, operation: str, record: RepoRecord, outcome: GitOutcome) -> None:
        if self.trace is not None and outcome.error is not None:
            self.trace.save(operation, record.folder, outcome.error.value, outcome.detail)

    def _run_git(self, operation: str, record: RepoRecord, call, *args) -> GitOutcome:
        """Call the git capability; anything it raises becomes a generic failure."""
        try:
            return call(*args)
        except Exception as e:
            logger.exception("Unexpected error during %s of %s", operation, record.name)
            return GitOutcome.failure(GitErrorKind.GENERIC_FAILURE, f"{type(e).__name__}: {e}")

    def _save(self, record: RepoRecord) -> None:
        try:
            self.store.update(record)
        finally:
            self.notifier.refresh()

    def clone(self, record: RepoRecord, password: str | None = None) -> RepoRecord:
        """Clone a New record; it ends up Local or Error.

        The record is written back and a refresh is sent whatever happens.
        """
        path = self.repo_path(record)
        logger.debug("Clone %s (%s)", record.name, record.folder)

        try:
            self.git.delete_local(path)
        except OSError as e:
            logger.warning("Could not clear %s before cloning: %s", path, e)

        try:
            outcome = self._run_git(
                "clone",
                record,
                self.git.clone,
                record.address,
                path,
                record.user_name,
                password,
                self._reporter(record),
            )
            if outcome.ok:
                record.size = self.git.repo_size(path)
                record.state = RepoState.LOCAL
                record.error = ""
                logger.info("Cloned %s", record.name)
            else:
                record.state = RepoState.ERROR
                record.error = self.messages.for_error(outcome.error, record.address)
                self._record_failure("clone", record, outcome)
                logger.error("Clone of %s failed: %s", record.name, record.error)
        finally:
            if record.state is not RepoState.LOCAL:
                record.state = RepoState.ERROR
                record.error = record.error or self.messages.git_error_generic
            self._save(record)

        return record

    def pull(self, record: RepoRecord, password: str | None = None) -> RepoRecord:
        """Pull a Busy record. Failures are only reported, the record returns to Local."""
        path = self.repo_path(record)
        logger.debug("Pull %s (%s)", record.name, record.folder)

        try:
            outcome = self._run_git(
                "pull",
                record,
                self.git.pull,
                path,
                record.user_name,
                password,
                self._reporter(record),
            )
            if outcome.ok:
                self.notifier.message(self.messages.pull_done)
            else:
                self._record_failure("pull", record, outcome)
                reason = self.messages.for_error(outcome.error, record.address)
                self.notifier.message(f"{self.messages.pull_failed}\n{reason}")
        finally:
            record.state = RepoState.LOCAL
            self._save(record)

        return record

    def checkout(self, record: RepoRecord, ref: str) -> RepoRecord:
        """Switch a Busy record to ref. Failures are only reported, the record returns to Local."""
        path = self.repo_path(record)
        logger.debug("Checkout %s in %s (%s)", ref, record.name, record.folder)

        try:
            outcome = self._run_git("checkout", record, self.git.checkout, path, ref)
            if outcome.ok:
                record.size = self.git.repo_size(path)
                record.error = ""
                self.notifier.message(self.messages.checkout_done)
            else:
                self._record_failure("checkout", record, outcome)
                self.notifier.message(self.messages.checkout_failed)
        finally:
            record.state = RepoState.LOCAL
            self._save(record)

        return record

    def delete(self, record: RepoRecord) -> None:
        """Remove the working copy. The caller removes the record itself."""
        path = self.repo_path(record)
        try:
            self.git.delete_local(path)
        except OSError as e:
            logger.warning("Could not delete %s: %s", path, e)
