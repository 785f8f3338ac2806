import shutil
import threading
from pathlib import Path

import pytest

from gitt.models import GitOutcome, LogEntry
from gitt.service import RepoService
from gitt.storage import RepoStore
from gitt.trace import TraceRecorder


class FakeGit:
    """In-memory stand-in for GitCli that records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.clone_outcome = GitOutcome.success()
        self.pull_outcome = GitOutcome.success()
        self.checkout_outcome = GitOutcome.success()
        # (task, total units, unit deltas) replayed into the progress reporter
        self.progress_script: list[tuple[str, int, list[int]]] = [
            ("Receiving objects", 20, [5, 5, 5, 5]),
        ]
        self.size = 4096
        self.refs = ["refs/remotes/origin/main", "refs/remotes/origin/dev", "refs/tags/v1.0"]
        self.current = "main"
        self.history: list[LogEntry] = []
        self.delete_error: OSError | None = None
        self.on_pull = None
        self.delete_threads: list[str] = []

    def _replay(self, progress) -> None:
        if progress is None:
            return
        for task, total, steps in self.progress_script:
            progress.begin_task(task, total)
            for units in steps:
                progress.update(units)

    def clone(self, url, local_path, user=None, password=None, progress=None):
        self.calls.append(("clone", url, local_path, user, password))
        self._replay(progress)
        if self.clone_outcome.ok:
            local_path.mkdir(parents=True, exist_ok=True)
        return self.clone_outcome

    def pull(self, local_path, user=None, password=None, progress=None):
        self.calls.append(("pull", local_path, user, password))
        if self.on_pull is not None:
            self.on_pull()
        self._replay(progress)
        return self.pull_outcome

    def checkout(self, local_path, ref):
        self.calls.append(("checkout", local_path, ref))
        return self.checkout_outcome

    def current_ref(self, local_path):
        return self.current

    def list_refs(self, local_path):
        return list(self.refs)

    def read_history(self, local_path, limit=50):
        return self.history[:limit]

    def repo_size(self, local_path):
        return self.size

    def delete_local(self, local_path: Path) -> None:
        self.calls.append(("delete", local_path))
        self.delete_threads.append(threading.current_thread().name)
        if self.delete_error is not None:
            raise self.delete_error
        if local_path.exists():
            shutil.rmtree(local_path)

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def store(tmp_path: Path):
    repo_store = RepoStore(tmp_path / "data.sqlite3")
    yield repo_store
    repo_store.close()


@pytest.fixture
def repos_dir(tmp_path: Path) -> Path:
    path = tmp_path / "repos"
    path.mkdir()
    return path


@pytest.fixture
def trace(tmp_path: Path) -> TraceRecorder:
    return TraceRecorder(tmp_path / "last_error.log")


@pytest.fixture
def service(store: RepoStore, fake_git: FakeGit, repos_dir: Path, trace: TraceRecorder):
    svc = RepoService.create(store=store, repos_dir=repos_dir, git=fake_git, trace=trace)
    yield svc
    svc.shutdown()
