import pytest

from gitt.dispatcher import OperationDispatcher
from gitt.messages import Messages
from gitt.models import GitErrorKind, GitOutcome, RepoRecord, RepoState
from gitt.notify import Notifier
from gitt.progress import SequenceCounter


class Recorder:
    """Collects everything the notifier delivers."""

    def __init__(self, notifier: Notifier):
        self.refreshes = 0
        self.progress = []
        self.messages = []
        notifier.on_refresh(self._refresh)
        notifier.on_progress(self.progress.append)
        notifier.on_message(self.messages.append)

    def _refresh(self):
        self.refreshes += 1


@pytest.fixture
def dispatcher(store, fake_git, repos_dir, trace):
    notifier = Notifier()
    disp = OperationDispatcher(
        store=store,
        git=fake_git,
        notifier=notifier,
        sequence=SequenceCounter(),
        repos_dir=repos_dir,
        trace=trace,
    )
    yield disp
    disp.shutdown(wait=True)
    notifier.shutdown()


@pytest.fixture
def recorder(dispatcher):
    return Recorder(dispatcher.notifier)


def add_record(store, name="demo", address="https://example.com/demo.git", state=RepoState.NEW):
    return store.add(RepoRecord(folder=f"f-{name}", name=name, address=address, state=state))


def run(dispatcher, future):
    result = future.result(timeout=10)
    dispatcher.notifier.flush()
    return result


class TestClone:
    def test_success_ends_local_with_size(self, dispatcher, recorder, store, fake_git):
        record = add_record(store)

        run(dispatcher, dispatcher.submit_clone(record))

        loaded = store.get(record.folder)
        assert loaded.state is RepoState.LOCAL
        assert loaded.size == fake_git.size
        assert loaded.error == ""
        assert recorder.refreshes == 1

    def test_progress_is_routed_by_folder(self, dispatcher, recorder, store):
        record = add_record(store)

        run(dispatcher, dispatcher.submit_clone(record))

        assert recorder.progress
        assert {e.receiver_id for e in recorder.progress} == {record.folder}
        assert [e.progress for e in recorder.progress] == [0, 25, 50, 75, 100]
        sequences = [e.sequence for e in recorder.progress]
        assert sequences == sorted(sequences)

    def test_existing_directory_is_cleared_first(self, dispatcher, store, fake_git, repos_dir):
        record = add_record(store)
        stale = repos_dir / record.folder
        stale.mkdir()
        (stale / "leftover").write_text("old")

        run(dispatcher, dispatcher.submit_clone(record))

        assert fake_git.names()[:2] == ["delete", "clone"]
        assert not (stale / "leftover").exists()

    def test_password_is_passed_but_not_stored(self, dispatcher, store, fake_git):
        record = store.add(
            RepoRecord(
                folder="f-private",
                name="private",
                address="https://example.com/private.git",
                user_name="alice",
            )
        )

        run(dispatcher, dispatcher.submit_clone(record, "s3cret"))

        clone_call = [c for c in fake_git.calls if c[0] == "clone"][0]
        assert clone_call[3:] == ("alice", "s3cret")
        assert "s3cret" not in repr(store.get("f-private"))

    @pytest.mark.parametrize(
        "kind, expected",
        [
            (GitErrorKind.CONNECTION_FAILURE, Messages().git_error_connect),
            (GitErrorKind.AUTH_FAILURE, Messages().git_error_auth),
            (GitErrorKind.GENERIC_FAILURE, Messages().git_error_generic),
            (GitErrorKind.NOT_A_REPOSITORY, Messages().git_error_not_git),
        ],
    )
    def test_failure_ends_in_error(self, dispatcher, recorder, store, fake_git, kind, expected):
        fake_git.clone_outcome = GitOutcome.failure(kind, "fatal: something")
        record = add_record(store)

        run(dispatcher, dispatcher.submit_clone(record))

        loaded = store.get(record.folder)
        assert loaded.state is RepoState.ERROR
        assert loaded.error == expected
        assert recorder.refreshes == 1

    def test_not_a_repository_without_git_suffix_gets_hint(self, dispatcher, store, fake_git):
        fake_git.clone_outcome = GitOutcome.failure(GitErrorKind.NOT_A_REPOSITORY)
        record = add_record(store, address="https://example.com/demo")

        run(dispatcher, dispatcher.submit_clone(record))

        assert store.get(record.folder).error == Messages().git_error_not_git_guess

    def test_suffix_check_ignores_case(self, dispatcher, store, fake_git):
        fake_git.clone_outcome = GitOutcome.failure(GitErrorKind.NOT_A_REPOSITORY)
        record = add_record(store, address="https://example.com/demo.GIT")

        run(dispatcher, dispatcher.submit_clone(record))

        assert store.get(record.folder).error == Messages().git_error_not_git

    def test_failure_detail_goes_to_trace(self, dispatcher, store, fake_git, trace):
        fake_git.clone_outcome = GitOutcome.failure(
            GitErrorKind.AUTH_FAILURE, "fatal: Authentication failed for 'https://example.com/'"
        )
        record = add_record(store)

        run(dispatcher, dispatcher.submit_clone(record))

        saved = trace.last()
        assert "clone" in saved
        assert "AuthFailure" in saved
        assert "Authentication failed for" in saved

    def test_custom_messages(self, store, fake_git, repos_dir):
        notifier = Notifier()
        disp = OperationDispatcher(
            store=store,
            git=fake_git,
            notifier=notifier,
            sequence=SequenceCounter(),
            repos_dir=repos_dir,
            messages=Messages.with_overrides({"git_error_auth": "Wrong password", "bogus": "x"}),
        )
        fake_git.clone_outcome = GitOutcome.failure(GitErrorKind.AUTH_FAILURE)
        record = add_record(store)
        try:
            run(disp, disp.submit_clone(record))
        finally:
            disp.shutdown()
            notifier.shutdown()

        assert store.get(record.folder).error == "Wrong password"


class TestPull:
    def test_success_returns_to_local(self, dispatcher, recorder, store):
        record = add_record(store, state=RepoState.BUSY)

        run(dispatcher, dispatcher.submit_pull(record))

        assert store.get(record.folder).state is RepoState.LOCAL
        assert recorder.messages == [Messages().pull_done]
        assert recorder.refreshes == 1

    @pytest.mark.parametrize(
        "kind, reason",
        [
            (GitErrorKind.NO_HEAD, Messages().git_error_head),
            (GitErrorKind.CONNECTION_FAILURE, Messages().git_error_connect),
            (GitErrorKind.AUTH_FAILURE, Messages().git_error_auth),
        ],
    )
    def test_failure_is_reported_and_not_persisted(
        self, dispatcher, recorder, store, fake_git, kind, reason
    ):
        fake_git.pull_outcome = GitOutcome.failure(kind)
        record = add_record(store, state=RepoState.BUSY)

        run(dispatcher, dispatcher.submit_pull(record))

        loaded = store.get(record.folder)
        assert loaded.state is RepoState.LOCAL
        assert loaded.error == ""
        assert recorder.messages == [f"{Messages().pull_failed}\n{reason}"]


class TestCheckout:
    def test_success_updates_size(self, dispatcher, recorder, store, fake_git):
        record = add_record(store, state=RepoState.BUSY)
        fake_git.size = 777

        run(dispatcher, dispatcher.submit_checkout(record, "refs/tags/v1.0"))

        loaded = store.get(record.folder)
        assert loaded.state is RepoState.LOCAL
        assert loaded.size == 777
        assert ("checkout", dispatcher.repo_path(record), "refs/tags/v1.0") in fake_git.calls
        assert recorder.messages == [Messages().checkout_done]

    def test_failure_returns_to_local(self, dispatcher, recorder, store, fake_git):
        fake_git.checkout_outcome = GitOutcome.failure(GitErrorKind.GENERIC_FAILURE, "error: pathspec")
        record = add_record(store, state=RepoState.BUSY)

        run(dispatcher, dispatcher.submit_checkout(record, "refs/remotes/origin/gone"))

        assert store.get(record.folder).state is RepoState.LOCAL
        assert recorder.messages == [Messages().checkout_failed]
        assert recorder.refreshes == 1


class TestDelete:
    def test_removes_working_copy(self, dispatcher, store, repos_dir):
        record = add_record(store)
        (repos_dir / record.folder).mkdir()

        run(dispatcher, dispatcher.submit_delete(record))

        assert not (repos_dir / record.folder).exists()

    def test_filesystem_errors_are_swallowed(self, dispatcher, store, fake_git):
        fake_git.delete_error = PermissionError("denied")
        record = add_record(store)

        assert run(dispatcher, dispatcher.submit_delete(record)) is None


def test_operations_run_in_submission_order(dispatcher, store, fake_git):
    first = add_record(store, "a")
    second = add_record(store, "b", state=RepoState.BUSY)

    futures = [
        dispatcher.submit_clone(first),
        dispatcher.submit_pull(second),
        dispatcher.submit_delete(first),
    ]
    for future in futures:
        future.result(timeout=10)

    assert [c[0] for c in fake_git.calls] == ["delete", "clone", "pull", "delete"]


def broken(*args, **kwargs):
    raise PermissionError("[Errno 13] Permission denied: 'git'")


def test_clone_that_raises_ends_in_error(dispatcher, recorder, store, fake_git, trace):
    fake_git.clone = broken
    record = add_record(store)

    run(dispatcher, dispatcher.submit_clone(record))

    loaded = store.get(record.folder)
    assert loaded.state is RepoState.ERROR
    assert loaded.error == Messages().git_error_generic
    assert "Permission denied" in trace.last()
    assert recorder.refreshes == 1


@pytest.mark.parametrize("operation", ["pull", "checkout"])
def test_pull_or_checkout_that_raises_returns_to_local(
    dispatcher, recorder, store, fake_git, operation
):
    setattr(fake_git, operation, broken)
    record = add_record(store, state=RepoState.BUSY)

    if operation == "pull":
        future = dispatcher.submit_pull(record)
        expected = f"{Messages().pull_failed}\n{Messages().git_error_generic}"
    else:
        future = dispatcher.submit_checkout(record, "refs/tags/v1.0")
        expected = Messages().checkout_failed
    run(dispatcher, future)

    assert store.get(record.folder).state is RepoState.LOCAL
    assert recorder.messages == [expected]
    assert recorder.refreshes == 1
