"""Git operations for gitt, backed by the git command-line program.

Remote operations (clone, pull) and checkout never raise for git
failures: they return a GitOutcome whose error kind tells the caller what
went wrong. Classification is done on git's stderr, so git is always run
with LC_ALL=C.
"""

from __future__ import annotations

import base64
import os
import re
import shutil
import subprocess
from collections import deque
from pathlib import Path
from typing import Protocol

from .core import GittError, InvalidRequestError, get_dir_size, run_command
from .logger import get_logger
from .models import GitErrorKind, GitOutcome, LogEntry
from .progress import ProgressReporter

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30
OBJECT_ID_LENGTH = 40
STDERR_TAIL_LINES = 50

_PROGRESS_RE = re.compile(
    r"^(?:remote:\s*)?(?P<task>[A-Za-z][A-Za-z ]*?):\s+\d+%\s+\((?P<current>\d+)/(?P<total>\d+)\)"
)
_COUNT_RE = re.compile(r"^(?:remote:\s*)?(?P<task>[A-Za-z][A-Za-z ]*?):\s+\d+(?:,\s*done\.)?\s*$")

_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "not authorized",
    "invalid username or password",
    "returned error: 401",
    "returned error: 403",
)
_NOT_REPO_MARKERS = (
    "repository not found",
    "not a git repository",
    "is this a git repository",
    "does not appear to be a git repository",
    "returned error: 404",
)
_NOT_REPO_RE = re.compile(r"repository '[^']*' (?:not found|does not exist)")
_CONNECTION_MARKERS = (
    "could not resolve host",
    "could not resolve proxy",
    "failed to connect",
    "couldn't connect",
    "connection refused",
    "connection timed out",
    "connection reset",
    "operation timed out",
    "network is unreachable",
    "unsupported protocol",
    "not supported or disabled in libcurl",
    "ssl certificate",
    "ssl connect error",
    "ssl_",
    "gnutls",
    "rpc failed",
    "early eof",
    "transfer closed",
    "unable to access",
)
_NO_HEAD_MARKERS = ("not currently on a branch",)


class GitCapability(Protocol):
    """Git operations the dispatcher depends on."""

    def clone(
        self,
        url: str,
        local_path: Path,
        user: str | None,
        password: str | None,
        progress: ProgressReporter | None,
    ) -> GitOutcome: ...

    def pull(
        self,
        local_path: Path,
        user: str | None,
        password: str | None,
        progress: ProgressReporter | None,
    ) -> GitOutcome: ...

    def checkout(self, local_path: Path, ref: str) -> GitOutcome: ...

    def current_ref(self, local_path: Path) -> str | None: ...

    def list_refs(self, local_path: Path) -> list[str]: ...

    def read_history(self, local_path: Path, limit: int = 50) -> list[LogEntry]: ...

    def repo_size(self, local_path: Path) -> int: ...

    def delete_local(self, local_path: Path) -> None: ...


def display_ref_name(name: str) -> str:
    """Strip everything up to and including the last '/'."""
    return name.rsplit("/", 1)[-1]


def resolve_ref(refs: list[str], wanted: str) -> str:
    """Find the ref the user meant, by full name or display name."""
    if wanted in refs:
        return wanted

    matches = [ref for ref in refs if display_ref_name(ref) == wanted]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise InvalidRequestError(f"No branch or tag named '{wanted}'")
    raise InvalidRequestError(
        f"'{wanted}' is ambiguous, use one of: {', '.join(sorted(matches))}"
    )


def classify_failure(stderr: str) -> GitErrorKind:
    """Map git's error output to a failure kind."""
    text = stderr.lower()
    if any(marker in text for marker in _NO_HEAD_MARKERS):
        return GitErrorKind.NO_HEAD
    if any(marker in text for marker in _AUTH_MARKERS):
        return GitErrorKind.AUTH_FAILURE
    if any(marker in text for marker in _NOT_REPO_MARKERS) or _NOT_REPO_RE.search(text):
        return GitErrorKind.NOT_A_REPOSITORY
    if any(marker in text for marker in _CONNECTION_MARKERS):
        return GitErrorKind.CONNECTION_FAILURE
    return GitErrorKind.GENERIC_FAILURE


class GitProgressParser:
    """Feeds git's --progress lines into a ProgressReporter.

    'Receiving objects:  45% (45/100)' starts the task when its name
    changes, then each line advances it by the number of new units.
    'Enumerating objects: 5, done.' has no total and starts a silent task.
    """

    def __init__(self, reporter: ProgressReporter):
        self.reporter = reporter
        self.task: str | None = None
        self.current = 0

    def feed(self, line: str) -> bool:
        """Consume a stderr line. Returns True if it was a progress line."""
        match = _PROGRESS_RE.match(line)
        if match:
            task = match.group("task").strip()
            current = int(match.group("current"))
            if task != self.task:
                self._begin(task, int(match.group("total")))
            if current > self.current:
                self.reporter.update(current - self.current)
                self.current = current
            return True

        match = _COUNT_RE.match(line)
        if match:
            task = match.group("task").strip()
            if task != self.task:
                self._begin(task, 0)
            return True

        return False

    def _begin(self, task: str, total: int) -> None:
        if self.task is not None:
            self.reporter.end_task()
        self.task = task
        self.current = 0
        self.reporter.begin_task(task, total)


class GitCli:
    """GitCapability implementation running the git executable."""

    def __init__(self, git_executable: str = "git", timeout: int = DEFAULT_TIMEOUT):
        self.git = git_executable
        self.timeout = timeout

    def _env(self, config: dict[str, str] | None = None) -> dict[str, str]:
        """Environment for git, with optional extra config entries.

        Config passed through GIT_CONFIG_KEY_n/GIT_CONFIG_VALUE_n never shows
        up in the process arguments and is never written to disk.
        """
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"  # fail instead of prompting
        env["LC_ALL"] = "C"
        if config:
            count = int(env.get("GIT_CONFIG_COUNT", "0") or 0)
            for key, value in config.items():
                env[f"GIT_CONFIG_KEY_{count}"] = key
                env[f"GIT_CONFIG_VALUE_{count}"] = value
                count += 1
            env["GIT_CONFIG_COUNT"] = str(count)
        return env

    def _remote_cmd(self) -> list[str]:
        """git invocation with transfer limits."""
        return [
            self.git,
            "-c", "http.lowSpeedLimit=1000",
            "-c", f"http.lowSpeedTime={self.timeout}",
        ]

    @staticmethod
    def _credentials(url: str | None, user: str | None, password: str | None) -> dict[str, str]:
        """One-shot Basic authorization, scoped to the remote address when known."""
        if not (user and password):
            return {}
        token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
        key = f"http.{url}.extraHeader" if url else "http.extraHeader"
        return {key: f"Authorization: Basic {token}"}

    def _run_streaming(
        self,
        cmd: list[str],
        cwd: Path | None,
        progress: ProgressReporter | None,
        config: dict[str, str] | None = None,
    ) -> tuple[int, str]:
        """Run git, feeding progress lines to the reporter.

        Returns (returncode, tail of the non-progress stderr output).
        """
        parser = GitProgressParser(progress) if progress is not None else None
        tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        try:
            process = subprocess.Popen(
                cmd,
                cwd=cwd,
                env=self._env(config),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except FileNotFoundError:
            return 127, f"Command not found: {cmd[0]}"
        except OSError as e:
            return 126, f"Cannot run {cmd[0]}: {e}"

        assert process.stderr is not None
        with process.stderr:
            # text mode turns git's carriage-return redraws into separate lines
            for raw in process.stderr:
                line = raw.strip()
                if not line:
                    continue
                if parser is not None and parser.feed(line):
                    continue
                tail.append(line)

        return process.wait(), "\n".join(tail)

    def _query(self, args: list[str], cwd: Path) -> subprocess.CompletedProcess | None:
        """Run a read-only git command; None if git itself is missing."""
        try:
            return subprocess.run(
                [self.git, *args],
                cwd=cwd,
                env=self._env(),
                capture_output=True,
                text=True,
            )
        except (FileNotFoundError, NotADirectoryError):
            return None

    def _remote_url(self, local_path: Path) -> str | None:
        result = self._query(["config", "--get", "remote.origin.url"], local_path)
        if result is None or result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def clone(
        self,
        url: str,
        local_path: Path,
        user: str | None = None,
        password: str | None = None,
        progress: ProgressReporter | None = None,
    ) -> GitOutcome:
        """Clone url into local_path, which must not exist yet."""
        logger.info("Cloning %s into %s", url, local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = self._remote_cmd() + ["clone", "--progress", url, str(local_path)]
        credentials = self._credentials(url, user, password)
        returncode, stderr = self._run_streaming(cmd, None, progress, credentials)
        if returncode == 0:
            return GitOutcome.success()

        kind = classify_failure(stderr)
        logger.warning("Clone of %s failed (%s)", url, kind.value)
        return GitOutcome.failure(kind, stderr)

    def pull(
        self,
        local_path: Path,
        user: str | None = None,
        password: str | None = None,
        progress: ProgressReporter | None = None,
    ) -> GitOutcome:
        """Pull the current branch from its upstream."""
        logger.info("Pulling %s", local_path)
        if not local_path.is_dir():
            return GitOutcome.failure(GitErrorKind.NOT_A_REPOSITORY, f"{local_path} does not exist")

        head = self._query(["symbolic-ref", "-q", "HEAD"], local_path)
        if head is not None and head.returncode == 1:
            return GitOutcome.failure(GitErrorKind.NO_HEAD, "HEAD is detached")

        cmd = self._remote_cmd() + ["pull", "--progress", "--no-rebase"]
        credentials = self._credentials(self._remote_url(local_path), user, password)
        returncode, stderr = self._run_streaming(cmd, local_path, progress, credentials)
        if returncode == 0:
            return GitOutcome.success()

        kind = classify_failure(stderr)
        logger.warning("Pull of %s failed (%s)", local_path, kind.value)
        return GitOutcome.failure(kind, stderr)

    def checkout(self, local_path: Path, ref: str) -> GitOutcome:
        """Check out a branch or tag.

        A remote-tracking ref switches to the local branch of the same
        name, creating it to track the remote when missing. Any other
        ref is checked out as given, which detaches HEAD for tags.
        """
        logger.info("Checking out %s in %s", ref, local_path)
        if ref.startswith("refs/remotes/") and ref.count("/") >= 3:
            branch = ref.split("/", 3)[3]
            exists = self._query(
                ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], local_path
            )
            if exists is not None and exists.returncode == 0:
                args = ["checkout", branch]
            else:
                args = ["checkout", "-b", branch, "--track", ref]
        else:
            args = ["checkout", ref]

        result = self._query(args, local_path)
        if result is None:
            return GitOutcome.failure(
                GitErrorKind.GENERIC_FAILURE, f"Cannot run {self.git} in {local_path}"
            )
        if result.returncode != 0:
            logger.warning("Checkout of %s failed: %s", ref, result.stderr.strip())
            return GitOutcome.failure(GitErrorKind.GENERIC_FAILURE, result.stderr)
        return GitOutcome.success()

    def current_ref(self, local_path: Path) -> str | None:
        """Friendly name of the checked-out branch or tag.

        A detached HEAD is named after a tag pointing at the same commit;
        without one the raw commit id is returned.
        """
        head = self._query(["symbolic-ref", "-q", "HEAD"], local_path)
        if head is None:
            return None
        if head.returncode == 0:
            return display_ref_name(head.stdout.strip())

        rev = self._query(["rev-parse", "HEAD"], local_path)
        if rev is None or rev.returncode != 0:
            return None
        name = rev.stdout.strip()

        if len(name) == OBJECT_ID_LENGTH:
            for object_id, peeled_id, refname in self._tag_targets(local_path):
                if name in (object_id, peeled_id):
                    name = refname
                    break

        return display_ref_name(name)

    def _tag_targets(self, local_path: Path) -> list[tuple[str, str, str]]:
        """(object id, peeled object id, refname) for every tag."""
        try:
            result = run_command(
                [
                    self.git,
                    "for-each-ref",
                    "--format=%(objectname) %(*objectname) %(refname)",
                    "refs/tags",
                ],
                cwd=local_path,
                capture_output=True,
            )
        except GittError as e:
            logger.warning("Could not list tags in %s: %s", local_path, e)
            return []

        targets = []
        for line in result.stdout.splitlines():
            parts = line.split(" ")
            if len(parts) == 3:
                targets.append((parts[0], parts[1], parts[2]))
        return targets

    def list_refs(self, local_path: Path) -> list[str]:
        """Fully-qualified refs that can be checked out.

        Local branches are left out since each one has a remote-tracking
        counterpart, and so are HEAD symrefs.
        """
        try:
            result = run_command(
                [self.git, "for-each-ref", "--format=%(refname)"],
                cwd=local_path,
                capture_output=True,
            )
        except GittError as e:
            logger.warning("Could not list refs in %s: %s", local_path, e)
            return []

        refs = []
        for name in result.stdout.splitlines():
            name = name.strip()
            if not name or name == "HEAD" or name.endswith("/HEAD"):
                continue
            if name.startswith("refs/heads/"):
                continue
            refs.append(name)
        return refs

    def read_history(self, local_path: Path, limit: int = 50) -> list[LogEntry]:
        """Up to limit commits reachable from HEAD, newest first."""
        try:
            result = run_command(
                [
                    self.git,
                    "log",
                    f"--max-count={limit}",
                    "--format=%an%x1f%ct%x1f%H%x1f%B%x1e",
                ],
                cwd=local_path,
                capture_output=True,
            )
        except GittError as e:
            logger.warning("Could not read history of %s: %s", local_path, e)
            return []

        entries = []
        for record in result.stdout.split("\x1e"):
            record = record.strip("\n")
            if not record:
                continue
            author, timestamp, commit, message = record.split("\x1f", 3)
            entries.append(LogEntry(author, int(timestamp), commit, message.strip()))
        return entries

    def repo_size(self, local_path: Path) -> int:
        return get_dir_size(local_path)

    def delete_local(self, local_path: Path) -> None:
        """Remove a working copy. Raises OSError on failure."""
        if local_path.exists():
            shutil.rmtree(local_path)
