import base64
import os

import pytest

from gitt.core import InvalidRequestError
from gitt.git import GitCli, GitProgressParser, classify_failure, display_ref_name, resolve_ref
from gitt.models import GitErrorKind
from gitt.progress import ProgressReporter, SequenceCounter


@pytest.mark.parametrize(
    "stderr, kind",
    [
        (
            "fatal: unable to access 'https://nohost.invalid/x.git/': Could not resolve host: nohost.invalid",
            GitErrorKind.CONNECTION_FAILURE,
        ),
        (
            "fatal: unable to access 'https://example.com/x.git/': Failed to connect to example.com port 443",
            GitErrorKind.CONNECTION_FAILURE,
        ),
        ("fatal: Authentication failed for 'https://example.com/x.git/'", GitErrorKind.AUTH_FAILURE),
        (
            "fatal: could not read Username for 'https://example.com': terminal prompts disabled",
            GitErrorKind.AUTH_FAILURE,
        ),
        (
            "remote: Repository not found.\nfatal: repository 'https://example.com/x.git/' not found",
            GitErrorKind.NOT_A_REPOSITORY,
        ),
        ("fatal: repository '/tmp/nowhere' does not exist", GitErrorKind.NOT_A_REPOSITORY),
        (
            "fatal: https://example.com/x/info/refs not valid: is this a git repository?",
            GitErrorKind.NOT_A_REPOSITORY,
        ),
        (
            "You are not currently on a branch.\nPlease specify which branch you want to merge with.",
            GitErrorKind.NO_HEAD,
        ),
        ("error: Your local changes would be overwritten by merge.", GitErrorKind.GENERIC_FAILURE),
        ("error: pathspec 'classless' did not match any file(s) known to git", GitErrorKind.GENERIC_FAILURE),
        ("error: option '--depth' is not supported here", GitErrorKind.GENERIC_FAILURE),
        (
            "fatal: unable to access 'https://example.com/x.git/': "
            "SSL certificate problem: self-signed certificate",
            GitErrorKind.CONNECTION_FAILURE,
        ),
        (
            "fatal: Protocol \"ftp\" not supported or disabled in libcurl",
            GitErrorKind.CONNECTION_FAILURE,
        ),
        ("", GitErrorKind.GENERIC_FAILURE),
    ],
)
def test_classify_failure(stderr, kind):
    assert classify_failure(stderr) is kind


@pytest.mark.parametrize(
    "ref, name",
    [
        ("refs/remotes/origin/main", "main"),
        ("refs/tags/v1.0", "v1.0"),
        ("refs/remotes/origin/feature/login", "login"),
        ("main", "main"),
    ],
)
def test_display_ref_name(ref, name):
    assert display_ref_name(ref) == name


class TestResolveRef:
    refs = [
        "refs/remotes/origin/main",
        "refs/remotes/origin/dev",
        "refs/tags/v1.0",
        "refs/tags/dev",
    ]

    def test_full_name(self):
        assert resolve_ref(self.refs, "refs/tags/dev") == "refs/tags/dev"

    def test_display_name(self):
        assert resolve_ref(self.refs, "main") == "refs/remotes/origin/main"
        assert resolve_ref(self.refs, "v1.0") == "refs/tags/v1.0"

    def test_ambiguous(self):
        with pytest.raises(InvalidRequestError, match="ambiguous"):
            resolve_ref(self.refs, "dev")

    def test_unknown(self):
        with pytest.raises(InvalidRequestError, match="No branch or tag"):
            resolve_ref(self.refs, "release")


class TestProgressParser:
    @pytest.fixture
    def parsed(self):
        events = []
        parser = GitProgressParser(ProgressReporter("repo", events.append, SequenceCounter()))
        return parser, events

    def test_counts_and_percentages(self, parsed):
        parser, events = parsed
        lines = [
            "remote: Enumerating objects: 200, done.",
            "remote: Counting objects:  50% (50/100)",
            "remote: Counting objects: 100% (100/100), done.",
            "Receiving objects:   0% (0/200)",
            "Receiving objects:  10% (20/200), 1.00 KiB | 1.00 MiB/s",
            "Receiving objects:  12% (24/200)",
            "Receiving objects: 100% (200/200), 5.00 KiB | 2.00 MiB/s, done.",
            "Resolving deltas: 100% (40/40), done.",
        ]
        assert all(parser.feed(line) for line in lines)

        assert [(e.task, e.progress) for e in events] == [
            ("Enumerating objects", 0),
            ("Counting objects", 0),
            ("Counting objects", 50),
            ("Counting objects", 100),
            ("Receiving objects", 0),
            ("Receiving objects", 10),
            ("Receiving objects", 100),
            ("Resolving deltas", 0),
            ("Resolving deltas", 100),
        ]

    def test_other_lines_are_not_progress(self, parsed):
        parser, events = parsed

        assert not parser.feed("Cloning into '/tmp/x'...")
        assert not parser.feed("fatal: Authentication failed for 'https://example.com/'")
        assert events == []


@pytest.mark.skipif(os.name != "posix", reason="needs a shell script as git")
class TestCredentials:
    TOKEN = base64.b64encode(b"alice:s3cret").decode("ascii")

    @pytest.fixture
    def recording_git(self, tmp_path, monkeypatch):
        """Executable that logs its arguments and GIT_CONFIG_* environment."""
        script = tmp_path / "git"
        script.write_text(
            "#!/bin/sh\n"
            'printf \'%s\\n\' "$*" >> "$GITT_ARGV_LOG"\n'
            'env | grep \'^GIT_CONFIG_\' >> "$GITT_ENV_LOG"\n'
            'if [ "$1" = "config" ]; then echo https://example.com/demo.git; fi\n'
            "exit 0\n"
        )
        script.chmod(0o755)
        monkeypatch.setenv("GITT_ARGV_LOG", str(tmp_path / "argv.log"))
        monkeypatch.setenv("GITT_ENV_LOG", str(tmp_path / "env.log"))
        for name in ("GIT_CONFIG_COUNT", "GIT_CONFIG_KEY_0", "GIT_CONFIG_VALUE_0"):
            monkeypatch.delenv(name, raising=False)
        return GitCli(git_executable=str(script))

    def test_clone_keeps_password_out_of_arguments(self, recording_git, tmp_path):
        outcome = recording_git.clone(
            "https://example.com/demo.git", tmp_path / "repos" / "demo", "alice", "s3cret"
        )

        assert outcome.ok
        argv = (tmp_path / "argv.log").read_text()
        assert "clone" in argv
        assert self.TOKEN not in argv
        assert "s3cret" not in argv

        env = (tmp_path / "env.log").read_text().splitlines()
        assert "GIT_CONFIG_COUNT=1" in env
        assert "GIT_CONFIG_KEY_0=http.https://example.com/demo.git.extraHeader" in env
        assert f"GIT_CONFIG_VALUE_0=Authorization: Basic {self.TOKEN}" in env

    def test_pull_scopes_header_to_origin_and_keeps_existing_config(
        self, recording_git, tmp_path, monkeypatch
    ):
        monkeypatch.setenv("GIT_CONFIG_COUNT", "1")
        monkeypatch.setenv("GIT_CONFIG_KEY_0", "core.quotepath")
        monkeypatch.setenv("GIT_CONFIG_VALUE_0", "false")
        work = tmp_path / "work"
        work.mkdir()

        outcome = recording_git.pull(work, "alice", "s3cret")

        assert outcome.ok
        assert self.TOKEN not in (tmp_path / "argv.log").read_text()
        env = (tmp_path / "env.log").read_text().splitlines()
        assert "GIT_CONFIG_KEY_0=core.quotepath" in env
        assert "GIT_CONFIG_KEY_1=http.https://example.com/demo.git.extraHeader" in env
        assert "GIT_CONFIG_COUNT=2" in env

    def test_no_credentials_no_header(self, recording_git, tmp_path):
        assert recording_git.clone("https://example.com/demo.git", tmp_path / "demo").ok

        env_log = tmp_path / "env.log"
        assert not env_log.exists() or "extraHeader" not in env_log.read_text()
