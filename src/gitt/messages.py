"""User-facing messages for git failures and operation results."""

from __future__ import annotations

from dataclasses import dataclass, fields

from .models import GitErrorKind

REPOSITORY_SUFFIX = ".git"


@dataclass(frozen=True)
class Messages:
    """Message catalogue; any field can be overridden from the [messages] config table."""

    git_error_connect: str = "Could not connect to the remote server"
    git_error_auth: str = "Authentication failed"
    git_error_not_git: str = "Not a git repository"
    git_error_not_git_guess: str = (
        "Not a git repository. Did you forget .git at the end of the address?"
    )
    git_error_head: str = "No branch is checked out, switch to a branch first"
    git_error_generic: str = "Git operation failed"
    pull_done: str = "Pull done"
    pull_failed: str = "Pull failed"
    checkout_done: str = "Checkout done"
    checkout_failed: str = "Checkout failed"

    @classmethod
    def with_overrides(cls, overrides: dict[str, str]) -> Messages:
        known = {f.name for f in fields(cls)}
        return cls(**{k: str(v) for k, v in overrides.items() if k in known})

    def for_error(self, kind: GitErrorKind, address: str = "") -> str:
        """Message for a failure kind.

        A not-a-repository failure on an address without the usual .git
        suffix most likely means a mistyped URL, so it gets the hint.
        """
        if kind is GitErrorKind.CONNECTION_FAILURE:
            return self.git_error_connect
        if kind is GitErrorKind.AUTH_FAILURE:
            return self.git_error_auth
        if kind is GitErrorKind.NOT_A_REPOSITORY:
            if not address.lower().endswith(REPOSITORY_SUFFIX):
                return self.git_error_not_git_guess
            return self.git_error_not_git
        if kind is GitErrorKind.NO_HEAD:
            return self.git_error_head
        return self.git_error_generic
