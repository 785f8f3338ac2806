"""Data types shared by the store, the git layer and the dispatcher."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum


class RepoState(str, Enum):
    """Repository lifecycle."""

    NEW = "New"  # not cloned yet
    BUSY = "Busy"  # pull or checkout in progress
    LOCAL = "Local"  # ready
    ERROR = "Error"  # clone failed


@dataclass
class RepoRecord:
    """A tracked repository and its lifecycle state."""

    folder: str
    name: str
    address: str
    user_name: str | None = None
    size: int = 0
    state: RepoState = RepoState.NEW
    error: str = ""
    id: int | None = None


@dataclass(frozen=True)
class ProgressEvent:
    """Coarse progress for one repository, routed by receiver_id (its folder)."""

    receiver_id: str
    task: str
    progress: int
    sequence: int


class GitErrorKind(str, Enum):
    """Failure categories for remote git operations."""

    CONNECTION_FAILURE = "ConnectionFailure"
    AUTH_FAILURE = "AuthFailure"
    NOT_A_REPOSITORY = "NotARepository"
    NO_HEAD = "NoHead"
    GENERIC_FAILURE = "GenericFailure"


@dataclass(frozen=True)
class GitOutcome:
    """Result of a git call: error is None on success."""

    error: GitErrorKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls) -> GitOutcome:
        return cls()

    @classmethod
    def failure(cls, kind: GitErrorKind, detail: str = "") -> GitOutcome:
        return cls(error=kind, detail=detail)


@dataclass(frozen=True)
class LogEntry:
    """One commit from a repository's history."""

    author: str
    timestamp: int
    commit: str
    message: str

    @property
    def text(self) -> str:
        date = time.strftime("%b %d, %Y", time.localtime(self.timestamp))
        return f"{self.author}\n{date}\n{self.commit}\n\n{self.message}"
