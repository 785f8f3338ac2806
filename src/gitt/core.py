"""Core helpers for gitt.

This module holds the XDG directory layout, the application error types,
and the small filesystem and subprocess helpers shared by the git layer,
the store and the CLI.
"""

import hashlib
import os
import subprocess
from pathlib import Path

# XDG Base Directory paths
CONFIG_DIR = Path(os.getenv("XDG_CONFIG_HOME", Path.home() / ".config")) / "gitt"
DATA_DIR = Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local/share")) / "gitt"

# Directory paths
REPOS_DIR = DATA_DIR / "repos"  # One working copy per repository record
TRACE_FILE = DATA_DIR / "last_error.log"
LOCK_FILE = DATA_DIR / "gitt.lock"  # Held by the process that runs git operations

SUPPORTED_SCHEMES = ("http://", "https://")


class GittError(Exception):
    """Custom exception for gitt operations."""

    pass


class DuplicateRepoError(GittError):
    """A repository with the same folder is already tracked."""


class RepoNotFoundError(GittError):
    """No tracked repository matches the given name."""


class OperationLockedError(GittError):
    """Another gitt process is running git operations on the same data."""


class InvalidRequestError(GittError):
    """A clone/pull/checkout request failed validation."""


def ensure_dirs():
    """Ensure required directories exist"""
    for path in (CONFIG_DIR, DATA_DIR, REPOS_DIR):
        path.mkdir(parents=True, exist_ok=True)


def run_command(
    cmd: list[str], cwd: Path = None, capture_output: bool = False
) -> subprocess.CompletedProcess:
    """Run a command with error handling"""
    try:
        result = subprocess.run(
            cmd, cwd=cwd, capture_output=capture_output, text=True, check=True
        )
        return result
    except subprocess.CalledProcessError as e:
        raise GittError(
            f"Command failed: {' '.join(cmd)}\n{e.stderr if e.stderr else str(e)}"
        )
    except FileNotFoundError:
        raise GittError(f"Command not found: {cmd[0]}")


def make_folder_name(name: str) -> str:
    """Derive the on-disk folder for a repository display name.

    The mapping is deterministic so a record can always find its working
    copy again; two names hashing to the same prefix would collide.
    """
    return hashlib.sha256(name.encode("utf-8")).hexdigest()[:16]


def is_supported_address(address: str) -> bool:
    """Only plain HTTP(S) remotes are cloned."""
    return address.startswith(SUPPORTED_SCHEMES)


def get_dir_size(path: Path) -> int:
    """Calculate total size of directory recursively in bytes.

    Uses os.scandir() for better performance than Path.rglob().
    """

    def _scandir_size(dir_path: str) -> int:
        """Recursively calculate directory size using scandir."""
        total = 0
        try:
            with os.scandir(dir_path) as entries:
                for entry in entries:
                    try:
                        if entry.is_file(follow_symlinks=False):
                            total += entry.stat(follow_symlinks=False).st_size
                        elif entry.is_dir(follow_symlinks=False):
                            total += _scandir_size(entry.path)
                    except (PermissionError, OSError):
                        continue
        except (PermissionError, OSError):
            pass
        return total

    return _scandir_size(str(path))


def format_size(size_bytes: int) -> str:
    """Format bytes to a short human-readable string.

    Bytes are shown as an integer, larger sizes with one decimal unless
    the decimal is zero: 512 B, 1.5 KB, 2 MB.
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    if size_bytes < 1024 * 1024:
        reduced, unit = size_bytes / 1024, "KB"
    else:
        reduced, unit = size_bytes / (1024 * 1024), "MB"

    value = f"{reduced:.1f}"
    if value.endswith("0"):
        value = f"{reduced:.0f}"
    return f"{value} {unit}"
