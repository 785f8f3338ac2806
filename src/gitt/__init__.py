"""gitt - local clones of remote git repositories.

Clone, pull and switch branches of tracked repositories from the command
line, with progress reporting and a persistent record of each clone.
"""

from __future__ import annotations


def main() -> None:
    """Entry point for the gitt CLI."""
    # Lazy import for faster startup
    from gitt.cli import app

    app()


__all__ = ["main"]
