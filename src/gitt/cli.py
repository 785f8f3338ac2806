"""CLI commands for gitt.

This module provides the command-line interface for gitt: clone, list,
pull, checkout, refs, log, edit, remove, recover, trace and config.
Git work runs on the dispatcher's worker thread; commands wait for it
while rendering progress.
"""

import os
import shlex
import subprocess
import sys
from concurrent.futures import Future

import tomlkit
import typer
from rich import print as rprint
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.syntax import Syntax

from gitt.config import (
    CONFIG_FILE,
    get_history_limit,
    get_message_overrides,
    get_network_timeout,
    init_config,
    invalidate_config_cache,
    is_verbose,
    load_config,
    should_auto_recover,
    should_show_progress,
)
from gitt.core import LOCK_FILE, REPOS_DIR, TRACE_FILE, GittError, ensure_dirs
from gitt.git import display_ref_name, resolve_ref
from gitt.lock import ProcessLock
from gitt.logger import setup_logging
from gitt.messages import Messages
from gitt.models import ProgressEvent, RepoRecord, RepoState
from gitt.progress import ProgressBoard
from gitt.service import RepoService
from gitt.storage import DATABASE_FILE, RepoStore
from gitt.trace import TraceRecorder
from gitt.utils import console, display_repos_table

app = typer.Typer(
    help="Keep local clones of remote git repositories",
    no_args_is_help=True,
)

# Commands that queue git operations and so must own the repositories
DISPATCHING_COMMANDS = ("clone", "pull", "checkout", "edit", "remove", "recover")


def build_service() -> RepoService:
    """Service wired to the on-disk database, repos directory and trace."""
    ensure_dirs()
    return RepoService.create(
        store=RepoStore(DATABASE_FILE),
        repos_dir=REPOS_DIR,
        trace=TraceRecorder(TRACE_FILE),
        messages=Messages.with_overrides(get_message_overrides()),
        timeout=get_network_timeout(),
        lock=ProcessLock(LOCK_FILE),
    )


class ProgressView:
    """Renders dispatcher progress events as rich progress bars."""

    def __init__(self, service: RepoService):
        self.board = ProgressBoard()
        self._progress: Progress | None = None
        self._tasks: dict[str, object] = {}
        self._names: dict[str, str] = {}
        service.notifier.on_progress(self._on_progress)
        service.notifier.on_message(self._on_message)

    def wait(self, service: RepoService, jobs: list[tuple[RepoRecord, Future]]) -> list:
        """Block until every job finished, showing progress if enabled."""
        if not jobs:
            return []

        if not should_show_progress():
            results = [future.result() for _, future in jobs]
            service.notifier.flush()
            return results

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
        ) as progress:
            self._tasks = {}
            for record, _ in jobs:
                self._names[record.folder] = record.name
                self._tasks[record.folder] = progress.add_task(
                    f"[cyan]{record.name}[/cyan]", total=100
                )
            self._progress = progress
            try:
                results = [future.result() for _, future in jobs]
                service.notifier.flush()
            finally:
                self._progress = None

        return results

    def _on_progress(self, event: ProgressEvent) -> None:
        progress = self._progress
        if progress is None or not self.board.accept(event):
            return
        task_id = self._tasks.get(event.receiver_id)
        if task_id is None:
            return
        name = self._names.get(event.receiver_id, event.receiver_id)
        progress.update(
            task_id,
            completed=event.progress,
            description=f"[cyan]{name}[/cyan] {event.task}",
        )

    def _on_message(self, text: str) -> None:
        rprint(f"[yellow]{text}[/yellow]")


class Session:
    def __init__(self, service: RepoService):
        self.service = service
        self.view = ProgressView(service)

    def wait(self, jobs: list[tuple[RepoRecord, Future]]) -> list:
        return self.view.wait(self.service, jobs)

    def close(self) -> None:
        self.service.shutdown()
        self.service.store.close()


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    no_recover: bool = typer.Option(
        False, "--no-recover", help="Skip resuming interrupted operations"
    ),
):
    """Keep local clones of remote git repositories."""
    setup_logging(verbose=verbose or is_verbose())

    if ctx.invoked_subcommand in ("config", "trace"):
        return

    try:
        session = Session(build_service())
        ctx.obj = session
        ctx.call_on_close(session.close)

        if ctx.invoked_subcommand in DISPATCHING_COMMANDS:
            _wait_for_lock(session)

        if should_auto_recover() and not no_recover and ctx.invoked_subcommand != "recover":
            _recover(session, quiet=True)
    except GittError as e:
        rprint(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _wait_for_lock(session: Session):
    if session.service.acquire_lock(wait=False):
        return
    rprint("[yellow]Another gitt command is running, waiting for it to finish...[/yellow]")
    session.service.acquire_lock(wait=True)


def _recover(session: Session, quiet: bool = False):
    jobs = session.service.recover()
    if not jobs:
        if not quiet:
            rprint("[green]Nothing to recover[/green]")
        return

    rprint(f"[blue]Resuming {len(jobs)} interrupted clone(s)...[/blue]")
    results = session.wait(jobs)
    _report_clones(results)


def _report_clones(records: list[RepoRecord]):
    for record in records:
        if record.state is RepoState.LOCAL:
            rprint(f"[green]Cloned {record.name}![/green]")
        else:
            rprint(f"[red]Clone of {record.name} failed: {record.error}[/red]")


@app.command(no_args_is_help=True)
def clone(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Display name for the repository"),
    url: str = typer.Argument(..., help="HTTP(S) address of the remote repository"),
    user: str | None = typer.Option(None, "--user", "-u", help="User name for authentication"),
    password: str | None = typer.Option(
        None, "--password", "-p", help="Password (prompted when --user is given)"
    ),
):
    """Clone a remote repository.

    Examples:
        gitt clone gitt https://github.com/romanenco/gitt.git
        gitt clone private https://example.com/team/app.git --user me
    """
    session: Session = ctx.obj
    try:
        if user and not password:
            password = typer.prompt(f"Password for {user}", hide_input=True)

        record, future = session.service.clone(name, url, user, password)
        rprint(f"[blue]Cloning {record.name} from {record.address}[/blue]")
        results = session.wait([(record, future)])
        _report_clones(results)

        if results[0].state is RepoState.ERROR:
            rprint(f"[dim]Fix the address with 'gitt edit {record.name} --url ...'[/dim]")
            sys.exit(1)

    except GittError as e:
        rprint(f"[red]Error: {e}[/red]")
        sys.exit(1)


@app.command("list")
def list_repos(ctx: typer.Context):
    """List tracked repositories"""
    session: Session = ctx.obj
    service = session.service
    records = service.store.list_all()

    if not records:
        rprint("[yellow]No repositories yet[/yellow]")
        return

    git = service.dispatcher.git
    current_refs = {
        record.folder: git.current_ref(service.repo_path(record))
        for record in records
        if record.state is RepoState.LOCAL
    }
    display_repos_table(records, current_refs)


@app.command(no_args_is_help=True)
def pull(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Repository name"),
    password: str | None = typer.Option(None, "--password", "-p", help="Password for the stored user"),
):
    """Pull the checked-out branch from origin.

    A failed pull is reported once and not remembered.
    """
    session: Session = ctx.obj
    try:
        record = session.service.get(name)
        if record.user_name and not password:
            password = typer.prompt(f"Password for {record.user_name}", hide_input=True)

        record, future = session.service.pull(name, password)
        rprint(f"[blue]Pulling {record.name}...[/blue]")
        session.wait([(record, future)])

    except GittError as e:
        rprint(f"[red]Error: {e}[/red]")
        sys.exit(1)


@app.command(no_args_is_help=True)
def checkout(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Repository name"),
    ref: str = typer.Argument(..., help="Branch or tag, full ref or short name"),
):
    """Switch a repository to another branch or tag.

    Examples:
        gitt checkout gitt v1.0
        gitt checkout gitt refs/remotes/origin/develop
    """
    session: Session = ctx.obj
    service = session.service
    try:
        record = service.get(name)
        refs = service.dispatcher.git.list_refs(service.repo_path(record))
        target = resolve_ref(refs, ref)

        record, future = service.checkout(name, target)
        rprint(f"[blue]Checking out {display_ref_name(target)} in {record.name}...[/blue]")
        session.wait([(record, future)])

    except GittError as e:
        rprint(f"[red]Error: {e}[/red]")
        sys.exit(1)


@app.command(no_args_is_help=True)
def refs(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Repository name"),
):
    """Show the current ref and the branches and tags available for checkout"""
    session: Session = ctx.obj
    service = session.service
    try:
        record = service.get(name)
        path = service.repo_path(record)
        git = service.dispatcher.git

        current = git.current_ref(path)
        rprint(f"[bold cyan]{record.name}[/bold cyan] on [green]{current or 'unknown'}[/green]")
        for full_name in git.list_refs(path):
            rprint(f"  [cyan]{display_ref_name(full_name)}[/cyan] [dim]{full_name}[/dim]")

    except GittError as e:
        rprint(f"[red]Error: {e}[/red]")
        sys.exit(1)


@app.command(no_args_is_help=True)
def log(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Repository name"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Number of commits to show"),
):
    """Show recent commits of a repository"""
    session: Session = ctx.obj
    service = session.service
    try:
        record = service.get(name)
        if record.state is not RepoState.LOCAL:
            rprint(f"[yellow]{record.name} is {record.state.value}, no history available[/yellow]")
            return

        entries = service.dispatcher.git.read_history(
            service.repo_path(record), limit or get_history_limit()
        )
        for entry in entries:
            console.print(entry.text, markup=False, highlight=False)
            rprint("[dim]" + "─" * 40 + "[/dim]\n")

    except GittError as e:
        rprint(f"[red]Error: {e}[/red]")
        sys.exit(1)


@app.command(no_args_is_help=True)
def edit(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of a repository whose clone failed"),
    url: str | None = typer.Option(None, "--url", help="Corrected address"),
    user: str | None = typer.Option(None, "--user", "-u", help="User name for authentication"),
    password: str | None = typer.Option(None, "--password", "-p", help="Password"),
):
    """Fix and retry a failed clone"""
    session: Session = ctx.obj
    try:
        current = session.service.get(name)
        effective_user = user if user is not None else current.user_name
        if effective_user and not password:
            password = typer.prompt(f"Password for {effective_user}", hide_input=True)

        record, future = session.service.edit(name, url, user, password)
        rprint(f"[blue]Cloning {record.name} from {record.address}[/blue]")
        results = session.wait([(record, future)])
        _report_clones(results)

        if results[0].state is RepoState.ERROR:
            sys.exit(1)

    except GittError as e:
        rprint(f"[red]Error: {e}[/red]")
        sys.exit(1)


@app.command(no_args_is_help=True)
def remove(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Repository name"),
):
    """Stop tracking a repository and delete its local copy"""
    session: Session = ctx.obj
    try:
        record, future = session.service.remove(name)
        future.result()
        rprint(f"[green]Successfully removed {record.name}![/green]")

    except GittError as e:
        rprint(f"[red]Error: {e}[/red]")
        sys.exit(1)


@app.command()
def recover(ctx: typer.Context):
    """Resume interrupted clones and release repositories left busy"""
    _recover(ctx.obj)


@app.command()
def trace():
    """Show details of the last git failure"""
    last = TraceRecorder(TRACE_FILE).last()
    if last is None:
        rprint("[green]No errors recorded[/green]")
        return
    console.print(last, markup=False, highlight=False, end="")


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Print the effective configuration"),
    init: bool = typer.Option(False, "--init", help="Write a config file with the defaults"),
    edit: bool = typer.Option(False, "--edit", help="Open the config file in $EDITOR"),
):
    """Inspect or change gitt settings.

    Examples:
        gitt config --show
        gitt config --edit
    """
    if not any([show, init, edit]):
        rprint("[red]Error: Must specify one of --show, --init, or --edit[/red]")
        sys.exit(1)

    if show:
        rprint(f"[dim]# {CONFIG_FILE}[/dim]")
        rendered = tomlkit.dumps(load_config(CONFIG_FILE))
        console.print(Syntax(rendered, "toml", background_color="default"))
        return

    created = not CONFIG_FILE.exists()
    init_config(CONFIG_FILE)
    if created:
        rprint(f"[green]Wrote default settings to {CONFIG_FILE}[/green]")
    elif init:
        rprint(f"[yellow]{CONFIG_FILE} already exists, left unchanged[/yellow]")

    if edit:
        editor = shlex.split(os.environ.get("EDITOR", "nano"))
        try:
            subprocess.run([*editor, str(CONFIG_FILE)])
        except FileNotFoundError:
            rprint(f"[red]Error: Editor not found: {editor[0]}[/red]")
            sys.exit(1)
        invalidate_config_cache()
