from rich.console import Console
from rich.table import Table

from .core import format_size
from .models import RepoRecord, RepoState

console = Console()

STATE_STYLES = {
    RepoState.NEW: "[blue]cloning[/blue]",
    RepoState.BUSY: "[yellow]busy[/yellow]",
    RepoState.LOCAL: "[green]local[/green]",
    RepoState.ERROR: "[red]error[/red]",
}


def display_repos_table(records: list[RepoRecord], current_refs: dict[str, str | None]):
    """Display tracked repositories in a formatted table"""
    table = Table(title="Repositories")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Address", style="blue")
    table.add_column("State")
    table.add_column("Ref", style="green")
    table.add_column("Size", justify="right", style="magenta")
    table.add_column("Error", style="red")

    for record in records:
        ref = current_refs.get(record.folder)
        table.add_row(
            record.name,
            record.address,
            STATE_STYLES[record.state],
            ref or "[dim]-[/dim]",
            format_size(record.size) if record.state is RepoState.LOCAL else "[dim]-[/dim]",
            record.error if record.state is RepoState.ERROR else "",
        )

    console.print(table)
