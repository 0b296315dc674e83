# ABOUTME: The `librarium ls` command for listing cataloged books.
# ABOUTME: Displays a Rich table of every book, optionally filtered by format.

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from librarium.cli.options import data_dir_option, db_option, library_session
from librarium.formats.sniffer import BookFormat

console = Console()


@click.command("ls")
@db_option
@data_dir_option
@click.option(
    "--format",
    "format_filter",
    type=click.Choice([f.value for f in BookFormat]),
    default=None,
    help="Only list books stored in this format.",
)
def ls(db_path: Path | None, data_dir: Path | None, format_filter: str | None) -> None:
    """List all books in the library catalog."""
    with library_session(db_path, data_dir) as session:
        records = session.catalog.list_all()

    if format_filter:
        records = [r for r in records if r.format == format_filter]

    if not records:
        console.print("[yellow]No books in the library.[/yellow]")
        return

    table = Table()
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="bold")
    table.add_column("Author")
    table.add_column("Format", width=6)
    table.add_column("EPUB", width=4)

    for record in records:
        table.add_row(
            record.id,
            record.title,
            record.metadata.author or "[dim]unknown[/dim]",
            record.format,
            "yes" if record.converted_epub_path else "",
        )

    console.print(table)
    console.print(f"\n[dim]{len(records)} book(s)[/dim]")
