# ABOUTME: The `librarium search` command for full-text search of the library.
# ABOUTME: Matches book metadata by default, or chapter text with --content.

import sqlite3
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from librarium.cli.options import data_dir_option, db_option, library_session
from librarium.search.indexer import SqliteSearchIndex

console = Console()


@click.command("search")
@click.argument("query")
@db_option
@data_dir_option
@click.option("--content", is_flag=True, default=False, help="Search chapter text instead of metadata.")
def search(query: str, db_path: Path | None, data_dir: Path | None, content: bool) -> None:
    """Search the library by title, author, and description, or by book text."""
    with library_session(db_path, data_dir) as session:
        index = SqliteSearchIndex(session.conn)
        try:
            if content:
                hits = index.search_content(query)
            else:
                hits = [(book_id, None, None) for book_id in index.search_metadata(query)]
        except sqlite3.OperationalError as exc:
            console.print(f"[red]Invalid search query:[/red] {exc}")
            raise SystemExit(1) from exc
        records = {book_id: session.catalog.get_by_id(book_id) for book_id, _, _ in hits}

    rows = [(records[book_id], idx, chapter) for book_id, idx, chapter in hits if records.get(book_id)]
    if not rows:
        console.print("[yellow]No results found.[/yellow]")
        return

    table = Table()
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="bold")
    table.add_column("Author")
    if content:
        table.add_column("Chapter")

    for record, idx, chapter in rows:
        cells = [record.id, record.title, record.metadata.author or "[dim]unknown[/dim]"]
        if content:
            cells.append(chapter or f"#{idx + 1}")
        table.add_row(*cells)

    console.print(table)
    console.print(f"\n[dim]{len(rows)} result(s)[/dim]")
