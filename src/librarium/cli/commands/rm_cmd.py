# ABOUTME: The `librarium rm` command for removing a book from the library.
# ABOUTME: Deletes the catalog record, stored files, converted package, and search entries.

from pathlib import Path

import click
from rich.console import Console

from librarium.cli.options import data_dir_option, db_option, library_session

console = Console()


@click.command("rm")
@click.argument("book_id")
@db_option
@data_dir_option
@click.option("--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation.")
def rm(book_id: str, db_path: Path | None, data_dir: Path | None, yes: bool) -> None:
    """Remove a book and its stored files."""
    with library_session(db_path, data_dir) as session:
        record = session.catalog.get_by_id(book_id)
        if record is None:
            console.print(f"[red]Book {book_id} not found.[/red]")
            raise SystemExit(1)

        if not yes and not click.confirm(f"Remove '{record.title}'?"):
            console.print("[dim]Aborted.[/dim]")
            return

        session.pipeline.remove_book(book_id)

    console.print(f"[green]Removed[/green] {record.title}")
