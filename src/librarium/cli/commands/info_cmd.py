# ABOUTME: The `librarium info` command for displaying detailed book metadata.
# ABOUTME: Shows catalog fields, stored file locations, and audio chapters for one book.

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from librarium.cli.options import data_dir_option, db_option, library_session

console = Console()


def _clock(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


@click.command("info")
@click.argument("book_id")
@db_option
@data_dir_option
def info(book_id: str, db_path: Path | None, data_dir: Path | None) -> None:
    """Show detailed metadata for a book by ID."""
    with library_session(db_path, data_dir) as session:
        record = session.catalog.get_by_id(book_id)

    if record is None:
        console.print(f"[red]Book {book_id} not found.[/red]")
        raise SystemExit(1)

    meta = record.metadata
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("Field", style="bold", width=14)
    table.add_column("Value")

    table.add_row("ID", record.id)
    table.add_row("Title", record.title)
    if meta.subtitle:
        table.add_row("Subtitle", meta.subtitle)
    table.add_row("Author", meta.author or "unknown")
    if meta.narrator:
        table.add_row("Narrator", meta.narrator)
    table.add_row("Language", meta.language or "?")
    if meta.publisher:
        table.add_row("Publisher", meta.publisher)
    if meta.published_date:
        table.add_row("Published", meta.published_date)
    if meta.isbn:
        table.add_row("ISBN", meta.isbn)
    if meta.page_count:
        table.add_row("Pages", str(meta.page_count))
    if meta.duration:
        table.add_row("Duration", _clock(meta.duration))
    if meta.description:
        table.add_row("Description", meta.description)
    table.add_row("Format", record.format)
    table.add_row("File", f"{record.file_path} ({record.file_size} bytes)")
    if record.cover_path:
        table.add_row("Cover", f"{record.cover_path} {record.cover_color or ''}".strip())
    if record.converted_epub_path:
        table.add_row("EPUB", f"{record.converted_epub_path} ({record.converted_epub_size} bytes)")
    table.add_row("Hash", record.file_hash)
    table.add_row("Added", record.date_added)
    table.add_row("Modified", record.date_modified)

    console.print(table)

    if meta.chapters:
        chapters = Table(title="Chapters")
        chapters.add_column("#", style="dim", width=4)
        chapters.add_column("Title")
        chapters.add_column("Start", justify="right")
        chapters.add_column("End", justify="right")
        for chapter in meta.chapters:
            chapters.add_row(
                str(chapter.index + 1), chapter.title, _clock(chapter.start_time), _clock(chapter.end_time)
            )
        console.print(chapters)
