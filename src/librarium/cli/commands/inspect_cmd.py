# ABOUTME: The `librarium inspect` command for examining a book file without importing it.
# ABOUTME: Reports the detected format, extracted metadata, chapter count, and cover presence.

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from librarium.db.hashing import compute_file_hash
from librarium.formats.base import safe_extract
from librarium.formats.registry import get_extractor
from librarium.formats.sniffer import detect_format
from librarium.metadata.types import ExtractedContent, ExtractedMetadata

console = Console()


def _duration(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


@click.command("inspect")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def inspect(path: Path) -> None:
    """Show what Librarium would extract from a book file."""
    data = path.read_bytes()
    book_format = detect_format(data, path.name)
    if book_format is None:
        console.print(f"[red]Unsupported file format: {path.name}[/red]")
        raise SystemExit(1)

    with get_extractor(book_format, data) as extractor:
        meta, meta_issue = safe_extract(extractor.metadata, ExtractedMetadata(), "metadata")
        content, content_issue = safe_extract(extractor.content, ExtractedContent(), "content")
        cover, _ = safe_extract(extractor.cover, None, "cover")

    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("Field", style="bold", width=14)
    table.add_column("Value")

    table.add_row("File", path.name)
    table.add_row("Format", f"{book_format.value} ({book_format.book_type})")
    table.add_row("Title", meta.title or "[dim]unknown[/dim]")
    table.add_row("Author", meta.author or "[dim]unknown[/dim]")
    if meta.narrator:
        table.add_row("Narrator", meta.narrator)
    table.add_row("Language", meta.language or "?")
    if meta.publisher:
        table.add_row("Publisher", meta.publisher)
    if meta.isbn:
        table.add_row("ISBN", meta.isbn)
    if meta.page_count:
        table.add_row("Pages", str(meta.page_count))
    if meta.duration:
        table.add_row("Duration", _duration(meta.duration))
    if meta.chapters:
        table.add_row("Markers", str(len(meta.chapters)))
    table.add_row("Chapters", str(len(content.chapters)))
    table.add_row("Cover", "yes" if cover else "no")
    table.add_row("SHA-256", compute_file_hash(path))

    console.print(table)

    for issue in (meta_issue, content_issue):
        if issue is not None:
            console.print(f"[yellow]Warning:[/yellow] {issue}")
