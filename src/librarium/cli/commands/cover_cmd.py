# ABOUTME: The `librarium cover` command for replacing a book's cover image.
# ABOUTME: Accepts a local image file or an http(s) URL, normalizes it, and stores it.

from pathlib import Path

import click
from rich.console import Console

from librarium.cli.options import data_dir_option, db_option, library_session
from librarium.core.covers import fetch_remote_cover
from librarium.metadata.http import CoverFetchError

console = Console()


def _read_source(source: str) -> bytes:
    if source.startswith(("http://", "https://")):
        return fetch_remote_cover(source)
    path = Path(source)
    if not path.is_file():
        raise click.BadParameter(f"{source} is neither a file nor an http(s) URL", param_hint="SOURCE")
    return path.read_bytes()


@click.command("cover")
@click.argument("book_id")
@click.argument("source")
@db_option
@data_dir_option
def cover(book_id: str, source: str, db_path: Path | None, data_dir: Path | None) -> None:
    """Set a book's cover from an image file or URL."""
    try:
        data = _read_source(source)
    except CoverFetchError as exc:
        console.print(f"[red]Could not fetch cover:[/red] {exc}")
        raise SystemExit(1) from exc

    with library_session(db_path, data_dir) as session:
        try:
            result = session.pipeline.apply_cover(book_id, data)
        except ValueError as exc:
            console.print(f"[red]Book {book_id} not found.[/red]")
            raise SystemExit(1) from exc

    if result is None:
        console.print("[red]Image rejected:[/red] not a supported cover image.")
        raise SystemExit(1)
    console.print(f"[green]Cover updated[/green] ({result.width}x{result.height}, {result.dominant_color})")
