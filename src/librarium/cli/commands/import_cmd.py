# ABOUTME: The `librarium import` command for ingesting book files into the library.
# ABOUTME: Accepts files or directories, runs the ingest pipeline, and waits for background work.

import asyncio
from pathlib import Path

import click
from rich.console import Console

from librarium.cli.options import data_dir_option, db_option, library_session
from librarium.config import PipelineSettings
from librarium.core.ingest import ImportOptions, ImportResult, import_files
from librarium.formats.sniffer import ACCEPTED_EXTENSIONS
from librarium.metadata.types import ExtractedMetadata

console = Console()


def _find_books(paths: tuple[Path, ...]) -> list[Path]:
    """Expand directories into the accepted book files they contain."""
    found: list[Path] = []
    for path in paths:
        if path.is_dir():
            found.extend(sorted(p for p in path.rglob("*") if p.is_file() and p.suffix.lower() in ACCEPTED_EXTENSIONS))
        else:
            found.append(path)
    return found


@click.command("import")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@db_option
@data_dir_option
@click.option("--title", default=None, help="Title override for every imported file.")
@click.option("--author", "authors", multiple=True, help="Author override (repeatable).")
@click.option("--overwrite", is_flag=True, default=False, help="Replace books whose content is already cataloged.")
@click.option(
    "--skip-content-index",
    is_flag=True,
    default=False,
    help="Do not build the full-text index for imported books.",
)
@click.option(
    "--background-threshold",
    type=click.IntRange(min=1),
    default=None,
    help="Size in bytes at which extraction moves to the background (default: 5 MiB).",
)
def import_command(
    paths: tuple[Path, ...],
    db_path: Path | None,
    data_dir: Path | None,
    title: str | None,
    authors: tuple[str, ...],
    overwrite: bool,
    skip_content_index: bool,
    background_threshold: int | None,
) -> None:
    """Import book files (or directories of them) into the library."""
    files = _find_books(paths)
    if not files:
        console.print("[yellow]No book files found.[/yellow]")
        return

    console.print(f"Found [bold]{len(files)}[/bold] file(s)\n")
    options = ImportOptions(
        metadata=ExtractedMetadata(title=title, authors=list(authors)),
        overwrite_existing=overwrite,
        skip_content_indexing=skip_content_index,
    )

    settings = PipelineSettings().with_overrides(background_threshold=background_threshold)
    with library_session(db_path, data_dir, settings) as session:

        async def run() -> ImportResult:
            result = await import_files(files, session.pipeline, options)
            if session.pipeline.scheduler.pending:
                console.print("[dim]Finishing background processing...[/dim]")
            await session.pipeline.scheduler.drain()
            return result

        result = asyncio.run(run())

    parts = []
    if result.added:
        parts.append(f"[green]{result.added} added[/green]")
    if result.skipped:
        parts.append(f"[yellow]{result.skipped} skipped[/yellow]")
    if result.errors:
        parts.append(f"[red]{result.errors} error(s)[/red]")
    console.print(", ".join(parts))

    if result.error_details:
        console.print(f"\n[yellow]{result.errors} file(s) could not be imported:[/yellow]")
        for path, msg in result.error_details:
            console.print(f"  [dim]{path.name}:[/dim] {msg}")
