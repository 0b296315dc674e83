# ABOUTME: The `librarium convert` command for producing an EPUB from a MOBI, AZW3, or PDF book.
# ABOUTME: Starts a conversion job, shows its progress, and reports where the EPUB was stored.

import asyncio
from pathlib import Path

import click
from rich.console import Console

from librarium.cli.options import data_dir_option, db_option, library_session
from librarium.cli.progress import follow_job
from librarium.core.jobs import Job, JobRegistry, JobStatus
from librarium.core.services import ConversionService, JobRequest, RequestStatus

console = Console()

_REFUSALS = {
    RequestStatus.NOT_FOUND: "Book {book_id} not found.",
    RequestStatus.NOT_CONVERTIBLE: "Book {book_id} cannot be converted to EPUB.",
}


@click.command("convert")
@click.argument("book_id")
@db_option
@data_dir_option
@click.option("--force", is_flag=True, default=False, help="Convert again even if an EPUB already exists.")
def convert(book_id: str, db_path: Path | None, data_dir: Path | None, force: bool) -> None:
    """Convert a cataloged MOBI, AZW3, or PDF book to EPUB."""
    with library_session(db_path, data_dir) as session:
        jobs = JobRegistry(ttl=session.settings.job_ttl)
        service = ConversionService(session.catalog, session.storage, jobs, session.pipeline.scheduler)

        async def run() -> tuple[JobRequest, Job | None]:
            request = service.request_conversion(book_id, force=force)
            if not request.accepted:
                return request, None
            final = await follow_job(jobs, request.job_id, console)
            await session.pipeline.scheduler.drain()
            return request, final

        request, final = asyncio.run(run())

    if request.status in _REFUSALS:
        console.print(f"[red]{_REFUSALS[request.status].format(book_id=book_id)}[/red]")
        raise SystemExit(1)
    if request.status is RequestStatus.ALREADY_CONVERTED:
        console.print("[yellow]Already converted.[/yellow] Use --force to convert again.")
        return

    if final is None or final.status is not JobStatus.COMPLETED:
        message = final.message if final else "job vanished"
        console.print(f"[red]Conversion failed:[/red] {message}")
        raise SystemExit(1)

    result = final.result or {}
    console.print(f"[green]Converted[/green] {book_id} -> {result.get('path')} ({result.get('size')} bytes)")
