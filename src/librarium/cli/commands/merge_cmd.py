# ABOUTME: The `librarium merge` command for combining audio tracks into one M4B audiobook.
# ABOUTME: Runs the merge job with ffmpeg, shows progress, and imports the result into the library.

import asyncio
from pathlib import Path

import click
from rich.console import Console

from librarium.audio.merge import AudioMergeEngine, AudioTrack
from librarium.cli.options import data_dir_option, db_option, ffmpeg_option, library_session
from librarium.cli.progress import follow_job
from librarium.core.jobs import Job, JobRegistry, JobStatus
from librarium.core.services import JobRequest, MergeService, RequestStatus
from librarium.metadata.types import ExtractedMetadata

console = Console()


@click.command("merge")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--title", required=True, help="Title of the merged audiobook.")
@click.option("--author", "authors", multiple=True, help="Author of the audiobook (repeatable).")
@click.option("--narrator", default=None, help="Narrator of the audiobook.")
@db_option
@data_dir_option
@ffmpeg_option
def merge(
    files: tuple[Path, ...],
    title: str,
    authors: tuple[str, ...],
    narrator: str | None,
    db_path: Path | None,
    data_dir: Path | None,
    ffmpeg: str | None,
) -> None:
    """Merge audio tracks into a single chaptered audiobook and import it."""
    tracks = [AudioTrack(filename=path.name, data=path.read_bytes()) for path in files]
    metadata = ExtractedMetadata(authors=list(authors), narrator=narrator)

    with library_session(db_path, data_dir) as session:
        settings = session.settings
        engine = AudioMergeEngine(ffmpeg=ffmpeg or settings.ffmpeg, bitrate=settings.merge_bitrate)
        jobs = JobRegistry(ttl=settings.job_ttl)
        service = MergeService(session.pipeline, jobs, engine)

        async def run() -> tuple[JobRequest, Job | None]:
            request = service.request_merge(tracks, title, metadata)
            if not request.accepted:
                return request, None
            final = await follow_job(jobs, request.job_id, console)
            await session.pipeline.scheduler.drain()
            return request, final

        request, final = asyncio.run(run())

    if request.status is RequestStatus.NEED_MULTIPLE_FILES:
        console.print("[red]At least two audio files are needed to merge.[/red]")
        raise SystemExit(1)
    if request.status is RequestStatus.ENCODER_UNAVAILABLE:
        console.print("[red]ffmpeg was not found.[/red] Install it or pass --ffmpeg.")
        raise SystemExit(1)

    if final is None or final.status is not JobStatus.COMPLETED:
        message = final.message if final else "job vanished"
        console.print(f"[red]Merge failed:[/red] {message}")
        raise SystemExit(1)

    result = final.result or {}
    console.print(
        f"[green]Created[/green] {title}: {result.get('chapters')} chapters, book {result.get('book_id')}"
    )
