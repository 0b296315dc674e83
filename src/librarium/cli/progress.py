# ABOUTME: Renders background job progress from the JobRegistry as a Rich progress bar.
# ABOUTME: Shared by the convert and merge commands, which both wait on a single job.

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from librarium.core.jobs import Job, JobRegistry


def make_progress(console: Console) -> Progress:
    """Create a Rich progress bar for one percent-based job."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    )


async def follow_job(jobs: JobRegistry, job_id: str, console: Console) -> Job | None:
    """Show a job's progress until it finishes. Returns the final snapshot."""
    final: Job | None = None
    with make_progress(console) as progress:
        task = progress.add_task("Waiting...", total=100)
        async for job in jobs.watch(job_id):
            progress.update(task, completed=job.progress, description=job.message or job.status.value)
            final = job
    return final
