# ABOUTME: On-demand conversion (MOBI/AZW3/PDF to EPUB) and multi-track audiobook merge services.
# ABOUTME: Each request runs as a background job whose progress is published through the JobRegistry.

import asyncio
import functools
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath

from librarium.audio.merge import (
    AUDIO_EXTENSIONS,
    AudioMergeEngine,
    AudioTrack,
    EncoderError,
    MergeProgress,
)
from librarium.convert.legacy import convert_legacy_to_epub
from librarium.convert.pdf import convert_pdf_to_epub
from librarium.core.ingest import ImportOptions, IngestionPipeline
from librarium.core.jobs import JobRegistry, JobStatus
from librarium.core.scheduler import BackgroundScheduler
from librarium.core.storage import BookStorage
from librarium.db.catalog import LibraryCatalog
from librarium.db.mapping import BookRecord
from librarium.formats.sniffer import BookFormat
from librarium.metadata.types import ExtractedMetadata, merge_with_precedence

logger = logging.getLogger(__name__)

Converter = Callable[..., bytes]

CONVERTERS: dict[BookFormat, Converter] = {
    BookFormat.MOBI: convert_legacy_to_epub,
    BookFormat.AZW3: convert_legacy_to_epub,
    BookFormat.PDF: convert_pdf_to_epub,
}


class RequestStatus(str, Enum):
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    ALREADY_CONVERTED = "already_converted"
    NOT_CONVERTIBLE = "not_convertible"
    NOT_FOUND = "not_found"
    NEED_MULTIPLE_FILES = "need_multiple_files"
    ENCODER_UNAVAILABLE = "encoder_unavailable"


@dataclass(frozen=True)
class JobRequest:
    """What happened to a conversion or merge request, and the job to watch if one runs."""

    status: RequestStatus
    job_id: str | None = None

    @property
    def accepted(self) -> bool:
        return self.status in (RequestStatus.STARTED, RequestStatus.IN_PROGRESS)


def conversion_job_id(book_id: str) -> str:
    return f"convert-{book_id}"


def merge_job_id() -> str:
    return f"merge-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class ConversionService:
    """Turns legacy and fixed-layout books into EPUB packages stored beside the original.

    Requests must be made from inside a running event loop; the work itself
    runs on the scheduler and never touches the original upload.
    """

    def __init__(
        self,
        catalog: LibraryCatalog,
        storage: BookStorage,
        jobs: JobRegistry,
        scheduler: BackgroundScheduler,
    ) -> None:
        self._catalog = catalog
        self._storage = storage
        self._jobs = jobs
        self._scheduler = scheduler

    def request_conversion(self, book_id: str, *, force: bool = False) -> JobRequest:
        """Start converting a book, or explain why nothing was started.

        An existing converted package short-circuits unless ``force`` is set.
        A conversion already pending or running for the book is returned
        instead of starting a second one.
        """
        record = self._catalog.get_by_id(book_id)
        if record is None:
            return JobRequest(RequestStatus.NOT_FOUND)
        try:
            converter = CONVERTERS.get(BookFormat(record.format))
        except ValueError:
            converter = None
        if converter is None:
            return JobRequest(RequestStatus.NOT_CONVERTIBLE)
        if record.converted_epub_path and not force:
            return JobRequest(RequestStatus.ALREADY_CONVERTED)

        job_id = conversion_job_id(book_id)
        try:
            self._jobs.create(job_id)
        except ValueError:
            return JobRequest(RequestStatus.IN_PROGRESS, job_id)

        self._scheduler.spawn(self._convert(job_id, record, converter), name=job_id)
        return JobRequest(RequestStatus.STARTED, job_id)

    async def _convert(self, job_id: str, record: BookRecord, converter: Converter) -> None:
        loop = asyncio.get_running_loop()

        def progress(percent: int, message: str) -> None:
            # Called from the worker thread
            loop.call_soon_threadsafe(
                functools.partial(self._jobs.update, job_id, progress=min(percent, 99), message=message)
            )

        self._jobs.update(job_id, status=JobStatus.RUNNING, message="Starting conversion...")
        try:
            data = await asyncio.to_thread(self._storage.resolve(record.file_path).read_bytes)
            package = await asyncio.to_thread(converter, data, record.metadata, progress)
            path = self._storage.store_converted(package, record.id)
            self._catalog.update_book(record.id, converted_epub_path=path, converted_epub_size=len(package))
        except Exception as exc:  # failures stay scoped to the job
            logger.error("Conversion of %s failed: %s", record.id, exc)
            self._jobs.update(job_id, status=JobStatus.ERROR, message=str(exc), result={"error": str(exc)})
            return

        logger.info("Converted %s (%s) to EPUB, %d bytes", record.id, record.format, len(package))
        self._jobs.update(
            job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            message="Conversion complete",
            result={"book_id": record.id, "path": path, "size": len(package)},
        )


class MergeService:
    """Merges uploaded audio tracks into one audiobook and ingests the result."""

    def __init__(
        self,
        pipeline: IngestionPipeline,
        jobs: JobRegistry,
        engine: AudioMergeEngine,
    ) -> None:
        self._pipeline = pipeline
        self._jobs = jobs
        self._engine = engine

    def request_merge(
        self,
        tracks: list[AudioTrack],
        title: str,
        metadata: ExtractedMetadata | None = None,
    ) -> JobRequest:
        """Start a merge job for the audio files among ``tracks``.

        Files without an audio extension are ignored. At least two audio
        tracks and an installed encoder are required.
        """
        audio = [t for t in tracks if PurePath(t.filename).suffix.lower() in AUDIO_EXTENSIONS]
        if len(audio) < 2:
            return JobRequest(RequestStatus.NEED_MULTIPLE_FILES)
        if not self._engine.is_available():
            return JobRequest(RequestStatus.ENCODER_UNAVAILABLE)

        job_id = merge_job_id()
        self._jobs.create(job_id)
        self._pipeline.scheduler.spawn(self._merge(job_id, audio, title, metadata), name=job_id)
        return JobRequest(RequestStatus.STARTED, job_id)

    async def _merge(
        self,
        job_id: str,
        tracks: list[AudioTrack],
        title: str,
        metadata: ExtractedMetadata | None,
    ) -> None:
        def progress(event: MergeProgress) -> None:
            self._jobs.update(
                job_id,
                progress=min(event.percent, 99),
                message=event.message,
                current_time=event.current_time,
                total_time=event.total_time,
            )

        self._jobs.update(job_id, status=JobStatus.RUNNING, message="Preparing tracks...")
        try:
            task = self._engine.start(tracks, title=title)
            async for event in task:
                progress(event)
            merged = await task.result()
            overrides = merge_with_precedence(
                metadata,
                ExtractedMetadata(title=title, duration=merged.duration, chapters=merged.chapters),
            )
            self._jobs.update(job_id, message="Importing audiobook...")
            outcome = await self._pipeline.process_book(merged.data, f"{title}.m4b", ImportOptions(metadata=overrides))
        except EncoderError as exc:
            message = f"{exc}: {exc.detail}" if exc.detail else str(exc)
            self._jobs.update(job_id, status=JobStatus.ERROR, message=message, result={"error": message})
            return
        except Exception as exc:  # failures stay scoped to the job
            logger.error("Merge job %s failed: %s", job_id, exc)
            self._jobs.update(job_id, status=JobStatus.ERROR, message=str(exc), result={"error": str(exc)})
            return

        if not outcome.success:
            reason = outcome.error.value if outcome.error else "import_failed"
            self._jobs.update(
                job_id,
                status=JobStatus.ERROR,
                message=f"Merged audiobook was not imported: {reason}",
                result={"error": reason, "existing_book_id": outcome.existing_book_id},
            )
            return

        self._jobs.update(
            job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            message="Audiobook created",
            result={"book_id": outcome.book_id, "chapters": len(merged.chapters), "duration": merged.duration},
        )
