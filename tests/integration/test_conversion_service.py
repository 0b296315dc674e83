# ABOUTME: Integration tests for on-demand EPUB conversion jobs.
# ABOUTME: Runs real MOBI and PDF conversions through the job registry and checks the stored packages.

import asyncio
import io
import zipfile

import pytest

from librarium.core.ingest import IngestionPipeline
from librarium.core.jobs import Job, JobRegistry, JobStatus
from librarium.core.services import ConversionService, JobRequest, RequestStatus, conversion_job_id
from librarium.db.catalog import LibraryCatalog


def _import(pipeline: IngestionPipeline, data: bytes, filename: str) -> str:
    async def run() -> str:
        result = await pipeline.process_book(data, filename)
        await pipeline.scheduler.drain()
        return result.book_id

    return asyncio.run(run())


@pytest.fixture()
def jobs() -> JobRegistry:
    return JobRegistry()


@pytest.fixture()
def service(pipeline: IngestionPipeline, jobs: JobRegistry) -> ConversionService:
    return ConversionService(pipeline.catalog, pipeline.storage, jobs, pipeline.scheduler)


def convert(
    service: ConversionService, pipeline: IngestionPipeline, jobs: JobRegistry, book_id: str, force: bool = False
) -> tuple[JobRequest, list[Job]]:
    """Request a conversion and collect every job snapshot until it settles."""

    async def run() -> tuple[JobRequest, list[Job]]:
        request = service.request_conversion(book_id, force=force)
        snapshots = [job async for job in jobs.watch(request.job_id)] if request.job_id else []
        await pipeline.scheduler.drain()
        return request, snapshots

    return asyncio.run(run())


class TestMobiConversion:
    """Converting a MOBI book to EPUB."""

    def test_successful_conversion(
        self,
        service: ConversionService,
        pipeline: IngestionPipeline,
        jobs: JobRegistry,
        catalog: LibraryCatalog,
        mobi_bytes: bytes,
    ) -> None:
        book_id = _import(pipeline, mobi_bytes, "harbor.mobi")

        request, snapshots = convert(service, pipeline, jobs, book_id)

        assert request.status is RequestStatus.STARTED
        assert request.job_id == conversion_job_id(book_id)
        final = snapshots[-1]
        assert final.status is JobStatus.COMPLETED
        assert final.progress == 100
        assert all(job.progress < 100 for job in snapshots[:-1])
        assert final.result["book_id"] == book_id

        record = catalog.get_by_id(book_id)
        assert record.converted_epub_path == f"converted/{book_id}.epub"
        assert record.converted_epub_size == final.result["size"]
        package = pipeline.storage.resolve(record.converted_epub_path).read_bytes()
        with zipfile.ZipFile(io.BytesIO(package)) as zf:
            assert zf.namelist()[0] == "mimetype"
            assert "Harbor Tales" in zf.read("EPUB/content.opf").decode()
        assert pipeline.storage.resolve(record.file_path).read_bytes() == mobi_bytes

    def test_already_converted_unless_forced(
        self, service: ConversionService, pipeline: IngestionPipeline, jobs: JobRegistry, mobi_bytes: bytes
    ) -> None:
        book_id = _import(pipeline, mobi_bytes, "harbor.mobi")
        convert(service, pipeline, jobs, book_id)

        again, snapshots = convert(service, pipeline, jobs, book_id)
        assert again.status is RequestStatus.ALREADY_CONVERTED
        assert snapshots == []

        forced, snapshots = convert(service, pipeline, jobs, book_id, force=True)
        assert forced.status is RequestStatus.STARTED
        assert snapshots[-1].status is JobStatus.COMPLETED

    def test_concurrent_request_joins_running_job(
        self, service: ConversionService, pipeline: IngestionPipeline, jobs: JobRegistry, mobi_bytes: bytes
    ) -> None:
        book_id = _import(pipeline, mobi_bytes, "harbor.mobi")

        async def run() -> tuple[JobRequest, JobRequest]:
            first = service.request_conversion(book_id)
            second = service.request_conversion(book_id)
            await pipeline.scheduler.drain()
            return first, second

        first, second = asyncio.run(run())
        assert first.status is RequestStatus.STARTED
        assert second.status is RequestStatus.IN_PROGRESS
        assert second.job_id == first.job_id
        assert second.accepted


class TestRefusalsAndFailures:
    """Requests that do not start a job, and jobs that fail."""

    def test_unknown_book(self, service: ConversionService, pipeline: IngestionPipeline, jobs: JobRegistry) -> None:
        request, _ = convert(service, pipeline, jobs, "missing-book")
        assert request.status is RequestStatus.NOT_FOUND
        assert not request.accepted

    def test_epub_is_not_convertible(
        self, service: ConversionService, pipeline: IngestionPipeline, jobs: JobRegistry, epub_bytes: bytes
    ) -> None:
        book_id = _import(pipeline, epub_bytes, "rose.epub")
        request, _ = convert(service, pipeline, jobs, book_id)
        assert request.status is RequestStatus.NOT_CONVERTIBLE

    def test_pdf_conversion(
        self,
        service: ConversionService,
        pipeline: IngestionPipeline,
        jobs: JobRegistry,
        catalog: LibraryCatalog,
        outlined_pdf_bytes: bytes,
    ) -> None:
        book_id = _import(pipeline, outlined_pdf_bytes, "outlined.pdf")
        _, snapshots = convert(service, pipeline, jobs, book_id)
        assert snapshots[-1].status is JobStatus.COMPLETED
        assert catalog.get_by_id(book_id).converted_epub_path is not None

    def test_failure_is_reported_through_the_job(
        self,
        service: ConversionService,
        pipeline: IngestionPipeline,
        jobs: JobRegistry,
        catalog: LibraryCatalog,
        blank_pdf_bytes: bytes,
    ) -> None:
        book_id = _import(pipeline, blank_pdf_bytes, "blank.pdf")

        request, snapshots = convert(service, pipeline, jobs, book_id)

        assert request.status is RequestStatus.STARTED
        final = snapshots[-1]
        assert final.status is JobStatus.ERROR
        assert "No chapters" in final.message
        assert final.result == {"error": final.message}
        assert catalog.get_by_id(book_id).converted_epub_path is None
        assert not (pipeline.storage.root / "converted").exists()
