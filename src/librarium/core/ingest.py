# ABOUTME: Ingestion pipeline: hash dedup, format sniffing, extraction, cover normalization, and indexing.
# ABOUTME: Small uploads are processed inline; large ones get a minimal record and a background task.

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from librarium.config import PipelineSettings
from librarium.core.covers import normalize_cover
from librarium.core.scheduler import BackgroundScheduler, ProcessingPolicy, yield_now
from librarium.core.storage import BookStorage
from librarium.db.catalog import DuplicateBookError, LibraryCatalog
from librarium.db.hashing import compute_hash
from librarium.formats.base import safe_extract
from librarium.formats.registry import get_extractor
from librarium.formats.sniffer import BookFormat, detect_format
from librarium.metadata.types import (
    CoverResult,
    ExtractedContent,
    ExtractedMetadata,
    merge_with_precedence,
    metadata_from_filename,
)
from librarium.search.indexer import ContentIndexer, SearchIndex, SqliteSearchIndex

logger = logging.getLogger(__name__)


class ProcessingError(str, Enum):
    """Reason codes for an upload that did not produce a new book."""

    DUPLICATE = "duplicate"
    UNSUPPORTED_FORMAT = "unsupported_format"
    EMPTY_UPLOAD = "empty_upload"


@dataclass
class ImportOptions:
    """Caller choices for a single upload.

    ``metadata`` holds caller-supplied overrides; its populated fields win
    over anything extracted from the file.
    """

    metadata: ExtractedMetadata | None = None
    overwrite_existing: bool = False
    skip_content_indexing: bool = False


@dataclass
class ProcessingResult:
    """Outcome of process_book."""

    success: bool
    book_id: str | None = None
    error: ProcessingError | None = None
    existing_book_id: str | None = None
    processing_time: float = 0.0
    deferred: bool = False
    format: BookFormat | None = None


@dataclass
class ImportResult:
    """Summary of a batch import."""

    added: int = 0
    skipped: int = 0
    errors: int = 0
    book_ids: list[str] = field(default_factory=list)
    error_details: list[tuple[Path, str]] = field(default_factory=list)


class IngestionPipeline:
    """Turns uploaded bytes into cataloged, indexed books.

    Args:
        catalog: Persistent record store with a unique file-hash constraint.
        storage: Blob store for uploads, covers, and converted packages.
        search_index: Full-text index; defaults to the catalog's FTS tables.
        settings: Policy thresholds and cover parameters.
        scheduler: Runner for deferred work. Share one scheduler between
            pipelines that should be drained together.
    """

    def __init__(
        self,
        catalog: LibraryCatalog,
        storage: BookStorage,
        search_index: SearchIndex | None = None,
        *,
        settings: PipelineSettings | None = None,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self._catalog = catalog
        self._storage = storage
        self._index = search_index if search_index is not None else SqliteSearchIndex(catalog.connection)
        self._settings = settings or PipelineSettings()
        self._policy = ProcessingPolicy.from_settings(self._settings)
        self._scheduler = scheduler or BackgroundScheduler()
        self._indexer = ContentIndexer(self._index, self._settings.chunk_size)

    @property
    def catalog(self) -> LibraryCatalog:
        return self._catalog

    @property
    def storage(self) -> BookStorage:
        return self._storage

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    async def process_book(
        self,
        data: bytes,
        filename: str,
        options: ImportOptions | None = None,
    ) -> ProcessingResult:
        """Ingest one upload.

        The content hash is checked before any format work. Uploads at or
        above the background threshold return as soon as a minimal record
        exists; extraction then continues on the scheduler.

        Returns:
            A ProcessingResult. Duplicates, unrecognized formats, and empty
            uploads are reported through ``error``, never raised.
        """
        options = options or ImportOptions()
        started = time.monotonic()

        if not data:
            return ProcessingResult(success=False, error=ProcessingError.EMPTY_UPLOAD)

        file_hash = compute_hash(data)
        existing = self._catalog.get_by_hash(file_hash)
        if existing is not None and not options.overwrite_existing:
            logger.info("Skipping %s: duplicate of %s", filename, existing.id)
            return ProcessingResult(
                success=False,
                error=ProcessingError.DUPLICATE,
                existing_book_id=existing.id,
            )

        book_format = detect_format(data, filename)
        if book_format is None:
            return ProcessingResult(success=False, error=ProcessingError.UNSUPPORTED_FORMAT)
        # The hash is unique, so the old record goes only right before the new one is inserted
        replaced = existing.id if existing is not None else None

        book_id = str(uuid.uuid4())
        file_path = self._storage.store(data, book_id, book_format.value)
        overrides = options.metadata or ExtractedMetadata()
        fallback = metadata_from_filename(filename)
        row = {
            "file_path": file_path,
            "file_name": filename,
            "file_size": len(data),
            "file_hash": file_hash,
            "book_format": book_format.value,
            "mime_type": book_format.mime_type,
        }

        if self._policy.should_defer(len(data)):
            self._drop_replaced(replaced, filename)
            try:
                self._catalog.add_book(book_id, merge_with_precedence(overrides, fallback), **row)
            except DuplicateBookError:
                return self._late_duplicate(file_hash, file_path)
            self._index_metadata(book_id)
            self._scheduler.spawn(
                self._process_deferred(book_id, data, book_format, overrides, options),
                name=f"ingest-{book_id}",
            )
            logger.info("Queued background processing for %s (%s, %d bytes)", filename, book_format.value, len(data))
            return ProcessingResult(
                success=True,
                book_id=book_id,
                processing_time=time.monotonic() - started,
                deferred=True,
                format=book_format,
            )

        extracted, raw_cover = self._extract(book_format, data)
        metadata = merge_with_precedence(overrides, merge_with_precedence(extracted, fallback))
        cover = normalize_cover(raw_cover, self._settings) if raw_cover else None
        cover_path = self._storage.store_cover(cover.data, book_id) if cover else None

        self._drop_replaced(replaced, filename)
        try:
            self._catalog.add_book(
                book_id,
                metadata,
                cover_path=cover_path,
                cover_color=cover.dominant_color if cover else None,
                **row,
            )
        except DuplicateBookError:
            if cover_path:
                self._storage.delete(cover_path)
            return self._late_duplicate(file_hash, file_path)

        self._index_metadata(book_id)
        if not options.skip_content_indexing and self._policy.should_index_content(len(data)):
            self._scheduler.spawn(self._index_content(book_id, data, book_format), name=f"index-{book_id}")

        logger.info("Imported %s as %s (%s)", filename, book_id, book_format.value)
        return ProcessingResult(
            success=True,
            book_id=book_id,
            processing_time=time.monotonic() - started,
            format=book_format,
        )

    def remove_book(self, book_id: str) -> bool:
        """Delete a book's record, index entries, and stored files.

        Returns:
            False if no such book exists.
        """
        record = self._catalog.get_by_id(book_id)
        if record is None:
            return False
        for path in (record.file_path, record.cover_path, record.converted_epub_path):
            if path:
                self._storage.delete(path)
        self._index.remove_index(book_id)
        self._catalog.delete_book(book_id)
        return True

    def _drop_replaced(self, book_id: str | None, filename: str) -> None:
        if book_id is not None:
            logger.info("Replacing %s with a fresh import of %s", book_id, filename)
            self.remove_book(book_id)

    def apply_cover(self, book_id: str, data: bytes) -> CoverResult | None:
        """Replace a book's cover with an externally supplied image.

        Returns:
            The normalized cover, or None if the image was rejected (the
            existing cover is kept).

        Raises:
            ValueError: If the book does not exist.
        """
        if self._catalog.get_by_id(book_id) is None:
            raise ValueError(f"Book with id {book_id} not found")
        cover = normalize_cover(data, self._settings)
        if cover is None:
            return None
        cover_path = self._storage.store_cover(cover.data, book_id)
        self._catalog.update_book(book_id, cover_path=cover_path, cover_color=cover.dominant_color)
        return cover

    def _late_duplicate(self, file_hash: str, file_path: str) -> ProcessingResult:
        """A concurrent upload of the same bytes committed first."""
        self._storage.delete(file_path)
        winner = self._catalog.get_by_hash(file_hash)
        return ProcessingResult(
            success=False,
            error=ProcessingError.DUPLICATE,
            existing_book_id=winner.id if winner else None,
        )

    def _extract(self, book_format: BookFormat, data: bytes) -> tuple[ExtractedMetadata, bytes | None]:
        with get_extractor(book_format, data) as extractor:
            metadata, _ = safe_extract(extractor.metadata, ExtractedMetadata(), "metadata")
            cover, _ = safe_extract(extractor.cover, None, "cover")
        return metadata, cover

    def _extract_content(self, book_format: BookFormat, data: bytes) -> ExtractedContent:
        with get_extractor(book_format, data) as extractor:
            content, _ = safe_extract(extractor.content, ExtractedContent(), "content")
        return content

    def _index_metadata(self, book_id: str) -> None:
        record = self._catalog.get_by_id(book_id)
        if record is None:
            return
        self._index.index_metadata(
            book_id,
            record.title,
            record.metadata.subtitle,
            record.metadata.authors,
            record.metadata.description,
        )

    async def _index_content(self, book_id: str, data: bytes, book_format: BookFormat) -> None:
        await yield_now()
        content = self._extract_content(book_format, data)
        await yield_now()
        self._indexer.index_book(book_id, content)

    async def _process_deferred(
        self,
        book_id: str,
        data: bytes,
        book_format: BookFormat,
        overrides: ExtractedMetadata,
        options: ImportOptions,
    ) -> None:
        """Background half of a large upload: fill in what the caller did not supply."""
        await yield_now()
        extracted, raw_cover = self._extract(book_format, data)

        await yield_now()
        cover = normalize_cover(raw_cover, self._settings) if raw_cover else None

        await yield_now()
        written = self._catalog.update_metadata(book_id, extracted, skip=overrides.populated_fields())
        if cover is not None:
            cover_path = self._storage.store_cover(cover.data, book_id)
            self._catalog.update_book(book_id, cover_path=cover_path, cover_color=cover.dominant_color)
        logger.debug("Background metadata for %s updated fields: %s", book_id, sorted(written))

        await yield_now()
        self._index_metadata(book_id)

        if not options.skip_content_indexing and self._policy.should_index_content(len(data)):
            await self._index_content(book_id, data, book_format)
        logger.info("Finished background processing for %s", book_id)


async def import_files(
    paths: list[Path],
    pipeline: IngestionPipeline,
    options: ImportOptions | None = None,
) -> ImportResult:
    """Import files from disk through the pipeline.

    Duplicates count as skipped; unreadable and unrecognized files are
    recorded as errors. Background work is left on the pipeline's
    scheduler for the caller to drain.
    """
    result = ImportResult()
    for path in paths:
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            result.errors += 1
            result.error_details.append((path, str(exc)))
            continue

        outcome = await pipeline.process_book(data, path.name, options)
        if outcome.success and outcome.book_id:
            result.added += 1
            result.book_ids.append(outcome.book_id)
        elif outcome.error is ProcessingError.DUPLICATE:
            result.skipped += 1
        else:
            result.errors += 1
            reason = outcome.error.value if outcome.error else "unknown error"
            result.error_details.append((path, reason))
    return result
