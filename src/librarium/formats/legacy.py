# ABOUTME: Extractor adapter for legacy MOBI/AZW/AZW3 ebooks.
# ABOUTME: Runs both sub-format parsers once, keeps the richer parse, and exposes the common capabilities.

import logging

from librarium.formats.base import BaseExtractor
from librarium.formats.markup import html_to_text
from librarium.formats.mobi import MobiBook, MobiError, parse_best
from librarium.metadata.types import Chapter, ExtractedContent, ExtractedMetadata, TocEntry

logger = logging.getLogger(__name__)


class LegacyExtractor(BaseExtractor):
    """Extractor for the MOBI family. Close it to release parse scratch space."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self._book: MobiBook | None = None
        self._failed = False

    def _load(self) -> MobiBook | None:
        if self._book is None and not self._failed:
            try:
                self._book = parse_best(self._data)
            except MobiError as exc:
                logger.debug("MOBI parse failed: %s", exc)
                self._failed = True
        return self._book

    def metadata(self) -> ExtractedMetadata:
        book = self._load()
        return book.metadata() if book else ExtractedMetadata()

    def content(self) -> ExtractedContent:
        book = self._load()
        if book is None:
            return ExtractedContent()
        chapters = [
            Chapter(index=i, title=chapter.title, text=html_to_text(chapter.html))
            for i, chapter in enumerate(book.chapters)
        ]
        toc = [
            TocEntry(title=entry.title, href=f"#chapter-{entry.chapter_index + 1}", index=i)
            for i, entry in enumerate(book.toc)
        ]
        full_text = "\n\n".join(ch.text for ch in chapters if ch.text)
        return ExtractedContent(full_text=full_text, chapters=chapters, toc=toc)

    def cover(self) -> bytes | None:
        book = self._load()
        if book is None or book.cover_image is None:
            return None
        return book.read_image(book.cover_image)

    def close(self) -> None:
        if self._book is not None:
            self._book.close()
            self._book = None
