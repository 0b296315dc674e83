# ABOUTME: Fixed-layout document (PDF) extraction using PyMuPDF.
# ABOUTME: Reads the info dictionary, page text grouped by outline, and renders page one as a cover.

import logging
import re

import fitz

from librarium.formats.base import BaseExtractor
from librarium.formats.markup import collapse_whitespace
from librarium.metadata.types import Chapter, ExtractedContent, ExtractedMetadata, TocEntry

logger = logging.getLogger(__name__)

# MuPDF prints recoverable syntax errors straight to stderr
fitz.TOOLS.mupdf_display_errors(False)

_PDF_DATE_RE = re.compile(r"D:(\d{4})(\d{2})(\d{2})")
_COVER_ZOOM = 2.0


def parse_pdf_date(value: str | None) -> str | None:
    """Convert a PDF date string (D:YYYYMMDDHHmmSS...) to YYYY-MM-DD."""
    if not value:
        return None
    match = _PDF_DATE_RE.search(value)
    if not match:
        return None
    return f"{match.group(1)}-{match.group(2)}-{match.group(3)}"


def open_pdf(data: bytes) -> fitz.Document:
    """Open PDF bytes, raising ValueError for anything MuPDF cannot read."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise ValueError(f"Unreadable PDF: {exc}") from exc
    if doc.needs_pass:
        doc.close()
        raise ValueError("PDF is password protected")
    return doc


def outline_ranges(doc: fitz.Document) -> list[tuple[str, int, int]]:
    """Top-level outline entries as (title, first_page, last_page), zero-based and inclusive."""
    entries = [(title.strip(), page - 1) for level, title, page, *_ in doc.get_toc(simple=True) if level == 1]
    entries = [(title, page) for title, page in entries if 0 <= page < doc.page_count]
    ranges: list[tuple[str, int, int]] = []
    for i, (title, first) in enumerate(entries):
        last = entries[i + 1][1] - 1 if i + 1 < len(entries) else doc.page_count - 1
        if last >= first:
            ranges.append((title or f"Chapter {i + 1}", first, last))
    return ranges


class PdfExtractor(BaseExtractor):
    """Extractor for fixed-layout documents."""

    def metadata(self) -> ExtractedMetadata:
        try:
            doc = open_pdf(self._data)
        except ValueError as exc:
            logger.debug("PDF metadata unavailable: %s", exc)
            return ExtractedMetadata()
        with doc:
            info = doc.metadata or {}
            author = (info.get("author") or "").strip()
            return ExtractedMetadata(
                title=(info.get("title") or "").strip() or None,
                authors=[author] if author else [],
                description=(info.get("subject") or "").strip() or None,
                page_count=doc.page_count,
                published_date=parse_pdf_date(info.get("creationDate")),
            )

    def content(self) -> ExtractedContent:
        try:
            doc = open_pdf(self._data)
        except ValueError as exc:
            logger.debug("PDF content unavailable: %s", exc)
            return ExtractedContent()
        with doc:
            pages = [collapse_whitespace(page.get_text("text")) for page in doc]
            chapters: list[Chapter] = []
            toc: list[TocEntry] = []
            for index, (title, first, last) in enumerate(outline_ranges(doc)):
                text = "\n".join(p for p in pages[first : last + 1] if p)
                chapters.append(Chapter(index=index, title=title, text=text))
                toc.append(TocEntry(title=title, href=f"#page={first + 1}", index=index))
        return ExtractedContent(
            full_text="\n\n".join(p for p in pages if p),
            chapters=chapters,
            toc=toc,
        )

    def cover(self) -> bytes | None:
        try:
            doc = open_pdf(self._data)
        except ValueError as exc:
            logger.debug("PDF cover unavailable: %s", exc)
            return None
        with doc:
            if doc.page_count == 0:
                return None
            pixmap = doc[0].get_pixmap(matrix=fitz.Matrix(_COVER_ZOOM, _COVER_ZOOM), alpha=False)
            return pixmap.tobytes("png")
