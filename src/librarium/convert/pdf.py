# ABOUTME: Converts fixed-layout PDF documents into reflowable EPUB 3 packages using PyMuPDF.
# ABOUTME: Chapters follow the document outline, or large headings near the top of a page when there is none.

import logging
import statistics
from dataclasses import dataclass, field
from html import escape

import fitz

from librarium.convert.package import (
    ConversionError,
    EpubPackage,
    PackageChapter,
    PackageImage,
    PackageTocEntry,
    ProgressCallback,
    build_epub,
    media_type_for,
)
from librarium.formats.pdf import open_pdf, outline_ranges
from librarium.metadata.types import ExtractedMetadata

logger = logging.getLogger(__name__)

HEADING_SCALE = 1.4
HEADING_ZONE = 0.3
_FLAG_ITALIC = 2
_FLAG_BOLD = 16


@dataclass
class _Span:
    text: str
    size: float
    top: float
    bold: bool = False
    italic: bool = False


@dataclass
class _Page:
    number: int
    height: float
    paragraphs: list[list[_Span]] = field(default_factory=list)
    images: list[PackageImage] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.paragraphs and not self.images

    def spans(self) -> list[_Span]:
        return [span for paragraph in self.paragraphs for span in paragraph]


@dataclass
class _ChapterPages:
    title: str
    pages: list[_Page] = field(default_factory=list)


def _read_page(page: fitz.Page, number: int) -> _Page:
    """Text spans grouped by layout block, plus embedded raster images."""
    result = _Page(number=number, height=page.rect.height)
    layout = page.get_text("dict")
    for block in layout.get("blocks", []):
        if block.get("type") == 1:
            data = block.get("image")
            name = f"page{number}_img{len(result.images) + 1}.{block.get('ext', 'png')}"
            media_type = media_type_for(name)
            if data and media_type:
                result.images.append(PackageImage(name=name, media_type=media_type, data=data))
            continue

        spans: list[_Span] = []
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = span.get("text", "")
                if not text.strip():
                    continue
                flags = span.get("flags", 0)
                spans.append(
                    _Span(
                        text=text,
                        size=float(span.get("size") or 12.0),
                        top=float(span["bbox"][1]),
                        bold=bool(flags & _FLAG_BOLD),
                        italic=bool(flags & _FLAG_ITALIC),
                    )
                )
        if spans:
            result.paragraphs.append(spans)
    return result


def _heading(page: _Page, threshold: float) -> str | None:
    """First large, non-numeric line of text in the top part of a page."""
    zone = page.height * HEADING_ZONE
    candidates = sorted((s for s in page.spans() if s.top < zone), key=lambda s: s.top)
    for span in candidates:
        text = span.text.strip()
        if span.size >= threshold and 1 < len(text) < 100 and not text.isdigit():
            return text
    return None


def detect_chapters(pages: list[_Page], book_title: str) -> list[_ChapterPages]:
    """Group pages into chapters by heading size relative to the median body text."""
    sizes = [span.size for page in pages for span in page.spans()]
    if not sizes:
        return [_ChapterPages(title=book_title, pages=list(pages))] if pages else []

    threshold = statistics.median_low(sizes) * HEADING_SCALE
    chapters: list[_ChapterPages] = []
    current = _ChapterPages(title=book_title)
    for page in pages:
        heading = _heading(page, threshold)
        if heading and current.pages:
            chapters.append(current)
            current = _ChapterPages(title=heading, pages=[page])
        else:
            if heading:
                current.title = heading
            current.pages.append(page)
    if current.pages:
        chapters.append(current)
    return chapters


def _outline_chapters(
    pages: list[_Page], ranges: list[tuple[str, int, int]], book_title: str
) -> list[_ChapterPages]:
    chapters: list[_ChapterPages] = []
    front = [page for page in pages if page.number < ranges[0][1]]
    if front:
        chapters.append(_ChapterPages(title=book_title, pages=front))
    for title, first, last in ranges:
        members = [page for page in pages if first <= page.number <= last]
        if members:
            chapters.append(_ChapterPages(title=title, pages=members))
    return chapters


def _span_html(span: _Span) -> str:
    text = escape(span.text.strip())
    if span.bold:
        text = f"<strong>{text}</strong>"
    if span.italic:
        text = f"<em>{text}</em>"
    return text


def _page_html(page: _Page) -> str:
    parts = [f'    <p><img src="{escape(image.href)}" alt=""/></p>' for image in page.images]
    for paragraph in page.paragraphs:
        parts.append("    <p>" + " ".join(_span_html(span) for span in paragraph) + "</p>")
    return "\n".join(parts)


def convert_pdf_to_epub(
    data: bytes,
    metadata: ExtractedMetadata | None = None,
    progress: ProgressCallback | None = None,
) -> bytes:
    """Convert PDF bytes to an EPUB 3 file.

    Pages with neither text nor images are dropped before chapters are
    formed.

    Raises:
        ConversionError: If the PDF cannot be opened or yields no chapters.
    """
    report = progress or (lambda _pct, _msg: None)
    known = metadata or ExtractedMetadata()

    report(2, "Loading PDF...")
    try:
        doc = open_pdf(data)
    except ValueError as exc:
        raise ConversionError(str(exc)) from exc

    with doc:
        info = doc.metadata or {}
        author = (info.get("author") or "").strip()
        title = known.title or (info.get("title") or "").strip() or "Untitled"
        report(5, f"PDF loaded: {doc.page_count} pages")

        pages: list[_Page] = []
        for number, page in enumerate(doc):
            report(5 + round((number + 1) / doc.page_count * 60), f"Extracting page {number + 1}/{doc.page_count}...")
            content = _read_page(page, number)
            if not content.is_empty:
                pages.append(content)

        report(68, "Detecting chapters...")
        ranges = outline_ranges(doc)

    groups = _outline_chapters(pages, ranges, title) if ranges and pages else detect_chapters(pages, title)
    if not groups:
        raise ConversionError("No chapters could be extracted from the PDF")

    chapters: list[PackageChapter] = []
    images: list[PackageImage] = []
    for group in groups:
        body = "\n\n    <hr/>\n\n".join(_page_html(page) for page in group.pages)
        chapters.append(PackageChapter(title=group.title, html=f"    <h2>{escape(group.title)}</h2>\n{body}"))
        for page in group.pages:
            images.extend(page.images)

    report(72, "Generating EPUB...")
    package = EpubPackage(
        title=title,
        authors=known.authors or ([author] if author else ["Unknown"]),
        language=known.language or "en",
        chapters=chapters,
        images=images,
        toc=[PackageTocEntry(title=chapter.title, chapter_index=i) for i, chapter in enumerate(chapters)],
    )
    result = build_epub(package, report)
    logger.info("Converted PDF to EPUB: %d chapters from %d pages", len(chapters), len(pages))
    report(100, "Conversion complete")
    return result
