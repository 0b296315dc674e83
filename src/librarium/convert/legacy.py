# ABOUTME: Converts MOBI/AZW/AZW3 ebooks into EPUB 3 packages.
# ABOUTME: Parses both legacy sub-formats, keeps the richer one, sanitizes chapter markup, and assembles the package.

import logging
import re
from html.entities import html5

from bs4 import BeautifulSoup

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
from librarium.formats.mobi import MobiError, parse_best
from librarium.metadata.types import ExtractedMetadata

logger = logging.getLogger(__name__)

_XML_DECLARATION = re.compile(r"<\?xml[^>]*\?>", re.IGNORECASE)
_DOCTYPE = re.compile(r"<!DOCTYPE[^>]*>", re.IGNORECASE)
_SCRIPT = re.compile(r"<script\b[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_STYLE = re.compile(r"<style\b[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_EVENT_HANDLER_DQ = re.compile(r"\s+on\w+=\"[^\"]*\"", re.IGNORECASE)
_EVENT_HANDLER_SQ = re.compile(r"\s+on\w+='[^']*'", re.IGNORECASE)
_HTML_TAG = re.compile(r"</?html\b[^>]*>", re.IGNORECASE)
_HEAD_BLOCK = re.compile(r"<head\b[^>]*>[\s\S]*?</head>", re.IGNORECASE)
_BODY_TAG = re.compile(r"</?body\b[^>]*>", re.IGNORECASE)
_MBP_TAG = re.compile(r"</?mbp:[^>]*>", re.IGNORECASE)
_FILEPOS_ATTR = re.compile(r"\s+filepos=[\"']?\d+[\"']?", re.IGNORECASE)
_IMG_SRC = re.compile(r"(<img\b[^>]*\ssrc=[\"'])([^\"']*/)?([^\"'/]+)([\"'])", re.IGNORECASE)
_BR = re.compile(r"<br\s*>", re.IGNORECASE)
_HR = re.compile(r"<hr\s*>", re.IGNORECASE)
_OPEN_IMG = re.compile(r"<img([^>]*[^/])>", re.IGNORECASE)
_AMPERSAND = re.compile(r"&(#\d+;|#x[\da-fA-F]+;|[A-Za-z][A-Za-z\d]*;)?")


def _escape_ampersand(match: re.Match) -> str:
    """Keep numeric references and named entities HTML knows; escape anything else."""
    entity = match.group(1)
    if entity and (entity.startswith("#") or entity in html5):
        return match.group(0)
    return "&amp;" + (entity or "")


def sanitize_chapter_html(html: str) -> str:
    """Make one legacy chapter safe to drop into an XHTML chapter template.

    Removes scripts, styles, inline event handlers and the document wrapper,
    points images at the flat ``images/`` directory, escapes stray
    ampersands, and finally re-serializes the fragment so every tag is
    closed.
    """
    sanitized = _XML_DECLARATION.sub("", html)
    sanitized = _DOCTYPE.sub("", sanitized)
    sanitized = _SCRIPT.sub("", sanitized)
    sanitized = _STYLE.sub("", sanitized)
    sanitized = _EVENT_HANDLER_DQ.sub("", sanitized)
    sanitized = _EVENT_HANDLER_SQ.sub("", sanitized)
    sanitized = _HTML_TAG.sub("", sanitized)
    sanitized = _HEAD_BLOCK.sub("", sanitized)
    sanitized = _BODY_TAG.sub("", sanitized)
    sanitized = _MBP_TAG.sub("", sanitized)
    sanitized = _FILEPOS_ATTR.sub("", sanitized)
    sanitized = _IMG_SRC.sub(r"\1images/\3\4", sanitized)
    sanitized = _BR.sub("<br/>", sanitized)
    sanitized = _HR.sub("<hr/>", sanitized)
    sanitized = _OPEN_IMG.sub(r"<img\1/>", sanitized)
    sanitized = _AMPERSAND.sub(_escape_ampersand, sanitized)

    soup = BeautifulSoup(sanitized, "html.parser")
    return soup.decode(formatter="minimal").strip()


def convert_legacy_to_epub(
    data: bytes,
    metadata: ExtractedMetadata | None = None,
    progress: ProgressCallback | None = None,
) -> bytes:
    """Convert MOBI family bytes to an EPUB 3 file.

    Args:
        data: The legacy ebook file.
        metadata: Cataloged metadata; its title, authors, and language take
            precedence over what the file itself declares.
        progress: Called with (percent, message) as conversion advances.

    Returns:
        The EPUB file as bytes.

    Raises:
        ConversionError: If neither sub-format parses or no chapter survives.
    """
    report = progress or (lambda _pct, _msg: None)
    known = metadata or ExtractedMetadata()

    report(2, "Parsing MOBI file...")
    try:
        book = parse_best(data)
    except MobiError as exc:
        raise ConversionError(f"Could not parse MOBI file: {exc}") from exc

    with book:
        report(8, "Extracting chapters...")
        declared = book.metadata()

        chapters: list[PackageChapter] = []
        positions: dict[int, int] = {}
        total = len(book.chapters)
        for i, chapter in enumerate(book.chapters):
            report(10 + round(i / total * 55), f"Extracting chapter {i + 1}/{total}...")
            html = sanitize_chapter_html(chapter.html)
            if not html:
                continue
            positions[i] = len(chapters)
            chapters.append(PackageChapter(title=chapter.title, html=html))

        if not chapters:
            raise ConversionError("No chapters could be extracted from the MOBI file")

        report(67, "Collecting images...")
        images: list[PackageImage] = []
        for image in book.images:
            media_type = media_type_for(image.name)
            if media_type is None:
                continue
            images.append(PackageImage(name=image.name, media_type=media_type, data=book.read_image(image)))
        cover_name = book.cover_image.name if book.cover_image is not None else None

        toc = [
            PackageTocEntry(title=entry.title, chapter_index=positions[entry.chapter_index])
            for entry in book.toc
            if entry.chapter_index in positions
        ]

        report(72, "Assembling EPUB...")
        package = EpubPackage(
            title=known.title or declared.title or "Untitled",
            authors=known.authors or declared.authors or ["Unknown"],
            language=known.language or declared.language or "en",
            chapters=chapters,
            images=images,
            toc=toc,
            cover_image=cover_name,
        )
        result = build_epub(package, report)

    logger.info(
        "Converted %s parse to EPUB: %d chapters, %d images",
        book.variant,
        len(chapters),
        len(images),
    )
    report(100, "Conversion complete")
    return result
