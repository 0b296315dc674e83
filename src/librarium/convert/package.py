# ABOUTME: Assembles an EPUB 3 package from sanitized chapters, images, and navigation entries.
# ABOUTME: Serialization is handed to ebooklib, which writes the stored "mimetype" entry first.

import io
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePosixPath

from ebooklib import epub

EPUB_MIMETYPE = "application/epub+zip"

ProgressCallback = Callable[[int, str], None]


class ConversionError(Exception):
    """Raised when a source cannot be turned into a valid EPUB package."""


IMAGE_MEDIA_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
}

_STYLESHEET = """body {
  font-family: serif;
  line-height: 1.6;
  margin: 1em;
  color: #333;
}
h1, h2, h3 {
  line-height: 1.3;
  margin-top: 1.5em;
  margin-bottom: 0.5em;
}
p {
  margin: 0.5em 0;
  text-align: justify;
}
hr {
  border: none;
  border-top: 1px solid #ccc;
  margin: 2em 0;
}
img {
  max-width: 100%;
  height: auto;
}
"""


def media_type_for(name: str) -> str | None:
    """EPUB media type for an image filename, or None if it is not a publishable image."""
    return IMAGE_MEDIA_TYPES.get(PurePosixPath(name).suffix.lower())


@dataclass
class PackageChapter:
    """A chapter body: an XHTML fragment that is wrapped in a <section> when written."""

    title: str
    html: str


@dataclass
class PackageImage:
    name: str
    media_type: str
    data: bytes

    @property
    def href(self) -> str:
        return f"images/{self.name}"


@dataclass
class PackageTocEntry:
    """A navigation entry pointing at a chapter by its zero-based position."""

    title: str
    chapter_index: int


@dataclass
class EpubPackage:
    """Everything needed to write one EPUB 3 file."""

    title: str
    authors: list[str] = field(default_factory=list)
    language: str = "en"
    chapters: list[PackageChapter] = field(default_factory=list)
    images: list[PackageImage] = field(default_factory=list)
    toc: list[PackageTocEntry] = field(default_factory=list)
    cover_image: str | None = None
    identifier: str = field(default_factory=lambda: f"urn:uuid:{uuid.uuid4()}")
    modified: datetime | None = None


def _chapter_href(index: int) -> str:
    return f"chapter-{index + 1}.xhtml"


def _navigation(package: EpubPackage, chapters: list[epub.EpubHtml]) -> list:
    """TOC links from the package entries, or the chapters themselves when there are none."""
    if not package.toc:
        return list(chapters)
    count = len(chapters)
    links = []
    for i, entry in enumerate(package.toc):
        target = entry.chapter_index if 0 <= entry.chapter_index < count else 0
        links.append(epub.Link(_chapter_href(target), entry.title, f"toc-{i + 1}"))
    return links


def build_epub(package: EpubPackage, progress: ProgressCallback | None = None) -> bytes:
    """Serialize a package to EPUB bytes.

    Progress is reported from 72 to 95 percent, matching where assembly
    sits in a full conversion.

    Raises:
        ConversionError: If the package has no chapters or ebooklib fails to write it.
    """
    if not package.chapters:
        raise ConversionError("No chapters could be extracted")
    report = progress or (lambda _pct, _msg: None)

    book = epub.EpubBook()
    book.set_identifier(package.identifier)
    book.set_title(package.title)
    book.set_language(package.language)
    for i, author in enumerate(package.authors):
        book.add_author(author, uid=f"creator-{i + 1}")

    style = epub.EpubItem(uid="styles", file_name="styles.css", media_type="text/css", content=_STYLESHEET)
    book.add_item(style)

    chapters: list[epub.EpubHtml] = []
    total = len(package.chapters)
    for i, chapter in enumerate(package.chapters):
        report(72 + round(i / total * 20), f"Writing chapter {i + 1}/{total}...")
        item = epub.EpubHtml(
            uid=f"chapter-{i + 1}",
            title=chapter.title,
            file_name=_chapter_href(i),
            lang=package.language,
        )
        item.content = f"<section>\n{chapter.html}\n</section>".encode("utf-8")
        item.add_item(style)
        book.add_item(item)
        chapters.append(item)

    for i, image in enumerate(package.images):
        if image.name == package.cover_image:
            book.set_cover(image.href, image.data, create_page=False)
            continue
        book.add_item(
            epub.EpubImage(uid=f"img-{i + 1}", file_name=image.href, media_type=image.media_type, content=image.data)
        )

    book.toc = _navigation(package, chapters)
    book.spine = chapters
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())

    modified = (package.modified or datetime.now(timezone.utc)).astimezone(timezone.utc)
    buffer = io.BytesIO()
    try:
        epub.write_epub(buffer, book, {"mtime": modified, "raise_exceptions": True})
    except Exception as exc:
        raise ConversionError(f"Failed to write EPUB: {exc}") from exc

    report(95, "Compressing EPUB...")
    return buffer.getvalue()
