# ABOUTME: EPUB metadata, text, and cover extraction using ebooklib.
# ABOUTME: Malformed packages yield empty results instead of raising.

import logging
import tempfile
from collections.abc import Iterator
from pathlib import Path

import ebooklib
from ebooklib import epub

from librarium.formats.archive import is_valid_zip
from librarium.formats.base import BaseExtractor
from librarium.formats.markup import html_to_text
from librarium.metadata.isbn import classify_isbn, find_isbn
from librarium.metadata.types import Chapter, ExtractedContent, ExtractedMetadata, TocEntry

logger = logging.getLogger(__name__)


class EpubReadError(Exception):
    """Raised when an EPUB package cannot be read or parsed."""


def _dc_values(book: epub.EpubBook, name: str) -> list[str]:
    """Non-empty Dublin Core values for ``name``, in package order."""
    # ebooklib yields (value, attributes) pairs
    return [str(value).strip() for value, _attrs in book.get_metadata("DC", name) if value and str(value).strip()]


def _dc_first(book: epub.EpubBook, name: str) -> str | None:
    values = _dc_values(book, name)
    return values[0] if values else None


def _detect_isbn(book: epub.EpubBook) -> str | None:
    """Find an ISBN among the package identifiers, preferring ones declared as ISBN."""
    entries = book.get_metadata("DC", "identifier")
    ordered = sorted(
        entries,
        key=lambda entry: "isbn" not in str(entry[1].get("opf:scheme", entry[1].get("scheme", ""))).lower(),
    )
    for value, _attrs in ordered:
        isbn = find_isbn(str(value)) if value else None
        if isbn:
            return isbn
    return None


def package_metadata(book: epub.EpubBook) -> ExtractedMetadata:
    """Dublin Core metadata of a parsed package, with HTML descriptions reduced to text."""
    description = _dc_first(book, "description")
    if description and "<" in description:
        description = html_to_text(description) or None

    return ExtractedMetadata(
        title=_dc_first(book, "title"),
        authors=_dc_values(book, "creator"),
        publisher=_dc_first(book, "publisher"),
        description=description,
        language=_dc_first(book, "language"),
        published_date=_dc_first(book, "date"),
        **classify_isbn(_detect_isbn(book)),
    )


def flatten_toc(entries: list, out: list[tuple[str, str]]) -> None:
    """Walk ebooklib's nested toc (Links and (Section, children) tuples) in order."""
    for entry in entries:
        if isinstance(entry, tuple) and len(entry) == 2:
            section, children = entry
            if getattr(section, "href", None):
                out.append((section.title or "", section.href))
            flatten_toc(children, out)
        elif isinstance(entry, epub.Link):
            out.append((entry.title or "", entry.href or ""))
        elif isinstance(entry, list):
            flatten_toc(entry, out)


def href_matches(item_name: str, href: str) -> bool:
    target = href.split("#", 1)[0]
    if not target:
        return False
    return item_name == target or item_name.endswith("/" + target) or target.endswith("/" + item_name)


class EpubExtractor(BaseExtractor):
    """Extractor for styled ebook packages (EPUB 2 and 3)."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self._book: epub.EpubBook | None = None

    def _load(self) -> epub.EpubBook:
        """Parse the package once; ebooklib reads every item into memory."""
        if self._book is not None:
            return self._book
        if not is_valid_zip(self._data):
            raise EpubReadError("Not a ZIP container")
        with tempfile.TemporaryDirectory(prefix="librarium-epub-") as tmp:
            path = Path(tmp) / "book.epub"
            path.write_bytes(self._data)
            try:
                self._book = epub.read_epub(str(path), options={"ignore_ncx": False})
            except Exception as exc:
                raise EpubReadError(f"Failed to read EPUB: {exc}") from exc
        return self._book

    def metadata(self) -> ExtractedMetadata:
        try:
            book = self._load()
        except EpubReadError as exc:
            logger.debug("EPUB metadata unavailable: %s", exc)
            return ExtractedMetadata()
        return package_metadata(book)

    def content(self) -> ExtractedContent:
        try:
            book = self._load()
        except EpubReadError as exc:
            logger.debug("EPUB content unavailable: %s", exc)
            return ExtractedContent()

        toc_pairs: list[tuple[str, str]] = []
        flatten_toc(list(book.toc), toc_pairs)
        toc = [TocEntry(title=title, href=href, index=i) for i, (title, href) in enumerate(toc_pairs)]

        chapters: list[Chapter] = []
        texts: list[str] = []
        for idref, _linear in book.spine:
            item = book.get_item_with_id(idref)
            if item is None or isinstance(item, epub.EpubNav):
                continue
            if item.get_type() != ebooklib.ITEM_DOCUMENT:
                continue
            try:
                text = html_to_text(item.get_content())
            except Exception as exc:
                logger.debug("Skipping unreadable spine item %s: %s", idref, exc)
                continue

            index = len(chapters)
            name = item.get_name() or ""
            title = next((t for t, href in toc_pairs if t and href_matches(name, href)), None)
            chapters.append(Chapter(index=index, title=title or f"Chapter {index + 1}", text=text))
            if text:
                texts.append(text)

        return ExtractedContent(full_text="\n\n".join(texts), chapters=chapters, toc=toc)

    def cover(self) -> bytes | None:
        try:
            book = self._load()
        except EpubReadError as exc:
            logger.debug("EPUB cover unavailable: %s", exc)
            return None
        return _find_cover(book)


def _cover_candidates(book: epub.EpubBook) -> Iterator[epub.EpubItem]:
    """Possible cover items, most authoritative first."""
    # EPUB 3 cover-image property
    yield from book.get_items_of_type(ebooklib.ITEM_COVER)

    # EPUB 2 <meta name="cover" content="item-id"/>
    for _value, attrs in book.get_metadata("OPF", "cover"):
        item = book.get_item_with_id(attrs.get("content", ""))
        if item is not None and item.get_type() in (ebooklib.ITEM_IMAGE, ebooklib.ITEM_COVER):
            yield item

    for item in book.get_items_of_type(ebooklib.ITEM_IMAGE):
        if "cover" in f"{item.get_id() or ''} {item.get_name() or ''}".lower():
            yield item


def _find_cover(book: epub.EpubBook) -> bytes | None:
    return next((data for item in _cover_candidates(book) if (data := item.get_content())), None)
