# ABOUTME: Reader for MOBI-family ebooks built on KindleUnpack (the "mobi" package).
# ABOUTME: Turns the unpacked MOBI 6 HTML and KF8 EPUB outputs into chapters, a TOC, images, and metadata.

import logging
import mimetypes
import re
import shutil
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import ebooklib
import mobi
from bs4 import BeautifulSoup
from ebooklib import epub

from librarium.formats.epub import flatten_toc, href_matches, package_metadata
from librarium.formats.markup import document_title, first_heading, html_to_text
from librarium.metadata.isbn import classify_isbn, find_isbn
from librarium.metadata.types import ExtractedMetadata

logger = logging.getLogger(__name__)


class MobiError(Exception):
    """Raised when a MOBI file cannot be unpacked or holds no usable section."""


_PAGEBREAK_RE = re.compile(r"(?:<a\s+id=\"filepos\d+\"\s*/>\s*)*<mbp:pagebreak[^>]*>", re.IGNORECASE)
_ANCHOR_LINK_RE = re.compile(
    r"<a\b[^>]*?\bhref=\"#(filepos\d+)\"[^>]*>(.*?)</a>", re.IGNORECASE | re.DOTALL
)
_IMG_TAG_RE = re.compile(r"<img\b", re.IGNORECASE)


class UnpackedMobi:
    """One KindleUnpack output directory, shared by the parses made from it.

    The directory is removed once every holder has released it. The caller
    of unpack_mobi holds the first reference.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._holders = 1

    @property
    def mobi7_html(self) -> Path | None:
        """The MOBI 6 text as KindleUnpack writes it, if the file has that section."""
        preferred = self.root / "mobi7" / "book.html"
        if preferred.is_file():
            return preferred
        return next((p for p in sorted(self.root.rglob("book.html")) if "mobi8" not in p.parts), None)

    @property
    def kf8_epub(self) -> Path | None:
        """The EPUB rebuilt from the KF8 section, if the file has one."""
        return next(iter(sorted(self.root.rglob("*.epub"))), None)

    @property
    def removed(self) -> bool:
        return self._holders <= 0

    def retain(self) -> "UnpackedMobi":
        self._holders += 1
        return self

    def release(self) -> None:
        if self._holders <= 0:
            return
        self._holders -= 1
        if self._holders == 0:
            shutil.rmtree(self.root, ignore_errors=True)


def unpack_mobi(data: bytes) -> UnpackedMobi:
    """Run KindleUnpack over ``data``.

    Raises:
        MobiError: If KindleUnpack rejects the file (not a MOBI, DRM, truncated).
    """
    with tempfile.TemporaryDirectory(prefix="librarium-mobi-") as staging:
        source = Path(staging) / "book.mobi"
        source.write_bytes(data)
        try:
            tempdir, _primary = mobi.extract(str(source))
        except Exception as exc:
            raise MobiError(f"KindleUnpack could not read the file: {exc}") from exc
    return UnpackedMobi(Path(tempdir))


@dataclass
class MobiImage:
    name: str
    media_type: str
    path: Path


@dataclass
class MobiChapter:
    title: str
    html: str


@dataclass
class MobiTocEntry:
    title: str
    chapter_index: int


@dataclass
class MobiBook:
    """One parse of a MOBI file: the MOBI 6 text or the KF8 section.

    Image paths live in the shared unpack directory. Call close() to drop
    this parse's hold on it; a MobiBook is also a context manager.
    """

    variant: str
    info: ExtractedMetadata
    chapters: list[MobiChapter]
    toc: list[MobiTocEntry]
    images: list[MobiImage]
    cover_image: MobiImage | None
    _unpacked: UnpackedMobi | None = field(default=None, repr=False)

    @property
    def is_kf8(self) -> bool:
        return self.variant == "kf8"

    @property
    def closed(self) -> bool:
        return self._unpacked is None

    def metadata(self) -> ExtractedMetadata:
        return self.info

    def read_image(self, image: MobiImage) -> bytes:
        if self._unpacked is None:
            raise MobiError("Parse resources have already been released")
        return image.path.read_bytes()

    def close(self) -> None:
        if self._unpacked is not None:
            self._unpacked.release()
            self._unpacked = None

    def __enter__(self) -> "MobiBook":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _image_type(path: Path) -> str | None:
    media_type, _ = mimetypes.guess_type(path.name)
    return media_type if media_type and media_type.startswith("image/") else None


def _has_content(markup: str | bytes) -> bool:
    text = markup.decode("utf-8", errors="replace") if isinstance(markup, bytes) else markup
    return bool(_IMG_TAG_RE.search(text)) or bool(html_to_text(markup))


def _read_markup(path: Path) -> str:
    raw = path.read_bytes()
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("cp1252", errors="replace")


# --- MOBI 6 ---


def _opf_metadata(opf: BeautifulSoup) -> ExtractedMetadata:
    """Dublin Core metadata from the OPF KindleUnpack writes beside book.html."""

    def values(name: str) -> list[str]:
        return [text for tag in opf.find_all(name) if (text := tag.get_text(strip=True))]

    def first(name: str) -> str | None:
        found = values(name)
        return found[0] if found else None

    authors: list[str] = []
    for value in values("creator"):
        authors.extend(part.strip() for part in value.split(";") if part.strip())

    description = first("description")
    if description and "<" in description:
        description = html_to_text(description) or None

    isbn = next((found for value in values("identifier") if (found := find_isbn(value))), None)
    return ExtractedMetadata(
        title=first("title"),
        authors=authors,
        publisher=first("publisher"),
        description=description,
        language=first("language"),
        published_date=first("date"),
        **classify_isbn(isbn),
    )


def _opf_cover_name(opf: BeautifulSoup) -> str | None:
    meta = opf.find("meta", attrs={"name": "cover"})
    if meta is None or not meta.get("content"):
        return None
    item = opf.find("item", attrs={"id": meta["content"]})
    if item is None or not item.get("href"):
        return None
    return Path(item["href"]).name


def _opf_toc_anchor(opf: BeautifulSoup) -> str | None:
    """The anchor id the guide's toc reference points at, e.g. ``filepos1234``."""
    reference = opf.find("reference", attrs={"type": "toc"})
    if reference is None:
        return None
    _, _, anchor = reference.get("href", "").partition("#")
    return anchor or None


def _segment_of(position: int, segments: list[tuple[int, int]]) -> int | None:
    for index, (start, end) in enumerate(segments):
        if start <= position < end:
            return index
    return None


def _mobi6_chapters(text: str, toc_anchor: str | None) -> tuple[list[MobiChapter], list[MobiTocEntry]]:
    breaks = [m.start() for m in _PAGEBREAK_RE.finditer(text)]
    bounds = [0, *breaks, len(text)]
    segments = [(bounds[i], bounds[i + 1]) for i in range(len(bounds) - 1) if bounds[i + 1] > bounds[i]]

    def anchor_position(anchor: str) -> int:
        return text.find(f'id="{anchor}"')

    toc_segment: int | None = None
    links: list[tuple[int, str]] = []
    if toc_anchor and (toc_at := anchor_position(toc_anchor)) >= 0:
        toc_segment = _segment_of(toc_at, segments)
    if toc_segment is not None:
        start, end = segments[toc_segment]
        for link in _ANCHOR_LINK_RE.finditer(text, start, end):
            title = html_to_text(link.group(2)).replace("\n", " ")
            target = anchor_position(link.group(1))
            if title and target >= 0:
                links.append((target, title))

    chapters: list[MobiChapter] = []
    toc: list[MobiTocEntry] = []
    for seg_index, (start, end) in enumerate(segments):
        if seg_index == toc_segment and links:
            continue
        markup = text[start:end]
        if not _has_content(markup):
            continue
        chapter_index = len(chapters)
        titles = [title for pos, title in links if start <= pos < end]
        toc.extend(MobiTocEntry(title=title, chapter_index=chapter_index) for title in titles)
        chapters.append(MobiChapter(title=titles[0] if titles else f"Chapter {chapter_index + 1}", html=markup))
    return chapters, toc


def parse_mobi6(unpacked: UnpackedMobi) -> MobiBook:
    """Parse the MOBI 6 text KindleUnpack wrote to ``mobi7/book.html``.

    Chapters split at page breaks. The guide's toc reference names the
    contents page, whose links become the TOC and title the chapters.

    Raises:
        MobiError: When the file only holds a KF8 section.
    """
    html_path = unpacked.mobi7_html
    if html_path is None:
        raise MobiError("File holds only a KF8 section")

    opf_path = html_path.with_name("content.opf")
    opf = BeautifulSoup(opf_path.read_bytes() if opf_path.is_file() else b"", "xml")
    chapters, toc = _mobi6_chapters(_read_markup(html_path), _opf_toc_anchor(opf))

    images = [
        MobiImage(name=path.name, media_type=media_type, path=path)
        for path in sorted((html_path.parent / "Images").glob("*"))
        if (media_type := _image_type(path))
    ]
    cover_name = _opf_cover_name(opf)
    cover = next((image for image in images if image.name == cover_name), None)
    cover = cover or next((image for image in images if image.name.lower().startswith("cover")), None)
    cover = cover or (images[0] if images else None)

    logger.debug("Parsed MOBI 6 text: %d chapters, %d images", len(chapters), len(images))
    return MobiBook(
        variant="mobi6",
        info=_opf_metadata(opf),
        chapters=chapters,
        toc=toc,
        images=images,
        cover_image=cover,
        _unpacked=unpacked.retain(),
    )


# --- KF8 ---


def _kf8_images(book: epub.EpubBook, scratch: Path) -> tuple[list[MobiImage], MobiImage | None]:
    """Copy the package images into scratch; the cover is the ebooklib cover item if there is one."""
    scratch.mkdir(parents=True, exist_ok=True)
    images: list[MobiImage] = []
    cover: MobiImage | None = None
    for item in book.get_items():
        if item.get_type() not in (ebooklib.ITEM_IMAGE, ebooklib.ITEM_COVER):
            continue
        name = Path(item.get_name()).name
        path = scratch / name
        path.write_bytes(item.get_content())
        image = MobiImage(name=name, media_type=item.media_type or _image_type(path) or "", path=path)
        images.append(image)
        if item.get_type() == ebooklib.ITEM_COVER or (cover is None and "cover" in name.lower()):
            cover = image
    return images, cover or (images[0] if images else None)


def parse_kf8(unpacked: UnpackedMobi) -> MobiBook:
    """Parse the KF8 section from the EPUB KindleUnpack rebuilds out of it.

    Each spine document with text or images is a chapter, titled by its
    first heading, else its <title>, else "Chapter N".

    Raises:
        MobiError: When there is no KF8 section or its EPUB cannot be read.
    """
    epub_path = unpacked.kf8_epub
    if epub_path is None:
        raise MobiError("File has no KF8 section")
    try:
        book = epub.read_epub(str(epub_path), options={"ignore_ncx": False})
    except Exception as exc:
        raise MobiError(f"Failed to read KF8 package: {exc}") from exc

    chapters: list[MobiChapter] = []
    names: list[str] = []
    for idref, _linear in book.spine:
        item = book.get_item_with_id(idref)
        if item is None or isinstance(item, epub.EpubNav) or item.get_type() != ebooklib.ITEM_DOCUMENT:
            continue
        markup = item.content
        if not _has_content(markup):
            continue
        chapter_index = len(chapters)
        title = first_heading(markup) or document_title(markup) or f"Chapter {chapter_index + 1}"
        html = markup.decode("utf-8", errors="replace") if isinstance(markup, bytes) else markup
        chapters.append(MobiChapter(title=title, html=html))
        names.append(item.get_name() or "")

    toc_pairs: list[tuple[str, str]] = []
    flatten_toc(list(book.toc), toc_pairs)
    toc: list[MobiTocEntry] = []
    for title, href in toc_pairs:
        index = next((i for i, name in enumerate(names) if href_matches(name, href)), None)
        if title and index is not None:
            toc.append(MobiTocEntry(title=title, chapter_index=index))

    images, cover = _kf8_images(book, unpacked.root / "kf8-images")
    logger.debug("Parsed KF8 section: %d chapters, %d images", len(chapters), len(images))
    return MobiBook(
        variant="kf8",
        info=package_metadata(book),
        chapters=chapters,
        toc=toc,
        images=images,
        cover_image=cover,
        _unpacked=unpacked.retain(),
    )


# --- Parse selection ---


def _noop() -> None:
    return None


def select_better(
    legacy: MobiBook | None, next_gen: MobiBook | None
) -> tuple[MobiBook | None, Callable[[], None]]:
    """Pick the parse with more chapters; ties go to the next-generation parse.

    Returns the winner and a callable that releases the loser's resources.
    """
    if next_gen is None:
        return legacy, _noop
    if legacy is None:
        return next_gen, _noop
    if len(legacy.chapters) > len(next_gen.chapters):
        return legacy, next_gen.close
    return next_gen, legacy.close


def parse_best(data: bytes) -> MobiBook:
    """Unpack once, run both parsers, and keep the richer result, disposing of the other at once.

    Raises:
        MobiError: If KindleUnpack rejects the file or neither parser finds chapters.
    """
    unpacked = unpack_mobi(data)
    errors: list[str] = []
    parses: list[MobiBook | None] = []
    try:
        for parser in (parse_mobi6, parse_kf8):
            try:
                parses.append(parser(unpacked))
            except MobiError as exc:
                errors.append(f"{parser.__name__}: {exc}")
                parses.append(None)
    finally:
        unpacked.release()

    winner, dispose = select_better(parses[0], parses[1])
    dispose()
    if winner is None:
        raise MobiError("Could not parse as MOBI 6 or KF8 (" + "; ".join(errors) + ")")
    return winner
