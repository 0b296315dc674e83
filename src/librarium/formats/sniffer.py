# ABOUTME: Maps raw upload bytes and a filename to one canonical book format tag.
# ABOUTME: Trusts a recognized extension first, then falls back to magic-byte inspection.

import logging
import struct
from enum import Enum
from pathlib import PurePath

from librarium.formats.archive import is_image_name, open_zip

logger = logging.getLogger(__name__)


class BookFormat(str, Enum):
    """Canonical container formats accepted by the library."""

    EPUB = "epub"
    MOBI = "mobi"
    AZW3 = "azw3"
    PDF = "pdf"
    CBZ = "cbz"
    CBR = "cbr"
    M4B = "m4b"
    M4A = "m4a"
    MP3 = "mp3"

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES[self]

    @property
    def book_type(self) -> str:
        """Coarse library category: ebook, comic, or audiobook."""
        if self in AUDIO_FORMATS:
            return "audiobook"
        if self in COMIC_FORMATS:
            return "comic"
        return "ebook"


_MIME_TYPES: dict[BookFormat, str] = {
    BookFormat.EPUB: "application/epub+zip",
    BookFormat.MOBI: "application/x-mobipocket-ebook",
    BookFormat.AZW3: "application/vnd.amazon.ebook",
    BookFormat.PDF: "application/pdf",
    BookFormat.CBZ: "application/vnd.comicbook+zip",
    BookFormat.CBR: "application/vnd.comicbook-rar",
    BookFormat.M4B: "audio/mp4",
    BookFormat.M4A: "audio/mp4",
    BookFormat.MP3: "audio/mpeg",
}

AUDIO_FORMATS: frozenset[BookFormat] = frozenset({BookFormat.M4B, BookFormat.M4A, BookFormat.MP3})
COMIC_FORMATS: frozenset[BookFormat] = frozenset({BookFormat.CBZ, BookFormat.CBR})
LEGACY_FORMATS: frozenset[BookFormat] = frozenset({BookFormat.MOBI, BookFormat.AZW3})

_EXTENSIONS: dict[str, BookFormat] = {
    ".epub": BookFormat.EPUB,
    ".mobi": BookFormat.MOBI,
    ".azw": BookFormat.MOBI,
    ".prc": BookFormat.MOBI,
    ".azw3": BookFormat.AZW3,
    ".pdf": BookFormat.PDF,
    ".cbz": BookFormat.CBZ,
    ".cbr": BookFormat.CBR,
    ".m4b": BookFormat.M4B,
    ".m4a": BookFormat.M4A,
    ".mp3": BookFormat.MP3,
}

ACCEPTED_EXTENSIONS: frozenset[str] = frozenset(_EXTENSIONS)

_EPUB_MIMETYPE = b"application/epub"
_CHAPTERED_BRANDS = {b"M4B ", b"isom"}


def format_from_extension(filename: str) -> BookFormat | None:
    return _EXTENSIONS.get(PurePath(filename).suffix.lower())


def _sniff_zip(data: bytes) -> BookFormat | None:
    """Tell an EPUB from a comic archive by the first entry, then by listed images."""
    if len(data) >= 30:
        name_len, extra_len = struct.unpack_from("<HH", data, 26)
        name = data[30 : 30 + name_len]
        body_start = 30 + name_len + extra_len
        if name == b"mimetype" and data[body_start : body_start + len(_EPUB_MIMETYPE)] == _EPUB_MIMETYPE:
            return BookFormat.EPUB

    archive = open_zip(data)
    if archive is None:
        return None
    with archive:
        if any(is_image_name(n) for n in archive.namelist()):
            return BookFormat.CBZ
    return None


def _sniff_palm(data: bytes) -> BookFormat:
    """Read the MOBI header version from record 0 to separate KF8-only files."""
    try:
        (record0,) = struct.unpack_from(">I", data, 78)
        if data[record0 + 16 : record0 + 20] == b"MOBI":
            (version,) = struct.unpack_from(">I", data, record0 + 36)
            if version >= 8:
                return BookFormat.AZW3
    except struct.error:
        pass
    return BookFormat.MOBI


def sniff_bytes(data: bytes) -> BookFormat | None:
    """Classify raw bytes by magic signature alone.

    Deterministic and filename-independent. Returns None for bytes that
    match no known container; that outcome is final, not transient.
    """
    if data.startswith(b"%PDF"):
        return BookFormat.PDF
    if data.startswith(b"PK\x03\x04"):
        return _sniff_zip(data)
    if data.startswith(b"Rar!"):
        return BookFormat.CBR
    if data[60:68] == b"BOOKMOBI":
        return _sniff_palm(data)
    if data.startswith(b"ID3") or (len(data) >= 2 and data[0] == 0xFF and data[1] & 0xE0 == 0xE0):
        return BookFormat.MP3
    if data[4:8] == b"ftyp":
        return BookFormat.M4B if data[8:12] in _CHAPTERED_BRANDS else BookFormat.M4A
    return None


def detect_format(data: bytes, filename: str) -> BookFormat | None:
    """Determine an upload's format: recognized extension first, then magic bytes."""
    by_extension = format_from_extension(filename)
    if by_extension is not None:
        return by_extension
    sniffed = sniff_bytes(data)
    if sniffed is None:
        logger.debug("No format matched for %s", filename)
    return sniffed
