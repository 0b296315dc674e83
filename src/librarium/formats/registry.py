# ABOUTME: Maps a canonical format tag to the extractor adapter that handles it.
# ABOUTME: The single dispatch point used by ingestion, conversion, and the CLI.

from librarium.formats.audio import AudioExtractor
from librarium.formats.base import BaseExtractor
from librarium.formats.comic import CbrExtractor, CbzExtractor
from librarium.formats.epub import EpubExtractor
from librarium.formats.legacy import LegacyExtractor
from librarium.formats.pdf import PdfExtractor
from librarium.formats.sniffer import BookFormat

_EXTRACTORS: dict[BookFormat, type[BaseExtractor]] = {
    BookFormat.EPUB: EpubExtractor,
    BookFormat.MOBI: LegacyExtractor,
    BookFormat.AZW3: LegacyExtractor,
    BookFormat.PDF: PdfExtractor,
    BookFormat.CBZ: CbzExtractor,
    BookFormat.CBR: CbrExtractor,
    BookFormat.M4B: AudioExtractor,
    BookFormat.M4A: AudioExtractor,
    BookFormat.MP3: AudioExtractor,
}


def get_extractor(book_format: BookFormat, data: bytes) -> BaseExtractor:
    """Build the extractor for ``book_format`` over ``data``.

    Raises:
        ValueError: If no adapter is registered for the format.
    """
    try:
        extractor_cls = _EXTRACTORS[BookFormat(book_format)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"No extractor for format {book_format!r}") from exc
    return extractor_cls(data)
