# ABOUTME: Comic archive extraction for CBZ (zipfile) and CBR (rarfile) containers.
# ABOUTME: Pages are image entries in natural filename order; the first page is the cover.

import io
import logging
import mimetypes
import re
import zipfile
from dataclasses import dataclass

import rarfile

from librarium.formats.archive import is_image_name, open_zip
from librarium.formats.base import BaseExtractor
from librarium.metadata.types import ExtractedMetadata

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"(\d+)")


def natural_key(name: str) -> list:
    """Sort key that orders embedded numbers numerically ("page2" before "page10")."""
    return [int(part) if part.isdigit() else part.lower() for part in _DIGITS_RE.split(name)]


@dataclass
class ComicPage:
    index: int
    name: str
    data: bytes
    mime_type: str


def _page_mime_type(name: str) -> str:
    guessed, _ = mimetypes.guess_type(name)
    return guessed or "image/jpeg"


class ComicExtractor(BaseExtractor):
    """Shared behaviour for image-sequence archives. Comics carry no textual metadata."""

    def _image_names(self) -> list[str]:
        raise NotImplementedError

    def _read_entry(self, name: str) -> bytes:
        raise NotImplementedError

    def page_names(self) -> list[str]:
        return sorted(self._image_names(), key=natural_key)

    @property
    def page_count(self) -> int:
        return len(self.page_names())

    def get_page(self, index: int) -> ComicPage | None:
        names = self.page_names()
        if not 0 <= index < len(names):
            return None
        name = names[index]
        return ComicPage(index=index, name=name, data=self._read_entry(name), mime_type=_page_mime_type(name))

    def metadata(self) -> ExtractedMetadata:
        count = self.page_count
        return ExtractedMetadata(page_count=count or None)

    def cover(self) -> bytes | None:
        try:
            page = self.get_page(0)
        except (rarfile.Error, zipfile.BadZipFile, OSError, KeyError, ValueError) as exc:
            logger.debug("Comic cover page unreadable: %s", exc)
            return None
        return page.data if page else None


class CbzExtractor(ComicExtractor):
    """Comic archive stored as ZIP."""

    def _image_names(self) -> list[str]:
        archive = open_zip(self._data)
        if archive is None:
            logger.debug("CBZ is not a readable ZIP archive")
            return []
        with archive:
            return [info.filename for info in archive.infolist() if not info.is_dir() and is_image_name(info.filename)]

    def _read_entry(self, name: str) -> bytes:
        archive = open_zip(self._data)
        if archive is None:
            raise ValueError("CBZ is not a readable ZIP archive")
        with archive:
            return archive.read(name)


class CbrExtractor(ComicExtractor):
    """Comic archive stored as RAR. Reading page data needs an unrar backend."""

    def _open(self) -> rarfile.RarFile | None:
        try:
            return rarfile.RarFile(io.BytesIO(self._data))
        except (rarfile.Error, OSError) as exc:
            logger.debug("CBR is not a readable RAR archive: %s", exc)
            return None

    def _image_names(self) -> list[str]:
        archive = self._open()
        if archive is None:
            return []
        with archive:
            return [info.filename for info in archive.infolist() if not info.is_dir() and is_image_name(info.filename)]

    def _read_entry(self, name: str) -> bytes:
        archive = self._open()
        if archive is None:
            raise ValueError("CBR is not a readable RAR archive")
        with archive:
            return archive.read(name)
