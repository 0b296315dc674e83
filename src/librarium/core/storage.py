# ABOUTME: Blob storage for uploaded books, covers, and converted packages.
# ABOUTME: Persisted paths are always relative to the storage root.

import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class BookStorage(Protocol):
    """Where the pipeline puts bytes. Callers only ever hold relative paths."""

    def store(self, data: bytes, book_id: str, extension: str) -> str: ...

    def store_cover(self, data: bytes, book_id: str) -> str: ...

    def store_converted(self, data: bytes, book_id: str) -> str: ...

    def delete(self, path: str) -> bool: ...

    def resolve(self, path: str) -> Path: ...


class LocalStorage:
    """BookStorage on the local filesystem.

    Layout under ``root``: ``books/<id>.<ext>``, ``covers/<id>.jpg`` and
    ``converted/<id>.epub``.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def _write(self, relative: str, data: bytes) -> str:
        target = self.resolve(relative)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return relative

    def store(self, data: bytes, book_id: str, extension: str) -> str:
        return self._write(f"books/{book_id}.{extension.lstrip('.')}", data)

    def store_cover(self, data: bytes, book_id: str) -> str:
        return self._write(f"covers/{book_id}.jpg", data)

    def store_converted(self, data: bytes, book_id: str) -> str:
        return self._write(f"converted/{book_id}.epub", data)

    def delete(self, path: str) -> bool:
        target = self.resolve(path)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True

    def resolve(self, path: str) -> Path:
        """Absolute location of a stored relative path.

        Raises:
            ValueError: If the path is absolute or escapes the storage root.
        """
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Storage paths must be relative to the root: {path}")
        return self._root.joinpath(*relative.parts)
