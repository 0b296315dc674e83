# ABOUTME: Persistence for Librarium book records in the SQLite catalog.
# ABOUTME: Inserts, looks up, patches, and removes rows; a repeated file hash raises DuplicateBookError.

import json
import sqlite3
from typing import Any

from librarium.db.mapping import (
    BookRecord,
    chapters_to_json,
    metadata_to_columns,
    metadata_to_row,
    row_to_record,
)
from librarium.metadata.types import ExtractedMetadata

_TOUCH = "date_modified = strftime('%Y-%m-%dT%H:%M:%S', 'now')"


class DuplicateBookError(Exception):
    """A record with the same file hash is already cataloged."""

    def __init__(self, file_hash: str) -> None:
        super().__init__(f"Book with hash {file_hash} already exists")
        self.file_hash = file_hash


def _encode(fields: dict[str, Any]) -> dict[str, Any]:
    """Serialize list-valued columns the way the books table stores them."""
    encoded = dict(fields)
    if isinstance(encoded.get("authors"), list):
        encoded["authors"] = json.dumps(encoded["authors"]) if encoded["authors"] else None
    if isinstance(encoded.get("chapters"), list):
        encoded["chapters"] = chapters_to_json(encoded["chapters"])
    return encoded


class LibraryCatalog:
    """Typed access to the ``books`` table over a single connection.

    Every write commits immediately. Lookups return ``BookRecord`` objects or
    None; writes against an unknown id raise ValueError.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def add_book(
        self,
        book_id: str,
        metadata: ExtractedMetadata,
        *,
        file_path: str,
        file_name: str,
        file_size: int,
        file_hash: str,
        book_format: str,
        mime_type: str | None = None,
        cover_path: str | None = None,
        cover_color: str | None = None,
    ) -> str:
        """Insert a new record and return ``book_id``.

        ``file_path`` is relative to the storage root. When ``metadata`` has
        no title the original ``file_name`` is used.
        """
        row = metadata_to_row(
            book_id,
            metadata,
            file_path=file_path,
            file_name=file_name,
            file_size=file_size,
            file_hash=file_hash,
            book_format=book_format,
            mime_type=mime_type,
            cover_path=cover_path,
            cover_color=cover_color,
        )
        sql = "INSERT INTO books ({}) VALUES ({})".format(", ".join(row), ", ".join("?" * len(row)))
        try:
            with self._conn:
                self._conn.execute(sql, tuple(row.values()))
        except sqlite3.IntegrityError as exc:
            if "books.file_hash" in str(exc):
                raise DuplicateBookError(file_hash) from exc
            raise
        return book_id

    def get_by_id(self, book_id: str) -> BookRecord | None:
        return self._first("id", book_id)

    def get_by_hash(self, file_hash: str) -> BookRecord | None:
        return self._first("file_hash", file_hash)

    def list_all(self) -> list[BookRecord]:
        """Every record, ordered by title."""
        return [row_to_record(row) for row in self._conn.execute("SELECT * FROM books ORDER BY title")]

    def update_book(self, book_id: str, **fields: Any) -> None:
        """Set the given columns and bump ``date_modified``.

        Author and audio chapter lists are stored as JSON.
        """
        if not fields:
            return
        encoded = _encode(fields)
        assignments = ", ".join([*(f"{column} = ?" for column in encoded), _TOUCH])
        with self._conn:
            cursor = self._conn.execute(
                f"UPDATE books SET {assignments} WHERE id = ?", (*encoded.values(), book_id)
            )
        self._require_hit(cursor, book_id)

    def update_metadata(
        self,
        book_id: str,
        metadata: ExtractedMetadata,
        *,
        skip: set[str] | None = None,
    ) -> set[str]:
        """Copy the populated fields of ``metadata`` onto a record.

        Empty fields and fields named in ``skip`` are not written, so a
        stored value is never blanked. Returns the field names written.
        """
        columns = metadata_to_columns(metadata, only=metadata.populated_fields() - (skip or set()))
        if columns:
            self.update_book(book_id, **columns)
        return set(columns)

    def delete_book(self, book_id: str) -> None:
        with self._conn:
            cursor = self._conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        self._require_hit(cursor, book_id)

    def _first(self, column: str, value: str) -> BookRecord | None:
        row = self._conn.execute(f"SELECT * FROM books WHERE {column} = ?", (value,)).fetchone()
        return row_to_record(row) if row else None

    @staticmethod
    def _require_hit(cursor: sqlite3.Cursor, book_id: str) -> None:
        if cursor.rowcount == 0:
            raise ValueError(f"Book with id {book_id} not found")
