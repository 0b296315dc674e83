# ABOUTME: Converts between ExtractedMetadata/BookRecord and SQLite row dictionaries.
# ABOUTME: Handles JSON serialization for list fields (authors, audio chapters).

import json
from dataclasses import asdict, dataclass
from typing import Any

from librarium.metadata.types import AudioChapter, ExtractedMetadata

# Metadata fields stored as plain columns on the books table
METADATA_COLUMNS: tuple[str, ...] = (
    "title",
    "subtitle",
    "authors",
    "publisher",
    "published_date",
    "description",
    "isbn",
    "isbn10",
    "isbn13",
    "language",
    "page_count",
    "duration",
    "narrator",
    "chapters",
)


@dataclass
class BookRecord:
    """A cataloged book: ExtractedMetadata plus storage and database fields."""

    id: str
    metadata: ExtractedMetadata
    file_path: str
    file_name: str
    file_size: int
    file_hash: str
    format: str
    mime_type: str | None
    cover_path: str | None
    cover_color: str | None
    converted_epub_path: str | None
    converted_epub_size: int | None
    date_added: str
    date_modified: str

    @property
    def title(self) -> str:
        return self.metadata.title or self.file_name


def chapters_to_json(chapters: list[AudioChapter]) -> str | None:
    if not chapters:
        return None
    return json.dumps([asdict(ch) for ch in chapters])


def chapters_from_json(raw: str | None) -> list[AudioChapter]:
    if not raw:
        return []
    return [AudioChapter(**entry) for entry in json.loads(raw)]


def metadata_to_columns(metadata: ExtractedMetadata, only: set[str] | None = None) -> dict[str, Any]:
    """Convert metadata to column values, serializing list fields.

    When ``only`` is given, just those metadata fields are emitted.
    """
    row: dict[str, Any] = {}
    for name in METADATA_COLUMNS:
        if only is not None and name not in only:
            continue
        value = getattr(metadata, name)
        if name == "authors":
            value = json.dumps(value) if value else None
        elif name == "chapters":
            value = chapters_to_json(value)
        row[name] = value
    return row


def metadata_to_row(
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
) -> dict[str, Any]:
    """Convert an ExtractedMetadata instance plus file facts to a dict suitable for INSERT."""
    row: dict[str, Any] = {
        "id": book_id,
        "file_path": file_path,
        "file_name": file_name,
        "file_size": file_size,
        "file_hash": file_hash,
        "format": book_format,
        "mime_type": mime_type,
        "cover_path": cover_path,
        "cover_color": cover_color,
    }
    row.update(metadata_to_columns(metadata))
    if not row.get("title"):
        row["title"] = file_name
    return row


def row_to_metadata(row: Any) -> ExtractedMetadata:
    """Convert a database row (dict-like) back to an ExtractedMetadata instance."""
    return ExtractedMetadata(
        title=row["title"],
        subtitle=row["subtitle"],
        authors=json.loads(row["authors"]) if row["authors"] else [],
        publisher=row["publisher"],
        description=row["description"],
        language=row["language"],
        isbn=row["isbn"],
        isbn10=row["isbn10"],
        isbn13=row["isbn13"],
        page_count=row["page_count"],
        published_date=row["published_date"],
        narrator=row["narrator"],
        duration=row["duration"],
        chapters=chapters_from_json(row["chapters"]),
    )


def row_to_record(row: Any) -> BookRecord:
    """Convert a full database row to a BookRecord with metadata and DB fields."""
    return BookRecord(
        id=row["id"],
        metadata=row_to_metadata(row),
        file_path=row["file_path"],
        file_name=row["file_name"],
        file_size=row["file_size"],
        file_hash=row["file_hash"],
        format=row["format"],
        mime_type=row["mime_type"],
        cover_path=row["cover_path"],
        cover_color=row["cover_color"],
        converted_epub_path=row["converted_epub_path"],
        converted_epub_size=row["converted_epub_size"],
        date_added=row["date_added"],
        date_modified=row["date_modified"],
    )
