# ABOUTME: Search index interface plus an SQLite FTS5 implementation and the content indexer.
# ABOUTME: The ingest pipeline is the only producer; queries exist for the CLI and tests.

import logging
import sqlite3
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from librarium.metadata.types import ExtractedContent
from librarium.search.chunking import DEFAULT_CHUNK_SIZE, chunk_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentChunk:
    chapter_index: int
    chapter_title: str
    text: str


@runtime_checkable
class SearchIndex(Protocol):
    """The external full-text index as seen by the pipeline."""

    def index_metadata(
        self,
        book_id: str,
        title: str,
        subtitle: str | None,
        authors: list[str],
        description: str | None,
    ) -> None: ...

    def index_content(self, book_id: str, chunks: list[ContentChunk]) -> None: ...

    def remove_index(self, book_id: str) -> None: ...


class SqliteSearchIndex:
    """SearchIndex backed by the books_fts and book_content_fts tables."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def index_metadata(
        self,
        book_id: str,
        title: str,
        subtitle: str | None,
        authors: list[str],
        description: str | None,
    ) -> None:
        """Replace the metadata row for a book."""
        self._conn.execute("DELETE FROM books_fts WHERE book_id = ?", (book_id,))
        self._conn.execute(
            "INSERT INTO books_fts (book_id, title, subtitle, authors, description) VALUES (?, ?, ?, ?, ?)",
            (book_id, title, subtitle or "", ", ".join(authors), description or ""),
        )
        self._conn.commit()

    def index_content(self, book_id: str, chunks: list[ContentChunk]) -> None:
        """Replace all content chunks for a book."""
        self._conn.execute("DELETE FROM book_content_fts WHERE book_id = ?", (book_id,))
        self._conn.executemany(
            "INSERT INTO book_content_fts (book_id, chapter_index, chapter_title, content) VALUES (?, ?, ?, ?)",
            [(book_id, c.chapter_index, c.chapter_title, c.text) for c in chunks],
        )
        self._conn.commit()

    def remove_index(self, book_id: str) -> None:
        self._conn.execute("DELETE FROM book_content_fts WHERE book_id = ?", (book_id,))
        self._conn.execute("DELETE FROM books_fts WHERE book_id = ?", (book_id,))
        self._conn.commit()

    def search_metadata(self, query: str) -> list[str]:
        """Book ids whose metadata matches an FTS5 query, best match first."""
        cursor = self._conn.execute(
            "SELECT book_id FROM books_fts WHERE books_fts MATCH ? ORDER BY rank",
            (query,),
        )
        return [row[0] for row in cursor.fetchall()]

    def search_content(self, query: str) -> list[tuple[str, int, str]]:
        """(book_id, chapter_index, chapter_title) for content chunks matching a query."""
        cursor = self._conn.execute(
            "SELECT book_id, chapter_index, chapter_title FROM book_content_fts "
            "WHERE book_content_fts MATCH ? ORDER BY rank",
            (query,),
        )
        return [(row[0], int(row[1]), row[2]) for row in cursor.fetchall()]

    def count_chunks(self, book_id: str) -> int:
        cursor = self._conn.execute("SELECT COUNT(*) FROM book_content_fts WHERE book_id = ?", (book_id,))
        return cursor.fetchone()[0]


class ContentIndexer:
    """Turns extracted content into chunks and hands them to a SearchIndex."""

    def __init__(self, index: SearchIndex, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._index = index
        self._chunk_size = chunk_size

    def build_chunks(self, content: ExtractedContent) -> list[ContentChunk]:
        """Chunk every chapter; content without chapters is chunked as one untitled chapter."""
        chunks: list[ContentChunk] = []
        if content.chapters:
            for chapter in content.chapters:
                for piece in chunk_text(chapter.text, self._chunk_size):
                    chunks.append(ContentChunk(chapter.index, chapter.title, piece))
        elif content.full_text:
            for piece in chunk_text(content.full_text, self._chunk_size):
                chunks.append(ContentChunk(0, "", piece))
        return chunks

    def index_book(self, book_id: str, content: ExtractedContent) -> int:
        """Index a book's content. Returns the number of chunks written."""
        chunks = self.build_chunks(content)
        if chunks:
            self._index.index_content(book_id, chunks)
        logger.debug("Indexed %d content chunks for %s", len(chunks), book_id)
        return len(chunks)
