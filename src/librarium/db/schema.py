# ABOUTME: SQL DDL statements for the Librarium library database schema.
# ABOUTME: Defines the books table, FTS5 search tables, and versioned migrations.

SCHEMA_V1 = """
-- Core book catalog table; ids are generated by the ingest pipeline
CREATE TABLE books (
    id             TEXT PRIMARY KEY,
    file_path      TEXT NOT NULL,
    file_name      TEXT NOT NULL,
    file_size      INTEGER NOT NULL,
    file_hash      TEXT NOT NULL,
    mime_type      TEXT,
    format         TEXT NOT NULL,
    title          TEXT NOT NULL,
    subtitle       TEXT,
    authors        TEXT,
    publisher      TEXT,
    published_date TEXT,
    description    TEXT,
    isbn           TEXT,
    isbn10         TEXT,
    isbn13         TEXT,
    language       TEXT,
    page_count     INTEGER,
    cover_path     TEXT,
    cover_color    TEXT,
    duration       REAL,
    narrator       TEXT,
    chapters       TEXT,
    date_added     TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now')),
    date_modified  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now'))
);

CREATE UNIQUE INDEX idx_books_file_hash ON books(file_hash);
CREATE INDEX idx_books_isbn ON books(isbn) WHERE isbn IS NOT NULL;
CREATE INDEX idx_books_format ON books(format);

-- Metadata search index, written only by the search indexer
CREATE VIRTUAL TABLE books_fts USING fts5(
    book_id UNINDEXED, title, subtitle, authors, description
);

-- Chunked chapter text for full-text content search
CREATE VIRTUAL TABLE book_content_fts USING fts5(
    book_id UNINDEXED, chapter_index UNINDEXED, chapter_title, content
);

-- Schema versioning for future migrations
CREATE TABLE schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now'))
);

INSERT INTO schema_version (version) VALUES (1);
"""

MIGRATION_V2 = """
-- Converted-package tracking for legacy and fixed-layout books
ALTER TABLE books ADD COLUMN converted_epub_path TEXT;
ALTER TABLE books ADD COLUMN converted_epub_size INTEGER;

INSERT INTO schema_version (version) VALUES (2);
"""

MIGRATIONS: list[tuple[int, str]] = [
    (2, MIGRATION_V2),
]
