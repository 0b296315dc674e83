# ABOUTME: Shared Click options and library session setup for Librarium CLI commands.
# ABOUTME: Resolves database and storage locations from flags, environment, or defaults.

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import click

from librarium.config import DEFAULT_DATA_DIR, DEFAULT_DB_PATH, PipelineSettings
from librarium.core.ingest import IngestionPipeline
from librarium.core.storage import LocalStorage
from librarium.db.catalog import LibraryCatalog
from librarium.db.connection import open_library

db_option = click.option(
    "--db",
    "db_path",
    type=click.Path(path_type=Path),
    default=None,
    envvar="LIBRARIUM_DB",
    help=f"Path to library database (default: {DEFAULT_DB_PATH})",
)

data_dir_option = click.option(
    "--data-dir",
    "data_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    envvar="LIBRARIUM_DATA_DIR",
    help=f"Directory for stored books and covers (default: {DEFAULT_DATA_DIR})",
)

ffmpeg_option = click.option(
    "--ffmpeg",
    "ffmpeg",
    default=None,
    envvar="LIBRARIUM_FFMPEG",
    help="ffmpeg executable used for audio merges (default: ffmpeg on PATH).",
)


@dataclass
class LibrarySession:
    conn: sqlite3.Connection
    catalog: LibraryCatalog
    storage: LocalStorage
    pipeline: IngestionPipeline
    settings: PipelineSettings


def resolve_paths(db_path: Path | None, data_dir: Path | None) -> tuple[Path, Path]:
    """Database and storage locations; the database lives in the data directory unless given."""
    root = data_dir or DEFAULT_DATA_DIR
    return db_path or root / "library.db", root / "files"


@contextmanager
def library_session(
    db_path: Path | None,
    data_dir: Path | None,
    settings: PipelineSettings | None = None,
) -> Iterator[LibrarySession]:
    """Open the library database and storage, closing the connection on exit."""
    database, files = resolve_paths(db_path, data_dir)
    settings = settings or PipelineSettings()
    conn = open_library(database)
    try:
        catalog = LibraryCatalog(conn)
        storage = LocalStorage(files)
        pipeline = IngestionPipeline(catalog, storage, settings=settings)
        yield LibrarySession(conn=conn, catalog=catalog, storage=storage, pipeline=pipeline, settings=settings)
    finally:
        conn.close()
