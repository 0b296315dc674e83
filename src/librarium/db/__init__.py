# ABOUTME: Public API for the Librarium library database layer.
# ABOUTME: Exports connection management, catalog operations, and data types.

from librarium.config import DEFAULT_DB_PATH
from librarium.db.catalog import DuplicateBookError, LibraryCatalog
from librarium.db.connection import open_library
from librarium.db.hashing import compute_file_hash, compute_hash
from librarium.db.mapping import BookRecord

__all__ = [
    "DEFAULT_DB_PATH",
    "BookRecord",
    "DuplicateBookError",
    "LibraryCatalog",
    "compute_file_hash",
    "compute_hash",
    "open_library",
]
