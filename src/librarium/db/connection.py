# ABOUTME: Opens the Librarium SQLite catalog and brings its schema up to date.
# ABOUTME: Fresh files get the base schema; older files are upgraded through the migration list.

import logging
import sqlite3
from pathlib import Path

from librarium.config import DEFAULT_DB_PATH
from librarium.db.schema import MIGRATIONS, SCHEMA_V1

logger = logging.getLogger(__name__)

_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    # Background indexing writes while the CLI reads
    "PRAGMA busy_timeout=5000",
)


def schema_version(conn: sqlite3.Connection) -> int:
    """Highest applied schema version, or 0 for an empty database file."""
    has_table = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if not has_table:
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] or 0


def upgrade_schema(conn: sqlite3.Connection) -> int:
    """Create or migrate the schema in place and return the resulting version.

    Safe to call repeatedly; migrations at or below the stored version are skipped.
    """
    version = schema_version(conn)
    if version == 0:
        conn.executescript(SCHEMA_V1)
        version = 1
    for target, script in MIGRATIONS:
        if target <= version:
            continue
        logger.info("Migrating library database to schema version %d", target)
        conn.executescript(script)
        version = target
    return version


def open_library(path: Path | None = None) -> sqlite3.Connection:
    """Connect to the catalog at ``path`` (default ``DEFAULT_DB_PATH``).

    Missing parent directories are created. Rows come back as ``sqlite3.Row``
    so callers can index columns by name.
    """
    target = path or DEFAULT_DB_PATH
    target.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(target))
    conn.row_factory = sqlite3.Row
    for pragma in _PRAGMAS:
        conn.execute(pragma)
    upgrade_schema(conn)
    return conn
