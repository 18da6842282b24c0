"""
SQLite access for the conversation store.

Every connection runs with a 5-second busy timeout and foreign keys on, so
the worker pool can write while the API reads. WAL is switched on once per
process; the mode persists in the database file.
"""

import logging
import sqlite3
from contextlib import contextmanager

from config import DB_PATH

logger = logging.getLogger(__name__)

_wal_initialized = False


def _connect(rows: bool) -> sqlite3.Connection:
    global _wal_initialized
    conn = sqlite3.connect(str(DB_PATH))
    if rows:
        conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.execute("PRAGMA foreign_keys = ON")
    if not _wal_initialized:
        mode = conn.execute("PRAGMA journal_mode = WAL").fetchone()
        logger.debug("SQLite journal mode for %s: %s", DB_PATH, mode[0] if mode else "?")
        _wal_initialized = True
    return conn


@contextmanager
def db_connection(rows: bool = False):
    """Yield a connection, closed on exit. rows=True returns sqlite3.Row results."""
    conn = _connect(rows)
    try:
        yield conn
    finally:
        conn.close()
