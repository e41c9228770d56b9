"""SQLite connection for the knowledge base.

Every connection has the sqlite-vec functions (``vec_distance_cosine`` and
friends) loaded, foreign keys enforced and WAL journaling on.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

# Milliseconds a writer waits on a locked database before failing.
BUSY_TIMEOUT_MS = 5_000


class Database:
    """Opens connections to one knowledge base file.

    Usable directly via :meth:`connect`, or as a context manager that closes
    the connection on exit.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Return a new configured connection; the file is created if missing.

        ``check_same_thread`` is off because embedding workers share the
        connection. Callers serialise statements on it.
        """
        conn = sqlite3.connect(
            self.db_path, check_same_thread=False, timeout=BUSY_TIMEOUT_MS / 1000
        )
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        try:
            sqlite_vec.load(conn)
        finally:
            conn.enable_load_extension(False)
        for pragma in (
            "PRAGMA foreign_keys = ON",
            "PRAGMA journal_mode = WAL",
            f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}",
        ):
            conn.execute(pragma)
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
