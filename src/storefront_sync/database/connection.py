"""SQLite connection management for the local cache."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path


class DatabaseConnection:
    """Opens one short-lived SQLite connection per unit of work.

    Connections are never shared, so the handle can be used from any
    worker thread. Foreign keys are switched on for every connection
    because SQLite leaves them off by default.
    """

    BUSY_TIMEOUT_SECONDS = 10.0

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def get_connection(self):
        """Yield a connection that commits on success or rolls back."""
        conn = sqlite3.connect(
            str(self.db_path), timeout=self.BUSY_TIMEOUT_SECONDS
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def execute(self, sql: str, params: tuple = ()):
        """Run a single statement and return all rows."""
        with self.get_connection() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()
