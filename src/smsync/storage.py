"""Local SQLite storage base class."""

import sqlite3
import threading
from pathlib import Path


class BaseStorage:
    """Base class for SQLite storage.

    One connection per instance, shared across threads and serialized by
    ``self.lock``. Subclasses hold the lock around every statement group that
    must be seen atomically by other threads.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None
        self.lock = threading.RLock()

    def connect(self) -> None:
        """Open database connection and create schema if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, timeout=30.0, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")  # readers don't block the writer
        with self.lock:
            self._create_schema()

    def disconnect(self) -> None:
        """Close database connection."""
        with self.lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if not self._conn:
            raise RuntimeError("Not connected")
        return self._conn

    def _create_schema(self) -> None:
        """Create database schema. Override in subclasses."""
        raise NotImplementedError

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.disconnect()
