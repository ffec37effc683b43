"""Local conversation cache: the last merge result, replaced whole."""

import threading
from typing import Callable, Iterator

from .events import Listeners, Subscription
from .logutil import get_logger
from .merge import Conversation
from .storage import BaseStorage

log = get_logger(__name__)


class ConversationCache(BaseStorage):
    """SQLite copy of the merged conversation list.

    ``replace`` is the only write. It swaps the whole list and bumps the
    generation in one transaction under the storage lock, so readers see
    either the previous list or the new one.
    """

    def __init__(self, path):
        super().__init__(path)
        self._published = threading.Condition()
        self._listeners: Listeners[list[Conversation]] = Listeners("cache")

    def _create_schema(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS local_conversations (
                position INTEGER PRIMARY KEY,
                thread_id INTEGER NOT NULL UNIQUE,
                raw_address TEXT NOT NULL,
                display_name TEXT NOT NULL,
                photo_ref TEXT,
                snippet TEXT NOT NULL,
                last_activity_at INTEGER NOT NULL,
                is_read INTEGER NOT NULL,
                is_pinned INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS cache_meta (
                key TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            );
        """)
        self.conn.commit()

    def generation(self) -> int:
        """Number of replaces so far (0 = never written)."""
        with self.lock:
            row = self.conn.execute(
                "SELECT value FROM cache_meta WHERE key = 'generation'"
            ).fetchone()
        return int(row["value"]) if row else 0

    def replace(self, conversations: list[Conversation]) -> int:
        """Swap in a new list. Returns the new generation number."""
        with self.lock:
            try:
                self.conn.execute("DELETE FROM local_conversations")
                self.conn.executemany(
                    """INSERT INTO local_conversations
                       (position, thread_id, raw_address, display_name, photo_ref,
                        snippet, last_activity_at, is_read, is_pinned)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    [
                        (
                            i, c.thread_id, c.raw_address, c.display_name, c.photo_ref,
                            c.snippet, c.last_activity_at, int(c.is_read), int(c.is_pinned),
                        )
                        for i, c in enumerate(conversations)
                    ],
                )
                self.conn.execute(
                    """INSERT INTO cache_meta (key, value) VALUES ('generation', 1)
                       ON CONFLICT(key) DO UPDATE SET value = value + 1"""
                )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
            row = self.conn.execute(
                "SELECT value FROM cache_meta WHERE key = 'generation'"
            ).fetchone()
            generation = int(row["value"])

        log.debug("Cache generation %d: %d conversations", generation, len(conversations))
        with self._published:
            self._published.notify_all()
        self._listeners.emit(list(conversations))
        return generation

    def _read(self) -> tuple[int, list[Conversation]]:
        with self.lock:
            row = self.conn.execute(
                "SELECT value FROM cache_meta WHERE key = 'generation'"
            ).fetchone()
            rows = self.conn.execute(
                "SELECT * FROM local_conversations ORDER BY position"
            ).fetchall()
        generation = int(row["value"]) if row else 0
        return generation, [
            Conversation(
                thread_id=r["thread_id"],
                raw_address=r["raw_address"],
                display_name=r["display_name"],
                photo_ref=r["photo_ref"],
                snippet=r["snippet"],
                last_activity_at=r["last_activity_at"],
                is_read=bool(r["is_read"]),
                is_pinned=bool(r["is_pinned"]),
            )
            for r in rows
        ]

    def read_all(self) -> list[Conversation]:
        """Current generation, in merge order."""
        return self._read()[1]

    def snapshot(self) -> tuple[int, list[Conversation]]:
        """Current generation number and list, read together."""
        return self._read()

    def get(self, thread_id: int) -> Conversation | None:
        for conversation in self.read_all():
            if conversation.thread_id == thread_id:
                return conversation
        return None

    def subscribe(self, callback: Callable[[list[Conversation]], None]) -> Subscription:
        """Call back with each newly published list."""
        return self._listeners.subscribe(callback)

    def read_stream(
        self,
        timeout: float | None = None,
        stop: threading.Event | None = None,
    ) -> Iterator[list[Conversation]]:
        """Yield the current list, then each new generation as it lands.

        Ends when no new generation arrives within ``timeout`` seconds, or
        when ``stop`` is set. Generations replaced faster than the consumer
        reads are skipped; the latest is always delivered.
        """
        generation, conversations = self._read()
        yield conversations
        while stop is None or not stop.is_set():
            with self._published:
                current = self.generation()
                if current == generation:
                    if not self._published.wait(timeout):
                        return
            current, conversations = self._read()
            if current != generation:
                generation = current
                yield conversations
