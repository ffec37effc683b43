"""Per-thread overlay (pinned flag, custom sound) kept outside the message store."""

from dataclasses import dataclass

from .storage import BaseStorage


@dataclass
class PinMetadata:
    thread_id: int
    is_pinned: bool = False
    custom_sound_ref: str | None = None


class MetadataStore(BaseStorage):
    """SQLite storage for conversation metadata.

    A thread without a row has default metadata (unpinned, default sound).
    Rows may refer to threads that no longer exist in the message store.
    """

    def _create_schema(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS conversation_metadata (
                thread_id INTEGER PRIMARY KEY,
                is_pinned INTEGER NOT NULL DEFAULT 0,
                custom_sound_ref TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_metadata_pinned ON conversation_metadata(is_pinned);
        """)
        self.conn.commit()

    def get(self, thread_id: int) -> PinMetadata:
        with self.lock:
            row = self.conn.execute(
                "SELECT * FROM conversation_metadata WHERE thread_id = ?", (thread_id,)
            ).fetchone()
        if not row:
            return PinMetadata(thread_id)
        return PinMetadata(
            thread_id=row["thread_id"],
            is_pinned=bool(row["is_pinned"]),
            custom_sound_ref=row["custom_sound_ref"],
        )

    def pinned_thread_ids(self) -> set[int]:
        with self.lock:
            cur = self.conn.execute(
                "SELECT thread_id FROM conversation_metadata WHERE is_pinned = 1"
            )
            return {row["thread_id"] for row in cur}

    def set_pinned(self, thread_id: int, is_pinned: bool) -> None:
        with self.lock:
            self.conn.execute(
                """INSERT INTO conversation_metadata (thread_id, is_pinned)
                   VALUES (?, ?)
                   ON CONFLICT(thread_id) DO UPDATE SET
                       is_pinned = excluded.is_pinned,
                       updated_at = CURRENT_TIMESTAMP""",
                (thread_id, int(is_pinned))
            )
            self.conn.commit()

    def set_custom_sound(self, thread_id: int, sound_ref: str | None) -> None:
        with self.lock:
            self.conn.execute(
                """INSERT INTO conversation_metadata (thread_id, custom_sound_ref)
                   VALUES (?, ?)
                   ON CONFLICT(thread_id) DO UPDATE SET
                       custom_sound_ref = excluded.custom_sound_ref,
                       updated_at = CURRENT_TIMESTAMP""",
                (thread_id, sound_ref)
            )
            self.conn.commit()

    def remove(self, thread_id: int) -> bool:
        """Drop a thread's metadata. Returns True if it existed."""
        with self.lock:
            cur = self.conn.execute(
                "DELETE FROM conversation_metadata WHERE thread_id = ?", (thread_id,)
            )
            self.conn.commit()
            return cur.rowcount > 0
