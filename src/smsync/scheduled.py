"""Messages scheduled for later delivery."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .jobs import JobRunner, Policy
from .logutil import get_logger
from .send import Sender, now_ms
from .storage import BaseStorage

log = get_logger(__name__)


class ScheduledStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


def job_tag(scheduled_id: int) -> str:
    return f"scheduled_sms_{scheduled_id}"


@dataclass
class ScheduledMessage:
    id: int
    thread_id: int
    address: str
    body: str
    scheduled_at: int  # ms
    status: ScheduledStatus = ScheduledStatus.PENDING
    message_id: int | None = None  # store row once handed to the sender

    @property
    def tag(self) -> str:
        return job_tag(self.id)


class ScheduledMessageStore(BaseStorage):
    """SQLite storage for scheduled messages."""

    def _create_schema(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS scheduled_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                thread_id INTEGER NOT NULL,
                address TEXT NOT NULL,
                body TEXT NOT NULL,
                scheduled_at INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                message_id INTEGER,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_scheduled_thread ON scheduled_messages(thread_id);
            CREATE INDEX IF NOT EXISTS idx_scheduled_status ON scheduled_messages(status, scheduled_at);
        """)
        self.conn.commit()

    @staticmethod
    def _from_row(row) -> ScheduledMessage:
        return ScheduledMessage(
            id=row["id"],
            thread_id=row["thread_id"],
            address=row["address"],
            body=row["body"],
            scheduled_at=row["scheduled_at"],
            status=ScheduledStatus(row["status"]),
            message_id=row["message_id"],
        )

    def add(self, thread_id: int, address: str, body: str, scheduled_at: int) -> ScheduledMessage:
        with self.lock:
            cur = self.conn.execute(
                """INSERT INTO scheduled_messages (thread_id, address, body, scheduled_at)
                   VALUES (?, ?, ?, ?)""",
                (thread_id, address, body, scheduled_at)
            )
            self.conn.commit()
            return ScheduledMessage(cur.lastrowid, thread_id, address, body, scheduled_at)

    def get(self, scheduled_id: int) -> ScheduledMessage | None:
        with self.lock:
            row = self.conn.execute(
                "SELECT * FROM scheduled_messages WHERE id = ?", (scheduled_id,)
            ).fetchone()
        return self._from_row(row) if row else None

    def pending(self) -> list[ScheduledMessage]:
        with self.lock:
            cur = self.conn.execute(
                "SELECT * FROM scheduled_messages WHERE status = 'pending' ORDER BY scheduled_at, id"
            )
            return [self._from_row(r) for r in cur]

    def list(self, thread_id: int | None = None) -> list[ScheduledMessage]:
        sql = "SELECT * FROM scheduled_messages"
        params: tuple = ()
        if thread_id is not None:
            sql += " WHERE thread_id = ?"
            params = (thread_id,)
        sql += " ORDER BY scheduled_at, id"
        with self.lock:
            return [self._from_row(r) for r in self.conn.execute(sql, params)]

    def set_status(
        self,
        scheduled_id: int,
        status: ScheduledStatus,
        message_id: int | None = None,
        expect: ScheduledStatus | None = ScheduledStatus.PENDING,
    ) -> bool:
        """Move a record to ``status``. Returns False if it wasn't in ``expect``."""
        sql = "UPDATE scheduled_messages SET status = ?, message_id = COALESCE(?, message_id) WHERE id = ?"
        params: list = [status.value, message_id, scheduled_id]
        if expect is not None:
            sql += " AND status = ?"
            params.append(expect.value)
        with self.lock:
            cur = self.conn.execute(sql, params)
            self.conn.commit()
            return cur.rowcount > 0


class ScheduledMessageRunner:
    """Hands scheduled messages to the sender when they fall due.

    Each pending record has one delayed job on the job runner, named and
    tagged ``scheduled_sms_<id>``.
    """

    def __init__(
        self,
        store: ScheduledMessageStore,
        sender: Sender,
        jobs: JobRunner,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.sender = sender
        self.jobs = jobs
        self.clock = clock

    def schedule(self, thread_id: int, address: str, body: str, at_ms: int) -> ScheduledMessage:
        if not body or not body.strip():
            raise ValueError("Message body is empty")
        if not address or not address.strip():
            raise ValueError("Address is empty")
        message = self.store.add(thread_id, address.strip(), body, at_ms)
        self._enqueue(message)
        log.info("Scheduled %s for %s", message.tag, at_ms)
        return message

    def _enqueue(self, message: ScheduledMessage) -> None:
        delay = max(0.0, (message.scheduled_at - self.clock()) / 1000)
        self.jobs.schedule_once(
            message.tag,
            lambda: self.run(message.id),
            Policy.REPLACE,
            delay=delay,
            tags=[message.tag],
        )

    def run(self, scheduled_id: int) -> bool:
        """Send a pending message now. Returns True if it was handed off."""
        message = self.store.get(scheduled_id)
        if message is None or message.status is not ScheduledStatus.PENDING:
            log.info("%s is not pending; skipping", job_tag(scheduled_id))
            return False
        try:
            message_id = self.sender.send(message.address, message.body)
        except Exception:
            log.exception("Scheduled send %s failed", message.tag)
            self.store.set_status(scheduled_id, ScheduledStatus.FAILED)
            return False
        return self.store.set_status(scheduled_id, ScheduledStatus.SENT, message_id)

    def run_due(self) -> int:
        """Send every pending message whose time has come. Returns the count sent."""
        now = self.clock()
        return sum(1 for m in self.store.pending() if m.scheduled_at <= now and self.run(m.id))

    def cancel(self, scheduled_id: int) -> bool:
        """Cancel a pending message. Returns False if it wasn't pending."""
        cancelled = self.store.set_status(scheduled_id, ScheduledStatus.CANCELLED)
        self.jobs.cancel(job_tag(scheduled_id))
        if cancelled:
            log.info("Cancelled %s", job_tag(scheduled_id))
        return cancelled

    def pending(self) -> list[ScheduledMessage]:
        return self.store.pending()

    def list(self, thread_id: int | None = None) -> list[ScheduledMessage]:
        return self.store.list(thread_id)

    def reschedule_pending(self) -> int:
        """Re-arm jobs for pending records (after a restart). Returns the count."""
        pending = self.store.pending()
        for message in pending:
            self._enqueue(message)
        return len(pending)
