"""External message store.

The store is owned by someone else (the platform's SMS/MMS provider); this
module defines the interface the engine uses and an SQLite implementation
of it. Every write fires a change notification; ``ProviderWatcher`` turns
writes made through other connections (other processes) into
notifications too.
"""

import re
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Protocol

from .errors import SourceUnavailable
from .events import Listeners, Subscription
from .logutil import get_logger
from .rows import ADDRESS_TOKEN, SECONDS_THRESHOLD

log = get_logger(__name__)

SMS = "sms"
MMS = "mms"
MMS_PART = "mms_part"
MMS_ADDR = "mms_addr"
TABLES = (SMS, MMS, MMS_PART, MMS_ADDR)

# mms_addr.type values
ADDR_FROM = 137
ADDR_TO = 151

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_ORDER = re.compile(
    r"^\s*[A-Za-z_][A-Za-z0-9_]*(\s+(ASC|DESC))?"
    r"(\s*,\s*[A-Za-z_][A-Za-z0-9_]*(\s+(ASC|DESC))?)*\s*$",
    re.IGNORECASE,
)

# Sort key in milliseconds; order clauses may name it as if it were a column.
NORMALIZED_DATE = "normalized_date"
_NORMALIZED_EXPR = {
    MMS: f"(CASE WHEN date < {SECONDS_THRESHOLD} THEN date * 1000 ELSE date END)",
}

Where = Mapping[str, Any]
Target = int | Where


@dataclass(frozen=True)
class Change:
    """A write to the store.

    thread_ids is None when the writer could not tell which threads were
    affected; listeners must then assume any thread changed.
    """
    table: str | None
    thread_ids: frozenset[int] | None = None

    def affects(self, thread_id: int) -> bool:
        return self.thread_ids is None or thread_id in self.thread_ids


class MessageProvider(Protocol):
    """Interface of the external message store."""

    def query(
        self,
        table: str,
        where: Where | None = None,
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict]:
        ...

    def insert(self, table: str, fields: Mapping[str, Any]) -> int:
        ...

    def update(self, table: str, target: Target, fields: Mapping[str, Any]) -> int:
        ...

    def delete(self, table: str, target: Target) -> int:
        ...

    def subscribe(self, on_change: Callable[[Change], None]) -> Subscription:
        ...

    def thread_id_for(self, addresses: Iterable[str]) -> int:
        ...

    def query_thread(self, thread_id: int, limit: int, offset: int = 0) -> list[dict]:
        ...

    def parts(self, mms_id: int) -> list[dict]:
        ...

    def recipients(self, mms_id: int) -> list[str]:
        ...

    def insert_mms(
        self,
        thread_id: int,
        date: int,
        addresses: Iterable[tuple[str, int]],
        parts: Iterable[Mapping[str, Any]],
        subject: str | None = None,
        status: str = "received",
        read: bool = False,
    ) -> int:
        ...


def _check_table(table: str) -> str:
    if table not in TABLES:
        raise ValueError(f"Unknown table: {table}")
    return table


def _where_clause(target: Target) -> tuple[str, list]:
    if isinstance(target, int):
        return "_id = ?", [target]
    clauses = []
    params: list = []
    for column, value in target.items():
        if not _IDENT.match(column):
            raise ValueError(f"Invalid column: {column}")
        if value is None:
            clauses.append(f"{column} IS NULL")
        else:
            clauses.append(f"{column} = ?")
            params.append(value)
    return (" AND ".join(clauses) or "1=1"), params


class SqliteProvider:
    """Message store in a single SQLite file.

    Tables:
    - sms: text messages, dates in milliseconds
    - mms: multimedia messages, dates in seconds
    - mms_part: parts of a multimedia message (text, image refs)
    - mms_addr: participants of a multimedia message
    - threads: participant set -> thread id
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._listeners: Listeners[Change] = Listeners("provider")

    def connect(self) -> None:
        """Open database connection and create schema if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, timeout=30.0, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()

    def disconnect(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if not self._conn:
            raise RuntimeError("Not connected")
        return self._conn

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.disconnect()

    def _create_schema(self) -> None:
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS threads (
                    _id INTEGER PRIMARY KEY,
                    recipients TEXT UNIQUE NOT NULL
                );

                CREATE TABLE IF NOT EXISTS sms (
                    _id INTEGER PRIMARY KEY AUTOINCREMENT,
                    thread_id INTEGER NOT NULL,
                    address TEXT,
                    body TEXT,
                    date INTEGER NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'received'
                );

                CREATE INDEX IF NOT EXISTS idx_sms_thread ON sms(thread_id, date);
                CREATE INDEX IF NOT EXISTS idx_sms_date ON sms(date);

                CREATE TABLE IF NOT EXISTS mms (
                    _id INTEGER PRIMARY KEY AUTOINCREMENT,
                    thread_id INTEGER NOT NULL,
                    date INTEGER NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0,
                    subject TEXT,
                    status TEXT NOT NULL DEFAULT 'received'
                );

                CREATE INDEX IF NOT EXISTS idx_mms_thread ON mms(thread_id, date);
                CREATE INDEX IF NOT EXISTS idx_mms_date ON mms(date);

                CREATE TABLE IF NOT EXISTS mms_part (
                    _id INTEGER PRIMARY KEY,
                    mid INTEGER NOT NULL,
                    ct TEXT,
                    text TEXT,
                    ref TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_mms_part_mid ON mms_part(mid);

                CREATE TABLE IF NOT EXISTS mms_addr (
                    _id INTEGER PRIMARY KEY,
                    mid INTEGER NOT NULL,
                    address TEXT,
                    type INTEGER
                );

                CREATE INDEX IF NOT EXISTS idx_mms_addr_mid ON mms_addr(mid);
            """)
            self.conn.commit()

    # ---------------- notifications ----------------

    def subscribe(self, on_change: Callable[[Change], None]) -> Subscription:
        """Register for change notifications. Close the handle to stop."""
        return self._listeners.subscribe(on_change)

    def notify_change(self, change: Change) -> None:
        self._listeners.emit(change)

    def data_version(self) -> int:
        """SQLite data_version; changes when another connection commits."""
        with self._lock:
            try:
                return int(self.conn.execute("PRAGMA data_version").fetchone()[0])
            except sqlite3.Error as e:
                raise SourceUnavailable("data_version", cause=e) from e

    # ---------------- generic CRUD ----------------

    def query(
        self,
        table: str,
        where: Where | None = None,
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict]:
        """Query rows of a table with equality filters.

        ``order`` names plain columns, or ``normalized_date`` for the date in
        milliseconds whatever unit the row stored it in.
        """
        _check_table(table)
        clause, params = _where_clause(where or {})
        sql = f"SELECT * FROM {table} WHERE {clause}"
        if order:
            if not _ORDER.match(order):
                raise ValueError(f"Invalid order: {order}")
            order = re.sub(rf"\b{NORMALIZED_DATE}\b", _NORMALIZED_EXPR.get(table, "date"), order)
            sql += f" ORDER BY {order}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
            if offset:
                sql += " OFFSET ?"
                params.append(int(offset))
        elif offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(int(offset))
        with self._lock:
            try:
                return [dict(row) for row in self.conn.execute(sql, params)]
            except sqlite3.Error as e:
                raise SourceUnavailable("query", table, e) from e

    def insert(self, table: str, fields: Mapping[str, Any]) -> int:
        """Insert a row. Returns its _id."""
        _check_table(table)
        columns = list(fields)
        for column in columns:
            if not _IDENT.match(column):
                raise ValueError(f"Invalid column: {column}")
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        with self._lock:
            try:
                cur = self.conn.execute(sql, [fields[c] for c in columns])
                self.conn.commit()
                row_id = cur.lastrowid
            except sqlite3.Error as e:
                self.conn.rollback()
                raise SourceUnavailable("insert", table, e) from e
        thread_id = fields.get("thread_id")
        self.notify_change(Change(table, frozenset({int(thread_id)}) if thread_id is not None else None))
        return int(row_id)

    def update(self, table: str, target: Target, fields: Mapping[str, Any]) -> int:
        """Update rows by id or equality filter. Returns rows changed."""
        _check_table(table)
        if not fields:
            return 0
        for column in fields:
            if not _IDENT.match(column):
                raise ValueError(f"Invalid column: {column}")
        clause, params = _where_clause(target)
        assignments = ", ".join(f"{c} = ?" for c in fields)
        sql = f"UPDATE {table} SET {assignments} WHERE {clause}"
        with self._lock:
            try:
                threads = self._threads_for(table, clause, params)
                cur = self.conn.execute(sql, list(fields.values()) + params)
                self.conn.commit()
                count = cur.rowcount
            except sqlite3.Error as e:
                self.conn.rollback()
                raise SourceUnavailable("update", table, e) from e
        if count:
            self.notify_change(Change(table, threads))
        return count

    def delete(self, table: str, target: Target) -> int:
        """Delete rows by id or equality filter. Returns rows deleted.

        Deleting multimedia messages also deletes their parts and addresses.
        """
        _check_table(table)
        clause, params = _where_clause(target)
        with self._lock:
            try:
                threads = self._threads_for(table, clause, params)
                if table == MMS:
                    mids = [r[0] for r in self.conn.execute(f"SELECT _id FROM mms WHERE {clause}", params)]
                    for mid in mids:
                        self.conn.execute("DELETE FROM mms_part WHERE mid = ?", (mid,))
                        self.conn.execute("DELETE FROM mms_addr WHERE mid = ?", (mid,))
                cur = self.conn.execute(f"DELETE FROM {table} WHERE {clause}", params)
                self.conn.commit()
                count = cur.rowcount
            except sqlite3.Error as e:
                self.conn.rollback()
                raise SourceUnavailable("delete", table, e) from e
        if count:
            self.notify_change(Change(table, threads))
        return count

    def _threads_for(self, table: str, clause: str, params: list) -> frozenset[int] | None:
        if table not in (SMS, MMS):
            return None
        rows = self.conn.execute(f"SELECT DISTINCT thread_id FROM {table} WHERE {clause}", params)
        return frozenset(int(r[0]) for r in rows)

    # ---------------- threads ----------------

    def thread_id_for(self, addresses: Iterable[str]) -> int:
        """Get or create the thread id for a set of participants."""
        key = ";".join(sorted({a.strip() for a in addresses if a and a.strip()}))
        if not key:
            raise ValueError("No addresses")
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT _id FROM threads WHERE recipients = ?", (key,)
                ).fetchone()
                if row:
                    return int(row[0])
                cur = self.conn.execute("INSERT INTO threads (recipients) VALUES (?)", (key,))
                self.conn.commit()
                return int(cur.lastrowid)
            except sqlite3.Error as e:
                self.conn.rollback()
                raise SourceUnavailable("thread_id_for", "threads", e) from e

    def query_thread(self, thread_id: int, limit: int, offset: int = 0) -> list[dict]:
        """Rows of both tables for a thread, newest first.

        Each row has a transport_type column ('sms' or 'mms') and a
        normalized_date in milliseconds. Ties are broken by transport type
        and id so that offsets address a stable total order.
        """
        sql = f"""
            SELECT * FROM (
                SELECT 'sms' AS transport_type, _id, thread_id, address, body,
                       NULL AS subject, date, read, status, date AS normalized_date
                FROM sms WHERE thread_id = ?
                UNION ALL
                SELECT 'mms' AS transport_type, _id, thread_id, NULL AS address, NULL AS body,
                       subject, date, read, status,
                       {_NORMALIZED_EXPR[MMS]} AS normalized_date
                FROM mms WHERE thread_id = ?
            )
            ORDER BY normalized_date DESC, transport_type DESC, _id DESC
            LIMIT ? OFFSET ?
        """
        with self._lock:
            try:
                cur = self.conn.execute(sql, (thread_id, thread_id, int(limit), int(offset)))
                return [dict(row) for row in cur]
            except sqlite3.Error as e:
                raise SourceUnavailable("query_thread", "sms+mms", e) from e

    # ---------------- multimedia helpers ----------------

    def parts(self, mms_id: int) -> list[dict]:
        return self.query(MMS_PART, {"mid": mms_id}, order="_id")

    def recipients(self, mms_id: int) -> list[str]:
        """Participant addresses of a multimedia message, in row order."""
        seen = []
        for row in self.query(MMS_ADDR, {"mid": mms_id}, order="_id"):
            address = (row.get("address") or "").strip()
            if address and ADDRESS_TOKEN not in address and address not in seen:
                seen.append(address)
        return seen

    def insert_mms(
        self,
        thread_id: int,
        date: int,
        addresses: Iterable[tuple[str, int]],
        parts: Iterable[Mapping[str, Any]],
        subject: str | None = None,
        status: str = "received",
        read: bool = False,
    ) -> int:
        """Insert a multimedia message with its parts and addresses in one commit."""
        with self._lock:
            try:
                cur = self.conn.execute(
                    "INSERT INTO mms (thread_id, date, read, subject, status) VALUES (?, ?, ?, ?, ?)",
                    (thread_id, date, int(read), subject, status),
                )
                mid = int(cur.lastrowid)
                for address, addr_type in addresses:
                    self.conn.execute(
                        "INSERT INTO mms_addr (mid, address, type) VALUES (?, ?, ?)",
                        (mid, address, addr_type),
                    )
                for part in parts:
                    self.conn.execute(
                        "INSERT INTO mms_part (mid, ct, text, ref) VALUES (?, ?, ?, ?)",
                        (mid, part.get("ct"), part.get("text"), part.get("ref")),
                    )
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise SourceUnavailable("insert", MMS, e) from e
        self.notify_change(Change(MMS, frozenset({thread_id})))
        return mid


class ProviderWatcher:
    """Polls the store for commits made by other connections.

    Owns a background thread between start() and stop(); each detected
    change is forwarded to the provider's listeners.
    """

    def __init__(self, provider: SqliteProvider, interval: float = 2.0):
        self.provider = provider
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="smsync-watcher", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=self.interval + 5)
            self._thread = None

    def poll_once(self, last: int | None) -> int | None:
        """Check once; notify if the version moved. Returns the new version."""
        try:
            version = self.provider.data_version()
        except SourceUnavailable as e:
            log.warning("Watcher poll failed: %s", e)
            return last
        if last is not None and version != last:
            log.debug("External write detected (data_version %s -> %s)", last, version)
            self.provider.notify_change(Change(None))
        return version

    def _loop(self) -> None:
        log.info("Watching %s every %ss", self.provider.path, self.interval)
        last = self.poll_once(None)
        while not self._stop.wait(self.interval):
            last = self.poll_once(last)
