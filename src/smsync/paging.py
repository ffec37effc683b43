"""Offset-keyed pages of one thread's messages, read straight from the store."""

import threading
from dataclasses import dataclass, field
from typing import Callable

from .errors import MalformedRecord, SourceUnavailable
from .events import Listeners, Subscription
from .logutil import get_logger
from .provider import MMS, Change, MessageProvider
from .rows import Message, extract_content, mms_row, text_row, to_message

log = get_logger(__name__)

DEFAULT_PAGE_SIZE = 30


@dataclass
class Page:
    items: list[Message]
    prev_key: int | None
    next_key: int | None


@dataclass
class LoadError:
    """The store failed; the caller may retry with a fresh source."""
    error: Exception


@dataclass
class Invalid:
    """The source was invalidated by a store change; create a new one."""
    reason: str = field(default="invalidated")


LoadResult = Page | LoadError | Invalid


class MessagePagingSource:
    """Pages over one thread, newest first, across both tables.

    Keys are row offsets into the thread's total order (normalized time,
    then table, then id, all descending). Once invalidated, every load
    returns ``Invalid``.
    """

    def __init__(self, provider: MessageProvider, thread_id: int):
        self.provider = provider
        self.thread_id = thread_id
        self._invalid = threading.Event()
        self._listeners: Listeners[MessagePagingSource] = Listeners("paging")

    @property
    def invalid(self) -> bool:
        return self._invalid.is_set()

    def invalidate(self) -> None:
        if self._invalid.is_set():
            return
        self._invalid.set()
        log.debug("Paging source for thread %s invalidated", self.thread_id)
        self._listeners.emit(self)

    def on_invalidate(self, callback: Callable[["MessagePagingSource"], None]) -> Subscription:
        return self._listeners.subscribe(callback)

    def load(self, offset: int = 0, limit: int = DEFAULT_PAGE_SIZE) -> LoadResult:
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        offset = max(0, offset)
        if self.invalid:
            return Invalid()
        try:
            rows = self.provider.query_thread(self.thread_id, limit, offset)
            items = [m for m in (self._message(row) for row in rows) if m is not None]
        except SourceUnavailable as e:
            log.warning("Load of thread %s at %d failed: %s", self.thread_id, offset, e)
            return LoadError(e)

        prev_key = None if offset == 0 else max(0, offset - limit)
        next_key = None if not rows else offset + limit
        return Page(items, prev_key, next_key)

    def _message(self, raw: dict) -> Message | None:
        try:
            if raw.get("transport_type") == MMS:
                return to_message(self._mms(raw))
            return to_message(text_row(raw))
        except MalformedRecord as e:
            log.warning("Skipping row in thread %s: %s", self.thread_id, e)
            return None

    def _mms(self, raw: dict):
        mms_id = int(raw["_id"])
        address = ";".join(self.provider.recipients(mms_id))
        try:
            body, image_ref = extract_content(self.provider.parts(mms_id))
        except SourceUnavailable as e:
            log.warning("Parts of mms %s unavailable: %s", mms_id, e)
            body, image_ref = extract_content([])
        return mms_row(raw, address=address, body=body, image_ref=image_ref)

    @staticmethod
    def refresh_key(anchor: int | None, page_size: int = DEFAULT_PAGE_SIZE) -> int | None:
        """Offset to reload from so that ``anchor`` lands mid-page."""
        if anchor is None:
            return None
        return max(0, anchor - page_size // 2)


class PagingSourceFactory:
    """Creates paging sources and invalidates them when the store changes."""

    def __init__(self, provider: MessageProvider):
        self.provider = provider
        self._lock = threading.Lock()
        self._open: list[MessagePagingSource] = []
        self._subscription: Subscription | None = None

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self.provider.subscribe(self._on_change)

    def close(self) -> None:
        if self._subscription:
            self._subscription.close()
            self._subscription = None
        with self._lock:
            sources, self._open = self._open, []
        for source in sources:
            source.invalidate()

    def create(self, thread_id: int) -> MessagePagingSource:
        source = MessagePagingSource(self.provider, thread_id)
        with self._lock:
            self._open.append(source)
        return source

    def release(self, source: MessagePagingSource) -> bool:
        """Stop tracking a source the caller is done with. Returns False if untracked."""
        with self._lock:
            if source not in self._open:
                return False
            self._open.remove(source)
        return True

    def open_sources(self, thread_id: int | None = None) -> list[MessagePagingSource]:
        with self._lock:
            return [s for s in self._open if thread_id is None or s.thread_id == thread_id]

    def _on_change(self, change: Change) -> None:
        with self._lock:
            hit = [s for s in self._open if change.affects(s.thread_id)]
            self._open = [s for s in self._open if s not in hit]
        for source in hit:
            source.invalidate()
