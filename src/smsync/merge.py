"""Merge text and multimedia rows into one conversation list."""

from dataclasses import dataclass, field, replace
from typing import Iterable

from .blocks import BlockRegistry, normalize
from .contacts import ContactResolver, RecipientInfo, resolve_recipients
from .errors import MalformedRecord, PartExtractionFailed, SourceUnavailable
from .logutil import get_logger
from .metadata import MetadataStore
from .provider import MMS, SMS, MessageProvider
from .rows import (
    PLACEHOLDER_ADDRESS,
    PLACEHOLDER_NAME,
    MessageRow,
    extract_content,
    mms_row,
    split_participants,
    text_row,
)

log = get_logger(__name__)

DEFAULT_RECENCY_WINDOW = 100


@dataclass(frozen=True)
class Conversation:
    """One thread as shown in the conversation list."""
    thread_id: int
    raw_address: str
    display_name: str
    photo_ref: str | None
    snippet: str
    last_activity_at: int  # ms
    is_read: bool
    is_pinned: bool = False

    @property
    def participants(self) -> list[str]:
        return split_participants(self.raw_address)


def latest_per_thread(rows: Iterable[MessageRow]) -> list[MessageRow]:
    """Keep the first row seen per thread (rows arrive newest first)."""
    seen: set[int] = set()
    result = []
    for row in rows:
        if row.thread_id in seen:
            continue
        seen.add(row.thread_id)
        result.append(row)
    return result


def is_blocked(raw_address: str, block_set: frozenset[str] | set[str]) -> bool:
    """True if any participant, normalized, is in the block set."""
    for address in split_participants(raw_address):
        key = normalize(address)
        if key and key in block_set:
            return True
    return False


def _has_identity(conversation: Conversation) -> bool:
    address = conversation.raw_address.strip()
    return bool(address) and address != PLACEHOLDER_ADDRESS


def _identify(row: MessageRow, resolver: ContactResolver | None) -> RecipientInfo:
    if row.is_multimedia and (not row.address or row.address == PLACEHOLDER_ADDRESS):
        return RecipientInfo(PLACEHOLDER_ADDRESS, PLACEHOLDER_NAME, None)
    if resolver is None:
        name = row.address or ("Unknown" if not row.is_multimedia else PLACEHOLDER_NAME)
        return RecipientInfo(row.address, name, None)
    return resolve_recipients(resolver, row.address)


def _candidate(row: MessageRow, resolver: ContactResolver | None) -> Conversation:
    info = _identify(row, resolver)
    snippet = row.body
    if row.is_multimedia and row.subject.strip():
        snippet = row.subject
    return Conversation(
        thread_id=row.thread_id,
        raw_address=info.raw_address,
        display_name=info.display_name,
        photo_ref=info.photo_ref,
        snippet=snippet,
        last_activity_at=row.timestamp_ms,
        is_read=row.is_read,
    )


def merge(
    text_rows: Iterable[MessageRow],
    mms_rows: Iterable[MessageRow],
    pinned_thread_ids: set[int] | frozenset[int],
    block_set: set[str] | frozenset[str],
    resolver: ContactResolver | None = None,
) -> list[Conversation]:
    """Merge both sources into one Conversation per thread.

    Rows of each source must be ordered newest first. Snippet, time and read
    state come from the most recent row of the thread across both sources;
    the identity comes from the first row with a real address (text rows
    first), falling back to the most recent row. Blocked threads are
    dropped; the result is sorted pinned first, then most recent first.
    """
    candidates = [_candidate(r, resolver) for r in latest_per_thread(text_rows)]
    candidates += [_candidate(r, resolver) for r in latest_per_thread(mms_rows)]

    groups: dict[int, list[Conversation]] = {}
    for candidate in candidates:
        groups.setdefault(candidate.thread_id, []).append(candidate)

    merged = []
    for thread_id, group in groups.items():
        latest = max(group, key=lambda c: c.last_activity_at)
        best = next((c for c in group if _has_identity(c)), latest)
        conversation = replace(
            latest,
            raw_address=best.raw_address,
            display_name=best.display_name,
            photo_ref=best.photo_ref,
            is_pinned=thread_id in pinned_thread_ids,
        )
        if is_blocked(conversation.raw_address, block_set):
            log.debug("Dropping blocked thread %s", thread_id)
            continue
        merged.append(conversation)

    merged.sort(key=lambda c: (not c.is_pinned, -c.last_activity_at))
    return merged


@dataclass
class MergeResult:
    """Output of one merge cycle."""
    conversations: list[Conversation]
    failed_tables: list[str] = field(default_factory=list)

    @property
    def complete_failure(self) -> bool:
        """Both tables failed; the result must not replace a good cache."""
        return set(self.failed_tables) >= {SMS, MMS}


class MergeEngine:
    """Reads the store and overlays, then merges.

    Every cycle reads the block set and pin set once, before the tables, so
    all threads in one result are judged against the same snapshot.
    """

    def __init__(
        self,
        provider: MessageProvider,
        blocks: BlockRegistry,
        metadata: MetadataStore,
        resolver: ContactResolver | None = None,
        recency_window: int = DEFAULT_RECENCY_WINDOW,
    ):
        self.provider = provider
        self.blocks = blocks
        self.metadata = metadata
        self.resolver = resolver
        self.recency_window = recency_window

    def fetch_text_rows(self) -> list[MessageRow]:
        """Most recent text rows, newest first. Raises SourceUnavailable."""
        raw_rows = self.provider.query(SMS, order="date DESC", limit=self.recency_window)
        rows = []
        for raw in raw_rows:
            try:
                rows.append(text_row(raw))
            except MalformedRecord as e:
                log.warning("Skipping text row: %s", e)
        return rows

    def fetch_mms_rows(self) -> list[MessageRow]:
        """Most recent multimedia row per thread, with participants and content.

        Only the per-thread latest rows are resolved, since older ones are
        discarded by the merge anyway.
        """
        raw_rows = self.provider.query(MMS, order="normalized_date DESC", limit=self.recency_window)
        bare = []
        for raw in raw_rows:
            try:
                bare.append((mms_row(raw), raw))
            except MalformedRecord as e:
                log.warning("Skipping multimedia row: %s", e)
        bare.sort(key=lambda pair: pair[0].timestamp_ms, reverse=True)

        rows = []
        seen: set[int] = set()
        for row, raw in bare:
            if row.thread_id in seen:
                continue
            seen.add(row.thread_id)
            rows.append(self._resolve_mms(row, raw))
        return rows

    def _resolve_mms(self, row: MessageRow, raw: dict) -> MessageRow:
        try:
            recipients = self.provider.recipients(row.id)
        except SourceUnavailable as e:
            log.warning("Recipients of mms %s unavailable: %s", row.id, e)
            recipients = []
        address = ";".join(recipients) if recipients else PLACEHOLDER_ADDRESS

        body, image_ref = "", None
        if not row.subject.strip():
            try:
                body, image_ref = self._content(row.id)
            except PartExtractionFailed as e:
                log.warning("%s", e)
                body, image_ref = extract_content([])
        return mms_row(raw, address=address, body=body, image_ref=image_ref)

    def _content(self, mms_id: int) -> tuple[str, str | None]:
        try:
            parts = self.provider.parts(mms_id)
        except SourceUnavailable as e:
            raise PartExtractionFailed(mms_id, e) from e
        return extract_content(parts)

    def run(self) -> MergeResult:
        """Run one merge cycle. Never raises."""
        failed = []
        try:
            block_set = self.blocks.snapshot()
        except Exception:
            log.exception("Block registry unavailable; merging without it")
            block_set = frozenset()
        try:
            pinned = self.metadata.pinned_thread_ids()
        except Exception:
            log.exception("Metadata unavailable; merging without pins")
            pinned = set()

        try:
            text_rows = self.fetch_text_rows()
        except Exception:
            log.exception("Text table unavailable; merging without it")
            text_rows = []
            failed.append(SMS)
        try:
            mms_rows = self.fetch_mms_rows()
        except Exception:
            log.exception("Multimedia table unavailable; merging without it")
            mms_rows = []
            failed.append(MMS)

        try:
            conversations = merge(text_rows, mms_rows, pinned, block_set, self.resolver)
        except Exception:
            log.exception("Merge failed")
            return MergeResult([], [SMS, MMS])
        log.debug("Merged %d conversations (%d text, %d mms rows)",
                  len(conversations), len(text_rows), len(mms_rows))
        return MergeResult(conversations, failed)
