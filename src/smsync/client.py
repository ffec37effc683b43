"""Wiring of store, overlays, sync, paging and send for one project."""

from pathlib import Path

from .blocks import BlockRegistry, read_block_list
from .cache import ConversationCache
from .config import (
    SmsyncConfig,
    TransportConfig,
    get_blocked_path,
    get_provider_path,
    get_state_db_path,
    load_config,
)
from .contacts import ContactBook
from .jobs import JobRunner
from .logutil import get_logger
from .merge import Conversation, MergeEngine, MergeResult
from .metadata import MetadataStore, PinMetadata
from .paging import LoadResult, MessagePagingSource, PagingSourceFactory
from .provider import MMS, SMS, ProviderWatcher, SqliteProvider
from .scheduled import ScheduledMessage, ScheduledMessageRunner, ScheduledMessageStore
from .send import Sender, normalize_address, now_ms
from .sync import SyncScheduler
from .transport import HttpGatewayTransport, LoopbackTransport, Transport

log = get_logger(__name__)


def make_transport(config: TransportConfig, jobs: JobRunner) -> Transport:
    if config.type == "http":
        return HttpGatewayTransport(jobs, config.url, config.token, config.timeout)
    return LoopbackTransport(jobs, fail=config.fail)


class MessagingClient:
    """One project's messaging engine.

    Opening a client connects the store and the local state; nothing runs
    in the background until ``start()``. Every user action that changes
    what the conversation list shows requests a sync afterwards.

    Usage:
        with MessagingClient(root) as client:
            client.send("+15551234", "hi")
            client.sync()
    """

    def __init__(
        self,
        root: Path,
        config: SmsyncConfig | None = None,
        transport: Transport | None = None,
        clock=now_ms,
    ):
        self.root = Path(root)
        self.config = config or load_config(self.root)
        self.clock = clock

        self.jobs = JobRunner()
        self.transport_jobs = self.jobs.worker("smsync-transport")
        self.provider = SqliteProvider(get_provider_path(self.root, self.config))
        state_db = get_state_db_path(self.root)
        self.metadata = MetadataStore(state_db)
        self.cache = ConversationCache(state_db)
        self.scheduled_store = ScheduledMessageStore(state_db)
        self.blocks = BlockRegistry(get_blocked_path(self.root))
        self.contacts = ContactBook(self.config.contacts.values())

        self.engine = MergeEngine(
            self.provider, self.blocks, self.metadata, self.contacts,
            recency_window=self.config.recency_window,
        )
        self.watcher = ProviderWatcher(self.provider, self.config.poll_interval)
        self.scheduler = SyncScheduler(self.engine, self.cache, self.jobs, self.provider, self.watcher)
        self.paging = PagingSourceFactory(self.provider)
        self.transport = transport or make_transport(self.config.transport, self.transport_jobs)
        self.sender = Sender(self.provider, self.transport, on_change=self._changed, clock=clock)
        self.scheduled = ScheduledMessageRunner(self.scheduled_store, self.sender, self.jobs, clock=clock)
        self._open = False

    # ---------------- lifecycle ----------------

    def open(self) -> "MessagingClient":
        if not self._open:
            self.provider.connect()
            self.metadata.connect()
            self.cache.connect()
            self.scheduled_store.connect()
            self._open = True
        return self

    def start(self) -> None:
        """Follow the store: change-driven sync, paging invalidation, scheduled sends."""
        self.paging.start()
        self.scheduler.start()
        count = self.scheduled.reschedule_pending()
        if count:
            log.info("Re-armed %d scheduled messages", count)

    def stop(self) -> None:
        self.scheduler.stop()
        self.paging.close()

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self.jobs.wait_idle(timeout)

    def close(self, timeout: float | None = 30.0) -> None:
        """Stop, let queued work (confirmations, syncs) drain, then disconnect."""
        self.stop()
        if not self.jobs.wait_idle(timeout):
            log.warning("Background jobs still busy after %ss; shutting down anyway", timeout)
        self.jobs.shutdown()
        self.transport_jobs.shutdown()
        if self._open:
            self.scheduled_store.disconnect()
            self.cache.disconnect()
            self.metadata.disconnect()
            self.provider.disconnect()
            self._open = False

    def __enter__(self):
        return self.open()

    def __exit__(self, *args):
        self.close()

    def _changed(self) -> None:
        self.scheduler.trigger()

    # ---------------- reading ----------------

    def sync(self) -> MergeResult:
        """Rebuild the conversation list now, in this thread."""
        return self.scheduler.sync_now()

    def conversations(self, query: str | None = None) -> list[Conversation]:
        """Cached conversation list, optionally filtered by name, address or snippet."""
        conversations = self.cache.read_all()
        if not query:
            return conversations
        q = query.lower()
        return [
            c for c in conversations
            if q in c.display_name.lower() or q in c.raw_address.lower() or q in c.snippet.lower()
        ]

    def conversation(self, thread_id: int) -> Conversation | None:
        return self.cache.get(thread_id)

    def paging_source(self, thread_id: int) -> MessagePagingSource:
        return self.paging.create(thread_id)

    def messages(self, thread_id: int, offset: int = 0, limit: int | None = None) -> LoadResult:
        """Load one page of a thread, newest first."""
        source = self.paging_source(thread_id)
        try:
            return source.load(offset, limit or self.config.page_size)
        finally:
            self.paging.release(source)

    def thread_id_for(self, addresses: list[str]) -> int:
        return self.provider.thread_id_for([normalize_address(a) for a in addresses])

    # ---------------- sending ----------------

    def send(self, address: str, body: str, attachment: str | None = None) -> int:
        """Send a message. Returns the new row id (an mms id for group or attachment sends)."""
        if attachment:
            return self.sender.send_with_attachment(address, body, attachment)
        return self.sender.send(address, body)

    def resend(
        self,
        message_id: int,
        is_multimedia: bool = False,
        address: str | None = None,
        body: str | None = None,
    ) -> int:
        return self.sender.resend(message_id, address, body, is_multimedia)

    def receive(self, address: str, body: str, thread_id: int | None = None) -> int:
        """Record an inbound text message, as a carrier delivery would."""
        address = normalize_address(address)
        if not address or not body:
            raise ValueError("Inbound message needs an address and a body")
        if thread_id is None:
            thread_id = self.provider.thread_id_for([address])
        row_id = self.provider.insert(SMS, {
            "thread_id": thread_id,
            "address": address,
            "body": body,
            "date": self.clock(),
            "read": 0,
            "status": "received",
        })
        self._changed()
        return row_id

    # ---------------- thread actions ----------------

    def _set_read(self, thread_id: int, read: bool) -> int:
        count = 0
        for table in (SMS, MMS):
            count += self.provider.update(table, {"thread_id": thread_id}, {"read": int(read)})
        self._changed()
        return count

    def mark_read(self, thread_id: int) -> int:
        return self._set_read(thread_id, True)

    def mark_unread(self, thread_id: int) -> int:
        return self._set_read(thread_id, False)

    def delete_thread(self, thread_id: int) -> int:
        """Delete every message of a thread and its metadata. Returns rows deleted."""
        count = self.provider.delete(SMS, {"thread_id": thread_id})
        count += self.provider.delete(MMS, {"thread_id": thread_id})
        self.metadata.remove(thread_id)
        self._changed()
        return count

    def set_pinned(self, thread_id: int, is_pinned: bool = True) -> None:
        self.metadata.set_pinned(thread_id, is_pinned)
        self._changed()

    def set_custom_sound(self, thread_id: int, sound_ref: str | None) -> None:
        self.metadata.set_custom_sound(thread_id, sound_ref)

    def metadata_for(self, thread_id: int) -> PinMetadata:
        return self.metadata.get(thread_id)

    # ---------------- blocking ----------------

    def block(self, number: str) -> bool:
        added = self.blocks.block(number)
        self._changed()
        return added

    def unblock(self, number: str) -> bool:
        removed = self.blocks.unblock(number)
        self._changed()
        return removed

    def blocked(self) -> list[str]:
        return self.blocks.list()

    def import_blocked(self, path: str | Path) -> int:
        added = self.blocks.import_external(read_block_list(path))
        self._changed()
        return added

    def block_conversation(self, thread_id: int) -> int:
        """Block every participant of a cached conversation. Returns how many were new."""
        conversation = self.cache.get(thread_id)
        if conversation is None:
            raise KeyError(f"No conversation {thread_id}")
        added = self.blocks.block_conversation(conversation.raw_address)
        self._changed()
        return added

    # ---------------- scheduling ----------------

    def schedule(self, address: str, body: str, at_ms: int, thread_id: int | None = None) -> ScheduledMessage:
        if thread_id is None:
            thread_id = self.thread_id_for(address.split(";"))
        return self.scheduled.schedule(thread_id, address, body, at_ms)

    def cancel_scheduled(self, scheduled_id: int) -> bool:
        return self.scheduled.cancel(scheduled_id)

    def scheduled_messages(self, thread_id: int | None = None) -> list[ScheduledMessage]:
        return self.scheduled.list(thread_id)

    def run_due(self) -> int:
        return self.scheduled.run_due()
