"""Coalescing sync of the conversation cache."""

import threading

from .cache import ConversationCache
from .events import Subscription
from .jobs import JobRunner, JobState, Policy
from .logutil import get_logger
from .merge import MergeEngine, MergeResult
from .provider import Change, MessageProvider, ProviderWatcher

log = get_logger(__name__)

SYNC_JOB = "conversation-sync"


class SyncScheduler:
    """Rebuilds the cache from the store whenever something changes.

    ``trigger()`` is cheap and can be called from any thread. Requests that
    arrive while a cycle is queued are absorbed by it; requests that arrive
    while a cycle is running collapse into exactly one follow-up cycle.
    """

    def __init__(
        self,
        engine: MergeEngine,
        cache: ConversationCache,
        jobs: JobRunner,
        provider: MessageProvider | None = None,
        watcher: ProviderWatcher | None = None,
    ):
        self.engine = engine
        self.cache = cache
        self.jobs = jobs
        self.provider = provider
        self.watcher = watcher
        self.cycles = 0
        self._lock = threading.Lock()
        self._running = False
        self._rerun = False
        self._subscription: Subscription | None = None

    @property
    def started(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        """Subscribe to store changes, start the watcher and sync once."""
        if self._subscription is None and self.provider is not None:
            self._subscription = self.provider.subscribe(self._on_change)
        if self.watcher:
            self.watcher.start()
        self.trigger()

    def stop(self) -> None:
        if self._subscription:
            self._subscription.close()
            self._subscription = None
        if self.watcher:
            self.watcher.stop()

    def _on_change(self, change: Change) -> None:
        log.debug("Store changed (%s); scheduling sync", change.table or "external")
        self.trigger()

    def trigger(self) -> None:
        """Request a sync cycle."""
        with self._lock:
            if self._running:
                self._rerun = True
                return
        handle = self.jobs.schedule_once(SYNC_JOB, self._run_cycles, Policy.KEEP)
        if handle.state is JobState.RUNNING:
            # a cycle is wrapping up and won't see this request; go again after it
            handle.add_done_callback(lambda _: self.trigger())

    def _run_cycles(self) -> None:
        while True:
            with self._lock:
                self._running = True
                self._rerun = False
            self.sync_now()
            with self._lock:
                if not self._rerun:
                    self._running = False
                    return

    def sync_now(self) -> MergeResult:
        """Run one merge and publish it. Never raises.

        A cycle in which every table failed leaves the cache untouched.
        """
        result = self.engine.run()
        with self._lock:
            self.cycles += 1
        if result.complete_failure:
            log.warning("Sync skipped: no table readable (%s)", ", ".join(result.failed_tables))
            return result
        if result.failed_tables:
            log.warning("Partial sync; unavailable: %s", ", ".join(result.failed_tables))
        try:
            generation = self.cache.replace(result.conversations)
        except Exception:
            log.exception("Cache replace failed")
            return result
        log.info("Synced %d conversations (generation %d)", len(result.conversations), generation)
        return result
