"""Named one-shot background jobs on a single worker thread."""

import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Iterable

from .logutil import get_logger

log = get_logger(__name__)


class Policy(str, Enum):
    """What to do when a job with the same name is already pending."""
    KEEP = "keep"  # leave the existing job, drop the new request
    REPLACE = "replace"  # cancel the existing job if it hasn't started


class JobState(str, Enum):
    SCHEDULED = "scheduled"  # waiting on its delay timer
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def finished(self) -> bool:
        return self in (JobState.DONE, JobState.FAILED, JobState.CANCELLED)


class JobHandle:
    """A scheduled job. Thread-safe."""

    def __init__(self, name: str, fn: Callable[[], object], tags: Iterable[str] = ()):
        self.name = name
        self.tags = frozenset(tags)
        self._fn = fn
        self._state = JobState.SCHEDULED
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._callbacks: list[Callable[["JobHandle"], None]] = []
        self._timer: threading.Timer | None = None
        self.error: BaseException | None = None

    def __repr__(self):
        return f"JobHandle({self.name!r}, {self._state.value})"

    @property
    def state(self) -> JobState:
        with self._lock:
            return self._state

    def _transition(self, old: tuple[JobState, ...], new: JobState) -> bool:
        with self._lock:
            if self._state not in old:
                return False
            self._state = new
        return True

    def _finish(self, state: JobState) -> None:
        with self._lock:
            self._state = state
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        self._done.set()
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                log.exception("Done callback of job %s failed", self.name)

    def cancel(self) -> bool:
        """Cancel if not yet running. Returns True if cancelled."""
        if not self._transition((JobState.SCHEDULED, JobState.QUEUED), JobState.CANCELLED):
            return False
        if self._timer:
            self._timer.cancel()
        self._finish(JobState.CANCELLED)
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until finished. Returns False on timeout."""
        return self._done.wait(timeout)

    def add_done_callback(self, callback: Callable[["JobHandle"], None]) -> None:
        """Call back once the job finishes (immediately if it already has)."""
        with self._lock:
            if not self._state.finished:
                self._callbacks.append(callback)
                return
        callback(self)

    def _run(self) -> None:
        if not self._transition((JobState.QUEUED,), JobState.RUNNING):
            return
        try:
            self._fn()
        except Exception as e:
            self.error = e
            log.exception("Job %s failed", self.name)
            self._finish(JobState.FAILED)
        else:
            self._finish(JobState.DONE)


class _BusyCounter:
    """Queued + running jobs, shared by runners that are waited on together."""

    def __init__(self):
        self.lock = threading.RLock()  # cancel() callbacks re-enter via _forget
        self.idle = threading.Condition(self.lock)
        self.busy = 0


class JobRunner:
    """Runs named one-shot jobs one at a time.

    A name identifies a unique slot: while a job of that name is scheduled,
    queued or running, ``schedule_once`` with ``Policy.KEEP`` returns the
    existing handle. Jobs with a delay wait on a timer before entering the
    worker queue.
    """

    def __init__(self, name: str = "smsync-jobs", counter: _BusyCounter | None = None):
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._counter = counter or _BusyCounter()
        self._lock = self._counter.lock
        self._idle = self._counter.idle
        self._jobs: dict[str, JobHandle] = {}
        self._shutdown = False

    def worker(self, name: str) -> "JobRunner":
        """A second runner with its own thread, idle only when this one is too.

        Work handed from one to the other is queued before the handing job
        finishes, so ``wait_idle`` on either covers chains across both.
        """
        return JobRunner(name, self._counter)

    def schedule_once(
        self,
        name: str,
        fn: Callable[[], object],
        policy: Policy = Policy.KEEP,
        delay: float = 0.0,
        tags: Iterable[str] = (),
    ) -> JobHandle:
        """Schedule ``fn`` under ``name``. See the class docstring for policies."""
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Job runner is shut down")
            existing = self._jobs.get(name)
            if existing and not existing.state.finished:
                if policy is Policy.KEEP:
                    return existing
                if not existing.cancel():
                    # already running: let it finish, the new job queues behind it
                    log.debug("Job %s is running; queueing replacement", name)
            handle = JobHandle(name, fn, tags)
            self._jobs[name] = handle

        handle.add_done_callback(self._forget)
        if delay > 0:
            handle._timer = threading.Timer(delay, self._enqueue, args=(handle,))
            handle._timer.daemon = True
            handle._timer.start()
        else:
            self._enqueue(handle)
        return handle

    def _enqueue(self, handle: JobHandle) -> None:
        with self._lock:
            if self._shutdown or not handle._transition((JobState.SCHEDULED,), JobState.QUEUED):
                return
            self._counter.busy += 1
        try:
            self._executor.submit(self._execute, handle)
        except RuntimeError:
            # executor shut down between the check and the submit
            with self._lock:
                self._counter.busy -= 1
                self._idle.notify_all()
            handle.cancel()

    def _execute(self, handle: JobHandle) -> None:
        try:
            handle._run()
        finally:
            with self._lock:
                self._counter.busy -= 1
                self._idle.notify_all()

    def _forget(self, handle: JobHandle) -> None:
        with self._lock:
            if self._jobs.get(handle.name) is handle:
                del self._jobs[handle.name]

    def active(self, name: str) -> JobHandle | None:
        """The unfinished job registered under ``name``, if any."""
        with self._lock:
            handle = self._jobs.get(name)
        if handle and not handle.state.finished:
            return handle
        return None

    def cancel(self, tag: str) -> int:
        """Cancel all not-yet-running jobs carrying ``tag``. Returns the count."""
        with self._lock:
            handles = [h for h in self._jobs.values() if tag in h.tags]
        return sum(1 for h in handles if h.cancel())

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no job is queued or running.

        Jobs still waiting on a delay timer do not count. Returns False on
        timeout.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._counter.busy == 0, timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Cancel pending timers and stop the worker."""
        with self._lock:
            self._shutdown = True
            handles = list(self._jobs.values())
        for handle in handles:
            if handle.state is JobState.SCHEDULED:
                handle.cancel()
        self._executor.shutdown(wait=wait)
