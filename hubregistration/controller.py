"""Work queue, sync context and the controller loop shared by hub controllers."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

log = logging.getLogger(__name__)

DEFAULT_QUEUE_KEY = "key"
"""Key queued on resync and for events from informers without a key function."""


class AggregateError(Exception):
    """Several errors reported as one, one message per line."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__("\n".join(str(e) for e in self.errors))


def aggregate(errors: Iterable[BaseException | None]) -> AggregateError | None:
    """Combine errors into one AggregateError, or None when there are none."""
    collected = [e for e in errors if e is not None]
    return AggregateError(collected) if collected else None


def meta_namespace_key(obj: Any) -> str:
    """Return "namespace/name", or "name" for objects without a namespace."""
    meta = obj.metadata
    return f"{meta.namespace}/{meta.name}" if meta.namespace else meta.name


def split_meta_namespace_key(key: str) -> tuple[str, str]:
    """Split a key into (namespace, name)."""
    parts = key.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]
    raise ValueError(f'unexpected key format: "{key}"')


class EventRecorder:
    """Keeps and logs the events a controller emits."""

    def __init__(self, component: str = "hub") -> None:
        self.component = component
        self.events: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def event(self, reason: str, message: str) -> None:
        with self._lock:
            self.events.append((reason, message))
        log.info("%s: %s: %s", self.component, reason, message)


class WorkQueue:
    """A de-duplicating queue: a key being processed is not handed out twice at once."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()

    def add(self, key: str) -> None:
        with self._cond:
            if key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> str | None:
        """Take the next key, waiting up to timeout; None when nothing arrived."""
        with self._cond:
            if not self._cond.wait_for(lambda: bool(self._queue), timeout):
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: str) -> None:
        """Mark a key finished; it is queued again if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)


@dataclass
class SyncContext:
    """What a sync call gets: the key to reconcile, the queue and a recorder."""

    queue_key: str
    queue: WorkQueue = field(default_factory=WorkQueue)
    recorder: EventRecorder = field(default_factory=EventRecorder)


SyncFunc = Callable[[SyncContext], None]
QueueKeyFunc = Callable[[Any], str]


class Controller:
    """Runs a sync function for every key placed on its queue."""

    _MAX_BACKOFF = 60.0
    _BASE_BACKOFF = 0.005

    def __init__(
        self,
        name: str,
        sync: SyncFunc,
        recorder: EventRecorder | None = None,
        queue_key_funcs: Sequence[QueueKeyFunc] = (),
        resync_interval: float | None = None,
    ) -> None:
        self.name = name
        self.sync = sync
        self.recorder = recorder or EventRecorder(name)
        self.queue_key_funcs = list(queue_key_funcs)
        self.resync_interval = resync_interval
        self.queue = WorkQueue()
        self._failures: dict[str, int] = {}
        self._failures_lock = threading.Lock()

    def enqueue(self, obj: Any) -> None:
        """Queue the keys an object maps to, or the default key without key functions."""
        if not self.queue_key_funcs:
            self.queue.add(DEFAULT_QUEUE_KEY)
            return
        for key_func in self.queue_key_funcs:
            self.queue.add(key_func(obj))

    def _requeue_later(self, key: str) -> None:
        with self._failures_lock:
            count = self._failures.get(key, 0)
            self._failures[key] = count + 1
        delay = min(self._BASE_BACKOFF * (2**count), self._MAX_BACKOFF)
        timer = threading.Timer(delay, self.queue.add, args=(key,))
        timer.daemon = True
        timer.start()

    def process_next(self, timeout: float | None = None) -> bool:
        """Sync one key; return False if none arrived within timeout. Failed keys are retried later."""
        key = self.queue.get(timeout)
        if key is None:
            return False
        try:
            self.sync(SyncContext(key, self.queue, self.recorder))
        except Exception:
            log.exception("%s failed with key %r", self.name, key)
            self._requeue_later(key)
        else:
            with self._failures_lock:
                self._failures.pop(key, None)
        finally:
            self.queue.done(key)
        return True

    def _work(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.process_next(timeout=0.1)

    def _resync(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.queue.add(DEFAULT_QUEUE_KEY)
            stop_event.wait(self.resync_interval)

    def run(self, stop_event: threading.Event, workers: int = 1) -> None:
        """Process keys with the given number of workers until stop_event is set."""
        log.info("starting %s", self.name)
        threads = [
            threading.Thread(target=self._work, args=(stop_event,), daemon=True)
            for _ in range(workers)
        ]
        if self.resync_interval:
            threads.append(threading.Thread(target=self._resync, args=(stop_event,), daemon=True))
        for thread in threads:
            thread.start()
        stop_event.wait()
        for thread in threads:
            thread.join()
        log.info("stopped %s", self.name)