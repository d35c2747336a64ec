# pw_notify.py
from __future__ import annotations

import queue
import threading
from concurrent.futures import Future, InvalidStateError
from typing import Callable, Iterable, List, Optional, Tuple

from pw_events import Notification, NotificationKind

Key = Tuple[Optional[int], Optional[int]]


class _Waiter:
    def __init__(self, key: Key, kinds: Iterable[NotificationKind]) -> None:
        self.key = key
        self.kinds = frozenset(kinds)
        self.future: Future = Future()

    def matches(self, n: Notification) -> bool:
        return n.key == self.key and n.kind in self.kinds


class NotificationHub:
    """
    Fans every published notification out to all subscribers, and resolves the
    futures of callers waiting on a specific (output, input) pair.

    `on_abandon` is called with the pair's key whenever a waiter gives up before
    its outcome arrived (timeout or cancellation).
    """

    def __init__(self, on_abandon: Optional[Callable[[Key], None]] = None) -> None:
        self._lock = threading.Lock()
        self._waiters: List[_Waiter] = []
        self._subscribers: List[queue.Queue] = []
        self._on_abandon = on_abandon

    def expect(self, key: Key, kinds: Iterable[NotificationKind]) -> Future:
        waiter = _Waiter(key, kinds)
        with self._lock:
            self._waiters.append(waiter)
        waiter.future.add_done_callback(self._discard_done)
        return waiter.future

    def discard(self, future: Future) -> None:
        with self._lock:
            dropped = [w for w in self._waiters if w.future is future]
            self._waiters = [w for w in self._waiters if w.future is not future]
        if self._on_abandon is not None:
            for w in dropped:
                self._on_abandon(w.key)

    def _discard_done(self, future: Future) -> None:
        if future.cancelled():
            self.discard(future)

    def fail_all(self, error: BaseException) -> int:
        """Resolve every outstanding waiter with `error`."""
        with self._lock:
            waiters, self._waiters = self._waiters, []
        for w in waiters:
            try:
                w.future.set_exception(error)
            except InvalidStateError:
                # already cancelled
                pass
        return len(waiters)

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    @property
    def waiting(self) -> int:
        with self._lock:
            return len(self._waiters)

    def publish(self, notification: Notification) -> None:
        with self._lock:
            matched = [w for w in self._waiters if w.matches(notification)]
            self._waiters = [w for w in self._waiters if w not in matched]
            subscribers = list(self._subscribers)

        for q in subscribers:
            q.put(notification)
        for w in matched:
            try:
                w.future.set_result(notification)
            except InvalidStateError:
                # cancelled by its caller in the meantime
                pass
