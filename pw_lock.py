# pw_lock.py
from __future__ import annotations

import threading
from typing import Optional

from pw_errors import ConnectorError, LockPoisoned


class GuardedLock:
    """
    Exclusive lock that is poisoned when a holder leaves its `with` block with an
    unexpected exception. Every later acquisition raises LockPoisoned, since the
    guarded state may have been left half-updated.

    ConnectorError subclasses are expected failures and do not poison the lock.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.RLock()
        self._poison: Optional[str] = None

    @property
    def poisoned(self) -> bool:
        return self._poison is not None

    def __enter__(self) -> "GuardedLock":
        self._lock.acquire()
        if self._poison is not None:
            self._lock.release()
            raise LockPoisoned(f"Failed to lock {self.name}: {self._poison}")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc is not None and not isinstance(exc, ConnectorError):
                self._poison = f"poisoned by {exc_type.__name__}: {exc}"
        finally:
            self._lock.release()
        return False
