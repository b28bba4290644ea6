"""Spin locks and sleep locks built on threads."""

from __future__ import annotations

import threading
from typing import Optional

from .kprintf import panic


class SpinLock:
    """Mutual exclusion lock that panics on recursive acquire or foreign release."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._owner: Optional[int] = None

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    def holding(self) -> bool:
        """Whether the calling thread holds the lock."""
        return self._lock.locked() and self._owner == threading.get_ident()

    def acquire(self) -> None:
        if self.holding():
            panic("acquire")
        self._lock.acquire()
        self._owner = threading.get_ident()

    def release(self) -> None:
        if not self.holding():
            panic("release")
        self._owner = None
        self._lock.release()

    def __enter__(self) -> "SpinLock":
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        self.release()


class SleepLock:
    """Long-term lock; waiters block until it is released."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._cond = threading.Condition(threading.Lock())
        self._locked = False
        self._owner: Optional[int] = None

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def owner(self) -> Optional[int]:
        """Identifier of the holding thread, or None."""
        return self._owner

    def acquire(self) -> None:
        with self._cond:
            while self._locked:
                self._cond.wait()
            self._locked = True
            self._owner = threading.get_ident()

    def release(self) -> None:
        with self._cond:
            self._locked = False
            self._owner = None
            self._cond.notify_all()

    def holding(self) -> bool:
        """Whether the calling thread holds the lock."""
        with self._cond:
            return self._locked and self._owner == threading.get_ident()

    def __enter__(self) -> "SleepLock":
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        self.release()