"""Keyed locks used to serialize work per receipt and per product."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from . import log
from .errors import LockTimeoutError


class KeyedLock:
    """Hand out one re-entrant lock per key.

    Locks are created on first use and kept for the lifetime of the object;
    the key space (receipt and product identifiers) is bounded by the data
    set the process works on.
    """

    def __init__(self, name: str, *, timeout: Optional[float] = None) -> None:
        self.name = name
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str, *, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockTimeoutError: If the lock is not acquired within ``timeout``
                (or the instance default). ``None`` waits indefinitely.
        """

        wait = self.timeout if timeout is None else timeout
        lock = self._lock_for(key)
        acquired = lock.acquire(timeout=-1 if wait is None else wait)
        if not acquired:
            log.warning("Timed out waiting for %s lock on '%s'", self.name, key)
            raise LockTimeoutError(f"Timed out waiting for {self.name} lock on '{key}'")
        try:
            yield
        finally:
            lock.release()


__all__ = ["KeyedLock"]
