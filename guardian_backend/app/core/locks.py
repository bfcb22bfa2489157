"""
Keyed in-process locks — serialise mutations of one aggregate.

Each key (an alert id) gets its own ``threading.Lock`` that exists only
while somebody holds or waits for it, so the table never grows with the
number of alerts ever seen.

Usage:
    locks = KeyedLock()
    with locks.hold(alert_id):
        ...  # read-modify-write of that alert
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
                self._waiters[key] = 0
            self._waiters[key] += 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def active_keys(self) -> List[Hashable]:
        with self._guard:
            return list(self._locks)
