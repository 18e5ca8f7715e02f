"""Per-room mutual exclusion for admission units of work."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class ResourceLocks:
    """Hands out one lock per room id.

    Writers on the same room serialize; writers on different rooms never share
    a lock. One instance is owned by each process (see ``app.state``).
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def _lock_for(self, room_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(room_id)
            if lock is None:
                lock = self._locks[room_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, room_id: int) -> Iterator[None]:
        lock = self._lock_for(room_id)
        with lock:
            yield
