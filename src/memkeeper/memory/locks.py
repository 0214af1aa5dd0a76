"""Per-agent locking for load/mutate/persist sections."""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class KeyedLock:
    """One re-entrant lock per key, created on demand.

    The registry itself is guarded, so worker threads and the event loop
    (via ``asyncio.to_thread``) can share it safely.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        """Get the lock for a key, creating it if needed."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for a key for the duration of the block."""
        lock = self.get(key)
        with lock:
            yield

    def discard(self, key: str) -> None:
        """Forget the lock for a key whose store was deleted."""
        with self._guard:
            self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
