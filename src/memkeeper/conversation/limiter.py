"""Resizable cap on simultaneous conversations."""

import threading


class ConversationLimiter:
    """Counts active conversations against a capacity.

    The capacity is the only source of truth: resizing never infers a
    delta from live state, it just changes the limit future acquisitions
    are checked against. Conversations already running are unaffected.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._active = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active(self) -> int:
        return self._active

    @property
    def available(self) -> int:
        with self._lock:
            return max(0, self._capacity - self._active)

    def try_acquire(self) -> bool:
        """Take a slot if one is free. Never blocks."""
        with self._lock:
            if self._active >= self._capacity:
                return False
            self._active += 1
            return True

    def release(self) -> None:
        with self._lock:
            if self._active == 0:
                raise RuntimeError("release() called more times than try_acquire()")
            self._active -= 1

    def resize(self, capacity: int) -> None:
        """Change the number of allowed simultaneous conversations."""
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        with self._lock:
            self._capacity = capacity
