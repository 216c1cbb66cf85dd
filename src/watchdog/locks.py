"""Per-key lock registry.

Units and sessions are independent, so mutation is serialized per key rather
than behind one global lock. The registry's own lock is only held while looking
up or releasing the per-key entry, never while the caller's critical section runs.

An entry lives only while at least one thread holds or waits on it. Lookups for
keys that turn out not to exist leave nothing behind, and a key that is dropped
and re-added while a thread still waits keeps sharing that thread's lock.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class _Entry:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLocks:
    """``threading.Lock`` per string key, reference-counted by its users."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._registry_lock = threading.Lock()

    def _checkout(self, key: str) -> _Entry:
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Block until the lock for ``key`` is acquired."""
        entry = self._checkout(key)
        try:
            with entry.lock:
                yield
        finally:
            self._checkin(key, entry)

    @contextmanager
    def try_hold(self, key: str) -> Iterator[bool]:
        """Acquire the lock for ``key`` without waiting; yields whether it was acquired."""
        entry = self._checkout(key)
        acquired = entry.lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                entry.lock.release()
            self._checkin(key, entry)
