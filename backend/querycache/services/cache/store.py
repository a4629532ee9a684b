"""
In-process cache: endpoint path -> current CacheEntry.

publish/remove swap under a per-key lock and hand back whatever they displaced;
the caller retires it (deletes its blob) after the swap, exactly once. load is
a plain dict read and never waits on a refresh. No lock is held during I/O.
"""
import threading

from querycache.models.entry import CacheEntry


class CacheStore:
    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            with self._registry_lock:
                lock = self._key_locks.setdefault(key, threading.Lock())
        return lock

    def publish(self, key: str, entry: CacheEntry) -> tuple[CacheEntry | None, bool]:
        """Make entry current for key. Returns (displaced entry, whether one existed)."""
        if entry is None:
            raise ValueError("cannot publish None; use remove()")
        with self._lock_for(key):
            old = self._entries.get(key)
            self._entries[key] = entry
        return old, old is not None

    def load(self, key: str) -> tuple[CacheEntry | None, bool]:
        entry = self._entries.get(key)
        return entry, entry is not None

    def remove(self, key: str) -> tuple[CacheEntry | None, bool]:
        with self._lock_for(key):
            old = self._entries.pop(key, None)
        return old, old is not None

    def keys(self) -> list[str]:
        return list(self._entries)

    def clear(self) -> list[CacheEntry]:
        """Remove every entry; returns them so the caller can retire their blobs."""
        removed = []
        for key in self.keys():
            old, existed = self.remove(key)
            if existed:
                removed.append(old)
        return removed
