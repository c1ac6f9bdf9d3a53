"""
In-process keyed locks.

Used for the per (hotel, room_type, date) stock keys in the inventory
ledger. Entries are reference-counted and dropped once no thread holds or
waits on them, so the registry only ever contains keys in use.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, Iterator, List


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class KeyedLockRegistry:
    """
    Hands out one threading.Lock per key.

    acquire_many() takes locks in sorted order so two callers locking
    overlapping key sets cannot deadlock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            # Counted before acquiring so a waiter keeps the entry alive
            entry.users += 1
            return entry.lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._entries[key]
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def acquire(self, key: Hashable) -> Iterator[None]:
        with self.acquire_many([key]):
            yield

    @contextmanager
    def acquire_many(self, keys: Iterable[Hashable]) -> Iterator[None]:
        ordered: List[Hashable] = sorted(set(keys), key=repr)
        checked_out: List[Hashable] = []
        held: Dict[Hashable, threading.Lock] = {}
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                lock.acquire()
                held[key] = lock
            yield
        finally:
            for key in reversed(checked_out):
                if key in held:
                    held[key].release()
                self._checkin(key)


# Shared across every ledger instance in the process
stock_locks = KeyedLockRegistry()
