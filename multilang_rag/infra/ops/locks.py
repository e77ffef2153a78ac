"""Per-key lock registry for sync work items.

Work on the same (shop, product, lang) key is serialized; distinct keys run concurrently. Locks
are reference-counted and dropped once no thread holds or waits on them, so the registry does not
grow with the catalog.

Key rule:
    ("sync", shop, product_id, lang)

Keys are tuples, so identifiers containing separators never collide. Use
`make_sync_key(shop, product_id, lang)` to compose keys consistently.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager

SyncKey = tuple[str, str, str, str]


def make_sync_key(shop: str, product_id: str, lang: str) -> SyncKey:
    """Compose a lock key following the `("sync", shop, product, lang)` rule."""
    return ("sync", str(shop), str(product_id), str(lang))


class KeyedLocks:
    """Registry of reference-counted locks indexed by hashable key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._refs: dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Acquire the lock for `key` for the duration of the block."""
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._refs[key] = self._refs.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._refs[key] -= 1
                if self._refs[key] == 0:
                    del self._refs[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
