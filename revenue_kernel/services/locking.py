"""
Per-customer serialization within one process.

Every engine operation for a customer runs under that customer's lock, so
two terminals paying the same account queue behind each other while other
customers proceed.  Across processes the database row lock and the balance
version counter take over.

Walk-in sales (no customer) touch no shared balance and take no lock.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class CustomerLockRegistry:
    """Lazily created re-entrant lock per customer id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def lock_for(self, customer_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(customer_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[customer_id] = lock
            return lock

    @contextmanager
    def hold(self, customer_id: str | None) -> Iterator[None]:
        if customer_id is None:
            yield
            return
        lock = self.lock_for(customer_id)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
