# src/pipelines/locks.py
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List


class KeyedLocks:
    """One mutex per key, created on demand and dropped when nobody holds or waits for it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, holders+waiters]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


@dataclass
class DispatchLocks:
    """Shared by every order/rider mutation path. Acquire order lock first, then rider lock."""

    orders: KeyedLocks = field(default_factory=KeyedLocks)
    riders: KeyedLocks = field(default_factory=KeyedLocks)

    @contextmanager
    def hold(self, order_id: str, rider_id: str):
        with self.orders.hold(order_id), self.riders.hold(rider_id):
            yield
