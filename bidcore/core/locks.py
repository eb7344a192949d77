"""
Per-auction mutual exclusion.

Each auction id gets its own lock so that placement, proxy resolution,
retraction and closing on the same auction are serialized while
different auctions proceed in parallel. A lock lives only while some
caller holds or waits on it, so finished auctions leave nothing behind.
"""

import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, Optional

from bidcore.core.errors import StateConflictError
from bidcore.utils.logger import get_logger

logger = get_logger("locks")


class AuctionLockManager:
    """Hands out one lock per auction id."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def _lock_for(self, auction_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(auction_id)
            if lock is None:
                lock = self._locks[auction_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, auction_id: int, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the lock for auction_id.

        Raises:
            StateConflictError: lock not acquired within timeout
        """
        lock = self._lock_for(auction_id)
        acquired = lock.acquire(timeout=timeout) if timeout is not None else lock.acquire()
        if not acquired:
            logger.warning(f"Timed out waiting for lock on auction {auction_id}")
            raise StateConflictError(
                f"Auction {auction_id} is locked by another operation", auction_id=auction_id
            )
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, auction_id: int) -> bool:
        with self._guard:
            lock = self._locks.get(auction_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        """Number of auctions whose lock is currently referenced"""
        with self._guard:
            return len(self._locks)
