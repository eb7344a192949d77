"""
Unit tests for per-auction locking.
"""

import gc
import threading

import pytest

from bidcore.core.errors import StateConflictError
from bidcore.core.locks import AuctionLockManager


class TestAuctionLockManager:

    def test_one_lock_per_auction(self):
        locks = AuctionLockManager()
        with locks.hold(1):
            assert locks.is_locked(1)
            assert not locks.is_locked(2)
            assert len(locks) == 1
        assert not locks.is_locked(1)

    def test_unused_locks_are_dropped(self):
        locks = AuctionLockManager()
        for auction_id in range(100):
            with locks.hold(auction_id):
                pass
        gc.collect()
        assert len(locks) == 0

    def test_waiter_shares_the_held_lock(self):
        locks = AuctionLockManager()
        order = []

        def waiter():
            with locks.hold(1, timeout=2):
                order.append("waiter")

        with locks.hold(1):
            t = threading.Thread(target=waiter)
            t.start()
            t.join(0.1)
            order.append("holder")
        t.join(2)
        assert order == ["holder", "waiter"]

    def test_different_auctions_do_not_block(self):
        locks = AuctionLockManager()
        acquired = threading.Event()

        def other():
            with locks.hold(2, timeout=1):
                acquired.set()

        with locks.hold(1):
            t = threading.Thread(target=other)
            t.start()
            t.join(2)
        assert acquired.is_set()

    def test_timeout_raises_state_conflict(self):
        locks = AuctionLockManager()
        errors = []

        def contender():
            try:
                with locks.hold(1, timeout=0.05):
                    pass
            except StateConflictError as e:
                errors.append(e)

        with locks.hold(1):
            t = threading.Thread(target=contender)
            t.start()
            t.join(2)

        assert len(errors) == 1
        assert errors[0].auction_id == 1

    def test_released_on_exception(self):
        locks = AuctionLockManager()
        with pytest.raises(RuntimeError):
            with locks.hold(1):
                raise RuntimeError("boom")
        assert not locks.is_locked(1)
