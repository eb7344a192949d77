"""
Unit tests for bid ranking, AuctionUnit change tracking and the
UnitRunner lock/commit/retry loop.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from bidcore.core.config import MarketConfig
from bidcore.core.errors import SelfBidError, StateConflictError, VersionConflictError
from bidcore.core.events import NotificationDispatcher, ReserveNotMet
from bidcore.core.locks import AuctionLockManager
from bidcore.core.models import Auction, AuctionStatus, Bid, BidStatus
from bidcore.core.unit import AuctionUnit, UnitRunner, rank_key, select_highest


T0 = datetime(2030, 1, 1, tzinfo=timezone.utc)


def make_auction(auction_id=1):
    return Auction(
        auction_id=auction_id,
        seller_id=1,
        title="Lot",
        starting_price=Decimal("100.00"),
        start_time=T0,
        end_time=T0 + timedelta(hours=1),
        status=AuctionStatus.ACTIVE,
    )


def make_bid(amount, bid_id=None, seconds=0, status=BidStatus.ACTIVE, bidder_id=2):
    return Bid(
        auction_id=1,
        bidder_id=bidder_id,
        amount=Decimal(amount),
        status=status,
        created_at=T0 + timedelta(seconds=seconds),
        bid_id=bid_id,
    )


# =============================================================================
# Ranking
# =============================================================================


class TestRanking:
    """Highest amount, then earliest, then lowest id."""

    def test_amount_first(self):
        low, high = make_bid("100.00", 1), make_bid("101.00", 2, seconds=5)
        assert select_highest([low, high], [BidStatus.ACTIVE]) is high

    def test_earliest_on_tie(self):
        early, late = make_bid("100.00", 2, seconds=0), make_bid("100.00", 1, seconds=1)
        assert select_highest([late, early], [BidStatus.ACTIVE]) is early

    def test_lowest_id_on_full_tie(self):
        a, b = make_bid("100.00", 7), make_bid("100.00", 3)
        assert select_highest([a, b], [BidStatus.ACTIVE]) is b

    def test_unsaved_bid_ranks_after_saved_on_tie(self):
        saved, new = make_bid("100.00", 9), make_bid("100.00", None)
        assert rank_key(saved) < rank_key(new)

    def test_status_filter_and_exclude(self):
        a = make_bid("150.00", 1, status=BidStatus.RETRACTED)
        b = make_bid("120.00", 2, status=BidStatus.WINNING)
        c = make_bid("110.00", 3)
        assert select_highest([a, b, c], [BidStatus.ACTIVE, BidStatus.WINNING]) is b
        assert select_highest([a, b, c], [BidStatus.ACTIVE, BidStatus.WINNING], exclude=b) is c
        assert select_highest([a], [BidStatus.ACTIVE]) is None


# =============================================================================
# AuctionUnit
# =============================================================================


class TestAuctionUnit:
    """Tests for change tracking."""

    def test_clean_unit(self):
        unit = AuctionUnit(make_auction(), [make_bid("105.00", 1)], T0)
        assert not unit.is_dirty

    def test_set_status_tracks_change(self):
        bid = make_bid("105.00", 1, status=BidStatus.WINNING)
        unit = AuctionUnit(make_auction(), [bid], T0)

        unit.set_status(bid, BidStatus.OUTBID)
        assert unit.is_dirty
        assert unit.dirty_bids == [bid]
        assert unit.status_changes() == [bid]
        assert unit.original_status(bid) == BidStatus.WINNING

    def test_status_round_trip_is_not_a_change(self):
        bid = make_bid("105.00", 1, status=BidStatus.WINNING)
        unit = AuctionUnit(make_auction(), [bid], T0)
        unit.set_status(bid, BidStatus.OUTBID)
        unit.set_status(bid, BidStatus.WINNING)
        assert unit.status_changes() == []

    def test_new_bids(self):
        unit = AuctionUnit(make_auction(), [], T0)
        bid = make_bid("105.00")
        unit.add_bid(bid)
        assert unit.new_bids == [bid]
        assert unit.status_changes() == [bid]
        assert unit.original_status(bid) is None

    def test_raise_price_never_lowers(self):
        unit = AuctionUnit(make_auction(), [], T0)
        unit.raise_price(Decimal("120.00"))
        unit.raise_price(Decimal("110.00"))
        assert unit.auction.current_price == Decimal("120.00")

    def test_leader(self):
        winning = make_bid("110.00", 2, status=BidStatus.WINNING)
        unit = AuctionUnit(make_auction(), [make_bid("105.00", 1, status=BidStatus.OUTBID), winning], T0)
        assert unit.leader() is winning

    def test_trust_delta_accumulates(self):
        unit = AuctionUnit(make_auction(), [], T0)
        unit.trust_delta(5).failures += 1
        unit.trust_delta(5).failures += 1
        assert unit.trust_deltas[5].failures == 2
        assert unit.is_dirty


# =============================================================================
# UnitRunner
# =============================================================================


class FlakyStorage:
    """Storage stub whose first `failures` commits hit a version conflict."""

    def __init__(self, failures=0):
        self.failures = failures
        self.opens = 0
        self.commits = 0

    def open_unit(self, auction_id, now):
        self.opens += 1
        return AuctionUnit(make_auction(auction_id), [], now)

    def commit_unit(self, unit, rescore):
        if self.failures > 0:
            self.failures -= 1
            raise VersionConflictError("moved", auction_id=unit.auction.auction_id)
        self.commits += 1
        unit.mark_committed()


class LockProbeSink:
    def __init__(self, locks):
        self.locks = locks
        self.locked_during_delivery = []

    def notify(self, event):
        self.locked_during_delivery.append(self.locks.is_locked(event.auction.auction_id))


def make_runner(storage, retries=3):
    locks = AuctionLockManager()
    sink = LockProbeSink(locks)
    runner = UnitRunner(
        storage=storage,
        locks=locks,
        dispatcher=NotificationDispatcher([sink]),
        config=MarketConfig(max_commit_retries=retries, retry_backoff_seconds=0),
        clock=lambda: T0,
        rescore=lambda s, f: 500.0,
    )
    return runner, locks, sink


def dirty_operation(unit):
    unit.touch_auction()
    unit.emit(ReserveNotMet(seller=1, auction=unit.auction))
    return "done"


class TestUnitRunner:
    """Tests for locking, retry and post-commit dispatch."""

    def test_commit_and_dispatch(self):
        storage = FlakyStorage()
        runner, _, sink = make_runner(storage)
        assert runner.run(1, dirty_operation) == "done"
        assert storage.commits == 1
        assert sink.locked_during_delivery == [False]

    def test_lock_held_during_operation(self):
        storage = FlakyStorage()
        runner, locks, _ = make_runner(storage)
        seen = []
        runner.run(1, lambda unit: seen.append(locks.is_locked(1)))
        assert seen == [True]
        assert not locks.is_locked(1)

    def test_clean_operation_skips_commit(self):
        storage = FlakyStorage()
        runner, _, _ = make_runner(storage)
        runner.run(1, lambda unit: None)
        assert storage.commits == 0

    def test_retries_version_conflicts(self):
        storage = FlakyStorage(failures=2)
        runner, _, sink = make_runner(storage, retries=3)
        assert runner.run(1, dirty_operation) == "done"
        assert storage.opens == 3
        assert storage.commits == 1
        # Events from failed attempts are discarded
        assert len(sink.locked_during_delivery) == 1

    def test_gives_up_after_bound(self):
        storage = FlakyStorage(failures=10)
        runner, _, sink = make_runner(storage, retries=2)
        with pytest.raises(StateConflictError) as exc:
            runner.run(1, dirty_operation)
        assert type(exc.value) is StateConflictError
        assert storage.opens == 3
        assert sink.locked_during_delivery == []

    def test_validation_errors_not_retried(self):
        storage = FlakyStorage()
        runner, locks, _ = make_runner(storage)

        def rejecting(unit):
            raise SelfBidError("no")

        with pytest.raises(SelfBidError):
            runner.run(1, rejecting)
        assert storage.opens == 1
        assert not locks.is_locked(1)
