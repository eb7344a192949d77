"""
Unit tests for bid placement: minimum next bid, validation order,
leader promotion/demotion and post-commit events.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from bidcore.core.config import MarketConfig
from bidcore.core.errors import (
    AuctionNotActiveError,
    BidTooLowError,
    InsufficientTrustError,
    NotFoundError,
    SelfBidError,
    ValidationError,
)
from bidcore.core.events import BidPlaced, Outbid
from bidcore.core.models import Auction, BidKind, BidStatus
from bidcore.core.bids.placement import compute_minimum_next_bid


START = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Minimum Next Bid
# =============================================================================


class TestMinimumNextBid:
    """minimum = current + max(current * 5%, 1.00), rounded up to the cent."""

    def _auction(self, current, start="100.00"):
        return Auction(
            seller_id=1,
            title="Lot",
            starting_price=Decimal(start),
            current_price=Decimal(current) if current is not None else None,
            start_time=START,
            end_time=START + timedelta(hours=1),
        )

    def test_percentage_increment(self):
        assert compute_minimum_next_bid(self._auction("100.00")) == Decimal("105.00")
        assert compute_minimum_next_bid(self._auction("105.00")) == Decimal("110.25")

    def test_rounds_up_to_cent(self):
        assert compute_minimum_next_bid(self._auction("110.25")) == Decimal("115.77")

    def test_one_dollar_floor(self):
        assert compute_minimum_next_bid(self._auction("10.00", start="10.00")) == Decimal("11.00")

    def test_first_bid_clears_one_increment(self):
        # A fresh auction carries its starting price as the current price
        auction = self._auction(None)
        assert auction.current_price == Decimal("100.00")
        assert compute_minimum_next_bid(auction) == Decimal("105.00")

    def test_configurable(self):
        config = MarketConfig(min_increment_rate=Decimal("0.10"), min_increment=Decimal("2.00"))
        assert compute_minimum_next_bid(self._auction("100.00"), config) == Decimal("110.00")

    def test_engine_query(self, engine, open_auction):
        auction = open_auction()
        assert engine.get_minimum_next_bid(auction.auction_id) == Decimal("105.00")
        with pytest.raises(NotFoundError):
            engine.get_minimum_next_bid(999)


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    """Validation runs in a fixed order; the first failure wins."""

    def test_unknown_auction(self, engine):
        with pytest.raises(NotFoundError):
            engine.place_bid(999, 2, "105.00")

    def test_upcoming_auction_not_active(self, engine, clock):
        auction = engine.registry.create_auction(
            1, "Later", "100.00", clock() + timedelta(hours=1), clock() + timedelta(hours=2)
        )
        with pytest.raises(AuctionNotActiveError):
            engine.place_bid(auction.auction_id, 2, "105.00")

    def test_deadline_is_exclusive(self, engine, open_auction, clock):
        auction = open_auction(minutes=10)
        clock.advance(minutes=10)
        with pytest.raises(AuctionNotActiveError):
            engine.place_bid(auction.auction_id, 2, "105.00")

    def test_not_active_checked_before_self_bid(self, engine, open_auction, clock):
        auction = open_auction(minutes=10)
        clock.advance(minutes=11)
        with pytest.raises(AuctionNotActiveError):
            engine.place_bid(auction.auction_id, 1, "105.00")

    def test_self_bid_checked_before_amount(self, engine, open_auction):
        auction = open_auction()
        with pytest.raises(SelfBidError):
            engine.place_bid(auction.auction_id, 1, "1.00")

    def test_amount_checked_before_trust(self, engine, open_auction):
        auction = open_auction()
        for _ in range(25):
            engine.record_payment_failure(2)
        with pytest.raises(BidTooLowError):
            engine.place_bid(auction.auction_id, 2, "100.00")
        with pytest.raises(InsufficientTrustError):
            engine.place_bid(auction.auction_id, 2, "105.00")

    def test_malformed_input(self, engine, open_auction):
        auction = open_auction()
        with pytest.raises(ValidationError):
            engine.place_bid(auction.auction_id, 2, "lots")
        with pytest.raises(ValidationError):
            engine.place_bid(auction.auction_id, 2, "105.001")
        with pytest.raises(ValidationError):
            engine.place_bid(auction.auction_id, 0, "105.00")

    def test_rejection_leaves_no_trace(self, engine, open_auction, sink):
        auction = open_auction()
        with pytest.raises(BidTooLowError):
            engine.place_bid(auction.auction_id, 2, "104.99")

        assert engine.ledger.bids_for_auction(auction.auction_id) == []
        reloaded = engine.registry.get_auction(auction.auction_id)
        assert reloaded.bid_count == 0
        assert reloaded.current_price == Decimal("100.00")
        assert sink.events == []


class TestMinimumBoundary:
    """A bid at exactly the minimum is accepted; one cent below is rejected."""

    @pytest.mark.parametrize("prior", [None, "105.00", "111.11"])
    def test_boundary(self, engine, open_auction, prior):
        auction = open_auction()
        if prior is not None:
            engine.place_bid(auction.auction_id, 3, prior)

        minimum = engine.get_minimum_next_bid(auction.auction_id)
        with pytest.raises(BidTooLowError) as exc:
            engine.place_bid(auction.auction_id, 2, minimum - Decimal("0.01"))
        assert exc.value.minimum == minimum
        assert f"${minimum:.2f}" in str(exc.value)

        bid = engine.place_bid(auction.auction_id, 2, minimum)
        assert bid.status == BidStatus.WINNING


# =============================================================================
# Commit
# =============================================================================


class TestPlacement:
    """Tests for promotion, demotion and price updates."""

    def test_opening_scenario(self, engine, open_auction):
        """Start $100: $100 rejected, $105 wins, a higher bid outbids it."""
        auction = open_auction()
        aid = auction.auction_id

        with pytest.raises(BidTooLowError) as exc:
            engine.place_bid(aid, 2, "100.00")
        assert exc.value.minimum == Decimal("105.00")

        first = engine.place_bid(aid, 2, "105.00")
        assert first.status == BidStatus.WINNING

        # 105 + 5% = 110.25
        with pytest.raises(BidTooLowError):
            engine.place_bid(aid, 3, "110.00")
        second = engine.place_bid(aid, 3, "110.25")
        assert second.status == BidStatus.WINNING

        assert engine.ledger.get_bid(first.bid_id).status == BidStatus.OUTBID
        reloaded = engine.registry.get_auction(aid)
        assert reloaded.current_price == Decimal("110.25")
        assert reloaded.bid_count == 2

    def test_events_after_commit(self, engine, open_auction, sink):
        auction = open_auction()
        first = engine.place_bid(auction.auction_id, 2, "105.00")
        assert [type(e) for e in sink.events] == [BidPlaced]
        assert sink.events[0].bid is first

        sink.clear()
        second = engine.place_bid(auction.auction_id, 3, "120.00")
        placed, outbid = sink.events
        assert isinstance(placed, BidPlaced) and placed.bidder == 3
        assert isinstance(outbid, Outbid)
        assert outbid.user == 2
        assert outbid.new_leading_bid.bid_id == second.bid_id

    def test_raising_own_lead(self, engine, open_auction, sink):
        auction = open_auction()
        first = engine.place_bid(auction.auction_id, 2, "105.00")
        second = engine.place_bid(auction.auction_id, 2, "115.00")

        assert second.status == BidStatus.WINNING
        assert engine.ledger.get_bid(first.bid_id).status == BidStatus.ACTIVE
        assert sink.of_type(Outbid) == []

    def test_highest_bid_query(self, engine, open_auction):
        auction = open_auction()
        assert engine.get_highest_bid(auction.auction_id) is None
        engine.place_bid(auction.auction_id, 2, "105.00")
        top = engine.place_bid(auction.auction_id, 3, "200.00")
        assert engine.get_highest_bid(auction.auction_id).bid_id == top.bid_id
        with pytest.raises(NotFoundError):
            engine.get_highest_bid(999)

    def test_bid_history_recorded(self, engine, open_auction):
        auction = open_auction()
        first = engine.place_bid(auction.auction_id, 2, "105.00")
        engine.place_bid(auction.auction_id, 3, "120.00")
        statuses = [s for s, _ in engine.ledger.status_history(first.bid_id)]
        assert statuses == [BidStatus.WINNING, BidStatus.OUTBID]

    def test_manual_bid_kind(self, engine, open_auction):
        auction = open_auction()
        bid = engine.place_bid(auction.auction_id, 2, 105)
        assert bid.kind == BidKind.MANUAL
        assert bid.max_amount is None
        assert bid.amount == Decimal("105.00")
