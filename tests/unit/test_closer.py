"""
Unit tests for auction closing and settlement.
"""

from decimal import Decimal

import pytest

from bidcore.core.errors import AuthorizationError, NotFoundError, StateConflictError
from bidcore.core.events import AuctionSold, AuctionWon, ReserveNotMet
from bidcore.core.models import AuctionStatus, BidStatus


class TestCloseWithWinner:

    def test_highest_bid_wins(self, engine, open_auction, sink):
        auction = open_auction()
        first = engine.place_bid(auction.auction_id, 2, "105.00")
        best = engine.place_bid(auction.auction_id, 3, "200.00")
        sink.clear()

        closed = engine.close_auction(auction.auction_id)

        assert closed.status == AuctionStatus.ENDED
        assert closed.winner_id == 3
        assert closed.final_price == Decimal("200.00")
        assert engine.ledger.get_bid(best.bid_id).status == BidStatus.WON
        assert engine.ledger.get_bid(first.bid_id).status == BidStatus.LOST

        stored = engine.registry.get_auction(auction.auction_id)
        assert stored.winner_id == 3
        assert stored.final_price == Decimal("200.00")

    def test_trust_success_for_winner_and_seller(self, engine, open_auction):
        auction = open_auction()
        engine.place_bid(auction.auction_id, 2, "105.00")
        engine.place_bid(auction.auction_id, 3, "200.00")
        engine.close_auction(auction.auction_id)

        assert engine.trust.get_record(3).successful_transactions == 1
        assert engine.trust.get_score(3) == 800.0
        assert engine.trust.get_score(1) == 800.0
        # Losing bidder is neither rewarded nor penalized
        assert engine.trust.get_score(2) == 500.0

    def test_events(self, engine, open_auction, sink):
        auction = open_auction()
        engine.place_bid(auction.auction_id, 2, "150.00")
        sink.clear()

        engine.close_auction(auction.auction_id)

        won = sink.of_type(AuctionWon)
        sold = sink.of_type(AuctionSold)
        assert [e.winner for e in won] == [2]
        assert [e.seller for e in sold] == [1]
        assert sold[0].auction.final_price == Decimal("150.00")
        assert sink.of_type(ReserveNotMet) == []

    def test_reserve_met_exactly(self, engine, open_auction):
        auction = open_auction(reserve="150.00")
        engine.place_bid(auction.auction_id, 2, "150.00")
        closed = engine.close_auction(auction.auction_id)
        assert closed.winner_id == 2

    def test_retracted_bids_untouched(self, engine, open_auction):
        auction = open_auction()
        low = engine.place_bid(auction.auction_id, 2, "105.00")
        # An own-lead raise leaves the earlier bid ACTIVE, so it is promoted
        high = engine.place_bid(auction.auction_id, 2, "200.00")
        engine.retract_bid(high.bid_id, 2)

        closed = engine.close_auction(auction.auction_id)

        assert closed.winner_id == 2
        assert closed.final_price == Decimal("105.00")
        assert engine.ledger.get_bid(high.bid_id).status == BidStatus.RETRACTED
        assert engine.ledger.get_bid(low.bid_id).status == BidStatus.WON


class TestCloseWithoutWinner:

    def test_reserve_not_met(self, engine, open_auction, sink):
        auction = open_auction(reserve="500.00")
        first = engine.place_bid(auction.auction_id, 2, "105.00")
        second = engine.place_bid(auction.auction_id, 3, "450.00")
        sink.clear()

        closed = engine.close_auction(auction.auction_id)

        assert closed.status == AuctionStatus.ENDED
        assert closed.winner_id is None
        assert closed.final_price is None
        assert engine.ledger.get_bid(first.bid_id).status == BidStatus.LOST
        assert engine.ledger.get_bid(second.bid_id).status == BidStatus.LOST

        notices = sink.of_type(ReserveNotMet)
        assert len(notices) == 1
        assert notices[0].seller == 1
        assert sink.of_type(AuctionWon) == []
        assert engine.trust.get_score(3) == 500.0

    def test_no_bids(self, engine, open_auction, sink):
        auction = open_auction()
        sink.clear()

        closed = engine.close_auction(auction.auction_id)

        assert closed.status == AuctionStatus.ENDED
        assert closed.winner_id is None
        assert sink.events == []


class TestIdempotence:

    def test_second_close_is_noop(self, engine, open_auction, sink):
        auction = open_auction()
        engine.place_bid(auction.auction_id, 2, "150.00")
        first = engine.close_auction(auction.auction_id)
        sink.clear()

        second = engine.close_auction(auction.auction_id)

        assert second.status == AuctionStatus.ENDED
        assert second.winner_id == first.winner_id
        assert second.final_price == first.final_price
        assert second.version == first.version
        assert sink.events == []
        # Trust is only credited once
        assert engine.trust.get_record(2).successful_transactions == 1

    @pytest.mark.parametrize("status_change", ["cancel", "upcoming"])
    def test_non_active_untouched(self, engine, clock, open_auction, status_change):
        from datetime import timedelta

        if status_change == "cancel":
            auction = open_auction()
            engine.registry.cancel_auction(auction.auction_id, 1)
            expected = AuctionStatus.CANCELLED
        else:
            auction = engine.registry.create_auction(
                1, "Later", "10.00", clock() + timedelta(hours=1), clock() + timedelta(hours=2)
            )
            expected = AuctionStatus.UPCOMING

        assert engine.close_auction(auction.auction_id).status == expected

    def test_missing(self, engine):
        with pytest.raises(NotFoundError):
            engine.close_auction(404)


class TestEndAuction:

    def test_seller_ends_early(self, engine, open_auction):
        auction = open_auction()
        engine.place_bid(auction.auction_id, 2, "120.00")
        ended = engine.end_auction(auction.auction_id, 1)
        assert ended.status == AuctionStatus.ENDED
        assert ended.winner_id == 2

    def test_only_owner(self, engine, open_auction):
        auction = open_auction()
        with pytest.raises(AuthorizationError):
            engine.end_auction(auction.auction_id, 2)
        assert engine.registry.get_auction(auction.auction_id).status == AuctionStatus.ACTIVE

    def test_only_active(self, engine, open_auction):
        auction = open_auction()
        engine.close_auction(auction.auction_id)
        with pytest.raises(StateConflictError, match="Only active auctions"):
            engine.end_auction(auction.auction_id, 1)

    def test_missing(self, engine):
        with pytest.raises(NotFoundError):
            engine.end_auction(404, 1)


class TestVoidAuction:

    def test_void_suspended_with_bids(self, engine, open_auction, sink):
        auction = open_auction()
        first = engine.place_bid(auction.auction_id, 2, "105.00")
        second = engine.place_bid(auction.auction_id, 3, "120.00")
        engine.registry.suspend_auction(auction.auction_id)
        sink.clear()

        # A plain close leaves a suspended auction alone
        assert engine.close_auction(auction.auction_id).status == AuctionStatus.SUSPENDED

        voided = engine.void_auction(auction.auction_id)

        assert voided.status == AuctionStatus.ENDED
        assert voided.winner_id is None
        assert voided.final_price is None
        assert engine.ledger.get_bid(first.bid_id).status == BidStatus.LOST
        assert engine.ledger.get_bid(second.bid_id).status == BidStatus.LOST
        assert engine.trust.get_record(3).successful_transactions == 0
        assert sink.events == []

    def test_void_requires_suspension(self, engine, open_auction):
        auction = open_auction()
        with pytest.raises(StateConflictError, match="Only suspended auctions"):
            engine.void_auction(auction.auction_id)
        assert engine.registry.get_auction(auction.auction_id).status == AuctionStatus.ACTIVE

    def test_void_missing(self, engine):
        with pytest.raises(NotFoundError):
            engine.void_auction(404)
