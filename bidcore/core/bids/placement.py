"""
Bid Placement Engine - validates and commits single bids.

A placement is one atomic unit per auction:
1. Validate (first failure wins): auction exists, auction accepting bids,
   bidder is not the seller, amount meets the minimum next bid, bidder
   trust clears the general gate and, for high-value bids, the
   high-value gate.
2. Commit: insert the bid, promote it to WINNING when it leads, demote
   the previous leader, move the price, count the bid.
3. Resolve standing proxy bids in the same unit.
4. After commit: BidPlaced to the bidder, Outbid to every demoted bidder.
"""

from decimal import Decimal
from typing import Optional

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
from bidcore.core.models import Auction, Bid, BidKind, BidStatus
from bidcore.core.bids.proxy import ProxyBidResolver
from bidcore.core.storage.storage_manager import StorageManager
from bidcore.core.trust import TrustScoreUpdater
from bidcore.core.unit import AuctionUnit, UnitRunner, rank_key
from bidcore.utils.logger import get_logger
from bidcore.utils.validation import ceil_money, to_money, validate_amount, validate_user_id

logger = get_logger("placement")


def compute_minimum_next_bid(auction: Auction, config: Optional[MarketConfig] = None) -> Decimal:
    """
    Smallest amount a new bid must meet.

    current_price + max(current_price * rate, min_increment), rounded up
    to the cent. Before any bid current_price is the starting price, so
    even the first bid must clear one increment.
    """
    config = config or MarketConfig()
    increment = max(auction.current_price * config.min_increment_rate, config.min_increment)
    return ceil_money(auction.current_price + increment)


class BidPlacementEngine:
    """
    Accepts manual and proxy bids.

    All mutations run through the UnitRunner, so validation and commit
    happen under the auction's lock and against its latest state.
    """

    def __init__(
        self,
        storage: StorageManager,
        runner: UnitRunner,
        trust: TrustScoreUpdater,
        resolver: ProxyBidResolver,
        config: Optional[MarketConfig] = None,
    ):
        self.storage = storage
        self.runner = runner
        self.trust = trust
        self.resolver = resolver
        self.config = config or MarketConfig()

    # =========================================================================
    # Queries
    # =========================================================================

    def minimum_next_bid(self, auction: Auction) -> Decimal:
        return compute_minimum_next_bid(auction, self.config)

    def get_minimum_next_bid(self, auction_id: int) -> Decimal:
        auction = self.storage.load_auction(auction_id)
        if auction is None:
            raise NotFoundError("Auction", auction_id)
        return self.minimum_next_bid(auction)

    def get_highest_bid(self, auction_id: int) -> Optional[Bid]:
        if self.storage.load_auction(auction_id) is None:
            raise NotFoundError("Auction", auction_id)
        return self.storage.load_highest_live_bid(auction_id)

    # =========================================================================
    # Placement
    # =========================================================================

    def place_bid(self, auction_id: int, bidder_id: int, amount) -> Bid:
        """
        Place a manual bid.

        Raises:
            NotFoundError, AuctionNotActiveError, SelfBidError,
            BidTooLowError, InsufficientTrustError, StateConflictError
        """
        amount = self._check_input(bidder_id, amount, "amount")

        def operation(unit: AuctionUnit) -> Bid:
            self._validate(unit, bidder_id, amount)
            bid = Bid(
                auction_id=auction_id,
                bidder_id=bidder_id,
                amount=amount,
                created_at=unit.now,
            )
            self._commit_bid(unit, bid)
            self.resolver.resolve(unit)
            self._queue_events(unit, bid)
            return bid

        bid = self.runner.run(auction_id, operation)
        logger.info(
            f"Bid {bid.bid_id} on auction {auction_id}: {bid.amount} by {bidder_id} -> {bid.status.name}"
        )
        return bid

    def place_proxy_bid(self, auction_id: int, bidder_id: int, max_amount) -> Bid:
        """
        Place a proxy bid with a hidden ceiling.

        The ceiling is validated like a manual amount; the visible amount
        starts one step above the prior highest bid (or the starting
        price) and never exceeds the ceiling.
        """
        max_amount = self._check_input(bidder_id, max_amount, "max_amount")

        def operation(unit: AuctionUnit) -> Bid:
            self._validate(unit, bidder_id, max_amount)
            prior = unit.highest([BidStatus.WINNING, BidStatus.ACTIVE])
            base = prior.amount if prior is not None else unit.auction.starting_price
            bid = Bid(
                auction_id=auction_id,
                bidder_id=bidder_id,
                amount=min(max_amount, base + self.config.proxy_step),
                max_amount=max_amount,
                kind=BidKind.PROXY,
                created_at=unit.now,
            )
            self._commit_bid(unit, bid)
            self.resolver.resolve(unit)
            self._queue_events(unit, bid)
            return bid

        bid = self.runner.run(auction_id, operation)
        logger.info(
            f"Proxy bid {bid.bid_id} on auction {auction_id}: visible {bid.amount} "
            f"(max {bid.max_amount}) by {bidder_id} -> {bid.status.name}"
        )
        return bid

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _check_input(bidder_id, amount, name: str) -> Decimal:
        valid, err = validate_user_id(bidder_id, "bidder_id")
        if not valid:
            raise ValidationError(err)
        valid, err = validate_amount(amount, name)
        if not valid:
            raise ValidationError(err)
        return to_money(amount)

    def _validate(self, unit: AuctionUnit, bidder_id: int, amount: Decimal) -> None:
        auction = unit.auction

        if not auction.is_accepting_bids(unit.now):
            raise AuctionNotActiveError(
                f"Auction {auction.auction_id} is not active (status {auction.status.name})"
            )

        if bidder_id == auction.seller_id:
            raise SelfBidError("You cannot bid on your own auction")

        minimum = self.minimum_next_bid(auction)
        if amount < minimum:
            logger.debug(f"Rejected {amount} on auction {auction.auction_id}: minimum {minimum}")
            raise BidTooLowError(amount, minimum)

        score = self.trust.get_score(bidder_id)
        if score < self.config.min_trust_to_bid:
            raise InsufficientTrustError(
                "Trust score too low to place bids", score, self.config.min_trust_to_bid
            )

        if amount > self.config.high_value_threshold and score < self.config.high_value_min_trust:
            raise InsufficientTrustError(
                f"Higher trust score required for bids over ${self.config.high_value_threshold:.2f}",
                score,
                self.config.high_value_min_trust,
            )

    def _commit_bid(self, unit: AuctionUnit, bid: Bid) -> None:
        leader = unit.leader()
        unit.add_bid(bid)

        if leader is None or rank_key(bid) < rank_key(leader):
            if leader is not None:
                # A bidder raising their own lead keeps the old bid live but not WINNING
                demoted = BidStatus.OUTBID if leader.bidder_id != bid.bidder_id else BidStatus.ACTIVE
                unit.set_status(leader, demoted)
            bid.status = BidStatus.WINNING
            unit.raise_price(bid.amount)

        unit.auction.bid_count += 1
        unit.touch_auction()
        self.trust.record_bid_volume(unit, bid.bidder_id, bid.amount)

    @staticmethod
    def _queue_events(unit: AuctionUnit, bid: Bid) -> None:
        unit.emit(BidPlaced(bidder=bid.bidder_id, auction=unit.auction, bid=bid, occurred_at=unit.now))

        leader = unit.leader()
        for other in unit.bids:
            if other.status != BidStatus.OUTBID or unit.original_status(other) == BidStatus.OUTBID:
                continue
            unit.emit(Outbid(
                user=other.bidder_id,
                auction=unit.auction,
                new_leading_bid=leader,
                occurred_at=unit.now,
            ))
