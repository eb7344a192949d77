"""
Auction Closer - terminal settlement of an auction.

Closing derives its outcome only from the persisted bid ledger, so a
close that is re-run after a failure (or by a second sweeper) reaches the
same winner and final price. Closing a non-ACTIVE auction is a no-op;
suspended auctions are ended only through void_auction.
"""

from typing import Optional

from bidcore.core.auction.registry import transition
from bidcore.core.errors import AuthorizationError, NotFoundError, StateConflictError
from bidcore.core.events import AuctionSold, AuctionWon, ReserveNotMet
from bidcore.core.models import Auction, AuctionStatus, Bid, BidStatus
from bidcore.core.storage.storage_manager import StorageManager
from bidcore.core.trust import TrustScoreUpdater
from bidcore.core.unit import AuctionUnit, UnitRunner
from bidcore.utils.logger import get_logger

logger = get_logger("closer")


class AuctionCloser:
    """Finalizes auctions: winner, reserve check, bid settlement, trust feedback."""

    def __init__(self, storage: StorageManager, runner: UnitRunner, trust: TrustScoreUpdater):
        self.storage = storage
        self.runner = runner
        self.trust = trust

    def close_auction(self, auction_id: int) -> Auction:
        """
        Close an auction now.

        Returns the auction unchanged if it is not ACTIVE.

        Raises:
            NotFoundError: no such auction
        """
        auction = self.runner.run(auction_id, self._close)
        return auction

    def end_auction(self, auction_id: int, seller_id: int) -> Auction:
        """Seller-initiated early close."""
        auction = self.storage.load_auction(auction_id)
        if auction is None:
            raise NotFoundError("Auction", auction_id)
        if auction.seller_id != seller_id:
            raise AuthorizationError("You can only end your own auctions")

        def operation(unit: AuctionUnit) -> Auction:
            if unit.auction.status != AuctionStatus.ACTIVE:
                raise StateConflictError("Only active auctions can be ended", auction_id=auction_id)
            return self._close(unit)

        auction = self.runner.run(auction_id, operation)
        logger.info(f"Auction {auction_id} ended early by seller {seller_id}")
        return auction

    def void_auction(self, auction_id: int) -> Auction:
        """
        End a SUSPENDED auction without a winner.

        Every live bid is marked LOST and no trust outcome is recorded.

        Raises:
            NotFoundError: no such auction
            StateConflictError: auction is not SUSPENDED
        """
        def operation(unit: AuctionUnit) -> Auction:
            auction = unit.auction
            if auction.status != AuctionStatus.SUSPENDED:
                raise StateConflictError("Only suspended auctions can be voided", auction_id=auction_id)
            transition(auction, AuctionStatus.ENDED)
            unit.touch_auction()
            self._mark_lost(unit, keep=None)
            return auction

        auction = self.runner.run(auction_id, operation)
        logger.warning(f"Auction {auction_id} voided after suspension")
        return auction

    # =========================================================================
    # Settlement
    # =========================================================================

    def _close(self, unit: AuctionUnit) -> Auction:
        auction = unit.auction
        if auction.status != AuctionStatus.ACTIVE:
            logger.debug(f"Auction {auction.auction_id} already {auction.status.name}, nothing to close")
            return auction

        transition(auction, AuctionStatus.ENDED)
        unit.touch_auction()

        winning = unit.highest([BidStatus.ACTIVE, BidStatus.WINNING])
        if winning is None:
            self._mark_lost(unit, keep=None)
            logger.info(f"Auction {auction.auction_id} closed with no bids")
            return auction

        if auction.is_reserve_met():
            self._settle_winner(unit, winning)
        else:
            self._mark_lost(unit, keep=None)
            unit.emit(ReserveNotMet(seller=auction.seller_id, auction=auction, occurred_at=unit.now))
            logger.info(
                f"Auction {auction.auction_id} closed: reserve {auction.reserve_price} not met "
                f"(highest {winning.amount})"
            )
        return auction

    def _settle_winner(self, unit: AuctionUnit, winning: Bid) -> None:
        auction = unit.auction
        auction.winner_id = winning.bidder_id
        auction.final_price = winning.amount
        unit.set_status(winning, BidStatus.WON)
        self._mark_lost(unit, keep=winning)

        self.trust.record_success(unit, winning.bidder_id)
        self.trust.record_success(unit, auction.seller_id)

        unit.emit(AuctionWon(winner=winning.bidder_id, auction=auction, occurred_at=unit.now))
        unit.emit(AuctionSold(seller=auction.seller_id, auction=auction, occurred_at=unit.now))
        logger.info(
            f"Auction {auction.auction_id} closed: won by {winning.bidder_id} at {winning.amount}"
        )

    @staticmethod
    def _mark_lost(unit: AuctionUnit, keep: Optional[Bid]) -> None:
        for bid in unit.live_bids():
            if bid is not keep:
                unit.set_status(bid, BidStatus.LOST)
