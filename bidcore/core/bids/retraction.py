"""
Bid retraction.

A bidder may withdraw their own bid while the auction is still open.
Withdrawing the WINNING bid hands the lead to the next-highest ACTIVE
bid and moves the price to its amount, in the same commit. Every
retraction counts as a failed transaction for the bidder's trust score.
"""

from typing import Optional

from bidcore.core.bids.proxy import ProxyBidResolver
from bidcore.core.errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from bidcore.core.models import BidStatus, TERMINAL_BID_STATUSES
from bidcore.core.storage.storage_manager import StorageManager
from bidcore.core.trust import TrustScoreUpdater
from bidcore.core.unit import AuctionUnit, UnitRunner
from bidcore.utils.logger import get_logger
from bidcore.utils.validation import validate_reason

logger = get_logger("retraction")


class BidRetractionService:
    """Withdraws a bidder's own bid and hands the lead to the next ACTIVE bid."""

    def __init__(
        self,
        storage: StorageManager,
        runner: UnitRunner,
        trust: TrustScoreUpdater,
        resolver: Optional[ProxyBidResolver] = None,
    ):
        self.storage = storage
        self.runner = runner
        self.trust = trust
        self.resolver = resolver

    def retract_bid(self, bid_id: int, requester_id: int, reason: str = "") -> None:
        """
        Retract a bid.

        Raises:
            NotFoundError: no such bid
            AuthorizationError: requester does not own the bid
            StateConflictError: auction closed or bid already settled
        """
        valid, err = validate_reason(reason)
        if not valid:
            raise ValidationError(err)

        bid = self.storage.load_bid(bid_id)
        if bid is None:
            raise NotFoundError("Bid", bid_id)
        if bid.bidder_id != requester_id:
            raise AuthorizationError("You can only retract your own bids")

        def operation(unit: AuctionUnit) -> None:
            target = next(b for b in unit.bids if b.bid_id == bid_id)

            if not unit.auction.is_accepting_bids(unit.now):
                raise StateConflictError(
                    "Cannot retract bid from inactive auction", auction_id=unit.auction.auction_id
                )
            if target.status in TERMINAL_BID_STATUSES:
                raise StateConflictError(
                    f"Bid {bid_id} is already {target.status.name}", auction_id=unit.auction.auction_id
                )

            was_winning = target.status == BidStatus.WINNING
            unit.set_status(target, BidStatus.RETRACTED)
            target.notes = reason
            unit.touch(target)

            if was_winning:
                successor = unit.highest([BidStatus.ACTIVE], exclude=target)
                if successor is not None:
                    unit.set_status(successor, BidStatus.WINNING)
                    # Retraction is the one path allowed to lower the price
                    unit.auction.current_price = successor.amount
                    if self.resolver is not None:
                        self.resolver.resolve(unit)
                    logger.info(
                        f"Auction {unit.auction.auction_id}: bid {successor.bid_id} promoted "
                        f"at {unit.auction.current_price}"
                    )
            unit.touch_auction()
            self.trust.record_failure(unit, requester_id)

        self.runner.run(bid.auction_id, operation)
        logger.info(f"Bid {bid_id} retracted by user {requester_id}: {reason!r}")
