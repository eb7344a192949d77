"""
Bid Ledger - read-side queries over every bid and its status history.

Reads take no lock and may observe slightly stale data; all writes go
through AuctionUnit commits.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from bidcore.core.errors import NotFoundError
from bidcore.core.models import Bid, BidStatus
from bidcore.core.storage.storage_manager import StorageManager
from bidcore.utils.validation import to_money


@dataclass
class BidStatistics:
    """Aggregate bidding figures for one user."""
    total_bids: int
    active_bids: int
    winning_bids: int
    total_winning_amount: Decimal
    average_bid_amount: Decimal
    max_bid_amount: Decimal


class BidLedger:
    """Ordered, queryable record of bids per auction and per user."""

    def __init__(self, storage: StorageManager):
        self.storage = storage

    def get_bid(self, bid_id: int) -> Bid:
        bid = self.storage.load_bid(bid_id)
        if bid is None:
            raise NotFoundError("Bid", bid_id)
        return bid

    def bids_for_auction(self, auction_id: int) -> List[Bid]:
        """All bids for an auction, highest first, earliest first on ties."""
        return self.storage.load_bids_for_auction(auction_id)

    def bids_by_user(self, user_id: int) -> List[Bid]:
        """All bids by a user, newest first."""
        return self.storage.load_bids_by_user(user_id)

    def highest_bid(self, auction_id: int) -> Optional[Bid]:
        """Highest ACTIVE/WINNING bid for the auction."""
        return self.storage.load_highest_live_bid(auction_id)

    def user_highest_bid(self, auction_id: int, user_id: int) -> Optional[Bid]:
        for bid in self.storage.load_bids_for_auction(auction_id):
            if bid.bidder_id == user_id and bid.status in (BidStatus.ACTIVE, BidStatus.WINNING):
                return bid
        return None

    def winning_bids_for_user(self, user_id: int) -> List[Bid]:
        return self.storage.load_bids_by_user(user_id, BidStatus.WINNING)

    def outbid_bids_for_user(self, user_id: int) -> List[Bid]:
        return self.storage.load_bids_by_user(user_id, BidStatus.OUTBID)

    def has_user_bid(self, auction_id: int, user_id: int) -> bool:
        """Whether the user holds any non-retracted bid on the auction."""
        return any(
            b.bidder_id == user_id and b.status != BidStatus.RETRACTED
            for b in self.storage.load_bids_for_auction(auction_id)
        )

    def status_history(self, bid_id: int) -> List[Tuple[BidStatus, datetime]]:
        return self.storage.load_status_history(bid_id)

    def bid_statistics(self, user_id: int) -> BidStatistics:
        bids = self.storage.load_bids_by_user(user_id)
        amounts = [b.amount for b in bids]
        won = [b.amount for b in bids if b.status == BidStatus.WON]
        return BidStatistics(
            total_bids=len(bids),
            active_bids=sum(1 for b in bids if b.status == BidStatus.ACTIVE),
            winning_bids=sum(1 for b in bids if b.status == BidStatus.WINNING),
            total_winning_amount=to_money(sum(won, Decimal("0"))),
            average_bid_amount=to_money(sum(amounts, Decimal("0")) / len(amounts)) if amounts else Decimal("0.00"),
            max_bid_amount=max(amounts) if amounts else Decimal("0.00"),
        )
