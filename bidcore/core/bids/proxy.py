"""
Proxy Bid Resolver - automatic escalation of maximum-ceiling bids.

After any bid changes the leader, every standing proxy bid whose hidden
ceiling exceeds the leading amount is raised on its owner's behalf to
min(ceiling, leading + step). Competing proxies are settled directly
rather than by literal step-by-step raises:

- the higher ceiling wins at min(own ceiling, other ceiling + step)
- equal ceilings: the earlier proxy wins at its ceiling

Resolution is idempotent: with no new competing bid, a second run finds
no proxy above the leader and changes nothing.
"""

from decimal import Decimal
from typing import Optional

from bidcore.core.config import MarketConfig
from bidcore.core.models import Bid, BidStatus, LIVE_STATUSES
from bidcore.core.unit import AuctionUnit, rank_key
from bidcore.utils.logger import get_logger

logger = get_logger("proxy")

# Each round either hands the lead to a stronger ceiling or settles the
# strongest challenger, so the loop ends long before this bound.
MAX_ROUNDS = 1000


class ProxyBidResolver:
    """Raises standing proxy bids against the current leader."""

    def __init__(self, config: Optional[MarketConfig] = None):
        self.config = config or MarketConfig()

    def resolve(self, unit: AuctionUnit) -> bool:
        """
        Settle all standing proxies for the unit's auction.

        Returns:
            True if any bid or the auction price changed
        """
        changed = False
        for _ in range(MAX_ROUNDS):
            leader = unit.leader()
            if leader is None:
                break
            challenger = self._strongest_challenger(unit, leader)
            if challenger is None:
                break
            self._contest(unit, leader, challenger)
            changed = True

        if changed:
            leader = unit.leader()
            unit.raise_price(leader.amount)
            logger.info(
                f"Auction {unit.auction.auction_id}: proxy resolution settled at "
                f"{leader.amount} for bidder {leader.bidder_id}"
            )
        return changed

    def _strongest_challenger(self, unit: AuctionUnit, leader: Bid) -> Optional[Bid]:
        """Standing proxy with the highest ceiling above the leading amount."""
        candidates = [
            b for b in unit.bids
            if b.is_proxy
            and b is not leader
            and b.status in LIVE_STATUSES
            and b.bidder_id != leader.bidder_id
            and b.max_amount is not None
            and b.max_amount > leader.amount
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda b: (-b.max_amount, *rank_key(b)[1:]))

    def _contest(self, unit: AuctionUnit, leader: Bid, challenger: Bid) -> None:
        step = self.config.proxy_step
        leader_ceiling = leader.ceiling
        challenger_ceiling = challenger.max_amount

        takes_lead = challenger_ceiling > leader_ceiling or (
            challenger_ceiling == leader_ceiling
            and leader.is_proxy
            and self._placed_before(challenger, leader)
        )

        if takes_lead:
            if leader.is_proxy:
                self._raise(unit, leader, leader_ceiling)
            self._raise(unit, challenger, min(challenger_ceiling, leader_ceiling + step))
            unit.set_status(leader, BidStatus.OUTBID)
            unit.set_status(challenger, BidStatus.WINNING)
            logger.debug(
                f"Proxy {challenger.bid_id or 'new'} (bidder {challenger.bidder_id}) "
                f"takes lead at {challenger.amount}"
            )
        else:
            # Only a proxy leader can hold against a ceiling above its visible amount
            self._raise(unit, challenger, challenger_ceiling)
            if challenger_ceiling == leader_ceiling:
                self._raise(unit, leader, leader_ceiling)
            else:
                self._raise(unit, leader, min(leader_ceiling, challenger_ceiling + step))
            logger.debug(
                f"Proxy leader {leader.bid_id or 'new'} (bidder {leader.bidder_id}) "
                f"holds at {leader.amount}"
            )

    @staticmethod
    def _raise(unit: AuctionUnit, bid: Bid, amount: Decimal) -> None:
        if amount > bid.amount:
            unit.set_amount(bid, amount)

    @staticmethod
    def _placed_before(a: Bid, b: Bid) -> bool:
        return rank_key(a)[1:] < rank_key(b)[1:]
