"""
Units of work for per-auction operations.

An AuctionUnit holds one auction and its full bid ledger in memory while
an operation validates and mutates them. Nothing reaches storage until
the operation returns; the StorageManager then writes exactly the records
the unit marked as changed, in one transaction.

UnitRunner wraps an operation with the per-auction lock, the optimistic
version check with bounded retry, and post-commit event dispatch.
"""

import time
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, TypeVar

from bidcore.core.errors import StateConflictError, VersionConflictError
from bidcore.core.models import Auction, Bid, BidStatus, TrustDelta
from bidcore.utils.logger import get_logger

if TYPE_CHECKING:
    from bidcore.core.config import MarketConfig
    from bidcore.core.events import MarketEvent, NotificationDispatcher
    from bidcore.core.locks import AuctionLockManager
    from bidcore.core.storage.storage_manager import StorageManager

logger = get_logger("unit")

T = TypeVar("T")


def rank_key(bid: Bid):
    """Sort key: highest amount first, then earliest, then lowest id."""
    bid_id = bid.bid_id if bid.bid_id is not None else float("inf")
    return (-bid.amount, bid.created_at, bid_id)


def select_highest(
    bids: Iterable[Bid],
    statuses: Iterable[BidStatus],
    exclude: Optional[Bid] = None,
) -> Optional[Bid]:
    """Highest-ranked bid among the given statuses."""
    wanted = set(statuses)
    candidates = [b for b in bids if b.status in wanted and b is not exclude]
    if not candidates:
        return None
    return min(candidates, key=rank_key)


class AuctionUnit:
    """
    In-memory working set for one atomic auction operation.

    Attributes:
        auction: The auction record (mutated in place)
        bids: Every bid for the auction, persisted and new
        now: Operation timestamp
        trust_deltas: Pending trust counter changes per user
        events: Events to dispatch after a successful commit
    """

    def __init__(self, auction: Auction, bids: List[Bid], now: datetime):
        self.auction = auction
        self.bids = list(bids)
        self.now = now
        self.trust_deltas: Dict[int, TrustDelta] = {}
        self.events: List["MarketEvent"] = []

        self._new: List[Bid] = []
        self._dirty: Dict[int, Bid] = {}
        self._original_status = {b.bid_id: b.status for b in bids}
        self._auction_dirty = False
        self._committed = False

    # =========================================================================
    # Change Tracking
    # =========================================================================

    @property
    def is_dirty(self) -> bool:
        return bool(
            self._auction_dirty or self._new or self._dirty
            or any(not d.is_empty for d in self.trust_deltas.values())
        )

    @property
    def new_bids(self) -> List[Bid]:
        return list(self._new)

    @property
    def dirty_bids(self) -> List[Bid]:
        return list(self._dirty.values())

    @property
    def committed(self) -> bool:
        return self._committed

    def mark_committed(self) -> None:
        self._committed = True

    def touch_auction(self) -> None:
        self._auction_dirty = True

    def add_bid(self, bid: Bid) -> None:
        self.bids.append(bid)
        self._new.append(bid)

    def touch(self, bid: Bid) -> None:
        if bid.bid_id is not None:
            self._dirty[bid.bid_id] = bid

    def set_status(self, bid: Bid, status: BidStatus) -> None:
        if bid.status != status:
            bid.status = status
            self.touch(bid)

    def set_amount(self, bid: Bid, amount: Decimal) -> None:
        if bid.amount != amount:
            bid.amount = amount
            self.touch(bid)

    def status_changes(self) -> List[Bid]:
        """New bids plus persisted bids whose status differs from load time."""
        changed = list(self._new)
        changed.extend(
            b for b in self._dirty.values()
            if b.status != self._original_status.get(b.bid_id)
        )
        return changed

    def original_status(self, bid: Bid) -> Optional[BidStatus]:
        """Status at load time; None for bids created in this unit."""
        if bid.bid_id is None:
            return None
        return self._original_status.get(bid.bid_id)

    # =========================================================================
    # Ledger View
    # =========================================================================

    def leader(self) -> Optional[Bid]:
        """The WINNING bid, if any."""
        for bid in self.bids:
            if bid.status == BidStatus.WINNING:
                return bid
        return None

    def highest(self, statuses: Iterable[BidStatus], exclude: Optional[Bid] = None) -> Optional[Bid]:
        return select_highest(self.bids, statuses, exclude=exclude)

    def live_bids(self) -> List[Bid]:
        return [b for b in self.bids if b.is_live]

    def raise_price(self, amount: Decimal) -> None:
        """Move the current price up to amount; never lowers it."""
        if self.auction.current_price is None or amount > self.auction.current_price:
            self.auction.current_price = amount
            self.touch_auction()

    # =========================================================================
    # Side Effects
    # =========================================================================

    def trust_delta(self, user_id: int) -> TrustDelta:
        delta = self.trust_deltas.get(user_id)
        if delta is None:
            delta = self.trust_deltas[user_id] = TrustDelta()
        return delta

    def emit(self, event: "MarketEvent") -> None:
        self.events.append(event)


class UnitRunner:
    """
    Executes operations against one auction with mutual exclusion.

    Every mutating operation on an auction goes through run(): the
    per-auction lock is held from load through commit, the commit is
    version-checked, and conflicting commits are retried up to
    config.max_commit_retries times before StateConflictError surfaces.
    Events are dispatched only after a successful commit and after the
    lock has been released.
    """

    def __init__(
        self,
        storage: "StorageManager",
        locks: "AuctionLockManager",
        dispatcher: "NotificationDispatcher",
        config: "MarketConfig",
        clock: Callable[[], datetime],
        rescore: Callable[[int, int], float],
    ):
        self.storage = storage
        self.locks = locks
        self.dispatcher = dispatcher
        self.config = config
        self.clock = clock
        self.rescore = rescore

    def run(self, auction_id: int, operation: Callable[[AuctionUnit], T]) -> T:
        """
        Run operation(unit) atomically for auction_id.

        Exceptions raised by the operation propagate unchanged and leave
        storage untouched.
        """
        retries = self.config.max_commit_retries
        for attempt in range(retries + 1):
            try:
                with self.locks.hold(auction_id, timeout=self.config.lock_timeout_seconds):
                    unit = self.storage.open_unit(auction_id, self.clock())
                    result = operation(unit)
                    if unit.is_dirty:
                        self.storage.commit_unit(unit, self.rescore)
            except VersionConflictError as e:
                if attempt >= retries:
                    logger.error(f"Auction {auction_id}: giving up after {attempt + 1} attempts")
                    raise StateConflictError(
                        f"Auction {auction_id} is busy, please retry", auction_id=auction_id
                    ) from e
                logger.warning(f"Auction {auction_id}: version conflict, retry {attempt + 1}/{retries}")
                time.sleep(self.config.retry_backoff_seconds * (attempt + 1))
                continue

            if unit.events:
                self.dispatcher.dispatch(unit.events)
            return result

        # range() above always returns or raises
        raise StateConflictError(f"Auction {auction_id} is busy", auction_id=auction_id)
