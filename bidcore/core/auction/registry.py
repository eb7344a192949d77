"""
Auction Registry - auction records and their lifecycle.

This module provides:
- Auction creation with window and price validation
- Seller-driven start, cancel and edit
- Time-driven activation of due auctions
- Administrative suspension
- Listing and seller statistics

Lifecycle (forward-only; CANCELLED only before any bid exists):

    UPCOMING -> ACTIVE -> ENDED
        |          |
        +----------+--> SUSPENDED -> CANCELLED (no bids) | ENDED (voided)
        +----------+--> CANCELLED
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, FrozenSet, List, Optional

from bidcore.core.config import MarketConfig
from bidcore.core.errors import (
    AuthorizationError,
    InvalidAuctionError,
    NotFoundError,
    StateConflictError,
)
from bidcore.core.models import Auction, AuctionStatus, as_utc, utcnow
from bidcore.core.storage.storage_manager import StorageManager
from bidcore.core.unit import AuctionUnit, UnitRunner
from bidcore.utils.logger import get_logger
from bidcore.utils import validation

logger = get_logger("registry")


# =============================================================================
# State Machine
# =============================================================================

ALLOWED_TRANSITIONS: Dict[AuctionStatus, FrozenSet[AuctionStatus]] = {
    AuctionStatus.UPCOMING: frozenset(
        {AuctionStatus.ACTIVE, AuctionStatus.CANCELLED, AuctionStatus.SUSPENDED}
    ),
    AuctionStatus.ACTIVE: frozenset(
        {AuctionStatus.ENDED, AuctionStatus.CANCELLED, AuctionStatus.SUSPENDED}
    ),
    AuctionStatus.SUSPENDED: frozenset({AuctionStatus.CANCELLED, AuctionStatus.ENDED}),
    AuctionStatus.ENDED: frozenset(),
    AuctionStatus.CANCELLED: frozenset(),
}

EDITABLE_FIELDS = frozenset({
    "title", "description", "starting_price", "reserve_price",
    "buy_now_price", "start_time", "end_time", "attributes",
})


def can_transition(auction: Auction, target: AuctionStatus) -> bool:
    if target not in ALLOWED_TRANSITIONS[auction.status]:
        return False
    # A cancelled auction never holds bids, whatever the source state
    if target == AuctionStatus.CANCELLED:
        return auction.bid_count == 0
    return True


def transition(auction: Auction, target: AuctionStatus) -> None:
    """
    Move an auction to target status.

    Raises:
        StateConflictError: transition not allowed from the current state
    """
    if not can_transition(auction, target):
        if target == AuctionStatus.CANCELLED and target in ALLOWED_TRANSITIONS[auction.status]:
            raise StateConflictError("Cannot cancel auctions with bids", auction_id=auction.auction_id)
        raise StateConflictError(
            f"Cannot move auction {auction.auction_id} from {auction.status.name} to {target.name}",
            auction_id=auction.auction_id,
        )
    logger.debug(f"Auction {auction.auction_id}: {auction.status.name} -> {target.name}")
    auction.status = target


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class SellerStatistics:
    total_auctions: int
    active_auctions: int
    sold_auctions: int
    average_sale_price: Decimal


# =============================================================================
# Registry
# =============================================================================


class AuctionRegistry:
    """Owns auction records; every state change goes through a unit."""

    def __init__(
        self,
        storage: StorageManager,
        runner: UnitRunner,
        clock: Callable[[], datetime] = utcnow,
        config: Optional[MarketConfig] = None,
    ):
        self.storage = storage
        self.runner = runner
        self.clock = clock
        self.config = config or MarketConfig()

    # =========================================================================
    # Creation & Editing
    # =========================================================================

    def create_auction(
        self,
        seller_id: int,
        title: str,
        starting_price,
        start_time: Optional[datetime],
        end_time: datetime,
        reserve_price=None,
        buy_now_price=None,
        description: str = "",
        attributes: Optional[str] = None,
    ) -> Auction:
        """
        Create an UPCOMING auction.

        A start_time of None opens the window at the current time.

        Raises:
            InvalidAuctionError: inconsistent window, prices or text
        """
        self._check(validation.validate_user_id(seller_id, "seller_id"))
        self._check_fields(
            title=title,
            description=description,
            starting_price=starting_price,
            reserve_price=reserve_price,
            buy_now_price=buy_now_price,
            attributes=attributes,
        )
        now = self.clock()
        start_time = as_utc(start_time) if start_time is not None else now
        end_time = as_utc(end_time)
        self._check(validation.validate_time_window(start_time, end_time, now=now))

        auction = Auction(
            seller_id=seller_id,
            title=title,
            description=description,
            starting_price=starting_price,
            reserve_price=reserve_price,
            buy_now_price=buy_now_price,
            start_time=start_time,
            end_time=end_time,
            attributes=attributes,
            created_at=now,
        )
        self.storage.save_new_auction(auction)
        logger.info(
            f"Auction {auction.auction_id} created by seller {seller_id}: '{title}' "
            f"from {auction.starting_price}, {start_time.isoformat()} -> {end_time.isoformat()}"
        )
        return auction

    def update_auction(self, auction_id: int, seller_id: int, **changes) -> Auction:
        """Edit an UPCOMING auction owned by seller_id."""
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise InvalidAuctionError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        def operation(unit: AuctionUnit) -> Auction:
            auction = unit.auction
            self._require_owner(auction, seller_id, "update")
            if auction.status != AuctionStatus.UPCOMING:
                raise StateConflictError("Can only update upcoming auctions", auction_id=auction_id)

            merged = {f: getattr(auction, f) for f in EDITABLE_FIELDS}
            merged.update(changes)
            self._check_fields(
                title=merged["title"],
                description=merged["description"],
                starting_price=merged["starting_price"],
                reserve_price=merged["reserve_price"],
                buy_now_price=merged["buy_now_price"],
                attributes=merged["attributes"],
            )
            start, end = as_utc(merged["start_time"]), as_utc(merged["end_time"])
            now = unit.now if "start_time" in changes else None
            self._check(validation.validate_time_window(start, end, now=now))

            updated = Auction(
                seller_id=auction.seller_id,
                title=merged["title"],
                description=merged["description"],
                starting_price=merged["starting_price"],
                reserve_price=merged["reserve_price"],
                buy_now_price=merged["buy_now_price"],
                start_time=start,
                end_time=end,
                attributes=merged["attributes"],
            )
            auction.title = updated.title
            auction.description = updated.description
            auction.starting_price = updated.starting_price
            auction.current_price = updated.starting_price
            auction.reserve_price = updated.reserve_price
            auction.buy_now_price = updated.buy_now_price
            auction.start_time = updated.start_time
            auction.end_time = updated.end_time
            auction.attributes = updated.attributes
            unit.touch_auction()
            return auction

        return self.runner.run(auction_id, operation)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_auction(self, auction_id: int, seller_id: int) -> Auction:
        """
        Open an UPCOMING auction for bidding now.

        Starting before the scheduled time moves start_time to now.
        """
        def operation(unit: AuctionUnit) -> Auction:
            auction = unit.auction
            self._require_owner(auction, seller_id, "start")
            if auction.status != AuctionStatus.UPCOMING:
                raise StateConflictError("Only upcoming auctions can be started", auction_id=auction_id)
            if unit.now >= auction.end_time:
                raise StateConflictError("Auction window has already passed", auction_id=auction_id)
            transition(auction, AuctionStatus.ACTIVE)
            if unit.now < auction.start_time:
                auction.start_time = unit.now
            unit.touch_auction()
            return auction

        auction = self.runner.run(auction_id, operation)
        logger.info(f"Auction {auction_id} started by seller {seller_id}")
        return auction

    def activate_due(self, now: Optional[datetime] = None) -> List[int]:
        """Activate every UPCOMING auction whose start_time has arrived."""
        now = as_utc(now) if now is not None else self.clock()
        activated = [
            auction.auction_id
            for auction in self.storage.auctions_due_to_start(now)
            if self.activate_due_auction(auction.auction_id, now)
        ]
        if activated:
            logger.info(f"Activated {len(activated)} auctions: {activated}")
        return activated

    def activate_due_auction(self, auction_id: int, now: Optional[datetime] = None) -> bool:
        """Activate one auction if it is still UPCOMING and its start time has arrived."""
        def operation(unit: AuctionUnit) -> bool:
            auction = unit.auction
            moment = as_utc(now) if now is not None else unit.now
            # Re-checked under the lock; the listing may be stale
            if auction.status != AuctionStatus.UPCOMING or moment < auction.start_time:
                return False
            transition(auction, AuctionStatus.ACTIVE)
            unit.touch_auction()
            return True

        return self.runner.run(auction_id, operation)

    def cancel_auction(self, auction_id: int, seller_id: int) -> Auction:
        """Cancel an auction that has no bids."""
        def operation(unit: AuctionUnit) -> Auction:
            auction = unit.auction
            self._require_owner(auction, seller_id, "cancel")
            transition(auction, AuctionStatus.CANCELLED)
            unit.touch_auction()
            return auction

        auction = self.runner.run(auction_id, operation)
        logger.info(f"Auction {auction_id} cancelled by seller {seller_id}")
        return auction

    def suspend_auction(self, auction_id: int) -> Auction:
        """Administratively freeze an auction; it can only be cancelled or voided afterwards."""
        def operation(unit: AuctionUnit) -> Auction:
            transition(unit.auction, AuctionStatus.SUSPENDED)
            unit.touch_auction()
            return unit.auction

        auction = self.runner.run(auction_id, operation)
        logger.warning(f"Auction {auction_id} suspended")
        return auction

    # =========================================================================
    # Queries
    # =========================================================================

    def get_auction(self, auction_id: int) -> Auction:
        auction = self.storage.load_auction(auction_id)
        if auction is None:
            raise NotFoundError("Auction", auction_id)
        return auction

    def list_auctions(self, status: Optional[AuctionStatus] = None) -> List[Auction]:
        return self.storage.list_auctions(status=status)

    def auctions_by_seller(self, seller_id: int) -> List[Auction]:
        return self.storage.list_auctions(seller_id=seller_id)

    def ending_soon(self, hours: int = 24) -> List[Auction]:
        now = self.clock()
        return self.storage.auctions_ending_between(now, now + timedelta(hours=hours))

    def seller_statistics(self, seller_id: int) -> SellerStatistics:
        auctions = self.storage.list_auctions(seller_id=seller_id)
        sold = [a for a in auctions if a.status == AuctionStatus.ENDED and a.winner_id is not None]
        total_sales = sum((a.final_price for a in sold), Decimal("0"))
        average = validation.to_money(total_sales / len(sold)) if sold else Decimal("0.00")
        return SellerStatistics(
            total_auctions=len(auctions),
            active_auctions=sum(1 for a in auctions if a.status == AuctionStatus.ACTIVE),
            sold_auctions=len(sold),
            average_sale_price=average,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _check(result) -> None:
        valid, err = result
        if not valid:
            raise InvalidAuctionError(err)

    def _check_fields(
        self,
        title,
        description,
        starting_price,
        reserve_price,
        buy_now_price,
        attributes,
    ) -> None:
        self._check(validation.validate_title(title))
        self._check(validation.validate_description(description))
        self._check(validation.validate_amount(starting_price, "starting_price"))
        floor = validation.to_money(starting_price)
        self._check(validation.validate_optional_price(reserve_price, "reserve_price", floor))
        self._check(validation.validate_optional_price(buy_now_price, "buy_now_price", floor))
        self._check(validation.validate_attributes(attributes))

    @staticmethod
    def _require_owner(auction: Auction, seller_id: int, action: str) -> None:
        if auction.seller_id != seller_id:
            raise AuthorizationError(f"You can only {action} your own auctions")
