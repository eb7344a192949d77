"""
Core records for the bidding engine: auctions, bids and trust records.

Money is carried as Decimal quantized to cents; timestamps are
timezone-aware UTC datetimes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import IntEnum
from typing import Optional

from bidcore.utils.validation import to_money


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class AuctionStatus(IntEnum):
    """Lifecycle state of an auction."""
    UPCOMING = 0    # Created, not yet accepting bids
    ACTIVE = 1      # Accepting bids until end_time
    ENDED = 2       # Finalized, winner (if any) decided
    CANCELLED = 3   # Withdrawn before any bid existed
    SUSPENDED = 4   # Administratively frozen


class BidStatus(IntEnum):
    """State of a single bid."""
    ACTIVE = 0
    OUTBID = 1
    WINNING = 2
    WON = 3
    LOST = 4
    RETRACTED = 5
    REJECTED = 6


class BidKind(IntEnum):
    MANUAL = 0
    PROXY = 1


# Bids that can still win or be promoted
LIVE_STATUSES = frozenset({BidStatus.ACTIVE, BidStatus.WINNING, BidStatus.OUTBID})

# Bids that no operation may touch again
TERMINAL_BID_STATUSES = frozenset(
    {BidStatus.WON, BidStatus.LOST, BidStatus.RETRACTED, BidStatus.REJECTED}
)


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class Auction:
    """
    An auction record.

    Attributes:
        seller_id: Owner of the auction
        title: Display title
        starting_price: Opening price
        start_time: When bidding opens
        end_time: Hard deadline (exclusive)
        current_price: Most recently accepted leading amount
        reserve_price: Optional floor for declaring a winner
        buy_now_price: Optional fixed price (stored only)
        status: Lifecycle state
        bid_count: Number of accepted bids
        winner_id: Set only once ENDED with a winner
        final_price: Set only once ENDED with a winner
        attributes: Opaque JSON text supplied by other services
        version: Optimistic concurrency counter
    """
    seller_id: int
    title: str
    starting_price: Decimal
    start_time: datetime
    end_time: datetime
    current_price: Optional[Decimal] = None
    reserve_price: Optional[Decimal] = None
    buy_now_price: Optional[Decimal] = None
    description: str = ""
    status: AuctionStatus = AuctionStatus.UPCOMING
    bid_count: int = 0
    winner_id: Optional[int] = None
    final_price: Optional[Decimal] = None
    attributes: Optional[str] = None
    auction_id: Optional[int] = None
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.starting_price = to_money(self.starting_price)
        if self.current_price is None:
            self.current_price = self.starting_price
        else:
            self.current_price = to_money(self.current_price)
        if self.reserve_price is not None:
            self.reserve_price = to_money(self.reserve_price)
        if self.buy_now_price is not None:
            self.buy_now_price = to_money(self.buy_now_price)
        if self.final_price is not None:
            self.final_price = to_money(self.final_price)
        self.start_time = as_utc(self.start_time)
        self.end_time = as_utc(self.end_time)
        self.created_at = as_utc(self.created_at)

    def is_accepting_bids(self, now: datetime) -> bool:
        """ACTIVE and inside [start_time, end_time)."""
        now = as_utc(now)
        return (
            self.status == AuctionStatus.ACTIVE
            and self.start_time <= now < self.end_time
        )

    def has_expired(self, now: datetime) -> bool:
        return as_utc(now) >= self.end_time

    def is_reserve_met(self) -> bool:
        if self.reserve_price is None:
            return True
        return self.current_price is not None and self.current_price >= self.reserve_price


@dataclass
class Bid:
    """
    A bid in the ledger.

    For proxy bids `amount` is the visible bid and `max_amount` the hidden
    ceiling the engine may raise it to.
    """
    auction_id: int
    bidder_id: int
    amount: Decimal
    kind: BidKind = BidKind.MANUAL
    max_amount: Optional[Decimal] = None
    status: BidStatus = BidStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    notes: str = ""
    bid_id: Optional[int] = None

    def __post_init__(self):
        self.amount = to_money(self.amount)
        if self.max_amount is not None:
            self.max_amount = to_money(self.max_amount)
        self.created_at = as_utc(self.created_at)

    @property
    def is_proxy(self) -> bool:
        return self.kind == BidKind.PROXY

    @property
    def ceiling(self) -> Decimal:
        """Highest amount this bid may reach."""
        if self.is_proxy and self.max_amount is not None:
            return self.max_amount
        return self.amount

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES


@dataclass
class TrustRecord:
    """Per-user reputation inputs and the derived score."""
    user_id: int
    trust_score: float = 500.0
    successful_transactions: int = 0
    failed_transactions: int = 0
    total_bid_amount: Decimal = Decimal("0.00")

    def __post_init__(self):
        self.total_bid_amount = to_money(self.total_bid_amount)


@dataclass
class TrustDelta:
    """Counter changes for one user, applied inside an auction commit."""
    successes: int = 0
    failures: int = 0
    bid_amount: Decimal = Decimal("0.00")

    @property
    def is_empty(self) -> bool:
        return not (self.successes or self.failures or self.bid_amount)


__all__ = [
    "Auction",
    "AuctionStatus",
    "Bid",
    "BidKind",
    "BidStatus",
    "TrustRecord",
    "TrustDelta",
    "LIVE_STATUSES",
    "TERMINAL_BID_STATUSES",
    "utcnow",
    "as_utc",
]
