"""Core bidding engine: records, units of work, services."""

from bidcore.core.config import MarketConfig, load_config
from bidcore.core.engine import BiddingEngine
from bidcore.core.errors import (
    AuctionNotActiveError,
    AuthorizationError,
    BidTooLowError,
    InsufficientTrustError,
    InvalidAuctionError,
    MarketError,
    NotFoundError,
    SelfBidError,
    StateConflictError,
    ValidationError,
    VersionConflictError,
)
from bidcore.core.models import (
    Auction,
    AuctionStatus,
    Bid,
    BidKind,
    BidStatus,
    TrustRecord,
)

__all__ = [
    "BiddingEngine",
    "MarketConfig",
    "load_config",
    # Records
    "Auction",
    "AuctionStatus",
    "Bid",
    "BidKind",
    "BidStatus",
    "TrustRecord",
    # Errors
    "MarketError",
    "ValidationError",
    "AuctionNotActiveError",
    "SelfBidError",
    "BidTooLowError",
    "InsufficientTrustError",
    "InvalidAuctionError",
    "AuthorizationError",
    "NotFoundError",
    "StateConflictError",
    "VersionConflictError",
]
