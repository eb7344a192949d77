"""
Error taxonomy for the bidding engine.

ValidationError subclasses are user-correctable and never retried.
StateConflictError is retried internally up to a fixed bound before it
reaches the caller.
"""

from decimal import Decimal
from typing import Optional


class MarketError(Exception):
    """Base class for all engine errors."""


class ValidationError(MarketError):
    """A request that the caller can correct."""


class AuctionNotActiveError(ValidationError):
    """Auction is not accepting bids right now."""


class SelfBidError(ValidationError):
    """Seller tried to bid on their own auction."""


class BidTooLowError(ValidationError):
    """Bid is below the minimum next bid."""

    def __init__(self, amount: Decimal, minimum: Decimal):
        self.amount = amount
        self.minimum = minimum
        super().__init__(f"Bid must be at least ${minimum:.2f} (got ${amount:.2f})")


class InsufficientTrustError(ValidationError):
    """Bidder's trust score does not meet the gate for this bid."""

    def __init__(self, message: str, score: float, required: float):
        self.score = score
        self.required = required
        super().__init__(message)


class InvalidAuctionError(ValidationError):
    """Auction parameters are inconsistent."""


class AuthorizationError(MarketError):
    """Requester does not own the bid or auction."""


class NotFoundError(MarketError):
    """Referenced auction or bid does not exist."""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class StateConflictError(MarketError):
    """Concurrent write contention or an illegal state for the operation."""

    def __init__(self, message: str, auction_id: Optional[int] = None):
        self.auction_id = auction_id
        super().__init__(message)


class VersionConflictError(StateConflictError):
    """Auction row changed underneath an optimistic commit."""


__all__ = [
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
