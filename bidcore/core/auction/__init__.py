"""
Auction lifecycle.

This module provides:
- The auction registry and its state machine
- The auction closer (winner, reserve, settlement)
- The periodic sweeper for time-driven transitions
"""

from bidcore.core.auction.registry import (
    AuctionRegistry,
    SellerStatistics,
    ALLOWED_TRANSITIONS,
    can_transition,
    transition,
)

from bidcore.core.auction.closer import AuctionCloser
from bidcore.core.auction.sweeper import AuctionSweeper, SweepReport

__all__ = [
    # Registry
    "AuctionRegistry",
    "SellerStatistics",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "transition",
    # Closing
    "AuctionCloser",
    "AuctionSweeper",
    "SweepReport",
]
