"""
Bid handling.

This module provides:
- Placement of manual and proxy bids
- Proxy bid resolution
- Retraction
- Ledger queries
"""

from bidcore.core.bids.ledger import BidLedger, BidStatistics
from bidcore.core.bids.placement import BidPlacementEngine, compute_minimum_next_bid
from bidcore.core.bids.proxy import ProxyBidResolver
from bidcore.core.bids.retraction import BidRetractionService

__all__ = [
    "BidLedger",
    "BidStatistics",
    "BidPlacementEngine",
    "compute_minimum_next_bid",
    "ProxyBidResolver",
    "BidRetractionService",
]
