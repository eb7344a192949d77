"""
Trust Score - bounded per-user reputation that gates bidding.

Manages:
- Score computation from transaction outcomes
- Success/failure recording inside auction commits
- Stand-alone failure reports from the payment collaborator

The score is always recomputed from the counters, never set directly:

    score = clamp(min, max, base + success_rate * weight - failed * penalty)

with a fixed base score while a user has no transactions.
"""

from typing import Optional

from bidcore.core.config import MarketConfig
from bidcore.core.models import TrustDelta, TrustRecord
from bidcore.core.storage.storage_manager import StorageManager
from bidcore.core.unit import AuctionUnit
from bidcore.utils.logger import get_logger

logger = get_logger("trust")


def compute_trust_score(
    successful: int,
    failed: int,
    config: Optional[MarketConfig] = None,
) -> float:
    """
    Compute a trust score from transaction counters.

    Args:
        successful: Completed (won/sold) transactions
        failed: Failed transactions and retractions
        config: Formula parameters; defaults when omitted

    Returns:
        Score clamped to [trust_min, trust_max]
    """
    config = config or MarketConfig()
    total = successful + failed
    if total == 0:
        return config.trust_base

    success_rate = successful / total
    score = (
        config.trust_base
        + success_rate * config.trust_success_weight
        - failed * config.trust_failure_penalty
    )
    return max(config.trust_min, min(config.trust_max, score))


class TrustScoreUpdater:
    """
    Records transaction outcomes against users' trust counters.

    Outcomes raised during an auction operation are queued on the
    AuctionUnit and land in the same commit as the auction change.
    """

    def __init__(self, storage: StorageManager, config: Optional[MarketConfig] = None):
        self.storage = storage
        self.config = config or MarketConfig()

    def compute_score(self, successful: int, failed: int) -> float:
        return compute_trust_score(successful, failed, self.config)

    # =========================================================================
    # Recording (inside a unit)
    # =========================================================================

    def record_success(self, unit: AuctionUnit, user_id: int) -> None:
        unit.trust_delta(user_id).successes += 1
        logger.debug(f"Queued success for user {user_id} (auction {unit.auction.auction_id})")

    def record_failure(self, unit: AuctionUnit, user_id: int) -> None:
        unit.trust_delta(user_id).failures += 1
        logger.debug(f"Queued failure for user {user_id} (auction {unit.auction.auction_id})")

    def record_bid_volume(self, unit: AuctionUnit, user_id: int, amount) -> None:
        unit.trust_delta(user_id).bid_amount += amount

    # =========================================================================
    # Stand-alone Reports
    # =========================================================================

    def record_payment_failure(self, user_id: int) -> TrustRecord:
        """
        Record a failed transaction reported outside any auction operation
        (e.g. a winner who never paid).

        Returns:
            Updated trust record
        """
        self.storage.apply_trust_changes({user_id: TrustDelta(failures=1)}, self.compute_score)
        record = self.storage.load_trust(user_id)
        logger.info(f"User {user_id} payment failure recorded, trust now {record.trust_score:.1f}")
        return record

    # =========================================================================
    # Queries
    # =========================================================================

    def get_record(self, user_id: int) -> TrustRecord:
        return self.storage.load_trust(user_id)

    def get_score(self, user_id: int) -> float:
        return self.storage.load_trust(user_id).trust_score
