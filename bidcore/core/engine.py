"""
BiddingEngine - wires the bidding services together.

This is the surface the serving layer talks to: placement, proxy bids,
retraction, closing and the read queries, plus access to the registry,
ledger and trust services behind them.
"""

from concurrent.futures import Executor
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Optional

from bidcore.core.auction.closer import AuctionCloser
from bidcore.core.auction.registry import AuctionRegistry
from bidcore.core.auction.sweeper import AuctionSweeper
from bidcore.core.bids.ledger import BidLedger
from bidcore.core.bids.placement import BidPlacementEngine
from bidcore.core.bids.proxy import ProxyBidResolver
from bidcore.core.bids.retraction import BidRetractionService
from bidcore.core.config import MarketConfig
from bidcore.core.events import LoggingNotifier, NotificationDispatcher, NotificationSink
from bidcore.core.locks import AuctionLockManager
from bidcore.core.models import Auction, Bid, TrustRecord, utcnow
from bidcore.core.storage.storage_manager import StorageManager
from bidcore.core.trust import TrustScoreUpdater
from bidcore.core.unit import UnitRunner
from bidcore.utils.logger import get_logger

logger = get_logger("engine")


class BiddingEngine:
    """
    Facade over the bid settlement and auction lifecycle services.

    Example:
        engine = BiddingEngine.create(data_dir="data")
        auction = engine.registry.create_auction(1, "Lamp", "100.00", start, end)
        engine.registry.start_auction(auction.auction_id, 1)
        engine.place_bid(auction.auction_id, 2, "105.00")
    """

    def __init__(
        self,
        storage: StorageManager,
        config: Optional[MarketConfig] = None,
        sinks: Optional[Iterable[NotificationSink]] = None,
        clock: Callable[[], datetime] = utcnow,
        executor: Optional[Executor] = None,
    ):
        self.config = config or MarketConfig()
        self.storage = storage
        self.clock = clock

        self.locks = AuctionLockManager()
        self.dispatcher = NotificationDispatcher(sinks, executor=executor)
        self.trust = TrustScoreUpdater(storage, self.config)
        self.runner = UnitRunner(
            storage=storage,
            locks=self.locks,
            dispatcher=self.dispatcher,
            config=self.config,
            clock=clock,
            rescore=self.trust.compute_score,
        )

        self.ledger = BidLedger(storage)
        self.registry = AuctionRegistry(storage, self.runner, clock=clock, config=self.config)
        self.resolver = ProxyBidResolver(self.config)
        self.placement = BidPlacementEngine(storage, self.runner, self.trust, self.resolver, self.config)
        self.retraction = BidRetractionService(storage, self.runner, self.trust, self.resolver)
        self.closer = AuctionCloser(storage, self.runner, self.trust)
        self.sweeper = AuctionSweeper(
            storage,
            self.registry,
            self.closer,
            interval_seconds=self.config.sweep_interval_seconds,
            clock=clock,
        )

    @classmethod
    def create(
        cls,
        config: Optional[MarketConfig] = None,
        data_dir: Optional[Path] = None,
        sinks: Optional[Iterable[NotificationSink]] = None,
        clock: Callable[[], datetime] = utcnow,
        executor: Optional[Executor] = None,
    ) -> "BiddingEngine":
        """
        Build an engine backed by SQLite storage.

        Args:
            config: Market configuration (defaults when omitted)
            data_dir: Overrides config.data_dir
            sinks: Notification sinks; a LoggingNotifier when omitted
        """
        config = config or MarketConfig()
        if data_dir is not None:
            config = config.model_copy(update={"data_dir": Path(data_dir)})
        storage = StorageManager(config.data_dir, config.db_name)
        if sinks is None:
            sinks = [LoggingNotifier()]
        engine = cls(storage, config=config, sinks=sinks, clock=clock, executor=executor)
        logger.info(f"Bidding engine ready ({config.db_path})")
        return engine

    # =========================================================================
    # Bidding
    # =========================================================================

    def place_bid(self, auction_id: int, bidder_id: int, amount) -> Bid:
        return self.placement.place_bid(auction_id, bidder_id, amount)

    def place_proxy_bid(self, auction_id: int, bidder_id: int, max_amount) -> Bid:
        return self.placement.place_proxy_bid(auction_id, bidder_id, max_amount)

    def retract_bid(self, bid_id: int, requester_id: int, reason: str = "") -> None:
        self.retraction.retract_bid(bid_id, requester_id, reason)

    def get_minimum_next_bid(self, auction_id: int) -> Decimal:
        return self.placement.get_minimum_next_bid(auction_id)

    def get_highest_bid(self, auction_id: int) -> Optional[Bid]:
        return self.placement.get_highest_bid(auction_id)

    # =========================================================================
    # Closing
    # =========================================================================

    def close_auction(self, auction_id: int) -> Auction:
        return self.closer.close_auction(auction_id)

    def end_auction(self, auction_id: int, seller_id: int) -> Auction:
        return self.closer.end_auction(auction_id, seller_id)

    def void_auction(self, auction_id: int) -> Auction:
        return self.closer.void_auction(auction_id)

    def record_payment_failure(self, user_id: int) -> TrustRecord:
        return self.trust.record_payment_failure(user_id)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_sweeper(self) -> None:
        self.sweeper.start()

    def shutdown(self) -> None:
        """Stop the sweeper and release this thread's database connection."""
        if self.sweeper.is_running:
            self.sweeper.stop(timeout=self.config.sweep_interval_seconds)
        self.storage.close()
        logger.info("Bidding engine stopped")
