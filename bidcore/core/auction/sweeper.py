"""
Auction Sweeper - periodic time-driven transitions.

Each pass activates UPCOMING auctions whose start time has arrived and
closes ACTIVE auctions whose end time has passed. Every auction is handled
through the same per-auction unit as user operations, so a sweep never
interleaves with a placement or retraction on that auction.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from bidcore.core.auction.closer import AuctionCloser
from bidcore.core.auction.registry import AuctionRegistry
from bidcore.core.errors import MarketError
from bidcore.core.models import AuctionStatus, as_utc, utcnow
from bidcore.core.storage.storage_manager import StorageManager
from bidcore.utils.logger import get_logger

logger = get_logger("sweeper")


@dataclass
class SweepReport:
    activated: List[int] = field(default_factory=list)
    closed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


class AuctionSweeper:
    """Runs sweep passes on demand or on a background thread."""

    def __init__(
        self,
        storage: StorageManager,
        registry: AuctionRegistry,
        closer: AuctionCloser,
        interval_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.registry = registry
        self.closer = closer
        self.interval_seconds = interval_seconds
        self.clock = clock

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep_once(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Run one pass.

        A failure on one auction is logged and recorded in the report;
        the pass continues with the rest and the next pass retries it.
        """
        now = as_utc(now) if now is not None else self.clock()
        report = SweepReport()

        for auction in self.storage.auctions_due_to_start(now):
            try:
                if self.registry.activate_due_auction(auction.auction_id, now):
                    report.activated.append(auction.auction_id)
            except MarketError as e:
                logger.error(f"Failed to activate auction {auction.auction_id}: {e}")
                report.failed.append(auction.auction_id)

        for auction in self.storage.auctions_due_to_close(now):
            try:
                closed = self.closer.close_auction(auction.auction_id)
                if closed.status == AuctionStatus.ENDED:
                    report.closed.append(auction.auction_id)
            except MarketError as e:
                logger.error(f"Failed to close auction {auction.auction_id}: {e}")
                report.failed.append(auction.auction_id)

        if report.activated or report.closed or report.failed:
            logger.info(
                f"Sweep: {len(report.activated)} activated, {len(report.closed)} closed, "
                f"{len(report.failed)} failed"
            )
        return report

    # =========================================================================
    # Background Thread
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="auction-sweeper", daemon=True)
        self._thread.start()
        logger.info(f"Sweeper started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Sweeper stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.sweep_once()
            except Exception:
                # Storage outages must not kill the thread; the next pass retries.
                logger.exception("Sweep pass failed")
            self._stop.wait(self.interval_seconds)
