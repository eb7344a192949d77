"""
Post-commit events and their dispatch to notification sinks.

Delivery (email, push, websockets) is owned by an outside collaborator;
this module only hands committed events to registered sinks. Delivery is
fire-and-forget: a failing sink is logged and never affects bid or
auction state.
"""

from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Iterable, List, Optional, Protocol

from bidcore.core.models import Auction, Bid, utcnow
from bidcore.utils.logger import get_logger

logger = get_logger("events")


class EventType(IntEnum):
    BID_PLACED = 0
    OUTBID = 1
    AUCTION_WON = 2
    AUCTION_SOLD = 3
    RESERVE_NOT_MET = 4


class MarketEvent:
    """Base class for events; subclasses expose recipient_id."""

    event_type: EventType

    @property
    def recipient_id(self) -> int:
        raise NotImplementedError


@dataclass
class BidPlaced(MarketEvent):
    bidder: int
    auction: Auction
    bid: Bid
    occurred_at: datetime = field(default_factory=utcnow)
    event_type = EventType.BID_PLACED

    @property
    def recipient_id(self) -> int:
        return self.bidder


@dataclass
class Outbid(MarketEvent):
    user: int
    auction: Auction
    new_leading_bid: Bid
    occurred_at: datetime = field(default_factory=utcnow)
    event_type = EventType.OUTBID

    @property
    def recipient_id(self) -> int:
        return self.user


@dataclass
class AuctionWon(MarketEvent):
    winner: int
    auction: Auction
    occurred_at: datetime = field(default_factory=utcnow)
    event_type = EventType.AUCTION_WON

    @property
    def recipient_id(self) -> int:
        return self.winner


@dataclass
class AuctionSold(MarketEvent):
    seller: int
    auction: Auction
    occurred_at: datetime = field(default_factory=utcnow)
    event_type = EventType.AUCTION_SOLD

    @property
    def recipient_id(self) -> int:
        return self.seller


@dataclass
class ReserveNotMet(MarketEvent):
    seller: int
    auction: Auction
    occurred_at: datetime = field(default_factory=utcnow)
    event_type = EventType.RESERVE_NOT_MET

    @property
    def recipient_id(self) -> int:
        return self.seller


class NotificationSink(Protocol):
    def notify(self, event: MarketEvent) -> None:
        ...


class LoggingNotifier:
    """Sink that renders each event as a user-facing message in the log."""

    def __init__(self):
        self.log = get_logger("notifications")

    @staticmethod
    def render(event: MarketEvent) -> str:
        auction = event.auction
        if isinstance(event, BidPlaced):
            return f"Your bid of ${event.bid.amount:.2f} has been placed on '{auction.title}'"
        if isinstance(event, Outbid):
            return (f"You have been outbid on '{auction.title}'. "
                    f"Current highest bid: ${event.new_leading_bid.amount:.2f}")
        if isinstance(event, AuctionWon):
            return (f"Congratulations! You won the auction for '{auction.title}' "
                    f"with a bid of ${auction.final_price:.2f}")
        if isinstance(event, AuctionSold):
            return f"Your auction '{auction.title}' has been sold for ${auction.final_price:.2f}"
        if isinstance(event, ReserveNotMet):
            return f"Your auction '{auction.title}' ended but the reserve price was not met"
        return f"{event.event_type.name} on '{auction.title}'"

    def notify(self, event: MarketEvent) -> None:
        self.log.info(f"[user {event.recipient_id}] {self.render(event)}")


class NotificationDispatcher:
    """
    Delivers committed events to sinks.

    With an executor, delivery runs off the caller's thread; without one
    it runs inline after the commit has already happened.
    """

    def __init__(
        self,
        sinks: Optional[Iterable[NotificationSink]] = None,
        executor: Optional[Executor] = None,
    ):
        self.sinks: List[NotificationSink] = list(sinks or [])
        self.executor = executor

    def add_sink(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    def dispatch(self, events: Iterable[MarketEvent]) -> None:
        for event in events:
            for sink in self.sinks:
                if self.executor is not None:
                    self.executor.submit(self._deliver, sink, event)
                else:
                    self._deliver(sink, event)

    @staticmethod
    def _deliver(sink: NotificationSink, event: MarketEvent) -> None:
        try:
            sink.notify(event)
        except Exception:
            # Delivery may be retried by the collaborator; state is already committed.
            logger.exception(
                f"Notification sink {type(sink).__name__} failed for "
                f"{event.event_type.name} to user {event.recipient_id}"
            )


__all__ = [
    "EventType",
    "MarketEvent",
    "BidPlaced",
    "Outbid",
    "AuctionWon",
    "AuctionSold",
    "ReserveNotMet",
    "NotificationSink",
    "LoggingNotifier",
    "NotificationDispatcher",
]
