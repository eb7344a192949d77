"""
Shared fixtures: a controllable clock, a recording notification sink and
an engine backed by a SQLite file in tmp_path.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from bidcore.core.config import MarketConfig
from bidcore.core.engine import BiddingEngine


START = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, **kwargs) -> datetime:
        with self._lock:
            self.now = self.now + timedelta(**kwargs)
            return self.now


class RecordingSink:
    """Notification sink that keeps every event it receives."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def notify(self, event):
        with self._lock:
            self.events.append(event)

    def of_type(self, cls):
        return [e for e in self.events if isinstance(e, cls)]

    def clear(self):
        self.events.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def config(tmp_path):
    return MarketConfig(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        retry_backoff_seconds=0,
    )


@pytest.fixture
def engine(config, clock, sink):
    eng = BiddingEngine.create(config=config, sinks=[sink], clock=clock)
    yield eng
    eng.shutdown()


@pytest.fixture
def open_auction(engine, clock):
    """Factory for ACTIVE auctions opened at the current fake time."""

    def _make(seller_id=1, price="100.00", reserve=None, minutes=60, title="Test lot"):
        auction = engine.registry.create_auction(
            seller_id=seller_id,
            title=title,
            starting_price=price,
            start_time=None,
            end_time=clock() + timedelta(minutes=minutes),
            reserve_price=reserve,
        )
        return engine.registry.start_auction(auction.auction_id, seller_id)

    return _make
